"""
Standin

Expectation-driven HTTP mock server for testing HTTP clients.
"""

__version__ = '1.0.0'
