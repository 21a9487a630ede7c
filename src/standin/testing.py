"""
Test framework adapter.

Turns a failed call verification into an ``AssertionError`` carrying the
human-readable report, so any test runner shows why the mock was unhappy.
"""

from typing import Union

from .mock.registry import ExpectationRegistry
from .mock.server import MockServer
from .mock.verifier import Verifier


def assert_expectations_met(
    target: Union[ExpectationRegistry, MockServer, Verifier],
    timeout: float = 0.0
):
    """
    Assert every expectation's call constraint is satisfied.

    Args:
        target: Registry, server or verifier to check
        timeout: Seconds to wait for in-flight requests to settle

    Raises:
        AssertionError: With the verification report when any constraint fails

    Example:
        registry.get('/hello', response=ResponseDescriptor.text('hi'))
        requests.get(f"{server.base_url}/hello")
        assert_expectations_met(registry)
    """
    if isinstance(target, MockServer):
        verifier = target.verifier
    elif isinstance(target, Verifier):
        verifier = target
    else:
        verifier = Verifier(target)

    if not verifier.all_satisfied(timeout):
        raise AssertionError(verifier.render_report())
