"""
pytest plugin providing mock server fixtures.

Registered through the ``pytest11`` entry point, so installing the package
makes the fixtures available:

    def test_client(standin_registry, standin_server):
        standin_registry.get('/hello', response=ResponseDescriptor.text('hi'))
        assert requests.get(f"{standin_server.base_url}/hello").text == 'hi'

Tests marked ``@pytest.mark.standin`` also verify call counts at teardown.
"""

import pytest

from .mock.registry import ExpectationRegistry
from .mock.server import MockServer, MockConfig
from .testing import assert_expectations_met


def pytest_configure(config):
    """Configure the pytest plugin."""
    config.addinivalue_line(
        "markers",
        "standin: verify Standin mock expectations when the test finishes"
    )


@pytest.fixture
def standin_registry() -> ExpectationRegistry:
    """Fresh, empty expectation registry."""
    return ExpectationRegistry()


@pytest.fixture
def standin_server(request, standin_registry):
    """Mock server on an ephemeral port, serving ``standin_registry``."""
    server = MockServer(standin_registry, MockConfig(port=0, log_level="warning"))
    server.start_background()
    try:
        yield server
    finally:
        server.stop()

    if request.node.get_closest_marker("standin") is not None:
        assert_expectations_met(server)
