"""
Tests for Standin Call Verifier

Tests verification including:
- Exact count pass and fail (N vs N+1)
- Read-only verification
- Reports in registration order
- Polling with a timeout
- Exact counting under concurrent dispatch
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from standin.mock.dispatcher import Dispatcher
from standin.mock.expectation import CallConstraint, ResponseDescriptor
from standin.mock.registry import ExpectationRegistry
from standin.mock.request import RequestView
from standin.mock.verifier import Verifier
from standin.testing import assert_expectations_met


@pytest.fixture
def registry():
    """Empty registry."""
    return ExpectationRegistry()


def hello():
    return RequestView.from_url('GET', '/hello')


class TestVerifier:
    """Test call count verification."""

    def test_exact_count(self, registry):
        """Test exactly-N passes at N and fails at N+1."""
        expectation = registry.get('/hello', constraint=CallConstraint.exactly(2))
        verifier = Verifier(registry)

        expectation.record_match(hello())
        assert not verifier.all_satisfied()

        expectation.record_match(hello())
        assert verifier.all_satisfied()

        expectation.record_match(hello())
        assert not verifier.all_satisfied()

    def test_verification_is_read_only(self, registry):
        """Test verifying twice gives the same answer."""
        expectation = registry.get('/hello')
        expectation.record_match(hello())
        verifier = Verifier(registry)

        assert verifier.all_satisfied()
        assert verifier.all_satisfied()
        assert expectation.call_count == 1

    def test_results(self, registry):
        """Test per-expectation results."""
        registry.get('/a')
        registry.post('/b', constraint=CallConstraint.any_number())

        results = Verifier(registry).verify_all()

        assert [r.index for r in results] == [0, 1]
        assert [r.passed for r in results] == [False, True]
        assert results[0].describe() == '[FAIL] Expectation 0 (GET): expected exactly 1 times, called 0 times'
        assert results[0].to_dict()['expected'] == {'min': 1, 'max': 1}

    def test_render_report(self, registry):
        """Test the report lists failures in registration order."""
        registry.get('/a')
        registry.get('/b', constraint=CallConstraint.any_number())
        registry.get('/c', constraint=CallConstraint.at_least(1))

        report = Verifier(registry).render_report()

        assert report.startswith('2 of 3 expectations not satisfied:')
        assert report.index('Expectation 0') < report.index('Expectation 2')
        assert 'Expectation 1' not in report
        assert "  - Path equal to '/c'" in report

    def test_render_report_all_satisfied(self, registry):
        """Test the report when everything passes."""
        assert Verifier(registry).render_report() == 'All expectations satisfied.'

    def test_timeout_waits_for_late_calls(self, registry):
        """Test polling picks up calls made after verification starts."""
        expectation = registry.get('/hello')
        timer = threading.Timer(0.05, expectation.record_match, args=(hello(),))
        timer.start()
        try:
            assert Verifier(registry, poll_interval=0.01).all_satisfied(timeout=2.0)
        finally:
            timer.cancel()

    def test_timeout_expires(self, registry):
        """Test polling gives up after the timeout."""
        registry.get('/hello')
        assert not Verifier(registry, poll_interval=0.01).all_satisfied(timeout=0.05)


class TestConcurrentCounting:
    """Test counters under concurrent traffic."""

    def test_concurrent_dispatch_counts_exactly(self, registry):
        """Test K concurrent matching requests count exactly K."""
        calls = 200
        expectation = registry.get(
            '/hello',
            constraint=CallConstraint.exactly(calls),
            response=ResponseDescriptor.text('hi')
        )
        dispatcher = Dispatcher(registry)

        with ThreadPoolExecutor(max_workers=16) as pool:
            outcomes = list(pool.map(lambda _: dispatcher.dispatch(hello()), range(calls)))

        assert all(o.kind == 'matched' for o in outcomes)
        assert expectation.call_count == calls
        assert Verifier(registry).all_satisfied()

    def test_concurrent_sequence_hands_out_each_element_once(self, registry):
        """Test each call ordinal is handed out exactly once."""
        responses = [ResponseDescriptor.text(str(i)) for i in range(50)]
        registry.get('/hello', constraint=CallConstraint.any_number(), response=responses)
        dispatcher = Dispatcher(registry)

        with ThreadPoolExecutor(max_workers=8) as pool:
            bodies = list(pool.map(lambda _: dispatcher.dispatch(hello()).response.text(), range(50)))

        assert sorted(bodies, key=int) == [str(i) for i in range(50)]


class TestAssertExpectationsMet:
    """Test the test-framework adapter."""

    def test_passes(self, registry):
        """Test no error when satisfied."""
        registry.get('/hello', constraint=CallConstraint.any_number())
        assert_expectations_met(registry)

    def test_raises_assertion_error_with_report(self, registry):
        """Test failures raise AssertionError carrying the report."""
        registry.get('/hello')
        with pytest.raises(AssertionError, match='1 of 1 expectations not satisfied'):
            assert_expectations_met(registry)

    def test_accepts_verifier(self, registry):
        """Test a verifier can be passed directly."""
        registry.get('/hello', constraint=CallConstraint.never())
        assert_expectations_met(Verifier(registry))
