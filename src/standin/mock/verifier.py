"""
Standin Call Verifier

Post-hoc comparison of each expectation's call count against its
constraint. Verification is read-only: it never resets counters, and a
failure is returned as data rather than raised.
"""

import time
import logging
from typing import List, Dict, Any
from dataclasses import dataclass, field

from .expectation import CallConstraint
from .registry import ExpectationRegistry

logger = logging.getLogger("standin.mock.verifier")


@dataclass
class VerificationResult:
    """Outcome of verifying one expectation."""

    index: int
    method: str
    constraint: CallConstraint
    actual: int
    passed: bool
    matchers: List[str] = field(default_factory=list)

    def describe(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        return (
            f"[{status}] Expectation {self.index} ({self.method}): "
            f"expected {self.constraint.describe()}, called {self.actual} times"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'method': self.method,
            'expected': self.constraint.to_dict(),
            'expected_description': self.constraint.describe(),
            'actual': self.actual,
            'passed': self.passed,
            'matchers': list(self.matchers),
        }


class Verifier:
    """
    Evaluates call constraints across every registered expectation.

    Example:
        verifier = Verifier(registry)
        if not verifier.all_satisfied(timeout=1.0):
            print(verifier.render_report())
    """

    def __init__(self, registry: ExpectationRegistry, poll_interval: float = 0.05):
        self.registry = registry
        self.poll_interval = poll_interval

    def verify_all(self) -> List[VerificationResult]:
        """Verify every expectation, in registration order."""
        results = []
        for expectation in self.registry.expectations:
            actual = expectation.call_count
            results.append(VerificationResult(
                index=expectation.index,
                method=expectation.method,
                constraint=expectation.constraint,
                actual=actual,
                passed=expectation.constraint.satisfied_by(actual),
                matchers=expectation.describe_matchers()
            ))
        return results

    def failures(self) -> List[VerificationResult]:
        return [r for r in self.verify_all() if not r.passed]

    def all_satisfied(self, timeout: float = 0.0) -> bool:
        """
        True if every expectation's constraint is satisfied.

        With a timeout, keep polling until satisfied or the timeout elapses,
        for traffic that is still settling when verification starts.

        Args:
            timeout: Seconds to wait for the constraints to be met
        """
        deadline = time.monotonic() + timeout
        while True:
            failed = self.failures()
            if not failed:
                return True
            if time.monotonic() >= deadline:
                for result in failed:
                    logger.error(f"Call count mismatch -> {result.describe()}")
                return False
            time.sleep(self.poll_interval)

    def render_report(self) -> str:
        """Human-readable report of failed expectations, in registration order."""
        failed = self.failures()
        if not failed:
            return "All expectations satisfied."

        lines = [f"{len(failed)} of {len(self.registry)} expectations not satisfied:", ""]
        for result in failed:
            lines.append(result.describe())
            lines.extend(f"  - {m}" for m in result.matchers)
            lines.append("")
        return "\n".join(lines).rstrip()
