"""
Standin Expectation Registry

Ordered store of request expectations and the resolution algorithm that
picks, for each inbound request, the expectation it satisfies.

Resolution is declaration-ordered: the first registered expectation whose
matchers all pass wins. There is no specificity scoring, so precedence is
controlled by the order expectations are registered in.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Dict, Any, Optional, Sequence, Callable

from .codecs import CodecRegistry
from .expectation import (
    RequestExpectation,
    CallConstraint,
    ResponseLike,
)
from .matcher import (
    RequestMatcher,
    MethodMatcher,
    PathMatcher,
    MatcherLike,
    ANY_METHOD,
    first_failure,
)
from .request import RequestView
from ..common import render_body

logger = logging.getLogger("standin.mock.registry")

CHECKMARK = "✓"


class RequestRequirement:
    """
    A global requirement applied to every request in its scope.

    The scope is a method and path matcher pair. A request in scope must
    also pass all of the requirement's matchers, otherwise it is treated as
    unmatched regardless of the registered expectations.

    Example:
        registry.require('ANY', re.compile(r'/api/.*'), [HeaderMatcher('Authorization')])
    """

    def __init__(self, method: str, path: MatcherLike, matchers: Sequence[RequestMatcher]):
        self.method_matcher = MethodMatcher(method)
        self.path_matcher = PathMatcher(path)
        self.matchers = tuple(matchers)

    def applies_to(self, request: RequestView) -> bool:
        return self.method_matcher.matches(request) and self.path_matcher.matches(request)

    def check(self, request: RequestView) -> bool:
        return first_failure(self.matchers, request) is None

    def describe(self) -> str:
        return f"{self.method_matcher.describe()} & {self.path_matcher.describe()}"


class ExpectationRegistry:
    """
    Per-method ordered expectations for one server lifecycle.

    Registration and reset happen while no traffic is flowing; resolution
    may run concurrently from many request handlers since it only reads.
    Expectations registered for ``ANY`` take part in every method's
    resolution at their global registration position.

    Example:
        registry = ExpectationRegistry()
        registry.get('/hello', [HeaderMatcher('Accept', 'text/plain')],
                     constraint=CallConstraint.exactly(1),
                     response=ResponseDescriptor.text('hi'))

        expectation = registry.resolve(view)
        if expectation is None:
            print(registry.describe_unmatched(view))
    """

    def __init__(self, codecs: Optional[CodecRegistry] = None):
        self.codecs = codecs or CodecRegistry.with_defaults()
        self._by_method: Dict[str, List[RequestExpectation]] = {}
        self._ordered: List[RequestExpectation] = []
        self._requirements: List[RequestRequirement] = []
        self._unmatched: List[Dict[str, Any]] = []
        self._unmatched_lock = threading.Lock()
        self.unmatched_limit = 100

    # -- registration -------------------------------------------------------

    def register(self, expectation: RequestExpectation) -> RequestExpectation:
        """Append an expectation. Duplicates are legal and tried in order."""
        expectation.index = len(self._ordered)
        self._ordered.append(expectation)
        self._by_method.setdefault(expectation.method, []).append(expectation)
        logger.debug(f"Registered expectation #{expectation.index}: {expectation.describe()}")
        return expectation

    def register_expectation(
        self,
        method: str,
        matchers: Optional[Sequence[RequestMatcher]] = None,
        constraint: Optional[CallConstraint] = None,
        response: ResponseLike = None,
        listeners: Optional[Sequence[Callable[[RequestView], None]]] = None
    ) -> RequestExpectation:
        """
        Create and register an expectation.

        Args:
            method: HTTP method, or ``ANY``
            matchers: Request matchers, all of which must pass
            constraint: Expected call count (exactly once by default)
            response: Descriptor, list of descriptors, callable or strategy
            listeners: Callables invoked with each matched request

        Returns:
            The registered expectation, usable as a handle for verification
        """
        return self.register(RequestExpectation(method, matchers, constraint, response, listeners))

    def _verb(self, method: str, path: MatcherLike, matchers, kwargs) -> RequestExpectation:
        all_matchers: List[RequestMatcher] = []
        if path is not None:
            all_matchers.append(PathMatcher(path))
        all_matchers.extend(matchers or ())
        return self.register_expectation(method, all_matchers, **kwargs)

    def get(self, path: MatcherLike = None, matchers: Optional[Sequence[RequestMatcher]] = None, **kwargs) -> RequestExpectation:
        return self._verb('GET', path, matchers, kwargs)

    def head(self, path: MatcherLike = None, matchers: Optional[Sequence[RequestMatcher]] = None, **kwargs) -> RequestExpectation:
        return self._verb('HEAD', path, matchers, kwargs)

    def post(self, path: MatcherLike = None, matchers: Optional[Sequence[RequestMatcher]] = None, **kwargs) -> RequestExpectation:
        return self._verb('POST', path, matchers, kwargs)

    def put(self, path: MatcherLike = None, matchers: Optional[Sequence[RequestMatcher]] = None, **kwargs) -> RequestExpectation:
        return self._verb('PUT', path, matchers, kwargs)

    def patch(self, path: MatcherLike = None, matchers: Optional[Sequence[RequestMatcher]] = None, **kwargs) -> RequestExpectation:
        return self._verb('PATCH', path, matchers, kwargs)

    def delete(self, path: MatcherLike = None, matchers: Optional[Sequence[RequestMatcher]] = None, **kwargs) -> RequestExpectation:
        return self._verb('DELETE', path, matchers, kwargs)

    def options(self, path: MatcherLike = None, matchers: Optional[Sequence[RequestMatcher]] = None, **kwargs) -> RequestExpectation:
        return self._verb('OPTIONS', path, matchers, kwargs)

    def any(self, path: MatcherLike = None, matchers: Optional[Sequence[RequestMatcher]] = None, **kwargs) -> RequestExpectation:
        return self._verb(ANY_METHOD, path, matchers, kwargs)

    def require(self, method: str, path: MatcherLike, matchers: Sequence[RequestMatcher]) -> RequestRequirement:
        """Add a global requirement (see RequestRequirement)."""
        requirement = RequestRequirement(method, path, matchers)
        self._requirements.append(requirement)
        return requirement

    # -- resolution ---------------------------------------------------------

    @property
    def expectations(self) -> List[RequestExpectation]:
        """All expectations in registration order."""
        return list(self._ordered)

    @property
    def requirements(self) -> List[RequestRequirement]:
        return list(self._requirements)

    def candidates(self, method: str) -> List[RequestExpectation]:
        """Expectations that can serve a method, in registration order."""
        specific = self._by_method.get(method.upper(), [])
        wildcard = self._by_method.get(ANY_METHOD, [])
        if not wildcard:
            return specific
        if not specific:
            return wildcard
        return sorted(specific + wildcard, key=lambda e: e.index)

    def check_requirements(self, request: RequestView) -> bool:
        """True unless an applicable global requirement rejects the request."""
        return all(r.check(request) for r in self._requirements if r.applies_to(request))

    def resolve(self, request: RequestView) -> Optional[RequestExpectation]:
        """
        Find the first registered expectation matching the request.

        Returns None when no expectation matches or a global requirement
        rejects the request.
        """
        if request.codecs is None:
            request.codecs = self.codecs

        if not self.check_requirements(request):
            return None

        for expectation in self.candidates(request.method):
            if expectation.matches(request):
                return expectation
        return None

    # -- unmatched diagnostics ----------------------------------------------

    def record_unmatched(self, request: RequestView) -> None:
        """Keep an unmatched request for later introspection (bounded FIFO)."""
        with self._unmatched_lock:
            if self.unmatched_limit > 0 and len(self._unmatched) >= self.unmatched_limit:
                self._unmatched.pop(0)
            self._unmatched.append(request.to_dict())

    @property
    def unmatched_requests(self) -> List[Dict[str, Any]]:
        with self._unmatched_lock:
            return list(self._unmatched)

    def clear_unmatched(self) -> int:
        with self._unmatched_lock:
            count = len(self._unmatched)
            self._unmatched.clear()
            return count

    def describe_unmatched(self, request: RequestView) -> str:
        """
        Render a report of why a request matched nothing.

        Lists the request, each global requirement, and every registered
        expectation with each matcher marked as passed (✓) or failed (X),
        naming the first failing matcher.
        """
        if request.codecs is None:
            request.codecs = self.codecs

        out = ["# Unmatched Request", "", request.summary()]

        if request.headers:
            out.append("Headers:")
            out.extend(f" - {name}: {value}" for name, value in request.headers)

        if request.cookies:
            out.append("Cookies:")
            out.extend(
                f" - {name} ({c.domain}, {c.path}): {c.value}"
                for name, c in request.cookies.items()
            )

        if request.content_type:
            out.append(f"Content-Type: {request.content_type}")

        if request.body:
            out.append("Content:")
            out.append(f"  {render_body(request.body, request.content_type)}")

        if self._requirements:
            out.extend(["", "# Requirements", ""])
            for i, requirement in enumerate(self._requirements):
                out.append(f"Requirement {i} ({requirement.describe()}):")
                applies = requirement.applies_to(request)
                for matcher in requirement.matchers:
                    if not applies:
                        out.append(f"  - {matcher.describe()}")
                    elif matcher.matches(request):
                        out.append(f"  {CHECKMARK} {matcher.describe()}")
                    else:
                        out.append(f"  X {matcher.describe()}")
                out.append("")

        out.extend(["", "# Expectations", ""])
        if not self._ordered:
            out.append("(no expectations registered)")

        for expectation in self._ordered:
            matchers = expectation.all_matchers
            failed = 0
            first_failed: Optional[RequestMatcher] = None
            out.append(f"Expectation {expectation.index} ({len(matchers)} matchers):")
            for matcher in matchers:
                if matcher.matches(request):
                    out.append(f"  {CHECKMARK} {matcher.describe()}")
                else:
                    out.append(f"  X {matcher.describe()}")
                    failed += 1
                    first_failed = first_failed or matcher
            out.append(f"  ({len(matchers)} matchers: {len(matchers) - failed} matched, {failed} failed)")
            if first_failed is not None:
                out.append(f"  first failure: {first_failed.describe()}")
            out.append("")

        return "\n".join(out).rstrip() + "\n"

    # -- lifecycle ----------------------------------------------------------

    def reset(self) -> None:
        """Remove all expectations, requirements and recorded unmatched requests."""
        count = len(self._ordered)
        self._by_method.clear()
        self._ordered.clear()
        self._requirements.clear()
        self.clear_unmatched()
        logger.debug(f"Registry reset ({count} expectations removed)")

    def reset_counts(self) -> None:
        """Zero every call counter but keep the expectations."""
        for expectation in self._ordered:
            expectation.reset_count()

    def __len__(self) -> int:
        return len(self._ordered)
