"""
Standin Request Expectations

A request expectation bundles the matchers a request must satisfy, how many
times it is expected to be called, and how to respond.

Features:
- Call count constraints (exactly, at least, at most, between)
- Static, sequenced, computed and forwarded responses
- Thread-safe call counting
- Match listeners
"""

from __future__ import annotations

import json
import logging
import threading
from typing import List, Dict, Any, Optional, Callable, Tuple, Union, Sequence
from dataclasses import dataclass, field, replace

from .matcher import RequestMatcher, MethodMatcher, ANY_METHOD, first_failure
from .request import RequestView
from .errors import UserResponseError

logger = logging.getLogger("standin.mock.expectation")


@dataclass(frozen=True)
class CallConstraint:
    """
    Inclusive range of allowed call counts.

    ``max_calls`` of None means unbounded. The default is exactly once.

    Example:
        CallConstraint.exactly(2).satisfied_by(2)    # True
        CallConstraint.at_least(1).satisfied_by(5)   # True
        CallConstraint.between(1, 3).describe()      # 'between 1 and 3 times'
    """

    min_calls: int = 1
    max_calls: Optional[int] = 1

    def __post_init__(self):
        if self.min_calls < 0:
            raise ValueError(f"Minimum call count cannot be negative: {self.min_calls}")
        if self.max_calls is not None and self.max_calls < self.min_calls:
            raise ValueError(f"Maximum call count {self.max_calls} is below minimum {self.min_calls}")

    @classmethod
    def exactly(cls, count: int) -> 'CallConstraint':
        return cls(count, count)

    @classmethod
    def at_least(cls, count: int) -> 'CallConstraint':
        return cls(count, None)

    @classmethod
    def at_most(cls, count: int) -> 'CallConstraint':
        return cls(0, count)

    @classmethod
    def between(cls, min_calls: int, max_calls: int) -> 'CallConstraint':
        return cls(min_calls, max_calls)

    @classmethod
    def any_number(cls) -> 'CallConstraint':
        return cls(0, None)

    @classmethod
    def never(cls) -> 'CallConstraint':
        return cls(0, 0)

    def satisfied_by(self, count: int) -> bool:
        if count < self.min_calls:
            return False
        return self.max_calls is None or count <= self.max_calls

    def describe(self) -> str:
        if self.max_calls is None:
            return "any number of times" if self.min_calls == 0 else f"at least {self.min_calls} times"
        if self.min_calls == self.max_calls:
            return "never" if self.min_calls == 0 else f"exactly {self.min_calls} times"
        if self.min_calls == 0:
            return f"at most {self.max_calls} times"
        return f"between {self.min_calls} and {self.max_calls} times"

    def to_dict(self) -> Dict[str, Any]:
        return {'min': self.min_calls, 'max': self.max_calls}


@dataclass(frozen=True)
class ResponseCookie:
    """A cookie set by a response."""

    value: str
    domain: Optional[str] = None
    path: Optional[str] = None
    max_age: Optional[int] = None
    secure: bool = False
    http_only: bool = False


@dataclass
class ResponseDescriptor:
    """
    Description of the response to send.

    ``body`` is either raw bytes, or any object that is encoded through the
    codec registry for ``content_type`` when the response is built.
    """

    status: int = 200
    headers: List[Tuple[str, str]] = field(default_factory=list)
    cookies: Dict[str, Union[str, ResponseCookie]] = field(default_factory=dict)
    body: Any = None
    content_type: Optional[str] = None
    delay_ms: int = 0

    def with_header(self, name: str, value: str) -> 'ResponseDescriptor':
        """Copy of this descriptor with one more header value appended."""
        return replace(self, headers=[*self.headers, (name, value)])

    def header_values(self, name: str) -> List[str]:
        lowered = name.lower()
        return [v for k, v in self.headers if k.lower() == lowered]

    def effective_content_type(self) -> Optional[str]:
        """Declared content type, falling back to a Content-Type header."""
        if self.content_type:
            return self.content_type
        values = self.header_values('Content-Type')
        return values[0] if values else None

    @classmethod
    def text(cls, body: str, status: int = 200, content_type: str = 'text/plain; charset=utf-8') -> 'ResponseDescriptor':
        return cls(status=status, body=body, content_type=content_type)

    @classmethod
    def json(cls, body: Any, status: int = 200) -> 'ResponseDescriptor':
        if isinstance(body, str):
            body = json.dumps(body)
        return cls(status=status, body=body, content_type='application/json')

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.body, (bytes, bytearray)):
            body = f"<{len(self.body)} bytes>"
        else:
            try:
                json.dumps(self.body)
                body = self.body
            except (TypeError, ValueError):
                body = repr(self.body)
        return {
            'status': self.status,
            'headers': [[k, v] for k, v in self.headers],
            'cookies': sorted(self.cookies),
            'content_type': self.effective_content_type(),
            'body': body,
            'delay_ms': self.delay_ms,
        }


# ---------------------------------------------------------------------------
# Response strategies
# ---------------------------------------------------------------------------

class ResponseStrategy:
    """Produces the response descriptor for the N-th matching call (0-based)."""

    def select(self, request: RequestView, ordinal: int) -> ResponseDescriptor:
        raise NotImplementedError

    def describe(self) -> str:
        return self.__class__.__name__


class StaticResponse(ResponseStrategy):

    def __init__(self, response: ResponseDescriptor):
        self.response = response

    def select(self, request: RequestView, ordinal: int) -> ResponseDescriptor:
        return self.response

    def describe(self) -> str:
        return f"static {self.response.status}"


class SequenceResponse(ResponseStrategy):
    """
    Returns one response per call in order, repeating the last one once the
    sequence is exhausted.
    """

    def __init__(self, responses: Sequence[ResponseDescriptor]):
        if not responses:
            raise ValueError("A response sequence needs at least one response")
        self.responses = list(responses)

    def select(self, request: RequestView, ordinal: int) -> ResponseDescriptor:
        index = min(ordinal, len(self.responses) - 1)
        return self.responses[index]

    def describe(self) -> str:
        return f"sequence of {len(self.responses)}"


ResponseFunctionResult = Union[ResponseDescriptor, bytes, str, Tuple[int, Any]]


class CallableResponse(ResponseStrategy):
    """
    Computes the response with a caller-supplied function.

    The function receives the request view and may return a
    ResponseDescriptor, a ``bytes``/``str`` body (status 200), or a
    ``(status, body)`` tuple. Failures are wrapped in UserResponseError.
    """

    def __init__(self, fn: Callable[[RequestView], ResponseFunctionResult], description: Optional[str] = None):
        self.fn = fn
        self.description = description or getattr(fn, '__name__', 'response function')

    def select(self, request: RequestView, ordinal: int) -> ResponseDescriptor:
        try:
            result = self.fn(request)
        except Exception as e:
            raise UserResponseError(self.description, e) from e
        return self._coerce(result)

    def _coerce(self, result: Any) -> ResponseDescriptor:
        if isinstance(result, ResponseDescriptor):
            return result
        if isinstance(result, (bytes, bytearray)):
            return ResponseDescriptor(body=bytes(result), content_type='application/octet-stream')
        if isinstance(result, str):
            return ResponseDescriptor.text(result)
        if isinstance(result, tuple) and len(result) == 2 and isinstance(result[0], int):
            status, body = result
            coerced = self._coerce(body) if body is not None else ResponseDescriptor()
            return replace(coerced, status=status)
        raise UserResponseError(
            self.description,
            TypeError(f"response function returned {type(result).__name__}, expected ResponseDescriptor")
        )

    def describe(self) -> str:
        return f"computed by {self.description}"


class ForwardResponse(ResponseStrategy):
    """
    Marks an expectation whose responses come from an upstream server.

    The dispatcher hands the request to its proxy forwarder with this
    target URL; ``select`` is never called for forwarded expectations.
    """

    def __init__(self, target_url: str):
        self.target_url = target_url

    def select(self, request: RequestView, ordinal: int) -> ResponseDescriptor:
        raise TypeError("Forwarded responses are produced by the proxy forwarder")

    def describe(self) -> str:
        return f"forward to {self.target_url}"


ResponseLike = Union[ResponseStrategy, ResponseDescriptor, Sequence[ResponseDescriptor], Callable[[RequestView], Any], None]


def as_response_strategy(response: ResponseLike) -> ResponseStrategy:
    """
    Coerce a response argument into a strategy.

    - None: empty 200 response
    - ResponseDescriptor: static response
    - list/tuple of descriptors: sequenced response
    - callable: computed response
    """
    if response is None:
        return StaticResponse(ResponseDescriptor())
    if isinstance(response, ResponseStrategy):
        return response
    if isinstance(response, ResponseDescriptor):
        return StaticResponse(response)
    if isinstance(response, (list, tuple)):
        return SequenceResponse(list(response))
    if callable(response):
        return CallableResponse(response)
    raise TypeError(f"Unsupported response type: {type(response).__name__}")


# ---------------------------------------------------------------------------
# Expectation
# ---------------------------------------------------------------------------

class RequestExpectation:
    """
    A registered rule: matchers, a call constraint and a response strategy.

    The matcher list is fixed at construction. The only state that changes
    during traffic is the call counter, which only ever increases.

    Example:
        expectation = RequestExpectation(
            'GET',
            [PathMatcher('/hello'), HeaderMatcher('Accept', 'text/plain')],
            constraint=CallConstraint.exactly(1),
            response=ResponseDescriptor.text('hi')
        )
        if expectation.matches(view):
            ordinal = expectation.record_match(view)
            descriptor = expectation.build_response(view, ordinal)
    """

    def __init__(
        self,
        method: str,
        matchers: Optional[Sequence[RequestMatcher]] = None,
        constraint: Optional[CallConstraint] = None,
        response: ResponseLike = None,
        listeners: Optional[Sequence[Callable[[RequestView], None]]] = None
    ):
        self.method = method.upper()
        self.method_matcher = MethodMatcher(self.method)
        self.matchers: Tuple[RequestMatcher, ...] = tuple(matchers or ())
        self.constraint = constraint or CallConstraint()
        self.strategy = as_response_strategy(response)
        self.listeners: Tuple[Callable[[RequestView], None], ...] = tuple(listeners or ())
        self.index = -1  # assigned by the registry

        self._count = 0
        self._lock = threading.Lock()

    @property
    def all_matchers(self) -> Tuple[RequestMatcher, ...]:
        """Method matcher followed by the configured matchers."""
        return (self.method_matcher, *self.matchers)

    @property
    def call_count(self) -> int:
        with self._lock:
            return self._count

    @property
    def forward_target(self) -> Optional[str]:
        return self.strategy.target_url if isinstance(self.strategy, ForwardResponse) else None

    @property
    def is_any_method(self) -> bool:
        return self.method == ANY_METHOD

    def matches(self, request: RequestView) -> bool:
        """True if every matcher accepts the request."""
        return first_failure(self.all_matchers, request) is None

    def first_failure(self, request: RequestView) -> Optional[RequestMatcher]:
        return first_failure(self.all_matchers, request)

    def record_match(self, request: Optional[RequestView] = None) -> int:
        """
        Count a matching call.

        Returns the call ordinal before the increment (0 for the first call),
        which selects the element of a response sequence. Listeners run after
        the lock is released.
        """
        with self._lock:
            ordinal = self._count
            self._count += 1

        if request is not None:
            for listener in self.listeners:
                try:
                    listener(request)
                except Exception:
                    logger.exception(f"Match listener failed for expectation {self.index}")
        return ordinal

    def build_response(self, request: RequestView, ordinal: Optional[int] = None) -> ResponseDescriptor:
        """
        Produce the response descriptor for a call.

        Args:
            request: The matched request
            ordinal: Call ordinal returned by record_match; defaults to the
                current counter value

        Raises:
            UserResponseError: If a response function fails
        """
        if ordinal is None:
            ordinal = self.call_count
        return self.strategy.select(request, ordinal)

    def verify(self) -> bool:
        return self.constraint.satisfied_by(self.call_count)

    def reset_count(self):
        with self._lock:
            self._count = 0

    def describe_matchers(self) -> List[str]:
        return [m.describe() for m in self.all_matchers]

    def describe(self) -> str:
        return f"{', '.join(self.describe_matchers())}; called {self.constraint.describe()}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'method': self.method,
            'matchers': self.describe_matchers(),
            'constraint': self.constraint.to_dict(),
            'response': self.strategy.describe(),
            'call_count': self.call_count,
        }

    def __repr__(self) -> str:
        return f"<RequestExpectation #{self.index} {self.describe()}>"
