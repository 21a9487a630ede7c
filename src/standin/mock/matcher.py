"""
Standin Request Matchers

Composable predicates over a single attribute of an inbound request.

Two layers:
- Value matchers test one extracted value (a path, a header value, a decoded
  body). Plain values, compiled regexes and callables are coerced with
  ``as_value_matcher``.
- Request matchers extract an attribute from a ``RequestView`` and apply a
  value matcher to it. An expectation ANDs its request matchers together.

Matchers are pure: they never mutate the request and never raise. A missing
attribute or an undecodable body evaluates to False.

Example:
    matchers = [
        MethodMatcher('GET'),
        PathMatcher(re.compile(r'/users/\\d+')),
        HeaderMatcher('Accept', contains('json')),
        QueryParamMatcher('active', 'true'),
    ]
    all(m.matches(view) for m in matchers)
"""

import logging
import re
from typing import Any, Optional, Callable, Iterable, Union, Pattern

from .request import RequestView

logger = logging.getLogger("standin.mock.matcher")

ANY_METHOD = 'ANY'

HTTP_METHODS = ('GET', 'HEAD', 'POST', 'PUT', 'DELETE', 'PATCH', 'OPTIONS', 'TRACE')


# ---------------------------------------------------------------------------
# Value matchers
# ---------------------------------------------------------------------------

class ValueMatcher:
    """Predicate over a single value with a readable description."""

    def matches(self, value: Any) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.describe()}>"


class EqualTo(ValueMatcher):

    def __init__(self, expected: Any):
        self.expected = expected

    def matches(self, value: Any) -> bool:
        return value == self.expected

    def describe(self) -> str:
        return f"equal to {self.expected!r}"


class EqualToIgnoringCase(ValueMatcher):

    def __init__(self, expected: str):
        self.expected = expected

    def matches(self, value: Any) -> bool:
        return isinstance(value, str) and value.lower() == self.expected.lower()

    def describe(self) -> str:
        return f"equal to {self.expected!r} ignoring case"


class RegexMatcher(ValueMatcher):
    """Full match of a regular expression against a string value."""

    def __init__(self, pattern: Union[str, Pattern]):
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern

    def matches(self, value: Any) -> bool:
        return isinstance(value, str) and self.pattern.fullmatch(value) is not None

    def describe(self) -> str:
        return f"matching /{self.pattern.pattern}/"


class Contains(ValueMatcher):

    def __init__(self, fragment: Any):
        self.fragment = fragment

    def matches(self, value: Any) -> bool:
        try:
            return self.fragment in value
        except TypeError:
            return False

    def describe(self) -> str:
        return f"containing {self.fragment!r}"


class StartsWith(ValueMatcher):

    def __init__(self, prefix: str):
        self.prefix = prefix

    def matches(self, value: Any) -> bool:
        return isinstance(value, str) and value.startswith(self.prefix)

    def describe(self) -> str:
        return f"starting with {self.prefix!r}"


class EndsWith(ValueMatcher):

    def __init__(self, suffix: str):
        self.suffix = suffix

    def matches(self, value: Any) -> bool:
        return isinstance(value, str) and value.endswith(self.suffix)

    def describe(self) -> str:
        return f"ending with {self.suffix!r}"


class IsIn(ValueMatcher):

    def __init__(self, options: Iterable[Any]):
        self.options = list(options)

    def matches(self, value: Any) -> bool:
        return value in self.options

    def describe(self) -> str:
        return f"one of {self.options!r}"


class Anything(ValueMatcher):

    def matches(self, value: Any) -> bool:
        return True

    def describe(self) -> str:
        return "anything"


class Predicate(ValueMatcher):
    """
    Wraps a caller-supplied function.

    A function that raises is treated as a non-match and logged at debug
    level, so a sloppy predicate cannot break resolution.
    """

    def __init__(self, fn: Callable[[Any], bool], description: Optional[str] = None):
        self.fn = fn
        self.description = description or getattr(fn, '__name__', 'predicate')

    def matches(self, value: Any) -> bool:
        try:
            return bool(self.fn(value))
        except Exception as e:
            logger.debug(f"Predicate {self.description} raised {e!r}; treating as no match")
            return False

    def describe(self) -> str:
        return f"satisfying {self.description}"


MatcherLike = Union[ValueMatcher, Pattern, Callable[[Any], bool], Any]


def as_value_matcher(value: MatcherLike) -> ValueMatcher:
    """
    Coerce a plain value into a value matcher.

    - ValueMatcher instances are returned unchanged
    - compiled regexes become RegexMatcher
    - callables become Predicate
    - everything else becomes EqualTo
    """
    if isinstance(value, ValueMatcher):
        return value
    if isinstance(value, re.Pattern):
        return RegexMatcher(value)
    if callable(value) and not isinstance(value, type):
        return Predicate(value)
    return EqualTo(value)


def equal_to(expected: Any) -> ValueMatcher:
    return EqualTo(expected)


def equal_to_ignoring_case(expected: str) -> ValueMatcher:
    return EqualToIgnoringCase(expected)


def matches_regex(pattern: Union[str, Pattern]) -> ValueMatcher:
    return RegexMatcher(pattern)


def contains(fragment: Any) -> ValueMatcher:
    return Contains(fragment)


def starts_with(prefix: str) -> ValueMatcher:
    return StartsWith(prefix)


def ends_with(suffix: str) -> ValueMatcher:
    return EndsWith(suffix)


def is_in(*options: Any) -> ValueMatcher:
    return IsIn(options)


def anything() -> ValueMatcher:
    return Anything()


def predicate(fn: Callable[[Any], bool], description: Optional[str] = None) -> ValueMatcher:
    return Predicate(fn, description)


# ---------------------------------------------------------------------------
# Request matchers
# ---------------------------------------------------------------------------

class RequestMatcher:
    """Predicate over an inbound request with a readable description."""

    def matches(self, request: RequestView) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.describe()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.describe()}>"


class MethodMatcher(RequestMatcher):
    """
    Matches the HTTP method.

    Accepts a single method, several methods, or ``ANY``.
    """

    def __init__(self, *methods: str):
        names = {m.upper() for m in methods} or {ANY_METHOD}
        self.methods = frozenset(HTTP_METHODS) if ANY_METHOD in names else frozenset(names)
        self.any = ANY_METHOD in names

    def matches(self, request: RequestView) -> bool:
        return self.any or request.method in self.methods

    def describe(self) -> str:
        if self.any:
            return "HTTP method is any"
        return f"HTTP method is {' or '.join(sorted(self.methods))}"


class PathMatcher(RequestMatcher):

    def __init__(self, path: MatcherLike):
        self.value_matcher = as_value_matcher(path)

    def matches(self, request: RequestView) -> bool:
        return self.value_matcher.matches(request.path)

    def describe(self) -> str:
        return f"Path {self.value_matcher.describe()}"


class SchemeMatcher(RequestMatcher):

    def __init__(self, secure: bool = True):
        self.secure = secure

    def matches(self, request: RequestView) -> bool:
        return request.secure == self.secure

    def describe(self) -> str:
        return "Scheme is https" if self.secure else "Scheme is http"


class QueryParamMatcher(RequestMatcher):
    """
    Matches a query parameter by name.

    The parameter must be present and at least one of its values must match.
    Register several QueryParamMatchers for the same name to require more
    than one value.
    """

    def __init__(self, name: str, value: MatcherLike = None):
        self.name = name
        self.value_matcher = Anything() if value is None else as_value_matcher(value)

    def matches(self, request: RequestView) -> bool:
        values = request.query_values(self.name)
        return any(self.value_matcher.matches(v) for v in values)

    def describe(self) -> str:
        return f"Query param {self.name!r} {self.value_matcher.describe()}"


class HeaderMatcher(RequestMatcher):
    """Matches a header by case-insensitive name; any value may match."""

    def __init__(self, name: str, value: MatcherLike = None):
        self.name = name
        self.value_matcher = Anything() if value is None else as_value_matcher(value)

    def matches(self, request: RequestView) -> bool:
        values = request.header_values(self.name)
        return any(self.value_matcher.matches(v) for v in values)

    def describe(self) -> str:
        return f"Header {self.name!r} {self.value_matcher.describe()}"


class CookieMatcher(RequestMatcher):
    """
    Matches a request cookie by name and, optionally, its attributes.

    Only attributes given a matcher are checked. An attribute the request
    cookie does not carry (None) fails its matcher.
    """

    FIELDS = ('value', 'domain', 'path', 'max_age', 'http_only', 'secure')

    def __init__(
        self,
        name: str,
        value: MatcherLike = None,
        domain: MatcherLike = None,
        path: MatcherLike = None,
        max_age: MatcherLike = None,
        http_only: Optional[bool] = None,
        secure: Optional[bool] = None
    ):
        self.name = name
        given = {
            'value': value,
            'domain': domain,
            'path': path,
            'max_age': max_age,
            'http_only': http_only,
            'secure': secure,
        }
        self.field_matchers = {k: as_value_matcher(v) for k, v in given.items() if v is not None}

    def matches(self, request: RequestView) -> bool:
        cookie = request.cookie(self.name)
        if cookie is None:
            return False
        for field_name, matcher in self.field_matchers.items():
            actual = getattr(cookie, field_name)
            if actual is None or not matcher.matches(actual):
                return False
        return True

    def describe(self) -> str:
        if not self.field_matchers:
            return f"Cookie {self.name!r} is present"
        parts = ', '.join(f"{k} {m.describe()}" for k, m in self.field_matchers.items())
        return f"Cookie {self.name!r} with {parts}"


class NoCookiesMatcher(RequestMatcher):

    def matches(self, request: RequestView) -> bool:
        return not request.cookies

    def describe(self) -> str:
        return "No cookies"


class BodyMatcher(RequestMatcher):
    """
    Matches the decoded request body.

    The body is decoded with the codec registry attached to the request
    view. If the content type does not match, no decoder is registered, or
    decoding fails, the matcher evaluates to False.
    """

    def __init__(self, body: MatcherLike, content_type: MatcherLike = None):
        self.body_matcher = as_value_matcher(body)
        if isinstance(content_type, str):
            content_type = StartsWith(content_type.split(';', 1)[0].strip().lower())
        self.content_type_matcher = Anything() if content_type is None else as_value_matcher(content_type)

    def matches(self, request: RequestView) -> bool:
        declared = (request.content_type or '').lower()
        if not self.content_type_matcher.matches(declared):
            return False
        if not request.has_decoded_body():
            return False
        return self.body_matcher.matches(request.decoded_body())

    def describe(self) -> str:
        return f"Body (content type {self.content_type_matcher.describe()}) {self.body_matcher.describe()}"


class RawBodyMatcher(RequestMatcher):
    """Matches the raw body bytes without decoding."""

    def __init__(self, body: MatcherLike):
        self.body_matcher = as_value_matcher(body)

    def matches(self, request: RequestView) -> bool:
        return self.body_matcher.matches(request.body)

    def describe(self) -> str:
        return f"Raw body {self.body_matcher.describe()}"


class RequestPredicate(RequestMatcher):
    """Arbitrary caller-supplied predicate over the whole request."""

    def __init__(self, fn: Callable[[RequestView], bool], description: Optional[str] = None):
        self.fn = fn
        self.description = description or getattr(fn, '__name__', 'custom matcher')

    def matches(self, request: RequestView) -> bool:
        try:
            return bool(self.fn(request))
        except Exception as e:
            logger.debug(f"Request predicate {self.description} raised {e!r}; treating as no match")
            return False

    def describe(self) -> str:
        return f"Request satisfying {self.description}"


def first_failure(matchers: Iterable[RequestMatcher], request: RequestView) -> Optional[RequestMatcher]:
    """Return the first matcher that rejects the request, or None if all pass."""
    for matcher in matchers:
        if not matcher.matches(request):
            return matcher
    return None
