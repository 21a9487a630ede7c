"""
Standin Expectation Loader

Declarative expectations from YAML or JSON, for configuring a standalone
mock server (CLI or admin API) without writing Python.

Example file:

    server:
      port: 8080
      log_level: info

    requirements:
      - method: ANY
        path: {regex: "/api/.*"}
        headers:
          Authorization: {starts_with: "Bearer "}

    expectations:
      - method: GET
        path: /api/hello
        headers:
          Accept: text/plain
        called: 1
        response:
          status: 200
          body: hi

      - method: POST
        path: {regex: "/api/users/\\\\d+"}
        body:
          content_type: application/json
          equals: {name: Jane}
        called: {min: 1}
        responses:
          - {status: 201, json: {id: 1}}
          - {status: 409, body: duplicate}

Value matchers accept a scalar (equality) or a mapping with exactly one of:
``equals``, ``regex``, ``contains``, ``starts_with``, ``ends_with``,
``one_of``, ``ignoring_case`` or ``any: true``.
"""

import json
from pathlib import Path
from typing import List, Dict, Any, Optional, Union

import yaml

from .errors import ExpectationFileError
from .expectation import CallConstraint, ResponseDescriptor, ResponseCookie, ForwardResponse, RequestExpectation
from .matcher import (
    ValueMatcher,
    RequestMatcher,
    PathMatcher,
    HeaderMatcher,
    QueryParamMatcher,
    CookieMatcher,
    NoCookiesMatcher,
    SchemeMatcher,
    BodyMatcher,
    RawBodyMatcher,
    EqualTo,
    EqualToIgnoringCase,
    RegexMatcher,
    Contains,
    StartsWith,
    EndsWith,
    IsIn,
    Anything,
)
from .registry import ExpectationRegistry

VALUE_MATCHER_KEYS = {
    'equals': EqualTo,
    'regex': RegexMatcher,
    'contains': Contains,
    'starts_with': StartsWith,
    'ends_with': EndsWith,
    'one_of': IsIn,
    'ignoring_case': EqualToIgnoringCase,
}


class ExpectationLoader:
    """
    Builds expectations and requirements from parsed YAML/JSON data.

    Example:
        registry = ExpectationRegistry()
        loader = ExpectationLoader(registry)
        loader.load_file('expectations.yaml')
    """

    def __init__(self, registry: ExpectationRegistry, source: str = '<data>'):
        self.registry = registry
        self.source = source

    @staticmethod
    def read_file(path: Union[str, Path]) -> Dict[str, Any]:
        """
        Parse a YAML or JSON file (JSON is valid YAML).

        Raises:
            FileNotFoundError: If the file does not exist
            ExpectationFileError: If the document is not a mapping
        """
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Expectation file not found: {file_path}")

        with open(file_path, 'r', encoding='utf-8') as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ExpectationFileError(str(file_path), f"invalid YAML: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ExpectationFileError(str(file_path), f"expected a mapping at top level, got {type(data).__name__}")
        return data

    def load_file(self, path: Union[str, Path]) -> List[RequestExpectation]:
        self.source = str(path)
        return self.load(self.read_file(path))

    def load_text(self, text: str) -> List[RequestExpectation]:
        """Load from a YAML/JSON string (used by the admin API)."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ExpectationFileError(self.source, f"invalid YAML: {e}") from e
        if data is None:
            return []
        if isinstance(data, list):
            data = {'expectations': data}
        if not isinstance(data, dict):
            raise ExpectationFileError(self.source, f"expected a mapping or list, got {type(data).__name__}")
        return self.load(data)

    def load(self, data: Dict[str, Any]) -> List[RequestExpectation]:
        """
        Register every requirement and expectation in the data.

        All entries are parsed before any is registered, so a malformed
        entry leaves the registry untouched.

        Returns:
            The registered expectations, in file order
        """
        requirements = [self._parse_requirement(i, r) for i, r in enumerate(data.get('requirements') or [])]
        expectations = [self._parse_expectation(i, e) for i, e in enumerate(data.get('expectations') or [])]

        for method, path, matchers in requirements:
            self.registry.require(method, path, matchers)
        return [self.registry.register(e) for e in expectations]

    # -- parsing ------------------------------------------------------------

    def _fail(self, where: str, message: str) -> ExpectationFileError:
        return ExpectationFileError(self.source, f"{where}: {message}")

    def _parse_requirement(self, index: int, data: Any):
        where = f"requirements[{index}]"
        if not isinstance(data, dict):
            raise self._fail(where, "must be a mapping")
        method = str(data.get('method', 'ANY'))
        path = self.value_matcher(data['path'], where) if 'path' in data else Anything()
        return method, path, self._parse_matchers(data, where)

    def _parse_expectation(self, index: int, data: Any) -> RequestExpectation:
        where = f"expectations[{index}]"
        if not isinstance(data, dict):
            raise self._fail(where, "must be a mapping")

        matchers: List[RequestMatcher] = []
        if 'path' in data:
            matchers.append(PathMatcher(self.value_matcher(data['path'], where)))
        matchers.extend(self._parse_matchers(data, where))

        if sum(k in data for k in ('response', 'responses', 'forward')) > 1:
            raise self._fail(where, "use only one of 'response', 'responses' or 'forward'")

        if 'forward' in data:
            response: Any = ForwardResponse(str(data['forward']))
        elif 'responses' in data:
            items = data['responses']
            if not isinstance(items, list) or not items:
                raise self._fail(where, "'responses' must be a non-empty list")
            response = [self._parse_response(r, f"{where}.responses[{i}]") for i, r in enumerate(items)]
        else:
            response = self._parse_response(data.get('response') or {}, f"{where}.response")

        return RequestExpectation(
            method=str(data.get('method', 'GET')),
            matchers=matchers,
            constraint=self._parse_called(data.get('called', 1), where),
            response=response
        )

    def _parse_matchers(self, data: Dict[str, Any], where: str) -> List[RequestMatcher]:
        matchers: List[RequestMatcher] = []

        if 'secure' in data:
            matchers.append(SchemeMatcher(bool(data['secure'])))

        for name, value in (data.get('headers') or {}).items():
            matchers.append(HeaderMatcher(str(name), self.value_matcher(value, f"{where}.headers.{name}")))

        for name, value in (data.get('query') or {}).items():
            values = value if isinstance(value, list) else [value]
            for v in values:
                matchers.append(QueryParamMatcher(str(name), self.value_matcher(v, f"{where}.query.{name}")))

        cookies = data.get('cookies')
        if cookies is False:
            matchers.append(NoCookiesMatcher())
        elif cookies:
            for name, value in cookies.items():
                matchers.append(self._parse_cookie(str(name), value, f"{where}.cookies.{name}"))

        if 'body' in data:
            matchers.append(self._parse_body(data['body'], f"{where}.body"))

        return matchers

    def _parse_cookie(self, name: str, value: Any, where: str) -> CookieMatcher:
        if not isinstance(value, dict) or not set(value) & set(CookieMatcher.FIELDS):
            return CookieMatcher(name, value=self.value_matcher(value, where))
        unknown = set(value) - set(CookieMatcher.FIELDS)
        if unknown:
            raise self._fail(where, f"unknown cookie fields: {', '.join(sorted(unknown))}")
        fields = {k: self.value_matcher(v, f"{where}.{k}") for k, v in value.items()}
        return CookieMatcher(name, **fields)

    def _parse_body(self, value: Any, where: str) -> RequestMatcher:
        if not isinstance(value, dict):
            return RawBodyMatcher(EqualTo(str(value).encode('utf-8')))

        if 'raw' in value:
            raw = value['raw']
            if isinstance(raw, dict):
                text_matcher = self.value_matcher(raw, where)
                return RawBodyMatcher(_BytesAsText(text_matcher))
            return RawBodyMatcher(EqualTo(str(raw).encode('utf-8')))

        content_type = value.get('content_type')
        rest = {k: v for k, v in value.items() if k != 'content_type'}
        if not rest:
            raise self._fail(where, "needs a matcher such as 'equals' or 'contains'")
        return BodyMatcher(self.value_matcher(rest, where), content_type=content_type)

    def value_matcher(self, value: Any, where: str) -> ValueMatcher:
        """Parse a scalar or single-key mapping into a value matcher."""
        if not isinstance(value, dict):
            return EqualTo(value if not isinstance(value, (int, float)) or isinstance(value, bool) else str(value))

        if value.get('any') is True and len(value) == 1:
            return Anything()

        if len(value) != 1 or next(iter(value)) not in VALUE_MATCHER_KEYS:
            raise self._fail(where, f"expected one of {', '.join(sorted(VALUE_MATCHER_KEYS))} or 'any: true', got {sorted(value)}")

        key, arg = next(iter(value.items()))
        if key == 'one_of':
            if not isinstance(arg, list):
                raise self._fail(where, "'one_of' needs a list")
            return IsIn(arg)
        if key == 'regex':
            try:
                return RegexMatcher(str(arg))
            except Exception as e:
                raise self._fail(where, f"invalid regex {arg!r}: {e}") from e
        return VALUE_MATCHER_KEYS[key](arg)

    def _parse_called(self, value: Any, where: str) -> CallConstraint:
        try:
            if value in ('any', None):
                return CallConstraint.any_number()
            if isinstance(value, int) and not isinstance(value, bool):
                return CallConstraint.exactly(value)
            if isinstance(value, dict):
                if 'at_least' in value:
                    return CallConstraint.at_least(int(value['at_least']))
                if 'at_most' in value:
                    return CallConstraint.at_most(int(value['at_most']))
                max_calls = value.get('max')
                return CallConstraint(int(value.get('min', 0)), None if max_calls is None else int(max_calls))
        except (TypeError, ValueError) as e:
            raise self._fail(f"{where}.called", str(e)) from e
        raise self._fail(f"{where}.called", f"unsupported value {value!r}")

    def _parse_response(self, data: Any, where: str) -> ResponseDescriptor:
        if not isinstance(data, dict):
            raise self._fail(where, "must be a mapping")
        if 'json' in data and 'body' in data:
            raise self._fail(where, "use only one of 'body' or 'json'")

        headers = []
        for name, value in (data.get('headers') or {}).items():
            values = value if isinstance(value, list) else [value]
            headers.extend((str(name), str(v)) for v in values)

        cookies: Dict[str, Any] = {}
        for name, value in (data.get('cookies') or {}).items():
            if isinstance(value, dict):
                cookies[str(name)] = ResponseCookie(**value)
            else:
                cookies[str(name)] = str(value)

        content_type: Optional[str] = data.get('content_type')
        body = data.get('body')
        if 'json' in data:
            body = data['json']
            if isinstance(body, str):
                body = json.dumps(body)
            content_type = content_type or 'application/json'

        return ResponseDescriptor(
            status=int(data.get('status', 200)),
            headers=headers,
            cookies=cookies,
            body=body,
            content_type=content_type,
            delay_ms=int(data.get('delay_ms', 0))
        )


class _BytesAsText(ValueMatcher):
    """Applies a text matcher to raw body bytes decoded as UTF-8."""

    def __init__(self, text_matcher: ValueMatcher):
        self.text_matcher = text_matcher

    def matches(self, value: Any) -> bool:
        if not isinstance(value, (bytes, bytearray)):
            return False
        return self.text_matcher.matches(bytes(value).decode('utf-8', errors='replace'))

    def describe(self) -> str:
        return f"as text {self.text_matcher.describe()}"


def load_expectations(path: Union[str, Path], registry: ExpectationRegistry) -> List[RequestExpectation]:
    """Convenience wrapper: load a file into a registry."""
    return ExpectationLoader(registry, str(path)).load_file(path)
