"""
Standin Mock Server Module

Expectation-driven HTTP mocking.

This module provides:
- Composable request matchers
- Request expectations with call constraints and response strategies
- Expectation registry with unmatched-request diagnostics
- Call verification
- Codec registry for request and response bodies
- Proxy forwarding
- FastAPI-based mock server
"""

from .errors import (
    StandinError,
    ConfigurationError,
    CodecNotFoundError,
    CodecError,
    DecodeError,
    EncodeError,
    UserResponseError,
    ExpectationFileError,
)
from .matcher import (
    ValueMatcher,
    RequestMatcher,
    MethodMatcher,
    PathMatcher,
    SchemeMatcher,
    QueryParamMatcher,
    HeaderMatcher,
    CookieMatcher,
    NoCookiesMatcher,
    BodyMatcher,
    RawBodyMatcher,
    RequestPredicate,
    equal_to,
    equal_to_ignoring_case,
    matches_regex,
    contains,
    starts_with,
    ends_with,
    is_in,
    anything,
    predicate,
)
from .request import RequestView, RequestCookie
from .expectation import (
    CallConstraint,
    ResponseCookie,
    ResponseDescriptor,
    StaticResponse,
    SequenceResponse,
    CallableResponse,
    ForwardResponse,
    RequestExpectation,
)
from .registry import ExpectationRegistry, RequestRequirement
from .generator import ResponseResolver, ResolvedResponse
from .verifier import Verifier, VerificationResult
from .codecs import CodecRegistry
from .proxy import ProxyForwarder, HttpProxyForwarder
from .dispatcher import Dispatcher, DispatchOutcome
from .loader import ExpectationLoader, load_expectations
from .server import MockServer, MockConfig, MockMetrics, create_mock_server

__all__ = [
    # Errors
    'StandinError',
    'ConfigurationError',
    'CodecNotFoundError',
    'CodecError',
    'DecodeError',
    'EncodeError',
    'UserResponseError',
    'ExpectationFileError',

    # Matchers
    'ValueMatcher',
    'RequestMatcher',
    'MethodMatcher',
    'PathMatcher',
    'SchemeMatcher',
    'QueryParamMatcher',
    'HeaderMatcher',
    'CookieMatcher',
    'NoCookiesMatcher',
    'BodyMatcher',
    'RawBodyMatcher',
    'RequestPredicate',
    'equal_to',
    'equal_to_ignoring_case',
    'matches_regex',
    'contains',
    'starts_with',
    'ends_with',
    'is_in',
    'anything',
    'predicate',

    # Requests and expectations
    'RequestView',
    'RequestCookie',
    'CallConstraint',
    'ResponseCookie',
    'ResponseDescriptor',
    'StaticResponse',
    'SequenceResponse',
    'CallableResponse',
    'ForwardResponse',
    'RequestExpectation',

    # Engine
    'ExpectationRegistry',
    'RequestRequirement',
    'ResponseResolver',
    'ResolvedResponse',
    'Verifier',
    'VerificationResult',
    'CodecRegistry',
    'ProxyForwarder',
    'HttpProxyForwarder',
    'Dispatcher',
    'DispatchOutcome',
    'ExpectationLoader',
    'load_expectations',

    # Server
    'MockServer',
    'MockConfig',
    'MockMetrics',
    'create_mock_server',
]
