"""
Standin Dispatcher

The single entry point the transport calls for each inbound request:
resolve an expectation, count the call, build the response, or explain why
nothing matched.

Outcome kinds:
- matched: an expectation matched and produced a response (a failing
  response function yields a 500 response with the cause attached)
- unmatched: nothing matched; a diagnostic report is attached
- proxied: the response came from the upstream forwarder
- error: the mock is misconfigured (e.g. no encoder for a content type),
  or the upstream could not be reached; a diagnostic is attached
"""

import logging
from typing import Optional
from dataclasses import dataclass

import requests

from .errors import ConfigurationError, UserResponseError
from .expectation import RequestExpectation
from .generator import ResponseResolver, ResolvedResponse
from .proxy import ProxyForwarder, HttpProxyForwarder
from .registry import ExpectationRegistry
from .request import RequestView

logger = logging.getLogger("standin.mock.dispatch")

MATCHED = 'matched'
UNMATCHED = 'unmatched'
PROXIED = 'proxied'
ERROR = 'error'

PROXY_MODES = ('off', 'unmatched', 'all')


@dataclass
class DispatchOutcome:
    """Result of dispatching one request."""

    kind: str
    response: Optional[ResolvedResponse] = None
    expectation: Optional[RequestExpectation] = None
    diagnostic: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def matched(self) -> bool:
        return self.expectation is not None


class Dispatcher:
    """
    Connects the transport to the expectation engine.

    No lock is held while a response function or the upstream runs, so
    slow callbacks only delay their own request.

    Example:
        dispatcher = Dispatcher(registry)
        outcome = dispatcher.dispatch(view)
        if outcome.kind == 'unmatched':
            print(outcome.diagnostic)
    """

    def __init__(
        self,
        registry: ExpectationRegistry,
        forwarder: Optional[ProxyForwarder] = None,
        proxy_mode: str = 'off'
    ):
        if proxy_mode not in PROXY_MODES:
            raise ValueError(f"Unknown proxy mode {proxy_mode!r}; expected one of {', '.join(PROXY_MODES)}")
        if proxy_mode != 'off' and forwarder is None:
            raise ValueError(f"Proxy mode {proxy_mode!r} needs a forwarder")

        self.registry = registry
        # Targetless default serves expectations that carry their own forward target
        self.forwarder = forwarder if forwarder is not None else HttpProxyForwarder()
        self.proxy_mode = proxy_mode
        self.resolver = ResponseResolver(registry.codecs)

    def dispatch(self, request: RequestView) -> DispatchOutcome:
        """
        Handle one request.

        Never raises for configuration or user-code failures; those are
        reported through the outcome.
        """
        if request.codecs is None:
            request.codecs = self.registry.codecs

        expectation = self.registry.resolve(request)

        if expectation is None:
            if self.proxy_mode != 'off':
                return self._forward(request, None, None)
            return self._unmatched(request)

        ordinal = expectation.record_match(request)
        logger.debug(f"Matched expectation #{expectation.index} (call {ordinal + 1}) for {request.summary()}")

        if self.proxy_mode == 'all' or expectation.forward_target:
            return self._forward(request, expectation, expectation.forward_target)

        try:
            response = self.resolver.resolve(expectation, request, ordinal)
        except UserResponseError as e:
            logger.error(f"Error-Response: Internal Server Error (500): {e}", exc_info=e.cause)
            response = ResolvedResponse(
                status=500,
                headers=[('Content-Type', 'text/plain; charset=utf-8')],
                body=str(e).encode('utf-8'),
                content_type='text/plain; charset=utf-8'
            )
            return DispatchOutcome(MATCHED, response, expectation, error=e)
        except ConfigurationError as e:
            diagnostic = f"Configuration error for expectation {expectation.index}: {e}"
            logger.error(diagnostic)
            return DispatchOutcome(ERROR, self._error_response(500, diagnostic), expectation, diagnostic, e)

        logger.debug(f"Response: {response.render()}")
        return DispatchOutcome(MATCHED, response, expectation)

    def _unmatched(self, request: RequestView) -> DispatchOutcome:
        diagnostic = self.registry.describe_unmatched(request)
        self.registry.record_unmatched(request)
        logger.warning(diagnostic)
        return DispatchOutcome(UNMATCHED, diagnostic=diagnostic)

    def _forward(
        self,
        request: RequestView,
        expectation: Optional[RequestExpectation],
        target_url: Optional[str]
    ) -> DispatchOutcome:
        try:
            descriptor = self.forwarder.forward(request, target_url)
            response = self.resolver.resolve_descriptor(descriptor)
        except requests.RequestException as e:
            diagnostic = f"Upstream request failed for {request.summary()}: {e}"
            logger.error(diagnostic)
            return DispatchOutcome(ERROR, self._error_response(502, diagnostic), expectation, diagnostic, e)
        except (ValueError, ConfigurationError) as e:
            diagnostic = f"Cannot forward {request.summary()}: {e}"
            logger.error(diagnostic)
            return DispatchOutcome(ERROR, self._error_response(500, diagnostic), expectation, diagnostic, e)
        except Exception as e:
            diagnostic = f"Forwarder failed for {request.summary()}: {e!r}"
            logger.exception(diagnostic)
            return DispatchOutcome(ERROR, self._error_response(502, diagnostic), expectation, diagnostic, e)

        logger.debug(f"Proxied {request.summary()} -> {response.status}")
        return DispatchOutcome(PROXIED, response, expectation)

    @staticmethod
    def _error_response(status: int, diagnostic: str) -> ResolvedResponse:
        return ResolvedResponse(
            status=status,
            headers=[('Content-Type', 'text/plain; charset=utf-8')],
            body=diagnostic.encode('utf-8'),
            content_type='text/plain; charset=utf-8'
        )
