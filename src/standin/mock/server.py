"""
Standin Mock Server

FastAPI-based HTTP transport for the expectation engine.

Features:
- Serves responses from registered expectations
- Diagnostic reports for unmatched requests
- Proxy mode (forward unmatched or all requests upstream)
- Admin API for runtime inspection, verification and configuration
- Metrics and logging
"""

import time
import asyncio
import logging
import threading
from pathlib import Path
from typing import Dict, Any, Optional, Union
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime

import yaml
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .dispatcher import Dispatcher, DispatchOutcome, PROXY_MODES, MATCHED, UNMATCHED, PROXIED, ERROR
from .errors import StandinError, ConfigurationError, ExpectationFileError
from .expectation import ResponseCookie
from .generator import ResolvedResponse
from .loader import ExpectationLoader
from .proxy import ProxyForwarder, HttpProxyForwarder
from .registry import ExpectationRegistry
from .request import RequestView
from .verifier import Verifier

HTTP_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

# Headers the ASGI layer computes itself
SKIPPED_RESPONSE_HEADERS = {'content-length', 'transfer-encoding', 'connection'}


@dataclass
class MockConfig:
    """Configuration for mock server behavior."""

    # Server options
    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "info"

    # Admin API
    admin_enabled: bool = True
    admin_prefix: str = "/__admin__"

    # Fallback behavior (None body = JSON body with the diagnostic report)
    fallback_status: int = 404
    fallback_body: Optional[str] = None

    # Diagnostics
    report_to_console: bool = False  # Print unmatched reports to stdout
    log_response_content: bool = False  # Log every resolved response at INFO

    # Proxy
    proxy_target: Optional[str] = None
    proxy_mode: Optional[str] = None  # off, unmatched, all (unmatched when a target is set)
    proxy_timeout: int = 30
    proxy_verify_ssl: bool = True
    proxy_max_retries: int = 0

    # Verification
    verify_timeout: float = 0.0  # Seconds to wait for call counts to settle

    def __post_init__(self):
        if self.proxy_mode is None:
            self.proxy_mode = "unmatched" if self.proxy_target else "off"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MockConfig':
        """
        Create config from a dictionary.

        Raises:
            ConfigurationError: On unknown keys or an invalid proxy mode
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown server settings: {', '.join(sorted(unknown))}")

        config = cls(**data)
        if config.proxy_mode not in PROXY_MODES:
            raise ConfigurationError(
                f"Invalid proxy_mode {config.proxy_mode!r}; expected one of {', '.join(PROXY_MODES)}"
            )
        return config

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> 'MockConfig':
        """
        Load config from a YAML file.

        Reads the ``server:`` section when the file also holds expectations,
        otherwise the whole document.
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        if 'server' in data or 'expectations' in data or 'requirements' in data:
            data = data.get('server') or {}
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MockMetrics:
    """Track mock server metrics."""

    total_requests: int = 0
    matched_requests: int = 0
    unmatched_requests: int = 0
    proxied_requests: int = 0
    errors: int = 0
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())

    def record(self, outcome: DispatchOutcome):
        self.total_requests += 1
        if outcome.kind == MATCHED:
            self.matched_requests += 1
        elif outcome.kind == UNMATCHED:
            self.unmatched_requests += 1
        elif outcome.kind == PROXIED:
            self.proxied_requests += 1
        if outcome.kind == ERROR or outcome.error is not None:
            self.errors += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        uptime_seconds = (datetime.now() - datetime.fromisoformat(self.start_time)).total_seconds()
        return {
            'total_requests': self.total_requests,
            'matched_requests': self.matched_requests,
            'unmatched_requests': self.unmatched_requests,
            'proxied_requests': self.proxied_requests,
            'errors': self.errors,
            'match_rate': round((self.matched_requests / self.total_requests * 100) if self.total_requests > 0 else 0, 2),
            'uptime_seconds': round(uptime_seconds, 2),
            'start_time': self.start_time
        }


class MockServer:
    """
    FastAPI-based mock server serving responses from an expectation registry.

    Example:
        registry = ExpectationRegistry()
        registry.get('/hello', response=ResponseDescriptor.text('hi'))

        # Blocking
        server = MockServer(registry, MockConfig(port=8080))
        server.start()

        # In tests
        server = MockServer(registry, MockConfig(port=0))
        base_url = server.start_background()
        ...
        assert server.verify()
        server.stop()
    """

    def __init__(
        self,
        registry: Optional[ExpectationRegistry] = None,
        config: Optional[MockConfig] = None,
        forwarder: Optional[ProxyForwarder] = None
    ):
        """
        Initialize mock server.

        Args:
            registry: Expectation registry (a new empty one if None)
            config: Optional MockConfig for server behavior
            forwarder: Optional upstream forwarder (built from proxy_target if None)
        """
        self.config = config or MockConfig()
        self.registry = registry if registry is not None else ExpectationRegistry()
        self.metrics = MockMetrics()

        self.logger = logging.getLogger("standin.mock")
        self.logger.setLevel(getattr(logging, self.config.log_level.upper()))

        if forwarder is None and self.config.proxy_target:
            forwarder = HttpProxyForwarder(
                target_url=self.config.proxy_target,
                timeout=self.config.proxy_timeout,
                verify_ssl=self.config.proxy_verify_ssl,
                max_retries=self.config.proxy_max_retries
            )

        try:
            self.dispatcher = Dispatcher(self.registry, forwarder, self.config.proxy_mode)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        self.verifier = Verifier(self.registry)

        self._uvicorn: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._bound_host: Optional[str] = None
        self._bound_port: Optional[int] = None

        # Setup FastAPI app
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application with routes."""
        app = FastAPI(
            title="Standin Mock Server",
            description="HTTP mock server driven by request expectations",
            version="1.0.0"
        )

        # Admin API routes
        if self.config.admin_enabled:
            prefix = self.config.admin_prefix

            @app.get(f"{prefix}/metrics")
            async def get_metrics():
                """Get server metrics."""
                return JSONResponse(content=self.metrics.to_dict())

            @app.get(f"{prefix}/config")
            async def get_config():
                """Get current configuration."""
                content = self.config.to_dict()
                content['total_expectations'] = len(self.registry)
                content['codecs'] = self.registry.codecs.content_types()
                return JSONResponse(content=content)

            @app.get(f"{prefix}/expectations")
            async def list_expectations():
                """List registered expectations with their call counts."""
                expectations = [e.to_dict() for e in self.registry.expectations]
                return JSONResponse(content={
                    'total': len(expectations),
                    'expectations': expectations,
                    'requirements': [r.describe() for r in self.registry.requirements]
                })

            @app.post(f"{prefix}/expectations")
            async def add_expectations(request: Request):
                """Register expectations from a YAML or JSON body."""
                text = (await request.body()).decode('utf-8', errors='replace')
                loader = ExpectationLoader(self.registry, source='admin request')
                try:
                    added = loader.load_text(text)
                except ExpectationFileError as e:
                    return JSONResponse(status_code=400, content={'error': str(e)})

                self.logger.info(f"Registered {len(added)} expectations via admin API")
                return JSONResponse(status_code=201, content={
                    'status': 'registered',
                    'added': [e.to_dict() for e in added]
                })

            @app.get(f"{prefix}/verify")
            async def verify_expectations():
                """Verify call counts without resetting them."""
                results = self.verifier.verify_all()
                return JSONResponse(content={
                    'satisfied': all(r.passed for r in results),
                    'results': [r.to_dict() for r in results],
                    'report': self.verifier.render_report()
                })

            @app.post(f"{prefix}/reset")
            async def reset(request: Request):
                """Reset metrics, call counts and unmatched log; ?all=true also drops expectations."""
                if request.query_params.get('all', '').lower() in ('1', 'true', 'yes'):
                    self.registry.reset()
                else:
                    self.registry.reset_counts()
                    self.registry.clear_unmatched()
                self.metrics = MockMetrics()
                return JSONResponse(content={'status': 'reset'})

            @app.get(f"{prefix}/unmatched")
            async def get_unmatched():
                """Get recently unmatched requests."""
                unmatched = self.registry.unmatched_requests
                return JSONResponse(content={
                    'total': len(unmatched),
                    'limit': self.registry.unmatched_limit,
                    'requests': unmatched
                })

            @app.delete(f"{prefix}/unmatched")
            async def clear_unmatched():
                """Clear the unmatched request log."""
                count = self.registry.clear_unmatched()
                return JSONResponse(content={
                    'status': 'cleared',
                    'cleared_count': count
                })

        # Main catch-all route for mocking
        @app.api_route("/{path:path}", methods=HTTP_METHODS)
        async def mock_request(request: Request, path: str):
            """Handle incoming requests and serve mock responses."""
            return await self._handle_request(request)

        return app

    async def _handle_request(self, request: Request) -> Response:
        """
        Dispatch one request through the expectation engine.

        Dispatch runs in the threadpool so blocking response functions and
        upstream calls do not stall the event loop.
        """
        view = RequestView.from_url(
            method=request.method,
            url=str(request.url),
            headers=[(k.decode('latin-1'), v.decode('latin-1')) for k, v in request.headers.raw],
            cookies=dict(request.cookies),
            body=await request.body(),
            codecs=self.registry.codecs
        )

        outcome = await run_in_threadpool(self.dispatcher.dispatch, view)
        self.metrics.record(outcome)

        if outcome.kind == UNMATCHED:
            if self.config.report_to_console:
                print(outcome.diagnostic)
            return self._fallback_response(view, outcome)

        response = outcome.response
        if response.delay_ms > 0:
            await asyncio.sleep(response.delay_ms / 1000)

        if self.config.log_response_content:
            self.logger.info(f"{view.summary()} -> {response.render()}")

        return self._create_response(response, outcome)

    def _create_response(self, resolved: ResolvedResponse, outcome: DispatchOutcome) -> Response:
        """Create FastAPI Response from a resolved response."""
        response = Response(content=resolved.body, status_code=resolved.status)

        for name, value in resolved.headers:
            if name.lower() not in SKIPPED_RESPONSE_HEADERS:
                response.headers.append(name, value)

        for name, cookie in resolved.cookies.items():
            if isinstance(cookie, ResponseCookie):
                response.set_cookie(
                    key=name,
                    value=cookie.value,
                    max_age=cookie.max_age,
                    path=cookie.path or "/",
                    domain=cookie.domain,
                    secure=cookie.secure,
                    httponly=cookie.http_only
                )
            else:
                response.set_cookie(key=name, value=cookie)

        if outcome.expectation is not None:
            response.headers['X-Standin-Expectation'] = str(outcome.expectation.index)
        if outcome.kind == PROXIED:
            response.headers['X-Standin-Proxied'] = 'true'

        return response

    def _fallback_response(self, view: RequestView, outcome: DispatchOutcome) -> Response:
        """Response for a request no expectation matched."""
        headers = {'X-Standin-Matched': 'false'}

        if self.config.fallback_body is not None:
            return Response(
                content=self.config.fallback_body,
                status_code=self.config.fallback_status,
                headers=headers,
                media_type='application/json'
            )

        return JSONResponse(
            status_code=self.config.fallback_status,
            headers=headers,
            content={
                'error': 'No matching expectation',
                'request': view.summary(),
                'report': outcome.diagnostic
            }
        )

    # -- verification ---------------------------------------------------------

    def verify(self, timeout: Optional[float] = None) -> bool:
        """
        Check every expectation's call count.

        Args:
            timeout: Seconds to wait for counts to settle (config default if None)
        """
        return self.verifier.all_satisfied(self.config.verify_timeout if timeout is None else timeout)

    # -- lifecycle ------------------------------------------------------------

    def start(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        access_log: bool = True
    ):
        """
        Start the mock server (blocking).

        Args:
            host: Host to bind to (overrides config)
            port: Port to bind to (overrides config)
            access_log: Enable access logging
        """
        actual_host = host or self.config.host
        actual_port = port if port is not None else self.config.port

        print("Standin Mock Server starting...")
        print(f"   Host: {actual_host}:{actual_port}")
        print(f"   Expectations loaded: {len(self.registry)}")
        if self.config.proxy_mode != 'off':
            print(f"   Proxy: {self.config.proxy_mode} -> {self.config.proxy_target}")
        if self.config.admin_enabled:
            print(f"   Admin API: http://{actual_host}:{actual_port}{self.config.admin_prefix}/metrics")
        print()

        uvicorn.run(
            self.app,
            host=actual_host,
            port=actual_port,
            log_level=self.config.log_level,
            access_log=access_log
        )

    def start_background(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        timeout: float = 10.0
    ) -> str:
        """
        Start the server in a daemon thread and wait until it accepts requests.

        Port 0 binds an ephemeral port; ``base_url`` reports the actual one.

        Returns:
            Base URL of the running server

        Raises:
            StandinError: If the server is already running or fails to start
        """
        if self._thread is not None and self._thread.is_alive():
            raise StandinError("Mock server is already running")

        actual_host = host or self.config.host
        actual_port = port if port is not None else self.config.port

        config = uvicorn.Config(
            self.app,
            host=actual_host,
            port=actual_port,
            log_level=self.config.log_level,
            access_log=False
        )
        self._uvicorn = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._uvicorn.run, name="standin-server", daemon=True)
        self._thread.start()

        deadline = time.monotonic() + timeout
        while not self._uvicorn.started:
            if not self._thread.is_alive():
                raise StandinError(f"Mock server failed to start on {actual_host}:{actual_port}")
            if time.monotonic() > deadline:
                self.stop()
                raise StandinError(f"Mock server did not start within {timeout}s")
            time.sleep(0.01)

        sockets = self._uvicorn.servers[0].sockets
        self._bound_host = actual_host
        self._bound_port = sockets[0].getsockname()[1]

        self.logger.info(f"Mock server listening on {self.base_url}")
        return self.base_url

    def stop(self, timeout: float = 5.0):
        """Stop a server started with start_background()."""
        if self._uvicorn is not None:
            self._uvicorn.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)

        forwarder = self.dispatcher.forwarder
        if isinstance(forwarder, HttpProxyForwarder):
            forwarder.close()

        self._uvicorn = None
        self._thread = None
        self._bound_port = None

    @property
    def base_url(self) -> str:
        """Base URL of the background server."""
        if self._bound_port is None:
            raise StandinError("Mock server is not running")
        return f"http://{self._bound_host}:{self._bound_port}"

    def get_app(self) -> FastAPI:
        """
        Get the FastAPI app instance for testing or custom deployment.

        Returns:
            FastAPI application instance
        """
        return self.app


def create_mock_server(
    expectations_file: Optional[str] = None,
    host: str = "127.0.0.1",
    port: int = 8080,
    proxy_target: Optional[str] = None,
    proxy_mode: Optional[str] = None,
    log_level: str = "info",
    report_to_console: bool = False
) -> MockServer:
    """
    Convenience function to create and configure a mock server.

    Settings in the file's ``server:`` section are the base; the keyword
    arguments override them when they differ from their defaults.

    Args:
        expectations_file: Optional YAML/JSON file with server settings and expectations
        host: Host to bind to
        port: Port to bind to
        proxy_target: Upstream base URL for proxy mode
        proxy_mode: off, unmatched or all (unmatched when only a target is given)
        log_level: Logging level
        report_to_console: Print unmatched reports to stdout

    Returns:
        Configured MockServer instance

    Example:
        server = create_mock_server('expectations.yaml', port=9000)
        server.start()
    """
    settings: Dict[str, Any] = {}
    data: Dict[str, Any] = {}
    if expectations_file:
        data = ExpectationLoader.read_file(expectations_file)
        settings = dict(data.get('server') or {})

    overrides = {
        'host': (host, "127.0.0.1"),
        'port': (port, 8080),
        'proxy_target': (proxy_target, None),
        'proxy_mode': (proxy_mode, None),
        'log_level': (log_level, "info"),
        'report_to_console': (report_to_console, False),
    }
    for key, (value, default) in overrides.items():
        if value != default or key not in settings:
            settings[key] = value

    config = MockConfig.from_dict(settings)
    registry = ExpectationRegistry()
    if expectations_file:
        ExpectationLoader(registry, str(expectations_file)).load(data)

    return MockServer(registry, config=config)
