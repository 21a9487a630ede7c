"""
Tests for Standin Mock Server

Tests the FastAPI-based mock server including:
- Server initialization and configuration
- Request handling end to end
- Unmatched fallback responses
- Admin API endpoints
- Background start and stop
"""

import pytest
import requests
from fastapi.testclient import TestClient

from standin.mock.errors import ConfigurationError, StandinError
from standin.mock.expectation import ResponseDescriptor, ResponseCookie, CallConstraint
from standin.mock.matcher import HeaderMatcher
from standin.mock.registry import ExpectationRegistry
from standin.mock.server import (
    MockConfig,
    MockMetrics,
    MockServer,
    create_mock_server
)


@pytest.fixture
def registry():
    """Registry with a hello expectation."""
    registry = ExpectationRegistry()
    registry.get(
        '/hello',
        [HeaderMatcher('Accept', 'text/plain')],
        response=ResponseDescriptor.text('hi')
    )
    return registry


@pytest.fixture
def server(registry):
    """Mock server over the registry."""
    return MockServer(registry, MockConfig(log_level='warning'))


@pytest.fixture
def client(server):
    """Test client for the server app."""
    return TestClient(server.get_app())


class TestMockConfig:
    """Test MockConfig."""

    def test_defaults(self):
        """Test default configuration."""
        config = MockConfig()

        assert config.host == '127.0.0.1'
        assert config.port == 8080
        assert config.admin_prefix == '/__admin__'
        assert config.fallback_status == 404
        assert config.proxy_mode == 'off'

    def test_from_dict(self):
        """Test creating config from a dictionary."""
        config = MockConfig.from_dict({'port': 9000, 'report_to_console': True})
        assert config.port == 9000
        assert config.report_to_console

    def test_from_dict_unknown_key(self):
        """Test unknown settings are rejected."""
        with pytest.raises(ConfigurationError, match='chaos_enabled'):
            MockConfig.from_dict({'chaos_enabled': True})

    def test_from_dict_invalid_proxy_mode(self):
        """Test invalid proxy modes are rejected."""
        with pytest.raises(ConfigurationError):
            MockConfig.from_dict({'proxy_mode': 'sometimes'})

    def test_from_yaml_server_section(self, tmp_path):
        """Test loading the server section of an expectation file."""
        path = tmp_path / 'mock.yaml'
        path.write_text('server:\n  port: 7000\n  log_level: debug\nexpectations: []\n')

        config = MockConfig.from_yaml(path)

        assert config.port == 7000
        assert config.log_level == 'debug'

    def test_proxy_target_implies_unmatched_mode(self):
        """Test a proxy target without a mode forwards unmatched requests."""
        config = MockConfig(proxy_target='http://backend')
        assert config.proxy_mode == 'unmatched'

        server = MockServer(ExpectationRegistry(), config)
        assert server.dispatcher.proxy_mode == 'unmatched'

    def test_explicit_proxy_mode_kept(self):
        """Test an explicit mode wins over the target default."""
        assert MockConfig(proxy_target='http://backend', proxy_mode='off').proxy_mode == 'off'

    def test_from_yaml_proxy_target_only(self, tmp_path):
        """Test a server section with only a proxy target enables forwarding."""
        path = tmp_path / 'mock.yaml'
        path.write_text('server:\n  proxy_target: http://backend:9000\nexpectations: []\n')

        config = MockConfig.from_yaml(path)

        assert config.proxy_target == 'http://backend:9000'
        assert config.proxy_mode == 'unmatched'

    def test_from_yaml_plain(self, tmp_path):
        """Test loading a plain config file."""
        path = tmp_path / 'config.yaml'
        path.write_text('host: 0.0.0.0\n')
        assert MockConfig.from_yaml(path).host == '0.0.0.0'


class TestMockMetrics:
    """Test MockMetrics."""

    def test_to_dict(self):
        """Test conversion to dictionary."""
        metrics = MockMetrics(total_requests=4, matched_requests=3, unmatched_requests=1)
        data = metrics.to_dict()

        assert data['total_requests'] == 4
        assert data['match_rate'] == 75.0
        assert 'uptime_seconds' in data

    def test_empty_match_rate(self):
        """Test match rate with no requests."""
        assert MockMetrics().to_dict()['match_rate'] == 0


class TestMockServerInit:
    """Test server construction."""

    def test_default_registry(self):
        """Test a server without a registry gets an empty one."""
        assert len(MockServer().registry) == 0

    def test_proxy_mode_without_target(self):
        """Test proxy mode without a target is a configuration error."""
        with pytest.raises(ConfigurationError):
            MockServer(config=MockConfig(proxy_mode='unmatched'))

    def test_base_url_before_start(self, server):
        """Test base_url requires a running server."""
        with pytest.raises(StandinError):
            server.base_url


class TestRequestHandling:
    """Test serving requests."""

    def test_hello_then_verify(self, client, server):
        """Test one matching call passes verification and a second fails it."""
        response = client.get('/hello', headers={'Accept': 'text/plain'})

        assert response.status_code == 200
        assert response.text == 'hi'
        assert response.headers['content-type'] == 'text/plain; charset=utf-8'
        assert response.headers['x-standin-expectation'] == '0'
        assert server.verify()

        client.get('/hello', headers={'Accept': 'text/plain'})
        assert not server.verify()

    def test_unmatched_fallback(self, client, server):
        """Test unmatched requests get the diagnostic fallback."""
        response = client.get('/hello', headers={'Accept': 'application/json'})

        assert response.status_code == 404
        assert response.headers['x-standin-matched'] == 'false'
        body = response.json()
        assert body['error'] == 'No matching expectation'
        assert 'X Header' in body['report']
        assert server.metrics.unmatched_requests == 1

    def test_custom_fallback(self, registry):
        """Test a configured fallback status and body."""
        server = MockServer(registry, MockConfig(fallback_status=418, fallback_body='{"teapot": true}'))
        response = TestClient(server.get_app()).get('/nothing')

        assert response.status_code == 418
        assert response.json() == {'teapot': True}

    def test_report_to_console(self, registry, capsys):
        """Test unmatched reports are printed when enabled."""
        server = MockServer(registry, MockConfig(report_to_console=True, log_level='error'))
        TestClient(server.get_app()).get('/nothing')

        assert '# Unmatched Request' in capsys.readouterr().out

    def test_json_body_matching(self):
        """Test posting JSON to a body-matching expectation."""
        registry = ExpectationRegistry()
        registry.post('/users', response=lambda r: ResponseDescriptor.json(
            {'created': r.decoded_body()['name']}, status=201
        ))
        client = TestClient(MockServer(registry).get_app())

        response = client.post('/users', json={'name': 'Jane'})

        assert response.status_code == 201
        assert response.json() == {'created': 'Jane'}

    def test_query_params(self):
        """Test repeated query parameters reach the matchers."""
        registry = ExpectationRegistry()
        registry.get('/search', response=lambda r: ','.join(r.query_values('tag')))
        client = TestClient(MockServer(registry).get_app())

        assert client.get('/search?tag=a&tag=b').text == 'a,b'

    def test_first_query_param(self):
        """Test response functions can read the first value of a parameter."""
        registry = ExpectationRegistry()
        registry.get('/page', response=lambda r: r.query_param('n') or 'none')
        client = TestClient(MockServer(registry).get_app())

        assert client.get('/page?n=2&n=3').text == '2'

    def test_response_function_failure(self):
        """Test a failing response function yields a 500."""
        registry = ExpectationRegistry()

        def broken(request):
            raise KeyError('missing')

        registry.get('/broken', response=broken)
        server = MockServer(registry, MockConfig(log_level='critical'))

        response = TestClient(server.get_app()).get('/broken')

        assert response.status_code == 500
        assert server.metrics.errors == 1

    def test_multi_value_headers_and_cookies(self):
        """Test repeated headers and cookies are sent."""
        registry = ExpectationRegistry()
        registry.get('/cookies', response=ResponseDescriptor(
            headers=[('X-Tag', 'a'), ('X-Tag', 'b')],
            cookies={'plain': 'v1', 'token': ResponseCookie('v2', path='/', http_only=True)}
        ))
        response = TestClient(MockServer(registry).get_app()).get('/cookies')

        assert response.headers.get_list('x-tag') == ['a', 'b']
        assert response.cookies['plain'] == 'v1'
        set_cookies = response.headers.get_list('set-cookie')
        assert any('HttpOnly' in c for c in set_cookies if c.startswith('token='))

    def test_request_cookies_matched(self):
        """Test request cookies are visible to matchers."""
        registry = ExpectationRegistry()
        registry.get('/me', response=lambda r: r.cookie('session').value)
        client = TestClient(MockServer(registry).get_app())

        response = client.get('/me', headers={'Cookie': 'session=abc'})

        assert response.text == 'abc'


class TestAdminAPI:
    """Test admin endpoints."""

    def test_metrics(self, client):
        """Test metrics endpoint."""
        client.get('/hello', headers={'Accept': 'text/plain'})
        client.get('/nothing')

        data = client.get('/__admin__/metrics').json()

        assert data['total_requests'] == 2
        assert data['matched_requests'] == 1
        assert data['unmatched_requests'] == 1

    def test_admin_not_counted(self, client):
        """Test admin calls are not dispatched."""
        client.get('/__admin__/config')
        assert client.get('/__admin__/metrics').json()['total_requests'] == 0

    def test_config(self, client):
        """Test config endpoint."""
        data = client.get('/__admin__/config').json()

        assert data['total_expectations'] == 1
        assert data['proxy_mode'] == 'off'
        assert 'application/json' in data['codecs']['decoders']

    def test_list_expectations(self, client):
        """Test listing expectations with counts."""
        client.get('/hello', headers={'Accept': 'text/plain'})
        data = client.get('/__admin__/expectations').json()

        assert data['total'] == 1
        assert data['expectations'][0]['call_count'] == 1

    def test_add_expectations(self, client):
        """Test registering expectations at runtime."""
        response = client.post('/__admin__/expectations', content='- {method: GET, path: /added, response: {body: new}}')

        assert response.status_code == 201
        assert response.json()['added'][0]['index'] == 1
        assert client.get('/added').text == 'new'

    def test_add_invalid_expectations(self, client):
        """Test malformed expectation bodies are rejected."""
        response = client.post('/__admin__/expectations', content='- {path: {bogus: 1}}')
        assert response.status_code == 400

    def test_verify(self, client):
        """Test verification endpoint."""
        unsatisfied = client.get('/__admin__/verify').json()
        assert unsatisfied['satisfied'] is False
        assert unsatisfied['results'][0]['actual'] == 0

        client.get('/hello', headers={'Accept': 'text/plain'})
        assert client.get('/__admin__/verify').json()['satisfied'] is True

    def test_reset(self, client, server):
        """Test reset zeroes counts and metrics but keeps expectations."""
        client.get('/hello', headers={'Accept': 'text/plain'})
        client.post('/__admin__/reset')

        assert server.registry.expectations[0].call_count == 0
        assert server.metrics.total_requests == 0
        assert len(server.registry) == 1

    def test_reset_all(self, client, server):
        """Test full reset drops expectations."""
        client.post('/__admin__/reset?all=true')
        assert len(server.registry) == 0

    def test_unmatched(self, client):
        """Test unmatched request log endpoints."""
        client.get('/nothing?x=1')

        data = client.get('/__admin__/unmatched').json()
        assert data['total'] == 1
        assert data['requests'][0]['path'] == '/nothing'

        cleared = client.delete('/__admin__/unmatched').json()
        assert cleared['cleared_count'] == 1

    def test_admin_disabled(self, registry):
        """Test the admin API can be disabled."""
        server = MockServer(registry, MockConfig(admin_enabled=False, log_level='error'))
        response = TestClient(server.get_app()).get('/__admin__/metrics')
        assert response.status_code == 404
        assert response.headers['x-standin-matched'] == 'false'


class TestBackgroundServer:
    """Test running uvicorn in a background thread."""

    def test_start_and_stop(self, registry):
        """Test serving real HTTP on an ephemeral port."""
        server = MockServer(registry, MockConfig(port=0, log_level='warning'))
        base_url = server.start_background()
        try:
            response = requests.get(f"{base_url}/hello", headers={'Accept': 'text/plain'}, timeout=5)
            assert response.text == 'hi'
            assert server.verify()
        finally:
            server.stop()


class TestCreateMockServer:
    """Test create_mock_server convenience function."""

    def test_from_file(self, tmp_path):
        """Test building a server from an expectation file."""
        path = tmp_path / 'mock.yaml'
        path.write_text(
            'server:\n  port: 7000\n'
            'expectations:\n  - {method: GET, path: /a, called: any}\n'
        )

        server = create_mock_server(str(path), log_level='warning')

        assert server.config.port == 7000
        assert server.config.log_level == 'warning'
        assert len(server.registry) == 1

    def test_proxy_target_enables_unmatched_mode(self):
        """Test a proxy target alone turns on unmatched forwarding."""
        server = create_mock_server(proxy_target='http://backend')
        assert server.config.proxy_mode == 'unmatched'
        assert server.dispatcher.forwarder is not None

    def test_without_file(self):
        """Test an empty server."""
        server = create_mock_server(port=9100)
        assert server.config.port == 9100
        assert server.registry.expectations == []


def test_default_constraint_in_server(registry):
    """Test an expectation without a constraint must be called exactly once."""
    assert registry.expectations[0].constraint == CallConstraint.exactly(1)
