"""
Tests for Standin CLI

Tests argument parsing, file validation and server construction without
starting a real server.
"""

from unittest.mock import patch

import pytest

from standin.cli import main, build_parser, _build_server


EXPECTATIONS_YAML = """
server:
  port: 7000

expectations:
  - method: GET
    path: /hello
    response: {body: hi}
"""


@pytest.fixture
def config_file(tmp_path):
    """Valid expectation file."""
    path = tmp_path / 'mock.yaml'
    path.write_text(EXPECTATIONS_YAML)
    return path


class TestValidate:
    """Test the validate command."""

    def test_valid_file(self, config_file, capsys):
        """Test a valid file exits 0 and lists expectations."""
        with pytest.raises(SystemExit) as exc_info:
            main(['validate', str(config_file)])

        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert 'Expectations: 1' in out
        assert "Path equal to '/hello'" in out

    def test_invalid_file(self, tmp_path, capsys):
        """Test an invalid file exits 1 with the error."""
        path = tmp_path / 'bad.yaml'
        path.write_text('expectations: [{path: {bogus: 1}}]')

        with pytest.raises(SystemExit) as exc_info:
            main(['validate', str(path)])

        assert exc_info.value.code == 1
        assert 'Invalid' in capsys.readouterr().err

    def test_missing_file(self, tmp_path):
        """Test a missing file exits 1."""
        with pytest.raises(SystemExit) as exc_info:
            main(['validate', str(tmp_path / 'missing.yaml')])
        assert exc_info.value.code == 1

    def test_bad_server_section(self, tmp_path):
        """Test unknown server settings fail validation."""
        path = tmp_path / 'bad.yaml'
        path.write_text('server: {chaos: true}\n')

        with pytest.raises(SystemExit) as exc_info:
            main(['validate', str(path)])
        assert exc_info.value.code == 1


class TestServe:
    """Test the serve command."""

    def test_overrides(self, config_file):
        """Test command-line options override the file."""
        args = build_parser().parse_args([
            'serve', str(config_file),
            '--port', '9001',
            '--proxy', 'http://backend',
            '--report-to-console',
        ])

        server = _build_server(args)

        assert server.config.port == 9001
        assert server.config.proxy_target == 'http://backend'
        assert server.config.proxy_mode == 'unmatched'
        assert server.config.report_to_console
        assert len(server.registry) == 1

    def test_file_settings_kept(self, config_file):
        """Test file settings apply without overrides."""
        server = _build_server(build_parser().parse_args(['serve', str(config_file)]))
        assert server.config.port == 7000

    @patch('standin.cli.MockServer.start')
    def test_serve_starts_server(self, mock_start, config_file):
        """Test serve builds the server and starts it."""
        with pytest.raises(SystemExit) as exc_info:
            main(['serve', str(config_file), '--log-level', 'warning'])

        assert exc_info.value.code == 0
        mock_start.assert_called_once()

    def test_no_command(self, capsys):
        """Test running without a command prints help."""
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1
