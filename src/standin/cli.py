"""
Standin CLI

Command-line interface for running the mock server from a declarative
expectation file.

Commands:
    serve       - Start the mock server
    validate    - Check an expectation file without starting a server

Examples:
    # Serve expectations on port 9000
    standin serve expectations.yaml --port 9000

    # Forward anything unmatched to a real backend
    standin serve expectations.yaml --proxy http://localhost:3000

    # Check a file in CI
    standin validate expectations.yaml
"""

import argparse
import sys
import logging

from .mock import (
    MockServer,
    MockConfig,
    ExpectationRegistry,
    ExpectationLoader,
    StandinError,
)
from .mock.dispatcher import PROXY_MODES


def _build_server(args) -> MockServer:
    data = ExpectationLoader.read_file(args.config)
    settings = dict(data.get('server') or {})

    if args.host:
        settings['host'] = args.host
    if args.port is not None:
        settings['port'] = args.port
    if args.log_level:
        settings['log_level'] = args.log_level
    if args.report_to_console:
        settings['report_to_console'] = True
    if args.proxy:
        settings['proxy_target'] = args.proxy
    if args.proxy_mode:
        settings['proxy_mode'] = args.proxy_mode

    config = MockConfig.from_dict(settings)
    registry = ExpectationRegistry()
    ExpectationLoader(registry, args.config).load(data)
    return MockServer(registry, config=config)


def cmd_serve(args) -> int:
    """
    Start the mock server with expectations from a file.

    Args:
        args: Parsed command-line arguments
    """
    print("Standin Mock Server")
    print(f"   Config: {args.config}")

    try:
        server = _build_server(args)
    except (OSError, StandinError) as e:
        print(f"Failed to load {args.config}: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, server.config.log_level.upper()),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    server.start()
    return 0


def cmd_validate(args) -> int:
    """
    Validate an expectation file and list what it registers.

    Args:
        args: Parsed command-line arguments
    """
    print("Standin Expectation Validation")
    print(f"   Config: {args.config}")

    try:
        data = ExpectationLoader.read_file(args.config)
        MockConfig.from_dict(dict(data.get('server') or {}))
        registry = ExpectationRegistry()
        ExpectationLoader(registry, args.config).load(data)
    except (OSError, StandinError) as e:
        print(f"Invalid: {e}", file=sys.stderr)
        return 1

    print(f"   Expectations: {len(registry)}")
    print(f"   Requirements: {len(registry.requirements)}")
    print()
    for expectation in registry.expectations:
        print(f"   {expectation.index}: {expectation.describe()}")
    print()
    print("Valid")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='standin',
        description="Standin - expectation-driven HTTP mock server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve expectations
  %(prog)s serve expectations.yaml --port 9000

  # Proxy unmatched requests upstream
  %(prog)s serve expectations.yaml --proxy http://localhost:3000

  # Validate a file
  %(prog)s validate expectations.yaml
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # --- SERVE command ---
    serve_parser = subparsers.add_parser('serve', help='Start the mock server')
    serve_parser.add_argument('config', help='YAML or JSON expectation file')
    serve_parser.add_argument('--host', help='Host to bind to (default: 127.0.0.1)')
    serve_parser.add_argument('-p', '--port', type=int, help='Port to bind to (default: 8080)')
    serve_parser.add_argument('--proxy', metavar='URL', help='Upstream base URL for proxy mode')
    serve_parser.add_argument('--proxy-mode', choices=PROXY_MODES, help='Which requests to forward (default: unmatched with --proxy)')
    serve_parser.add_argument('--log-level', choices=['debug', 'info', 'warning', 'error'], help='Logging level')
    serve_parser.add_argument('--report-to-console', action='store_true', help='Print unmatched request reports')

    # --- VALIDATE command ---
    validate_parser = subparsers.add_parser('validate', help='Validate an expectation file')
    validate_parser.add_argument('config', help='YAML or JSON expectation file')

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == 'serve':
        sys.exit(cmd_serve(args))
    elif args.command == 'validate':
        sys.exit(cmd_validate(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == '__main__':
    main()
