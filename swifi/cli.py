"""
swifi command-line interface.

Run one wifi speed test and print download, upload and latency, or serve a
local reference endpoint to test against.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import ProtocolVariant, parse_host_port
from .errors import NetworkError
from .logging_setup import setup_logging, silence_warnings
from .models import MeasurementResult, Status
from .options import add_run_options, configs_from_args
from .runner import execute_any
from .server import EchoServer, SpeedTestHTTPServer
from .servers import LOCAL_ECHO_PORT, LOCAL_HTTP_PORT, ServerList

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='swifi',
        description='A CLI tool for testing wifi download and upload speeds.'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument(
        '-l', '--list',
        action='store_true',
        help='List available servers'
    )
    add_run_options(parser)
    parser.add_argument('--json', action='store_true', help='Print the result as JSON')
    parser.add_argument('-q', '--quiet', action='store_true', help='Less output')
    parser.add_argument('-v', '--verbose', action='store_true', help='Show debug logging')
    parser.add_argument('--no-warnings', action='store_true', help='Suppress urllib3/requests warnings')
    parser.add_argument(
        '--serve',
        action='store_true',
        help='Run a local reference endpoint (echo, or cloudflare-style HTTP with --protocol cloudflare)'
    )
    parser.add_argument(
        '--bind',
        help=f'HOST:PORT for --serve (default: 127.0.0.1:{LOCAL_ECHO_PORT} for echo, '
             f'127.0.0.1:{LOCAL_HTTP_PORT} for http)'
    )
    return parser


def print_result(result: MeasurementResult) -> None:
    def mbps(value: Optional[float], name: str) -> str:
        if value is not None:
            return f"{value:.2f} Mbps"
        failed = [e for e in result.errors if e.startswith(f"{name}:")]
        return "failed" if failed else "not measured"

    print("=" * 50)
    print("Results")
    print("=" * 50)
    print(f"Server:         {result.target} ({result.protocol})")
    if result.client_ip:
        print(f"Client:         {result.client_ip}")
    if result.colo:
        print(f"Colo:           {result.colo}")
    print(f"Download Speed: {mbps(result.download_mbps, 'download')}")
    print(f"Upload Speed:   {mbps(result.upload_mbps, 'upload')}")
    if result.latency_ms is not None:
        print(f"Latency:        {result.latency_ms:.2f} ms "
              f"(jitter {result.jitter_ms:.2f} ms, {len(result.latency_samples)} samples)")
    else:
        print("Latency:        failed")
    print(f"Status:         {result.status.value}")
    for error in result.errors:
        print(f"  {error}")
    print("=" * 50)


def make_reference_server(args):
    """Build the reference server --serve runs, bound to --bind or the local default."""
    if ProtocolVariant(args.protocol) is ProtocolVariant.CLOUDFLARE:
        address = parse_host_port(args.bind or "127.0.0.1", LOCAL_HTTP_PORT, allow_any_port=True)
        return SpeedTestHTTPServer(address, password=args.password), "cloudflare-style HTTP"
    address = parse_host_port(args.bind or "127.0.0.1", LOCAL_ECHO_PORT, allow_any_port=True)
    return EchoServer(address), "echo"


def serve(args) -> int:
    server, kind = make_reference_server(args)
    with server:
        host, port = server.address
        print(f"Serving {kind} reference endpoint on {host}:{port} (Ctrl-C to stop)", flush=True)
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            print("\nStopped.")
    return EXIT_OK


def _tick():
    print("#", end="", flush=True)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to run the swifi speed test."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        setup_logging(logging.DEBUG)
    elif args.quiet:
        setup_logging(logging.ERROR)
    else:
        setup_logging(logging.WARNING)
    if args.no_warnings:
        silence_warnings()

    if args.serve:
        try:
            return serve(args)
        except (OSError, ValueError) as e:
            print(f"Error: cannot serve: {e}", file=sys.stderr)
            return EXIT_FAILURE

    if args.list:
        print(ServerList.builtin().format_table(), end="")
        return EXIT_OK

    try:
        configs = configs_from_args(args)
    except (ValueError, LookupError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    show_progress = not args.quiet and not args.json
    if show_progress:
        first = configs[0]
        print(f"Testing {first.target_endpoint} ({first.protocol_variant.value}), "
              f"this may take up to {first.timeout:g}s...\n")

    try:
        result = execute_any(configs, _tick if show_progress else None)
    except NetworkError as e:
        if show_progress:
            print()
        if args.json:
            last = configs[-1]
            failed = MeasurementResult.failed(last.target_endpoint, last.protocol_variant.value, e)
            print(json.dumps(failed.to_dict(), indent=2))
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        if show_progress:
            print()
        print_result(result)

    if result.status is Status.PARTIAL_FAILURE:
        return EXIT_PARTIAL
    return EXIT_OK
