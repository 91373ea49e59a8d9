"""Argument parser options for swifi"""

import argparse
from typing import List

from .config import (
    DEFAULT_LATENCY_SAMPLES,
    DEFAULT_PERCENTILE,
    DEFAULT_TIMEOUT,
    Direction,
    MeasurementConfig,
    ProtocolVariant,
)
from .servers import ServerList


def _positive_float(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {text!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")
    return value


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {text!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")
    return value


def _non_negative_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError("cannot be negative")
    return value


def _percentile(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {text!r}") from None
    if not 0 <= value <= 100:
        raise argparse.ArgumentTypeError("must be between 0 and 100")
    return value


def add_run_options(parser):
    """
    Add measurement options to an argument parser.

    Args:
        parser: argparse.ArgumentParser instance

    Returns:
        The parser with added options
    """
    where = parser.add_mutually_exclusive_group()
    where.add_argument(
        '-s', '--server',
        help='ID of a server from --list to test against (default: the first one)'
    )
    where.add_argument(
        '-t', '--target',
        help='Endpoint to test against: a speed-test worker URL or an echo service host[:port]'
    )
    parser.add_argument(
        '-d', '--down',
        action='store_true',
        help='Perform a download speed test'
    )
    parser.add_argument(
        '-u', '--up',
        action='store_true',
        help='Perform an upload speed test'
    )
    parser.add_argument(
        '--protocol',
        choices=[variant.value for variant in ProtocolVariant],
        default=ProtocolVariant.AUTO.value,
        help='Measurement protocol; auto picks cloudflare for http(s) URLs and echo otherwise (default: auto)'
    )
    parser.add_argument(
        '--timeout',
        type=_positive_float,
        default=DEFAULT_TIMEOUT,
        help=f'Session timeout in seconds (default: {DEFAULT_TIMEOUT:g})'
    )
    parser.add_argument(
        '--duration',
        type=_positive_float,
        help='Sampling budget of each bulk probe in seconds (default: 35%% of the timeout)'
    )
    parser.add_argument(
        '--latency-samples',
        type=_positive_int,
        default=DEFAULT_LATENCY_SAMPLES,
        help=f'Number of latency probes (default: {DEFAULT_LATENCY_SAMPLES})'
    )
    parser.add_argument(
        '--percentile',
        type=_percentile,
        default=DEFAULT_PERCENTILE,
        help=f'Percentile to use for bandwidth calculation (0-100, default: {DEFAULT_PERCENTILE:g})'
    )
    parser.add_argument(
        '--password',
        help='Password for a password-protected speed-test worker'
    )
    parser.add_argument(
        '--parallel',
        action='store_true',
        help='Run the latency, download and upload probes concurrently'
    )
    parser.add_argument(
        '--retries',
        type=_non_negative_int,
        default=0,
        help='Extra attempts after a failed measurement (default: 0)'
    )
    return parser


def _config(args, target: str, protocol: ProtocolVariant) -> MeasurementConfig:
    return MeasurementConfig(
        target_endpoint=target,
        timeout=args.timeout,
        protocol_variant=protocol,
        direction=Direction.from_flags(args.down, args.up),
        duration=args.duration,
        latency_samples=args.latency_samples,
        percentile=args.percentile,
        password=args.password,
        parallel=args.parallel,
        retries=args.retries,
    )


def configs_from_args(args, servers: ServerList = None) -> List[MeasurementConfig]:
    """
    Build the MeasurementConfig of every endpoint to try, in order.

    ``--target`` and ``--server`` give one config. Without either, one config
    per candidate catalog server is returned.

    Raises ValueError for invalid values and LookupError for an unknown server.
    """
    protocol = ProtocolVariant(args.protocol)
    if args.target:
        return [_config(args, args.target, protocol)]

    configs = []
    for server in (servers or ServerList.builtin()).candidates(args.server):
        variant = server.protocol if protocol is ProtocolVariant.AUTO else protocol
        configs.append(_config(args, server.endpoint, variant))
    return configs
