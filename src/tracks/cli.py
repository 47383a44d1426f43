"""
Command-line interface for the event emitter and receiver.
"""

import argparse
import signal
import sys
from contextlib import contextmanager
from pathlib import Path

from tracks.config import Config, find_default_config, load_config
from tracks.emitter import CancellationToken, EmitterState
from tracks.events import all_events, resolve_event_filter, selectable_event_names, tier1_events
from tracks.exceptions import AnalysisCancelled, ConfigError, TracksError
from tracks.logging import configure_logging
from tracks.pipeline import TracksPipeline
from tracks.receiver import EventReceiver

EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def _bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got '{value}'")


def parse_unicast(value: str) -> tuple[str, int | None]:
    """Split HOST[:PORT] (or "auto") into target and optional port."""
    if value == "auto":
        return value, None
    host, sep, port = value.rpartition(":")
    if not sep:
        return value, None
    try:
        return host, int(port)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid unicast port in '{value}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tracks",
        description="Analyze an audio file and stream its events in real time",
    )

    parser.add_argument(
        "input",
        type=Path,
        nargs="?",
        help="Input audio file (wav, mp3, flac)",
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Config YAML file (default: config/tracks-default.yaml if present)",
    )

    network = parser.add_argument_group("network")
    network.add_argument("--multicast-group", help="Multicast group address")
    network.add_argument("-p", "--port", type=int, help="UDP port")
    network.add_argument("--ttl", type=int, help="Multicast TTL")
    network.add_argument("--loopback", type=_bool, help="Enable multicast loopback (true/false)")
    network.add_argument("--interface", help="Outbound interface address")
    network.add_argument(
        "--unicast",
        type=parse_unicast,
        metavar="HOST[:PORT]|auto",
        help="Also send every event to this host ('auto' uses the default gateway)",
    )

    analysis = parser.add_argument_group("analysis")
    analysis.add_argument("--sample-rate", type=int, help="Analysis sample rate")
    analysis.add_argument("--frame-size", type=int, help="Analysis frame size")
    analysis.add_argument("--hop-size", type=int, help="Analysis hop size")

    pacing = parser.add_argument_group("pacing")
    pacing.add_argument(
        "--position-interval",
        type=float,
        help="Seconds between position heartbeats",
    )
    pacing.add_argument(
        "--prepare",
        type=float,
        metavar="SECONDS",
        help="Announce the track this many seconds before playback starts",
    )
    pacing.add_argument(
        "--continuous-interval",
        type=float,
        help="Seconds between continuous event emissions (default 0.1)",
    )

    events = parser.add_argument_group("events")
    events.add_argument(
        "-e", "--events",
        help="Comma-separated event types (e.g. beat,onset,pitch) or a preset name",
    )
    events.add_argument("--all", action="store_true", help="Enable all event types")
    events.add_argument(
        "--primary",
        action="store_true",
        help="Enable tier 1 events (beat, onset, silence, loudness, energy)",
    )
    events.add_argument(
        "--list-events",
        action="store_true",
        help="List all available event types and exit",
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")

    return parser


def resolve_config(args: argparse.Namespace) -> Config:
    """
    Layer defaults, the YAML file and command-line values.

    Event filter precedence: --all, then --primary, then --events, then
    the YAML file, then the default preset.
    """
    path = args.config or find_default_config()
    config = load_config(path) if path else Config()

    if args.all:
        enabled = all_events()
    elif args.primary:
        enabled = tier1_events()
    elif args.events:
        enabled = resolve_event_filter(args.events)
    else:
        enabled = None

    unicast_target, unicast_port = args.unicast or (None, None)

    return config.with_overrides(
        input_file=args.input,
        multicast_group=args.multicast_group,
        port=args.port,
        ttl=args.ttl,
        loopback=args.loopback,
        interface=args.interface,
        unicast_target=unicast_target,
        unicast_port=unicast_port,
        sample_rate=args.sample_rate,
        frame_size=args.frame_size,
        hop_size=args.hop_size,
        position_interval=args.position_interval,
        prepare_time=args.prepare,
        continuous_interval=args.continuous_interval,
        enabled=enabled,
    )


@contextmanager
def cancel_on_signals(token: CancellationToken, signums=(signal.SIGINT, signal.SIGTERM)):
    """Route the given signals to token.cancel() for the duration of the block."""
    previous = {}
    for signum in signums:
        previous[signum] = signal.signal(signum, lambda s, f: token.cancel())
    try:
        yield token
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose, quiet=args.quiet)

    if args.list_events:
        print("Available event types:")
        for name in selectable_event_names():
            print(f"  {name}")
        return 0

    if args.input is None:
        parser.print_usage(sys.stderr)
        print("Error: no input file specified", file=sys.stderr)
        return EXIT_ERROR

    # Validate input
    if not args.input.exists():
        print(f"Error: Input file not found: {args.input}", file=sys.stderr)
        return EXIT_ERROR

    try:
        config = resolve_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if not args.quiet:
        print(f"Input: {config.input_file}")
        print(f"Events: {', '.join(sorted(c.value for c in config.events.enabled))}")
        print(f"Target: {config.network.multicast_group}:{config.network.port}")

    pipeline = TracksPipeline(config)
    try:
        with cancel_on_signals(CancellationToken()) as token:
            result = pipeline.process(config.input_file, token=token)
    except AnalysisCancelled:
        print("Interrupted during analysis", file=sys.stderr)
        return EXIT_INTERRUPTED
    except TracksError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        pipeline.close()

    if not args.quiet:
        print(f"Duration: {result['duration']:.2f}s")
        print(f"Events sent: {len(result['timeline'])}")

    if result["state"] is EmitterState.ABORTED:
        print("Interrupted, sent track.abort", file=sys.stderr)
        return EXIT_INTERRUPTED

    if not args.quiet:
        print("Done.")
    return 0


def build_recv_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tracks-recv",
        description="Print events streamed by tracks",
    )
    parser.add_argument(
        "--multicast-group",
        default="239.255.0.1",
        help="Multicast group address (default: 239.255.0.1)",
    )
    parser.add_argument("-p", "--port", type=int, default=5000, help="UDP port (default: 5000)")
    parser.add_argument(
        "--interface",
        default="0.0.0.0",
        help="Listen interface address (default: 0.0.0.0)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def recv_main(argv=None):
    """Receiver CLI entry point."""
    args = build_recv_parser().parse_args(argv)
    configure_logging(verbose=args.verbose)

    receiver = EventReceiver(args.multicast_group, args.port, args.interface)
    print(f"TRACKS receiver - listening on {args.multicast_group}:{args.port}")
    try:
        with receiver:
            receiver.listen()
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except TracksError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    return 0


if __name__ == "__main__":
    sys.exit(main())
