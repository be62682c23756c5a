"""Entry point for the speed test logger."""

from __future__ import annotations

import argparse
import sys

from speedlog import bootstrap
from speedlog.measurements.models import TestSize
from speedlog.measurements.orchestrator import RunPhase


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Network speed test logger")
    parser.add_argument("--config", help="Path to config.yaml", default="config.yaml")
    parser.add_argument("--host", default=None, help="Override web server host")
    parser.add_argument("--port", type=int, default=None, help="Override web server port")
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    parser.add_argument("--run-once", action="store_true", help="Run a single test in the foreground and exit")
    parser.add_argument(
        "--size",
        type=int,
        choices=[int(size) for size in TestSize],
        default=int(TestSize.MB5),
        help="Payload size in MB for --run-once",
    )
    return parser.parse_args()


def run_once(context, size: TestSize) -> int:
    if hasattr(context.network_provider, "refresh"):
        context.network_provider.refresh()
    snapshot = context.orchestrator.run(size)
    if snapshot is None:
        print("A speed test is already running", file=sys.stderr)
        return 1

    print(f"Phase:    {snapshot.phase.label}")
    print(f"Ping:     {snapshot.ping_ms or 0:.1f} ms (jitter {snapshot.jitter_ms or 0:.1f} ms)")
    print(f"Download: {snapshot.download_mbps or 0:.2f} Mbps")
    print(f"Upload:   {snapshot.upload_mbps or 0:.2f} Mbps")
    print(f"Network:  {snapshot.network_type.display_name}")
    if snapshot.error_message:
        print(f"Error:    {snapshot.error_message}")
    print(f"Log:      {context.log_store.path}")
    return 0 if snapshot.phase == RunPhase.DONE else 1


def main() -> None:
    args = parse_args()
    context = bootstrap(args.config)

    if args.run_once:
        sys.exit(run_once(context, TestSize(args.size)))

    context.start()
    host = args.host or context.config.web.host
    port = args.port or context.config.web.port
    try:
        context.web_app.run(host=host, port=port, debug=args.debug)
    finally:
        context.stop()


if __name__ == "__main__":
    main()
