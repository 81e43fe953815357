import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from chaintrace.config import EngineConfig
from chaintrace.errors import InvalidTraceRequest
from chaintrace.jobs import TraceJobManager
from chaintrace.models import JobStatus
from chaintrace.reporting import build_report


async def run_trace(
    seed: str,
    chain: str = "ethereum",
    depth: Optional[int] = None,
    json_path: Optional[str] = None,
    manager: Optional[TraceJobManager] = None,
) -> int:
    manager = manager or TraceJobManager()

    job_id = manager.submit(seed, chain, depth, requester="cli")
    job = manager.get_status(job_id)
    print(f"Starting trace for {job.seed_kind} {job.seed} on {job.chain} (depth {job.max_depth})...")

    await manager.run_pending_once()
    job = manager.get_status(job_id)

    if job.status != JobStatus.COMPLETED or job.result is None:
        reason = job.failure_flags[0].description if job.failure_flags else job.status.value
        print(f"Trace failed: {reason}")
        return 1

    print("Building report...")
    report = build_report(job.result)

    print("\n" + "="*50)
    print("SUMMARY")
    print("="*50)
    print(report["summary_text"])

    if json_path:
        with open(json_path, "w") as f:
            json.dump(report, f, indent=2)
        print(f"JSON graph saved to {json_path}")

    print("Done.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chaintrace",
        description="Trace funds from a transaction hash or an address across an EVM chain.",
    )
    parser.add_argument("seed", help="transaction hash (0x + 64 hex) or address (0x + 40 hex)")
    parser.add_argument("--chain", default="ethereum", help="chain key or alias (default: ethereum)")
    parser.add_argument(
        "--depth", type=int, default=EngineConfig.DEFAULT_DEPTH,
        help=f"maximum hops from the seed (1-{EngineConfig.MAX_TRACE_DEPTH})",
    )
    parser.add_argument("--json", dest="json_path", help="write the report graph to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    if args.verbose:
        logging.getLogger("tracer").setLevel(logging.DEBUG)

    try:
        code = asyncio.run(run_trace(args.seed, args.chain, args.depth, args.json_path))
    except InvalidTraceRequest as e:
        print(f"Error: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        sys.exit(0)
    sys.exit(code)


if __name__ == "__main__":
    main()
