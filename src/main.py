"""
Command line interface for the Whale Deep-Dive Agent.

Submits one transaction, polls the job until it finishes and prints the
analysis.

Usage::

    python src/main.py --tx-hash <HASH> --from <ADDR> --to <ADDR> --amount 250
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import os

# Ensure ``src/`` is on the import path
sys.path.insert(0, os.path.dirname(__file__))

from whale_agent.data_sources._clients import close_clients
from whale_agent.errors import ValidationError
from whale_agent.job_store import InMemoryJobStore
from whale_agent.models import JobStatusView, SubmitJobRequest
from whale_agent.orchestrator import build_orchestrator
from whale_agent.providers.registry import close_providers

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

_POLL_INTERVAL = 0.5  # seconds


async def _run(args: argparse.Namespace) -> int:
    """Async entry point.  Returns the process exit code."""
    orchestrator = build_orchestrator(store=InMemoryJobStore())
    transaction = {
        "tx_hash": args.tx_hash,
        "from_address": args.from_address,
        "to_address": args.to_address,
        "amount": args.amount,
    }
    if args.prefer:
        transaction["model_preference"] = args.prefer
    try:
        try:
            submitted = await orchestrator.submit_request(
                SubmitJobRequest(analysis_kind=args.kind, transaction=transaction)
            )
        except ValidationError as exc:
            for problem in exc.problems:
                print(f"error: {problem}", file=sys.stderr)
            return 2

        view = await orchestrator.get_status(submitted.job_id)
        while view is not None and not view.status.is_terminal:
            await asyncio.sleep(_POLL_INTERVAL)
            view = await orchestrator.get_status(submitted.job_id)
    finally:
        await orchestrator.drain(timeout=5)
        await close_providers()
        await close_clients()

    if view is None:
        print(f"error: job {submitted.job_id} disappeared", file=sys.stderr)
        return 1
    if args.as_json:
        print(view.model_dump_json(indent=2))
    else:
        _print_summary(view)
    return 0 if view.result is not None else 1


def _print_summary(view: JobStatusView) -> None:
    print("=" * 60)
    print("  Whale Deep-Dive Agent – Results")
    print("=" * 60)
    print(f"  Job          : {view.job_id}")
    print(f"  Kind         : {view.analysis_kind}")
    print(f"  Status       : {view.status.value}")
    if view.failure_reason:
        print(f"  Failure      : {view.failure_reason}")
        print("=" * 60)
        return

    analysis = (view.result or {}).get("analysis", {})
    meta = (view.result or {}).get("metadata", {})
    print(f"  Provider     : {meta.get('provider')}:{meta.get('model')} ({meta.get('tier')})")
    print(f"  Type         : {analysis.get('transaction_type', 'unknown')}")
    if "market_impact" in analysis:
        print(f"  Impact       : {analysis['market_impact']}")
    print(f"  Confidence   : {analysis.get('confidence')}")
    print("-" * 60)
    for i, finding in enumerate(analysis.get("key_findings", []), 1):
        print(f"    {i:>2}. {finding}")
    if analysis.get("trader_action"):
        print("-" * 60)
        print(f"  Action       : {analysis['trader_action']}")
    if meta.get("limitations"):
        print("-" * 60)
        print("  Limitations:")
        print(json.dumps(meta["limitations"], indent=4))
    print("=" * 60)


def main() -> None:
    """Entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Analyse a large Bitcoin transfer with an AI provider"
    )
    parser.add_argument("--tx-hash", required=True, help="Transaction hash")
    parser.add_argument("--from", required=True, dest="from_address", help="Source address")
    parser.add_argument("--to", required=True, dest="to_address", help="Destination address")
    parser.add_argument("--amount", required=True, type=float, help="Amount in BTC")
    parser.add_argument(
        "--kind",
        default="whale_analysis",
        choices=["whale_analysis", "deep_dive"],
        help="Analysis kind (default: whale_analysis)",
    )
    parser.add_argument(
        "--prefer",
        default=None,
        help="Provider preference: fast, deep, a provider name or provider:model",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Output the job status as raw JSON",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
