#!/usr/bin/env python3
"""Requests a workflow run from the job server and prints its step results."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("workflow", nargs="?", default="example", help="Workflow name (default: example)")
    parser.add_argument("--data", default=None, help="JSON payload passed to the run")
    parser.add_argument("--expire", type=int, default=None, help="Deadline of the run in seconds")
    return parser.parse_args()


async def _request(name: str, data: Any, expire: int | None) -> Any:
    from planllama import PlanLlama, get_settings  # type: ignore
    from shared.models import JobOptions  # type: ignore

    options = JobOptions(expire_in_seconds=expire) if expire else None
    async with PlanLlama(settings=get_settings()) as client:
        return await client.request(name, data, options)


def main() -> int:
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))

    from planllama.config import get_settings  # type: ignore

    args = parse_args()
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    data = json.loads(args.data) if args.data else None
    try:
        results = asyncio.run(_request(args.workflow, data, args.expire))
    except Exception as exc:  # noqa: BLE001
        print(f"Workflow {args.workflow} failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(results, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
