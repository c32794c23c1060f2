"""Serves an example workflow against the configured job server."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path


async def _serve() -> None:
    from planllama import PlanLlama, get_settings  # type: ignore

    client = PlanLlama(settings=get_settings())

    async def fetch(results):
        return {"rows": 3}

    def summarise(results):
        return f"{results['fetch']['rows']} rows"

    await client.work("echo", lambda job: job.data)
    await client.workflow(
        "example",
        {
            "fetch": fetch,
            "summarise": ["fetch", summarise],
        },
    )
    await client.start()
    try:
        await asyncio.Event().wait()
    finally:
        await client.stop()


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))

    # Lazy import after adjusting sys.path
    from planllama.config import get_settings  # type: ignore

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
