"""Run one tick of a background job outside the web process.

Useful from cron or systemd timers when the in-process scheduler is disabled
(``SCHEDULER_ENABLED=false``)::

    python -m scripts.run_job refresh
    python -m scripts.run_job reap
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from token_relay.core.config import get_settings
from token_relay.core.logging import configure_logging
from token_relay.dependencies import (
    build_refresh_scheduler,
    build_session_reaper,
    get_session_store,
    get_token_repository,
)

logger = logging.getLogger("scripts.run_job")

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1


async def _run_refresh() -> int:
    summary = await build_refresh_scheduler().run_once()
    print(
        f"examined={summary.examined} refreshed={len(summary.refreshed)} "
        f"failed={len(summary.failed)} aborted={summary.aborted}"
    )
    if summary.aborted or summary.failed:
        return EXIT_PARTIAL_FAILURE
    return EXIT_OK


async def _run_reap() -> int:
    reaped = await build_session_reaper().run_once()
    print(f"reaped={reaped}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run a token relay background job once.")
    parser.add_argument("job", choices=("refresh", "reap"))
    args = parser.parse_args(argv)

    configure_logging(get_settings().log_level)
    runner = _run_refresh if args.job == "refresh" else _run_reap
    try:
        return asyncio.run(runner())
    finally:
        get_token_repository().close()
        get_session_store().close()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
