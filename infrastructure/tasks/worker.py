"""Worker entry point.

Consumes every queue by default; `--queues high` style splitting is done by
passing a subset. `--beat` embeds the scheduler so a single process also drives
periodic reconciliation in small deployments. `--create-tables` creates any
missing tables before the worker starts.
"""
from __future__ import annotations

import argparse
import asyncio

from .config.celery import QUEUES, celery_app


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="provider-orchestrator worker")
    parser.add_argument("--queues", default=",".join(QUEUES))
    parser.add_argument("--beat", action="store_true", help="run the beat scheduler in-process")
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--loglevel", default="INFO")
    parser.add_argument("--create-tables", action="store_true")
    return parser


def build_argv(argv: list[str] | None = None) -> list[str]:
    options = _parser().parse_args(argv)

    worker_argv = [
        "worker",
        "--hostname=orchestrator@%h",
        f"--queues={options.queues}",
        f"--loglevel={options.loglevel}",
    ]
    if options.beat:
        worker_argv.append("--beat")
    if options.concurrency:
        worker_argv.append(f"--concurrency={options.concurrency}")
    return worker_argv


def main(argv: list[str] | None = None) -> None:
    options = _parser().parse_args(argv)
    if options.create_tables:
        from infrastructure.database import create_tables, engine

        async def _init() -> None:
            await create_tables()
            await engine.dispose()

        asyncio.run(_init())
    celery_app.worker_main(argv=build_argv(argv))


if __name__ == "__main__":
    main()
