from __future__ import annotations

import asyncio
import json
import signal
import sys
from contextlib import suppress
from dataclasses import dataclass
from typing import Annotated

import typer
import uvicorn

from ciresults.api.app import create_app
from ciresults.config import CIResultsSettings, load_settings, refresh_process_env_from_file
from ciresults.db.pool import Database
from ciresults.harvest.runner import IngestRunner, reclassify_all
from ciresults.infra.rate_limiter import AsyncTokenBucket
from ciresults.logging import setup_logging
from ciresults.sources.ciconfig_client import CIConfigClient
from ciresults.sources.testgrid_client import TestGridClient
from ciresults.stats import InvalidStatsRequest, StatsEngine, StatsRequest

app = typer.Typer(help="CI results indexer and stats API.")


def _ensure_windows_selector_loop() -> None:
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@dataclass
class RuntimeContext:
    settings: CIResultsSettings
    db: Database
    testgrid: TestGridClient
    ciconfig: CIConfigClient
    runner: IngestRunner


async def create_runtime(settings: CIResultsSettings) -> RuntimeContext:
    db = Database(settings.database_path)
    await db.open()
    await db.apply_migrations()
    testgrid_limit = settings.rate_limit("testgrid")
    ciconfig_limit = settings.rate_limit("ciconfig")
    testgrid = TestGridClient(
        limiter=AsyncTokenBucket(testgrid_limit.rate, testgrid_limit.burst),
        retry=settings.retry,
        timeout_seconds=settings.http_timeout_seconds,
    )
    ciconfig = CIConfigClient(
        limiter=AsyncTokenBucket(ciconfig_limit.rate, ciconfig_limit.burst),
        retry=settings.retry,
        timeout_seconds=settings.http_timeout_seconds,
    )
    runner = IngestRunner(settings=settings, db=db, source=testgrid, ciconfig=ciconfig)
    return RuntimeContext(settings=settings, db=db, testgrid=testgrid, ciconfig=ciconfig, runner=runner)


async def close_runtime(ctx: RuntimeContext) -> None:
    await ctx.testgrid.close()
    await ctx.ciconfig.close()
    await ctx.db.close()


@app.command("migrate")
def migrate() -> None:
    """Apply SQL migrations."""
    settings = load_settings()
    setup_logging(settings.log_level)
    _ensure_windows_selector_loop()

    async def _run() -> None:
        db = Database(settings.database_path)
        await db.open()
        try:
            applied = await db.apply_migrations()
            typer.echo(f"Applied migrations: {applied if applied else 'none'}")
        finally:
            await db.close()

    asyncio.run(_run())


@app.command("index")
def index() -> None:
    """Run one ingestion from TestGrid into the local database."""
    settings = load_settings()
    setup_logging(settings.log_level)
    _ensure_windows_selector_loop()

    async def _run() -> bool:
        ctx = await create_runtime(settings)
        try:
            summary = await ctx.runner.run_once()
        finally:
            await close_runtime(ctx)
        if summary is None:
            return False
        typer.echo(f"index completed: {summary.as_dict()}")
        return True

    if not asyncio.run(_run()):
        typer.echo("index failed", err=True)
        raise typer.Exit(code=1)


@app.command("run")
def run() -> None:
    """Ingest on a schedule; SIGHUP reloads settings from .env."""
    refresh_process_env_from_file()
    load_settings.cache_clear()
    settings = load_settings()
    setup_logging(settings.log_level)
    _ensure_windows_selector_loop()

    async def _run() -> None:
        stop_event = asyncio.Event()
        reload_event = asyncio.Event()
        _install_signal_handlers(stop_event, reload_event)
        while not stop_event.is_set():
            refresh_process_env_from_file()
            load_settings.cache_clear()
            current_settings = load_settings()
            setup_logging(current_settings.log_level)
            ctx = await create_runtime(current_settings)
            runner_task = asyncio.create_task(ctx.runner.run_forever())
            stop_wait = asyncio.create_task(stop_event.wait())
            reload_wait = asyncio.create_task(reload_event.wait())
            done, pending = await asyncio.wait(
                [runner_task, stop_wait, reload_wait],
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            if runner_task in done:
                exc = runner_task.exception()
                await close_runtime(ctx)
                if exc:
                    raise exc
                break
            with suppress(asyncio.CancelledError):
                await runner_task
            await close_runtime(ctx)
            if reload_wait in done:
                reload_event.clear()
                typer.echo("settings reloaded")

    asyncio.run(_run())


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host")] = "",
    port: Annotated[int, typer.Option("--port", min=0, max=65535)] = 0,
) -> None:
    """Serve the stats API."""
    settings = load_settings()
    setup_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_config=None,
    )


@app.command("stats")
def stats(
    columns: Annotated[str, typer.Option("--columns", help="Comma separated: sippytags,name,dashboard,test")] = "",
    filter_: Annotated[str, typer.Option("--filter", help="Space separated tags, '-' prefix excludes")] = "",
    periods: Annotated[str, typer.Option("--periods", help="Comma separated day counts, newest first")] = "",
    testname: Annotated[str, typer.Option("--testname")] = "",
) -> None:
    """Print a stats query result as JSON."""
    settings = load_settings()
    setup_logging(settings.log_level)
    _ensure_windows_selector_loop()
    try:
        request = StatsRequest.from_params(columns, filter_, periods, testname)
    except InvalidStatsRequest as exc:
        raise typer.BadParameter(str(exc)) from exc

    async def _run() -> dict:
        db = Database(settings.database_path)
        await db.open()
        try:
            result = await StatsEngine(db.connection).build_stats(request)
            return result.to_json_dict()
        finally:
            await db.close()

    typer.echo(json.dumps(asyncio.run(_run()), indent=2))


@app.command("reclassify")
def reclassify(
    step_tags: Annotated[
        bool,
        typer.Option("--step-tags/--no-step-tags", help="Download CI configs for step based tags"),
    ] = True,
) -> None:
    """Recompute classification and tags of every stored job."""
    settings = load_settings()
    setup_logging(settings.log_level)
    _ensure_windows_selector_loop()

    async def _run() -> int:
        ctx = await create_runtime(settings)
        try:
            if not step_tags:
                ctx.runner.ciconfig = None
            classifier = await ctx.runner.build_classifier()
            return await reclassify_all(ctx.db, classifier)
        finally:
            await close_runtime(ctx)

    typer.echo(f"reclassified jobs: {asyncio.run(_run())}")


def _install_signal_handlers(stop_event: asyncio.Event, reload_event: asyncio.Event | None) -> None:
    try:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)
        if reload_event and hasattr(signal, "SIGHUP"):
            loop.add_signal_handler(signal.SIGHUP, reload_event.set)
    except NotImplementedError:
        return


if __name__ == "__main__":
    app()
