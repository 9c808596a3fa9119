"""Read-only HTTP API over the results store."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request

from ciresults.config import CIResultsSettings, load_settings
from ciresults.db.pool import Database
from ciresults.db.store import Store
from ciresults.stats import InvalidStatsRequest, Stats, StatsEngine, StatsRequest

logger = logging.getLogger(__name__)


def create_app(settings: CIResultsSettings | None = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        db = Database(settings.database_path)
        await db.open()
        await db.apply_migrations()
        app.state.db = db
        logger.info("api started", extra={"database_path": settings.database_path})
        try:
            yield
        finally:
            await db.close()

    app = FastAPI(title="ciresults", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/builds", response_model=Stats)
    async def builds(
        request: Request,
        columns: str = "",
        filter: str = "",
        periods: str = "",
        testname: str = "",
    ) -> Stats:
        try:
            stats_request = StatsRequest.from_params(columns, filter, periods, testname)
            return await StatsEngine(_db(request).connection).build_stats(stats_request)
        except InvalidStatsRequest as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except Exception as exc:
            logger.exception("stats query failed", extra={"columns": columns, "filter": filter, "periods": periods})
            raise HTTPException(status_code=500, detail="internal server error") from exc

    @app.get("/api/list-tests")
    async def list_tests(request: Request) -> list[str]:
        try:
            return await Store(_db(request).connection).list_tests()
        except Exception as exc:
            logger.exception("listing tests failed")
            raise HTTPException(status_code=500, detail="internal server error") from exc

    return app


def _db(request: Request) -> Database:
    return request.app.state.db
