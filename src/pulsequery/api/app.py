"""FastAPI application for the query engine.

every response is a json object with a `success` flag. failures - unknown
types, bad filters, malformed bodies, anything unexpected - come back as
{success: false, error} with a 4xx/5xx status; nothing escapes as a bare
exception or fastapi's default {detail} shape.
"""

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Body, Depends, FastAPI, Header, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from pulsequery.api.schemas import CompileBody, QueryBody
from pulsequery.engine import AnalyticsEngine
from pulsequery.errors import QueryError, UnknownParameterError

logger = logging.getLogger(__name__)


def get_engine(request: Request) -> AnalyticsEngine:
    return request.app.state.engine


EngineDep = Annotated[AnalyticsEngine, Depends(get_engine)]


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _validation_message(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "Invalid request: " + "; ".join(problems)


def create_app(engine: AnalyticsEngine | None = None) -> FastAPI:
    """Build the api around an engine.

    if the engine isn't started yet the app starts it on startup and stops
    it on shutdown. an engine that's already running belongs to the caller.
    """
    engine = engine or AnalyticsEngine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = not engine.started
        if owned:
            engine.start()
        yield
        if owned:
            engine.stop()

    app = FastAPI(
        title=engine.settings.app_name,
        version="0.1.0",
        description="Analytics query compiler and batch execution API",
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, _validation_message(exc))

    # request models built from already-parsed bodies (bad granularity, page < 1, ...)
    @app.exception_handler(ValidationError)
    async def model_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, f"Invalid request: {exc.errors()[0]['msg']}")

    @app.exception_handler(QueryError)
    async def query_error_handler(request: Request, exc: QueryError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    @app.get("/healthz")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "ok", "environment": engine.settings.environment}

    @app.get("/types")
    async def list_types(engine: EngineDep) -> dict:
        """Every query type, with the knobs a client may turn on each."""
        return {"success": True, "types": engine.list_types(), "configs": engine.describe()}

    @app.get("/types/{name}", response_model=None)
    async def describe_type(name: str, engine: EngineDep) -> JSONResponse | dict:
        try:
            meta = engine.describe_type(name)
        except UnknownParameterError as e:
            return _error(status.HTTP_404_NOT_FOUND, str(e))
        return {"success": True, "type": name, "meta": meta}

    @app.post("/compile")
    async def compile_query(
        body: CompileBody,
        engine: EngineDep,
        x_timezone: Annotated[str | None, Header()] = None,
    ) -> dict:
        """Dry run: the sql and params a query would execute with."""
        compiled = engine.compile(body.to_compile_request(timezone=x_timezone))
        return {"success": True, "sql": compiled.sql, "params": compiled.params}

    @app.post("/")
    async def run_queries(
        payload: Annotated[QueryBody | list[QueryBody], Body()],
        engine: EngineDep,
        website_id: Annotated[str, Query(min_length=1)],
        start_date: str | None = None,
        end_date: str | None = None,
        timezone: str | None = None,
        x_timezone: Annotated[str | None, Header()] = None,
    ) -> dict:
        """Run one request object, or a list of them as a batch."""
        default_timezone = timezone or x_timezone or "UTC"
        bodies = payload if isinstance(payload, list) else [payload]
        requests = [
            body.to_request(website_id, start_date, end_date, default_timezone) for body in bodies
        ]
        envelopes = await engine.execute(requests)

        if isinstance(payload, list):
            return {
                "success": True,
                "batch": True,
                "results": [envelope.to_wire() for envelope in envelopes],
            }
        return envelopes[0].to_wire()

    return app
