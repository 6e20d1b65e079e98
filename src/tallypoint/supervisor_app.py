from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from tallypoint import __version__
from tallypoint.access_log import AccessLogMiddleware
from tallypoint.auth import require_auth
from tallypoint.config import Settings
from tallypoint.errors import BadCredentialSyntax, NotFound, TallyError, Unauthorized, ValidationError
from tallypoint.ingest import ingest_batch
from tallypoint.store import FilterStore

log = logging.getLogger(__name__)

BANNER = "This is the tallypoint supervisor"


def ok(**fields: Any) -> Dict[str, Any]:
    return {"status": "ok", **fields}


def error(message: str, status_code: int, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse({"status": "error", "message": message}, status_code=status_code, headers=headers)


def _store(request: Request) -> FilterStore:
    return request.app.state.store


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError):
        return error(str(exc), 400)

    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound):
        return error(str(exc), 404)

    @app.exception_handler(BadCredentialSyntax)
    async def _bad_syntax(request: Request, exc: BadCredentialSyntax):
        return error(str(exc), 400)

    @app.exception_handler(Unauthorized)
    async def _unauthorized(request: Request, exc: Unauthorized):
        log.warning("rejected %s %s from %s", request.method, request.url.path,
                    request.client.host if request.client else None)
        return error(str(exc), 401, headers={"WWW-Authenticate": 'Basic realm="tallypoint"'})

    @app.exception_handler(TallyError)
    async def _other(request: Request, exc: TallyError):
        return error(str(exc), 500)

    @app.exception_handler(StarletteHTTPException)
    async def _http(request: Request, exc: StarletteHTTPException):
        return error(str(exc.detail), exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        log.exception("unhandled error on %s %s", request.method, request.url.path)
        return error("internal error", 500)


def create_app(settings: Optional[Settings] = None, store: Optional[FilterStore] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    if store is None:
        store = FilterStore.open(settings.db_file)

    app = FastAPI(
        title="tallypoint",
        version=__version__,
        dependencies=[Depends(require_auth)],
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.store = store
    if settings.access_log:
        app.add_middleware(AccessLogMiddleware, path=settings.access_log)
    _register_error_handlers(app)

    # ----------------------------
    # Routes
    # ----------------------------
    @app.get("/")
    def home():
        return ok(hello=BANNER)

    @app.post("/filter")
    def create_filter(request: Request, name: str = "", regex: str = ""):
        owner = request.client.host if request.client else ""
        filter_id = _store(request).create(name=name, owner=owner, pattern=regex)
        return ok(filter_id=filter_id)

    @app.get("/filter")
    def list_filters(request: Request):
        return ok(filters=[flt.model_dump() for flt in _store(request).list()])

    @app.get("/filter/{filter_id}/result")
    def get_results(request: Request, filter_id: str):
        flt = _store(request).get(filter_id.strip())
        return ok(results=flt.results)

    @app.put("/filter/{filter_id}/result")
    async def put_results(request: Request, filter_id: str):
        body = (await request.body()).decode("utf-8", errors="replace")
        res = await run_in_threadpool(ingest_batch, _store(request), filter_id.strip(), body)
        return ok(ack=res.ack, lines=res.lines)

    @app.delete("/filter/{filter_id}")
    def delete_filter(request: Request, filter_id: str):
        return ok(deleted=_store(request).delete(filter_id.strip()))

    return app
