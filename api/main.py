import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from archive import router as archive_router
from core import db
from core.errors import FeatureDisabled, InvalidSearchParam, QueryFailure

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    # Initialize the DB pool once per process.
    await db.init_pool()
    try:
        yield
    finally:
        await db.close_pool()


app = FastAPI(lifespan=lifespan)

app.include_router(archive_router.router, tags=["archive"])


@app.exception_handler(FeatureDisabled)
async def feature_disabled_handler(_: Request, exc: FeatureDisabled) -> JSONResponse:
    return JSONResponse(status_code=501, content={"detail": str(exc), "feature": exc.feature})


@app.exception_handler(InvalidSearchParam)
async def invalid_search_param_handler(_: Request, exc: InvalidSearchParam) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc), "param": exc.key})


@app.exception_handler(QueryFailure)
async def query_failure_handler(request: Request, exc: QueryFailure) -> JSONResponse:
    logger.error("query_failure path=%s sqlstate=%s error=%s", request.url.path, exc.sqlstate, exc)
    return JSONResponse(status_code=500, content={"detail": "Database error."})


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
