from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from hireflow.api.dev import router as dev_router
from hireflow.api.v1.router import router as v1_router
from hireflow.core.config import settings
from hireflow.core.logging import configure_logging
from hireflow.db import init_db
from hireflow.middleware.request_id import RequestIdMiddleware
from hireflow.runtime import get_runtime, shutdown_runtime

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.db_auto_create:
        init_db()
    app.state.runtime = get_runtime()
    try:
        yield
    finally:
        app.state.runtime = None
        shutdown_runtime()


app = FastAPI(title="Hireflow API", lifespan=lifespan)

# Starlette runs the LAST added middleware FIRST (outermost),
# so RequestId wraps CORS preflight responses too.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)

Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/")
def root():
    return {"name": "Hireflow API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(v1_router, prefix="/v1")

if settings.env == "local" and settings.dev_routes_enabled:
    app.include_router(dev_router)
