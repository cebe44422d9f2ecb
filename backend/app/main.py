from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.core.database import engine, Base
from app.core.exceptions import OrderPipelineError
from app.core.logging_config import setup_logging, get_logger
from app.api.orders import router as orders_router
from app.api.trucks import router as trucks_router
from app.api.auth import router as auth_router
from app.services.notifications import dispatcher

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables checked/created")
    yield
    await dispatcher.aclose()
    await engine.dispose()


app = FastAPI(title="Food Truck Orders", version="1.0.0", lifespan=lifespan)


@app.exception_handler(OrderPipelineError)
async def pipeline_error_handler(request: Request, exc: OrderPipelineError):
    if exc.status_code >= 500:
        logger.warning("%s %s: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: %s", exc)
    detail = "Internal server error"
    err_str = str(exc).lower()
    if "duplicate key" in err_str or "unique constraint" in err_str:
        detail = "Data conflict (duplicate). Reload and try again."
    elif "foreign key" in err_str:
        detail = "Referenced record not found (e.g. unknown truck)."
    return JSONResponse(
        status_code=500,
        content={"detail": detail},
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(orders_router)
app.include_router(trucks_router)
app.include_router(auth_router)


@app.get("/health")
def health():
    return {"status": "ok"}
