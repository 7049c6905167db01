import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import APP_NAME, CORS_ORIGINS, DEBUG, SCHEDULER_ENABLED
from app.errors import ServiceError
from app.tasks import start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Import routers
from app.routers import health
from app.routers.cms import router as cms_router
from app.routers.member import router as member_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info(f"Starting {APP_NAME}...")
    if SCHEDULER_ENABLED:
        start_scheduler()
    yield
    if SCHEDULER_ENABLED:
        stop_scheduler()
    logger.info(f"Shutting down {APP_NAME}...")


app = FastAPI(
    title=APP_NAME,
    description="Class scheduling, booking and class pack API for gyms and fitness clubs",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    parts = []
    for e in exc.errors():
        field = e["loc"][-1] if e.get("loc") else ""
        parts.append(f"{field}: {e['msg']}" if field and field != "__root__" else e["msg"])
    return JSONResponse(
        status_code=422,
        content={"detail": {"error_code": "VALIDATION_ERROR", "message": "; ".join(parts)}},
    )


@app.get("/")
def root():
    return {
        "message": f"Welcome to {APP_NAME}",
        "version": "1.0.0",
        "docs": "/docs",
    }


# Include routers
app.include_router(health.router)
app.include_router(cms_router)
app.include_router(member_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8181, reload=True)
