import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from prometheus_client import make_asgi_app

from api.v1.endpoints import web2md
from core.config import settings
from core.container import ServiceContainer
from core.exceptions import RateLimited, ValidationError, Web2MdException
from core.logging import configure_logging

# Prometheus metrics endpoint
metrics_app = make_asgi_app()


# ------------------------------------------------------------------
# FastAPI App Lifecycle
# ------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    logger.info("Initializing application...")
    logger.info(f"Loaded user agent: {settings.DEFAULT_USER_AGENT}")

    app.state.services = await ServiceContainer.create(settings)
    try:
        yield
    finally:
        logger.info("Shutting down application...")
        await app.state.services.aclose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Turns web pages into clean, versioned markdown snapshots",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.ALLOWED_HOSTS,
)

app.include_router(web2md.router, prefix="/api/v1", tags=["web2md"])


@app.middleware("http")
async def add_timing_header(request: Request, call_next):
    start_time = time.perf_counter()
    response = await call_next(request)
    process_time = time.perf_counter() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ValidationError(errors=exc.errors()).to_dict(),
    )


@app.exception_handler(RateLimited)
async def rate_limited_handler(request: Request, exc: RateLimited):
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"Retry-After": str(exc.retry_after), "Cache-Control": "no-store"},
    )


@app.exception_handler(Web2MdException)
async def web2md_exception_handler(request: Request, exc: Web2MdException):
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled exception: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_SERVER_ERROR",
                "message": "An unexpected error occurred",
                "status": 500,
            }
        },
    )


app.mount("/metrics", metrics_app)


@app.get("/health")
async def health_check(request: Request):
    services = getattr(request.app.state, "services", None)
    renderer = services.renderer if services else None
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "browser": {
            "available": bool(renderer and renderer.capability.available),
            "reason": renderer.capability.reason if renderer else "disabled",
        },
        "inFlight": services.snapshots.in_flight if services else 0,
    }


@app.get("/")
async def root():
    return {
        "name": settings.PROJECT_NAME,
        "version": "1.0.0",
        "description": "Turns web pages into clean, versioned markdown snapshots",
        "docs_url": "/docs",
        "health_check": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=settings.WORKERS,
        log_level=settings.LOG_LEVEL.lower(),
    )
