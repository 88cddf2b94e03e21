# storefront/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.api.errors import gateway_status
from storefront.api.routers import blog, carts, health, orders, webhooks
from storefront.data import models  # noqa: F401  registers tables on Base.metadata
from storefront.data.database import Base, engine
from storefront.domain.errors import GatewayError
from storefront.repos.blog_repo import build_blog_repo_factory
from storefront.services.rate_limiter import RateLimiter, build_rate_limiter
from storefront.utils.logging import configure_logging, get_logger
from storefront.utils.settings import BLOG_DATA_FILE, BLOG_STORAGE

logger = get_logger(__name__)


def client_key(request: Request) -> str:
    # one proxy hop in front of the app
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def create_app(
    rate_limiter: RateLimiter | None = None,
    blog_repo_factory=None,
    create_tables: bool = True,
) -> FastAPI:
    configure_logging()

    limiter = rate_limiter or build_rate_limiter()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if create_tables:
            Base.metadata.create_all(bind=engine)
            logger.info(f"Database tables ready: {sorted(Base.metadata.tables)}")
        yield
        limiter.close()
        logger.info("Rate limiter closed")

    app = FastAPI(
        title="Storefront API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.rate_limiter = limiter
    app.state.blog_repo_factory = blog_repo_factory or build_blog_repo_factory(
        BLOG_STORAGE, BLOG_DATA_FILE
    )

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if request.url.path.startswith("/api/"):
            key = client_key(request)
            # hit() may do blocking Redis I/O
            if not await run_in_threadpool(limiter.hit, key):
                logger.warning(f"Rate limit exceeded for {key}")
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Too many requests, please try again later"},
                )
        return await call_next(request)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        logger.error(f"Unhandled gateway error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=gateway_status(exc),
            content={"detail": "Fulfillment provider error", "upstream_status": exc.status_code},
        )

    # Include routers
    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(orders.router)
    app.include_router(webhooks.router)
    app.include_router(blog.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
