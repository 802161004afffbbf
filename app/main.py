"""
Docs Translator API.

Application factory, middleware stack and router wiring. The translation
pipeline (stores, webhook detector, job queue, engine) is built once per
process and shared through ``app.state.services``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from commons import limiter
from configs.config import get_config
from logging_config import setup_logging
from security import RequestIdMiddleware, SecurityHeadersMiddleware
from src.jobs.service import TranslationService, build_services
from src.routes import repo_routes, task_routes, webhook_routes

# ── Logging ──────────────────────────────────────────────────────────────────
setup_logging()
logger = logging.getLogger(__name__)

cfg = get_config()

QUEUE_DRAIN_TIMEOUT_SECONDS = 30.0


# ── App Factory ──────────────────────────────────────────────────────────────


def create_app(services: Optional[TranslationService] = None) -> FastAPI:
    """Build the FastAPI app around a (possibly injected) service container."""
    services = services if services is not None else build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.startup()
        logger.info("Docs Translator started (%s)", cfg.ENVIRONMENT)
        yield
        logger.info("Shutting down, draining job queue")
        services.shutdown(timeout=QUEUE_DRAIN_TIMEOUT_SECONDS)

    app = FastAPI(
        title="Docs Translator API",
        lifespan=lifespan,
        docs_url="/docs" if cfg.DOCS_ENABLED else None,
        redoc_url="/redoc" if cfg.DOCS_ENABLED else None,
        openapi_url="/openapi.json" if cfg.DOCS_ENABLED else None,
    )
    app.state.services = services
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ── Middleware Stack (order matters – outermost first) ───────────────────

    # 1. Request-ID tracking
    app.add_middleware(RequestIdMiddleware)

    # 2. Security response headers
    app.add_middleware(SecurityHeadersMiddleware)

    # 3. Trusted hosts
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=cfg.ALLOWED_HOSTS)

    # 4. CORS – explicit methods & headers instead of wildcards
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=cfg.CORS_METHODS,
        allow_headers=cfg.CORS_HEADERS,
    )

    # ── Routers ──────────────────────────────────────────────────────────────
    app.include_router(webhook_routes.router)
    app.include_router(task_routes.router)
    app.include_router(repo_routes.router)

    return app


app = create_app()


# ═══════════════════════════════════════════════════════════════════════════
#  ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Run Docs Translator API")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload on code changes")
    parser.add_argument("--cert-file", default=None, help="Path to SSL certificate file (enables HTTPS)")
    parser.add_argument("--key-file", default=None, help="Path to SSL private key file (required with --cert-file)")

    args = parser.parse_args()

    if (args.cert_file and not args.key_file) or (args.key_file and not args.cert_file):
        logger.error("Both --cert-file and --key-file must be provided together")
        raise SystemExit(1)

    protocol = "HTTPS" if args.cert_file else "HTTP"
    logger.info("Starting %s server on %s:%d", protocol, args.host, args.port)

    # A single worker process: the job queue is in-memory
    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
        ssl_certfile=args.cert_file,
        ssl_keyfile=args.key_file,
        workers=1,
    )
