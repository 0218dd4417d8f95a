"""FastAPI application entrypoint.

Configures CORS, includes routers, and exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from . import schemas
from .config import get_settings
from .database import dispose_engine, init_db
from .routers import crm as crm_router
from .routers import public_api as public_api_router
from .routers import sheets as sheets_router
from .telemetry import init_sentry

# Import models so create_all sees every table
from . import models  # noqa: F401


def create_app() -> FastAPI:
    app = FastAPI(
        title="funnelboard API",
        description="""
        funnelboard pairs a campaign dashboard with a lightweight sales CRM.

        This API provides endpoints for:
        - Reading campaign exports from Google Sheets and aggregating metrics
        - Pipelines, stages and leads with a full stage-movement history
        - Tags, custom fields and interactions on leads
        - Funnel, recovery and sales analytics
        - A public lead API (webhook capture, lookup, moves) for integrations

        ## Authentication

        Dashboard endpoints (`/crm/*`) expect a JWT in the `Authorization`
        header or the `access_token` cookie. Public endpoints (`/api/crm/*`)
        expect an `X-API-Key` header issued from `/crm/api-keys`.
        """,
        version="1.0.0",
        servers=[
            {
                "url": "http://localhost:8000",
                "description": "Development server"
            },
        ]
    )

    # Trust X-Forwarded-Proto from the load balancer so request.url.scheme is "https"
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

    settings = get_settings()
    allowed_origins = settings.cors_origins
    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sheets_router.router)
    app.include_router(crm_router.router)
    app.include_router(public_api_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
        description="""
        Simple health check endpoint to verify the API is running.

        This endpoint:
        - Does not require authentication
        - Returns basic service status
        """
    )
    def health():
        return schemas.HealthResponse(status="ok")

    @app.on_event("startup")
    async def startup_event():
        """Create tables and start error tracking."""
        init_db()
        init_sentry()
        logger.info(f"[STARTUP] funnelboard API ready ({settings.ENVIRONMENT})")

    @app.on_event("shutdown")
    async def shutdown_event():
        dispose_engine()
        logger.info("[SHUTDOWN] Database engine disposed")

    # Custom OpenAPI schema with security definitions
    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            servers=app.servers
        )

        openapi_schema["components"]["securitySchemes"] = {
            "bearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Session JWT (also accepted from the access_token cookie)"
            },
            "apiKeyAuth": {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Key issued from /crm/api-keys"
            },
        }

        for path in openapi_schema["paths"]:
            if path.startswith("/crm"):
                scheme = "bearerAuth"
            elif path.startswith("/api/crm") and path != "/api/crm/leads/webhook":
                scheme = "apiKeyAuth"
            else:
                scheme = None
            for method, operation in openapi_schema["paths"][path].items():
                if path == "/api/crm/leads/webhook" and method == "post":
                    operation.setdefault("security", [{"apiKeyAuth": []}])
                elif scheme:
                    operation.setdefault("security", [{scheme: []}])

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi
    return app


app = create_app()
