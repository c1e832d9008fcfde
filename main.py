import logging

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi

from core.celery import celery_app
from core.config import settings
from core.db import init_db
from core.errors import register_error_handlers
from core.logging_config import configure_logging
from routes.addresses import router as addresses_router
from routes.admin import router as admin_router
from routes.auth import router as auth_router
from routes.driver import router as driver_router
from routes.orders import router as orders_router
from routes.products import router as products_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }
    openapi_schema["security"] = [{"BearerAuth": []}]
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

register_error_handlers(app)

# Ensure tables exist (for dev/test; production schemas are migrated separately)
init_db()

app.include_router(auth_router)
app.include_router(addresses_router)
app.include_router(products_router)
app.include_router(orders_router)
app.include_router(driver_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
    }


@app.get("/celery-health")
async def celery_health_check():
    """Check Celery worker status"""
    try:
        stats = celery_app.control.inspect(timeout=1.0).stats()
    except Exception as e:  # broker errors vary by transport
        logger.warning("Celery health check failed: %s", e)
        return {"status": "unhealthy", "error": str(e)}
    if stats:
        return {"status": "healthy", "workers": len(stats)}
    return {"status": "no_workers", "message": "No Celery workers running"}


if __name__ == "__main__":
    import os
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
    )
