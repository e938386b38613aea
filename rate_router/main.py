"""
Rate Router
FastAPI application entry point

- Order webhooks are acknowledged immediately and routed in background tasks
- The orchestrator is built once at startup with frozen business rules
- Shutdown cancels in-flight pipelines and closes outbound HTTP clients
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text

from rate_router.api.routes import decisions, webhooks
from rate_router.core.config import settings
from rate_router.core.database import AsyncSessionLocal, init_models
from rate_router.services.orchestrator import OrderRoutingOrchestrator

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create tables and start the routing pipeline on startup.
    """
    try:
        await init_models()
    except Exception as e:
        logger.error(f"Could not create tables: {type(e).__name__}: {e}")

    app.state.orchestrator = OrderRoutingOrchestrator.from_settings(settings)
    logger.info(f"Routing pipeline started (rules: {app.state.orchestrator.rules.to_dict()})")

    yield

    await app.state.orchestrator.shutdown()
    logger.info("Routing pipeline stopped, HTTP clients closed")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    description="Carrier rate shopping and routing decisions for incoming orders",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(decisions.router, prefix="/api", tags=["Decisions"])


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check with DB ping, enabled providers, and active business rules.
    Returns 503 if database is unreachable.
    """
    orchestrator = getattr(app.state, "orchestrator", None)
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "providers": [p.provider_name for p in orchestrator.aggregator.providers] if orchestrator else [],
        "business_rules": orchestrator.rules.to_dict() if orchestrator else None,
        "in_flight_orders": sum(
            1 for order_id in orchestrator.records if orchestrator.is_in_flight(order_id)
        ) if orchestrator else 0,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "rate_router.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
