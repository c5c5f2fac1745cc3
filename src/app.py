"""Settlement FastAPI application.

Web server that processes settlement commands synchronously via HTTP.
Each request runs inside the settlement domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay and, with LOG_LEVEL, the log output.
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from settlement.domain import settlement
from settlement.utils.logging import configure_logging

configure_logging()
settlement.init()

_DOMAIN_PREFIXES = ("/orders", "/delivery", "/webhooks")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Settlement API",
    description="Grocery order settlement — stock, fees, weighing, payment and delivery",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the settlement domain context for domain routes."""
    if request.url.path.startswith(_DOMAIN_PREFIXES):
        with settlement.domain_context():
            response = await call_next(request)
        return response
    # Health check, docs, etc.
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from settlement.api import (  # noqa: E402
    delivery_router,
    order_router,
    register_settlement_exception_handlers,
    webhook_router,
)

app.include_router(order_router)
app.include_router(delivery_router)
app.include_router(webhook_router)

register_exception_handlers(app)
register_settlement_exception_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domains": {"settlement": {"name": settlement.name}}})
