"""HTTP mapping for settlement exceptions.

Protean's own exceptions (ValidationError, ObjectNotFoundError, ...) are
mapped by ``protean.integrations.fastapi.register_exception_handlers``; this
module adds the settlement-specific ones.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from settlement.shared.errors import (
    CallbackRejected,
    ConcurrencyError,
    DispatchUnavailable,
    InvalidSignature,
)


def register_settlement_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConcurrencyError)
    async def _concurrency(request: Request, exc: ConcurrencyError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"error": str(exc), "sku_id": exc.sku_id, "retryable": True})

    @app.exception_handler(CallbackRejected)
    async def _callback_rejected(request: Request, exc: CallbackRejected) -> JSONResponse:
        return JSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(DispatchUnavailable)
    async def _dispatch_unavailable(request: Request, exc: DispatchUnavailable) -> JSONResponse:
        return JSONResponse(status_code=502, content={"error": str(exc), "retryable": exc.retryable})

    @app.exception_handler(InvalidSignature)
    async def _invalid_signature(request: Request, exc: InvalidSignature) -> JSONResponse:
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})
