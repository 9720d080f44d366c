"""Checkout HTTP entrypoint.

Starts a payer's Express Checkout, receives them back from the provider, and
exposes admin/ops endpoints over the in-memory transaction registry.
"""

from datetime import timedelta
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from expresspay.common.config import settings
from expresspay.common.logging import configure_logging, logger, trace_id_ctx
from expresspay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from expresspay.common.startup import log_startup_config
from expresspay.common.tracing import instrument_app, setup_tracing
from expresspay.nvp.client import NvpClient
from expresspay.nvp.errors import (
    BusinessError,
    DuplicateConfirmationError,
    ProviderError,
    RateLimitExceededError,
    RegistrationConflictError,
    TransactionNotFoundError,
)
from expresspay.nvp.transport import HttpxTransport
from expresspay.services.checkout.registry import TransactionRegistry
from expresspay.services.checkout.service import ExpressCheckoutService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "NVP_ENDPOINT_URL",
        "NVP_USER",
        "NVP_PASSWORD",
        "NVP_SIGNATURE",
        "CHECKOUT_SANDBOX",
        "MAX_ACTIVE_TRANSACTIONS",
        "MAX_TRANSACTION_MINUTES",
        "MAX_TRANSACTIONS_PER_ORIGIN",
    ],
)


def build_service() -> ExpressCheckoutService:
    """Wire settings into the NVP client, registry and checkout flow."""

    client = NvpClient(
        transport=HttpxTransport(timeout=settings.nvp_timeout_seconds),
        endpoint_url=settings.nvp_endpoint_url,
        user=settings.nvp_user,
        password=settings.nvp_password,
        signature=settings.nvp_signature,
        version=settings.nvp_version,
    )
    registry = TransactionRegistry(
        max_active=settings.max_active_transactions,
        max_lifetime=timedelta(minutes=settings.max_transaction_minutes),
        max_per_origin=settings.max_transactions_per_origin,
    )
    return ExpressCheckoutService(
        client,
        registry,
        return_url=settings.checkout_return_url,
        cancel_url=settings.checkout_cancel_url,
        currency=settings.checkout_currency,
        useraction=settings.checkout_useraction,
        sandbox=settings.checkout_sandbox,
    )


service = build_service()
app = FastAPI(title="Express Checkout")
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency, and bind a trace id for log lines."""

    start = perf_counter()
    trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


@app.exception_handler(ProviderError)
async def provider_error_handler(_: Request, exc: ProviderError):
    """Map checkout failures onto HTTP statuses."""

    if isinstance(exc, RateLimitExceededError):
        status_code, detail = 429, "too many pending checkouts"
    elif isinstance(exc, RegistrationConflictError):
        status_code, detail = 409, "checkout already pending"
    elif isinstance(exc, TransactionNotFoundError):
        status_code, detail = 404, "checkout not found"
    elif isinstance(exc, DuplicateConfirmationError):
        status_code, detail = 409, "checkout already confirmed"
    elif isinstance(exc, BusinessError):
        status_code, detail = 402, exc.message
    else:
        logger.error("provider unavailable: %s", exc)
        status_code, detail = 502, "payment provider unavailable"
    return JSONResponse(status_code=status_code, content={"detail": detail})


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject admin requests that do not provide the configured API key."""

    if x_api_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


@app.get("/checkout")
def start_checkout(request: Request, amount: str = Query(min_length=1), currency: str | None = None):
    """Open a provider session and send the payer to the provider."""

    origin = request.client.host if request.client else "unknown"
    try:
        url = service.initiate_checkout(amount, origin, currency=currency)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return RedirectResponse(url, status_code=303)


@app.get("/checkout/return")
def checkout_return(token: str = ""):
    """Confirm the payment for a payer coming back from the provider."""

    def succeeded(amount: str, currency: str, token: str, result: dict) -> dict:
        return {
            "status": "completed",
            "amount": amount,
            "currency": currency,
            "token": token,
            "transaction_id": result.get("TRANSACTIONID") or result.get("PAYMENTINFO_0_TRANSACTIONID"),
        }

    def failed() -> dict:
        return {"status": "failed", "token": token}

    return service.complete_checkout(token, succeeded, failed)


@app.get("/checkout/cancel")
def checkout_cancel(token: str = ""):
    """Payer abandoned at the provider; the pending record ages out on its own."""

    logger.info("checkout cancelled by payer token=%s", token)
    return {"status": "cancelled", "token": token}


@app.get("/admin/transactions")
def list_transactions(x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return {"tokens": service.list_active_tokens()}


@app.delete("/admin/transactions")
def clear_transactions(x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return {"cleared": service.clear_all_transactions()}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
