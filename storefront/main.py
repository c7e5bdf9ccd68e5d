import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from storefront.api import cart as cart_routes
from storefront.api import coupons as coupon_routes
from storefront.api import orders as order_routes
from storefront.core.errors import StorefrontError
from storefront.core.logging import configure_logging
from storefront.version import VERSION

configure_logging()
logger = structlog.get_logger(__name__)

# Create instrumentator first
instrumentator = Instrumentator()

app = FastAPI(title="Storefront Service", version=VERSION)

# Instrument the app BEFORE adding routes or middleware
instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/metrics",
    should_gzip=True,
)

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.warning("Request failed on a dependency", path=request.url.path, error=exc.message)
    body = {"detail": exc.message, "error": type(exc).__name__}
    reason = getattr(exc, "reason", None)
    if reason is not None:
        body["reason"] = reason.value
    return JSONResponse(status_code=exc.status_code, content=body)

@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/v1/_info")
def info():
    return {"service": "storefront", "version": VERSION}

app.include_router(order_routes.router, prefix="/orders", tags=["orders"])
app.include_router(coupon_routes.router, prefix="/coupons", tags=["coupons"])
app.include_router(cart_routes.router, prefix="/cart", tags=["cart"])
