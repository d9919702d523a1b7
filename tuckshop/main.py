from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tuckshop.api.admin_routes import router as admin_router
from tuckshop.api.routes import router
from tuckshop.core.errors import (
    AccountError,
    BusinessRuleError,
    EmptyCart,
    InsufficientStock,
    OrderNotFound,
    OrderStateError,
    TransientInfraError,
)
from tuckshop.observability.logging import log
from tuckshop.services import Services, build_services
from tuckshop.settings import settings

BUSINESS_STATUS = (
    (OrderNotFound, 404),
    (InsufficientStock, 409),
    (OrderStateError, 409),
    (EmptyCart, 400),
    (AccountError, 400),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    yield


def create_app(services: Services = None) -> FastAPI:
    app = FastAPI(title="Tuckshop Ordering API", lifespan=lifespan)
    app.state.services = services

    origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.include_router(admin_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.exception_handler(BusinessRuleError)
    async def business_error_handler(request: Request, exc: BusinessRuleError):
        status = next((code for cls, code in BUSINESS_STATUS if isinstance(exc, cls)), 400)
        content = {"status": "error", "error": type(exc).__name__, "detail": str(exc)}
        if isinstance(exc, InsufficientStock):
            content["product"] = exc.product_name
            content["available"] = exc.available
        return JSONResponse(status_code=status, content=content)

    @app.exception_handler(TransientInfraError)
    async def transient_error_handler(request: Request, exc: TransientInfraError):
        log(event="request_transient_failure", path=request.url.path, errorType=type(exc).__name__)
        return JSONResponse(status_code=503, content={"status": "error", "detail": "Temporarily unavailable"})

    # Anything else: log it, never leak internals in the body.
    @app.exception_handler(Exception)
    async def universal_exception_handler(request: Request, exc: Exception):
        log(event="request_unhandled_error", path=request.url.path, errorType=type(exc).__name__,
            error=str(exc)[:300])
        return JSONResponse(status_code=500, content={"status": "error", "detail": "Internal error"})

    return app


app = create_app()
