import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .admin import router as admin_router
from .cart import router as cart_router
from .config import settings
from .database import init_db
from .errors import StoreError
from .log import setup_logging
from .main import router as auth_router
from .order import router as order_router
from .payments import router as payment_router
from .shipping import router as shipping_router
from .store import router as store_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    logger.info("Starting storefront API")

    # Create database tables if they don't exist
    init_db()

    yield

    logger.info("Storefront API stopped")


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "code": code},
    )


async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message, exc.code)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = "NOT_FOUND" if exc.status_code == status.HTTP_404_NOT_FOUND else "HTTP_ERROR"
    return _error(exc.status_code, str(exc.detail), code)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return _error(status.HTTP_400_BAD_REQUEST, message, "VALIDATION")


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "INTERNAL")


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(StoreError, store_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)


@app.get("/health")
def health():
    return {"success": True, "message": "ok"}


for router in (
    auth_router,
    store_router,
    cart_router,
    order_router,
    payment_router,
    shipping_router,
    admin_router,
):
    app.include_router(router, prefix=settings.API_PREFIX)
