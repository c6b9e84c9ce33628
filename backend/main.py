from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError
from contextlib import asynccontextmanager
import logging

from core.config import settings
from core.database import initialize_db, db_manager
# Import exceptions and handlers
from core.exceptions import (
    APIException,
    api_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    sqlalchemy_exception_handler,
    general_exception_handler
)
import models  # noqa: F401  registers every table on Base.metadata
from routes import (
    admin_discounts_router,
    admin_security_router,
    health_router,
    pricing_router,
    unlock_codes_router,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup event
    initialize_db(
        settings.SQLALCHEMY_DATABASE_URI,
        settings.ENVIRONMENT == "local",
        pool_timeout=settings.DB_POOL_TIMEOUT,
    )
    if settings.ENVIRONMENT in ("local", "test"):
        await db_manager.create_all()
    logger.info(f"{settings.SERVICE_NAME} started in {settings.ENVIRONMENT} mode")
    yield
    # Shutdown event
    await db_manager.dispose()


app = FastAPI(
    title="SHC Commerce API",
    description="Discount, pricing and unlock code redemption services for the streaming platform.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include all routers with API versioning v1
app.include_router(unlock_codes_router, prefix="/api/v1")
app.include_router(pricing_router, prefix="/api/v1")
app.include_router(admin_discounts_router, prefix="/api/v1")
app.include_router(admin_security_router, prefix="/api/v1")
app.include_router(health_router)

# Exception handlers
app.add_exception_handler(APIException, api_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)


@app.get("/")
async def read_root():
    return {
        "service": settings.SERVICE_NAME,
        "version": "1.0.0",
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.ENVIRONMENT == "local")
