"""FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .database import Base, engine, get_db
from .domain_errors import DomainError
from .problem_details import domain_error_handler
from .routers import bom, bulk, inventory, phases, work_orders
from .schemas import HealthResponse

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # No migration tool; tables are created from the models on startup.
    Base.metadata.create_all(bind=engine)
    yield


# Create app
app = FastAPI(
    title="IMS Repairs",
    version=APP_VERSION,
    description="Work order lifecycle and inventory reservation API",
    lifespan=lifespan,
)

if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard).")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.add_exception_handler(DomainError, domain_error_handler)

# Include routers; bulk first so /work-orders/bulk/* never reaches the {id} routes.
app.include_router(bulk.router, prefix="/api/v1")
app.include_router(work_orders.router, prefix="/api/v1")
app.include_router(bom.router, prefix="/api/v1")
app.include_router(phases.router, prefix="/api/v1")
app.include_router(inventory.router, prefix="/api/v1")


@app.get("/api/v1/system/health", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint."""
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check database query failed")
        database = "error"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=APP_VERSION,
        database=database,
    )
