import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status

from spog.api.dependencies import build_services
from spog.api.v1.inventory import router as inventory_router
from spog.api.v1.ledger import router as ledger_router
from spog.api.v1.transactions import router as transactions_router
from spog.core.config import LOG_LEVEL, PROJECT_NAME, VERSION
from spog.core.datastore import TortoiseDatastore
from spog.core.db import close_db, init_db
from spog.core.exception_handlers import setup_exception_handlers

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events. Owns the datastore handle."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db() # Connect to DB and generate schemas
    app.state.services = build_services(TortoiseDatastore())
    yield
    app.state.services = None
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    # Configure API documentation and paths
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers for modular API structure
app.include_router(transactions_router, prefix="/api/v1", tags=["Stock Transactions"])
app.include_router(inventory_router, prefix="/api/v1/inventory", tags=["Inventory"])
app.include_router(ledger_router, prefix="/api/v1/ledger", tags=["Ledger"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}
