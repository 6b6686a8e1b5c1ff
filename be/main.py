"""
Main FastAPI Application Entry Point

This is the primary application file for the AEBF (Actual / Estimate /
Budget / Forecast) divisional budget backend. It sets up the FastAPI
application, configures middleware, and registers all API routes.

Every division (FP, HC, ...) has its own database; the per-division
tables are created on startup (BOOTSTRAP_SCHEMAS) before any request is
served.

Key Features:
- Divisional budget form data, HTML export and HTML import
- Live budget save / delete with confirm-before-overwrite on imports
- Product group pricing rounding per division and year

Dependencies:
- FastAPI: Web framework for building APIs
- SQLAlchemy: Database ORM (configured in Database.session)
- Uvicorn: ASGI server for running the application
"""

import logging
from contextlib import asynccontextmanager

from utils.config import APP_TITLE, APP_VERSION, BOOTSTRAP_SCHEMAS, CORS_ORIGINS, LOG_LEVEL

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    handlers=[
        logging.StreamHandler(),  # Console output
    ]
)

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# AEBF API imports
from APIs.AEBF import divisionalBudgetRoute, pricingRoundingRoute

# Database configuration
from Database.bootstrap import bootstrap_division_schemas
from Database.session import division_db_manager
from utils.errors import BudgetValidationError, BudgetPersistenceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create per-division tables before serving requests
    if BOOTSTRAP_SCHEMAS:
        bootstrap_division_schemas()
    yield
    division_db_manager.dispose_all()


# Initialize FastAPI application
app = FastAPI(
    title=APP_TITLE,
    description="Divisional budget export/import, reconciliation and pricing rounding per division",
    version=APP_VERSION,
    lifespan=lifespan,
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,      # Frontend origins from CORS_ORIGINS
    allow_credentials=True,          # Allow cookies and authentication headers
    allow_methods=["*"],             # Allow all HTTP methods
    allow_headers=["*"],             # Allow all headers
)


@app.exception_handler(BudgetValidationError)
async def budget_validation_error_handler(request: Request, exc: BudgetValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": exc.message, "details": exc.details},
    )


@app.exception_handler(BudgetPersistenceError)
async def budget_persistence_error_handler(request: Request, exc: BudgetPersistenceError):
    logger.error(f"Budget persistence error on {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": f"Database error: {str(exc)}"},
    )


# Register API routers
app.include_router(divisionalBudgetRoute)  # Divisional budget data / export / import / save / delete
app.include_router(pricingRoundingRoute)   # Product group pricing rounding


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8003)
