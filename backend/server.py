from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import landing, admin_roles
from services.account_store import MongoAccountStore
from services.config_resolver import ConfigResolver
from services.config_store import MongoConfigStore
from services.entitlement_resolver import EntitlementResolver
from services.errors import ConfigurationError, LandingEngineError
from services.role_store import MongoRoleStore
from services.template_registry import MongoTemplateStore, TemplateRegistry

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def configure_services(app: FastAPI, db) -> None:
    """Build stores and resolvers once and attach them to app.state."""
    role_store = MongoRoleStore(db)
    entitlement_resolver = EntitlementResolver(
        account_store=MongoAccountStore(db),
        role_store=role_store,
        audit_db=db,
    )
    app.state.db = db
    app.state.role_store = role_store
    app.state.entitlement_resolver = entitlement_resolver
    app.state.config_resolver = ConfigResolver(
        config_store=MongoConfigStore(db),
        template_registry=TemplateRegistry(MongoTemplateStore(db)),
        entitlement_resolver=entitlement_resolver,
        audit_db=db,
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Lobby Landing API")
    await database.connect()
    configure_services(app, database.get_db())

    yield

    # Shutdown
    logger.info("Shutting down Lobby Landing API")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Lobby Landing API",
    description="Broker entitlements and landing page configuration",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(landing.router)
app.include_router(landing.public_router)
app.include_router(admin_roles.router)

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


# Domain errors: NotFound / Configuration / PlanViolation / Validation / PermissionDenied
@app.exception_handler(LandingEngineError)
async def landing_engine_exception_handler(request: Request, exc: LandingEngineError):
    content = exc.to_dict()
    if isinstance(exc, ConfigurationError):
        content["retryable"] = True
        logger.error("Configuration error on %s: %s", request.url.path, exc.message)
    else:
        logger.info("%s on %s: %s", exc.error_code, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=content)


# Validation error handler: log request_id + full errors (loc path)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Request validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": errors, "request_id": request_id},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
