"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auditflow.config import settings
from auditflow.database import engine, Base
from auditflow.errors import InvariantViolation, ValidationError
from auditflow.api.routes import router
# Import models to register them with SQLAlchemy Base
from auditflow.models.domain import (  # noqa: F401
    Action,
    Audit,
    AuditResult,
    Category,
    ChecklistItem,
    Location,
    ScheduledAudit,
    ScheduledAuditInstance,
    Template
)
from auditflow.models.activity import ActivityEvent  # noqa: F401

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Compliance audits: weighted checklist scoring, corrective actions and recurring audit schedules.",
    version="0.1.0"
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # For MVP - restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.info("Validation error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.to_dict()}
    )


@app.exception_handler(InvariantViolation)
async def invariant_violation_handler(request: Request, exc: InvariantViolation):
    logger.warning("Refused %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": exc.to_dict()}
    )


# Include API routes
app.include_router(router, prefix="/api", tags=["AuditFlow"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": settings.app_name}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
