"""
Reading Evaluation API

Main FastAPI application for the multi-tenant school reading evaluation
platform: institutions, classrooms, students, evaluation templates,
evaluation sessions and their access codes.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from database import init_db
from handlers import AppError, InternalError, InvalidInput
from api import routers

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# --------------- Lifespan ---------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler - initialise DB on startup."""
    logger.info("Initializing database...")
    init_db()
    logger.info("Database initialized.")
    yield


# --------------- FastAPI app ---------------

app = FastAPI(
    title="Reading Evaluation API",
    description="""
API for running reading comprehension evaluations in schools.

## Roles
- **master**: manages institutions and users across the platform
- **admin**: manages classrooms, teachers and students of one institution
- **maestro**: publishes evaluation sessions for its classrooms and follows progress
- **tutor**: follows the progress of its children

### Authorization Rules
- Every request is checked against one central policy table
- Institution scoping is exact equality; a master bypasses it
- Out-of-institution reads look like missing resources

### Errors
Every failure is `{"error": <kind>, "message": <summary>}` with one of
`unauthenticated`, `unauthorized`, `invalid_input`, `not_found`,
`conflict`, `internal_error`.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Render handler outcomes with their stable kind."""
    if isinstance(exc, InternalError):
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Schema violations are reported as invalid input naming the fields."""
    fields = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        name = ".".join(location) or "body"
        if name not in fields:
            fields.append(name)
    error = InvalidInput("Invalid request", fields)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = InternalError("Unexpected server error", detail=type(exc).__name__)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Include routers
for router in routers:
    app.include_router(router)


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - API health check."""
    return {
        "status": "online",
        "service": "Reading Evaluation API",
        "version": "1.0.0"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
