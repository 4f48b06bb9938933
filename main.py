"""
Soukhya Patient Intake - patient records and attachments API

Serves the intake screens:
- Patient registration with caretakers, insurance, questionnaire, habits
  and disease selections
- Photo, identity proof and insurance policy uploads
- Per-section replacement and cascading delete
- Genetic care view of a patient's disease selections
"""
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from soukhya.config import settings
from soukhya.api import diseases, genetic_care, patients
from soukhya.database import init_database
from soukhya.errors import IntakeError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Patient intake backend:

    * **Patients** - full profile read, create, update, cascading delete
    * **Sections** - caretakers, insurance + hospitals, questions, habits, diseases
    * **Attachments** - photo, proof and policy files stored per patient
    * **Genetic Care** - disease selections grouped by system and category
    """,
    version=settings.VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Error responses ====================

@app.exception_handler(IntakeError)
async def intake_error_handler(request: Request, exc: IntakeError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Include API routers
app.include_router(patients.router, prefix="/api")
app.include_router(genetic_care.router, prefix="/api")
app.include_router(diseases.router, prefix="/api")

# Ensure directories exist
settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

# Stored paths look like "<upload dir name>/images/Jane_Doe/x.jpg"
app.mount(
    f"/{settings.UPLOAD_DIR.name}",
    StaticFiles(directory=str(settings.UPLOAD_DIR)),
    name="uploads"
)


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    logger.info(f"Starting {settings.APP_NAME} {settings.VERSION}...")
    init_database()
    logger.info(f"Upload directory: {settings.UPLOAD_DIR}")
    logger.info(f"Authentication required: {settings.REQUIRE_AUTH}")
    logger.info("API documentation available at /api/docs")


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.VERSION,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
