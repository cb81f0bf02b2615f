import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from trialmatch.core.config import settings
from trialmatch.core.exceptions import ProfileIncomplete
from trialmatch.core.logging_setup import setup_logging
from trialmatch.api.routes import alerts, eligibility, match, trials
from trialmatch.services.clinical_trials_api import clinical_trials_service

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.PROJECT_NAME}...")
    yield
    # Shutdown
    await clinical_trials_service.close()
    logger.info("Shutdown complete.")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Clinical trial normalization, eligibility extraction and patient matching",
    version="0.1.0",
    lifespan=lifespan
)

# Configure CORS
allowed_origins = [
    settings.FRONTEND_URL,
    "http://localhost:3000",
]
# Add any additional origins from ALLOWED_ORIGINS env var
if settings.ALLOWED_ORIGINS:
    allowed_origins.extend([o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProfileIncomplete)
async def profile_incomplete_handler(request: Request, exc: ProfileIncomplete):
    return JSONResponse(status_code=422, content={"detail": str(exc), "field": exc.field})


# Include routers
app.include_router(
    match.router,
    prefix=f"{settings.API_V1_STR}/match",
    tags=["Matching"]
)

app.include_router(
    eligibility.router,
    prefix=f"{settings.API_V1_STR}/eligibility",
    tags=["Eligibility"]
)

app.include_router(
    trials.router,
    prefix=f"{settings.API_V1_STR}/trials",
    tags=["Trials"]
)

app.include_router(
    alerts.router,
    prefix=f"{settings.API_V1_STR}/alerts",
    tags=["Alerts"]
)


@app.get("/")
async def root():
    return {
        "name": settings.PROJECT_NAME,
        "version": "0.1.0",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
