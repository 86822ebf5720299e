"""
FastAPI application for the Score Report Analyzer.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime
import logging

from scorecard.config import Config
from scorecard.models import HealthResponse, RateLimitStatus
from scorecard.routes.score_reports import router as score_reports_router, get_rate_limiter

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Score Report Analyzer API",
    description="API for extracting, reconciling and summarizing tutoring-center grade reports",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(score_reports_router)


@app.on_event("startup")
async def startup_event():
    """Validate configuration on startup. Services are created on first use."""
    try:
        Config.validate()
        logger.info("Configuration validated successfully")
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now()
    )


@app.get("/api/rate-limit", response_model=RateLimitStatus)
async def get_rate_limit_status():
    """Get current rate limit status."""
    stats = get_rate_limiter().get_stats()
    return RateLimitStatus(
        total_calls=stats['total_calls'],
        max_calls=stats['max_calls'],
        remaining_calls=stats['remaining_calls'],
        calls_by_service=stats['calls_by_service'],
        refused_by_service=stats['refused_by_service']
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "scorecard.main:app",
        host=Config.API_HOST,
        port=Config.API_PORT,
        reload=True
    )
