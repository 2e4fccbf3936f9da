# mentorship_matching/main.py
import logging
from fastapi import FastAPI
from sqlalchemy import text

from .config import get_settings
from .database import create_db_and_tables, SessionLocal
from .routers import auth_router, program_router, matching_router, match_router

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Mentorship Matching API",
    description="Preference-based mentor-mentee matching with accept/reject workflow and automatic rematching.",
    version="1.0.0",
)

# Include routers
app.include_router(auth_router.router)
app.include_router(program_router.router)
app.include_router(matching_router.router)
app.include_router(match_router.router)

@app.on_event("startup")
async def startup_event():
    """Initialize application on startup"""
    logger.info("Application startup event triggered.")
    try:
        create_db_and_tables()
        logger.info("Startup sequence completed successfully.")
    except Exception as e:
        logger.critical(f"Critical error during startup: {e}", exc_info=True)

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "ok"}
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
