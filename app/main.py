import logging

from fastapi import FastAPI

from app.config import APP_NAME
from app.errors import AppError, app_error_handler
from app.repos.redis_jobs import get_job_repo
from app.routes import router

logger = logging.getLogger(__name__)

app = FastAPI(
    title=APP_NAME,
    version="1.0.0"
)

app.add_exception_handler(AppError, app_error_handler)

# ---------------------------
# Routes
# ---------------------------
app.include_router(router)


# ---------------------------
# Startup: fail jobs left running by a previous process
# ---------------------------
@app.on_event("startup")
def expire_stale_jobs():
    expired = get_job_repo().sweep_stale()
    logger.info("Startup sweep done (%d stale jobs expired)", expired)


# ---------------------------
# Health check
# ---------------------------
@app.get("/", tags=["health"])
def health():
    return {
        "status": "ok",
        "service": APP_NAME
    }
