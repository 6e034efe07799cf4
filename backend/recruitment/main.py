import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from recruitment.config import settings
from recruitment.database import repository
from recruitment.routers.campaigns import router as campaigns_router
from recruitment.routers.responses import router as responses_router
from recruitment.storage import UPLOADS_URL_PREFIX

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format='%(asctime)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Recruitment Campaigns Backend (FastAPI + Mongo)")

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(campaigns_router)
app.include_router(responses_router)

# Mount static files for stored attachments
uploads_dir = Path(settings.UPLOAD_DIR)
uploads_dir.mkdir(exist_ok=True)
app.mount(UPLOADS_URL_PREFIX, StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")


@app.on_event("startup")
async def startup_event():
    """Create Mongo indexes on startup."""
    try:
        await repository.init_indexes()
    except Exception as e:
        logger.warning(f"Mongo index initialization failed: {e}")


@app.get("/health")
async def health():
    return {"status": "ok"}
