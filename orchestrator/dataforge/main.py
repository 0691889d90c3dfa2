from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from .config import get_settings
from .routers import databases

# Fails fast with a ValidationError when S3 settings are missing
settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="DataForge API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(databases.router)


@app.on_event("startup")
async def startup_event():
    logger.info(f"DataForge starting - Namespace: {settings.namespace}, Bucket: {settings.s3_bucket}")


@app.get("/health")
async def health_check():
    return {"status": "ok"}
