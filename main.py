"""
Neuro-Discharge Backend Entry Point

Run with: uvicorn main:app --reload --port 8000
Or: python main.py
"""

# Load environment variables FIRST before any other imports
from pathlib import Path
from dotenv import load_dotenv

env_path = Path(__file__).parent / ".env"
load_dotenv(env_path, override=True)

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from neuro_discharge import __version__
from neuro_discharge.api import router as discharge_router
from neuro_discharge.clients import configure_client
from neuro_discharge.config import LLMConfig
from neuro_discharge.logging_config import setup_logging

logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    client = configure_client(LLMConfig.from_env())
    logger.info("=" * 60)
    logger.info("  NEURO-DISCHARGE BACKEND STARTING")
    logger.info("=" * 60)
    logger.info(f"LLM augmentation: {'enabled (' + client.provider + ')' if client.configured else 'disabled, local fallbacks only'}")
    logger.info("REST Endpoints:")
    logger.info("  Health Check:     http://localhost:8000/health")
    logger.info("  Extract:          http://localhost:8000/discharge/extract")
    logger.info("  Pipeline:         http://localhost:8000/discharge/pipeline")
    logger.info("=" * 60)
    yield
    logger.info("  NEURO-DISCHARGE BACKEND SHUTTING DOWN")


app = FastAPI(
    title="Neuro-Discharge Backend",
    description="Neurosurgical discharge summary extraction",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(discharge_router)


@app.get("/health")
async def health():
    """Simple health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
