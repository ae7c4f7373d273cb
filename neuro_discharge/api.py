"""
Discharge extraction API

REST endpoints over the extraction pipeline. Mount with:
    from neuro_discharge.api import router as discharge_router
    app.include_router(discharge_router)
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException

from . import __version__
from .clients.llm_client import get_client
from .orchestrator import get_orchestrator
from .note_detector import detect_note_types
from .schemas import ExtractBundleRequest, ExtractionResult, ExtractRequest, NoteBundle

logger = logging.getLogger("neuro-discharge")

router = APIRouter(prefix="/discharge", tags=["Discharge Extraction"])


# ============================================================
# EXTRACTION
# ============================================================

@router.post("/extract", response_model=ExtractionResult)
async def extract(request: ExtractRequest):
    """Run the full pipeline over pasted notes."""
    if not request.notes.strip():
        raise HTTPException(400, "No clinical notes provided")

    logger.info(f"[API] Extraction requested ({len(request.notes)} chars, use_llm={request.use_llm})")
    return await get_orchestrator().run(request.notes, use_llm=request.use_llm)


@router.post("/extract/bundle", response_model=ExtractionResult)
async def extract_bundle(request: ExtractBundleRequest):
    """Run the pipeline over notes already split by category."""
    if request.bundle.is_empty():
        raise HTTPException(400, "No clinical notes provided")
    return await get_orchestrator().run_bundle(request.bundle, use_llm=request.use_llm)


@router.post("/detect", response_model=NoteBundle)
async def detect(request: ExtractRequest):
    """Note-type detection only."""
    if not request.notes.strip():
        raise HTTPException(400, "No clinical notes provided")
    return detect_note_types(request.notes)


# ============================================================
# STATUS
# ============================================================

@router.get("/status")
async def status():
    """Which inference provider is configured, if any."""
    client = get_client()
    return {
        "service": "neuro-discharge",
        "version": __version__,
        "llm": {
            "configured": client.configured,
            "provider": client.provider,
            "model": client.config.model,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/pipeline")
async def pipeline():
    return get_orchestrator().describe_pipeline()
