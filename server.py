"""
FastAPI Server for Offer Intel

Provides endpoints for:
- Extracting an offer record from an uploaded contract
- Building the deadline timeline and welcome emails for a reviewed record
"""

import os
import asyncio
import logging
from functools import partial
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from errors import MissingPreconditionError, UnsupportedDocumentTypeError
from nodes.acquisition import (
    AcquisitionConfig,
    AcquisitionResult,
    acquire_text,
    classify_document,
)
from nodes.merge import merge_offer_record
from nodes.notifier import generate_email_templates
from nodes.recognizer import recognize_fields_with_trace
from nodes.timeline import build_timeline

load_dotenv()
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class ServerConfig:
    # Wall-clock limit for one acquisition (OCR of a long scan can be slow)
    acquisition_timeout_seconds: float = 120.0
    max_upload_bytes: int = 25 * 1024 * 1024

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            acquisition_timeout_seconds=float(os.getenv("OFFER_INTEL_ACQUISITION_TIMEOUT", "120")),
            max_upload_bytes=int(float(os.getenv("OFFER_INTEL_MAX_UPLOAD_MB", "25")) * 1024 * 1024),
        )


server_config = ServerConfig.from_env()


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Offer Intel API",
    description="Extracts accepted-offer details from purchase agreements and builds transaction timelines",
    version="0.1.0",
)

# CORS for React frontend (dev server typically on 5173)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Pydantic Models for API
# ============================================================================

class OfferRecordModel(BaseModel):
    """An offer record as edited by the operator. Missing fields are blank."""
    acceptance_date: str = ""
    closing_date: str = ""
    inspection_period: str = ""
    appraisal_period: str = ""
    financing_deadline: str = ""
    property_address: str = ""
    buyer_name: str = ""
    seller_name: str = ""
    sale_price: str = ""


class TimelineResponse(BaseModel):
    timeline: List[Dict[str, Any]]
    email_templates: List[Dict[str, str]]


# ============================================================================
# Helpers
# ============================================================================

async def acquire_with_timeout(data: bytes, file_name: str, config: AcquisitionConfig) -> AcquisitionResult:
    """Run the blocking acquisition off the event loop; expiry counts as no text."""
    # The worker thread is not interrupted on expiry, its result is discarded
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(None, partial(acquire_text, data, file_name, config)),
            timeout=server_config.acquisition_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(
            f"Acquisition of {file_name} exceeded {server_config.acquisition_timeout_seconds}s"
        )
        return AcquisitionResult.exhausted(file_name, classify_document(file_name, config), [])


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/offers/extract")
async def extract_offer(
    file: UploadFile = File(...),
    existing: Optional[str] = Form(None),
) -> Dict[str, Any]:
    """
    Extract text from an uploaded contract and recognize its offer fields.

    existing is the operator's current record as JSON. Recognized values
    replace its fields, blanks leave them alone.
    """
    existing_record = None
    if existing:
        try:
            existing_record = OfferRecordModel.model_validate_json(existing).model_dump()
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=f"Invalid existing record: {e}")

    file_name = file.filename or ""
    data = await file.read()
    if len(data) > server_config.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Upload exceeds {server_config.max_upload_bytes} bytes",
        )

    config = AcquisitionConfig.from_env()
    result = await acquire_with_timeout(data, file_name, config)
    try:
        result.raise_for_status()
    except UnsupportedDocumentTypeError as e:
        raise HTTPException(status_code=415, detail=e.message)

    recognition = recognize_fields_with_trace(result.text)
    fields = recognition.to_field_map()
    record = merge_offer_record(existing_record, fields, file_name)

    return {
        "file_name": file_name,
        "acquisition": result.to_dict(),
        "recognized_fields": fields,
        "recognition": recognition.to_dict(),
        "offer_record": record,
    }


@app.post("/offers/timeline", response_model=TimelineResponse)
def offer_timeline(record: OfferRecordModel) -> TimelineResponse:
    """Build the deadline timeline and welcome emails for a reviewed record."""
    offer = record.model_dump()
    try:
        timeline = build_timeline(offer)
    except MissingPreconditionError as e:
        raise HTTPException(status_code=422, detail=e.message)

    return TimelineResponse(
        timeline=[item.to_dict() for item in timeline],
        email_templates=generate_email_templates(offer),
    )


# Run with: uvicorn server:app --reload
