"""
main.py
-------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — FastAPI server
----------------------------------------------------------------
Exposes HL7v2 ADT → FHIR R4 conversion as a REST API.  A raw message is
sent to the external converter, the source fields are extracted from the
same message, and the converter's bundle is normalized to the US Core
profiles before it is returned.

Endpoints:
    GET  /health          — Service health check
    POST /api/convert     — text/plain HL7v2 message → normalized FHIR Bundle
    POST /api/normalize   — {"bundle", "hl7_message"} → {"bundle", "warnings"}
                            (normalization only, no converter call)

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict

import logging

from dotenv import load_dotenv

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from converter_client import ConverterAPIError, ConverterUnavailableError, HL7ConverterClient
from hl7_fields import parse_message_fields
from normalizer import normalize_bundle, run_normalization
from schemas import NormalizeRequest, NormalizeResponse

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# ── Config ─────────────────────────────────────────────────────────────────────

VERSION = "1.0.0"
SERVICE_NAME = "HL7Bridge HL7v2 to FHIR R4 Conversion Service"
EMPTY_MESSAGE_ERROR = {"error": "HL7 message is empty"}

# ── FastAPI app ────────────────────────────────────────────────────────────────

app = FastAPI(
    title=SERVICE_NAME,
    version=VERSION,
    description="Converts HL7v2 ADT messages to US Core conformant FHIR R4 bundles.",
)


# ── Helpers ────────────────────────────────────────────────────────────────────

async def _convert_message(hl7_message: str) -> Dict[str, Any]:
    """
    Run the raw message through the external converter.

    Args:
        hl7_message: Raw HL7v2 text.

    Returns:
        dict: The converter's FHIR Bundle, not yet normalized.

    Raises:
        ConverterUnavailableError, ConverterAPIError: see converter_client.
    """
    async with HL7ConverterClient() as client:
        return await client.convert(hl7_message)


# ── Endpoints ──────────────────────────────────────────────────────────────────

@app.get("/health")
def health_check() -> dict:
    """
    Return service health status.

    Returns:
        dict: service, version, status, timestamp.
    """
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/api/convert")
async def convert(request: Request) -> JSONResponse:
    """
    Convert a raw HL7v2 message to a normalized FHIR R4 Bundle.

    The body is read as plain text.  An empty or whitespace-only body is
    rejected before the converter is called.

    Returns:
        JSONResponse: 200 with the Bundle; 400 ``{"error": "HL7 message is
        empty"}``; 502 ``{"error": ...}`` when the converter fails.
    """
    raw = await request.body()
    hl7_message = raw.decode("utf-8", errors="replace")
    if not hl7_message.strip():
        return JSONResponse(status_code=400, content=EMPTY_MESSAGE_ERROR)

    try:
        bundle = await _convert_message(hl7_message)
    except (ConverterUnavailableError, ConverterAPIError) as exc:
        logger.error("convert: converter failed — %s", exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    fields = parse_message_fields(hl7_message)
    normalized = normalize_bundle(bundle, fields)
    return JSONResponse(content=normalized, media_type="application/fhir+json")


@app.post("/api/normalize", response_model=NormalizeResponse)
def normalize(request: NormalizeRequest) -> Any:
    """
    Normalize a bundle the caller already obtained from the converter.

    Args:
        request: NormalizeRequest with the converter bundle and the raw HL7v2
                 message it came from.

    Returns:
        NormalizeResponse: normalized bundle plus skipped-field warnings;
        400 when neither a bundle nor a message is given.
    """
    if request.bundle is None and not request.hl7_message.strip():
        return JSONResponse(status_code=400, content=EMPTY_MESSAGE_ERROR)

    fields = parse_message_fields(request.hl7_message)
    result = run_normalization(request.bundle, fields)
    return NormalizeResponse(bundle=result.bundle, warnings=result.warnings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
