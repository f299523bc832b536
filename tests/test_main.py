"""
test_main.py
------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Test Suite for main.py
------------------------------------------------------------------------
Uses FastAPI TestClient so no running server is needed.  The converter call
is patched so no converter is needed either.

Tests cover:
    - GET /health returns 200 and required fields
    - POST /api/convert with an empty body returns the literal 400 error
    - POST /api/convert returns the normalized bundle
    - converter failures map to 502
    - POST /api/normalize returns bundle and warnings; 400 when empty

Run:
    pytest tests/test_main.py -v --tb=short

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import os
import sys
from unittest.mock import AsyncMock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from converter_client import ConverterAPIError, ConverterUnavailableError
from main import app
from tests.samples import ADT_A04, converter_bundle

client = TestClient(app)

PLAIN = {"Content-Type": "text/plain"}


# ── GET /health ────────────────────────────────────────────────────────────────

def test_health_returns_200():
    response = client.get("/health")
    assert response.status_code == 200


def test_health_required_fields():
    data = client.get("/health").json()
    for key in ("service", "version", "status", "timestamp"):
        assert key in data
    assert data["status"] == "ok"


# ── POST /api/convert ──────────────────────────────────────────────────────────

def test_convert_empty_body_returns_400():
    with patch("main._convert_message", new=AsyncMock()) as convert:
        response = client.post("/api/convert", content="   \r\n", headers=PLAIN)
    assert response.status_code == 400
    assert response.json() == {"error": "HL7 message is empty"}
    convert.assert_not_called()


def test_convert_returns_normalized_bundle():
    with patch("main._convert_message", new=AsyncMock(return_value=converter_bundle())) as convert:
        response = client.post("/api/convert", content=ADT_A04, headers=PLAIN)
    assert response.status_code == 200
    convert.assert_awaited_once_with(ADT_A04)
    bundle = response.json()
    assert bundle["type"] == "message"
    assert bundle["entry"][0]["resource"]["resourceType"] == "MessageHeader"
    assert bundle["entry"][0]["resource"]["eventCoding"]["code"] == "ADT_A04"


def test_convert_unreachable_converter_returns_502():
    failing = AsyncMock(side_effect=ConverterUnavailableError("HL7 converter unreachable"))
    with patch("main._convert_message", new=failing):
        response = client.post("/api/convert", content=ADT_A04, headers=PLAIN)
    assert response.status_code == 502
    assert "unreachable" in response.json()["error"]


def test_convert_converter_error_returns_502():
    failing = AsyncMock(side_effect=ConverterAPIError(422, "bad segment"))
    with patch("main._convert_message", new=failing):
        response = client.post("/api/convert", content=ADT_A04, headers=PLAIN)
    assert response.status_code == 502
    assert "bad segment" in response.json()["error"]


# ── POST /api/normalize ────────────────────────────────────────────────────────

def test_normalize_returns_bundle_and_warnings():
    response = client.post("/api/normalize", json={"bundle": converter_bundle(), "hl7_message": ADT_A04})
    assert response.status_code == 200
    data = response.json()
    assert data["bundle"]["entry"][0]["resource"]["resourceType"] == "MessageHeader"
    assert isinstance(data["warnings"], list)


def test_normalize_reports_skipped_fields():
    message = ADT_A04.replace("19800115", "1980XX15")
    response = client.post("/api/normalize", json={"bundle": converter_bundle(), "hl7_message": message})
    assert any("PID-7" in w for w in response.json()["warnings"])


def test_normalize_empty_request_returns_400():
    response = client.post("/api/normalize", json={"hl7_message": "  "})
    assert response.status_code == 400
    assert response.json() == {"error": "HL7 message is empty"}
