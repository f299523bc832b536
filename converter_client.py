"""
converter_client.py
-------------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Converter client
------------------------------------------------------------------
Async client for the external HL7v2 → FHIR R4 converter.  The converter
takes the raw message as ``text/plain`` and answers with a FHIR Bundle
(JSON).  Its output is structurally valid FHIR but does not conform to the
US Core profiles; the normalizer repairs it afterwards.

Configuration (environment, loaded from .env by main.py):
  - HL7_CONVERTER_URL      converter endpoint
                           (default http://localhost:8090/api/convert)
  - HL7_CONVERTER_TIMEOUT  request timeout in seconds (default 30)

Usage (async context manager — preferred):
    async with HL7ConverterClient() as client:
        bundle = await client.convert(raw_hl7)

Usage (manual lifecycle):
    client = HL7ConverterClient()
    await client.connect()
    bundle = await client.convert(raw_hl7)
    await client.close()

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_CONVERTER_URL = "http://localhost:8090/api/convert"
DEFAULT_TIMEOUT_S = 30.0


class ConverterUnavailableError(Exception):
    """Raised when the converter cannot be reached (connect error, timeout)."""


class ConverterAPIError(Exception):
    """Raised when the converter answers with an error or a non-Bundle body."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"HL7 converter error {status_code}: {body}")


def _timeout_from_env() -> float:
    raw = os.getenv("HL7_CONVERTER_TIMEOUT", "")
    try:
        return float(raw) if raw.strip() else DEFAULT_TIMEOUT_S
    except ValueError:
        logger.warning(
            "HL7ConverterClient: HL7_CONVERTER_TIMEOUT=%r is not a number — using %.0fs.",
            raw, DEFAULT_TIMEOUT_S,
        )
        return DEFAULT_TIMEOUT_S


class HL7ConverterClient:
    """
    Async HTTP client for the HL7v2 → FHIR converter.

    Args:
        base_url:  Converter endpoint.  Defaults to ``HL7_CONVERTER_URL``,
                   then ``http://localhost:8090/api/convert``.
        timeout:   Request timeout in seconds.  Defaults to
                   ``HL7_CONVERTER_TIMEOUT``, then 30.
        transport: Optional ``httpx`` transport (tests pass a
                   ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url or os.getenv("HL7_CONVERTER_URL", DEFAULT_CONVERTER_URL)
        self.timeout = timeout if timeout is not None else _timeout_from_env()
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the underlying HTTP connection pool."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
            logger.debug("HL7ConverterClient: HTTP transport initialised (%s).", self.base_url)

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.debug("HL7ConverterClient: HTTP transport closed.")

    async def __aenter__(self) -> "HL7ConverterClient":
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ── Conversion ───────────────────────────────────────────────────────────

    async def convert(self, hl7_message: str) -> dict[str, Any]:
        """
        Send a raw HL7v2 message to the converter and return its Bundle.

        Args:
            hl7_message: Raw HL7v2 text (segments separated by CR, LF or CRLF).

        Returns:
            Parsed FHIR Bundle (``resourceType == "Bundle"``).

        Raises:
            RuntimeError:              if ``connect()`` / ``__aenter__`` was not called.
            ConverterUnavailableError: if the converter cannot be reached.
            ConverterAPIError:         on a non-2xx status, a non-JSON body
                                       or JSON that is not a Bundle.
        """
        if self._http is None:
            raise RuntimeError(
                "HL7ConverterClient is not connected. "
                "Use 'async with HL7ConverterClient() as client:' or call connect() first."
            )

        try:
            resp = await self._http.post(
                self.base_url,
                content=hl7_message.encode("utf-8"),
                headers={"Content-Type": "text/plain", "Accept": "application/fhir+json, application/json"},
            )
        except httpx.HTTPError as exc:
            raise ConverterUnavailableError(f"HL7 converter unreachable at {self.base_url}: {exc}") from exc

        if resp.status_code not in range(200, 300):
            raise ConverterAPIError(resp.status_code, resp.text)

        try:
            body = resp.json()
        except ValueError as exc:
            raise ConverterAPIError(resp.status_code, "response is not JSON") from exc

        if not isinstance(body, dict) or body.get("resourceType") != "Bundle":
            kind = body.get("resourceType") if isinstance(body, dict) else type(body).__name__
            raise ConverterAPIError(resp.status_code, f"expected a FHIR Bundle, got {kind}")

        logger.info(
            "HL7ConverterClient: converted message (%d entr%s).",
            len(body.get("entry") or []),
            "y" if len(body.get("entry") or []) == 1 else "ies",
        )
        return body
