"""
parsing.py
----------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Fallible value parsers
------------------------------------------------------------------------
Date and time parsers used by the normalization passes.  Each returns the
parsed value or ``None`` — never raises — so a malformed source field just
skips its rule.  The caller decides whether the miss is worth a warning.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

_TIMESTAMP_RE = re.compile(r"\d{14}")
_DATE_RE = re.compile(r"\d{8}")
_FHIR_DATETIME_RE = re.compile(
    r"\d{4}(-\d{2}(-\d{2}(T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:\d{2})?)?)?)?"
)


def parse_hl7_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an HL7 ``YYYYMMDDHHMMSS`` timestamp as UTC.

    Only the first 14 characters are read, so trailing fractional seconds or
    a zone offset (``20230101120000.0000-0500``) are ignored.

    Returns:
        datetime | None: timezone-aware UTC datetime, or ``None`` when the
        value is missing, shorter than 14 digits or not a real date.
    """
    if not value:
        return None
    head = value.strip()[:14]
    if not _TIMESTAMP_RE.fullmatch(head):
        return None
    try:
        return datetime.strptime(head, "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_hl7_date(value: Optional[str]) -> Optional[str]:
    """Parse an HL7 ``YYYYMMDD`` date into FHIR ``YYYY-MM-DD``, or ``None``."""
    if not value:
        return None
    head = value.strip()[:8]
    if not _DATE_RE.fullmatch(head):
        return None
    try:
        return datetime.strptime(head, "%Y%m%d").date().isoformat()
    except ValueError:
        return None


def to_fhir_instant(dt: datetime) -> str:
    """Render *dt* as a FHIR instant (ISO-8601 with offset)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_fhir_datetime(value: Any) -> Optional[str]:
    """Return *value* if it is a well-formed FHIR dateTime string, else ``None``."""
    if isinstance(value, str) and _FHIR_DATETIME_RE.fullmatch(value.strip()):
        return value.strip()
    return None


def now_instant() -> str:
    """Current processing time as a FHIR instant."""
    return to_fhir_instant(datetime.now(timezone.utc))
