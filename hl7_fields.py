"""
hl7_fields.py
-------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — HL7v2 Field Extractor
-----------------------------------------------------------------------
Pulls the handful of positional fields the bundle normalizer needs straight
out of the raw HL7v2 text.  This is not a full HL7 parser: the
converter already did the heavy lifting, and these fields only fill the gaps
it leaves.

Parsing rules:
  • Segments are split on CR, LF or CRLF.
  • The first three characters of a line select the segment (MSH, PID, …).
  • Fields are ``|``-delimited and addressed by a fixed 0-based position
    (MSH counts the segment name as position 0, so MSH-9 is position 8).
  • Components are ``^``-delimited, repetitions ``~``-delimited (first
    repetition wins where a field repeats).
  • A position beyond the end of the segment, or an empty position, yields
    an absent field, never an error.

Public API:
    parse_message_fields()  — raw HL7v2 text → ``MessageFields``.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import logging
import re
from typing import Dict, List, Optional

from schemas import MessageFields

logger = logging.getLogger(__name__)

_SEGMENT_SPLIT_RE = re.compile(r"\r\n|\r|\n")


def _field(fields: List[str], position: int) -> Optional[str]:
    """Return ``fields[position]`` or ``None`` when the segment is too short."""
    return fields[position] if len(fields) > position else None


def _component(value: Optional[str], index: int) -> Optional[str]:
    """Return the *index*-th ``^`` component of *value*, or ``None``."""
    if value is None:
        return None
    comps = value.split("^")
    return comps[index] if len(comps) > index else None


def _first_repetition(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.split("~")[0]


def _parse_msh(fields: List[str], out: Dict[str, Optional[str]]) -> None:
    out["sending_app"] = _field(fields, 2)
    out["receiving_app"] = _field(fields, 4)
    out["message_date_time"] = _field(fields, 6)
    out["event_code"] = _field(fields, 8)


def _parse_pid(fields: List[str], out: Dict[str, Optional[str]]) -> None:
    out["patient_name"] = _first_repetition(_field(fields, 5))
    dob = _field(fields, 7)
    if dob is not None:
        out["patient_dob"] = dob.strip()[:8]   # drop any time part of PID-7
    out["patient_gender"] = _field(fields, 8)
    out["patient_race"] = _field(fields, 10)
    out["patient_phone"] = _field(fields, 12)
    out["patient_language"] = _field(fields, 14)
    out["patient_marital_status"] = _field(fields, 15)
    out["patient_religion"] = _field(fields, 16)


def _parse_nk1(fields: List[str], out: Dict[str, Optional[str]]) -> None:
    out["nk1_name"] = _field(fields, 2)
    out["nk1_relationship_code"] = _field(fields, 3)
    # XTN may carry extension / use sub-components; keep the number only
    out["nk1_phone"] = _component(_field(fields, 5), 0)


def _parse_pv1(fields: List[str], out: Dict[str, Optional[str]]) -> None:
    location = _field(fields, 3)
    out["location"] = location
    out["location_poc"] = _component(location, 0)
    out["location_room"] = _component(location, 1)
    out["location_bed"] = _component(location, 2)
    out["admission_type"] = _field(fields, 4)
    out["attending_name"] = _field(fields, 7)
    out["consulting_name"] = _field(fields, 9)
    out["account_number"] = _field(fields, 18)
    out["visit_number"] = _field(fields, 19)
    out["admit_date_time"] = _field(fields, 44)


def _parse_al1(fields: List[str], out: Dict[str, Optional[str]]) -> None:
    out["allergy_code"] = _field(fields, 3)
    out["allergy_reaction"] = _field(fields, 5)


def _parse_in1(fields: List[str], out: Dict[str, Optional[str]]) -> None:
    out["insurance_payer_id"] = _field(fields, 3)
    out["insurance_payer_name"] = _field(fields, 4)
    out["insurance_group_number"] = _field(fields, 8)


def _parse_gt1(fields: List[str], out: Dict[str, Optional[str]]) -> None:
    out["guarantor_name"] = _field(fields, 3)


_SEGMENT_PARSERS = {
    "MSH": _parse_msh,
    "PID": _parse_pid,
    "NK1": _parse_nk1,
    "PV1": _parse_pv1,
    "AL1": _parse_al1,
    "IN1": _parse_in1,
    "GT1": _parse_gt1,
}


def parse_message_fields(hl7_message: Optional[str]) -> MessageFields:
    """
    Extract the normalizer's source fields from a raw HL7v2 message.

    When a segment type repeats (e.g. two AL1 lines) the LAST occurrence
    wins, matching a straight top-to-bottom assignment.

    Args:
        hl7_message: Raw HL7v2 text.  ``None`` or empty yields an all-absent
                     record.

    Returns:
        MessageFields: every field optional; blank positions are ``None``.

    Example::

        fields = parse_message_fields("MSH|^~\\&|HIS|...|ADT^A04|...")
        fields.event_code   # → "ADT^A04"
    """
    values: Dict[str, Optional[str]] = {}
    if not hl7_message:
        return MessageFields()

    segments = 0
    for line in _SEGMENT_SPLIT_RE.split(hl7_message):
        parser = _SEGMENT_PARSERS.get(line[:3])
        if parser is None:
            continue
        parser(line.split("|"), values)
        segments += 1

    logger.debug("hl7_fields: parsed %d known segment(s).", segments)
    return MessageFields(**values)
