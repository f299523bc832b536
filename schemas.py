"""
schemas.py
----------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Pydantic Data Contracts
-------------------------------------------------------------------------
Pydantic v2 models that act as the data contract between the HL7v2 field
extractor (hl7_fields.py), the bundle normalizer (normalizer/) and the
HTTP layer (main.py).

Validation policy
-----------------
MessageFields is a flat record of OPTIONAL strings.  No field is ever
required; every consumer treats ``None`` as "skip this rule".  Validation
therefore never rejects a message, it only cleans values:

  1. Blank is absent — empty or whitespace-only strings become ``None`` so
     an empty HL7 position (``||``) behaves exactly like a missing one.

  2. Control characters — ASCII control characters are stripped (HL7 text
     arrives straight off the wire and occasionally carries stray bytes).

  3. Extra keys are ignored so callers may pass wider dicts.

Fields accept both the snake_case attribute name and the camelCase key used
on the wire (``patientName`` / ``patient_name``).

Public API
----------
    MessageFields        Pydantic BaseModel — the extracted source fields.
    NormalizeRequest     Body of POST /api/normalize.
    NormalizeResponse    Normalized bundle plus warnings.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ASCII control characters to strip: \x00–\x08, \x0b–\x0c, \x0e–\x1f, \x7f
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def _clean_optional(value: Any) -> Optional[str]:
    """
    Coerce *value* to a stripped string, or ``None`` when it is blank.

    Never raises.
    """
    if value is None:
        return None
    cleaned = _CONTROL_CHAR_RE.sub("", str(value)).strip()
    return cleaned or None


# ---------------------------------------------------------------------------
# MessageFields: output of the HL7v2 field extractor
# ---------------------------------------------------------------------------

class MessageFields(BaseModel):
    """
    Fields extracted positionally from the raw HL7v2 message.

    Fields
    ------
    MSH:  message_date_time (YYYYMMDDHHMMSS), event_code (e.g. ``ADT^A04``),
          sending_app, receiving_app.
    PID:  patient_name (``family^given^middle``), patient_dob (YYYYMMDD),
          patient_gender, patient_phone, patient_language,
          patient_marital_status, patient_race, patient_religion.
    NK1:  nk1_name, nk1_relationship_code (``code^display``), nk1_phone.
    PV1:  location (raw PV1-3) and its point-of-care / room / bed parts,
          admit_date_time, admission_type, visit_number, attending_name,
          consulting_name, account_number.
    AL1:  allergy_code, allergy_reaction.
    IN1:  insurance_payer_id, insurance_payer_name, insurance_group_number.
    GT1:  guarantor_name.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,       # accept both patientName and patient_name
        extra="ignore",
    )

    # ── MSH ──────────────────────────────────────────────────────────────────
    message_date_time:       Optional[str] = None
    event_code:              Optional[str] = None
    sending_app:             Optional[str] = None
    receiving_app:           Optional[str] = None

    # ── PID ──────────────────────────────────────────────────────────────────
    patient_name:            Optional[str] = None
    patient_dob:             Optional[str] = None
    patient_gender:          Optional[str] = None
    patient_phone:           Optional[str] = None
    patient_language:        Optional[str] = None
    patient_marital_status:  Optional[str] = None
    patient_race:            Optional[str] = None
    patient_religion:        Optional[str] = None

    # ── NK1 ──────────────────────────────────────────────────────────────────
    nk1_name:                Optional[str] = None
    nk1_relationship_code:   Optional[str] = None
    nk1_phone:               Optional[str] = None

    # ── PV1 ──────────────────────────────────────────────────────────────────
    location:                Optional[str] = None
    location_poc:            Optional[str] = None
    location_room:           Optional[str] = None
    location_bed:            Optional[str] = None
    admit_date_time:         Optional[str] = None
    admission_type:          Optional[str] = None
    visit_number:            Optional[str] = None
    attending_name:          Optional[str] = None
    consulting_name:         Optional[str] = None
    account_number:          Optional[str] = None

    # ── AL1 / IN1 / GT1 ──────────────────────────────────────────────────────
    allergy_code:            Optional[str] = None
    allergy_reaction:        Optional[str] = None
    insurance_payer_id:      Optional[str] = None
    insurance_payer_name:    Optional[str] = None
    insurance_group_number:  Optional[str] = None
    guarantor_name:          Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_is_absent(cls, v: Any) -> Optional[str]:
        """Strip control characters and whitespace; blank becomes ``None``."""
        return _clean_optional(v)


# ---------------------------------------------------------------------------
# /api/normalize contracts
# ---------------------------------------------------------------------------

class NormalizeRequest(BaseModel):
    """
    Request body for POST /api/normalize.

    Attributes:
        bundle:      Converter output (FHIR Bundle JSON) to normalize.
        hl7_message: The raw HL7v2 message the bundle was converted from.
                     Drives every field-based rule; may be empty, in which
                     case only the structural rules apply.
    """
    bundle: Optional[Dict[str, Any]] = None
    hl7_message: str = ""


class NormalizeResponse(BaseModel):
    """
    Response body for POST /api/normalize.

    Attributes:
        bundle:   The normalized bundle.
        warnings: Skipped-field diagnostics collected by the passes
                  (parse failures, unmappable codes removed).  Never
                  affects whether normalization succeeds.
    """
    bundle: Optional[Dict[str, Any]] = None
    warnings: List[str] = Field(default_factory=list)
