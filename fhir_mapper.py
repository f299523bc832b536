"""
fhir_mapper.py
--------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — FHIR R4 Building Blocks
--------------------------------------------------------------------------
Small constructors for the FHIR R4 datatypes the normalizer writes into
bundles, plus the E.164 phone rule.  Resources are plain dicts (FHIR JSON),
so everything here returns dicts ready to drop into a resource.

Terminology constants (standard code systems) live here; the local,
overridable placeholders live in ``normalizer.policy``.

Public API:
    coding()            — {"system", "code", "display"?}
    codeable_concept()  — {"coding": [coding], "text"?}
    first_coding()      — first coding of a CodeableConcept, or None.
    reference()         — {"reference": uri}
    human_name()        — HL7 XPN (``family^given^middle``) → HumanName.
    phone()             — ContactPoint with system=phone.
    to_e164()           — E.164 normalization rule for phone numbers.
    add_profile()       — append a US Core profile to ``meta.profile``.
    new_resource()      — {"resourceType", "id"} with a fresh UUID.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Code systems
# ---------------------------------------------------------------------------
SNOMED_SYSTEM            = "http://snomed.info/sct"
RXNORM_SYSTEM            = "http://www.nlm.nih.gov/research/umls/rxnorm"
ACT_CODE_SYSTEM          = "http://terminology.hl7.org/CodeSystem/v3-ActCode"
ROLE_CODE_SYSTEM         = "http://terminology.hl7.org/CodeSystem/v3-RoleCode"
PARTICIPATION_SYSTEM     = "http://terminology.hl7.org/CodeSystem/v3-ParticipationType"
MARITAL_STATUS_SYSTEM    = "http://terminology.hl7.org/CodeSystem/v3-MaritalStatus"
ADMIT_SOURCE_SYSTEM      = "http://terminology.hl7.org/CodeSystem/admit-source"
RELATIONSHIP_SYSTEM      = "http://terminology.hl7.org/CodeSystem/v2-0131"
PHYSICAL_TYPE_SYSTEM     = "http://terminology.hl7.org/CodeSystem/location-physical-type"
ALLERGY_CLINICAL_SYSTEM  = "http://terminology.hl7.org/CodeSystem/allergyintolerance-clinical"
COVERAGE_CLASS_SYSTEM    = "http://terminology.hl7.org/CodeSystem/coverage-class"
MESSAGE_EVENT_SYSTEM     = "http://hl7.org/fhir/message-events"
LANGUAGE_SYSTEM          = "urn:ietf:bcp:47"
OMB_RACE_SYSTEM          = "urn:oid:2.16.840.1.113883.6.238"
RELIGION_SYSTEM          = "urn:oid:2.16.840.1.113883.5.1076"

US_CORE_RACE_URL         = "http://hl7.org/fhir/us/core/StructureDefinition/us-core-race"
RELIGION_EXTENSION_URL   = "http://hl7.org/fhir/StructureDefinition/patient-religion"

_US_CORE_BASE = "http://hl7.org/fhir/us/core/StructureDefinition/"

_NON_DIGIT_RE = re.compile(r"[^0-9]")


# ---------------------------------------------------------------------------
# Datatype constructors
# ---------------------------------------------------------------------------

def coding(system: str, code: str, display: Optional[str] = None) -> Dict[str, Any]:
    """Return a FHIR Coding; ``display`` is omitted when not given."""
    c: Dict[str, Any] = {"system": system, "code": code}
    if display:
        c["display"] = display
    return c


def codeable_concept(
    system: str,
    code: str,
    display: Optional[str] = None,
    text: Optional[str] = None,
) -> Dict[str, Any]:
    """Return a CodeableConcept holding a single coding."""
    cc: Dict[str, Any] = {"coding": [coding(system, code, display)]}
    if text:
        cc["text"] = text
    return cc


def first_coding(concept: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return the first coding of *concept*, or ``None`` if it has none."""
    if not concept:
        return None
    codings = concept.get("coding") or []
    return codings[0] if codings else None


def reference(uri: str, display: Optional[str] = None) -> Dict[str, Any]:
    ref: Dict[str, Any] = {"reference": uri}
    if display:
        ref["display"] = display
    return ref


def human_name(hl7_name: str) -> Dict[str, Any]:
    """
    Convert an HL7 XPN string (``family^given^middle``) into a HumanName.

    Empty components are skipped, so ``"DOE^^J"`` gives family ``DOE`` and
    given ``["J"]``.

    Example::

        human_name("DOE^JOHN^Q")
        # → {"family": "DOE", "given": ["JOHN", "Q"]}
    """
    comps = hl7_name.split("^")
    name: Dict[str, Any] = {}
    if comps and comps[0]:
        name["family"] = comps[0]
    given = [c for c in comps[1:3] if c]
    if given:
        name["given"] = given
    return name


def phone(value: str, use: Optional[str] = "home") -> Dict[str, Any]:
    """Return a phone ContactPoint."""
    cp: Dict[str, Any] = {"system": "phone", "value": value}
    if use:
        cp["use"] = use
    return cp


def to_e164(raw: Optional[str]) -> Optional[str]:
    """
    Apply the E.164 normalization rule to a free-text phone number.

    Rule:
      1. Strip every non-digit character.
      2. Exactly 10 digits → ``+1`` + digits (North American default).
      3. Otherwise, a value already starting with ``+`` is kept verbatim.
      4. Otherwise → ``+`` + digits.

    Returns ``None`` when *raw* holds no digits at all, so callers can fall
    back to a placeholder.

    Example::

        to_e164("(701) 555-1212")   # → "+17015551212"
        to_e164("+44 20 7946 0958") # → "+44 20 7946 0958"
        to_e164("4420794609")       # → "+14420794609"
        to_e164("442079460958")     # → "+442079460958"
    """
    if raw is None:
        return None
    digits = _NON_DIGIT_RE.sub("", raw)
    if not digits:
        return None
    if len(digits) == 10:
        return "+1" + digits
    if raw.startswith("+"):
        return raw
    return "+" + digits


def add_profile(resource: Dict[str, Any], profile_name: str) -> None:
    """
    Append the US Core profile *profile_name* (e.g. ``"us-core-encounter"``)
    to ``resource.meta.profile`` unless it is already declared.
    """
    url = _US_CORE_BASE + profile_name
    meta = resource.setdefault("meta", {})
    profiles: List[str] = meta.setdefault("profile", [])
    if url not in profiles:
        profiles.append(url)


def new_resource(resource_type: str) -> Dict[str, Any]:
    """Return an empty resource of *resource_type* with a random UUID id."""
    return {"resourceType": resource_type, "id": str(uuid.uuid4())}
