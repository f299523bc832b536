"""
episode_node.py
---------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Episode normalizer
--------------------------------------------------------------------
Repairs every Encounter in the bundle.  Rules, in the order applied:

     1. subject            → canonical Patient.
     2. class              legacy ``I`` → v3-ActCode ``IMP``.
     3. status             missing / ``unknown`` → ``in-progress``.
     4. serviceType        v2-0069 ``SUR`` → SNOMED 394609007; any other
                           v2-0069 code is removed.
     5. admitSource        v2-0023 ``7`` → ``other-hosp``; any other v2-0023
                           code is removed.
     6. specialArrangement v2-0009 codings removed (field dropped if empty).
     7. period             from the source-event-timestamp meta extension,
                           else PV1-44.
     8. identifier         PV1-19 visit number into the first identifier.
     9. status             reset to ``in-progress`` (admit event).
    10. interval check     a period without both start and end is dropped,
                           status becomes ``unknown`` and participant /
                           location periods are cleared; a complete period
                           is copied to participants / locations lacking one.
                           ``length`` is dropped without a bounded period.
    11. reasonCode         cleared; ``A`` (Accident) when PV1-4 is ``A``;
                           raw PV1-4 appended as its own code.
    12. type               fixed SNOMED 50849002 "Emergency department visit".
    13. specialCourtesy    cleared.
    14. location           synthesized from PV1-3 when the Encounter has none.
    15. participant        ATND / CON practitioners from PV1-7 / PV1-9.

Rules 9 and 12 encode an admit-event assumption (ADT^A04 / A01) that holds
for the feeds this service targets but not for every ADT trigger.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import copy
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

from fhir_mapper import (
    ACT_CODE_SYSTEM,
    ADMIT_SOURCE_SYSTEM,
    PARTICIPATION_SYSTEM,
    PHYSICAL_TYPE_SYSTEM,
    SNOMED_SYSTEM,
    add_profile,
    codeable_concept,
    coding,
    first_coding,
    new_resource,
    reference,
)
from normalizer.document import identity_uri
from normalizer.parsing import parse_fhir_datetime, parse_hl7_timestamp, to_fhir_instant
from normalizer.state import NormalizationState, add_warning

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"[0-9]+")

# ── Fixed mappings ────────────────────────────────────────────────────────────
_INPATIENT_CLASS = "IMP"
_SURGICAL_SPECIALTY = ("394609007", "Surgical specialty")
_TRANSFER_ADMIT_SOURCE = ("other-hosp", "Transferred from other hospital")
_EMERGENCY_VISIT = ("50849002", "Emergency department visit")
_ACCIDENT = ("A", "Accident")
_BED_PHYSICAL_TYPE = ("bd", "Bed")

ROLE_ATTENDING = "ATND"
ROLE_CONSULTING = "CON"


# ── Coded-field rules ─────────────────────────────────────────────────────────

def _remap_class(enc: Dict[str, Any]) -> None:
    enc_class = enc.get("class")
    if isinstance(enc_class, dict) and enc_class.get("code") == "I":
        enc_class["code"] = _INPATIENT_CLASS
        enc_class["system"] = ACT_CODE_SYSTEM


def _remap_service_type(state: NormalizationState, enc: Dict[str, Any]) -> None:
    c = first_coding(enc.get("serviceType"))
    if c is None or c.get("system") != state["policy"].legacy_service_type_system:
        return
    if (c.get("code") or "").upper() == "SUR":
        c["system"] = SNOMED_SYSTEM
        c["code"], c["display"] = _SURGICAL_SPECIALTY
    else:
        enc.pop("serviceType", None)
        add_warning(state, f"serviceType code '{c.get('code')}' has no SNOMED mapping — removed.")


def _remap_admit_source(state: NormalizationState, hosp: Dict[str, Any]) -> None:
    c = first_coding(hosp.get("admitSource"))
    if c is None or c.get("system") != state["policy"].legacy_admit_source_system:
        return
    if c.get("code") == "7":
        c["system"] = ADMIT_SOURCE_SYSTEM
        c["code"], c["display"] = _TRANSFER_ADMIT_SOURCE
        hosp["admitSource"]["text"] = _TRANSFER_ADMIT_SOURCE[1]
    else:
        hosp.pop("admitSource", None)
        add_warning(state, f"admitSource code '{c.get('code')}' has no admit-source mapping — removed.")


def _strip_special_arrangements(state: NormalizationState, hosp: Dict[str, Any]) -> None:
    arrangements = hosp.get("specialArrangement")
    if arrangements is None:
        return
    legacy = state["policy"].legacy_arrangement_system
    kept = [cc for cc in arrangements if (first_coding(cc) or {}).get("system") != legacy]
    if kept:
        hosp["specialArrangement"] = kept
    else:
        hosp.pop("specialArrangement", None)


# ── Timing ────────────────────────────────────────────────────────────────────

def _source_event_start(state: NormalizationState, enc: Dict[str, Any]) -> Optional[str]:
    url = state["policy"].source_event_timestamp_url
    for ext in (enc.get("meta") or {}).get("extension") or []:
        if ext.get("url") == url:
            return parse_fhir_datetime(ext.get("valueDateTime"))
    return None


def _derive_period(state: NormalizationState, enc: Dict[str, Any]) -> None:
    if enc.get("period"):
        return
    start = _source_event_start(state, enc)
    if start is None:
        raw = state["fields"].admit_date_time
        if raw is not None:
            parsed = parse_hl7_timestamp(raw)
            if parsed is None:
                add_warning(state, f"PV1-44 admit time '{raw}' is not YYYYMMDDHHMMSS — skipped.")
            else:
                start = to_fhir_instant(parsed)
    if start is not None:
        enc["period"] = {"start": start}


def _apply_interval_rule(state: NormalizationState, enc: Dict[str, Any]) -> None:
    period = enc.get("period")
    components = list(enc.get("participant") or []) + list(enc.get("location") or [])

    if period is not None and not (period.get("start") and period.get("end")):
        enc.pop("period", None)
        enc["status"] = "unknown"
        for component in components:
            component.pop("period", None)
        logger.debug("episode_node: open-ended period dropped on Encounter %s.", enc.get("id"))
    elif period:
        for component in components:
            if not component.get("period"):
                component["period"] = copy.deepcopy(period)

    if "length" in enc and not (enc.get("period") or {}).get("end"):
        enc.pop("length", None)


def _episode_period(enc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    period = enc.get("period")
    return copy.deepcopy(period) if period and period.get("start") else None


# ── Location synthesis ────────────────────────────────────────────────────────

def _synthesize_location(state: NormalizationState, enc: Dict[str, Any]) -> None:
    fields = state["fields"]
    policy = state["policy"]
    if fields.location is None or enc.get("location"):
        return

    parts = [
        (label, value, system)
        for label, value, system in (
            ("Ward", fields.location_poc, policy.ward_identifier_system),
            ("Room", fields.location_room, policy.room_identifier_system),
            ("Bed", fields.location_bed, policy.bed_identifier_system),
        )
        if value is not None
    ]

    location = new_resource("Location")
    location["name"] = " / ".join(f"{label} {value}" for label, value, _ in parts) if parts else fields.location
    if parts:
        location["identifier"] = [{"system": system, "value": value} for _, value, system in parts]
    if fields.location_bed is not None:
        location["physicalType"] = codeable_concept(PHYSICAL_TYPE_SYSTEM, *_BED_PHYSICAL_TYPE)
    location["mode"] = "instance"
    state["index"].append(location)

    link: Dict[str, Any] = {"location": reference(identity_uri(location))}
    period = _episode_period(enc)
    if period:
        link["period"] = period
    enc["location"] = [link]
    logger.debug("episode_node: synthesized Location '%s'.", location["name"])


# ── Participant synthesis ─────────────────────────────────────────────────────

def _component(comps: List[str], i: int) -> str:
    return comps[i] if len(comps) > i else ""


def parse_practitioner_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """
    Split an HL7 XCN practitioner string into (provider id, HumanName).

    Two orderings occur in the feeds:
      • id-first   ``004777^AARON^ATTEND``          (first component numeric)
      • name-first ``AARON^ATTEND^004777^Q``        family^given^id^middle
    The prefix is read from component 7 (index 6) when present.  A
    name-first value without an id gets a random UUID.

    Example::

        parse_practitioner_name("004777^AARON^ATTEND")
        # → ("004777", {"family": "AARON", "given": ["ATTEND"]})
    """
    comps = raw.split("^")
    if _DIGITS_RE.fullmatch(comps[0]):
        provider_id = comps[0]
        family, given, middle = _component(comps, 1), _component(comps, 2), ""
    else:
        family, given = _component(comps, 0), _component(comps, 1)
        provider_id = _component(comps, 2) or str(uuid.uuid4())
        middle = _component(comps, 3)

    name: Dict[str, Any] = {}
    if family.strip():
        name["family"] = family
    given_names = [g for g in (given, middle) if g.strip()]
    if given_names:
        name["given"] = given_names
    prefix = _component(comps, 6)
    if prefix.strip():
        name["prefix"] = [prefix]
    return provider_id, name


def _add_participant(state: NormalizationState, enc: Dict[str, Any], raw: Optional[str], role: str) -> None:
    if raw is None:
        return
    index = state["index"]
    provider_id, name = parse_practitioner_name(raw)

    practitioner = index.find_practitioner(provider_id)
    if practitioner is None:
        practitioner = new_resource("Practitioner")
        index.append(practitioner)

    # last writer wins
    if name:
        practitioner["name"] = [name]
    else:
        practitioner.pop("name", None)
    practitioner["identifier"] = [{"system": state["policy"].practitioner_id_system, "value": provider_id}]
    index.reindex_practitioners()
    add_profile(practitioner, "us-core-practitioner")

    participant: Dict[str, Any] = {
        "type": [{"coding": [coding(PARTICIPATION_SYSTEM, role)]}],
        "individual": reference(identity_uri(practitioner)),
    }
    period = _episode_period(enc)
    if period:
        participant["period"] = period
    enc.setdefault("participant", []).append(participant)


# ── Pass ──────────────────────────────────────────────────────────────────────

def normalize_episode(state: NormalizationState, enc: Dict[str, Any]) -> None:
    """Apply every Encounter rule to *enc* in place."""
    fields = state["fields"]
    policy = state["policy"]

    if state["subject"] is not None:
        enc["subject"] = reference(identity_uri(state["subject"]))

    _remap_class(enc)

    if enc.get("status") in (None, "", "unknown"):
        enc["status"] = "in-progress"

    _remap_service_type(state, enc)

    hosp = enc.get("hospitalization")
    if isinstance(hosp, dict):
        _remap_admit_source(state, hosp)
        _strip_special_arrangements(state, hosp)

    _derive_period(state, enc)

    if fields.visit_number is not None:
        identifiers = enc.setdefault("identifier", [])
        if not identifiers:
            identifiers.append({})
        identifiers[0]["system"] = policy.visit_number_system
        identifiers[0]["value"] = fields.visit_number

    enc["status"] = "in-progress"
    _apply_interval_rule(state, enc)

    reasons: List[Dict[str, Any]] = []
    if fields.admission_type is not None:
        if fields.admission_type.upper() == "A":
            reasons.append({"coding": [coding(policy.admission_type_system, *_ACCIDENT)]})
        reasons.append({"coding": [coding(policy.admission_type_system, fields.admission_type)]})
    if reasons:
        enc["reasonCode"] = reasons
    else:
        enc.pop("reasonCode", None)

    enc["type"] = [codeable_concept(SNOMED_SYSTEM, *_EMERGENCY_VISIT)]

    if isinstance(hosp, dict):
        hosp.pop("specialCourtesy", None)
        if not hosp:
            enc.pop("hospitalization", None)

    add_profile(enc, "us-core-encounter")

    _synthesize_location(state, enc)
    _add_participant(state, enc, fields.attending_name, ROLE_ATTENDING)
    _add_participant(state, enc, fields.consulting_name, ROLE_CONSULTING)


def episode_node(state: NormalizationState) -> NormalizationState:
    """
    Normalize every Encounter present when the pass starts.

    Entries appended while processing (Location, Practitioner) are not
    revisited.

    Args:
        state: Current NormalizationState; ``subject`` must be resolved.

    Returns:
        NormalizationState: same state, Encounters mutated in place.
    """
    encounters = state["index"].entries_of("Encounter")
    for entry in encounters:
        normalize_episode(state, entry["resource"])
    logger.debug("episode_node: normalized %d Encounter(s).", len(encounters))
    return state
