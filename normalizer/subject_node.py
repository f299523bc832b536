"""
subject_node.py
---------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Subject normalizer
--------------------------------------------------------------------
Two passes over the primary Patient:

  subject_node       — resolve the canonical Patient (first Patient entry,
                       or a new one appended when the converter produced
                       none).  Runs before the Encounter pass so every
                       Encounter can point at it.

  demographics_node  — overwrite demographics from PID/NK1.  The source
                       message is trusted over the converter: each field is
                       replaced, not merged.  Guarantees name and gender are
                       never absent afterwards.

Rules applied by demographics_node, in order:
    name            PID-5 ``family^given^middle`` replaces all names.
    birthDate       PID-7 ``YYYYMMDD``; unparseable values are skipped.
    gender          first letter M → male, F → female, else unknown.
    telecom         PID-13 through the E.164 rule, else a placeholder.
    communication   PID-15, first two letters, lower-cased, BCP-47.
    maritalStatus   PID-16 passed through; legacy ``ENG`` → ``S``.
    race            non-US-Core race extensions dropped; numeric PID-10
                    becomes a US Core race ombCategory.
    religion        PID-17 of 1–4 digits becomes the religion extension.
    fallback        UNKNOWN/UNKNOWN name, ``unknown`` gender.
    contact         NK1 name, relationship and phone.
    assigner        display-only assigner on the known MRN system.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import logging
import re
from typing import Any, Dict, List

from fhir_mapper import (
    LANGUAGE_SYSTEM,
    MARITAL_STATUS_SYSTEM,
    OMB_RACE_SYSTEM,
    RELATIONSHIP_SYSTEM,
    RELIGION_EXTENSION_URL,
    RELIGION_SYSTEM,
    US_CORE_RACE_URL,
    codeable_concept,
    coding,
    human_name,
    new_resource,
    phone,
    to_e164,
)
from normalizer.document import ensure_id
from normalizer.parsing import parse_hl7_date
from normalizer.state import NormalizationState, add_warning

logger = logging.getLogger(__name__)

_RACE_CODE_RE = re.compile(r"[0-9-]+")
_RELIGION_CODE_RE = re.compile(r"\d{1,4}")


# ── Resolution ────────────────────────────────────────────────────────────────

def subject_node(state: NormalizationState) -> NormalizationState:
    """
    Locate the canonical Patient, creating and appending one if absent.

    Args:
        state: Current NormalizationState.

    Returns:
        NormalizationState: ``subject`` set to the canonical Patient.
    """
    index = state["index"]
    patient = index.first("Patient")
    if patient is None:
        patient = new_resource("Patient")
        index.append(patient)
        logger.info("subject_node: no Patient in bundle — created %s.", patient["id"])
    else:
        ensure_id(patient)
    state["subject"] = patient
    return state


# ── Demographics helpers ──────────────────────────────────────────────────────

def _apply_gender(patient: Dict[str, Any], raw: str) -> None:
    first = raw[:1].upper()
    patient["gender"] = {"M": "male", "F": "female"}.get(first, "unknown")


def _apply_race(patient: Dict[str, Any], raw: Any) -> None:
    extensions: List[Dict[str, Any]] = [
        ext for ext in patient.get("extension") or []
        if not ("race" in (ext.get("url") or "") and "us-core-race" not in (ext.get("url") or ""))
    ]
    if raw is not None and _RACE_CODE_RE.fullmatch(raw):
        extensions = [ext for ext in extensions if ext.get("url") != US_CORE_RACE_URL]
        extensions.append({
            "url": US_CORE_RACE_URL,
            "extension": [{
                "url": "ombCategory",
                "valueCoding": coding(OMB_RACE_SYSTEM, raw),
            }],
        })
    _set_extensions(patient, extensions)


def _apply_religion(patient: Dict[str, Any], raw: str) -> None:
    if not _RELIGION_CODE_RE.fullmatch(raw):
        return
    extensions = [ext for ext in patient.get("extension") or [] if ext.get("url") != RELIGION_EXTENSION_URL]
    extensions.append({
        "url": RELIGION_EXTENSION_URL,
        "valueCodeableConcept": codeable_concept(RELIGION_SYSTEM, raw),
    })
    _set_extensions(patient, extensions)


def _set_extensions(resource: Dict[str, Any], extensions: List[Dict[str, Any]]) -> None:
    if extensions:
        resource["extension"] = extensions
    else:
        resource.pop("extension", None)


def _build_contact(state: NormalizationState) -> Dict[str, Any]:
    fields = state["fields"]
    contact: Dict[str, Any] = {"name": human_name(fields.nk1_name)}

    if fields.nk1_relationship_code is not None:
        parts = fields.nk1_relationship_code.split("^")
        display = parts[1] if len(parts) > 1 and parts[1] else None
        contact["relationship"] = [{"coding": [coding(RELATIONSHIP_SYSTEM, parts[0], display)]}]

    number = to_e164(fields.nk1_phone)
    if number is not None:
        contact["telecom"] = [phone(number)]
    else:
        if fields.nk1_phone is not None:
            add_warning(state, f"NK1-5 phone '{fields.nk1_phone}' has no digits — placeholder used.")
        contact["telecom"] = [phone(state["policy"].contact_placeholder_phone, use=None)]
    return contact


def _has_name(patient: Dict[str, Any]) -> bool:
    return any(n.get("family") or n.get("given") or n.get("text") for n in patient.get("name") or [])


# ── Demographics pass ─────────────────────────────────────────────────────────

def demographics_node(state: NormalizationState) -> NormalizationState:
    """
    Overwrite the canonical Patient's demographics from the HL7v2 fields.

    Args:
        state: Current NormalizationState; ``subject`` must be resolved.

    Returns:
        NormalizationState: same state, Patient mutated in place.
    """
    patient = state["subject"]
    if patient is None:
        return state
    fields = state["fields"]
    policy = state["policy"]

    if fields.patient_name is not None:
        name = human_name(fields.patient_name)
        if name:
            patient["name"] = [name]

    if fields.patient_dob is not None:
        birth_date = parse_hl7_date(fields.patient_dob)
        if birth_date is None:
            add_warning(state, f"PID-7 birth date '{fields.patient_dob}' is not YYYYMMDD — skipped.")
        else:
            patient["birthDate"] = birth_date

    if fields.patient_gender is not None:
        _apply_gender(patient, fields.patient_gender)

    number = to_e164(fields.patient_phone)
    if number is None:
        if fields.patient_phone is not None:
            add_warning(state, f"PID-13 phone '{fields.patient_phone}' has no digits — placeholder used.")
        number = policy.patient_placeholder_phone
    patient["telecom"] = [phone(number)]

    if fields.patient_language is not None:
        lang = fields.patient_language[:2].lower()
        patient["communication"] = [{"language": codeable_concept(LANGUAGE_SYSTEM, lang)}]

    if fields.patient_marital_status is not None:
        code = fields.patient_marital_status
        if code.upper() == policy.legacy_marital_code.upper():
            code = policy.single_marital_code
        patient["maritalStatus"] = codeable_concept(MARITAL_STATUS_SYSTEM, code)

    _apply_race(patient, fields.patient_race)
    if fields.patient_religion is not None:
        _apply_religion(patient, fields.patient_religion)

    # name and gender are mandatory for the validator
    if not _has_name(patient):
        patient["name"] = [{"family": policy.fallback_family_name, "given": [policy.fallback_given_name]}]
    if not patient.get("gender"):
        patient["gender"] = "unknown"

    if fields.nk1_name is not None:
        contact = _build_contact(state)
        contacts = [c for c in patient.get("contact") or [] if c.get("name") != contact["name"]]
        contacts.append(contact)
        patient["contact"] = contacts

    for ident in patient.get("identifier") or []:
        if ident.get("system") == policy.assigner_identifier_system and not ident.get("assigner"):
            ident["assigner"] = {"display": policy.default_assigner_display}

    logger.debug("demographics_node: Patient %s demographics applied.", patient.get("id"))
    return state
