"""
policy.py
---------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Normalizer policy table
-------------------------------------------------------------------------
Every placeholder literal, local identifier system and legacy-code mapping
the normalization rules rely on, gathered in one frozen model so the policy
can be audited (and overridden) without touching rule logic.

Overrides:
    Set ``NORMALIZER_POLICY_FILE`` to a YAML mapping of field → value, e.g.::

        patient_placeholder_phone: "+15555550100"
        default_assigner_display: "GENERAL HOSPITAL"

    Unknown keys are logged and ignored.  A missing or malformed file is
    logged and the built-in defaults are used — the normalizer never fails
    to start because of its policy file.

Key functions:
    load_policy: Defaults + optional YAML overrides → NormalizerPolicy.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import logging
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)


class NormalizerPolicy(BaseModel):
    """Named constants used by the normalization passes."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # ── Envelope ─────────────────────────────────────────────────────────────
    default_event_code:          str = "ADT_A04"
    source_endpoint_prefix:      str = "urn:hl7v2:"
    destination_endpoint_prefix: str = "urn:fhir:"
    default_source_name:         str = "source"
    default_destination_name:    str = "dest"

    # ── Subject ──────────────────────────────────────────────────────────────
    patient_placeholder_phone:   str = "+17015551212"
    contact_placeholder_phone:   str = "555-1234"
    legacy_marital_code:         str = "ENG"
    single_marital_code:         str = "S"
    assigner_identifier_system:  str = "urn:oid:1.2.840.114350.1.13.0.1.7.1.1"
    default_assigner_display:    str = "TRINITY HEALTH MINOT"
    fallback_family_name:        str = "UNKNOWN"
    fallback_given_name:         str = "UNKNOWN"

    # ── Episode ──────────────────────────────────────────────────────────────
    visit_number_system:         str = "urn:oid:2.16.840.1.113883.19.4.6"
    legacy_service_type_system:  str = "http://terminology.hl7.org/CodeSystem/v2-0069"
    legacy_admit_source_system:  str = "urn:id:v2-0023"
    legacy_arrangement_system:   str = "http://terminology.hl7.org/CodeSystem/v2-0009"
    admission_type_system:       str = "http://terminology.hl7.org/CodeSystem/v2-0004"
    source_event_timestamp_url:  str = "http://ibm.com/fhir/cdm/StructureDefinition/source-event-timestamp"
    ward_identifier_system:      str = "urn:oid:2.16.840.1.113883.19.5.1"
    room_identifier_system:      str = "urn:oid:2.16.840.1.113883.19.5.2"
    bed_identifier_system:       str = "urn:oid:2.16.840.1.113883.19.5.3"
    practitioner_id_system:      str = "http://hl7.org/fhir/sid/us-npi"

    # ── Ancillary ────────────────────────────────────────────────────────────
    allergy_code:                str = "7980"
    allergy_display:             str = "Penicillin"
    allergy_manifestation_code:  str = "247472004"
    allergy_manifestation_display: str = "Hives"
    allergy_reaction_fallback:   str = "Hives"
    payer_identifier_system:     str = "urn:oid:2.16.840.1.113883.4.349"
    guarantor_placeholder_phone: str = "+17015551212"
    guarantor_identifier_system: str = "urn:oid:2.16.840.1.113883.19.5.8"
    guarantor_identifier_value:  str = "G12345"
    account_identifier_system:   str = "urn:oid:2.16.840.1.113883.19.4.7"
    account_identifier_value:    str = "V0098765"
    account_type_code:           str = "PBILL"
    account_type_display:        str = "patient billing"

    # ── Sanitizer ────────────────────────────────────────────────────────────
    vendor_extension_marker:     str = "ibm.com"


DEFAULT_POLICY = NormalizerPolicy()


def _read_overrides(path: str) -> Dict[str, Any]:
    """Return the YAML mapping at *path*, or ``{}`` on any read problem."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("policy: override file '%s' not found — using defaults.", path)
        return {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("policy: cannot read override file '%s' — %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("policy: override file '%s' is not a mapping — ignored.", path)
        return {}
    return data


def load_policy(path: Optional[str] = None) -> NormalizerPolicy:
    """
    Build the normalizer policy from defaults plus optional YAML overrides.

    Args:
        path: YAML override file.  Defaults to ``NORMALIZER_POLICY_FILE``;
              when neither is set the defaults are returned unchanged.

    Returns:
        NormalizerPolicy: frozen policy instance.

    Raises:
        Never — bad overrides are logged and skipped.
    """
    path = path or os.getenv("NORMALIZER_POLICY_FILE", "").strip()
    if not path:
        return DEFAULT_POLICY

    overrides = _read_overrides(path)
    known = {k: v for k, v in overrides.items() if k in NormalizerPolicy.model_fields}
    for key in overrides.keys() - known.keys():
        logger.warning("policy: unknown key '%s' in '%s' — ignored.", key, path)

    try:
        policy = NormalizerPolicy(**{**DEFAULT_POLICY.model_dump(), **known})
    except ValidationError as exc:
        logger.warning("policy: invalid overrides in '%s' — using defaults: %s", path, exc)
        return DEFAULT_POLICY

    logger.info("policy: loaded %d override(s) from '%s'.", len(known), path)
    return policy
