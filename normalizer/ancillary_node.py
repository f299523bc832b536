"""
ancillary_node.py
-----------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Ancillary synthesizer
-----------------------------------------------------------------------
Creates the dependent resources the converter does not emit.  Each builder
fires only when its triggering field is present and only ever APPENDS new
entries; existing entries are never touched.

    AL1-3 allergy_code          → AllergyIntolerance
    IN1-4 insurance_payer_name  → Organization (payer) + Coverage
    GT1-3 guarantor_name        → RelatedPerson (guarantor)
    PV1-18 account_number       → Account

Code, identifier and phone values written here are placeholders taken from
the policy table, not from the message.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import logging
from typing import Any, Dict, Optional

from fhir_mapper import (
    ACT_CODE_SYSTEM,
    ALLERGY_CLINICAL_SYSTEM,
    COVERAGE_CLASS_SYSTEM,
    ROLE_CODE_SYSTEM,
    RXNORM_SYSTEM,
    SNOMED_SYSTEM,
    add_profile,
    codeable_concept,
    human_name,
    new_resource,
    phone,
    reference,
)
from normalizer.document import identity_uri
from normalizer.parsing import now_instant
from normalizer.state import NormalizationState

logger = logging.getLogger(__name__)


def _subject_ref(state: NormalizationState) -> Optional[Dict[str, Any]]:
    subject = state["subject"]
    return reference(identity_uri(subject)) if subject is not None else None


def add_allergy(state: NormalizationState) -> None:
    fields = state["fields"]
    policy = state["policy"]
    subject = _subject_ref(state)
    if fields.allergy_code is None or subject is None:
        return

    allergy = new_resource("AllergyIntolerance")
    allergy["clinicalStatus"] = codeable_concept(ALLERGY_CLINICAL_SYSTEM, "active")
    allergy["code"] = codeable_concept(RXNORM_SYSTEM, policy.allergy_code, policy.allergy_display)
    allergy["patient"] = subject
    allergy["recordedDate"] = now_instant()
    allergy["reaction"] = [{
        "manifestation": [
            codeable_concept(SNOMED_SYSTEM, policy.allergy_manifestation_code, policy.allergy_manifestation_display),
        ],
        "description": fields.allergy_reaction or policy.allergy_reaction_fallback,
    }]
    add_profile(allergy, "us-core-allergyintolerance")
    state["index"].append(allergy)


def add_coverage(state: NormalizationState) -> None:
    """Append the payer Organization, then a Coverage pointing at it."""
    fields = state["fields"]
    policy = state["policy"]
    subject = _subject_ref(state)
    if fields.insurance_payer_name is None or subject is None:
        return

    payer = new_resource("Organization")
    payer["name"] = fields.insurance_payer_name
    if fields.insurance_payer_id is not None:
        payer["identifier"] = [{"system": policy.payer_identifier_system, "value": fields.insurance_payer_id}]
    add_profile(payer, "us-core-organization")
    state["index"].append(payer)

    coverage = new_resource("Coverage")
    coverage["status"] = "active"
    coverage["beneficiary"] = subject
    coverage["payor"] = [reference(identity_uri(payer))]
    if fields.insurance_group_number is not None:
        coverage["class"] = [{
            "type": codeable_concept(COVERAGE_CLASS_SYSTEM, "group"),
            "value": fields.insurance_group_number,
        }]
    add_profile(coverage, "us-core-coverage")
    state["index"].append(coverage)


def add_guarantor(state: NormalizationState) -> None:
    fields = state["fields"]
    policy = state["policy"]
    subject = _subject_ref(state)
    if fields.guarantor_name is None or subject is None:
        return

    guarantor = new_resource("RelatedPerson")
    guarantor["patient"] = subject
    guarantor["relationship"] = [codeable_concept(ROLE_CODE_SYSTEM, "GUAR", "Guarantor")]
    name = human_name(fields.guarantor_name)
    if name:
        guarantor["name"] = [name]
    guarantor["telecom"] = [phone(policy.guarantor_placeholder_phone)]
    guarantor["identifier"] = [{
        "system": policy.guarantor_identifier_system,
        "value": policy.guarantor_identifier_value,
    }]
    add_profile(guarantor, "us-core-relatedperson")
    state["index"].append(guarantor)


def add_account(state: NormalizationState) -> None:
    """Account is created even without a subject; it is linked when one exists."""
    policy = state["policy"]
    if state["fields"].account_number is None:
        return

    account = new_resource("Account")
    account["identifier"] = [{
        "system": policy.account_identifier_system,
        "value": policy.account_identifier_value,
    }]
    account["status"] = "active"
    account["type"] = codeable_concept(ACT_CODE_SYSTEM, policy.account_type_code, policy.account_type_display)
    subject = _subject_ref(state)
    if subject is not None:
        account["subject"] = [subject]
    add_profile(account, "us-core-account")
    state["index"].append(account)


def ancillary_node(state: NormalizationState) -> NormalizationState:
    """
    Append allergy, coverage, guarantor and account resources, in that order.

    Args:
        state: Current NormalizationState; ``subject`` must be resolved.

    Returns:
        NormalizationState: same state with new entries appended.
    """
    before = len(state["index"].entries)
    add_allergy(state)
    add_coverage(state)
    add_guarantor(state)
    add_account(state)
    logger.debug("ancillary_node: appended %d resource(s).", len(state["index"].entries) - before)
    return state
