"""
test_ancillary_node.py
----------------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Tests for the ancillary synthesizer
-------------------------------------------------------------------------------------
Tests cover:
    - each builder fires only on its trigger field
    - AllergyIntolerance placeholder coding, manifestation display and reaction fallback
    - payer Organization appended before the Coverage that references it
    - guarantor RelatedPerson and Account placeholders
    - Account is created without a subject, the others are not

Run:
    pytest tests/test_ancillary_node.py -v --tb=short

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from normalizer.ancillary_node import ancillary_node
from normalizer.policy import DEFAULT_POLICY
from normalizer.state import create_initial_state
from normalizer.subject_node import subject_node
from schemas import MessageFields


def _run(with_subject=True, policy=None, **fields):
    entries = [{"fullUrl": "urn:uuid:p1", "resource": {"resourceType": "Patient", "id": "p1"}}]
    state = create_initial_state({"resourceType": "Bundle", "entry": entries}, MessageFields(**fields), policy)
    if with_subject:
        subject_node(state)
    return ancillary_node(state)


def _types(state):
    return [e["resource"]["resourceType"] for e in state["bundle"]["entry"]]


def test_nothing_created_without_triggers():
    assert _types(_run()) == ["Patient"]


def test_allergy():
    state = _run(allergy_code="PCN^Penicillin", allergy_reaction="Rash")
    allergy = state["bundle"]["entry"][-1]["resource"]
    assert allergy["resourceType"] == "AllergyIntolerance"
    assert allergy["patient"] == {"reference": "urn:uuid:p1"}
    assert allergy["clinicalStatus"]["coding"][0]["code"] == "active"
    assert allergy["code"]["coding"][0] == {
        "system": "http://www.nlm.nih.gov/research/umls/rxnorm", "code": "7980", "display": "Penicillin",
    }
    reaction = allergy["reaction"][0]
    assert reaction["description"] == "Rash"
    assert reaction["manifestation"][0]["coding"][0]["code"] == "247472004"
    assert allergy["recordedDate"]


def test_allergy_reaction_fallback():
    state = _run(allergy_code="PCN")
    assert state["bundle"]["entry"][-1]["resource"]["reaction"][0]["description"] == "Hives"


def test_manifestation_display_is_independent_of_reaction_fallback():
    policy = DEFAULT_POLICY.model_copy(update={
        "allergy_manifestation_display": "Urticaria",
        "allergy_reaction_fallback": "Unspecified reaction",
    })
    reaction = _run(policy=policy, allergy_code="PCN")["bundle"]["entry"][-1]["resource"]["reaction"][0]
    assert reaction["manifestation"][0]["coding"][0]["display"] == "Urticaria"
    assert reaction["description"] == "Unspecified reaction"


def test_coverage_and_payer():
    state = _run(insurance_payer_name="ACME HEALTH", insurance_payer_id="PAYER123", insurance_group_number="GRP001")
    assert _types(state) == ["Patient", "Organization", "Coverage"]
    payer = state["bundle"]["entry"][1]["resource"]
    coverage = state["bundle"]["entry"][2]["resource"]
    assert payer["name"] == "ACME HEALTH"
    assert payer["identifier"] == [{"system": "urn:oid:2.16.840.1.113883.4.349", "value": "PAYER123"}]
    assert coverage["status"] == "active"
    assert coverage["beneficiary"] == {"reference": "urn:uuid:p1"}
    assert coverage["payor"] == [{"reference": "urn:uuid:" + payer["id"]}]
    assert coverage["class"][0]["value"] == "GRP001"
    assert coverage["class"][0]["type"]["coding"][0]["code"] == "group"


def test_coverage_without_payer_id_or_group():
    state = _run(insurance_payer_name="ACME HEALTH")
    payer = state["bundle"]["entry"][1]["resource"]
    coverage = state["bundle"]["entry"][2]["resource"]
    assert "identifier" not in payer
    assert "class" not in coverage


def test_guarantor():
    state = _run(guarantor_name="DOE^JOHN")
    guarantor = state["bundle"]["entry"][-1]["resource"]
    assert guarantor["resourceType"] == "RelatedPerson"
    assert guarantor["patient"] == {"reference": "urn:uuid:p1"}
    assert guarantor["relationship"][0]["coding"][0]["code"] == "GUAR"
    assert guarantor["name"] == [{"family": "DOE", "given": ["JOHN"]}]
    assert guarantor["telecom"][0]["value"] == "+17015551212"
    assert guarantor["identifier"] == [{"system": "urn:oid:2.16.840.1.113883.19.5.8", "value": "G12345"}]


def test_account():
    state = _run(account_number="ACC123")
    account = state["bundle"]["entry"][-1]["resource"]
    assert account["resourceType"] == "Account"
    assert account["identifier"] == [{"system": "urn:oid:2.16.840.1.113883.19.4.7", "value": "V0098765"}]
    assert account["status"] == "active"
    assert account["type"]["coding"][0]["code"] == "PBILL"
    assert account["subject"] == [{"reference": "urn:uuid:p1"}]


def test_only_account_without_subject():
    state = _run(
        with_subject=False,
        allergy_code="PCN", insurance_payer_name="ACME", guarantor_name="DOE", account_number="ACC123",
    )
    assert _types(state) == ["Patient", "Account"]
    assert "subject" not in state["bundle"]["entry"][-1]["resource"]


def test_creation_order_and_profiles():
    state = _run(allergy_code="PCN", insurance_payer_name="ACME", guarantor_name="DOE", account_number="A")
    assert _types(state) == [
        "Patient", "AllergyIntolerance", "Organization", "Coverage", "RelatedPerson", "Account",
    ]
    for entry in state["bundle"]["entry"][1:]:
        assert entry["fullUrl"] == "urn:uuid:" + entry["resource"]["id"]
        assert entry["resource"]["meta"]["profile"][0].startswith("http://hl7.org/fhir/us/core/")
