"""
test_subject_node.py
--------------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Tests for the subject normalizer
----------------------------------------------------------------------------------
Tests cover:
    - canonical Patient found or created
    - name / birthDate / gender / telecom / communication / marital overwrite
    - race and religion extensions (replace, never duplicate)
    - UNKNOWN name and unknown gender fallback
    - NK1 contact with relationship and phone placeholder
    - assigner display on the known identifier system

Run:
    pytest tests/test_subject_node.py -v --tb=short

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fhir_mapper import RELIGION_EXTENSION_URL, US_CORE_RACE_URL
from normalizer.state import create_initial_state
from normalizer.subject_node import demographics_node, subject_node
from schemas import MessageFields
from tests.samples import PATIENT_ID_SYSTEM


def _run(patient=None, **fields):
    entries = [{"resource": patient}] if patient is not None else []
    state = create_initial_state({"resourceType": "Bundle", "entry": entries}, MessageFields(**fields))
    return demographics_node(subject_node(state))


def _patient(state):
    return state["subject"]


# ── Resolution ─────────────────────────────────────────────────────────────────

def test_existing_patient_is_canonical():
    patient = {"resourceType": "Patient", "id": "p1"}
    state = _run(patient)
    assert state["subject"] is patient


def test_patient_created_when_absent():
    state = _run()
    entries = state["bundle"]["entry"]
    assert len(entries) == 1
    assert entries[0]["resource"] is state["subject"]
    assert entries[0]["fullUrl"] == "urn:uuid:" + state["subject"]["id"]


def test_first_patient_wins():
    state = create_initial_state({"entry": [
        {"resource": {"resourceType": "Patient", "id": "a"}},
        {"resource": {"resourceType": "Patient", "id": "b"}},
    ]}, MessageFields())
    assert subject_node(state)["subject"]["id"] == "a"


# ── Demographics ───────────────────────────────────────────────────────────────

def test_name_replaces_existing():
    patient = {"resourceType": "Patient", "id": "p", "name": [{"family": "OLD"}, {"family": "OTHER"}]}
    state = _run(patient, patient_name="DOE^JOHN^Q")
    assert _patient(state)["name"] == [{"family": "DOE", "given": ["JOHN", "Q"]}]


def test_birth_date():
    state = _run(patient_dob="19800115")
    assert _patient(state)["birthDate"] == "1980-01-15"


def test_invalid_birth_date_skipped_with_warning():
    state = _run(patient_dob="19801345")
    assert "birthDate" not in _patient(state)
    assert any("PID-7" in w for w in state["warnings"])


def test_gender_mapping():
    assert _patient(_run(patient_gender="M"))["gender"] == "male"
    assert _patient(_run(patient_gender="female"))["gender"] == "female"
    assert _patient(_run(patient_gender="U"))["gender"] == "unknown"


def test_phone_e164_replaces_telecom():
    patient = {"resourceType": "Patient", "id": "p", "telecom": [{"system": "email", "value": "a@b"}]}
    state = _run(patient, patient_phone="(701) 555-0100")
    assert _patient(state)["telecom"] == [{"system": "phone", "value": "+17015550100", "use": "home"}]


def test_phone_placeholder_when_absent():
    state = _run()
    assert _patient(state)["telecom"] == [{"system": "phone", "value": "+17015551212", "use": "home"}]


def test_communication_two_letter_lowercase():
    state = _run(patient_language="ENG")
    assert _patient(state)["communication"] == [
        {"language": {"coding": [{"system": "urn:ietf:bcp:47", "code": "en"}]}}
    ]


def test_legacy_marital_code_maps_to_single():
    state = _run(patient_marital_status="eng")
    assert _patient(state)["maritalStatus"]["coding"][0]["code"] == "S"


def test_marital_code_passthrough():
    state = _run(patient_marital_status="M")
    assert _patient(state)["maritalStatus"]["coding"][0]["code"] == "M"


# ── Extensions ─────────────────────────────────────────────────────────────────

class TestExtensions:
    def test_non_standard_race_removed_and_us_core_added(self):
        patient = {"resourceType": "Patient", "id": "p", "extension": [
            {"url": "http://example.org/race", "valueString": "W"},
            {"url": "http://example.org/birthsex", "valueCode": "M"},
        ]}
        state = _run(patient, patient_race="2106-3")
        urls = [e["url"] for e in _patient(state)["extension"]]
        assert urls == ["http://example.org/birthsex", US_CORE_RACE_URL]
        race = _patient(state)["extension"][1]["extension"][0]
        assert race["url"] == "ombCategory"
        assert race["valueCoding"]["code"] == "2106-3"

    def test_race_replaced_not_duplicated(self):
        patient = {"resourceType": "Patient", "id": "p"}
        state = _run(patient, patient_race="2106-3")
        demographics_node(state)
        assert [e["url"] for e in _patient(state)["extension"]].count(US_CORE_RACE_URL) == 1

    def test_non_numeric_race_not_added(self):
        state = _run(patient_race="W")
        assert "extension" not in _patient(state)

    def test_religion_added_for_short_digits(self):
        state = _run(patient_religion="1013")
        ext = _patient(state)["extension"]
        assert ext[0]["url"] == RELIGION_EXTENSION_URL
        assert ext[0]["valueCodeableConcept"]["coding"][0]["code"] == "1013"

    def test_religion_rejected_when_too_long_or_alpha(self):
        assert "extension" not in _patient(_run(patient_religion="10130"))
        assert "extension" not in _patient(_run(patient_religion="CATH"))


# ── Fallbacks ──────────────────────────────────────────────────────────────────

def test_unknown_fallbacks():
    state = _run()
    patient = _patient(state)
    assert patient["name"] == [{"family": "UNKNOWN", "given": ["UNKNOWN"]}]
    assert patient["gender"] == "unknown"


def test_existing_name_and_gender_kept():
    patient = {"resourceType": "Patient", "id": "p", "name": [{"text": "Jo"}], "gender": "female"}
    state = _run(patient)
    assert _patient(state)["name"] == [{"text": "Jo"}]
    assert _patient(state)["gender"] == "female"


# ── Contact ────────────────────────────────────────────────────────────────────

def test_contact_from_nk1():
    state = _run(nk1_name="DOE^JANE", nk1_relationship_code="SPO^Spouse", nk1_phone="(701) 555-0101")
    assert _patient(state)["contact"] == [{
        "name": {"family": "DOE", "given": ["JANE"]},
        "relationship": [{"coding": [{
            "system": "http://terminology.hl7.org/CodeSystem/v2-0131",
            "code": "SPO",
            "display": "Spouse",
        }]}],
        "telecom": [{"system": "phone", "value": "+17015550101", "use": "home"}],
    }]


def test_contact_placeholder_phone():
    state = _run(nk1_name="DOE^JANE")
    contact = _patient(state)["contact"][0]
    assert contact["telecom"] == [{"system": "phone", "value": "555-1234"}]
    assert "relationship" not in contact


def test_contact_same_name_replaced():
    state = _run(nk1_name="DOE^JANE", nk1_phone="7015550101")
    demographics_node(state)
    assert len(_patient(state)["contact"]) == 1


# ── Assigner ───────────────────────────────────────────────────────────────────

def test_assigner_on_known_system_only():
    patient = {"resourceType": "Patient", "id": "p", "identifier": [
        {"system": PATIENT_ID_SYSTEM, "value": "1"},
        {"system": "urn:other", "value": "2"},
        {"system": PATIENT_ID_SYSTEM, "value": "3", "assigner": {"display": "KEEP"}},
    ]}
    identifiers = _patient(_run(patient))["identifier"]
    assert identifiers[0]["assigner"] == {"display": "TRINITY HEALTH MINOT"}
    assert "assigner" not in identifiers[1]
    assert identifiers[2]["assigner"] == {"display": "KEEP"}
