"""
test_fhir_mapper.py
-------------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Tests for fhir_mapper.py
--------------------------------------------------------------------------
Tests cover:
    - E.164 rule: 10 digits, leading '+', other digit counts, no digits
    - human_name component handling
    - coding / codeable_concept omit empty display and text
    - add_profile never duplicates a profile
    - new_resource assigns a UUID id

Run:
    pytest tests/test_fhir_mapper.py -v --tb=short

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import os
import sys
import uuid

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fhir_mapper import (
    add_profile,
    codeable_concept,
    coding,
    first_coding,
    human_name,
    new_resource,
    phone,
    to_e164,
)


# ── E.164 ──────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("raw, expected", [
    ("(701) 555-1212", "+17015551212"),
    ("701.555.1212", "+17015551212"),
    ("+1 (701) 555-1212", "+1 (701) 555-1212"),
    ("+44 20 7946 0958", "+44 20 7946 0958"),
    ("442079460958", "+442079460958"),
    ("5551234", "+5551234"),
])
def test_to_e164(raw, expected):
    assert to_e164(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "N/A", "ext-"])
def test_to_e164_without_digits_is_none(raw):
    assert to_e164(raw) is None


def test_to_e164_ten_digits_wins_over_plus():
    """A '+' prefix with exactly ten digits still gets the +1 country code."""
    assert to_e164("+7015551212") == "+17015551212"


# ── Names ──────────────────────────────────────────────────────────────────────

def test_human_name_full():
    assert human_name("DOE^JOHN^Q") == {"family": "DOE", "given": ["JOHN", "Q"]}


def test_human_name_skips_empty_components():
    assert human_name("DOE^^J") == {"family": "DOE", "given": ["J"]}
    assert human_name("^JOHN") == {"given": ["JOHN"]}


def test_human_name_ignores_components_after_middle():
    assert human_name("DOE^JOHN^Q^JR^DR") == {"family": "DOE", "given": ["JOHN", "Q"]}


def test_human_name_empty():
    assert human_name("^^") == {}


# ── Datatypes ──────────────────────────────────────────────────────────────────

def test_coding_omits_missing_display():
    assert coding("sys", "c") == {"system": "sys", "code": "c"}
    assert coding("sys", "c", "Disp")["display"] == "Disp"


def test_codeable_concept_with_text():
    cc = codeable_concept("sys", "c", "Disp", text="Text")
    assert cc == {"coding": [{"system": "sys", "code": "c", "display": "Disp"}], "text": "Text"}
    assert first_coding(cc)["code"] == "c"


def test_first_coding_of_empty_concept():
    assert first_coding(None) is None
    assert first_coding({"coding": []}) is None
    assert first_coding({"text": "x"}) is None


def test_phone_use_can_be_omitted():
    assert phone("+1", use=None) == {"system": "phone", "value": "+1"}
    assert phone("+1")["use"] == "home"


def test_add_profile_is_idempotent():
    resource = {"resourceType": "Encounter"}
    add_profile(resource, "us-core-encounter")
    add_profile(resource, "us-core-encounter")
    assert resource["meta"]["profile"] == [
        "http://hl7.org/fhir/us/core/StructureDefinition/us-core-encounter"
    ]


def test_new_resource_has_uuid_id():
    resource = new_resource("Location")
    assert resource["resourceType"] == "Location"
    uuid.UUID(resource["id"])
