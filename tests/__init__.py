"""
tests/
------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Test Package
---------------------------------------------------------------
pytest suites, one per module.

Test Modules:
    - test_hl7_fields.py: HL7v2 field extraction
    - test_fhir_mapper.py: FHIR datatype builders and the E.164 rule
    - test_policy.py: policy table defaults and YAML overrides
    - test_reference_node.py / test_envelope_node.py / test_subject_node.py /
      test_episode_node.py / test_ancillary_node.py / test_extension_node.py:
      one suite per normalization pass
    - test_workflow.py: the full pass sequence end to end
    - test_converter_client.py: converter HTTP client
    - test_main.py: FastAPI endpoints

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""
