"""
__init__.py
-----------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Bundle normalizer package
---------------------------------------------------------------------------
Repairs the FHIR R4 bundle produced by the HL7v2 converter so it conforms to
the US Core profiles a downstream validator checks: message envelope,
canonical references, one Patient, repaired Encounters, and the dependent
resources the converter leaves out.  Each rule is a pass over a shared
NormalizationState; ``workflow`` runs them in order.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

from normalizer.workflow import NormalizationResult, normalize_bundle, run_normalization

__all__ = ["NormalizationResult", "normalize_bundle", "run_normalization"]
