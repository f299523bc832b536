"""
state.py
--------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Normalization state
---------------------------------------------------------------------
Defines the NormalizationState TypedDict that flows through every pass of
the normalizer workflow.  Each pass reads from and writes to this shared
state; nothing is captured between passes outside of it.

Key fields:
    bundle: The FHIR Bundle dict being normalized (mutated in place).
    fields: MessageFields extracted from the raw HL7v2 message.
    policy: NormalizerPolicy — every placeholder literal the rules use.
    index: BundleIndex over ``bundle`` — type and identifier lookups.
    subject: The canonical Patient resource, set by the subject pass.
    header_entry: The MessageHeader entry found or created by the envelope
        pass when the message carries an event code.  The final focus pass
        links it to the resolved Encounter and Patient.
    warnings: Skipped-field diagnostics (parse failures, codes removed).
        Observability only — never changes the outcome.
    passes_run: Names of passes executed, in order.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import logging
from typing import Any, Dict, List, Optional

from typing_extensions import TypedDict

from normalizer.document import BundleIndex
from normalizer.policy import DEFAULT_POLICY, NormalizerPolicy
from schemas import MessageFields

logger = logging.getLogger(__name__)


class NormalizationState(TypedDict):
    """Shared state passed through every normalization pass."""
    bundle: Dict[str, Any]
    fields: MessageFields
    policy: NormalizerPolicy
    index: BundleIndex
    subject: Optional[Dict[str, Any]]
    header_entry: Optional[Dict[str, Any]]
    warnings: List[str]
    passes_run: List[str]


def create_initial_state(
    bundle: Dict[str, Any],
    fields: MessageFields,
    policy: Optional[NormalizerPolicy] = None,
) -> NormalizationState:
    """
    Create a fresh NormalizationState for one normalization run.

    Args:
        bundle: Converter output (FHIR Bundle dict).
        fields: Extracted HL7v2 fields.
        policy: Constants table for this run (built-in defaults if omitted).

    Returns:
        NormalizationState: ready for the first pass.
    """
    return {
        "bundle": bundle,
        "fields": fields,
        "policy": policy if policy is not None else DEFAULT_POLICY,
        "index": BundleIndex(bundle),
        "subject": None,
        "header_entry": None,
        "warnings": [],
        "passes_run": [],
    }


def add_warning(state: NormalizationState, message: str) -> None:
    """Record a non-fatal diagnostic and log it."""
    state["warnings"].append(message)
    logger.warning("normalizer: %s", message)
