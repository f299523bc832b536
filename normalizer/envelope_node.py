"""
envelope_node.py
----------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Envelope builder
------------------------------------------------------------------
Bundle-level fixes, run first:

    ensure_message_envelope — ``collection`` bundles become ``message``.
    ensure_timestamp        — Bundle.timestamp from MSH-7 when missing.
    ensure_header           — synthesize a MessageHeader as the FIRST entry
                              when MSH-9 carries an event code.

And the deferred step, run as the very last pass:

    link_header_focus       — header.focus = [Encounter, Patient], in that
                              order, once both have been resolved.

FHIR R4 MessageHeader has no timestamp element; the message time is carried
by Bundle.timestamp, which envelope_node sets before inserting the
header.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import logging
from typing import Any, Dict

from fhir_mapper import MESSAGE_EVENT_SYSTEM, add_profile, coding, new_resource, reference
from normalizer.document import identity_uri
from normalizer.parsing import parse_hl7_timestamp, to_fhir_instant
from normalizer.state import NormalizationState, add_warning

logger = logging.getLogger(__name__)


def ensure_message_envelope(bundle: Dict[str, Any]) -> None:
    """Switch a ``collection`` bundle to ``message``; other types are kept."""
    if bundle.get("type") == "collection":
        bundle["type"] = "message"
        logger.debug("envelope_node: bundle type collection → message.")


def ensure_timestamp(state: NormalizationState) -> None:
    """Set Bundle.timestamp from MSH-7 when the bundle has none."""
    bundle = state["bundle"]
    if bundle.get("timestamp"):
        return
    raw = state["fields"].message_date_time
    if raw is None:
        return
    parsed = parse_hl7_timestamp(raw)
    if parsed is None:
        add_warning(state, f"MSH-7 message time '{raw}' is not YYYYMMDDHHMMSS — bundle timestamp left unset.")
        return
    bundle["timestamp"] = to_fhir_instant(parsed)


def ensure_header(state: NormalizationState) -> None:
    """
    Make sure a MessageHeader exists when the message carries an event code.

    An existing header is reused (and later re-focused); otherwise a new one
    is built from MSH-3/5/9 and inserted as the first entry.  Without an
    event code nothing is created.
    """
    fields = state["fields"]
    policy = state["policy"]
    if fields.event_code is None:
        return

    index = state["index"]
    existing = index.first_entry("MessageHeader")
    if existing is not None:
        state["header_entry"] = existing
        return

    event = fields.event_code.replace("^", "_") if fields.event_code else policy.default_event_code
    header = new_resource("MessageHeader")
    header["eventCoding"] = coding(MESSAGE_EVENT_SYSTEM, event)
    header["source"] = {
        "endpoint": policy.source_endpoint_prefix + (fields.sending_app or policy.default_source_name),
    }
    header["destination"] = [{
        "endpoint": policy.destination_endpoint_prefix + (fields.receiving_app or policy.default_destination_name),
    }]
    add_profile(header, "us-core-messageheader")

    state["header_entry"] = index.prepend(header)
    logger.info("envelope_node: created MessageHeader (event=%s).", event)


def envelope_node(state: NormalizationState) -> NormalizationState:
    """
    Run the envelope rules: bundle type, timestamp, profile and header.

    Args:
        state: Current NormalizationState.

    Returns:
        NormalizationState: same state; ``header_entry`` set when a header
        exists for this message.
    """
    bundle = state["bundle"]
    ensure_message_envelope(bundle)
    ensure_timestamp(state)
    add_profile(bundle, "us-core-bundle")
    ensure_header(state)
    return state


def link_header_focus(state: NormalizationState) -> NormalizationState:
    """
    Point the header's focus at the first Encounter, then the Patient.

    Clears any existing focus first, so repeated runs converge on exactly
    two references.  Skipped when there is no header, no subject or no
    Encounter in the bundle.
    """
    header_entry = state["header_entry"]
    subject = state["subject"]
    episode = state["index"].first("Encounter")
    if header_entry is None or subject is None or episode is None:
        return state

    header_entry["resource"]["focus"] = [
        reference(identity_uri(episode)),
        reference(identity_uri(subject)),
    ]
    logger.debug("envelope_node: header focus linked to Encounter and Patient.")
    return state
