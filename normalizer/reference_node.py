"""
reference_node.py
-----------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Reference canonicalizer
-------------------------------------------------------------------------
Repairs identity URI shapes across the whole bundle.  Runs twice:

  1. reference_node (early) — fixes the converter's ``fullUrl`` values:
       • ``urn:uuid:urn:uuid:<id>`` collapses to ``urn:uuid:<id>``;
       • any path-typed URL (``Patient/<id>``, ``http://…/Patient/<id>``)
         becomes ``urn:uuid:<resource id>``;
       • an entry with no ``fullUrl`` gets ``urn:uuid:<resource id>``.
       • a resource with no ``id`` takes the id carried by its ``fullUrl``,
         so later references to it resolve to the same entry.

  2. final_reference_node (last structural pass) — collapses doubled
     prefixes again in every ``fullUrl`` AND in every ``reference`` string
     nested anywhere inside every resource (Coverage.payor included), to
     catch artifacts introduced by the synthesis passes.

Malformed URIs are corrected, never rejected.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import logging
from typing import Any, Dict, Iterator

from normalizer.document import URN_UUID_PREFIX, bare_id, identity_uri
from normalizer.state import NormalizationState

logger = logging.getLogger(__name__)

_DOUBLE_PREFIX = URN_UUID_PREFIX + URN_UUID_PREFIX


def collapse_prefix(uri: str) -> str:
    """Collapse any run of repeated ``urn:uuid:`` prefixes to a single one."""
    while uri.startswith(_DOUBLE_PREFIX):
        uri = uri[len(URN_UUID_PREFIX):]
    return uri


def _iter_reference_holders(node: Any) -> Iterator[Dict[str, Any]]:
    """Yield every dict under *node* that carries a string ``reference``."""
    if isinstance(node, dict):
        if isinstance(node.get("reference"), str):
            yield node
        for value in node.values():
            yield from _iter_reference_holders(value)
    elif isinstance(node, list):
        for item in node:
            yield from _iter_reference_holders(item)


def reference_node(state: NormalizationState) -> NormalizationState:
    """
    Canonicalize every entry's ``fullUrl`` to ``urn:uuid:<id>``.

    Args:
        state: Current NormalizationState.

    Returns:
        NormalizationState: same state, bundle mutated in place.
    """
    fixed = 0
    for entry in state["index"].entries:
        resource = entry.get("resource")
        if not isinstance(resource, dict):
            continue
        url = entry.get("fullUrl")
        if not url:
            entry["fullUrl"] = identity_uri(resource)
            fixed += 1
            continue

        canonical = collapse_prefix(url)
        if not resource.get("id"):
            resource["id"] = bare_id(canonical)
        if "/" in canonical:
            canonical = identity_uri(resource)
        if canonical != url:
            entry["fullUrl"] = canonical
            fixed += 1

    logger.debug("reference_node: canonicalized %d fullUrl(s).", fixed)
    return state


def final_reference_node(state: NormalizationState) -> NormalizationState:
    """
    Remove duplicate ``urn:uuid:`` prefixes from fullUrls and all nested
    ``reference`` strings.

    Args:
        state: Current NormalizationState.

    Returns:
        NormalizationState: same state, bundle mutated in place.
    """
    fixed = 0
    for entry in state["index"].entries:
        url = entry.get("fullUrl")
        if isinstance(url, str) and url.startswith(_DOUBLE_PREFIX):
            entry["fullUrl"] = collapse_prefix(url)
            fixed += 1
        for holder in _iter_reference_holders(entry.get("resource")):
            ref = holder["reference"]
            if ref.startswith(_DOUBLE_PREFIX):
                holder["reference"] = collapse_prefix(ref)
                fixed += 1

    logger.debug("final_reference_node: collapsed %d duplicate prefix(es).", fixed)
    return state
