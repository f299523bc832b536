"""
extension_node.py
-----------------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Extension sanitizer
---------------------------------------------------------------------
Removes vendor-proprietary extensions from every resource's
``meta.extension``.  An extension is dropped when its ``url`` contains the
policy's vendor marker (``ibm.com`` by default); extensions without a url
are kept.  Pure filter, no error path.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import logging
from typing import Any, Dict

from normalizer.state import NormalizationState

logger = logging.getLogger(__name__)


def strip_vendor_extensions(resource: Dict[str, Any], marker: str) -> int:
    """Filter *resource*'s meta extensions in place; return how many were removed."""
    meta = resource.get("meta")
    if not isinstance(meta, dict) or not meta.get("extension"):
        return 0
    extensions = meta["extension"]
    kept = [ext for ext in extensions if marker not in (ext.get("url") or "")]
    if kept:
        meta["extension"] = kept
    else:
        meta.pop("extension", None)
    return len(extensions) - len(kept)


def extension_node(state: NormalizationState) -> NormalizationState:
    marker = state["policy"].vendor_extension_marker
    removed = 0
    for entry in state["index"].entries:
        resource = entry.get("resource")
        if isinstance(resource, dict):
            removed += strip_vendor_extensions(resource, marker)
    logger.debug("extension_node: removed %d vendor extension(s).", removed)
    return state
