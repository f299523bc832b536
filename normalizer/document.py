"""
document.py
-----------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Bundle index
--------------------------------------------------------------
``BundleIndex`` wraps a FHIR Bundle dict and keeps auxiliary lookups
current while the passes append entries:

    resourceType → [entry, ...]          (entry order preserved)
    practitioner identifier value → Practitioner resource

Lookups keep first-match-wins semantics in entry order, exactly like a
linear scan of ``bundle["entry"]`` would.  The bundle dict itself stays the
single source of truth; the index only holds references into it.

Key functions:
    BundleIndex: indexed view over a bundle with append / prepend helpers.
    bare_id: strip ``urn:uuid:`` and ``Type/`` prefixes from an id.
    identity_uri: canonical ``urn:uuid:<id>`` reference for a resource.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

URN_UUID_PREFIX = "urn:uuid:"


def bare_id(value: str) -> str:
    """
    Reduce any id / reference form to its local id part.

    Example::

        bare_id("urn:uuid:urn:uuid:abc")       # → "abc"
        bare_id("Patient/abc/_history/2")      # → "abc"
        bare_id("abc")                         # → "abc"
    """
    while value.startswith(URN_UUID_PREFIX):
        value = value[len(URN_UUID_PREFIX):]
    if "/_history/" in value:
        value = value.split("/_history/")[0]
    return value.rsplit("/", 1)[-1]


def ensure_id(resource: Dict[str, Any]) -> str:
    """Give *resource* a random UUID id if it has none; return its bare id."""
    if not resource.get("id"):
        resource["id"] = str(uuid.uuid4())
    return bare_id(str(resource["id"]))


def identity_uri(resource: Dict[str, Any]) -> str:
    """Canonical intra-bundle reference for *resource*: ``urn:uuid:<id>``."""
    return URN_UUID_PREFIX + ensure_id(resource)


class BundleIndex:
    """
    Indexed view over a FHIR Bundle dict.

    Args:
        bundle: The Bundle being normalized.  ``bundle["entry"]`` is created
                if missing and mutated in place by ``append`` / ``prepend``.
    """

    def __init__(self, bundle: Dict[str, Any]) -> None:
        self.bundle = bundle
        if not isinstance(bundle.get("entry"), list):
            bundle["entry"] = []
        self._by_type: Dict[str, List[Dict[str, Any]]] = {}
        self._practitioners: Dict[str, Dict[str, Any]] = {}
        self.rebuild()

    # ── Index maintenance ────────────────────────────────────────────────────

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return self.bundle["entry"]

    def rebuild(self) -> None:
        """Recompute every lookup from ``bundle["entry"]``."""
        self._by_type = {}
        for entry in self.entries:
            resource_type = (entry.get("resource") or {}).get("resourceType")
            if resource_type:
                self._by_type.setdefault(resource_type, []).append(entry)
        self.reindex_practitioners()

    def reindex_practitioners(self) -> None:
        """Rebuild identifier value → Practitioner (first in entry order wins)."""
        self._practitioners = {}
        for resource in self.resources_of("Practitioner"):
            for ident in resource.get("identifier") or []:
                value = ident.get("value")
                if value:
                    self._practitioners.setdefault(value, resource)

    # ── Lookups ──────────────────────────────────────────────────────────────

    def entries_of(self, resource_type: str) -> List[Dict[str, Any]]:
        """Snapshot of the entries holding *resource_type*, in entry order."""
        return list(self._by_type.get(resource_type, []))

    def resources_of(self, resource_type: str) -> List[Dict[str, Any]]:
        return [e["resource"] for e in self._by_type.get(resource_type, [])]

    def first(self, resource_type: str) -> Optional[Dict[str, Any]]:
        """First resource of *resource_type* in entry order, or ``None``."""
        entries = self._by_type.get(resource_type)
        return entries[0]["resource"] if entries else None

    def first_entry(self, resource_type: str) -> Optional[Dict[str, Any]]:
        entries = self._by_type.get(resource_type)
        return entries[0] if entries else None

    def find_practitioner(self, identifier_value: str) -> Optional[Dict[str, Any]]:
        """First Practitioner carrying an identifier with *identifier_value*."""
        return self._practitioners.get(identifier_value)

    # ── Mutation ─────────────────────────────────────────────────────────────

    def _new_entry(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        return {"fullUrl": identity_uri(resource), "resource": resource}

    def append(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        """Append *resource* as a new last entry and return the entry."""
        entry = self._new_entry(resource)
        self.entries.append(entry)
        self._by_type.setdefault(resource["resourceType"], []).append(entry)
        if resource["resourceType"] == "Practitioner":
            self.reindex_practitioners()
        logger.debug("document: appended %s %s.", resource["resourceType"], entry["fullUrl"])
        return entry

    def prepend(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        """Insert *resource* as the first entry and return the entry."""
        entry = self._new_entry(resource)
        self.entries.insert(0, entry)
        self._by_type.setdefault(resource["resourceType"], []).insert(0, entry)
        logger.debug("document: prepended %s %s.", resource["resourceType"], entry["fullUrl"])
        return entry
