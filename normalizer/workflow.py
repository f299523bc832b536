"""
workflow.py
-----------
HL7Bridge — HL7v2 to FHIR R4 Conversion Service — Normalizer workflow
---------------------------------------------------------------------
Runs the normalization passes over one converter bundle, in a fixed order.
Later passes depend on resources created or resolved by earlier ones, so
the order below is part of the contract:

    envelope          → bundle type, timestamp, MessageHeader (first entry)
    references        → canonical ``urn:uuid:`` fullUrls
    subject           → canonical Patient (found or created)
    episodes          → every Encounter (needs subject)
    demographics      → Patient fields from PID / NK1
    ancillary         → AllergyIntolerance, Organization + Coverage,
                        RelatedPerson, Account (need subject)
    extensions        → vendor meta extensions stripped
    final_references  → duplicate ``urn:uuid:`` prefixes collapsed everywhere
    header_focus      → MessageHeader.focus = [Encounter, Patient]

The passes are chained as a linear LangGraph StateGraph:
    START → envelope → references → … → header_focus → END
Each node is wrapped so its name is appended to ``passes_run`` after it
runs.  The graph is compiled once at import; it holds no per-run data.

Key functions:
    run_normalization: Entry point — creates state, invokes the graph.
    normalize_bundle: Convenience wrapper returning only the bundle.
    _build_graph: Assembles and compiles the StateGraph.

Project: HL7Bridge — HL7v2 to FHIR R4 Conversion Service
"""

import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from langgraph.graph import END, START, StateGraph

from normalizer.ancillary_node import ancillary_node
from normalizer.envelope_node import envelope_node, link_header_focus
from normalizer.episode_node import episode_node
from normalizer.extension_node import extension_node
from normalizer.policy import NormalizerPolicy, load_policy
from normalizer.reference_node import final_reference_node, reference_node
from normalizer.state import NormalizationState, create_initial_state
from normalizer.subject_node import demographics_node, subject_node
from schemas import MessageFields

logger = logging.getLogger(__name__)

Pass = Callable[[NormalizationState], NormalizationState]

PASSES: List[Tuple[str, Pass]] = [
    ("envelope", envelope_node),
    ("references", reference_node),
    ("subject", subject_node),
    ("episodes", episode_node),
    ("demographics", demographics_node),
    ("ancillary", ancillary_node),
    ("extensions", extension_node),
    ("final_references", final_reference_node),
    ("header_focus", link_header_focus),
]


class NormalizationResult(NamedTuple):
    bundle: Optional[Dict[str, Any]]
    warnings: List[str]
    passes_run: List[str]


def _recorded(name: str, run_pass: Pass) -> Pass:
    """Wrap *run_pass* so the pass name is recorded in ``passes_run``."""
    def node(state: NormalizationState) -> NormalizationState:
        state = run_pass(state)
        state["passes_run"].append(name)
        return state
    return node


def _build_graph():
    """
    Assemble and compile the normalization StateGraph.

    Graph topology:
        START → one node per entry of PASSES, in order → END

    Returns:
        CompiledGraph: Ready-to-invoke LangGraph graph.
    """
    graph = StateGraph(NormalizationState)

    previous = START
    for name, run_pass in PASSES:
        graph.add_node(name, _recorded(name, run_pass))
        graph.add_edge(previous, name)
        previous = name
    graph.add_edge(previous, END)

    return graph.compile()


_GRAPH = _build_graph()


def run_normalization(
    bundle: Optional[Dict[str, Any]],
    fields: Optional[MessageFields],
    policy: Optional[NormalizerPolicy] = None,
) -> NormalizationResult:
    """
    Normalize *bundle* in place against the fields of its source message.

    Args:
        bundle: Converter output (FHIR Bundle dict).  ``None`` is passed
                through untouched.
        fields: Extracted HL7v2 fields.  ``None`` behaves like an empty
                record: every field-driven rule is skipped.
        policy: Constants table; defaults to ``load_policy()``.

    Returns:
        NormalizationResult: (bundle, warnings, passes_run).  Warnings list
        every skipped field and removed code; they never affect the bundle.
    """
    if bundle is None:
        return NormalizationResult(None, [], [])

    state = create_initial_state(
        bundle,
        fields if fields is not None else MessageFields(),
        policy if policy is not None else load_policy(),
    )
    state = _GRAPH.invoke(state)

    logger.info(
        "workflow: normalized bundle — %d entr%s, %d warning(s).",
        len(state["index"].entries),
        "y" if len(state["index"].entries) == 1 else "ies",
        len(state["warnings"]),
    )
    return NormalizationResult(state["bundle"], state["warnings"], state["passes_run"])


def normalize_bundle(
    bundle: Optional[Dict[str, Any]],
    fields: Optional[MessageFields],
    policy: Optional[NormalizerPolicy] = None,
) -> Optional[Dict[str, Any]]:
    """Normalize *bundle* and return it (``None`` in, ``None`` out)."""
    return run_normalization(bundle, fields, policy).bundle
