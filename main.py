import os
import sys
import json
import logging
from pathlib import Path
from typing import Optional

from langgraph.graph import StateGraph, START, END
from dotenv import load_dotenv

# Import State
from state import OfferState, OfferRecord

# Import Nodes
from nodes.acquisition import (
    AcquisitionConfig,
    ExtractionCapabilities,
    text_acquisition_node,
)
from nodes.recognizer import field_recognizer_node
from nodes.merge import record_merge_node
from nodes.timeline import timeline_node
from nodes.notifier import notifier_node

# Load Env
load_dotenv()


def build_graph(
    config: Optional[AcquisitionConfig] = None,
    capabilities: Optional[ExtractionCapabilities] = None,
):
    """
    Constructs the LangGraph state machine.

    config/capabilities are bound into the acquisition node, so tests can
    run the whole flow with fake extraction collaborators.
    """
    builder = StateGraph(OfferState)

    def acquire(state: OfferState):
        return text_acquisition_node(state, config=config, capabilities=capabilities)

    # 1. Add Nodes
    builder.add_node("acquire", acquire)
    builder.add_node("recognize", field_recognizer_node)
    builder.add_node("merge", record_merge_node)
    builder.add_node("timeline", timeline_node)
    builder.add_node("notify", notifier_node)

    # 2. Add Edges (The Flow)
    builder.add_edge(START, "acquire")

    # Conditional logic: Could we read this file type at all?
    def check_supported(state):
        if state.get("status") == "Unsupported":
            return END
        return "recognize"

    builder.add_conditional_edges("acquire", check_supported)

    builder.add_edge("recognize", "merge")

    # Conditional logic: Is there an acceptance date to build deadlines from?
    def check_acceptance_date(state):
        record = state.get("offer_record") or {}
        if record.get("acceptance_date"):
            return "timeline"
        return "needs_review"

    def needs_review_node(state: OfferState):
        print("--- NODE: Needs Review ---")
        print("   No acceptance date; fill it in and rebuild the timeline")
        return {"status": "Needs_Review"}

    builder.add_node("needs_review", needs_review_node)
    builder.add_conditional_edges("merge", check_acceptance_date)
    builder.add_edge("needs_review", END)

    # Timeline rejects an unparseable acceptance date by setting Needs_Review
    def check_timeline(state):
        if state.get("status") == "Needs_Review":
            return END
        return "notify"

    builder.add_conditional_edges("timeline", check_timeline)
    builder.add_edge("notify", END)

    # 3. Compile
    return builder.compile()


def process_offer(
    data: bytes,
    file_name: str,
    existing: Optional[OfferRecord] = None,
    config: Optional[AcquisitionConfig] = None,
    capabilities: Optional[ExtractionCapabilities] = None,
) -> OfferState:
    """Run one uploaded document through the whole pipeline and return the final state."""
    app = build_graph(config=config, capabilities=capabilities)
    initial_state: OfferState = {
        "file_name": file_name,
        "file_bytes": data,
        "existing_record": existing,
        "status": "Processing",
        "errors": [],
    }
    return app.invoke(initial_state)


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

    if len(sys.argv) < 2:
        print("Usage: python main.py <offer-document>")
        sys.exit(2)

    path = Path(sys.argv[1])
    print(f"Starting Offer Intel on {path.name}...")
    final_state = process_offer(path.read_bytes(), path.name)

    summary = {
        "status": final_state.get("status"),
        "acquisition": final_state.get("acquisition"),
        "offer_record": final_state.get("offer_record"),
        "timeline": final_state.get("timeline", []),
        "email_templates": final_state.get("email_templates", []),
        "errors": final_state.get("errors", []),
    }
    print(json.dumps(summary, indent=2, default=str))
    sys.exit(1 if final_state.get("status") == "Unsupported" else 0)
