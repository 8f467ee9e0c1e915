"""
Record Merge Node

Folds recognized fields into the record the operator already has. Only
values the recognizer actually found replace anything, so an upload never
erases data that was typed in by hand.
"""

import logging
from typing import Dict, Mapping, Optional

from state import OfferState, OfferRecord, OFFER_FIELDS, empty_offer_record

logger = logging.getLogger(__name__)


def has_recognized_values(fields: Optional[Mapping[str, str]]) -> bool:
    """True when at least one known field carries a non-blank value."""
    if not fields:
        return False
    return any((fields.get(name) or "").strip() for name in OFFER_FIELDS)


def merge_offer_record(
    existing: Optional[OfferRecord],
    recognized: Optional[Mapping[str, str]],
    file_name: Optional[str] = None,
) -> OfferRecord:
    """
    Merge recognized fields into an existing record.

    Args:
        existing: Current record (None starts from a blank one)
        recognized: Field map from the recognizer; unknown keys are ignored
        file_name: Upload name, used as the address placeholder when nothing
            at all was recognized

    Returns:
        A new OfferRecord; the input record is not mutated
    """
    merged: OfferRecord = empty_offer_record()
    if existing:
        for name in OFFER_FIELDS:
            merged[name] = existing.get(name, "")

    recognized = recognized or {}
    if not has_recognized_values(recognized):
        if file_name:
            logger.info(f"No fields recognized in {file_name}, using it as the address placeholder")
            merged["property_address"] = file_name
        return merged

    for name in OFFER_FIELDS:
        value = recognized.get(name)
        if value and value.strip():
            merged[name] = value
    return merged


# ============================================================================
# Main Node Function
# ============================================================================

def record_merge_node(state: OfferState) -> Dict[str, OfferRecord]:
    print("--- NODE: Record Merge ---")

    record = merge_offer_record(
        state.get("existing_record"),
        state.get("recognized_fields"),
        state.get("file_name"),
    )
    filled = sum(1 for name in OFFER_FIELDS if record[name])
    print(f"   Record has {filled}/{len(OFFER_FIELDS)} fields filled")
    return {"offer_record": record}
