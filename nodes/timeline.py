"""
Deadline Timeline Node

Derives the twelve dated transaction tasks from an OfferRecord. Every date
is an offset from the acceptance date (or from the closing date for the
closing-week tasks). The builder refuses to run without an acceptance date
rather than inventing one.
"""

import re
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, NamedTuple, Optional

from errors import MissingPreconditionError
from state import OfferState, OfferRecord, TaskPriority, TimelineItem

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================

DEFAULT_INSPECTION_DAYS = 10
DEFAULT_APPRAISAL_DAYS = 21
DEFAULT_FINANCING_DAYS = 30

ISO_DATE_FORMAT = "%Y-%m-%d"


class TimelineAnchors(NamedTuple):
    """Reference dates every rule is computed from."""
    acceptance: date
    inspection_deadline: date
    appraisal_deadline: date
    financing_deadline: date
    walkthrough: date
    closing: date


class TimelineRule(NamedTuple):
    task: str
    priority: TaskPriority
    responsible: str
    agent_action: bool
    when: Callable[[TimelineAnchors], date]


DAY = timedelta(days=1)

# Declared order is the tie-break order for tasks on the same date
TIMELINE_RULES: List[TimelineRule] = [
    TimelineRule("Send Welcome Emails", TaskPriority.HIGH, "Agent", True,
                 lambda a: a.acceptance + DAY),
    TimelineRule("Order Title Commitment", TaskPriority.HIGH, "Agent", True,
                 lambda a: a.acceptance + DAY),
    TimelineRule("Coordinate with Lender", TaskPriority.MEDIUM, "Agent", True,
                 lambda a: a.acceptance + 2 * DAY),
    TimelineRule("Inspection Period Ends", TaskPriority.HIGH, "Buyer", False,
                 lambda a: a.inspection_deadline),
    TimelineRule("Follow up on Inspection Results", TaskPriority.MEDIUM, "Agent", True,
                 lambda a: a.inspection_deadline + DAY),
    TimelineRule("Title Search Completion", TaskPriority.MEDIUM, "Title Company", False,
                 lambda a: a.acceptance + 7 * DAY),
    TimelineRule("Appraisal Deadline", TaskPriority.HIGH, "Lender", False,
                 lambda a: a.appraisal_deadline),
    TimelineRule("Monitor Financing Progress", TaskPriority.HIGH, "Agent", True,
                 lambda a: a.financing_deadline - 7 * DAY),
    TimelineRule("Financing Approval Deadline", TaskPriority.CRITICAL, "Buyer/Lender", False,
                 lambda a: a.financing_deadline),
    TimelineRule("Prepare Closing Checklist", TaskPriority.MEDIUM, "Agent", True,
                 lambda a: a.walkthrough - 3 * DAY),
    TimelineRule("Final Walk-through", TaskPriority.MEDIUM, "Buyer", False,
                 lambda a: a.walkthrough),
    TimelineRule("Closing Date", TaskPriority.CRITICAL, "All Parties", False,
                 lambda a: a.closing),
]


# ============================================================================
# Field Parsing
# ============================================================================

def parse_record_date(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD record field, None when blank or malformed."""
    if not value or not value.strip():
        return None
    try:
        return datetime.strptime(value.strip(), ISO_DATE_FORMAT).date()
    except ValueError:
        return None


def parse_day_count(value: Optional[str], default: int) -> int:
    """Leading integer of a day-count field ('10 days' -> 10), else the default."""
    match = re.match(r"\s*(\d+)", value or "")
    if not match:
        return default
    return int(match.group(1))


def _add_days(start: date, days: int, field: str) -> date:
    """start + days, rejecting offsets that leave the calendar."""
    try:
        return start + timedelta(days=days)
    except OverflowError:
        raise MissingPreconditionError(
            field, f"{field} of {days} days puts the deadline outside the calendar"
        ) from None


def compute_anchors(record: OfferRecord) -> TimelineAnchors:
    acceptance = parse_record_date(record.get("acceptance_date"))
    if acceptance is None:
        raise MissingPreconditionError(
            "acceptance_date",
            "An acceptance date (YYYY-MM-DD) is required to build the timeline",
        )

    closing = parse_record_date(record.get("closing_date"))
    if closing is None and (record.get("closing_date") or "").strip():
        logger.warning(f"Ignoring unparseable closing date: {record['closing_date']!r}")

    inspection_days = parse_day_count(record.get("inspection_period"), DEFAULT_INSPECTION_DAYS)
    appraisal_days = parse_day_count(record.get("appraisal_period"), DEFAULT_APPRAISAL_DAYS)
    financing_days = parse_day_count(record.get("financing_deadline"), DEFAULT_FINANCING_DAYS)

    closing_or_acceptance = closing or acceptance
    return TimelineAnchors(
        acceptance=acceptance,
        inspection_deadline=_add_days(acceptance, inspection_days, "inspection_period"),
        appraisal_deadline=_add_days(acceptance, appraisal_days, "appraisal_period"),
        financing_deadline=_add_days(acceptance, financing_days, "financing_deadline"),
        walkthrough=_add_days(closing_or_acceptance, -1, "closing_date"),
        closing=closing_or_acceptance,
    )


# ============================================================================
# Builder
# ============================================================================

def build_timeline(record: OfferRecord) -> List[TimelineItem]:
    """
    Build the transaction timeline for an accepted offer.

    Args:
        record: OfferRecord with a YYYY-MM-DD acceptance_date

    Returns:
        Exactly 12 TimelineItems sorted by date; ties keep rule order

    Raises:
        MissingPreconditionError: acceptance_date is blank or not a date, or a
            day count pushes a deadline outside the calendar
    """
    anchors = compute_anchors(record)
    try:
        items = [
            TimelineItem(
                task=rule.task,
                date=rule.when(anchors),
                priority=rule.priority,
                responsible=rule.responsible,
                agent_action=rule.agent_action,
            )
            for rule in TIMELINE_RULES
        ]
    except OverflowError:
        raise MissingPreconditionError(
            "acceptance_date", "Timeline dates fall outside the calendar"
        ) from None
    # sorted() is stable
    return sorted(items, key=lambda item: item.date)


# ============================================================================
# Main Node Function
# ============================================================================

def timeline_node(state: OfferState) -> Dict[str, object]:
    print("--- NODE: Timeline Builder ---")

    try:
        timeline = build_timeline(state["offer_record"])
    except MissingPreconditionError as e:
        print(f"   Skipped: {e.message}")
        return {
            "timeline": [],
            "status": "Needs_Review",
            "errors": state.get("errors", []) + [e.message],
        }

    print(f"   Built {len(timeline)} timeline items")
    for item in timeline:
        print(f"   {item.display_date()}: {item.task} ({item.priority.value})")
    return {"timeline": [item.to_dict() for item in timeline]}
