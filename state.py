from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import TypedDict, List, Dict, Optional, Any

# ============================================================================
# Offer Record
# ============================================================================

# Field order matches the contract summary shown to the operator
OFFER_FIELDS = (
    "acceptance_date",
    "closing_date",
    "inspection_period",
    "appraisal_period",
    "financing_deadline",
    "property_address",
    "buyer_name",
    "seller_name",
    "sale_price",
)

# Cap for free-text fields, rejects runaway regex matches
MAX_FIELD_LENGTH = 200

# How much extracted text we keep around for diagnostics
TEXT_PREVIEW_CHARS = 500


class OfferRecord(TypedDict):
    """
    The canonical structured representation of an accepted purchase agreement.

    Every field is a string. A field that was not found is "" (never None),
    so a record always carries all keys.
    """
    acceptance_date: str  # YYYY-MM-DD
    closing_date: str  # YYYY-MM-DD
    inspection_period: str  # days, e.g. "10"
    appraisal_period: str  # days
    financing_deadline: str  # days
    property_address: str
    buyer_name: str
    seller_name: str
    sale_price: str  # "$350,000" / "$350,000.00"


def empty_offer_record() -> OfferRecord:
    """Create a record with every field blank."""
    return {
        "acceptance_date": "",
        "closing_date": "",
        "inspection_period": "",
        "appraisal_period": "",
        "financing_deadline": "",
        "property_address": "",
        "buyer_name": "",
        "seller_name": "",
        "sale_price": "",
    }


# ============================================================================
# Timeline
# ============================================================================

class TaskPriority(Enum):
    """Priority of a timeline task."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class TimelineItem:
    """
    One dated, prioritized task derived from an OfferRecord.

    Produced only by the timeline builder and never mutated afterwards.
    """
    task: str
    date: date
    priority: TaskPriority
    responsible: str
    agent_action: bool = False

    def display_date(self) -> str:
        """Format like 'Fri, Mar 1, 2024'."""
        return f"{self.date:%a, %b} {self.date.day}, {self.date.year}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "task": self.task,
            "date": self.date.isoformat(),
            "display_date": self.display_date(),
            "priority": self.priority.value,
            "responsible": self.responsible,
            "agent_action": self.agent_action,
        }


class EmailTemplate(TypedDict):
    """A filled-in notification email."""
    title: str
    subject: str
    body: str


# ============================================================================
# Main Offer State
# ============================================================================

class OfferState(TypedDict, total=False):
    """
    The state of one document upload as it moves through the pipeline.
    Each node returns the keys it updates.
    """
    # Upload
    file_name: str
    file_bytes: bytes
    existing_record: Optional[OfferRecord]  # Values typed in before the upload

    # Text Acquisition
    acquisition: Dict[str, Any]  # AcquisitionResult.to_dict()
    extracted_text: str

    # Recognition & Merge
    recognized_fields: Dict[str, str]
    offer_record: OfferRecord

    # Outputs
    timeline: List[Dict[str, Any]]  # TimelineItem.to_dict()
    email_templates: List[EmailTemplate]

    # 'Processing', 'Unsupported', 'Needs_Review', 'Complete'
    status: str
    errors: List[str]
