"""
Notification Node - fills the welcome email templates for buyer and seller.
"""

import logging
from typing import Dict, List

from state import OfferState, OfferRecord, EmailTemplate

logger = logging.getLogger(__name__)

DEFAULT_INSPECTION_DAYS = "10"
DEFAULT_FINANCING_DAYS = "30"

SIGN_OFF = "Best regards,\nYour Real Estate Team"


def _buyer_email(record: OfferRecord) -> EmailTemplate:
    address = record.get("property_address", "")
    closing = record.get("closing_date") or record.get("acceptance_date", "")
    body = (
        f"Dear {record.get('buyer_name', '')},\n"
        "\n"
        f"Congratulations! Your offer on {address} has been accepted for {record.get('sale_price', '')}.\n"
        "\n"
        "Here are your important upcoming deadlines:\n"
        f"• Inspection Period: {record.get('inspection_period') or DEFAULT_INSPECTION_DAYS} days from acceptance\n"
        f"• Financing Deadline: {record.get('financing_deadline') or DEFAULT_FINANCING_DAYS} days from acceptance\n"
        f"• Closing Date: {closing}\n"
        "\n"
        "Next steps:\n"
        "1. Schedule your home inspection immediately\n"
        "2. Contact your lender to begin the mortgage process\n"
        "3. Review all contract documents carefully\n"
        "\n"
        f"{SIGN_OFF}"
    )
    return {
        "title": "Welcome Email - Buyer",
        "subject": f"Congratulations! Your offer on {address} has been accepted",
        "body": body,
    }


def _seller_email(record: OfferRecord) -> EmailTemplate:
    address = record.get("property_address", "")
    closing = record.get("closing_date") or record.get("acceptance_date", "")
    body = (
        f"Dear {record.get('seller_name', '')},\n"
        "\n"
        f"Excellent news! Your property at {address} is now under contract for {record.get('sale_price', '')}.\n"
        "\n"
        "Key dates to remember:\n"
        f"• Buyer's inspection period: {record.get('inspection_period') or DEFAULT_INSPECTION_DAYS} days\n"
        f"• Expected closing: {closing}\n"
        "\n"
        f"{SIGN_OFF}"
    )
    return {
        "title": "Welcome Email - Seller",
        "subject": f"Great news! Your property at {address} is under contract",
        "body": body,
    }


def generate_email_templates(record: OfferRecord) -> List[EmailTemplate]:
    """Buyer and seller welcome emails, in that order."""
    return [_buyer_email(record), _seller_email(record)]


# ============================================================================
# Main Node Function
# ============================================================================

def notifier_node(state: OfferState) -> Dict[str, object]:
    print("--- NODE: Notifier ---")

    templates = generate_email_templates(state["offer_record"])
    for template in templates:
        print(f"   {template['title']}: {template['subject']}")
    return {"email_templates": templates, "status": "Complete"}
