# backend/tasks/message_composer.py
import logging
from typing import Any, Dict, List, Optional, Union

from core.config import settings
from core.time_utils import utcnow
from models.message_models import MessageStatus
from repository import new_id

logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = "{name}"
DISCOUNT_PLACEHOLDER = "{discount}"


def format_discount(discount: Union[int, float]) -> str:
    """Plain decimal text: 15 -> "15", 15.0 -> "15", 12.5 -> "12.5" """
    if isinstance(discount, float) and discount.is_integer():
        return str(int(discount))
    return str(discount)


def display_name(customer: Dict[str, Any]) -> str:
    return customer.get("name") or customer.get("email") or ""


class MessageComposer:
    """Literal placeholder substitution; anything other than {name} and {discount} passes through untouched"""

    def personalize(self, template: str, customer: Dict[str, Any], discount: Union[int, float]) -> str:
        return (
            template
            .replace(NAME_PLACEHOLDER, display_name(customer))
            .replace(DISCOUNT_PLACEHOLDER, format_discount(discount))
        )

    def build_message(self, customer: Dict[str, Any], template: str, discount: Union[int, float],
                      subject: str, campaign_id: Optional[str] = None) -> Dict[str, Any]:
        now = utcnow()
        return {
            "_id": new_id(),
            "campaign_id": campaign_id,
            "customer_id": str(customer.get("_id")),
            "customer_name": display_name(customer),
            "customer_email": customer.get("email", ""),
            "subject": subject,
            "body": self.personalize(template, customer, discount),
            "discount_percentage": discount,
            "status": MessageStatus.PENDING.value,
            "vendor_message_id": None,
            "error_message": None,
            "sent_at": None,
            "delivered_at": None,
            "created_at": now,
            "updated_at": now,
        }

    def compose(self, customers: List[Dict[str, Any]], template: str,
                discount_percentage: Optional[Union[int, float]] = None,
                subject: str = "", campaign_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """One PENDING message per customer, same order, duplicates included"""
        discount = settings.DEFAULT_DISCOUNT_PERCENTAGE if discount_percentage is None else discount_percentage
        messages = [
            self.build_message(customer, template, discount, subject, campaign_id)
            for customer in customers
        ]
        logger.debug(f"Composed {len(messages)} messages for campaign {campaign_id}")
        return messages


message_composer = MessageComposer()
