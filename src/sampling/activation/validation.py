"""Field-level validation of activation requests.

Collects every problem in one pass so the client can fix the whole form at
once. Field names are reported in their wire (camelCase) spelling.
"""

from __future__ import annotations

import re

from src.sampling.activation.schemas import ActivationRequest
from src.sampling.core.errors import ValidationError

# Matched with fullmatch under re.ASCII: no trailing newline, ASCII digits only
EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+", re.ASCII)
PHONE_RE = re.compile(r"[+\d\s\-()]{10,15}", re.ASCII)
PIN_RE = re.compile(r"\d{4}", re.ASCII)
ZIP_RE = re.compile(r"\d{5}", re.ASCII)
STATE_RE = re.compile(r"[A-Z]{2}", re.ASCII)

REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("display_id", "displayId"),
    ("store_name", "storeName"),
    ("contact_name", "contactName"),
    ("email", "email"),
    ("phone", "phone"),
    ("address", "address"),
    ("city", "city"),
    ("state", "state"),
    ("zip", "zip"),
    ("timezone", "timezone"),
    ("pin", "pin"),
    ("followup_days", "followupDays"),
    ("sample_skus", "sampleSkus"),
)

_FORMAT_RULES: tuple[tuple[str, str, re.Pattern[str], str], ...] = (
    ("email", "email", EMAIL_RE, "Invalid email format"),
    ("phone", "phone", PHONE_RE, "Invalid phone number format"),
    ("pin", "pin", PIN_RE, "PIN must be exactly 4 digits"),
    ("zip", "zip", ZIP_RE, "ZIP code must be exactly 5 digits"),
    ("state", "state", STATE_RE, "State must be a valid 2-letter code"),
)


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def validate_activation_request(request: ActivationRequest) -> None:
    """Check required fields and formats.

    Raises:
        ValidationError: With missing_fields and invalid_fields populated.
    """
    missing: list[str] = []
    invalid: dict[str, str] = {}

    for attr, label in REQUIRED_FIELDS:
        if _is_blank(getattr(request, attr)):
            missing.append(label)

    for attr, label, pattern, message in _FORMAT_RULES:
        value = getattr(request, attr)
        if label not in missing and not pattern.fullmatch(value):
            invalid[label] = message

    if "followupDays" not in missing and len(request.followup_days) != 2:
        invalid["followupDays"] = "Select exactly two follow-up days"

    if "sampleSkus" not in missing and any(not sku.strip() for sku in request.sample_skus):
        invalid["sampleSkus"] = "Sample SKUs cannot be blank"

    for sku, entry in request.initial_inventory.items():
        if entry.quantity < 0:
            invalid[f"initialInventory.{sku}"] = "Quantity cannot be negative"

    if missing or invalid:
        raise ValidationError(missing_fields=missing, invalid_fields=invalid)
