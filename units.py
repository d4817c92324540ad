import re
from typing import Sequence, Tuple

MEMORY_UNITS = ("Ki", "Mi", "Gi")
CPU_UNITS = ("m", "")

RESOURCE_PRESETS = {
    "small": {"cpu": "500m", "memory": "512Mi"},
    "medium": {"cpu": "1", "memory": "1Gi"},
    "large": {"cpu": "2", "memory": "2Gi"},
}

_QUANTITY = re.compile(r"^(\d+(?:\.\d+)?)(.*)$")


def extract_amount_and_unit(value: str) -> Tuple[float, str]:
    match = _QUANTITY.match(value)
    if not match:
        return 0.0, ""
    return float(match.group(1)), match.group(2)


def format_amount(amount: float) -> str:
    if amount.is_integer():
        return str(int(amount))
    return str(amount)


def normalize_quantity(value: str, units: Sequence[str], label: str, examples: str) -> str:
    """Validate a quantity such as ``512Mi`` or ``500m`` and return its canonical form.

    Raises ValueError with a user-facing message when the amount is not
    positive or the unit is not one of ``units``.
    """
    if not value:
        raise ValueError(f"{label} is required")
    amount, unit = extract_amount_and_unit(value)
    if amount <= 0:
        raise ValueError(f"{label} must be greater than 0")
    if unit not in units:
        raise ValueError(f"Invalid {label.lower()} unit. Use {examples}")
    return f"{format_amount(amount)}{unit}"
