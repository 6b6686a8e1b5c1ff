import re

from utils.config import DIVISIONS
from utils.errors import BudgetValidationError

DEFAULT_DIVISION_CODE = "fp"


def extract_division_code(division) -> str:
    """
    Extract the lowercase division code from a division name.

    Example: "FP-UAE" -> "fp", "HC" -> "hc", None -> "fp"
    """
    if division is None or not str(division).strip():
        return DEFAULT_DIVISION_CODE
    first_segment = str(division).strip().split("-")[0]
    code = re.sub(r"[^a-zA-Z]", "", first_segment).lower()
    return code or DEFAULT_DIVISION_CODE


def canonical_division(division) -> str:
    """Uppercase division code as stored in every division table."""
    return extract_division_code(division).upper()


def validate_division(division) -> str:
    """Return the canonical division code, rejecting divisions outside the allow-list."""
    if division is None or not str(division).strip():
        raise BudgetValidationError("Division is required")
    code = canonical_division(division)
    if code not in DIVISIONS:
        raise BudgetValidationError(
            f"Division must be one of: {', '.join(DIVISIONS)}",
            details=[{"field": "division", "value": str(division)}],
        )
    return code
