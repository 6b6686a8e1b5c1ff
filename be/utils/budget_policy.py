"""
Unit conversions and the Services Charges margin rule shared by the
aggregator, the HTML codec and the persistence service.

Units:
- Regular product groups are stored in KGS and edited in MT (1 MT = 1000 KGS)
- Services Charges are stored in full currency and edited in thousands
"""

from typing import List, Tuple

SERVICES_CHARGES = "Services Charges"
KGS_PER_MT = 1000
SERVICES_CHARGES_SCALE = 1000  # edited value "k" -> full currency

METRIC_KGS = "KGS"
METRIC_AMOUNT = "AMOUNT"
METRIC_MORM = "MORM"
ACTUAL_METRICS = (METRIC_AMOUNT, METRIC_KGS, METRIC_MORM)

MONTHS = list(range(1, 13))
MONTH_LABELS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def is_services_charges(product_group) -> bool:
    return str(product_group or "").strip().lower() == SERVICES_CHARGES.lower()


def kgs_to_mt(kgs: float) -> float:
    return float(kgs) / KGS_PER_MT


def mt_to_kgs(mt: float) -> int:
    """MT entered in the form back to whole KGS."""
    return int(round(float(mt) * KGS_PER_MT))


def thousands_to_amount(value: float) -> int:
    return int(round(float(value) * SERVICES_CHARGES_SCALE))


def amount_to_thousands(amount: float) -> float:
    return float(amount) / SERVICES_CHARGES_SCALE


class ServicesChargesMarginPolicy:
    """
    Services Charges carry no material cost, so the margin over raw material
    equals the revenue (100% margin). Every Services Charges amount is
    persisted as an AMOUNT row plus a MORM row derived from it here.
    """

    SERVICES_CHARGES_MORM_RATIO = 1.0

    def __init__(self, morm_ratio: float = SERVICES_CHARGES_MORM_RATIO):
        self.morm_ratio = morm_ratio

    def morm_for(self, amount: float) -> float:
        return float(amount) * self.morm_ratio

    def expand(self, amount: float) -> List[Tuple[str, float]]:
        """Metric rows (metric, value) persisted for one Services Charges month."""
        amount = float(amount)
        return [(METRIC_AMOUNT, amount), (METRIC_MORM, self.morm_for(amount))]


services_charges_policy = ServicesChargesMarginPolicy()
