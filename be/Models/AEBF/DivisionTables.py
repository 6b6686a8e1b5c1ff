"""
Division table registry

Each division owns the same four tables, prefixed with its code
(fp_divisional_budget, hc_divisional_budget, ...). The ORM classes for every
configured division are built once at import time; request input only
selects an entry from this closed registry and never becomes part of a
table name.
"""

from dataclasses import dataclass
from typing import Dict, List

from Database.session import Base
from Models.AEBF.DataExcel import DataExcelMixin
from Models.AEBF.DivisionalBudget import DivisionalBudgetMixin
from Models.AEBF.MaterialPercentage import MaterialPercentageMixin
from Models.AEBF.PricingRounding import PricingRoundingMixin, attach_updated_at_trigger
from utils.config import DIVISIONS
from utils.divisions import extract_division_code
from utils.errors import BudgetValidationError


@dataclass(frozen=True)
class DivisionTables:
    code: str
    data_excel: type
    material: type
    pricing: type
    budget: type

    @property
    def excel_data_table(self) -> str:
        return self.data_excel.__tablename__

    @property
    def material_table(self) -> str:
        return self.material.__tablename__

    @property
    def pricing_table(self) -> str:
        return self.pricing.__tablename__

    @property
    def budget_table(self) -> str:
        return self.budget.__tablename__

    def all_tables(self) -> List:
        return [m.__table__ for m in (self.data_excel, self.material, self.pricing, self.budget)]


_registry: Dict[str, DivisionTables] = {}


def _model(class_name: str, mixin: type, table_name: str) -> type:
    return type(class_name, (mixin, Base), {"__tablename__": table_name})


def register_division(code: str) -> DivisionTables:
    code = code.lower()
    if code in _registry:
        return _registry[code]

    prefix = code.upper()
    pricing = _model(f"{prefix}PricingRounding", PricingRoundingMixin, f"{code}_product_group_pricing_rounding")
    attach_updated_at_trigger(pricing.__table__)

    tables = DivisionTables(
        code=code,
        data_excel=_model(f"{prefix}DataExcel", DataExcelMixin, f"{code}_data_excel"),
        material=_model(f"{prefix}MaterialPercentage", MaterialPercentageMixin, f"{code}_material_percentages"),
        pricing=pricing,
        budget=_model(f"{prefix}DivisionalBudget", DivisionalBudgetMixin, f"{code}_divisional_budget"),
    )
    _registry[code] = tables
    return tables


def registered_divisions() -> List[str]:
    return sorted(_registry)


def resolve_tables(division) -> DivisionTables:
    """Table bundle of a division name or code ("FP", "fp", "FP-UAE")."""
    code = extract_division_code(division)
    tables = _registry.get(code)
    if tables is None:
        raise BudgetValidationError(
            f"Unknown division '{division}'",
            details=[{"field": "division", "allowed": [c.upper() for c in registered_divisions()]}],
        )
    return tables


for _code in DIVISIONS:
    register_division(_code)
