"""
Divisional budget ({code}_divisional_budget)

Monthly budget per product group and metric. Division and metric are
stored upper-cased (FP, KGS / AMOUNT / MORM), which makes the unique key
case-insensitive in practice. Services Charges only has AMOUNT and MORM.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Numeric, UniqueConstraint, CheckConstraint, Index
from sqlalchemy.orm import declared_attr

BUDGET_KEY_COLUMNS = ("division", "year", "month", "product_group", "metric")


class DivisionalBudgetMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
    division = Column(String(50), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    product_group = Column(String(255), nullable=False)
    metric = Column(String(20), nullable=False)
    value = Column(Numeric(20, 4, asdecimal=False), nullable=False, default=0)
    material = Column(String(255), nullable=True, default="")
    process = Column(String(255), nullable=True, default="")
    uploaded_filename = Column(String(500), nullable=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow)

    @declared_attr
    def __table_args__(cls):
        name = cls.__tablename__
        return (
            UniqueConstraint(*BUDGET_KEY_COLUMNS, name=f"uq_{name}_key"),
            CheckConstraint("month BETWEEN 1 AND 12", name=f"ck_{name}_month"),
            Index(f"ix_{name}_division_year", "division", "year"),
        )
