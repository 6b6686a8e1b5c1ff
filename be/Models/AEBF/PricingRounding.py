"""
Product group pricing rounding ({code}_product_group_pricing_rounding)

One row per (division, year, product_group) holding the rounded ASP, MoRM
and RM per KG used to price budgets of the following year.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Numeric, UniqueConstraint, CheckConstraint, DDL, event
from sqlalchemy.orm import declared_attr

MIN_ROUNDING_VALUE = 0
MAX_ROUNDING_VALUE = 1000


class PricingRoundingMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
    division = Column(String(50), nullable=False)
    year = Column(Integer, nullable=False)
    product_group = Column(String(255), nullable=False)
    asp_round = Column(Numeric(18, 4, asdecimal=False), nullable=True)
    morm_round = Column(Numeric(18, 4, asdecimal=False), nullable=True)
    rm_round = Column(Numeric(18, 4, asdecimal=False), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @declared_attr
    def __table_args__(cls):
        name = cls.__tablename__
        bounds = f"BETWEEN {MIN_ROUNDING_VALUE} AND {MAX_ROUNDING_VALUE}"
        return (
            UniqueConstraint("division", "year", "product_group", name=f"uq_{name}_key"),
            CheckConstraint(f"asp_round IS NULL OR asp_round {bounds}", name=f"ck_{name}_asp"),
            CheckConstraint(f"morm_round IS NULL OR morm_round {bounds}", name=f"ck_{name}_morm"),
            CheckConstraint(f"rm_round IS NULL OR rm_round {bounds}", name=f"ck_{name}_rm"),
        )


def attach_updated_at_trigger(table) -> None:
    """PostgreSQL trigger keeping updated_at current on raw UPDATEs."""
    name = table.name
    event.listen(
        table,
        "after_create",
        DDL(
            f"CREATE OR REPLACE FUNCTION {name}_touch_updated_at() RETURNS TRIGGER AS $$ "
            "BEGIN NEW.updated_at = CURRENT_TIMESTAMP; RETURN NEW; END; "
            "$$ LANGUAGE plpgsql"
        ).execute_if(dialect="postgresql"),
    )
    event.listen(
        table,
        "after_create",
        DDL(
            f"CREATE TRIGGER trg_{name}_updated_at BEFORE UPDATE ON {name} "
            f"FOR EACH ROW EXECUTE FUNCTION {name}_touch_updated_at()"
        ).execute_if(dialect="postgresql"),
    )
