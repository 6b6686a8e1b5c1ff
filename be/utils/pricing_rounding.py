"""
Product Group Pricing Rounding Store

Rounded ASP / MoRM / RM values per product group and year, kept in the
division's {code}_product_group_pricing_rounding table. RM is always
derived (ASP - MoRM) and never taken from the caller.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from Database.session import resolve_pool
from Database.upsert import upsert_rows
from Models.AEBF.DivisionTables import resolve_tables
from Models.AEBF.PricingRounding import MIN_ROUNDING_VALUE, MAX_ROUNDING_VALUE
from Schemas.AEBF.PricingRoundingSchema import PricingRoundingEntryIn
from utils.divisions import canonical_division
from utils.errors import BudgetValidationError, BudgetPersistenceError

logger = logging.getLogger(__name__)

PRICING_KEY_COLUMNS = ("division", "year", "product_group")
PRICING_UPDATE_COLUMNS = ("asp_round", "morm_round", "rm_round", "updated_at")


def ensure_table(division, engine=None) -> None:
    """Create the division's pricing table if it does not exist yet."""
    tables = resolve_tables(division)
    tables.pricing.__table__.create(bind=engine or resolve_pool(tables.code), checkfirst=True)


def _in_bounds(value: float) -> bool:
    return MIN_ROUNDING_VALUE <= value <= MAX_ROUNDING_VALUE


def compute_rm_round(asp: Optional[float], morm: Optional[float]) -> Optional[float]:
    if asp is None or morm is None:
        return None
    return round(asp - morm, 2)


def _validated_row(code: str, year: int, entry: PricingRoundingEntryIn, now: datetime) -> dict:
    product_group = (entry.productGroup or "").strip()
    if not product_group:
        raise BudgetValidationError("Product group is required for every rounded price")

    asp = entry.aspRound
    morm = entry.mormRound
    if asp is not None and not _in_bounds(asp):
        raise BudgetValidationError(
            f"Invalid ASP value for {product_group}: must be between {MIN_ROUNDING_VALUE} and {MAX_ROUNDING_VALUE}"
        )
    if morm is not None and not _in_bounds(morm):
        raise BudgetValidationError(
            f"Invalid MoRM value for {product_group}: must be between {MIN_ROUNDING_VALUE} and {MAX_ROUNDING_VALUE}"
        )

    rm = compute_rm_round(asp, morm)
    if rm is not None and not _in_bounds(rm):
        raise BudgetValidationError(f"Calculated RM value for {product_group} is out of range: {rm}")

    return {
        "division": code,
        "year": year,
        "product_group": product_group,
        "asp_round": asp,
        "morm_round": morm,
        "rm_round": rm,
        "created_at": now,
        "updated_at": now,
    }


def get_rounded_prices(db: Session, division, year: int) -> List:
    tables = resolve_tables(division)
    Pricing = tables.pricing
    return (
        db.query(Pricing)
        .filter(func.upper(Pricing.division) == canonical_division(division), Pricing.year == year)
        .order_by(Pricing.product_group)
        .all()
    )


def save_rounded_prices(db: Session, division, year: int, entries: Iterable[PricingRoundingEntryIn]) -> None:
    """
    Upsert rounded prices for one division/year in a single transaction.

    Every entry is validated before the first write; any failure rolls the
    whole batch back.
    """
    tables = resolve_tables(division)
    code = canonical_division(division)
    now = datetime.utcnow()

    try:
        rows = [_validated_row(code, year, entry, now) for entry in entries]
        count = upsert_rows(db, tables.pricing.__table__, rows, PRICING_KEY_COLUMNS, PRICING_UPDATE_COLUMNS)
        db.commit()
        logger.info(f"Saved {count} rounded prices for {code} {year}")
    except BudgetValidationError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error saving rounded prices for {code} {year}: {str(e)}")
        raise BudgetPersistenceError(str(e)) from e
