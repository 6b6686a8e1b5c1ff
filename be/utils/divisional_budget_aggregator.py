"""
Divisional Budget Aggregator

Builds the data behind the divisional budget form: actual sales per product
group and month, Services Charges actuals, rounded pricing of the actual
year and any budget already saved for the budget year.
"""

import logging
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from Models.AEBF.DivisionTables import resolve_tables
from utils.budget_policy import (
    ACTUAL_METRICS,
    METRIC_AMOUNT,
    METRIC_KGS,
    METRIC_MORM,
    SERVICES_CHARGES,
    amount_to_thousands,
    kgs_to_mt,
)
from utils.divisions import canonical_division

logger = logging.getLogger(__name__)


def _empty_month() -> Dict[str, float]:
    return {METRIC_AMOUNT: 0.0, METRIC_KGS: 0.0, "MT": 0.0, METRIC_MORM: 0.0}


def _actual_filters(DataExcel, code: str, actual_year: int):
    return (
        func.upper(DataExcel.division) == code,
        DataExcel.year == actual_year,
        func.upper(DataExcel.type) == "ACTUAL",
        func.upper(DataExcel.values_type).in_(ACTUAL_METRICS),
        DataExcel.productgroup.isnot(None),
        func.trim(DataExcel.productgroup) != "",
    )


def _regular_actuals(db: Session, DataExcel, code: str, actual_year: int) -> list:
    product_group = func.trim(DataExcel.productgroup)
    metric = func.upper(DataExcel.values_type)
    rows = (
        db.query(product_group, DataExcel.month, metric, func.sum(DataExcel.values))
        .filter(
            *_actual_filters(DataExcel, code, actual_year),
            func.upper(product_group) != SERVICES_CHARGES.upper(),
        )
        .group_by(product_group, DataExcel.month, metric)
        .order_by(product_group, DataExcel.month)
        .all()
    )

    by_group: Dict[str, Dict[int, Dict[str, float]]] = {}
    for pg, month, values_type, total in rows:
        months = by_group.setdefault(pg, {})
        cell = months.setdefault(int(month), _empty_month())
        cell[values_type] = float(total or 0)
        if values_type == METRIC_KGS:
            cell["MT"] = kgs_to_mt(cell[METRIC_KGS])

    return [{"productGroup": pg, "monthlyActual": months} for pg, months in sorted(by_group.items())]


def _services_charges_actuals(db: Session, DataExcel, code: str, actual_year: int) -> Dict[int, Dict[str, float]]:
    metric = func.upper(DataExcel.values_type)
    rows = (
        db.query(DataExcel.month, metric, func.sum(DataExcel.values))
        .filter(
            *_actual_filters(DataExcel, code, actual_year),
            func.upper(func.trim(DataExcel.productgroup)) == SERVICES_CHARGES.upper(),
            metric.in_((METRIC_AMOUNT, METRIC_MORM)),
        )
        .group_by(DataExcel.month, metric)
        .all()
    )
    monthly: Dict[int, Dict[str, float]] = {}
    for month, values_type, total in rows:
        cell = monthly.setdefault(int(month), {METRIC_AMOUNT: 0.0, METRIC_MORM: 0.0})
        cell[values_type] = float(total or 0)
    return monthly


def _pricing(db: Session, tables, code: str, actual_year: int) -> Dict[str, dict]:
    Pricing, Material = tables.pricing, tables.material
    rows = (
        db.query(
            Pricing.product_group,
            Pricing.asp_round,
            Pricing.morm_round,
            Pricing.rm_round,
            Material.material,
            Material.process,
        )
        .outerjoin(
            Material,
            func.upper(func.trim(Material.product_group)) == func.upper(func.trim(Pricing.product_group)),
        )
        .filter(
            func.upper(Pricing.division) == code,
            Pricing.year == actual_year,
            Pricing.product_group.isnot(None),
            func.trim(Pricing.product_group) != "",
        )
        .all()
    )

    pricing_data = {}
    for pg, asp, morm, rm, material, process in rows:
        asp = float(asp or 0)
        morm = float(morm or 0)
        pricing_data[pg.strip()] = {
            "asp": asp,
            "morm": morm,
            "rm": float(rm) if rm is not None else round(asp - morm, 2),
            "material": material or "",
            "process": process or "",
        }
    return pricing_data


def _existing_budget(db: Session, Budget, code: str, budget_year: int):
    rows = (
        db.query(Budget.product_group, Budget.month, Budget.metric, Budget.value)
        .filter(func.upper(Budget.division) == code, Budget.year == budget_year)
        .all()
    )

    budget_data: Dict[str, float] = {}
    services_charges_budget: Dict[str, float] = {}
    for pg, month, metric, value in rows:
        pg = pg.strip()
        metric = metric.upper()
        if pg.upper() == SERVICES_CHARGES.upper():
            if metric in (METRIC_AMOUNT, METRIC_MORM):
                services_charges_budget[f"{SERVICES_CHARGES}|{month}|{metric}"] = amount_to_thousands(value or 0)
        elif metric == METRIC_KGS:
            budget_data[f"{pg}|{month}"] = kgs_to_mt(value or 0)
    return budget_data, services_charges_budget


def get_divisional_budget_info(db: Session, division, actual_year: int, budget_year: Optional[int] = None) -> dict:
    tables = resolve_tables(division)
    code = canonical_division(division)
    budget_year = budget_year or actual_year + 1

    table_data = _regular_actuals(db, tables.data_excel, code, actual_year)
    services_charges_monthly = _services_charges_actuals(db, tables.data_excel, code, actual_year)
    pricing_data = _pricing(db, tables, code, actual_year)
    budget_data, services_charges_budget = _existing_budget(db, tables.budget, code, budget_year)

    has_services_pricing = any(pg.upper() == SERVICES_CHARGES.upper() for pg in pricing_data)
    services_charges_data = None
    if services_charges_monthly or has_services_pricing:
        services_charges_data = {
            "productGroup": SERVICES_CHARGES,
            "isServiceCharges": True,
            "monthlyActual": services_charges_monthly,
        }

    logger.info(
        f"Divisional budget info {code} actual={actual_year} budget={budget_year}: "
        f"{len(table_data)} product groups, {len(budget_data)} budget cells"
    )

    return {
        "tableData": table_data,
        "servicesChargesData": services_charges_data,
        "pricingData": pricing_data,
        "budgetData": budget_data,
        "servicesChargesBudget": services_charges_budget,
        "actualYear": actual_year,
        "budgetYear": budget_year,
    }
