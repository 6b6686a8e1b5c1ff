"""
Divisional Budget Persistence Service

Writes budget records into the division's {code}_divisional_budget table:
- every regular record becomes a KGS row, plus AMOUNT and MORM rows when
  rounded pricing of the previous year exists for its product group
- Services Charges amounts become AMOUNT + MORM rows (ServicesChargesMarginPolicy)
- all rows are upserted on (division, year, month, product_group, metric)

HTML imports first pass the conflict gate: an existing budget for the same
division/year is only replaced once the caller confirms (force_update).
"""

import logging
import math
import re
from dataclasses import asdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from Database.upsert import upsert_rows
from Models.AEBF.DivisionTables import resolve_tables
from Models.AEBF.DivisionalBudget import BUDGET_KEY_COLUMNS
from utils.budget_policy import (
    METRIC_AMOUNT,
    METRIC_KGS,
    METRIC_MORM,
    SERVICES_CHARGES,
    is_services_charges,
    services_charges_policy,
)
from utils.cache import invalidate_division_cache
from utils.config import MIN_BUDGET_YEAR, MAX_BUDGET_YEAR
from utils.divisional_html_codec import ParsedBudgetHtml
from utils.divisions import validate_division
from utils.errors import BudgetValidationError, BudgetPersistenceError

logger = logging.getLogger(__name__)

MAX_KGS_VALUE = 1_000_000_000
CHUNK_SIZE = 1000
MAX_REPORTED_ERRORS = 10
LIVE_SAVE_PREFIX = "LIVE_Divisional"
HTML_IMPORT_PREFIX = "Divisional_HTML_Import"
BUDGET_UPDATE_COLUMNS = ("value", "material", "process", "uploaded_filename", "uploaded_at")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_budget_year(budget_year) -> int:
    try:
        year = int(budget_year)
    except (TypeError, ValueError):
        raise BudgetValidationError("budgetYear must be an integer")
    if not MIN_BUDGET_YEAR <= year <= MAX_BUDGET_YEAR:
        raise BudgetValidationError(f"budgetYear must be between {MIN_BUDGET_YEAR} and {MAX_BUDGET_YEAR}")
    return year


def _field(record, *names):
    for name in names:
        if isinstance(record, dict):
            if name in record:
                return record[name]
        elif hasattr(record, name):
            return getattr(record, name)
    return None


def _parse_month(raw) -> Optional[int]:
    try:
        month = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return month if 1 <= month <= 12 else None


def _parse_value(raw) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(str(raw).replace(",", "").strip()) if isinstance(raw, str) else float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def sanitize_records(records: Iterable) -> Tuple[List[dict], List[dict]]:
    """
    Split budget records into valid rows and per-record errors.

    A record needs a product group, a month 1-12 and a numeric value (KGS)
    between 0 and MAX_KGS_VALUE. Thousands separators are accepted.
    """
    valid, errors = [], []
    for index, record in enumerate(records or []):
        product_group = str(_field(record, "product_group", "productGroup") or "").strip()
        raw_month = _field(record, "month")
        raw_value = _field(record, "value")

        if not product_group:
            errors.append({"index": index, "reason": "Missing product group", "field": "productGroup",
                           "suggestion": "Every record must name its product group"})
            continue
        month = _parse_month(raw_month)
        if month is None:
            errors.append({"index": index, "reason": f"Invalid month: {raw_month}", "field": "month",
                           "suggestion": "Month must be an integer between 1 and 12"})
            continue
        if raw_value is None or (isinstance(raw_value, str) and not raw_value.strip()):
            errors.append({"index": index, "reason": "Missing value", "field": "value",
                           "suggestion": "Enter a budget value or remove the record"})
            continue
        value = _parse_value(raw_value)
        if value is None:
            errors.append({"index": index, "reason": f"Value is not a number: {raw_value}", "field": "value",
                           "suggestion": "Use digits only, optionally with thousands separators"})
            continue
        if value < 0:
            errors.append({"index": index, "reason": f"Negative value: {value}", "field": "value",
                           "suggestion": "Budget values cannot be negative"})
            continue
        if value > MAX_KGS_VALUE:
            errors.append({"index": index, "reason": f"Value too large: {value}", "field": "value",
                           "suggestion": f"Values above {MAX_KGS_VALUE:,} KGS are not accepted"})
            continue

        valid.append({"product_group": product_group, "month": month, "value": value})
    return valid, errors


def _sanitize_services_charges(records: Iterable) -> List[dict]:
    valid = []
    for record in records or []:
        month = _parse_month(_field(record, "month"))
        amount = _parse_value(_field(record, "amount", "value", "amountValue"))
        if month is None or amount is None or amount < 0:
            logger.warning(f"Skipping invalid Services Charges record: {record}")
            continue
        valid.append({"month": month, "amount": amount})
    return valid


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def _budget_filter(Budget, code: str, budget_year: int):
    return (func.upper(Budget.division) == code, Budget.year == budget_year)


def check_for_existing_budget(db: Session, division, budget_year: int) -> dict:
    tables = resolve_tables(division)
    code = validate_division(division)
    Budget = tables.budget
    count, last_upload, last_filename = (
        db.query(func.count(Budget.id), func.max(Budget.uploaded_at), func.max(Budget.uploaded_filename))
        .filter(*_budget_filter(Budget, code, budget_year))
        .one()
    )
    return {"recordCount": int(count or 0), "lastUpload": last_upload, "lastFilename": last_filename}


def _material_map(db: Session, Material) -> Dict[str, Tuple[str, str]]:
    return {
        pg.strip().lower(): (material or "", process or "")
        for pg, material, process in db.query(Material.product_group, Material.material, Material.process).all()
        if pg
    }


def _pricing_map(db: Session, Pricing, code: str, pricing_year: int) -> Dict[str, Tuple[Optional[float], Optional[float]]]:
    rows = (
        db.query(Pricing.product_group, Pricing.asp_round, Pricing.morm_round)
        .filter(func.upper(Pricing.division) == code, Pricing.year == pricing_year)
        .all()
    )
    return {pg.strip().lower(): (asp, morm) for pg, asp, morm in rows if pg}


def build_uploaded_filename(prefix: str, division: str, budget_year: int, now: datetime) -> str:
    safe_division = re.sub(r"[^A-Za-z0-9-]", "_", division)
    stamp = re.sub(r"[:.]", "-", now.isoformat())
    return f"{prefix}_{safe_division}_{budget_year}_{stamp}.html"


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def save_divisional_budget(
    db: Session,
    division,
    budget_year,
    records: Iterable,
    services_charges_records: Iterable = (),
    filename_prefix: str = LIVE_SAVE_PREFIX,
) -> dict:
    """
    Persist one division's budget for budget_year in a single transaction.

    Invalid records are skipped and reported; the call fails only when no
    valid record (regular or Services Charges) remains.
    """
    tables = resolve_tables(division)
    code = validate_division(division)
    budget_year = validate_budget_year(budget_year)

    records = list(records or [])
    valid, errors = sanitize_records(records)
    services_charges = _sanitize_services_charges(services_charges_records)
    if not valid and not services_charges:
        if records:
            raise BudgetValidationError(
                f"All records were invalid ({len(errors)} errors). Nothing was saved.",
                details=errors[:MAX_REPORTED_ERRORS],
            )
        raise BudgetValidationError("No budget records to save.")

    Budget = tables.budget
    pricing_year = budget_year - 1
    now = datetime.utcnow()
    filename = build_uploaded_filename(filename_prefix, code, budget_year, now)

    try:
        existing = check_for_existing_budget(db, code, budget_year)
        materials = _material_map(db, tables.material)
        pricing = _pricing_map(db, tables.pricing, code, pricing_year)

        rows: List[dict] = []
        counts = {"kgs": 0, "amount": 0, "morm": 0}
        totals = {"volumeKGS": 0.0, "amount": 0.0, "morm": 0.0, "servicesCharges": 0.0}
        missing_pricing = set()

        def add_row(product_group, month, metric, value, material="", process=""):
            rows.append({
                "division": code,
                "year": budget_year,
                "month": month,
                "product_group": product_group,
                "metric": metric,
                "value": value,
                "material": material,
                "process": process,
                "uploaded_filename": filename,
                "uploaded_at": now,
            })

        for record in valid:
            product_group, month, kgs = record["product_group"], record["month"], record["value"]
            if is_services_charges(product_group):
                # Services Charges have no volume; treat the value as an amount
                services_charges.append({"month": month, "amount": kgs})
                continue
            key = product_group.lower()
            material, process = materials.get(key, ("", ""))

            add_row(product_group, month, METRIC_KGS, kgs, material, process)
            counts["kgs"] += 1
            totals["volumeKGS"] += kgs

            asp, morm = pricing.get(key, (None, None))
            if asp is None and morm is None:
                missing_pricing.add(key)
                continue
            if asp is not None:
                add_row(product_group, month, METRIC_AMOUNT, kgs * float(asp), material, process)
                counts["amount"] += 1
                totals["amount"] += kgs * float(asp)
            if morm is not None:
                add_row(product_group, month, METRIC_MORM, kgs * float(morm), material, process)
                counts["morm"] += 1
                totals["morm"] += kgs * float(morm)

        services_charges_count = 0
        for record in services_charges:
            for metric, value in services_charges_policy.expand(record["amount"]):
                add_row(SERVICES_CHARGES, record["month"], metric, value)
                services_charges_count += 1
                if metric == METRIC_AMOUNT:
                    totals["servicesCharges"] += value
                    totals["amount"] += value
                else:
                    totals["morm"] += value

        written = upsert_rows(db, Budget.__table__, rows, BUDGET_KEY_COLUMNS, BUDGET_UPDATE_COLUMNS, CHUNK_SIZE)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error saving divisional budget {code} {budget_year}: {str(e)}")
        raise BudgetPersistenceError(str(e)) from e

    invalidate_division_cache(code)

    warnings = []
    if missing_pricing:
        warnings.append(
            f"Missing pricing data for {len(missing_pricing)} product group(s). Amount/MoRM rows were skipped."
        )
    if errors:
        warnings.append(f"{len(errors)} invalid record(s) were skipped.")

    logger.info(
        f"Saved divisional budget {code} {budget_year}: {written} rows "
        f"({counts['kgs']} KGS, {counts['amount']} AMOUNT, {counts['morm']} MORM, "
        f"{services_charges_count} Services Charges)"
    )

    return {
        "metadata": {
            "division": code,
            "budgetYear": budget_year,
            "savedAt": now.isoformat(),
            "targetTable": tables.budget_table,
            "uploadedFilename": filename,
        },
        "existingBudget": existing,
        "recordsProcessed": len(valid),
        "skippedRecords": len(errors),
        "validationErrors": errors[:MAX_REPORTED_ERRORS],
        "recordsInserted": {
            "kgs": counts["kgs"],
            "amount": counts["amount"],
            "morm": counts["morm"],
            "servicesCharges": services_charges_count,
            "total": written,
        },
        "servicesChargesRecords": services_charges_count,
        "budgetTotals": {
            "volumeMT": totals["volumeKGS"] / 1000,
            "volumeKGS": totals["volumeKGS"],
            "amount": totals["amount"],
            "morm": totals["morm"],
            "servicesCharges": totals["servicesCharges"],
        },
        "pricingYear": pricing_year,
        "pricingDataAvailable": bool(pricing),
        "warnings": warnings,
    }


def import_budget(db: Session, parsed: ParsedBudgetHtml, force_update: bool = False) -> dict:
    """Conflict gate + write for a parsed HTML budget form."""
    resolve_tables(parsed.division)
    code = validate_division(parsed.division)
    budget_year = validate_budget_year(parsed.budget_year)

    existing = check_for_existing_budget(db, code, budget_year)
    if existing["recordCount"] > 0 and not force_update:
        logger.info(f"Budget {code} {budget_year} already has {existing['recordCount']} rows; confirmation required")
        return {
            "success": True,
            "needsConfirmation": True,
            "existingBudget": {"recordCount": existing["recordCount"], "lastUpload": existing["lastUpload"]},
            "metadata": {"division": code, "actualYear": parsed.actual_year, "budgetYear": budget_year},
            "recordsToImport": len(parsed.records) + len(parsed.services_charges_records),
            "servicesChargesToImport": len(parsed.services_charges_records),
        }

    result = save_divisional_budget(
        db,
        code,
        budget_year,
        [asdict(r) for r in parsed.records],
        [asdict(r) for r in parsed.services_charges_records],
        filename_prefix=HTML_IMPORT_PREFIX,
    )
    result["success"] = True
    result["needsConfirmation"] = False
    result["metadata"]["actualYear"] = parsed.actual_year
    result["warnings"] = parsed.warnings + result["warnings"]
    return result


def delete_divisional_budget(db: Session, division, budget_year) -> int:
    tables = resolve_tables(division)
    code = validate_division(division)
    budget_year = int(budget_year)
    Budget = tables.budget
    try:
        deleted = (
            db.query(Budget)
            .filter(*_budget_filter(Budget, code, budget_year))
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error deleting divisional budget {code} {budget_year}: {str(e)}")
        raise BudgetPersistenceError(str(e)) from e

    invalidate_division_cache(code)
    logger.info(f"Deleted {deleted} divisional budget records for {code} {budget_year}")
    return deleted
