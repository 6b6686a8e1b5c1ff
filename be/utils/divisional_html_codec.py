"""
Divisional Budget HTML Codec

Encode:
    generate_divisional_budget_html  -> editable form (one <input> per budget cell)
    render_static_budget_html        -> finalized form (budget cells as text,
                                        savedBudgetData JSON island embedded)

Decode:
    parse_imported_html reads, in order of preference:
    1. the savedBudgetData JSON island (regular values in KGS, Services
       Charges in full currency)
    2. editable <input data-group data-month value> cells (MT / thousands)
    3. static budget-row cells paired with the preceding actual-row
    4. the services-charges-budget-row cells
    Positional cells (3 and 4) are mapped to months through the table
    header labels when the header carries them.
"""

import html as html_lib
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from utils.budget_policy import (
    MONTH_LABELS,
    MONTHS,
    SERVICES_CHARGES,
    is_services_charges,
    kgs_to_mt,
    mt_to_kgs,
    thousands_to_amount,
    amount_to_thousands,
)
from utils.errors import BudgetValidationError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
TEMPLATE_NAME = "divisional_budget_form.html"
SIGNATURE = "IPD_BUDGET_SYSTEM_v1.0 :: TYPE=DIVISIONAL_BUDGET"
SAVED_DATA_ID = "savedBudgetData"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)

MISSING_METADATA_MESSAGE = (
    "Invalid HTML file - missing division or budgetYear metadata. "
    "Please use a file exported from this system."
)
NO_VALUES_MESSAGE = "No valid budget values found in the HTML file. Please fill in at least one budget value."

_META_TAG = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
_INPUT_TAG = re.compile(r"<input\b[^>]*>", re.IGNORECASE)
_TR = re.compile(r"<tr\b([^>]*)>([\s\S]*?)</tr>", re.IGNORECASE)
_TD = re.compile(r"<td\b[^>]*>([\s\S]*?)</td>", re.IGNORECASE)
_TH = re.compile(r"<th\b[^>]*>([\s\S]*?)</th>", re.IGNORECASE)
_THEAD = re.compile(r"<thead\b[^>]*>([\s\S]*?)</thead>", re.IGNORECASE)
_SPAN = re.compile(r"<span\b[^>]*>([\s\S]*?)</span>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_ATTR = re.compile(r"([\w:-]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")
_SAVED_DATA = re.compile(
    r"<script\b[^>]*\bid=[\"']" + SAVED_DATA_ID + r"[\"'][^>]*>([\s\S]*?)</script>",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Parsed document
# ---------------------------------------------------------------------------
@dataclass
class BudgetRecord:
    product_group: str
    month: int
    value: float  # KGS


@dataclass
class ServicesChargesRecord:
    month: int
    amount: float  # full currency


@dataclass
class ParsedBudgetHtml:
    division: str
    actual_year: int
    budget_year: int
    records: List[BudgetRecord] = field(default_factory=list)
    services_charges_records: List[ServicesChargesRecord] = field(default_factory=list)
    strategy: str = ""
    warnings: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------
def _to_float(value) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace(",", "").strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _plain_number(value: float) -> str:
    """Input value text: up to 3 decimals, no separators (1 KGS = 0.001 MT)."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def format_mt(value: float) -> str:
    return f"{value:,.2f}"


def format_amount(value: float) -> str:
    if not value:
        return "0"
    if abs(value) >= 1_000_000:
        return f"{value / 1_000_000:.2f}M"
    if abs(value) >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{round(value):,}"


def _json_for_script(payload: Any) -> str:
    return (
        json.dumps(payload, default=str)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


def _month_cell(monthly: Dict, month: int) -> Dict:
    if not monthly:
        return {}
    return monthly.get(month) or monthly.get(str(month)) or {}


def build_export_filename(division: str, budget_year: int, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    safe_division = re.sub(r"[^A-Za-z0-9-]", "_", str(division))
    return f"BUDGET_Divisional_{safe_division}_{budget_year}_{now.strftime('%d%m%Y')}_{now.strftime('%H%M')}.html"


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------
def _template_context(payload: Dict, static: bool, exported_at: datetime) -> Dict:
    division = str(payload.get("division") or "")
    actual_year = int(payload["actualYear"])
    budget_year = int(payload.get("budgetYear") or actual_year + 1)
    budget_data = payload.get("budgetData") or {}
    services_budget = payload.get("servicesChargesBudget") or {}
    pricing_data = payload.get("pricingData") or {}
    pricing_lookup = {str(pg).strip().lower(): p for pg, p in pricing_data.items()}

    actual_monthly = [0.0] * 12
    budget_monthly = [0.0] * 12
    totals = {"actual_amount": 0.0, "actual_morm": 0.0, "budget_amount": 0.0, "budget_morm": 0.0}

    rows = []
    for item in payload.get("tableData") or []:
        product_group = str(item.get("productGroup") or "").strip()
        if not product_group or is_services_charges(product_group):
            continue
        monthly = item.get("monthlyActual") or {}
        pricing = pricing_lookup.get(product_group.lower()) or {}
        asp = _to_float(pricing.get("asp")) or 0.0
        morm = _to_float(pricing.get("morm")) or 0.0

        actual_cells, budget_cells = [], []
        actual_total = budget_total = 0.0
        for month in MONTHS:
            cell = _month_cell(monthly, month)
            mt = _to_float(cell.get("MT"))
            if mt is None:
                mt = kgs_to_mt(_to_float(cell.get("KGS")) or 0)
            actual_cells.append(format_mt(mt))
            actual_total += mt
            actual_monthly[month - 1] += mt
            totals["actual_amount"] += _to_float(cell.get("AMOUNT")) or 0
            totals["actual_morm"] += _to_float(cell.get("MORM")) or 0

            budget_mt = _to_float(budget_data.get(f"{product_group}|{month}"))
            if budget_mt is None:
                budget_cells.append({"month": month, "value": "", "text": ""})
                continue
            budget_cells.append({"month": month, "value": _plain_number(budget_mt), "text": f"{budget_mt:,.3f}"})
            budget_total += budget_mt
            budget_monthly[month - 1] += budget_mt
            totals["budget_amount"] += budget_mt * 1000 * asp
            totals["budget_morm"] += budget_mt * 1000 * morm

        rows.append({
            "product_group": product_group,
            "actual_cells": actual_cells,
            "actual_total": format_mt(actual_total),
            "budget_cells": budget_cells,
            "budget_total": format_mt(budget_total),
        })

    services_charges = None
    sc_data = payload.get("servicesChargesData")
    if sc_data is not None or services_budget:
        sc_monthly = (sc_data or {}).get("monthlyActual") or {}
        actual_cells, budget_cells = [], []
        actual_total = budget_total = 0.0
        for month in MONTHS:
            amount = _to_float(_month_cell(sc_monthly, month).get("AMOUNT")) or 0.0
            actual_cells.append(f"{amount_to_thousands(amount):,.1f}")
            actual_total += amount
            totals["actual_amount"] += amount
            totals["actual_morm"] += _to_float(_month_cell(sc_monthly, month).get("MORM")) or 0.0

            # already in thousands
            budget_k = _to_float(services_budget.get(f"{SERVICES_CHARGES}|{month}|AMOUNT"))
            if budget_k is None:
                budget_cells.append({"month": month, "value": "", "text": ""})
                continue
            budget_cells.append({"month": month, "value": _plain_number(budget_k), "text": f"{budget_k:,.3f}"})
            budget_total += budget_k
            totals["budget_amount"] += budget_k * 1000
            totals["budget_morm"] += budget_k * 1000

        services_charges = {
            "actual_cells": actual_cells,
            "actual_total": f"{amount_to_thousands(actual_total):,.1f}",
            "budget_cells": budget_cells,
            "budget_total": _plain_number(budget_total),
        }

    metadata = {
        "division": division,
        "actualYear": actual_year,
        "budgetYear": budget_year,
        "exportedAt": exported_at.isoformat(),
    }
    pricing_js = {
        key: {"asp": _to_float(p.get("asp")) or 0.0, "morm": _to_float(p.get("morm")) or 0.0}
        for key, p in pricing_lookup.items()
    }

    return {
        "division": division,
        "actual_year": actual_year,
        "budget_year": budget_year,
        "exported_at": exported_at.strftime("%d/%m/%Y %H:%M"),
        "month_labels": MONTH_LABELS,
        "rows": rows,
        "services_charges": services_charges,
        "static": static,
        "metadata_json": _json_for_script(metadata),
        "pricing_json": _json_for_script(pricing_js),
        "totals": {
            "actual_monthly": [format_mt(v) for v in actual_monthly],
            "budget_monthly": [format_mt(v) for v in budget_monthly],
            "actual_mt": format_mt(sum(actual_monthly)),
            "budget_mt": format_mt(sum(budget_monthly)),
            "actual_amount": format_amount(totals["actual_amount"]),
            "actual_morm": format_amount(totals["actual_morm"]),
            "budget_amount": format_amount(totals["budget_amount"]),
            "budget_morm": format_amount(totals["budget_morm"]),
        },
    }


def _saved_data(context: Dict, saved_at: datetime) -> Dict:
    saved_budget = []
    for row in context["rows"]:
        for cell in row["budget_cells"]:
            mt = _to_float(cell["value"])
            if mt:
                saved_budget.append({"productGroup": row["product_group"], "month": cell["month"], "value": mt_to_kgs(mt)})
    saved_services = []
    if context["services_charges"]:
        for cell in context["services_charges"]["budget_cells"]:
            k = _to_float(cell["value"])
            if k:
                saved_services.append({
                    "productGroup": SERVICES_CHARGES,
                    "month": cell["month"],
                    "metric": "AMOUNT",
                    "value": thousands_to_amount(k),
                })
    return {
        "budgetMetadata": {
            "division": context["division"],
            "actualYear": context["actual_year"],
            "budgetYear": context["budget_year"],
            "savedAt": saved_at.isoformat(),
            "dataFormat": "divisional_budget_import",
        },
        "savedBudget": saved_budget,
        "savedServicesCharges": saved_services,
    }


def generate_divisional_budget_html(payload: Dict, now: Optional[datetime] = None) -> str:
    """Editable budget form for one division and budget year."""
    context = _template_context(payload, static=False, exported_at=now or datetime.now())
    context["saved_json"] = None
    return _env.get_template(TEMPLATE_NAME).render(**context)


def render_static_budget_html(payload: Dict, include_data_island: bool = True, now: Optional[datetime] = None) -> str:
    """Finalized (read-only) variant of the form, as produced by "Save Final"."""
    now = now or datetime.now()
    context = _template_context(payload, static=True, exported_at=now)
    context["saved_json"] = _json_for_script(_saved_data(context, now)) if include_data_island else None
    return _env.get_template(TEMPLATE_NAME).render(**context)


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------
def _attributes(tag_text: str) -> Dict[str, str]:
    return {
        name.lower(): html_lib.unescape(double if double is not None else single)
        for name, double, single in (
            (m.group(1), m.group(2), m.group(3)) for m in _ATTR.finditer(tag_text)
        )
    }


def _cell_text(fragment: str) -> str:
    return html_lib.unescape(_TAG.sub("", fragment)).strip()


def _cell_number(text: str) -> Optional[float]:
    cleaned = re.sub(r"[^0-9.\-]", "", text.replace(",", ""))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def _read_metadata(html: str) -> Dict[str, str]:
    meta = {}
    for match in _META_TAG.finditer(html):
        attrs = _attributes(match.group(0))
        if "name" in attrs and "content" in attrs:
            meta[attrs["name"]] = attrs["content"].strip()
    return meta


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value and re.fullmatch(r"\d+", value):
        return int(value)
    return None


def _header_months(html: str) -> Optional[List[int]]:
    """Month order of the budget table header, or None when the header has no month labels."""
    thead = _THEAD.search(html)
    if not thead:
        return None
    lookup = {label.lower(): i + 1 for i, label in enumerate(MONTH_LABELS)}
    months = []
    for th in _TH.finditer(thead.group(1)):
        label = _cell_text(th.group(1)).lower()
        if label[:3] in lookup and len(label) <= 9:
            months.append(lookup[label[:3]])
        elif re.fullmatch(r"\d{1,2}", label) and 1 <= int(label) <= 12:
            months.append(int(label))
    if len(months) == 12 and len(set(months)) == 12:
        return months
    return None


def _read_saved_data(html: str, parsed: ParsedBudgetHtml) -> bool:
    match = _SAVED_DATA.search(html)
    if not match:
        return False
    try:
        data = json.loads(match.group(1))
    except ValueError as e:
        parsed.warnings.append("savedBudgetData could not be read; falling back to the table cells")
        logger.warning(f"Invalid savedBudgetData island: {str(e)}")
        return False
    if not isinstance(data, dict):
        parsed.warnings.append("savedBudgetData could not be read; falling back to the table cells")
        logger.warning(f"savedBudgetData island is not an object: {type(data).__name__}")
        return False

    for item in data.get("savedBudget") or []:
        if not isinstance(item, dict):
            continue
        product_group = str(item.get("productGroup") or "").strip()
        month = _parse_int(str(item.get("month")))
        value = _to_float(item.get("value"))
        if not product_group or month is None or not value:
            continue
        if is_services_charges(product_group):
            parsed.services_charges_records.append(ServicesChargesRecord(month=month, amount=value))
        else:
            parsed.records.append(BudgetRecord(product_group=product_group, month=month, value=value))

    for item in data.get("savedServicesCharges") or []:
        if not isinstance(item, dict):
            continue
        month = _parse_int(str(item.get("month")))
        amount = _to_float(item.get("value"))
        if month is None or not amount:
            continue
        parsed.services_charges_records.append(ServicesChargesRecord(month=month, amount=amount))
    return True


def _read_inputs(html: str, parsed: ParsedBudgetHtml) -> None:
    for match in _INPUT_TAG.finditer(html):
        attrs = _attributes(match.group(0))
        product_group = (attrs.get("data-group") or "").strip()
        month = _parse_int(attrs.get("data-month"))
        if not product_group or month is None or not 1 <= month <= 12:
            continue
        # blank and zero cells carry no budget
        value = _to_float(attrs.get("value"))
        if not value:
            continue
        if is_services_charges(product_group):
            if (attrs.get("data-metric") or "").upper() == "AMOUNT":
                parsed.services_charges_records.append(
                    ServicesChargesRecord(month=month, amount=thousands_to_amount(value))
                )
        else:
            parsed.records.append(BudgetRecord(product_group=product_group, month=month, value=mt_to_kgs(value)))


def _positional_months(header: Optional[List[int]], parsed: ParsedBudgetHtml) -> List[int]:
    if header:
        return header
    message = "Budget table header has no month labels; cells were mapped to months by position"
    if message not in parsed.warnings:
        parsed.warnings.append(message)
        logger.warning(message)
    return MONTHS


def _read_static_rows(html: str, parsed: ParsedBudgetHtml, header: Optional[List[int]]) -> None:
    pending_group = None
    for match in _TR.finditer(html):
        attrs = _attributes(match.group(1))
        classes = (attrs.get("class") or "").split()
        if "actual-row" in classes and attrs.get("data-pg"):
            pending_group = attrs["data-pg"].strip()
            continue
        if "budget-row" in classes and pending_group and not is_services_charges(pending_group):
            cells = _TD.findall(match.group(2))[:12]
            months = _positional_months(header, parsed)
            for month, cell in zip(months, cells):
                value = _cell_number(_cell_text(cell))
                if value:
                    parsed.records.append(BudgetRecord(product_group=pending_group, month=month, value=mt_to_kgs(value)))
        pending_group = None


def _read_services_charges_row(html: str, parsed: ParsedBudgetHtml, header: Optional[List[int]]) -> None:
    for match in _TR.finditer(html):
        classes = (_attributes(match.group(1)).get("class") or "").split()
        if "services-charges-budget-row" not in classes:
            continue
        cells = _TD.findall(match.group(2))[:12]
        months = _positional_months(header, parsed)
        for month, cell in zip(months, cells):
            input_tag = _INPUT_TAG.search(cell)
            span = _SPAN.search(cell)
            if input_tag:
                text = _attributes(input_tag.group(0)).get("value") or ""
            elif span:
                text = _cell_text(span.group(1))
            else:
                text = _cell_text(cell)
            value = _cell_number(text)
            if value:
                parsed.services_charges_records.append(
                    ServicesChargesRecord(month=month, amount=thousands_to_amount(value))
                )
        return


def parse_imported_html(html: str) -> ParsedBudgetHtml:
    """Read division, years and budget values back from an exported form."""
    if not html or not html.strip():
        raise BudgetValidationError("htmlContent is required")

    meta = _read_metadata(html)
    division = meta.get("division")
    budget_year = _parse_int(meta.get("budgetYear"))
    if not division or budget_year is None:
        raise BudgetValidationError(MISSING_METADATA_MESSAGE)
    actual_year = _parse_int(meta.get("actualYear")) or budget_year - 1

    parsed = ParsedBudgetHtml(division=division, actual_year=actual_year, budget_year=budget_year)
    if SIGNATURE not in html:
        parsed.warnings.append("Budget system signature not found; file may not come from this system")

    strategies = []
    if _read_saved_data(html, parsed):
        strategies.append("saved-data")
    else:
        _read_inputs(html, parsed)
        if parsed.records or parsed.services_charges_records:
            strategies.append("inputs")

    header = None
    if not parsed.records or not parsed.services_charges_records:
        header = _header_months(html)
    if not parsed.records:
        _read_static_rows(html, parsed, header)
        if parsed.records:
            strategies.append("static-rows")
    if not parsed.services_charges_records:
        _read_services_charges_row(html, parsed, header)
        if parsed.services_charges_records:
            strategies.append("services-charges-row")

    if not parsed.records and not parsed.services_charges_records:
        raise BudgetValidationError(NO_VALUES_MESSAGE)

    parsed.strategy = "+".join(strategies)
    logger.info(
        f"Parsed divisional budget HTML {division} {budget_year}: {len(parsed.records)} records, "
        f"{len(parsed.services_charges_records)} services charges records ({parsed.strategy})"
    )
    return parsed
