import json
import re
from datetime import datetime

import pytest

from utils.budget_policy import kgs_to_mt, mt_to_kgs
from utils.divisional_html_codec import (
    build_export_filename,
    generate_divisional_budget_html,
    parse_imported_html,
    render_static_budget_html,
)
from utils.errors import BudgetValidationError


def _payload():
    return {
        "division": "FP",
        "actualYear": 2024,
        "budgetYear": 2025,
        "tableData": [
            {"productGroup": "Film A", "monthlyActual": {"1": {"KGS": 5000, "MT": 5.0, "AMOUNT": 10000, "MORM": 2500}}},
            {"productGroup": "Bags & Pouches", "monthlyActual": {3: {"KGS": 1200, "MT": 1.2}}},
        ],
        "budgetData": {
            "Film A|1": 12.5,
            "Film A|2": 1234.567,
            "Bags & Pouches|3": 0.001,
            "Bags & Pouches|12": 40,
        },
        "servicesChargesData": {"productGroup": "Services Charges", "monthlyActual": {"1": {"AMOUNT": 20000, "MORM": 20000}}},
        "servicesChargesBudget": {
            "Services Charges|1|AMOUNT": 25,
            "Services Charges|7|AMOUNT": 12.5,
        },
        "pricingData": {"Film A": {"asp": 2.0, "morm": 0.5, "rm": 1.5}},
    }


def _regular(parsed):
    return sorted((r.product_group, r.month, r.value) for r in parsed.records)


def _services(parsed):
    return sorted((r.month, r.amount) for r in parsed.services_charges_records)


EXPECTED_REGULAR = [
    ("Bags & Pouches", 3, 1),
    ("Bags & Pouches", 12, 40000),
    ("Film A", 1, 12500),
    ("Film A", 2, 1234567),
]
EXPECTED_SERVICES = [(1, 25000), (7, 12500)]


@pytest.mark.parametrize("kgs", [0, 1, 999, 1001, 123456, 5_000_000, 10_000_000])
def test_kgs_mt_round_trip(kgs):
    assert abs(mt_to_kgs(kgs_to_mt(kgs)) - kgs) <= 1


def test_export_carries_metadata_and_signature():
    html = generate_divisional_budget_html(_payload())

    assert html.startswith("<!DOCTYPE html>")
    assert "IPD_BUDGET_SYSTEM_v1.0 :: TYPE=DIVISIONAL_BUDGET" in html
    assert '<meta name="division" content="FP">' in html
    assert '<meta name="actualYear" content="2024">' in html
    assert '<meta name="budgetYear" content="2025">' in html
    assert '<meta name="exportType" content="divisional">' in html
    assert 'class="budget-row services-charges-budget-row"' in html
    assert 'data-metric="AMOUNT"' in html
    assert 'id="savedBudgetData"' not in html


def test_export_escapes_product_group_names():
    html = generate_divisional_budget_html(_payload())

    assert 'data-pg="Bags &amp; Pouches"' in html
    assert 'data-pg="Bags & Pouches"' not in html


def test_metadata_island_is_valid_json():
    html = generate_divisional_budget_html(_payload(), now=datetime(2025, 1, 2, 3, 4))
    island = re.search(r'id="divisional-budget-metadata">(.*?)</script>', html).group(1)

    assert json.loads(island) == {
        "division": "FP", "actualYear": 2024, "budgetYear": 2025, "exportedAt": "2025-01-02T03:04:00",
    }


def test_decode_editable_form():
    parsed = parse_imported_html(generate_divisional_budget_html(_payload()))

    assert parsed.division == "FP"
    assert parsed.actual_year == 2024
    assert parsed.budget_year == 2025
    assert parsed.strategy == "inputs"
    assert _regular(parsed) == EXPECTED_REGULAR
    assert _services(parsed) == EXPECTED_SERVICES


def test_decode_static_rows_matches_editable_form():
    editable = parse_imported_html(generate_divisional_budget_html(_payload()))
    static = parse_imported_html(render_static_budget_html(_payload(), include_data_island=False))

    assert static.strategy == "static-rows+services-charges-row"
    assert _regular(static) == _regular(editable)
    assert _services(static) == _services(editable)


def test_decode_prefers_saved_data_island():
    html = render_static_budget_html(_payload())
    parsed = parse_imported_html(html)

    assert parsed.strategy == "saved-data"
    assert _regular(parsed) == EXPECTED_REGULAR
    assert _services(parsed) == EXPECTED_SERVICES


def test_invalid_saved_data_falls_back_to_table():
    html = render_static_budget_html(_payload())
    html = re.sub(r'(id="savedBudgetData">)(.*?)(</script>)', r"\1{not json\3", html, flags=re.S)

    parsed = parse_imported_html(html)

    assert parsed.strategy.startswith("static-rows")
    assert _regular(parsed) == EXPECTED_REGULAR
    assert any("savedBudgetData" in w for w in parsed.warnings)


@pytest.mark.parametrize("island", ["[1, 2]", '"text"', "42"])
def test_non_object_saved_data_falls_back_to_table(island):
    html = render_static_budget_html(_payload())
    html = re.sub(r'(id="savedBudgetData">)(.*?)(</script>)', lambda m: m.group(1) + island + m.group(3), html, flags=re.S)

    parsed = parse_imported_html(html)

    assert parsed.strategy.startswith("static-rows")
    assert _regular(parsed) == EXPECTED_REGULAR
    assert _services(parsed) == EXPECTED_SERVICES
    assert any("savedBudgetData" in w for w in parsed.warnings)


def test_saved_data_skips_malformed_items():
    island = json.dumps({
        "savedBudget": ["Film A", 3, {"productGroup": "Film A", "month": 1, "value": 12500}],
        "savedServicesCharges": [None, {"month": 7, "value": 12500}],
    })
    html = render_static_budget_html(_payload())
    html = re.sub(r'(id="savedBudgetData">)(.*?)(</script>)', lambda m: m.group(1) + island + m.group(3), html, flags=re.S)

    parsed = parse_imported_html(html)

    assert parsed.strategy == "saved-data"
    assert _regular(parsed) == [("Film A", 1, 12500)]
    assert _services(parsed) == [(7, 12500)]


def test_zero_cells_decode_the_same_from_every_render():
    payload = _payload()
    payload["budgetData"]["Film A|3"] = 0
    payload["servicesChargesBudget"]["Services Charges|2|AMOUNT"] = 0

    editable = parse_imported_html(generate_divisional_budget_html(payload))
    static = parse_imported_html(render_static_budget_html(payload, include_data_island=False))
    saved = parse_imported_html(render_static_budget_html(payload))

    assert _regular(editable) == _regular(static) == _regular(saved) == EXPECTED_REGULAR
    assert _services(editable) == _services(static) == _services(saved) == EXPECTED_SERVICES


def test_inputs_strip_thousands_separators():
    html = generate_divisional_budget_html(_payload()).replace('value="1234.567"', 'value="1,234.567"')

    parsed = parse_imported_html(html)

    assert ("Film A", 2, 1234567) in _regular(parsed)


def test_header_order_is_used_for_static_cells():
    html = render_static_budget_html(_payload(), include_data_island=False)
    labels = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    header = "".join(f"<th>{label}</th>" for label in labels)
    reversed_header = "".join(f"<th>{label}</th>" for label in reversed(labels))
    html = html.replace(header, reversed_header)

    parsed = parse_imported_html(html)

    assert ("Film A", 12, 12500) in _regular(parsed)
    assert (6, 12500) in _services(parsed)


def test_static_cells_without_header_map_by_position():
    html = render_static_budget_html(_payload(), include_data_island=False)
    html = re.sub(r"<thead>.*?</thead>", "", html, flags=re.S)

    parsed = parse_imported_html(html)

    assert _regular(parsed) == EXPECTED_REGULAR
    assert any("by position" in w for w in parsed.warnings)


def test_legacy_services_charges_span_cells():
    html = (
        '<meta name="division" content="FP"><meta name="budgetYear" content="2025">'
        '<table><tr class="budget-row services-charges-budget-row" data-pg="Services Charges">'
        '<td><span style="font-weight: 500;">1,500</span> <span>k</span></td>'
        '<td>0</td><td>abc</td><td>2.5</td>'
        '</tr></table>'
    )

    parsed = parse_imported_html(html)

    assert parsed.actual_year == 2024
    assert parsed.records == []
    assert _services(parsed) == [(1, 1500000), (4, 2500)]


@pytest.mark.parametrize("html", [
    "<html><head></head><body></body></html>",
    '<meta name="division" content="FP">',
    '<meta name="budgetYear" content="2025">',
])
def test_missing_metadata_is_rejected(html):
    with pytest.raises(BudgetValidationError) as exc:
        parse_imported_html(html)
    assert "missing division or budgetYear" in exc.value.message


def test_form_without_values_is_rejected():
    payload = _payload()
    payload["budgetData"] = {}
    payload["servicesChargesBudget"] = {}

    with pytest.raises(BudgetValidationError) as exc:
        parse_imported_html(generate_divisional_budget_html(payload))
    assert "No valid budget values found" in exc.value.message


def test_export_filename():
    name = build_export_filename("FP", 2025, datetime(2025, 3, 7, 9, 5))

    assert name == "BUDGET_Divisional_FP_2025_07032025_0905.html"
