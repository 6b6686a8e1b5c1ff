import pytest
from sqlalchemy import inspect

from Database.session import resolve_pool, get_division_session
from Models.AEBF.DivisionTables import resolve_tables, registered_divisions
from utils.divisions import extract_division_code, validate_division
from utils.errors import BudgetValidationError


@pytest.mark.parametrize("division, expected", [
    ("FP", "fp"),
    ("hc", "hc"),
    ("FP-UAE", "fp"),
    (" HC-KSA ", "hc"),
    ("", "fp"),
    (None, "fp"),
])
def test_extract_division_code(division, expected):
    assert extract_division_code(division) == expected


def test_resolve_tables_returns_prefixed_names():
    tables = resolve_tables("FP-UAE")

    assert tables.code == "fp"
    assert tables.pricing_table == "fp_product_group_pricing_rounding"
    assert tables.budget_table == "fp_divisional_budget"
    assert tables.material_table == "fp_material_percentages"
    assert tables.excel_data_table == "fp_data_excel"


def test_resolve_tables_is_stable_per_division():
    assert resolve_tables("hc") is resolve_tables("HC")
    assert resolve_tables("HC").budget is not resolve_tables("FP").budget


def test_unknown_division_is_rejected():
    with pytest.raises(BudgetValidationError):
        resolve_tables("XX; DROP TABLE fp_divisional_budget")
    with pytest.raises(BudgetValidationError):
        validate_division("ZZ")
    with pytest.raises(BudgetValidationError):
        get_division_session("ZZ")


def test_registry_matches_configured_divisions():
    assert registered_divisions() == ["fp", "hc"]


def test_bootstrap_creates_each_division_in_its_own_database():
    fp_tables = set(inspect(resolve_pool("FP")).get_table_names())
    hc_tables = set(inspect(resolve_pool("HC")).get_table_names())

    assert {"fp_divisional_budget", "fp_product_group_pricing_rounding",
            "fp_material_percentages", "fp_data_excel"} <= fp_tables
    assert not any(name.startswith("hc_") for name in fp_tables)
    assert "hc_divisional_budget" in hc_tables
