import pytest
from sqlalchemy import func

from Schemas.AEBF.PricingRoundingSchema import PricingRoundingEntryIn
from utils import cache
from utils.budget_policy import ServicesChargesMarginPolicy
from utils.cache import cache_get, cache_set
from utils.divisional_budget_service import (
    check_for_existing_budget,
    delete_divisional_budget,
    import_budget,
    sanitize_records,
    save_divisional_budget,
)
from utils.divisional_html_codec import BudgetRecord, ParsedBudgetHtml, ServicesChargesRecord
from utils.errors import BudgetValidationError
from utils.pricing_rounding import save_rounded_prices


def _rows(db, tables, year=2025):
    Budget = tables.budget
    return {
        (r.product_group, r.month, r.metric): r.value
        for r in db.query(Budget).filter(Budget.year == year).all()
    }


def _count(db, tables, year=None):
    query = db.query(func.count(tables.budget.id))
    if year is not None:
        query = query.filter(tables.budget.year == year)
    return query.scalar()


def _parsed(records=(), services=()):
    return ParsedBudgetHtml(
        division="FP",
        actual_year=2024,
        budget_year=2025,
        records=[BudgetRecord(product_group=pg, month=m, value=v) for pg, m, v in records],
        services_charges_records=[ServicesChargesRecord(month=m, amount=a) for m, a in services],
    )


def test_sanitize_records_reports_each_problem():
    valid, errors = sanitize_records([
        {"productGroup": "Film A", "month": 1, "value": "1,500"},
        {"productGroup": "", "month": 1, "value": 10},
        {"productGroup": "Film A", "month": 13, "value": 10},
        {"productGroup": "Film A", "month": "x", "value": 10},
        {"productGroup": "Film A", "month": 2, "value": None},
        {"productGroup": "Film A", "month": 2, "value": "ten"},
        {"productGroup": "Film A", "month": 2, "value": -5},
        {"productGroup": "Film A", "month": 2, "value": 2_000_000_000},
        {"product_group": "Film B", "month": "3", "value": 0},
    ])

    assert valid == [
        {"product_group": "Film A", "month": 1, "value": 1500.0},
        {"product_group": "Film B", "month": 3, "value": 0.0},
    ]
    assert [e["index"] for e in errors] == [1, 2, 3, 4, 5, 6, 7]
    assert [e["field"] for e in errors] == ["productGroup", "month", "month", "value", "value", "value", "value"]


def test_save_writes_kgs_amount_and_morm_rows(db, fp_tables):
    save_rounded_prices(db, "FP", 2024, [PricingRoundingEntryIn(productGroup="Film A", aspRound=2.0, mormRound=0.5)])
    db.add(fp_tables.material(product_group="Film A", material="PE", process="Printed"))
    db.commit()

    result = save_divisional_budget(db, "FP", 2025, [{"productGroup": "Film A", "month": 1, "value": 12500}])

    assert _rows(db, fp_tables) == {
        ("Film A", 1, "KGS"): pytest.approx(12500),
        ("Film A", 1, "AMOUNT"): pytest.approx(25000),
        ("Film A", 1, "MORM"): pytest.approx(6250),
    }
    row = db.query(fp_tables.budget).filter_by(metric="KGS").one()
    assert (row.division, row.material, row.process) == ("FP", "PE", "Printed")
    assert row.uploaded_filename.startswith("LIVE_Divisional_FP_2025_")

    assert result["pricingYear"] == 2024
    assert result["pricingDataAvailable"] is True
    assert result["recordsInserted"] == {"kgs": 1, "amount": 1, "morm": 1, "servicesCharges": 0, "total": 3}
    assert result["budgetTotals"]["volumeMT"] == pytest.approx(12.5)
    assert result["budgetTotals"]["amount"] == pytest.approx(25000)
    assert result["metadata"]["targetTable"] == "fp_divisional_budget"
    assert result["warnings"] == []


def test_missing_pricing_skips_amount_rows_with_warning(db, fp_tables):
    result = save_divisional_budget(db, "FP", 2025, [
        {"productGroup": "Film A", "month": 1, "value": 1000},
        {"productGroup": "Film B", "month": 1, "value": 2000},
    ])

    assert set(_rows(db, fp_tables)) == {("Film A", 1, "KGS"), ("Film B", 1, "KGS")}
    assert result["pricingDataAvailable"] is False
    assert "Missing pricing data for 2 product group(s)" in result["warnings"][0]


def test_invalid_records_are_skipped_not_fatal(db, fp_tables):
    result = save_divisional_budget(db, "FP", 2025, [
        {"productGroup": "Film A", "month": 1, "value": 1000},
        {"productGroup": "Film A", "month": 0, "value": 1000},
    ])

    assert result["recordsProcessed"] == 1
    assert result["skippedRecords"] == 1
    assert result["validationErrors"][0]["index"] == 1
    assert _count(db, fp_tables) == 1


def test_all_invalid_records_raise_before_writing(db, fp_tables):
    with pytest.raises(BudgetValidationError) as exc:
        save_divisional_budget(db, "FP", 2025, [{"productGroup": "Film A", "month": 14, "value": 1}])

    assert exc.value.message.startswith("All records were invalid")
    assert exc.value.details[0]["field"] == "month"
    assert _count(db, fp_tables) == 0


def test_empty_save_is_rejected(db):
    with pytest.raises(BudgetValidationError) as exc:
        save_divisional_budget(db, "FP", 2025, [])
    assert exc.value.message == "No budget records to save."


@pytest.mark.parametrize("year", [1999, 2101, "next"])
def test_budget_year_range(db, year):
    with pytest.raises(BudgetValidationError):
        save_divisional_budget(db, "FP", year, [{"productGroup": "Film A", "month": 1, "value": 1}])


def test_saving_twice_keeps_one_row_per_key(db, fp_tables):
    records = [{"productGroup": "Film A", "month": m, "value": 100 * m} for m in range(1, 13)]
    save_divisional_budget(db, "FP", 2025, records)
    save_divisional_budget(db, "FP", 2025, records)

    assert _count(db, fp_tables) == 12


def test_duplicate_keys_in_one_save_keep_the_last_value(db, fp_tables):
    save_divisional_budget(db, "FP", 2025, [
        {"productGroup": "Film A", "month": 1, "value": 100},
        {"productGroup": "Film A", "month": 1, "value": 300},
    ])

    assert _rows(db, fp_tables) == {("Film A", 1, "KGS"): pytest.approx(300)}


def test_services_charges_morm_equals_amount(db, fp_tables):
    result = save_divisional_budget(
        db, "FP", 2025, [],
        services_charges_records=[{"month": 1, "value": 25000}, {"month": 7, "value": "12,500"}],
    )

    rows = _rows(db, fp_tables)
    for month in (1, 7):
        assert rows[("Services Charges", month, "MORM")] == rows[("Services Charges", month, "AMOUNT")]
    assert ("Services Charges", 1, "KGS") not in rows
    assert result["budgetTotals"]["servicesCharges"] == pytest.approx(37500)
    assert result["budgetTotals"]["morm"] == pytest.approx(37500)
    assert result["budgetTotals"]["volumeKGS"] == 0
    assert result["servicesChargesRecords"] == 4


def test_margin_policy_ratio():
    assert ServicesChargesMarginPolicy.SERVICES_CHARGES_MORM_RATIO == 1.0
    assert ServicesChargesMarginPolicy().expand(500) == [("AMOUNT", 500.0), ("MORM", 500.0)]


def test_import_without_existing_budget_writes(db, fp_tables):
    result = import_budget(db, _parsed(records=[("Film A", 1, 12500)], services=[(1, 25000)]))

    assert result["needsConfirmation"] is False
    assert result["recordsInserted"]["total"] == 3
    assert result["metadata"]["actualYear"] == 2024
    row = db.query(fp_tables.budget).filter_by(metric="KGS").one()
    assert row.uploaded_filename.startswith("Divisional_HTML_Import_FP_2025_")


def test_conflict_gate_requires_confirmation(db, fp_tables):
    save_divisional_budget(db, "FP", 2025, [{"productGroup": "Film A", "month": 1, "value": 100}])
    before = _rows(db, fp_tables)

    pending = import_budget(db, _parsed(records=[("Film A", 1, 999), ("Film B", 2, 50)]))

    assert pending["needsConfirmation"] is True
    assert pending["existingBudget"]["recordCount"] == 1
    assert pending["recordsToImport"] == 2
    assert _rows(db, fp_tables) == before

    forced = import_budget(db, _parsed(records=[("Film A", 1, 999), ("Film B", 2, 50)]), force_update=True)

    assert forced["needsConfirmation"] is False
    assert forced["existingBudget"]["recordCount"] == 1
    assert _rows(db, fp_tables) == {
        ("Film A", 1, "KGS"): pytest.approx(999),
        ("Film B", 2, "KGS"): pytest.approx(50),
    }


def test_confirmation_counts_services_charges_records(db, fp_tables):
    save_divisional_budget(db, "FP", 2025, [{"productGroup": "Film A", "month": 1, "value": 100}])

    pending = import_budget(db, _parsed(services=[(1, 25000), (7, 12500)]))

    assert pending["needsConfirmation"] is True
    assert pending["recordsToImport"] == 2
    assert pending["servicesChargesToImport"] == 2
    assert _count(db, fp_tables) == 1


def test_forced_import_twice_is_idempotent(db, fp_tables):
    parsed = _parsed(records=[("Film A", 1, 500)], services=[(2, 1000)])
    import_budget(db, parsed, force_update=True)
    import_budget(db, parsed, force_update=True)

    assert _count(db, fp_tables) == 3


def test_check_for_existing_budget(db):
    assert check_for_existing_budget(db, "FP", 2025)["recordCount"] == 0

    save_divisional_budget(db, "FP", 2025, [{"productGroup": "Film A", "month": 1, "value": 1}])
    existing = check_for_existing_budget(db, "fp", 2025)

    assert existing["recordCount"] == 1
    assert existing["lastUpload"] is not None
    assert existing["lastFilename"].startswith("LIVE_Divisional_FP_2025_")


def test_delete_only_removes_requested_year(db, fp_tables):
    for year, groups in ((2025, ("Film A", "Film B", "Film C")), (2024, ("Film A",))):
        for pg in groups:
            for month in range(1, 13):
                db.add(fp_tables.budget(division="FP", year=year, month=month, product_group=pg, metric="KGS", value=1))
    db.commit()

    deleted = delete_divisional_budget(db, "FP", 2025)

    assert deleted == 36
    assert _count(db, fp_tables, 2025) == 0
    assert _count(db, fp_tables, 2024) == 12


def test_writes_invalidate_division_cache(db):
    cache_set("aebf:FP:budget-data:2024:2025", {"stale": True})
    cache_set("aebf:HC:budget-data:2024:2025", {"other": True})

    save_divisional_budget(db, "FP", 2025, [{"productGroup": "Film A", "month": 1, "value": 1}])

    assert cache_get("aebf:FP:budget-data:2024:2025") is None
    assert cache_get("aebf:HC:budget-data:2024:2025") == {"other": True}


def test_cache_failure_does_not_fail_the_write(db, fp_tables, monkeypatch):
    def broken(prefix=None):
        raise RuntimeError("cache down")

    monkeypatch.setattr(cache, "invalidate_cache", broken)

    result = save_divisional_budget(db, "FP", 2025, [{"productGroup": "Film A", "month": 1, "value": 1}])

    assert result["recordsInserted"]["kgs"] == 1
    assert _count(db, fp_tables) == 1
