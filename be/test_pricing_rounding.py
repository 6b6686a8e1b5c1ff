import pytest

from Database.session import resolve_pool
from Schemas.AEBF.PricingRoundingSchema import PricingRoundingEntryIn
from utils.errors import BudgetValidationError
from utils.pricing_rounding import ensure_table, get_rounded_prices, save_rounded_prices


def _entry(pg, asp=None, morm=None, rm=None):
    return PricingRoundingEntryIn(productGroup=pg, aspRound=asp, mormRound=morm, rmRound=rm)


def _by_group(db, year=2024):
    return {row.product_group: row for row in get_rounded_prices(db, "FP", year)}


def test_rm_is_recomputed_from_asp_and_morm(db):
    save_rounded_prices(db, "FP", 2024, [_entry("Film A", 2.0, 0.5, rm=999)])

    row = _by_group(db)["Film A"]
    assert row.asp_round == pytest.approx(2.0)
    assert row.morm_round == pytest.approx(0.5)
    assert row.rm_round == pytest.approx(1.5)


def test_rm_is_null_when_asp_or_morm_missing(db):
    save_rounded_prices(db, "FP", 2024, [
        _entry("Film A", asp=2.0, rm=1.0),
        _entry("Film B", morm=0.3, rm=1.0),
    ])

    rows = _by_group(db)
    assert rows["Film A"].rm_round is None
    assert rows["Film B"].rm_round is None


def test_rm_is_rounded_to_two_decimals(db):
    save_rounded_prices(db, "FP", 2024, [_entry("Laminates", 3.46, 1.111)])

    assert _by_group(db)["Laminates"].rm_round == pytest.approx(2.35)


@pytest.mark.parametrize("entry, message", [
    (_entry("Film B", asp=1000.5, morm=1.0), "Invalid ASP value for Film B"),
    (_entry("Film B", asp=5.0, morm=-0.1), "Invalid MoRM value for Film B"),
    (_entry("Film B", asp=1.0, morm=2.0), "Calculated RM value for Film B is out of range"),
])
def test_out_of_bounds_rolls_back_whole_batch(db, entry, message):
    save_rounded_prices(db, "FP", 2024, [_entry("Film A", 2.0, 0.5)])

    with pytest.raises(BudgetValidationError) as exc:
        save_rounded_prices(db, "FP", 2024, [_entry("Film A", 9.0, 1.0), _entry("Film C", 4.0, 1.0), entry])

    assert message in exc.value.message
    rows = _by_group(db)
    assert set(rows) == {"Film A"}
    assert rows["Film A"].asp_round == pytest.approx(2.0)


def test_bounds_are_inclusive(db):
    save_rounded_prices(db, "FP", 2024, [_entry("Edge", asp=1000, morm=0)])

    assert _by_group(db)["Edge"].rm_round == pytest.approx(1000)


def test_saving_twice_keeps_one_row_per_product_group(db):
    entries = [_entry("Film A", 2.0, 0.5), _entry("Film B", 3.0, 1.0)]
    save_rounded_prices(db, "FP", 2024, entries)
    first = {pg: (r.asp_round, r.morm_round, r.rm_round) for pg, r in _by_group(db).items()}

    save_rounded_prices(db, "FP", 2024, entries)
    second = {pg: (r.asp_round, r.morm_round, r.rm_round) for pg, r in _by_group(db).items()}

    assert first == second
    assert len(get_rounded_prices(db, "FP", 2024)) == 2


def test_upsert_overwrites_rounding_fields(db):
    save_rounded_prices(db, "FP", 2024, [_entry("Film A", 2.0, 0.5)])
    save_rounded_prices(db, "FP", 2024, [_entry("Film A", 2.5, None)])

    row = _by_group(db)["Film A"]
    assert row.asp_round == pytest.approx(2.5)
    assert row.morm_round is None
    assert row.rm_round is None


def test_prices_are_scoped_by_year(db):
    save_rounded_prices(db, "FP", 2024, [_entry("Film A", 2.0, 0.5)])

    assert get_rounded_prices(db, "FP", 2023) == []


def test_ensure_table_is_idempotent():
    ensure_table("FP")
    ensure_table("FP", engine=resolve_pool("FP"))
