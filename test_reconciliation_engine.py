"""
Reconciliation Engine Tests

Regulator opening balances vs system inventory per wine tax class:
- difference = TTB - system, reconciled when |difference| < 0.5 gal
- classes where both sides are zero are left out
- totals come from the per-class values
- spirits never mix into the wine totals
"""

import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError

from conftest import make_inventory
from core.models.ttb import (
    OpeningBalances,
    ProductType,
    SpiritsBalances,
    TaxClass,
    WINE_TAX_CLASSES,
    product_type_for,
)
from reconciliation.engine import (
    RECONCILIATION_TOLERANCE,
    is_within_tolerance,
    reconcile,
    reconcile_spirits,
    summarize,
    to_decimal,
)


class TestPerClassComparison:

    def test_differences_and_totals(self, opening_balances):
        result = reconcile(opening_balances, make_inventory(HARD_CIDER="140"))

        rows = {row.tax_class: row for row in result.by_tax_class}
        assert set(rows) == {TaxClass.HARD_CIDER, TaxClass.WINE_UNDER_16}

        cider = rows[TaxClass.HARD_CIDER]
        assert cider.ttb_balance == Decimal("150")
        assert cider.system_inventory == Decimal("140")
        assert cider.difference == Decimal("10")
        assert cider.is_reconciled is False
        assert cider.label == "Hard Cider (<8.5% ABV)"

        wine = rows[TaxClass.WINE_UNDER_16]
        assert wine.system_inventory == Decimal("0")
        assert wine.difference == Decimal("20")

        assert result.totals.ttb_total == Decimal("170")
        assert result.totals.system_total == Decimal("140")
        assert result.totals.difference == Decimal("30")
        assert result.totals.is_fully_reconciled is False

    def test_rows_follow_tax_class_order(self):
        balances = OpeningBalances.model_validate({"bulk": {"carbonatedWine": 1, "hardCider": 1, "wine16To21": 1}})
        result = reconcile(balances, make_inventory())
        assert [row.tax_class for row in result.by_tax_class] == [
            TaxClass.HARD_CIDER,
            TaxClass.WINE_16_TO_21,
            TaxClass.CARBONATED_WINE,
        ]

    def test_class_only_in_system_is_reported(self):
        result = reconcile(OpeningBalances(), make_inventory(SPARKLING_WINE="5"))

        assert len(result.by_tax_class) == 1
        row = result.by_tax_class[0]
        assert row.tax_class == TaxClass.SPARKLING_WINE
        assert row.difference == Decimal("-5")

    def test_all_zero_gives_empty_reconciled_result(self):
        result = reconcile(OpeningBalances(), make_inventory())

        assert result.by_tax_class == []
        assert result.totals.ttb_total == Decimal("0")
        assert result.totals.is_fully_reconciled is True

    def test_identical_inputs_give_equal_results(self, opening_balances):
        inventory = make_inventory(HARD_CIDER="149.7", WINE_UNDER_16="20")
        assert reconcile(opening_balances, inventory) == reconcile(opening_balances, inventory)


class TestTolerance:

    @pytest.mark.parametrize("system, reconciled", [
        ("149.6", True),    # diff 0.4
        ("149.5", False),   # diff exactly 0.5
        ("150.49", True),   # diff -0.49
        ("150.5", False),   # diff -0.5
    ])
    def test_strictly_below_half_gallon(self, system, reconciled):
        balances = OpeningBalances.model_validate({"bulk": {"hardCider": "150"}})
        row = reconcile(balances, make_inventory(HARD_CIDER=system)).by_tax_class[0]
        assert row.is_reconciled is reconciled

    def test_tolerance_is_absolute(self):
        assert RECONCILIATION_TOLERANCE == Decimal("0.5")
        assert is_within_tolerance(Decimal("-0.49"))
        assert not is_within_tolerance(Decimal("0.5"))

    def test_to_decimal(self):
        assert to_decimal(None) == Decimal("0")
        assert to_decimal(1.1) == Decimal("1.1")
        assert to_decimal("2.50") == Decimal("2.50")


class TestAggregatorTotals:

    def test_totals_ignore_reported_total(self, opening_balances, caplog):
        inventory = make_inventory(HARD_CIDER="150", WINE_UNDER_16="20")
        inventory.total = Decimal("999")

        with caplog.at_level(logging.WARNING):
            result = reconcile(opening_balances, inventory)

        assert result.totals.system_total == Decimal("170")
        assert result.totals.is_fully_reconciled is True
        assert any("disagrees" in r.getMessage() for r in caplog.records)

    def test_spirits_inventory_stays_out_of_wine_totals(self, opening_balances, caplog):
        inventory = make_inventory(HARD_CIDER="150", WINE_UNDER_16="20", APPLE_BRANDY="12")

        with caplog.at_level(logging.WARNING):
            result = reconcile(opening_balances, inventory)

        assert all(row.tax_class in WINE_TAX_CLASSES for row in result.by_tax_class)
        assert result.totals.system_total == Decimal("170")
        assert not any("disagrees" in r.getMessage() for r in caplog.records)


class TestSpirits:

    def test_spirits_rows_compare_against_legacy_volume(self):
        spirits = SpiritsBalances(apple_brandy=Decimal("10"))
        rows = reconcile_spirits(spirits, {TaxClass.APPLE_BRANDY: Decimal("9.8")})

        assert len(rows) == 1
        assert rows[0].tax_class == TaxClass.APPLE_BRANDY
        assert rows[0].difference == Decimal("0.2")
        assert rows[0].is_reconciled is True

    def test_no_spirits_no_rows(self):
        assert reconcile_spirits(SpiritsBalances()) == []

    def test_summarize_lists_unreconciled_classes(self, opening_balances):
        summary = summarize(reconcile(opening_balances, make_inventory(HARD_CIDER="150")))
        assert summary["difference"] == "20"
        assert summary["unreconciled_classes"] == ["wineUnder16"]


class TestBalanceParsing:

    def test_blank_and_missing_values_are_zero(self):
        balances = OpeningBalances.model_validate({"bulk": {"hardCider": "", "wineUnder16": None}})
        assert balances.wine_total() == Decimal("0")

    def test_form_values_are_parsed(self):
        balances = OpeningBalances.model_validate({"bulk": {"hardCider": "1,200.5"}, "bottled": {"hardCider": 3}})
        assert balances.ttb_balance(TaxClass.HARD_CIDER) == Decimal("1203.5")

    @pytest.mark.parametrize("value", ["-1", "abc", True])
    def test_invalid_values_are_rejected(self, value):
        with pytest.raises(ValidationError):
            OpeningBalances.model_validate({"bulk": {"hardCider": value}})

    def test_spirits_total_separate_from_wine(self):
        balances = OpeningBalances.model_validate({"spirits": {"appleBrandy": "5", "grapeSpirits": "2.5"}})
        assert balances.wine_total() == Decimal("0")
        assert balances.spirits_total() == Decimal("7.5")


@pytest.mark.parametrize("tax_class, product_type", [
    (TaxClass.HARD_CIDER, ProductType.CIDER),
    (TaxClass.WINE_UNDER_16, ProductType.WINE),
    (TaxClass.SPARKLING_WINE, ProductType.WINE),
    (TaxClass.CARBONATED_WINE, ProductType.WINE),
    (TaxClass.APPLE_BRANDY, ProductType.BRANDY),
    (TaxClass.GRAPE_SPIRITS, ProductType.BRANDY),
])
def test_product_type_for_tax_class(tax_class, product_type):
    assert product_type_for(tax_class) == product_type
