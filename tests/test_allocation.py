"""
Tests for allocation analysis across pie categories.
"""

from decimal import Decimal

import pytest

from pie_pilot.analytics.allocation import (
    OVERALL_SUMMARY_SENTINEL,
    DuplicateCategoryError,
    analyze_allocation,
    apply_pie_allocations,
    calculate_allocation_drift,
    calculate_current_allocation,
    calculate_percent_allocation,
    format_difference,
    is_rebalancing_recommended,
    parse_pie_name,
    update_pie_target_allocation,
)
from pie_pilot.models import DuplicateCategoryPolicy, FailureReason, PieAllocation
from pie_pilot.portfolio.pies import summarize_pies


class TestParsePieName:
    """Tests for parse_pie_name."""

    @pytest.mark.parametrize("name, expected", [
        ("Growth (40%)", ("Growth", Decimal("40"))),
        ("Tech (12.5%)", ("Tech", Decimal("12.5"))),
        ("Dividend Kings (25 %)", ("Dividend Kings", Decimal("25"))),
        ("  Bonds  (10%)", ("Bonds", Decimal("10"))),
    ])
    def test_valid_names(self, name, expected):
        assert parse_pie_name(name) == expected

    @pytest.mark.parametrize("name", [
        "Misc",
        "",
        None,
        "Bad (abc%)",
        "Nested (US) (10%)",
        "(40%)",
    ])
    def test_unparseable_names(self, name):
        assert parse_pie_name(name) is None


class TestCurrentAllocation:
    """Tests for bucketing invested value by category."""

    def test_unparseable_pies_excluded(self, make_pie):
        pies = [
            make_pie("Growth (50%)", 800),
            make_pie("Income (50%)", 200),
            make_pie("Misc", 500),
        ]

        values, targets = calculate_current_allocation(pies)

        assert values == {"Growth": Decimal("800"), "Income": Decimal("200")}
        assert targets == {"Growth": Decimal("50"), "Income": Decimal("50")}

    def test_percentages(self):
        percents = calculate_percent_allocation({"A": Decimal("800"), "B": Decimal("200")})

        assert percents == {"A": Decimal("80"), "B": Decimal("20")}

    def test_zero_total_percentages(self):
        percents = calculate_percent_allocation({"A": Decimal("0"), "B": Decimal("0")})

        assert percents == {"A": Decimal("0"), "B": Decimal("0")}


class TestSavedTargets:
    """Tests for saved per-pie targets."""

    @pytest.fixture
    def pies(self, make_pie):
        return [
            make_pie("Growth (60%)", 680),
            make_pie("Income (40%)", 320),
            make_pie("Misc", 100),
        ]

    def test_update_target(self, pies):
        updated = update_pie_target_allocation(pies, "Growth (60%)", Decimal("70"))

        assert updated[0].target_allocation == Decimal("70")
        assert updated[1] is pies[1]
        assert pies[0].target_allocation is None

    def test_update_unknown_pie(self, pies):
        updated = update_pie_target_allocation(pies, "Bonds (10%)", Decimal("10"))

        assert all(new is old for new, old in zip(updated, pies))

    def test_apply_allocations(self, pies):
        updated = apply_pie_allocations(pies, [
            PieAllocation("Income (40%)", Decimal("20")),
            PieAllocation("Income (40%)", Decimal("30")),
        ])

        assert [p.target_allocation for p in updated] == [None, Decimal("30"), None]

    def test_apply_nothing(self, pies):
        assert apply_pie_allocations(pies, []) == pies
        assert apply_pie_allocations(pies, None) == pies

    def test_saved_target_overrides_name(self, pies):
        pies = apply_pie_allocations(pies, [
            PieAllocation("Growth (60%)", Decimal("70")),
            PieAllocation("Income (40%)", Decimal("30")),
        ])

        values, targets = calculate_current_allocation(pies)

        assert targets == {"Growth": Decimal("70"), "Income": Decimal("30")}
        assert values == {"Growth": Decimal("680"), "Income": Decimal("320")}

    def test_saved_target_on_unparseable_pie(self, pies):
        pies = update_pie_target_allocation(pies, "Misc", Decimal("10"))

        values, targets = calculate_current_allocation(pies)

        assert targets["Misc"] == Decimal("10")
        assert values["Misc"] == Decimal("100")

    def test_analysis_uses_saved_targets(self, pies):
        pies = update_pie_target_allocation(pies[:2], "Growth (60%)", Decimal("68"))
        pies = update_pie_target_allocation(pies, "Income (40%)", Decimal("32"))

        analysis = analyze_allocation(pies, summarize_pies(pies)).value

        assert analysis.allocation_differences == {"Growth": "0.00%", "Income": "0.00%"}
        assert analysis.rebalancing_recommended is False


class TestDuplicateCategories:
    """Tests for repeated category resolution."""

    @pytest.fixture
    def pies(self, make_pie):
        return [
            make_pie("Growth (40%)", 100),
            make_pie("Income (40%)", 600),
            make_pie("Growth (60%)", 300),
        ]

    def test_last_wins(self, pies):
        values, targets = calculate_current_allocation(pies, DuplicateCategoryPolicy.LAST_WINS)

        assert targets["Growth"] == Decimal("60")
        assert values["Growth"] == Decimal("400")

    def test_first_wins(self, pies):
        values, targets = calculate_current_allocation(pies, DuplicateCategoryPolicy.FIRST_WINS)

        assert targets["Growth"] == Decimal("40")
        assert values["Growth"] == Decimal("400")

    def test_reject(self, pies):
        with pytest.raises(DuplicateCategoryError, match="Growth"):
            calculate_current_allocation(pies, DuplicateCategoryPolicy.REJECT)

    def test_reject_in_analysis(self, pies):
        outcome = analyze_allocation(
            pies, summarize_pies(pies), duplicate_policy=DuplicateCategoryPolicy.REJECT
        )

        assert outcome.reason == FailureReason.VALIDATION


class TestDrift:
    """Tests for drift and the rebalancing flag."""

    def test_drift_is_target_minus_current(self):
        drift = calculate_allocation_drift(
            {"A": Decimal("50"), "B": Decimal("50")},
            {"A": Decimal("80"), "B": Decimal("20")},
        )

        assert drift == {"A": Decimal("-30"), "B": Decimal("30")}

    @pytest.mark.parametrize("difference, expected", [
        (Decimal("-5"), "-5.00%"),
        (Decimal("12.346"), "12.35%"),
        (Decimal("0"), "0.00%"),
    ])
    def test_format_difference(self, difference, expected):
        assert format_difference(difference) == expected

    @pytest.mark.parametrize("drift, recommended", [
        ({"A": Decimal("5"), "B": Decimal("-5")}, False),
        ({"A": Decimal("5.01")}, True),
        ({"A": Decimal("-7")}, True),
        ({}, False),
    ])
    def test_threshold(self, drift, recommended):
        assert is_rebalancing_recommended(drift, Decimal("5")) is recommended


class TestAnalyzeAllocation:
    """Tests for analyze_allocation."""

    def test_analysis(self, make_pie):
        pies = [
            make_pie("Growth (50%)", 800, dividend_yield=2),
            make_pie("Income (50%)", 200),
            make_pie("Misc", 500),
        ]

        outcome = analyze_allocation(pies, summarize_pies(pies), monthly_budget=Decimal("0"))

        assert outcome.ok
        analysis = outcome.value
        assert analysis.current_allocation == {"Growth": Decimal("80"), "Income": Decimal("20")}
        assert analysis.allocation_differences == {"Growth": "-30.00%", "Income": "30.00%"}
        assert analysis.rebalancing_recommended is True
        assert analysis.estimated_annual_dividend == Decimal("16")

    def test_missing_inputs(self, make_pie):
        pies = [make_pie("Growth (50%)", 800)]

        assert analyze_allocation(None, summarize_pies(pies)).reason == FailureReason.MISSING_DATA
        assert analyze_allocation(pies, None).reason == FailureReason.MISSING_DATA

    def test_summary_sentinel_ignored(self, make_pie):
        pies = [make_pie("Growth (100%)", 500), make_pie(OVERALL_SUMMARY_SENTINEL, 500)]

        analysis = analyze_allocation(pies, summarize_pies(pies)).value

        assert analysis.current_values == {"Growth": Decimal("500")}

    def test_no_categories(self, make_pie):
        pies = [make_pie("Misc", 100)]

        analysis = analyze_allocation(pies, summarize_pies(pies)).value

        assert analysis.target_allocation == {}
        assert analysis.allocation_differences == {}
        assert analysis.rebalancing_recommended is False

    def test_within_threshold(self, make_pie):
        pies = [make_pie("A (50%)", 520), make_pie("B (50%)", 480)]

        analysis = analyze_allocation(pies, summarize_pies(pies)).value

        assert analysis.allocation_differences == {"A": "-2.00%", "B": "2.00%"}
        assert analysis.rebalancing_recommended is False
