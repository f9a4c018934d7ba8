# tests/hrrp/test_metrics.py
"""Tests for derived metrics and reshaping."""

import numpy as np
import pandas as pd
import pytest

from hrrp.join import build_summary_view
from hrrp.metrics import (
    build_hospital_summary,
    check_ratio_consistency,
    comparison_percentages,
    melt_comparisons,
    pivot_ratios_wide,
    ratio_distribution,
)
from hrrp.schemas import Condition, NationalComparison, WarningKind, categorical_dtype, levels


@pytest.fixture
def three_hospitals() -> pd.DataFrame:
    """Joined rows for three hospitals reporting {0.9, 1.1, missing} for HF."""
    return pd.DataFrame({
        "hospital_id": ["A", "B", "C"],
        "hospital_name": ["Alpha", "Beta", "Gamma"],
        "condition": pd.Categorical(["HF", "HF", "HF"], dtype=categorical_dtype(Condition)),
        "excess_ratio": [0.9, 1.1, np.nan],
    })


@pytest.fixture
def summary_view(hospitals: pd.DataFrame, readmissions: pd.DataFrame) -> pd.DataFrame:
    view, _ = build_summary_view(hospitals, readmissions)
    return view


class TestPivotRatiosWide:
    """Tests for the wide per-hospital pivot."""

    def test_three_hospital_scenario(self, three_hospitals: pd.DataFrame):
        """Test the NaN-skipping mean and report flags for {0.9, 1.1, missing}."""
        wide = pivot_ratios_wide(three_hospitals).set_index("hospital_id")

        assert wide["has_any_report"].tolist() == [True, True, False]
        assert wide.loc["A", "mean_ratio"] == pytest.approx(0.9)
        assert wide.loc["B", "mean_ratio"] == pytest.approx(1.1)
        assert np.isnan(wide.loc["C", "mean_ratio"])
        # Condition-level mean over hospitals skips the missing ratio
        assert wide["HF"].mean() == pytest.approx(1.0)

    def test_condition_columns_in_declared_order(self, three_hospitals: pd.DataFrame):
        """Test one column per condition code in enum order."""
        wide = pivot_ratios_wide(three_hospitals)
        codes = levels(Condition)

        assert [c for c in wide.columns if c in codes] == codes
        assert wide["AMI"].isna().all()

    def test_unreported_hospital_mean_is_nan(self, summary_view: pd.DataFrame):
        """Test a hospital without measurements has NaN (not zero) mean_ratio."""
        wide = pivot_ratios_wide(summary_view).set_index("hospital_id")

        assert np.isnan(wide.loc["011300", "mean_ratio"])
        assert wide.loc["011300", "n_reported"] == 0
        assert not wide.loc["011300", "has_any_report"]
        assert wide.loc["010001", "n_reported"] == 5
        assert wide.loc["010002", "n_reported"] == 6

    def test_mean_matches_row_mean(self, summary_view: pd.DataFrame):
        """Test mean_ratio equals the mean of the reported conditions."""
        wide = pivot_ratios_wide(summary_view).set_index("hospital_id")
        expected = (
            summary_view[summary_view["hospital_id"] == "010003"]["excess_ratio"].mean()
        )

        assert wide.loc["010003", "mean_ratio"] == pytest.approx(expected)


class TestHospitalSummary:
    """Tests for build_hospital_summary."""

    def test_one_row_per_hospital(self, summary_view: pd.DataFrame, hospitals: pd.DataFrame):
        """Test one row per hospital with display attributes."""
        summary, _ = build_hospital_summary(summary_view)

        assert len(summary) == len(hospitals)
        assert summary["hospital_id"].is_unique
        for col in ("hospital_name", "state", "status", "mean_ratio"):
            assert col in summary.columns

    def test_undefined_mean_warning(self, summary_view: pd.DataFrame):
        """Test a DerivedMetricUndefined warning counts unreported hospitals."""
        _, warnings = build_hospital_summary(summary_view)

        assert len(warnings) == 1
        assert warnings[0].kind == WarningKind.DERIVED_METRIC_UNDEFINED
        assert warnings[0].count == 1
        assert warnings[0].ids == ["011300"]


class TestComparisons:
    """Tests for the long-form comparison reshaping."""

    def test_melt_drops_missing(self, summary_view: pd.DataFrame):
        """Test "Not Available" categories never reach the long form."""
        long = melt_comparisons(summary_view, ["mortality", "safety"])

        assert long["category"].notna().all()
        assert set(long.columns) == {"hospital_id", "status", "metric", "category"}
        # One row per hospital and non-missing metric, despite repeated joined rows
        assert not long.duplicated(["hospital_id", "metric"]).any()

    def test_melt_mixed_category_sets(self):
        """Test metrics with different category sets keep all their values."""
        hospitals = pd.DataFrame({
            "hospital_id": ["1", "2"],
            "status": ["HRRP-monitored"] * 2,
            "mortality": pd.Categorical(
                [NationalComparison.ABOVE.value, NationalComparison.BELOW.value],
                dtype=categorical_dtype(NationalComparison),
            ),
            "tier": pd.Categorical(["gold", "silver"]),
        })
        long = melt_comparisons(hospitals, ["mortality", "tier"])

        assert len(long) == 4
        assert set(long.loc[long["metric"] == "tier", "category"]) == {"gold", "silver"}

    def test_percentages_sum_to_100(self, summary_view: pd.DataFrame):
        """Test percentages sum to 100 within every (group, metric)."""
        metrics = ["mortality", "safety", "readmission", "timeliness"]
        pct = comparison_percentages(summary_view, metrics, group_by="status")
        sums = pct.groupby(["status", "metric"], observed=True)["percent"].sum()

        assert np.allclose(sums.to_numpy(), 100.0)
        assert set(pct["category"]) <= set(levels(NationalComparison))

    def test_not_available_excluded_from_totals(self):
        """Test a "Not Available" record is not counted in any group total."""
        hospitals = pd.DataFrame({
            "hospital_id": ["1", "2", "3"],
            "status": ["HRRP-monitored"] * 3,
            "mortality": pd.Categorical(
                [NationalComparison.ABOVE.value, NationalComparison.BELOW.value, np.nan],
                dtype=categorical_dtype(NationalComparison),
            ),
        })
        pct = comparison_percentages(hospitals, ["mortality"])

        assert pct["count"].sum() == 2
        assert pct["percent"].tolist() == [50.0, 50.0]

    def test_group_by_parameter(self, summary_view: pd.DataFrame):
        """Test any grouping column can be used."""
        pct = comparison_percentages(summary_view, ["mortality"], group_by="state")
        sums = pct.groupby(["state", "metric"], observed=True)["percent"].sum()

        assert np.allclose(sums.to_numpy(), 100.0)

    def test_missing_metric_column(self, summary_view: pd.DataFrame):
        """Test a missing metric column is a schema error."""
        from hrrp.errors import SchemaError

        with pytest.raises(SchemaError):
            melt_comparisons(summary_view, ["not_a_metric"])


class TestRatioChecks:
    """Tests for ratio distribution and consistency."""

    def test_distribution_by_condition(self, three_hospitals: pd.DataFrame):
        """Test per-condition statistics skip missing ratios."""
        dist = ratio_distribution(three_hospitals, by="condition").set_index("condition")

        assert dist.loc["HF", "count"] == 2
        assert dist.loc["HF", "mean"] == pytest.approx(1.0)

    def test_consistent_fixture(self, readmissions: pd.DataFrame):
        """Test the fixture ratios match predicted / expected."""
        assert check_ratio_consistency(readmissions).empty

    def test_inconsistent_row_flagged(self):
        """Test a ratio that disagrees with predicted / expected is returned."""
        df = pd.DataFrame({
            "excess_ratio": [1.0, 1.5, np.nan],
            "predicted_rate": [15.0, 15.0, 15.0],
            "expected_rate": [15.0, 15.0, 15.0],
        })
        bad = check_ratio_consistency(df)

        assert len(bad) == 1
        assert bad["implied_ratio"].iloc[0] == pytest.approx(1.0)
