# tests/hrrp/test_normalize.py
"""Tests for schema normalization."""

import numpy as np
import pandas as pd
import pytest

from hrrp.config import default_config
from hrrp.errors import SchemaError
from hrrp.normalize import (
    coerce_boolean,
    coerce_numeric,
    coerce_ordered,
    map_tokens,
    normalize_hospitals,
    normalize_ids,
    normalize_readmissions,
    rename_columns,
    replace_sentinels,
)
from hrrp.schemas import Condition, NationalComparison, OverallRating, levels


class TestRenameColumns:
    """Tests for rename_columns."""

    def test_rename_and_prune(self):
        """Test that mapped columns are renamed and the rest dropped."""
        raw = pd.DataFrame({"Provider ID": ["1"], "Phone Number": ["555"], "State": ["AL"]})
        out = rename_columns(raw, {"Provider ID": "hospital_id", "State": "state"})

        assert list(out.columns) == ["hospital_id", "state"]

    def test_no_prune_keeps_extra_columns(self):
        """Test prune=False keeps unmapped columns."""
        raw = pd.DataFrame({"Provider ID": ["1"], "Phone Number": ["555"]})
        out = rename_columns(raw, {"Provider ID": "hospital_id"}, prune=False)

        assert set(out.columns) == {"hospital_id", "Phone Number"}

    def test_missing_required_column(self):
        """Test SchemaError names the missing column."""
        raw = pd.DataFrame({"Provider ID": ["1"]})

        with pytest.raises(SchemaError) as exc_info:
            rename_columns(raw, {"Provider ID": "hospital_id"}, required=["hospital_id", "state"])

        assert exc_info.value.columns == ["state"]

    def test_ambiguous_aliases(self):
        """Test two raw aliases for the same column are rejected."""
        raw = pd.DataFrame({"Provider ID": ["1"], "Facility ID": ["1"]})
        mapping = {"Provider ID": "hospital_id", "Facility ID": "hospital_id"}

        with pytest.raises(SchemaError, match="Ambiguous"):
            rename_columns(raw, mapping)

    def test_input_not_mutated(self):
        """Test the raw frame keeps its columns."""
        raw = pd.DataFrame({"Provider ID": ["1"]})
        rename_columns(raw, {"Provider ID": "hospital_id"})

        assert list(raw.columns) == ["Provider ID"]


class TestReplaceSentinels:
    """Tests for replace_sentinels."""

    def test_exact_match_only(self):
        """Test only exact, case-sensitive matches become missing."""
        df = pd.DataFrame({"a": ["Not Available", "not available", "Not Available ", "x"]})
        out = replace_sentinels(df, ["Not Available"])

        assert out["a"].isna().tolist() == [True, False, False, False]

    def test_every_column(self):
        """Test sentinels are replaced in all columns."""
        df = pd.DataFrame({"a": ["Not Available", "1"], "b": ["2", "Not Available"]})
        out = replace_sentinels(df, ["Not Available"])

        assert out.isna().sum().sum() == 2

    def test_idempotent(self):
        """Test replacing twice equals replacing once."""
        df = pd.DataFrame({"a": ["Not Available", "1", None], "b": [1.0, np.nan, 3.0]})
        once = replace_sentinels(df, ["Not Available"])
        twice = replace_sentinels(once, ["Not Available"])

        pd.testing.assert_frame_equal(once, twice)


class TestCoercions:
    """Tests for numeric, boolean, ordered and token coercions."""

    def test_coerce_numeric(self):
        """Test parse failures become NaN."""
        df = pd.DataFrame({"n": ["1.5", "Too Few to Report", None]})
        out = coerce_numeric(df, ["n"])

        assert out["n"].dtype == float
        assert out["n"].iloc[0] == 1.5
        assert out["n"].iloc[1:].isna().all()

    def test_coerce_boolean(self):
        """Test Yes/No/True/False tokens and bools."""
        df = pd.DataFrame({"e": ["Yes", "No", "TRUE", False, None]})
        out = coerce_boolean(df, ["e"])

        assert str(out["e"].dtype) == "boolean"
        assert out["e"].tolist()[:4] == [True, False, True, False]
        assert pd.isna(out["e"].iloc[4])

    def test_coerce_ordered_rating(self):
        """Test ratings become an ordered categorical; numbers and unknowns handled."""
        df = pd.DataFrame({"r": ["3", 5.0, "9", None]})
        out = coerce_ordered(df, "r", OverallRating)

        assert out["r"].cat.ordered
        assert out["r"].cat.categories.tolist() == levels(OverallRating)
        assert out["r"].iloc[0] == "3"
        assert out["r"].iloc[1] == "5"
        assert out["r"].iloc[2:].isna().all()

    def test_coerce_ordered_title_case(self):
        """Test comparison categories are title-cased before matching."""
        df = pd.DataFrame({"m": ["Above the national average", "below the national average"]})
        out = coerce_ordered(df, "m", NationalComparison, title_case=True)

        assert out["m"].tolist() == [
            NationalComparison.ABOVE.value,
            NationalComparison.BELOW.value,
        ]
        assert out["m"].cat.categories.tolist() == levels(NationalComparison)

    def test_map_tokens(self):
        """Test raw measure names map to condition codes via the table."""
        df = pd.DataFrame({"c": ["READM-30-HIP-KNEE-HRRP", "HF", "READM-30-XYZ"]})
        out = map_tokens(df, "c", {"READM-30-HIP-KNEE-HRRP": "HIP-KNEE"}, Condition)

        assert out["c"].iloc[0] == "HIP-KNEE"
        assert out["c"].iloc[1] == "HF"
        assert pd.isna(out["c"].iloc[2])
        assert out["c"].cat.categories.tolist() == levels(Condition)

    def test_normalize_ids_pads_numeric(self):
        """Test numeric identifiers regain their leading zeros."""
        df = pd.DataFrame({"hospital_id": [10001, "010001", "05A123", None]})
        out = normalize_ids(df)

        assert out["hospital_id"].tolist()[:3] == ["010001", "010001", "05A123"]
        assert pd.isna(out["hospital_id"].iloc[3])


class TestNormalizeHospitals:
    """Tests for normalize_hospitals."""

    def test_columns_and_types(self, raw_hospitals: pd.DataFrame):
        """Test renamed columns and coerced types."""
        out = normalize_hospitals(raw_hospitals)

        assert "Phone Number" not in out.columns
        assert out["hospital_id"].tolist()[:2] == ["010001", "010002"]
        assert str(out["emergency_services"].dtype) == "boolean"
        assert out["overall_rating"].cat.ordered
        assert out["mortality"].cat.categories.tolist() == levels(NationalComparison)

    def test_sentinel_becomes_missing(self, raw_hospitals: pd.DataFrame):
        """Test "Not Available" rating and location normalize to missing."""
        out = normalize_hospitals(raw_hospitals).set_index("hospital_id")

        assert pd.isna(out.loc["011300", "overall_rating"])
        assert pd.isna(out.loc["011300", "location"])

    def test_comparison_not_available_is_missing(self, raw_hospitals: pd.DataFrame):
        """Test "Not Available" comparison values normalize to missing."""
        out = normalize_hospitals(raw_hospitals)
        raw_na = (raw_hospitals["Mortality national comparison"] == "Not Available").sum()

        assert raw_na > 0
        assert out["mortality"].isna().sum() == raw_na

    def test_idempotent(self, raw_hospitals: pd.DataFrame):
        """Test normalizing twice equals normalizing once."""
        once = normalize_hospitals(raw_hospitals)
        twice = normalize_hospitals(once)

        pd.testing.assert_frame_equal(once, twice)

    def test_missing_configured_column(self, raw_hospitals: pd.DataFrame):
        """Test a missing required column is fatal."""
        raw = raw_hospitals.drop(columns=["Hospital overall rating"])

        with pytest.raises(SchemaError) as exc_info:
            normalize_hospitals(raw)

        assert "overall_rating" in exc_info.value.columns

    def test_configured_sentinels(self, raw_hospitals: pd.DataFrame):
        """Test additional sentinel tokens from configuration."""
        cfg = default_config()
        cfg.normalize.sentinels = ["Not Available", "Springfield"]
        out = normalize_hospitals(raw_hospitals, cfg)

        assert out["city"].isna().all()


class TestNormalizeReadmissions:
    """Tests for normalize_readmissions."""

    def test_columns_and_types(self, raw_readmissions: pd.DataFrame):
        """Test measure names become condition codes and metrics become floats."""
        out = normalize_readmissions(raw_readmissions)

        assert set(out["condition"].dropna()) == set(levels(Condition))
        assert out["excess_ratio"].dtype == float
        assert out["discharges"].dtype == float
        assert pd.api.types.is_datetime64_any_dtype(out["start_date"])
        assert "Footnote" not in out.columns

    def test_suppressed_values(self, raw_readmissions: pd.DataFrame):
        """Test "Not Available" and "Too Few to Report" become NaN."""
        out = normalize_readmissions(raw_readmissions)
        row = out[(out["hospital_id"] == "010001") & (out["condition"] == "PN")].iloc[0]

        assert np.isnan(row["excess_ratio"])
        assert np.isnan(row["discharges"])

    def test_idempotent(self, raw_readmissions: pd.DataFrame):
        """Test normalizing twice equals normalizing once."""
        once = normalize_readmissions(raw_readmissions)
        twice = normalize_readmissions(once)

        pd.testing.assert_frame_equal(once, twice)
