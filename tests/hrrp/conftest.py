# tests/hrrp/conftest.py
"""Shared fixtures for hrrp tests.

The raw fixtures mimic the CMS exports as loaded from CSV: every value is
text and missing values use the "Not Available" sentinel.

Layout of ``raw_hospitals`` / ``raw_readmissions``:
    - 30 acute-care hospitals (ids 010001..010030), ratings 1-5 (six each),
      all six conditions measured; hospital 010001 has "Not Available"
      for its PN ratio.
    - 210001: acute-care hospital in MD (exempt), all conditions measured.
    - 011300: critical access hospital without measurements, rating and
      location "Not Available".
    - One AMI measurement for an unknown hospital 999999.
"""

import tempfile
from pathlib import Path
from typing import Dict, Generator, List

import numpy as np
import pandas as pd
import pytest
import yaml

CONDITION_EFFECTS = {
    "READM-30-AMI-HRRP": 0.01,
    "READM-30-CABG-HRRP": -0.02,
    "READM-30-COPD-HRRP": 0.0,
    "READM-30-HF-HRRP": 0.015,
    "READM-30-HIP-KNEE-HRRP": -0.03,
    "READM-30-PN-HRRP": 0.005,
}

COMPARISON_COLUMNS = [
    "Mortality national comparison",
    "Safety of care national comparison",
    "Readmission national comparison",
    "Patient experience national comparison",
    "Effectiveness of care national comparison",
    "Timeliness of care national comparison",
    "Efficient use of medical imaging national comparison",
]

# Raw spellings as exported (lower-case "the"), plus the sentinel
COMPARISON_VALUES = [
    "Above the national average",
    "Same as the national average",
    "Below the national average",
    "Not Available",
]

STATES = ["AL", "CA", "TX", "NY", "FL"]

N_ACUTE = 30


def _hospital_row(hospital_id: str, name: str, state: str, hospital_type: str,
                  rating: str, location: str, i: int) -> Dict[str, str]:
    row = {
        "Provider ID": hospital_id,
        "Hospital Name": name,
        "Address": f"{100 + i} Main Street",
        "City": "Springfield",
        "State": state,
        "ZIP Code": f"{35000 + i}",
        "County Name": "Franklin",
        "Phone Number": "5550100",
        "Hospital Type": hospital_type,
        "Hospital Ownership": "Voluntary non-profit - Private",
        "Emergency Services": "Yes" if i % 2 == 0 else "No",
        "Hospital overall rating": rating,
        "Location": location,
    }
    for j, col in enumerate(COMPARISON_COLUMNS):
        row[col] = COMPARISON_VALUES[(i + j) % len(COMPARISON_VALUES)]
    return row


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def acute_ids() -> List[str]:
    """Identifiers of the 30 monitored acute-care hospitals."""
    return [f"{10001 + i:06d}" for i in range(N_ACUTE)]


@pytest.fixture
def raw_hospitals(acute_ids: List[str]) -> pd.DataFrame:
    """Raw Hospital General Information table (all text)."""
    rows = []
    for i, hospital_id in enumerate(acute_ids):
        lon = -120.0 + i
        lat = 30.0 + i * 0.5
        rows.append(
            _hospital_row(
                hospital_id,
                f"Hospital {i:02d}",
                STATES[i % len(STATES)],
                "Acute Care Hospitals",
                str(i % 5 + 1),
                f"POINT ({lon} {lat})",
                i,
            )
        )
    rows.append(
        _hospital_row("210001", "Bay Medical", "MD", "Acute Care Hospitals", "4",
                      "POINT (-76.6 39.3)", N_ACUTE)
    )
    rows.append(
        _hospital_row("011300", "County Critical Access", "AL", "Critical Access Hospitals",
                      "Not Available", "Not Available", N_ACUTE + 1)
    )
    return pd.DataFrame(rows)


@pytest.fixture
def raw_readmissions(acute_ids: List[str]) -> pd.DataFrame:
    """Raw readmission measures table (all text)."""
    rng = np.random.RandomState(0)
    rows = []
    measured = [(hid, i % 5 + 1) for i, hid in enumerate(acute_ids)] + [("210001", 4)]

    for i, (hospital_id, rating) in enumerate(measured):
        for measure, effect in CONDITION_EFFECTS.items():
            ratio = round(1.0 + 0.02 * (3 - rating) + effect + rng.normal(0.0, 0.05), 4)
            expected = 15.0 + 0.1 * i
            row = {
                "Hospital Name": "ignored",
                "Provider Number": hospital_id,
                "State": "XX",
                "Measure Name": measure,
                "Number of Discharges": str(100 + 5 * i),
                "Footnote": "",
                "Excess Readmission Ratio": f"{ratio:.4f}",
                "Predicted Readmission Rate": f"{ratio * expected:.6f}",
                "Expected Readmission Rate": f"{expected:.4f}",
                "Number of Readmissions": str(10 + i),
                "Start Date": "07/01/2013",
                "End Date": "06/30/2016",
            }
            rows.append(row)

    # 010001 / PN: suppressed measurement
    for row in rows:
        if row["Provider Number"] == acute_ids[0] and row["Measure Name"] == "READM-30-PN-HRRP":
            row["Number of Discharges"] = "Too Few to Report"
            row["Excess Readmission Ratio"] = "Not Available"
            row["Predicted Readmission Rate"] = "Not Available"
            row["Expected Readmission Rate"] = "Not Available"
            row["Number of Readmissions"] = "Not Available"

    rows.append({
        "Hospital Name": "Unknown",
        "Provider Number": "999999",
        "State": "XX",
        "Measure Name": "READM-30-AMI-HRRP",
        "Number of Discharges": "50",
        "Footnote": "",
        "Excess Readmission Ratio": "1.0100",
        "Predicted Readmission Rate": "15.150000",
        "Expected Readmission Rate": "15.0000",
        "Number of Readmissions": "8",
        "Start Date": "07/01/2013",
        "End Date": "06/30/2016",
    })
    return pd.DataFrame(rows)


@pytest.fixture
def hospitals(raw_hospitals: pd.DataFrame) -> pd.DataFrame:
    """Normalized hospital table."""
    from hrrp.normalize import normalize_hospitals

    return normalize_hospitals(raw_hospitals)


@pytest.fixture
def readmissions(raw_readmissions: pd.DataFrame) -> pd.DataFrame:
    """Normalized readmission table."""
    from hrrp.normalize import normalize_readmissions

    return normalize_readmissions(raw_readmissions)


@pytest.fixture
def analysis_view(hospitals: pd.DataFrame, readmissions: pd.DataFrame) -> pd.DataFrame:
    """Measured, filtered analysis view of the fixture tables."""
    from hrrp.join import build_analysis_view

    view, _ = build_analysis_view(hospitals, readmissions)
    return view


@pytest.fixture
def sample_config_dict() -> Dict:
    """Provide a user configuration that overrides a few defaults."""
    return {
        "join": {"excluded_state": "MD"},
        "analysis": {"alpha": 0.01, "normality_method": "anderson"},
        "geo": {"kind": "quantile", "n_buckets": 4},
    }


@pytest.fixture
def sample_config_file(temp_dir: Path, sample_config_dict: Dict) -> Path:
    """Create a sample config file and return its path."""
    config_path = temp_dir / "config.yaml"
    with open(config_path, "w") as f:
        yaml.dump(sample_config_dict, f)
    return config_path


@pytest.fixture
def input_files(temp_dir: Path, raw_hospitals: pd.DataFrame, raw_readmissions: pd.DataFrame) -> Dict[str, Path]:
    """Write the raw fixture tables to CSV files."""
    hospitals_path = temp_dir / "hospitals.csv"
    readmissions_path = temp_dir / "readmissions.csv"
    raw_hospitals.to_csv(hospitals_path, index=False)
    raw_readmissions.to_csv(readmissions_path, index=False)
    return {"hospitals": hospitals_path, "readmissions": readmissions_path}
