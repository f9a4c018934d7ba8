# src/hrrp/join.py
"""Join of normalized hospital and readmission tables.

Two distinct views are built from the same left outer join:

- ``build_summary_view``: every hospital, hospitals without measurements
  keep a single row with null measurement fields.
- ``build_analysis_view``: measured hospitals only, with the program
  filters (hospital type, excluded state, missing key, missing target)
  applied independently.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from omegaconf import DictConfig

from .errors import SchemaError
from .schemas import (
    PipelineWarning,
    ProgramStatus,
    RatioClass,
    WarningKind,
    categorical_dtype,
)

logger = logging.getLogger(__name__)

KEY = "hospital_id"
MEASURED = "measured"


@dataclass
class JoinFilters:
    """Post-join filters; each one can be switched off independently.

    Attributes:
        hospital_type: Keep only this hospital type (None disables).
        excluded_state: Drop hospitals in this state (None disables).
        drop_missing_key: Drop hospitals with no matching measurement row.
        drop_missing_target: Drop rows whose target metric is missing.
        target: Target metric column.
    """

    hospital_type: Optional[str] = "Acute Care Hospitals"
    excluded_state: Optional[str] = "MD"
    drop_missing_key: bool = True
    drop_missing_target: bool = True
    target: str = "excess_ratio"

    @classmethod
    def from_config(cls, cfg: DictConfig) -> "JoinFilters":
        jcfg = cfg.join
        return cls(
            hospital_type=jcfg.hospital_type,
            excluded_state=jcfg.excluded_state,
            drop_missing_key=bool(jcfg.drop_missing_key),
            drop_missing_target=bool(jcfg.drop_missing_target),
            target=jcfg.target,
        )


@dataclass
class JoinReport:
    """Row accounting and integrity warnings for one join."""

    n_hospitals: int = 0
    n_measurements: int = 0
    n_rows: int = 0
    unmatched_hospitals: List[str] = field(default_factory=list)
    orphan_measurements: List[str] = field(default_factory=list)
    warnings: List[PipelineWarning] = field(default_factory=list)


def assign_status(
    hospitals: pd.DataFrame,
    hospital_type: Optional[str] = "Acute Care Hospitals",
    excluded_state: Optional[str] = "MD",
) -> pd.DataFrame:
    """Add the program ``status`` column.

    A hospital is HRRP-monitored when its type matches ``hospital_type``
    and its state is not ``excluded_state``; otherwise it is exempt.
    """
    out = hospitals.copy()
    monitored = pd.Series(True, index=out.index)
    if hospital_type is not None:
        monitored &= out["hospital_type"].eq(hospital_type).fillna(False).astype(bool)
    if excluded_state is not None:
        monitored &= ~out["state"].eq(excluded_state).fillna(False).astype(bool)

    status = np.where(monitored, ProgramStatus.MONITORED.value, ProgramStatus.EXEMPT.value)
    out["status"] = pd.Categorical(status, dtype=categorical_dtype(ProgramStatus))
    return out


def classify_ratio(values: pd.Series) -> pd.Series:
    """Classify ratios into Excess (>= 1) and No excess (< 1); NaN stays missing."""
    labels = np.where(
        values >= 1.0, RatioClass.EXCESS.value, RatioClass.NO_EXCESS.value
    ).astype(object)
    labels[values.isna().to_numpy()] = np.nan
    return pd.Series(
        pd.Categorical(labels, dtype=categorical_dtype(RatioClass)),
        index=values.index,
        name="ratio_class",
    )


def join_datasets(
    hospitals: pd.DataFrame,
    readmissions: pd.DataFrame,
) -> Tuple[pd.DataFrame, JoinReport]:
    """Left outer join of hospitals (left) with readmission measurements.

    Args:
        hospitals: Normalized hospital table, one row per hospital.
        readmissions: Normalized readmission table.

    Returns:
        Tuple of (joined frame, JoinReport). The joined frame has one row
        per measurement plus one row for each hospital without
        measurements; ``measured`` marks rows with a matching measurement.

    Raises:
        SchemaError: If hospital identifiers are not unique.
    """
    report = JoinReport(n_hospitals=len(hospitals), n_measurements=len(readmissions))

    left = hospitals[hospitals[KEY].notna()]
    if len(left) < len(hospitals):
        logger.warning(f"Dropped {len(hospitals) - len(left)} hospitals without identifier")

    dup = left[KEY][left[KEY].duplicated()].unique().tolist()
    if dup:
        raise SchemaError(f"Hospital identifiers are not unique: {dup[:5]}", columns=[KEY])

    right_cols = [c for c in readmissions.columns if c == KEY or c not in left.columns]
    right = readmissions[right_cols]

    hospital_ids = set(left[KEY])
    measured_ids = set(right[KEY].dropna())

    orphans = right[~right[KEY].isin(hospital_ids)]
    report.orphan_measurements = sorted(orphans[KEY].dropna().astype(str).unique())
    if len(orphans):
        msg = (
            f"{len(orphans)} measurements have no matching hospital "
            f"({len(report.orphan_measurements)} identifiers)"
        )
        logger.warning(msg)
        report.warnings.append(
            PipelineWarning(
                kind=WarningKind.JOIN_INTEGRITY,
                message=msg,
                count=len(orphans),
                ids=report.orphan_measurements,
            )
        )

    report.unmatched_hospitals = sorted(hospital_ids - measured_ids)
    if report.unmatched_hospitals:
        msg = f"{len(report.unmatched_hospitals)} hospitals have no readmission measurements"
        logger.warning(msg)
        report.warnings.append(
            PipelineWarning(
                kind=WarningKind.JOIN_INTEGRITY,
                message=msg,
                count=len(report.unmatched_hospitals),
                ids=report.unmatched_hospitals,
            )
        )

    joined = left.merge(right, on=KEY, how="left", validate="one_to_many", indicator=True)
    joined[MEASURED] = joined["_merge"].eq("both")
    joined = joined.drop(columns="_merge")

    if "excess_ratio" in joined.columns:
        joined["ratio_class"] = classify_ratio(joined["excess_ratio"])

    report.n_rows = len(joined)
    logger.info(
        f"Joined {report.n_hospitals} hospitals with {report.n_measurements} "
        f"measurements into {report.n_rows} rows"
    )
    return joined, report


def build_summary_view(
    hospitals: pd.DataFrame,
    readmissions: pd.DataFrame,
    filters: Optional[JoinFilters] = None,
) -> Tuple[pd.DataFrame, JoinReport]:
    """Joined view over all hospitals, measured or not.

    ``filters`` is only used to derive the program status; no rows are
    removed.
    """
    filters = filters if filters is not None else JoinFilters()
    with_status = assign_status(hospitals, filters.hospital_type, filters.excluded_state)
    return join_datasets(with_status, readmissions)


def apply_filters(joined: pd.DataFrame, filters: JoinFilters) -> pd.DataFrame:
    """Apply the enabled post-join filters to a joined frame."""
    view = joined
    if filters.hospital_type is not None:
        view = view[view["hospital_type"].eq(filters.hospital_type).fillna(False).astype(bool)]
        logger.debug(f"Hospital type filter -> {len(view)} rows")
    if filters.excluded_state is not None:
        view = view[~view["state"].eq(filters.excluded_state).fillna(False).astype(bool)]
        logger.debug(f"State exclusion filter -> {len(view)} rows")
    if filters.drop_missing_key:
        view = view[view[MEASURED]]
        logger.debug(f"Missing key filter -> {len(view)} rows")
    if filters.drop_missing_target:
        if filters.target not in view.columns:
            raise SchemaError(f"Target column {filters.target!r} not in joined table", columns=[filters.target])
        view = view[view[filters.target].notna()]
        logger.debug(f"Missing target filter -> {len(view)} rows")
    return view.reset_index(drop=True)


def build_analysis_view(
    hospitals: pd.DataFrame,
    readmissions: pd.DataFrame,
    filters: Optional[JoinFilters] = None,
) -> Tuple[pd.DataFrame, JoinReport]:
    """Joined view over measured hospitals only, with filters applied.

    Returns:
        Tuple of (analysis view, JoinReport of the underlying join).
    """
    filters = filters if filters is not None else JoinFilters()
    joined, report = build_summary_view(hospitals, readmissions, filters)
    view = apply_filters(joined, filters)
    logger.info(f"Analysis view: {len(view)} rows from {view[KEY].nunique()} hospitals")
    return view, report
