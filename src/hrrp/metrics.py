# src/hrrp/metrics.py
"""Derived readmission metrics and reshaping.

Two independent transforms over the joined data:

- Wide pivot for the hospital summary: one column per condition,
  ``has_any_report``, ``n_reported`` and the NaN-skipping ``mean_ratio``.
- Long form for distribution charts: comparison metrics melted to
  (hospital, metric, category) triples and turned into within-group
  percentages, parameterized by the grouping column.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import SchemaError
from .schemas import Condition, PipelineWarning, WarningKind, levels

logger = logging.getLogger(__name__)

KEY = "hospital_id"

# Hospital attributes carried into the summary table when present
SUMMARY_ATTRIBUTES = [
    "hospital_name",
    "city",
    "state",
    "hospital_type",
    "ownership",
    "status",
    "overall_rating",
    "location",
]


def pivot_ratios_wide(
    joined: pd.DataFrame,
    value: str = "excess_ratio",
) -> pd.DataFrame:
    """Reshape condition/ratio pairs to one row per hospital.

    Args:
        joined: Joined table (summary view), one row per measurement plus
            one row per hospital without measurements.
        value: Measurement column to spread.

    Returns:
        DataFrame with ``hospital_id``, one column per condition code in
        declared order, ``n_reported``, ``has_any_report`` and
        ``mean_ratio``. ``mean_ratio`` is NaN (never zero) for hospitals
        without any reported ratio.
    """
    for col in (KEY, "condition", value):
        if col not in joined.columns:
            raise SchemaError(f"Column {col!r} missing from joined table", columns=[col])

    codes = levels(Condition)
    hospital_ids = pd.unique(joined[KEY].dropna())

    measured = joined[joined["condition"].notna()]
    if measured.empty:
        wide = pd.DataFrame(index=hospital_ids, columns=codes, dtype=float)
    else:
        wide = (
            measured.groupby([KEY, "condition"], observed=True)[value]
            .mean()
            .unstack("condition")
        )
        wide.columns = [str(c) for c in wide.columns]
    wide = wide.reindex(index=hospital_ids, columns=codes).astype(float)

    present = wide[codes].notna()
    wide["n_reported"] = present.sum(axis=1).astype(int)
    wide["has_any_report"] = present.any(axis=1)
    wide["mean_ratio"] = wide[codes].mean(axis=1, skipna=True).where(wide["has_any_report"])

    wide.index.name = KEY
    return wide.reset_index()


def build_hospital_summary(
    joined: pd.DataFrame,
    value: str = "excess_ratio",
) -> Tuple[pd.DataFrame, List[PipelineWarning]]:
    """Per-hospital summary view for the table renderer.

    Returns:
        Tuple of (summary frame, warnings). A ``DerivedMetricUndefined``
        warning counts hospitals whose ``mean_ratio`` is undefined.
    """
    wide = pivot_ratios_wide(joined, value=value)

    attrs = [c for c in SUMMARY_ATTRIBUTES if c in joined.columns]
    hospitals = joined.drop_duplicates(subset=[KEY])[[KEY] + attrs]
    summary = hospitals.merge(wide, on=KEY, how="right", validate="one_to_one")

    warnings = []
    undefined = summary.loc[~summary["has_any_report"], KEY].astype(str).tolist()
    if undefined:
        msg = f"mean_ratio undefined for {len(undefined)} hospitals without reported ratios"
        logger.info(msg)
        warnings.append(
            PipelineWarning(
                kind=WarningKind.DERIVED_METRIC_UNDEFINED,
                message=msg,
                count=len(undefined),
                ids=undefined,
            )
        )

    logger.info(
        f"Hospital summary: {len(summary)} hospitals, "
        f"{int(summary['has_any_report'].sum())} with at least one report"
    )
    return summary, warnings


def melt_comparisons(
    hospitals: pd.DataFrame,
    metrics: Sequence[str],
    group_by: str = "status",
) -> pd.DataFrame:
    """Reshape comparison metric columns from wide to long.

    Args:
        hospitals: Hospital-level table. Repeated hospital rows (e.g. a
            joined table) are collapsed to one row per hospital.
        metrics: Comparison metric columns to melt.
        group_by: Grouping column carried along.

    Returns:
        DataFrame with columns (``hospital_id``, group_by, ``metric``,
        ``category``); rows with a missing category or group are dropped.
    """
    metrics = list(metrics)
    missing = [c for c in [KEY, group_by] + metrics if c not in hospitals.columns]
    if missing:
        raise SchemaError(f"Columns missing for long-form reshape: {missing}", columns=missing)

    base = hospitals.drop_duplicates(subset=[KEY])
    long = base[[KEY, group_by] + metrics].melt(
        id_vars=[KEY, group_by],
        value_vars=metrics,
        var_name="metric",
        value_name="category",
    )

    # Restore the categorical dtype only when every metric shares the same one
    first = base[metrics[0]].dtype
    if isinstance(first, pd.CategoricalDtype) and all(base[m].dtype == first for m in metrics):
        long["category"] = long["category"].astype(object).astype(first)
    long["metric"] = pd.Categorical(long["metric"], categories=metrics, ordered=True)

    long = long.dropna(subset=["category", group_by]).reset_index(drop=True)
    return long


def comparison_percentages(
    hospitals: pd.DataFrame,
    metrics: Sequence[str],
    group_by: str = "status",
) -> pd.DataFrame:
    """Within-group category percentages for each comparison metric.

    Counts hospitals per (group, metric, category) and divides by the
    (group, metric) total, so percentages sum to 100 within each group
    and metric. Missing categories are excluded from counts and totals.

    Example:
        >>> pct = comparison_percentages(hospitals, ["mortality"], group_by="status")
        >>> pct.groupby(["status", "metric"], observed=True)["percent"].sum()
    """
    long = melt_comparisons(hospitals, metrics, group_by=group_by)

    counts = (
        long.groupby([group_by, "metric", "category"], observed=True)
        .size()
        .rename("count")
        .reset_index()
    )
    totals = counts.groupby([group_by, "metric"], observed=True)["count"].transform("sum")
    counts["percent"] = counts["count"] / totals * 100.0
    return counts


def ratio_distribution(
    joined: pd.DataFrame,
    by: str,
    value: str = "excess_ratio",
) -> pd.DataFrame:
    """Count, mean, median and standard deviation of ``value`` per level of ``by``."""
    if by not in joined.columns:
        raise SchemaError(f"Grouping column {by!r} missing", columns=[by])
    data = joined[joined[value].notna()]
    return (
        data.groupby(by, observed=True)[value]
        .agg(["count", "mean", "median", "std"])
        .reset_index()
    )


def check_ratio_consistency(
    readmissions: pd.DataFrame,
    rtol: float = 1e-3,
    atol: float = 1e-4,
) -> pd.DataFrame:
    """Rows where the excess ratio differs from predicted / expected.

    Only rows with all three values present and a non-zero expected rate
    are checked.

    Returns:
        Offending rows with an added ``implied_ratio`` column.
    """
    cols = ["excess_ratio", "predicted_rate", "expected_rate"]
    checked = readmissions.dropna(subset=cols)
    checked = checked[checked["expected_rate"] != 0].copy()

    checked["implied_ratio"] = checked["predicted_rate"] / checked["expected_rate"]
    ok = np.isclose(checked["excess_ratio"], checked["implied_ratio"], rtol=rtol, atol=atol)

    bad = checked[~ok]
    if len(bad):
        logger.warning(f"{len(bad)} rows with excess ratio inconsistent with predicted/expected")
    return bad
