# src/hrrp/statistics/posthoc.py
"""Tukey HSD post-hoc summaries.

For each factor of the fitted model, and for the crossed factor cells,
all pairwise level comparisons are run and summarized as the fraction of
pairs whose adjusted p-value falls below alpha.
"""

import logging
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from statsmodels.stats.multicomp import pairwise_tukeyhsd

from ..schemas import PosthocSummary
from .variance import FittedModels

logger = logging.getLogger(__name__)


def tukey_summary(
    values: pd.Series,
    groups: pd.Series,
    term: str,
    alpha: float = 0.05,
) -> PosthocSummary:
    """Run Tukey HSD over ``groups`` and count significant pairs.

    Args:
        values: Response values.
        groups: Group label per observation (same index as ``values``).
        term: Name reported in the summary.
        alpha: Family-wise significance level.

    Returns:
        PosthocSummary; not applicable when fewer than two levels are
        observed.
    """
    mask = values.notna() & groups.notna()
    endog = values[mask].to_numpy(dtype=float)
    labels = groups[mask].astype(str).to_numpy()
    n_levels = len(np.unique(labels))

    if n_levels < 2:
        return PosthocSummary(
            term=term,
            n_levels=n_levels,
            alpha=alpha,
            applicable=False,
            notes=f"insufficient data: {n_levels} observed level(s)",
        )

    result = pairwise_tukeyhsd(endog, labels, alpha=alpha)
    pvalues = np.asarray(result.pvalues, dtype=float)
    n_pairs = len(pvalues)
    # Undefined p-values (no residual variance) never count as significant
    n_significant = int(np.sum(pvalues[~np.isnan(pvalues)] < alpha))

    notes = ""
    n_undefined = int(np.isnan(pvalues).sum())
    if n_undefined:
        notes = f"{n_undefined} pairs with undefined p-value"

    summary = PosthocSummary(
        term=term,
        n_levels=n_levels,
        n_pairs=n_pairs,
        n_significant=n_significant,
        fraction_significant=n_significant / n_pairs,
        alpha=alpha,
        notes=notes,
    )
    logger.info(f"Tukey HSD {summary}")
    return summary


def summarize_posthoc(
    fitted: Union[FittedModels, pd.DataFrame],
    factors: Optional[Sequence[str]] = None,
    response: Optional[str] = None,
    alpha: float = 0.05,
    include_interaction: bool = True,
) -> List[PosthocSummary]:
    """Tukey HSD summaries for every factor and their crossed cells.

    Args:
        fitted: Models from the variance analysis, or a prepared frame.
        factors: Factors to summarize (all model factors when None,
            including ones dropped from the model for having one level).
        response: Response column (required when ``fitted`` is a frame).
        alpha: Family-wise significance level.
        include_interaction: Also summarize the crossed factor cells.

    Returns:
        One PosthocSummary per factor, plus one for the interaction term
        when two or more factors are given.

    Example:
        >>> report, models = VarianceAnalyzer().run(view)
        >>> for s in summarize_posthoc(models):
        ...     print(s)
    """
    if isinstance(fitted, FittedModels):
        data = fitted.data
        response = response or fitted.response
        if factors is None:
            model_factors = set(fitted.factors) | set(fitted.dropped_factors)
            factors = [c for c in data.columns if c in model_factors]
    else:
        data = fitted
        if response is None or factors is None:
            raise ValueError("response and factors are required when passing a DataFrame")

    factors = list(factors)
    summaries = [
        tukey_summary(data[response], data[factor], factor, alpha=alpha)
        for factor in factors
    ]

    if include_interaction and len(factors) > 1:
        cells = data[factors[0]].astype(str)
        for factor in factors[1:]:
            cells = cells + ":" + data[factor].astype(str)
        cells = cells.where(data[factors].notna().all(axis=1))
        summaries.append(tukey_summary(data[response], cells, ":".join(factors), alpha=alpha))

    return summaries
