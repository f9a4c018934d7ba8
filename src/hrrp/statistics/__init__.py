"""Statistical analysis of the readmission ratio.

Modules:
    variance: Levene, two-way ANOVA, nested F-test, residual normality,
        Type-III ANOVA
    posthoc: Tukey HSD fraction-of-significant-pairs summaries
"""

from .variance import (
    STEP_ANOVA,
    STEP_COMPARISON,
    STEP_LEVENE,
    STEP_NORMALITY,
    STEP_ORDER,
    STEP_TYPE3,
    FittedModels,
    VarianceAnalyzer,
    run_variance_analysis,
)
from .posthoc import summarize_posthoc, tukey_summary

__all__ = [
    "STEP_ANOVA",
    "STEP_COMPARISON",
    "STEP_LEVENE",
    "STEP_NORMALITY",
    "STEP_ORDER",
    "STEP_TYPE3",
    "FittedModels",
    "VarianceAnalyzer",
    "run_variance_analysis",
    "summarize_posthoc",
    "tukey_summary",
]
