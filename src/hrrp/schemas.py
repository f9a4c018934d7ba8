# src/hrrp/schemas.py
"""Enumerations and result records shared across the pipeline.

Every categorical ordering used by the pipeline is declared here exactly
once. ``categorical_dtype`` turns an enum into an ordered pandas dtype so
that display code and statistical models see the same level order.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type

import pandas as pd


class OverallRating(str, Enum):
    """Hospital overall star rating."""

    ONE = "1"
    TWO = "2"
    THREE = "3"
    FOUR = "4"
    FIVE = "5"


class NationalComparison(str, Enum):
    """Comparison of a hospital measure group against the national average."""

    ABOVE = "Above The National Average"
    SAME = "Same As The National Average"
    BELOW = "Below The National Average"


class Condition(str, Enum):
    """Conditions and procedures covered by the readmission program."""

    AMI = "AMI"
    CABG = "CABG"
    COPD = "COPD"
    HF = "HF"
    HIP_KNEE = "HIP-KNEE"
    PN = "PN"


class ProgramStatus(str, Enum):
    """Whether a hospital's payments are subject to the readmission penalty."""

    MONITORED = "HRRP-monitored"
    EXEMPT = "Exempt"


class RatioClass(str, Enum):
    """Two-level classification of the excess readmission ratio."""

    EXCESS = "Excess"  # ratio >= 1
    NO_EXCESS = "No excess"  # ratio < 1


class TestKind(str, Enum):
    """Kind of variance test that produced a result."""

    LEVENE = "Levene"
    ANOVA = "ANOVA"
    F_COMPARISON = "F-comparison"
    KOLMOGOROV_SMIRNOV = "Kolmogorov-Smirnov"
    ANDERSON_DARLING = "Anderson-Darling"
    DAGOSTINO = "D'Agostino-Pearson"
    TYPE3_ANOVA = "Type-III ANOVA"


class StepStatus(str, Enum):
    """Outcome of one analysis step."""

    OK = "ok"
    NOT_APPLICABLE = "not_applicable"
    FAILED = "failed"


class WarningKind(str, Enum):
    """Non-fatal data-quality issues recorded during a run."""

    JOIN_INTEGRITY = "JoinIntegrityWarning"
    DERIVED_METRIC_UNDEFINED = "DerivedMetricUndefined"


def levels(enum_cls: Type[Enum]) -> List[str]:
    """Return the declared level order of an enumeration."""
    return [member.value for member in enum_cls]


def categorical_dtype(enum_cls: Type[Enum]) -> pd.CategoricalDtype:
    """Build an ordered categorical dtype from an enumeration.

    Args:
        enum_cls: Enumeration whose member order defines the level order.

    Returns:
        Ordered ``pd.CategoricalDtype``.

    Example:
        >>> categorical_dtype(OverallRating).categories.tolist()
        ['1', '2', '3', '4', '5']
    """
    return pd.CategoricalDtype(categories=levels(enum_cls), ordered=True)


def _convert(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj):
        return {f.name: _convert(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    elif isinstance(obj, Enum):
        return obj.value
    elif isinstance(obj, dict):
        return {k: _convert(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_convert(v) for v in obj]
    return obj


@dataclass
class PipelineWarning:
    """A recorded, non-fatal data-quality issue."""

    kind: WarningKind
    message: str
    count: int = 0
    ids: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


@dataclass
class VarianceTestResult:
    """One statistic produced by the variance analysis.

    Attributes:
        test_kind: Test that produced the result.
        term: Grouping, model term or comparison the result belongs to.
        statistic: Test statistic (W, F, D or A²). None when not applicable.
        df_num: Numerator (or only) degrees of freedom.
        df_den: Denominator / residual degrees of freedom.
        p_value: p-value. None when not applicable or not defined.
        sum_sq: Sum of squares for ANOVA terms.
        significant: p_value < alpha.
        applicable: False when preconditions were not met.
        notes: Free-text detail (group sizes, reasons).
    """

    test_kind: TestKind
    term: str = ""
    statistic: Optional[float] = None
    df_num: Optional[float] = None
    df_den: Optional[float] = None
    p_value: Optional[float] = None
    sum_sq: Optional[float] = None
    significant: bool = False
    applicable: bool = True
    notes: str = ""

    def __str__(self) -> str:
        if not self.applicable:
            return f"{self.test_kind.value} [{self.term}]: not applicable ({self.notes})"
        suffix = f" ({self.notes})" if self.notes else ""
        if self.p_value is None:
            return f"{self.test_kind.value} [{self.term}]: stat={self.statistic:.4f}{suffix}"
        stars = (
            "***"
            if self.p_value < 0.001
            else "**" if self.p_value < 0.01 else "*" if self.p_value < 0.05 else "n.s."
        )
        return (
            f"{self.test_kind.value} [{self.term}]: stat={self.statistic:.4f}, "
            f"p={self.p_value:.4g} {stars}{suffix}"
        )


@dataclass
class AnalysisStep:
    """Results of one step of the variance analysis pipeline."""

    name: str
    status: StepStatus = StepStatus.OK
    results: List[VarianceTestResult] = field(default_factory=list)
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == StepStatus.OK


@dataclass
class PosthocSummary:
    """Fraction of significant Tukey HSD pairs for one model term.

    ``fraction_significant`` is None when the term has fewer than two
    levels.
    """

    term: str
    n_levels: int = 0
    n_pairs: int = 0
    n_significant: int = 0
    fraction_significant: Optional[float] = None
    alpha: float = 0.05
    applicable: bool = True
    notes: str = ""

    def __str__(self) -> str:
        if not self.applicable:
            return f"{self.term}: not applicable ({self.notes})"
        return (
            f"{self.term}: {self.n_significant}/{self.n_pairs} pairs significant "
            f"({self.fraction_significant:.1%})"
        )


@dataclass
class AnalysisReport:
    """All steps of the variance analysis, in execution order."""

    response: str = ""
    factors: List[str] = field(default_factory=list)
    n_observations: int = 0
    alpha: float = 0.05
    steps: List[AnalysisStep] = field(default_factory=list)
    interaction_retained: Optional[bool] = None

    def step(self, name: str) -> AnalysisStep:
        """Return the step with the given name."""
        for s in self.steps:
            if s.name == name:
                return s
        raise KeyError(f"No analysis step named {name!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return _convert(self)


def records_to_dict(records: List[Any]) -> List[Dict[str, Any]]:
    """Convert a list of result dataclasses to plain dictionaries."""
    return [_convert(r) for r in records]
