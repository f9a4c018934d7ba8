# src/hrrp/statistics/variance.py
"""Variance analysis of the readmission ratio against two factors.

Five steps run in fixed order on the measured-only analysis view:

1. Levene's test per factor and for the crossed factorial grouping
2. Two-way ANOVA without and with interaction (sequential sums of squares)
3. Nested-model F-test: interaction model vs additive model
4. Normality of the interaction model residuals (Kolmogorov-Smirnov by
   default; Anderson-Darling or D'Agostino-Pearson selectable)
5. Type-III ANOVA with sum-to-zero contrasts for the unbalanced design

Step 1 is independent. Steps 3-5 need the models fitted in step 2 and are
reported as not applicable when step 2 fails. A failing step never aborts
another step, and inputs are never modified.

Example:
    >>> analyzer = VarianceAnalyzer(response="excess_ratio",
    ...                             factors=["overall_rating", "condition"])
    >>> report, models = analyzer.run(analysis_view)
    >>> for step in report.steps:
    ...     print(step.name, step.status.value)
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from omegaconf import DictConfig
from scipy import stats
from statsmodels.formula.api import ols
from statsmodels.stats.anova import anova_lm

from ..errors import StatisticalPreconditionError
from ..schemas import AnalysisReport, AnalysisStep, StepStatus, TestKind, VarianceTestResult

logger = logging.getLogger(__name__)

STEP_LEVENE = "levene"
STEP_ANOVA = "two_way_anova"
STEP_COMPARISON = "model_comparison"
STEP_NORMALITY = "residual_normality"
STEP_TYPE3 = "type3_anova"

STEP_ORDER = [STEP_LEVENE, STEP_ANOVA, STEP_COMPARISON, STEP_NORMALITY, STEP_TYPE3]

INSUFFICIENT = "insufficient data"

# SciPy >= 1.17 interpolates an Anderson-Darling p-value; the critical value
# table is deprecated there
ANDERSON_HAS_METHOD = "method" in inspect.signature(stats.anderson).parameters


@dataclass
class FittedModels:
    """Models fitted in step 2 and the data they were fitted on.

    Attributes:
        data: Prepared data (response and factors, no missing values).
        factors: Factors kept in the models (two or more observed levels).
        dropped_factors: Factors removed for having fewer than two levels.
        additive: OLS fit without interaction.
        interaction: OLS fit with interaction; None with a single factor.
    """

    data: pd.DataFrame
    response: str
    factors: List[str]
    dropped_factors: List[str] = field(default_factory=list)
    additive: object = None
    interaction: object = None

    @property
    def final(self):
        """Richest fitted model (interaction model when available)."""
        return self.interaction if self.interaction is not None else self.additive


def _factor_term(factor: str, contrast: Optional[str] = None) -> str:
    return f"C({factor}, {contrast})" if contrast else f"C({factor})"


def build_formula(
    response: str,
    factors: Sequence[str],
    interaction: bool,
    contrast: Optional[str] = None,
) -> Tuple[str, dict]:
    """Build a patsy formula and a term-label -> readable-name mapping.

    Args:
        response: Response column.
        factors: Factor columns (valid Python identifiers).
        interaction: Include the full interaction of all factors.
        contrast: Optional patsy contrast, e.g. "Sum".

    Returns:
        Tuple of (formula, {model term label: readable term name}).
    """
    for name in [response] + list(factors):
        if not name.isidentifier():
            raise ValueError(f"Column name {name!r} cannot be used in a model formula")

    terms = {_factor_term(f, contrast): f for f in factors}
    rhs = " + ".join(terms)
    if interaction and len(factors) > 1:
        label = ":".join(_factor_term(f, contrast) for f in factors)
        terms[label] = ":".join(factors)
        rhs = " * ".join(_factor_term(f, contrast) for f in factors)
    return f"{response} ~ {rhs}", terms


def observed_levels(data: pd.DataFrame, factor: str) -> int:
    """Number of distinct observed levels of a factor."""
    return int(data[factor].dropna().nunique())


def is_full_rank(model) -> bool:
    """True when every column of the fitted model's design is estimable."""
    exog = np.asarray(model.model.exog)
    return int(np.linalg.matrix_rank(exog)) == exog.shape[1]


class VarianceAnalyzer:
    """Runs the fixed five-step variance analysis pipeline.

    Args:
        response: Numeric response column.
        factors: Categorical factor columns.
        alpha: Significance threshold.
        levene_center: Center for Levene's test ("mean", "median", "trimmed").
        normality_method: "ks", "anderson" or "dagostino".
    """

    def __init__(
        self,
        response: str = "excess_ratio",
        factors: Sequence[str] = ("overall_rating", "condition"),
        alpha: float = 0.05,
        levene_center: str = "median",
        normality_method: str = "ks",
    ):
        if normality_method not in ("ks", "anderson", "dagostino"):
            raise ValueError(f"Unknown normality method: {normality_method!r}")
        self.response = response
        self.factors = list(factors)
        self.alpha = alpha
        self.levene_center = levene_center
        self.normality_method = normality_method

    @classmethod
    def from_config(cls, cfg: DictConfig) -> "VarianceAnalyzer":
        acfg = cfg.analysis
        return cls(
            response=acfg.response,
            factors=list(acfg.factors),
            alpha=float(acfg.alpha),
            levene_center=acfg.levene_center,
            normality_method=acfg.normality_method,
        )

    # ------------------------------------------------------------------
    # Data preparation
    # ------------------------------------------------------------------

    def prepare(self, df: pd.DataFrame) -> pd.DataFrame:
        """Select response and factors, drop incomplete rows.

        Categorical factors keep their declared level order with unused
        levels removed; other factors become categoricals with sorted
        levels. The input frame is not modified.
        """
        columns = [self.response] + self.factors
        missing = [c for c in columns if c not in df.columns]
        if missing:
            raise KeyError(f"Columns missing for variance analysis: {missing}")

        data = df[columns].dropna().copy()
        data[self.response] = data[self.response].astype(float)
        for factor in self.factors:
            if isinstance(data[factor].dtype, pd.CategoricalDtype):
                data[factor] = data[factor].cat.remove_unused_categories()
            else:
                data[factor] = pd.Categorical(data[factor].astype(str))
        return data.reset_index(drop=True)

    # ------------------------------------------------------------------
    # Step 1: Levene
    # ------------------------------------------------------------------

    def levene(self, data: pd.DataFrame, grouping: Sequence[str]) -> VarianceTestResult:
        """Levene's test for equal variances across the groups of ``grouping``.

        Groups with fewer than two observations are ignored. Fewer than two
        remaining groups gives a not-applicable result.
        """
        term = " x ".join(grouping)
        groups = [
            g[self.response].to_numpy()
            for _, g in data.groupby(list(grouping), observed=True)
        ]
        groups = [g for g in groups if len(g) >= 2]

        if len(groups) < 2:
            return VarianceTestResult(
                test_kind=TestKind.LEVENE,
                term=term,
                applicable=False,
                notes=f"{INSUFFICIENT}: {len(groups)} group(s) with at least 2 observations",
            )

        statistic, p_value = stats.levene(*groups, center=self.levene_center)
        n_total = sum(len(g) for g in groups)
        if np.isnan(statistic) or np.isnan(p_value):
            return VarianceTestResult(
                test_kind=TestKind.LEVENE,
                term=term,
                df_num=float(len(groups) - 1),
                df_den=float(n_total - len(groups)),
                applicable=False,
                notes=f"{INSUFFICIENT}: no within-group variance",
            )
        return VarianceTestResult(
            test_kind=TestKind.LEVENE,
            term=term,
            statistic=float(statistic),
            df_num=float(len(groups) - 1),
            df_den=float(n_total - len(groups)),
            p_value=float(p_value),
            significant=bool(p_value < self.alpha),
            notes=f"n_groups={len(groups)}, center={self.levene_center}",
        )

    def run_levene(self, data: pd.DataFrame) -> List[VarianceTestResult]:
        """Levene per factor and once for the full factorial grouping."""
        results = [self.levene(data, [factor]) for factor in self.factors]
        if len(self.factors) > 1:
            results.append(self.levene(data, self.factors))
        return results

    # ------------------------------------------------------------------
    # Step 2: two-way ANOVA
    # ------------------------------------------------------------------

    def fit_models(self, data: pd.DataFrame) -> FittedModels:
        """Fit the additive and interaction OLS models.

        Raises:
            StatisticalPreconditionError: If no factor has two or more
                observed levels, or the model has no residual degrees of
                freedom.
        """
        kept, dropped = [], []
        for factor in self.factors:
            n_levels = observed_levels(data, factor)
            if n_levels < 2:
                logger.warning(
                    f"Factor {factor!r} has {n_levels} observed level(s); "
                    "dropped from the ANOVA models"
                )
                dropped.append(factor)
            else:
                kept.append(factor)

        if not kept:
            raise StatisticalPreconditionError(
                f"No factor with at least two observed levels among {self.factors}"
            )

        models = FittedModels(
            data=data, response=self.response, factors=kept, dropped_factors=dropped
        )

        formula, _ = build_formula(self.response, kept, interaction=False)
        models.additive = ols(formula, data=data).fit()
        self._check_residual_df(models.additive, formula)

        if len(kept) > 1:
            formula, _ = build_formula(self.response, kept, interaction=True)
            models.interaction = ols(formula, data=data).fit()
            self._check_residual_df(models.interaction, formula)

        return models

    @staticmethod
    def _check_residual_df(model, formula: str) -> None:
        if model.df_resid <= 0:
            raise StatisticalPreconditionError(
                f"Zero residual degrees of freedom for {formula!r}"
            )

    def anova_results(
        self,
        model,
        terms: dict,
        test_kind: TestKind = TestKind.ANOVA,
        typ: int = 1,
        label: str = "",
    ) -> List[VarianceTestResult]:
        """Convert an ``anova_lm`` table into result records."""
        table = anova_lm(model, typ=typ)
        residual_df = float(table.loc["Residual", "df"])

        results = []
        for idx, row in table.iterrows():
            if idx in ("Residual", "Intercept"):
                continue
            name = terms.get(idx, idx)
            f_value, p_value = row["F"], row["PR(>F)"]
            if np.isnan(f_value) or np.isnan(p_value):
                results.append(
                    VarianceTestResult(
                        test_kind=test_kind,
                        term=name,
                        df_num=float(row["df"]),
                        df_den=residual_df,
                        sum_sq=float(row["sum_sq"]),
                        applicable=False,
                        notes=f"{INSUFFICIENT}: F undefined {label}".strip(),
                    )
                )
                continue
            results.append(
                VarianceTestResult(
                    test_kind=test_kind,
                    term=name,
                    statistic=float(f_value),
                    df_num=float(row["df"]),
                    df_den=residual_df,
                    p_value=float(p_value),
                    sum_sq=float(row["sum_sq"]),
                    significant=bool(p_value < self.alpha),
                    notes=label,
                )
            )
        return results

    def run_anova(self, models: FittedModels) -> List[VarianceTestResult]:
        """Sequential ANOVA tables for the additive and interaction models."""
        _, terms = build_formula(self.response, models.factors, interaction=False)
        results = self.anova_results(models.additive, terms, label="additive model")

        if models.interaction is not None:
            label = "interaction model"
            _, terms = build_formula(self.response, models.factors, interaction=True)
            interaction_results = self.anova_results(models.interaction, terms, label=label)
            if not is_full_rank(models.interaction):
                logger.warning(
                    "Interaction model is rank deficient; interaction term "
                    "taken from the nested model comparison"
                )
                interaction_results = self._replace_interaction(
                    models, interaction_results, TestKind.ANOVA, label
                )
            results += interaction_results
        return results

    def _replace_interaction(
        self,
        models: FittedModels,
        results: List[VarianceTestResult],
        test_kind: TestKind,
        label: str,
    ) -> List[VarianceTestResult]:
        """Swap the interaction row for the nested-comparison test.

        The nested comparison counts only the estimable interaction
        parameters, so its degrees of freedom stay correct when factor
        cells are empty.
        """
        name = ":".join(models.factors)
        try:
            row = self._nested_comparison(models)
            p_value = float(row["Pr(>F)"])
            replacement = VarianceTestResult(
                test_kind=test_kind,
                term=name,
                statistic=float(row["F"]),
                df_num=float(row["df_diff"]),
                df_den=float(row["df_resid"]),
                p_value=p_value,
                sum_sq=float(row["ss_diff"]),
                significant=bool(p_value < self.alpha),
                notes=label,
            )
        except StatisticalPreconditionError as e:
            replacement = VarianceTestResult(
                test_kind=test_kind,
                term=name,
                applicable=False,
                notes=f"{INSUFFICIENT}: {e}",
            )
        return [replacement if r.term == name else r for r in results]

    # ------------------------------------------------------------------
    # Step 3: model comparison
    # ------------------------------------------------------------------

    def compare_models(self, models: FittedModels) -> VarianceTestResult:
        """Nested-model F-test of the interaction model against the additive one.

        Raises:
            StatisticalPreconditionError: If there is no interaction model or
                the interaction adds no estimable parameters.
        """
        if models.interaction is None:
            raise StatisticalPreconditionError(
                "Model comparison needs two factors; "
                f"only {models.factors} have two or more levels"
            )

        row = self._nested_comparison(models)
        p_value = float(row["Pr(>F)"])
        return VarianceTestResult(
            test_kind=TestKind.F_COMPARISON,
            term=":".join(models.factors) + " vs additive",
            statistic=float(row["F"]),
            df_num=float(row["df_diff"]),
            df_den=float(row["df_resid"]),
            p_value=p_value,
            sum_sq=float(row["ss_diff"]),
            significant=bool(p_value < self.alpha),
            notes="interaction retained" if p_value < self.alpha else "interaction not needed",
        )

    @staticmethod
    def _nested_comparison(models: FittedModels) -> pd.Series:
        table = anova_lm(models.additive, models.interaction)
        row = table.iloc[1]
        if row["df_diff"] <= 0 or np.isnan(row["F"]):
            raise StatisticalPreconditionError(
                "Interaction adds no estimable parameters over the additive model"
            )
        return row

    # ------------------------------------------------------------------
    # Step 4: residual normality
    # ------------------------------------------------------------------

    def residual_normality(self, models: FittedModels) -> VarianceTestResult:
        """Goodness of fit of the final model's residuals to a normal law.

        The default two-sided Kolmogorov-Smirnov test compares the
        residuals with a normal distribution of the same mean and standard
        deviation and has no upper sample-size limit.
        """
        model = models.final
        resid = np.asarray(model.resid, dtype=float)
        term = "residuals (interaction model)" if models.interaction is not None else "residuals (additive model)"

        if len(resid) < 3 or np.std(resid, ddof=1) == 0:
            raise StatisticalPreconditionError(
                f"Residual normality needs >= 3 residuals with non-zero spread (n={len(resid)})"
            )

        method: Callable[[np.ndarray, str], VarianceTestResult] = {
            "ks": self._ks_normality,
            "anderson": self._anderson_normality,
            "dagostino": self._dagostino_normality,
        }[self.normality_method]
        return method(resid, term)

    def _ks_normality(self, resid: np.ndarray, term: str) -> VarianceTestResult:
        mean, sd = float(np.mean(resid)), float(np.std(resid, ddof=1))
        statistic, p_value = stats.kstest(resid, "norm", args=(mean, sd))
        return VarianceTestResult(
            test_kind=TestKind.KOLMOGOROV_SMIRNOV,
            term=term,
            statistic=float(statistic),
            df_num=float(len(resid)),
            p_value=float(p_value),
            significant=bool(p_value < self.alpha),
            notes=f"n={len(resid)}, two-sided",
        )

    def _anderson_normality(self, resid: np.ndarray, term: str) -> VarianceTestResult:
        if ANDERSON_HAS_METHOD:
            result = stats.anderson(resid, dist="norm", method="interpolate")
            p_value = float(result.pvalue)
            return VarianceTestResult(
                test_kind=TestKind.ANDERSON_DARLING,
                term=term,
                statistic=float(result.statistic),
                df_num=float(len(resid)),
                p_value=p_value,
                significant=bool(p_value < self.alpha),
                notes=f"n={len(resid)}, interpolated p-value",
            )

        # Older SciPy: compare with the tabulated critical value nearest alpha
        result = stats.anderson(resid, dist="norm")
        levels = list(result.significance_level)
        target = self.alpha * 100.0
        idx = int(np.argmin([abs(level - target) for level in levels]))
        critical = float(result.critical_values[idx])
        return VarianceTestResult(
            test_kind=TestKind.ANDERSON_DARLING,
            term=term,
            statistic=float(result.statistic),
            df_num=float(len(resid)),
            significant=bool(result.statistic > critical),
            notes=f"n={len(resid)}, critical value {critical:.4f} at {levels[idx]:g}%",
        )

    def _dagostino_normality(self, resid: np.ndarray, term: str) -> VarianceTestResult:
        if len(resid) < 8:
            raise StatisticalPreconditionError(
                f"D'Agostino-Pearson test needs at least 8 residuals (n={len(resid)})"
            )
        statistic, p_value = stats.normaltest(resid)
        return VarianceTestResult(
            test_kind=TestKind.DAGOSTINO,
            term=term,
            statistic=float(statistic),
            df_num=2.0,
            p_value=float(p_value),
            significant=bool(p_value < self.alpha),
            notes=f"n={len(resid)}",
        )

    # ------------------------------------------------------------------
    # Step 5: Type-III ANOVA
    # ------------------------------------------------------------------

    def type3_anova(self, models: FittedModels) -> List[VarianceTestResult]:
        """Type-III sums of squares with sum-to-zero contrasts.

        Refits the same terms as the final step-2 model using ``Sum``
        contrasts so each term is tested after all others.

        With empty factor cells the main effects are reported as not
        applicable and the interaction takes the nested-comparison test,
        which equals its Type-III test when only estimable parameters count.
        """
        interaction = models.interaction is not None
        formula, terms = build_formula(
            self.response, models.factors, interaction=interaction, contrast="Sum"
        )
        model = ols(formula, data=models.data).fit()
        self._check_residual_df(model, formula)

        results = self.anova_results(model, terms, test_kind=TestKind.TYPE3_ANOVA, typ=3)
        if not interaction or is_full_rank(model):
            return results

        # Sum-to-zero contrasts are not estimable with empty cells: main
        # effects have no Type-III test, the interaction keeps its nested test
        cells = models.data.groupby(models.factors, observed=False).size()
        n_empty = int((cells == 0).sum())
        notes = f"{INSUFFICIENT}: {n_empty} empty factor cells"
        logger.warning(f"Type-III ANOVA: {n_empty} empty factor cells; main effects not testable")

        interaction_name = ":".join(models.factors)
        results = [
            r if r.term == interaction_name else VarianceTestResult(
                test_kind=TestKind.TYPE3_ANOVA,
                term=r.term,
                applicable=False,
                notes=notes,
            )
            for r in results
        ]
        return self._replace_interaction(
            models, results, TestKind.TYPE3_ANOVA, f"{n_empty} empty factor cells"
        )

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def _run_step(self, name: str, func: Callable[[], List[VarianceTestResult]]) -> AnalysisStep:
        step = AnalysisStep(name=name)
        try:
            step.results = func()
            if step.results and not any(r.applicable for r in step.results):
                step.status = StepStatus.NOT_APPLICABLE
                step.error = INSUFFICIENT
        except StatisticalPreconditionError as e:
            logger.warning(f"Step {name} not applicable: {e}")
            step.status = StepStatus.NOT_APPLICABLE
            step.error = str(e)
        except Exception as e:
            logger.error(f"Step {name} failed: {e}")
            step.status = StepStatus.FAILED
            step.error = f"{type(e).__name__}: {e}"
        return step

    def run(self, df: pd.DataFrame) -> Tuple[AnalysisReport, Optional[FittedModels]]:
        """Run all five steps in order.

        Args:
            df: Analysis view (measured rows only).

        Returns:
            Tuple of (AnalysisReport, FittedModels or None when step 2
            could not fit the models).
        """
        data = self.prepare(df)
        report = AnalysisReport(
            response=self.response,
            factors=list(self.factors),
            n_observations=len(data),
            alpha=self.alpha,
        )
        logger.info(
            f"Variance analysis of {self.response} on {self.factors}: n={len(data)}"
        )

        report.steps.append(self._run_step(STEP_LEVENE, lambda: self.run_levene(data)))

        fitted: List[FittedModels] = []

        def _anova():
            models = self.fit_models(data)
            fitted.append(models)
            return self.run_anova(models)

        anova_step = self._run_step(STEP_ANOVA, _anova)
        report.steps.append(anova_step)
        models = fitted[0] if fitted else None

        if models is None or not anova_step.ok:
            reason = f"requires {STEP_ANOVA}: {anova_step.error or INSUFFICIENT}"
            for name in (STEP_COMPARISON, STEP_NORMALITY, STEP_TYPE3):
                report.steps.append(
                    AnalysisStep(name=name, status=StepStatus.NOT_APPLICABLE, error=reason)
                )
            return report, models

        comparison = self._run_step(STEP_COMPARISON, lambda: [self.compare_models(models)])
        report.steps.append(comparison)
        if comparison.ok:
            report.interaction_retained = comparison.results[0].significant

        report.steps.append(
            self._run_step(STEP_NORMALITY, lambda: [self.residual_normality(models)])
        )
        report.steps.append(self._run_step(STEP_TYPE3, lambda: self.type3_anova(models)))

        for step in report.steps:
            logger.info(f"  {step.name}: {step.status.value}")
        return report, models


def run_variance_analysis(
    df: pd.DataFrame,
    cfg: Optional[DictConfig] = None,
) -> Tuple[AnalysisReport, Optional[FittedModels]]:
    """Run the variance analysis with settings from ``cfg`` (defaults when None)."""
    analyzer = VarianceAnalyzer.from_config(cfg) if cfg is not None else VarianceAnalyzer()
    return analyzer.run(df)
