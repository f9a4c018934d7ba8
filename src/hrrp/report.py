# src/hrrp/report.py
"""Console rendering of a pipeline run.

Every section prints either a value or an explicit "insufficient data" /
"not applicable" marker; nothing is silently omitted.
"""

from typing import List

from .schemas import AnalysisStep, StepStatus
from .statistics.variance import INSUFFICIENT

NOT_APPLICABLE = "not applicable"

_RULE = "=" * 60


def _section(title: str) -> List[str]:
    return ["", _RULE, title, _RULE]


def format_step(step: AnalysisStep) -> List[str]:
    """Render one analysis step with its results."""
    lines = [f"[{step.name}] {step.status.value}"]
    if step.status == StepStatus.NOT_APPLICABLE:
        lines.append(f"  {NOT_APPLICABLE}: {step.error or INSUFFICIENT}")
        return lines
    if step.status == StepStatus.FAILED:
        lines.append(f"  failed: {step.error}")
        return lines
    if not step.results:
        lines.append(f"  {INSUFFICIENT}")
    for result in step.results:
        lines.append(f"  {result}")
    return lines


def format_report(result) -> str:
    """Render a ``PipelineResult`` as console text.

    Args:
        result: PipelineResult from ``run_pipeline``.

    Returns:
        Multi-line report string.
    """
    analysis = result.analysis
    lines = _section("HRRP READMISSION ANALYSIS")
    lines.append(f"Hospitals:            {len(result.hospitals)}")
    lines.append(f"Measurements:         {len(result.readmissions)}")
    lines.append(f"Analysis rows:        {len(result.analysis_view)}")
    lines.append(f"Located hospitals:    {len(result.geo_view)}")
    lines.append(f"Inconsistent ratios:  {len(result.inconsistent_ratios)}")

    lines += _section("WARNINGS")
    if result.warnings:
        lines += [f"  {w}" for w in result.warnings]
    else:
        lines.append("  none")

    lines += _section(
        f"VARIANCE ANALYSIS: {analysis.response} ~ {' x '.join(analysis.factors)} "
        f"(n={analysis.n_observations}, alpha={analysis.alpha})"
    )
    if not analysis.steps:
        lines.append(f"  {INSUFFICIENT}")
    for step in analysis.steps:
        lines += format_step(step)

    if analysis.interaction_retained is None:
        retained = NOT_APPLICABLE
    else:
        retained = "yes" if analysis.interaction_retained else "no"
    lines.append(f"Interaction retained: {retained}")

    lines += _section("TUKEY HSD")
    if not result.posthoc:
        lines.append(f"  {INSUFFICIENT}")
    lines += [f"  {summary}" for summary in result.posthoc]

    return "\n".join(lines)
