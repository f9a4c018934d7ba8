# src/hrrp/pipeline.py
"""Pipeline orchestration.

Coordinates normalization, join, derived metrics, variance analysis,
post-hoc summaries and the geo view. ``run_pipeline`` is pure (tables in,
``PipelineResult`` out); ``run_from_config`` adds the load and persist
steps around it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd
from omegaconf import DictConfig

from .config import default_config, get_value, save_config, to_dict
from .geo import ClassificationScheme, build_geo_view
from .join import JoinFilters, JoinReport, apply_filters, build_summary_view
from .loaders import load_inputs
from .metrics import (
    build_hospital_summary,
    check_ratio_consistency,
    comparison_percentages,
    ratio_distribution,
)
from .normalize import normalize_hospitals, normalize_readmissions
from .schemas import AnalysisReport, PipelineWarning, PosthocSummary, records_to_dict
from .statistics import VarianceAnalyzer, summarize_posthoc
from .writers import (
    setup_output_directory,
    write_manifest,
    write_report_json,
    write_table_csv,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Everything one pipeline run produces.

    Attributes:
        hospitals: Normalized hospital table.
        readmissions: Normalized readmission table.
        summary_view: Joined view over all hospitals.
        analysis_view: Measured, filtered view fed to the statistics.
        hospital_summary: One row per hospital with per-condition ratios.
        comparison_percentages: Long-form comparison category percentages.
        ratio_by_condition: Ratio distribution per condition.
        ratio_by_rating: Ratio distribution per overall rating.
        inconsistent_ratios: Rows where ratio != predicted / expected.
        geo_view: Located hospitals with a color classification.
        analysis: Variance analysis report.
        posthoc: Tukey HSD summaries.
        join_report: Row accounting of the join.
        warnings: Non-fatal data-quality issues.
    """

    hospitals: pd.DataFrame
    readmissions: pd.DataFrame
    summary_view: pd.DataFrame
    analysis_view: pd.DataFrame
    hospital_summary: pd.DataFrame
    comparison_percentages: pd.DataFrame
    ratio_by_condition: pd.DataFrame
    ratio_by_rating: pd.DataFrame
    inconsistent_ratios: pd.DataFrame
    geo_view: pd.DataFrame
    analysis: AnalysisReport
    posthoc: List[PosthocSummary] = field(default_factory=list)
    join_report: Optional[JoinReport] = None
    warnings: List[PipelineWarning] = field(default_factory=list)

    def tables(self) -> Dict[str, pd.DataFrame]:
        """Views keyed by output file stem."""
        return {
            "summary_view": self.summary_view,
            "analysis_view": self.analysis_view,
            "hospital_summary": self.hospital_summary,
            "comparison_percentages": self.comparison_percentages,
            "ratio_by_condition": self.ratio_by_condition,
            "ratio_by_rating": self.ratio_by_rating,
            "inconsistent_ratios": self.inconsistent_ratios,
            "geo_view": self.geo_view,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "counts": {
                "hospitals": len(self.hospitals),
                "measurements": len(self.readmissions),
                "summary_rows": len(self.summary_view),
                "analysis_rows": len(self.analysis_view),
                "located_hospitals": len(self.geo_view),
                "inconsistent_ratios": len(self.inconsistent_ratios),
            },
            "analysis": self.analysis.to_dict(),
            "posthoc": records_to_dict(self.posthoc),
            "warnings": records_to_dict(self.warnings),
        }


def run_pipeline(
    hospitals_raw: pd.DataFrame,
    readmissions_raw: pd.DataFrame,
    cfg: Optional[DictConfig] = None,
) -> PipelineResult:
    """Run every stage on in-memory raw tables.

    Args:
        hospitals_raw: Raw Hospital General Information table.
        readmissions_raw: Raw readmission measures table.
        cfg: Pipeline configuration (defaults when None).

    Returns:
        PipelineResult

    Raises:
        SchemaError: If normalization or the join finds an incompatible
            schema. No partial result is returned.
    """
    cfg = cfg if cfg is not None else default_config()

    logger.info("Normalizing input tables...")
    hospitals = normalize_hospitals(hospitals_raw, cfg)
    readmissions = normalize_readmissions(readmissions_raw, cfg)

    logger.info("Joining hospitals with readmission measures...")
    filters = JoinFilters.from_config(cfg)
    summary_view, join_report = build_summary_view(hospitals, readmissions, filters)
    analysis_view = apply_filters(summary_view, filters)
    logger.info(
        f"Analysis view: {len(analysis_view)} rows from "
        f"{analysis_view['hospital_id'].nunique()} hospitals"
    )
    warnings = list(join_report.warnings)

    logger.info("Deriving metrics...")
    target = filters.target
    hospital_summary, summary_warnings = build_hospital_summary(summary_view, value=target)
    warnings += summary_warnings

    metrics = [c for c in cfg.normalize.comparison_columns if c in summary_view.columns]
    percentages = comparison_percentages(summary_view, metrics, group_by="status")
    by_condition = ratio_distribution(analysis_view, by="condition", value=target)
    by_rating = ratio_distribution(analysis_view, by="overall_rating", value=target)
    inconsistent = check_ratio_consistency(readmissions)

    logger.info("Running variance analysis...")
    analyzer = VarianceAnalyzer.from_config(cfg)
    analysis, models = analyzer.run(analysis_view)

    logger.info("Summarizing post-hoc comparisons...")
    try:
        if models is not None:
            posthoc = summarize_posthoc(models, alpha=float(cfg.posthoc.alpha))
        else:
            posthoc = summarize_posthoc(
                analyzer.prepare(analysis_view),
                factors=analyzer.factors,
                response=analyzer.response,
                alpha=float(cfg.posthoc.alpha),
            )
    except Exception as e:
        logger.error(f"Post-hoc summary failed: {e}")
        posthoc = []

    logger.info("Building geo view...")
    geo_view = build_geo_view(
        hospital_summary,
        scheme=ClassificationScheme.from_config(cfg),
        field=cfg.geo.field,
    )

    return PipelineResult(
        hospitals=hospitals,
        readmissions=readmissions,
        summary_view=summary_view,
        analysis_view=analysis_view,
        hospital_summary=hospital_summary,
        comparison_percentages=percentages,
        ratio_by_condition=by_condition,
        ratio_by_rating=by_rating,
        inconsistent_ratios=inconsistent,
        geo_view=geo_view,
        analysis=analysis,
        posthoc=posthoc,
        join_report=join_report,
        warnings=warnings,
    )


def run_from_config(
    cfg: DictConfig,
    output_dir: Optional[str] = None,
) -> Dict[str, Any]:
    """Load inputs, run the pipeline and write every output.

    Args:
        cfg: Pipeline configuration with ``paths.hospitals`` and
            ``paths.readmissions`` set.
        output_dir: Output directory (default: ``cfg.paths.output_dir``)

    Returns:
        Dictionary with:
            - result: PipelineResult
            - output_dir: Path to output directory
            - files: List of generated files
    """
    hospitals_raw, readmissions_raw = load_inputs(cfg)
    result = run_pipeline(hospitals_raw, readmissions_raw, cfg)

    output_path = setup_output_directory(
        output_dir or get_value(cfg, "paths.output_dir", default="hrrp_output")
    )
    generated_files = []

    for name, table in result.tables().items():
        generated_files.append(write_table_csv(table, output_path / "tables", f"{name}.csv"))

    report = result.to_dict()
    report["config"] = to_dict(cfg)
    generated_files.append(write_report_json(report, output_path))

    config_path = output_path / "config.yaml"
    save_config(cfg, config_path)
    generated_files.append(str(config_path))
    generated_files.append(write_manifest(output_path))

    logger.info(f"Pipeline complete: {len(generated_files)} files in {output_path}")
    return {
        "result": result,
        "output_dir": str(output_path),
        "files": generated_files,
    }
