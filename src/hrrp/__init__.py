"""Hospital Readmissions Reduction Program (HRRP) analysis.

Joins the CMS readmission measures with Hospital General Information,
derives per-hospital readmission metrics and runs a fixed variance
analysis of the excess readmission ratio against overall rating and
condition:

    Normalize -> Join -> Derive metrics -> {Variance analysis -> Tukey HSD}
                                        -> {Geo view}

Usage:
    # Full pipeline from the command line
    python -m hrrp analyze --hospitals hospitals.csv --readmissions hrrp.csv

    # In memory
    from hrrp import run_pipeline, format_report
    result = run_pipeline(hospitals_raw, readmissions_raw)
    print(format_report(result))
"""

from .config import default_config, load_config, validate_config
from .errors import ConfigError, HRRPError, SchemaError, StatisticalPreconditionError
from .schemas import (
    AnalysisReport,
    AnalysisStep,
    Condition,
    NationalComparison,
    OverallRating,
    PipelineWarning,
    PosthocSummary,
    ProgramStatus,
    RatioClass,
    VarianceTestResult,
)
from .pipeline import PipelineResult, run_from_config, run_pipeline
from .report import format_report

__all__ = [
    # Config
    "default_config",
    "load_config",
    "validate_config",
    # Errors
    "HRRPError",
    "ConfigError",
    "SchemaError",
    "StatisticalPreconditionError",
    # Schemas
    "AnalysisReport",
    "AnalysisStep",
    "Condition",
    "NationalComparison",
    "OverallRating",
    "PipelineWarning",
    "PosthocSummary",
    "ProgramStatus",
    "RatioClass",
    "VarianceTestResult",
    # Pipeline
    "PipelineResult",
    "run_pipeline",
    "run_from_config",
    "format_report",
]
