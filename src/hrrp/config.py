# src/hrrp/config.py
"""OmegaConf configuration loading and validation utilities.

This module provides:
- Built-in defaults covering the CMS column contract
- Config loading from YAML merged over the defaults, with CLI overrides
- Schema validation for required fields

The rename and token tables live here rather than in the transforms so the
pipeline never hard-codes raw CMS strings.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from omegaconf import DictConfig, MissingMandatoryValue, OmegaConf

from .errors import ConfigError

logger = logging.getLogger(__name__)


DEFAULTS: Dict[str, Any] = {
    "paths": {
        "hospitals": None,
        "readmissions": None,
        "output_dir": "hrrp_output",
    },
    "normalize": {
        "sentinels": ["Not Available"],
        "prune": True,
        # Raw column -> normalized column. Several raw spellings may map to
        # the same normalized name (CMS renamed columns between releases).
        "hospital_columns": {
            "Provider ID": "hospital_id",
            "Facility ID": "hospital_id",
            "Hospital Name": "hospital_name",
            "Facility Name": "hospital_name",
            "Address": "address",
            "City": "city",
            "City/Town": "city",
            "State": "state",
            "ZIP Code": "zip_code",
            "County Name": "county",
            "County/Parish": "county",
            "Hospital Type": "hospital_type",
            "Hospital Ownership": "ownership",
            "Emergency Services": "emergency_services",
            "Hospital overall rating": "overall_rating",
            "Mortality national comparison": "mortality",
            "Safety of care national comparison": "safety",
            "Readmission national comparison": "readmission",
            "Patient experience national comparison": "patient_experience",
            "Effectiveness of care national comparison": "effectiveness",
            "Timeliness of care national comparison": "timeliness",
            "Efficient use of medical imaging national comparison": "imaging_efficiency",
            "Location": "location",
        },
        "hospital_required": [
            "hospital_id",
            "hospital_name",
            "state",
            "hospital_type",
            "overall_rating",
        ],
        "readmission_columns": {
            "Provider Number": "hospital_id",
            "Facility ID": "hospital_id",
            "Measure Name": "condition",
            "Number of Discharges": "discharges",
            "Excess Readmission Ratio": "excess_ratio",
            "Predicted Readmission Rate": "predicted_rate",
            "Expected Readmission Rate": "expected_rate",
            "Number of Readmissions": "readmissions",
            "Start Date": "start_date",
            "End Date": "end_date",
        },
        "readmission_required": [
            "hospital_id",
            "condition",
            "excess_ratio",
            "predicted_rate",
            "expected_rate",
        ],
        "readmission_numeric": [
            "discharges",
            "excess_ratio",
            "predicted_rate",
            "expected_rate",
            "readmissions",
        ],
        "hospital_boolean": ["emergency_services"],
        "rating_column": "overall_rating",
        "comparison_columns": [
            "mortality",
            "safety",
            "readmission",
            "patient_experience",
            "effectiveness",
            "timeliness",
            "imaging_efficiency",
        ],
        # Raw measure name -> condition code
        "condition_tokens": {
            "READM-30-AMI-HRRP": "AMI",
            "READM-30-CABG-HRRP": "CABG",
            "READM-30-COPD-HRRP": "COPD",
            "READM-30-HF-HRRP": "HF",
            "READM-30-HIP-KNEE-HRRP": "HIP-KNEE",
            "READM-30-PN-HRRP": "PN",
        },
    },
    "join": {
        "hospital_type": "Acute Care Hospitals",
        "excluded_state": "MD",
        "drop_missing_key": True,
        "drop_missing_target": True,
        "target": "excess_ratio",
    },
    "analysis": {
        "response": "excess_ratio",
        "factors": ["overall_rating", "condition"],
        "alpha": 0.05,
        "levene_center": "median",
        "normality_method": "ks",
    },
    "posthoc": {
        "alpha": 0.05,
    },
    "geo": {
        "field": "location",
        "kind": "quantile",
        "value": "mean_ratio",
        "n_buckets": 5,
        "labels": None,
    },
}


def default_config() -> DictConfig:
    """Return a fresh DictConfig built from ``DEFAULTS``."""
    return OmegaConf.create(DEFAULTS)


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[List[str]] = None,
    resolve: bool = True,
) -> DictConfig:
    """Load configuration from YAML merged over defaults, with CLI overrides.

    Args:
        config_path: Path to YAML configuration file. If None, only the
            built-in defaults are used.
        overrides: List of CLI overrides in "key=value" format.
            Example: ["join.excluded_state=null", "analysis.alpha=0.01"]
        resolve: If True, resolve interpolations (${...}).

    Returns:
        OmegaConf DictConfig object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ConfigError: If config loading fails.

    Example:
        >>> cfg = load_config("hrrp.yaml", overrides=["analysis.alpha=0.01"])
        >>> print(cfg.analysis.alpha)
        0.01
    """
    cfg = default_config()

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        if config_path is not None:
            user_cfg = OmegaConf.load(config_path)
            cfg = OmegaConf.merge(cfg, user_cfg)
            logger.info(f"Loaded config from: {config_path}")

        if overrides:
            override_cfg = OmegaConf.from_dotlist(overrides)
            cfg = OmegaConf.merge(cfg, override_cfg)
            logger.info(f"Applied {len(overrides)} config overrides")

        if resolve:
            OmegaConf.resolve(cfg)

        return cfg

    except Exception as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}") from e


def validate_config(
    cfg: DictConfig,
    schema: Optional[Dict[str, type]] = None,
) -> None:
    """Validate configuration against schema.

    Args:
        cfg: Configuration to validate.
        schema: Optional schema dict mapping dotted paths to expected types.
            If None, uses the default pipeline schema.

    Raises:
        ConfigError: If validation fails with detailed error messages.
    """
    if schema is None:
        schema = _get_default_schema()

    errors = []
    for path, expected_type in schema.items():
        try:
            value = OmegaConf.select(cfg, path)
            if value is None:
                errors.append(f"Missing required field: {path}")
            elif expected_type is list:
                if not hasattr(value, "__iter__") or isinstance(value, (str, dict)):
                    errors.append(
                        f"Invalid type for {path}: expected list, "
                        f"got {type(value).__name__}"
                    )
            elif expected_type is float:
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    errors.append(
                        f"Invalid type for {path}: expected float, "
                        f"got {type(value).__name__}"
                    )
            elif not isinstance(value, expected_type):
                errors.append(
                    f"Invalid type for {path}: expected {expected_type.__name__}, "
                    f"got {type(value).__name__}"
                )
        except MissingMandatoryValue:
            errors.append(f"Missing required field: {path}")

    alpha = OmegaConf.select(cfg, "analysis.alpha")
    if isinstance(alpha, (int, float)) and not 0.0 < alpha < 1.0:
        errors.append(f"analysis.alpha must be in (0, 1), got {alpha}")

    kind = OmegaConf.select(cfg, "geo.kind")
    if kind is not None and kind not in ("quantile", "factor"):
        errors.append(f"geo.kind must be 'quantile' or 'factor', got {kind!r}")

    method = OmegaConf.select(cfg, "analysis.normality_method")
    if method is not None and method not in ("ks", "anderson", "dagostino"):
        errors.append(
            f"analysis.normality_method must be 'ks', 'anderson' or 'dagostino', got {method!r}"
        )

    if errors:
        error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
        raise ConfigError(error_msg)

    logger.info("Configuration validation passed")


def _get_default_schema() -> Dict[str, type]:
    """Get default schema for the pipeline config.

    Returns:
        Dictionary mapping dotted paths to expected types.
    """
    return {
        "normalize.sentinels": list,
        "normalize.hospital_columns": DictConfig,
        "normalize.readmission_columns": DictConfig,
        "normalize.condition_tokens": DictConfig,
        "normalize.comparison_columns": list,
        "join.target": str,
        "analysis.response": str,
        "analysis.factors": list,
        "analysis.alpha": float,
        "posthoc.alpha": float,
        "geo.field": str,
        "geo.n_buckets": int,
    }


def to_dict(cfg: DictConfig, resolve: bool = True) -> Dict[str, Any]:
    """Convert OmegaConf DictConfig to plain Python dict."""
    return OmegaConf.to_container(cfg, resolve=resolve)


def save_config(
    cfg: DictConfig,
    save_path: Union[str, Path],
    resolve: bool = True,
) -> None:
    """Save configuration to YAML file.

    Args:
        cfg: Configuration to save.
        save_path: Path to save YAML file.
        resolve: If True, resolve interpolations before saving.
    """
    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)

    with open(save_path, "w") as f:
        OmegaConf.save(cfg, f, resolve=resolve)

    logger.info(f"Saved config to: {save_path}")


def get_value(
    cfg: DictConfig,
    path: str,
    default: Any = None,
) -> Any:
    """Safely get a nested config value with default.

    Example:
        >>> alpha = get_value(cfg, "posthoc.alpha", default=0.05)
    """
    value = OmegaConf.select(cfg, path, default=None)
    return value if value is not None else default
