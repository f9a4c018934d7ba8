# src/hrrp/loaders.py
"""Data loading utilities for the raw CMS exports.

The only input I/O point of the pipeline. Files are read as-is; all type
coercion happens in ``hrrp.normalize``.
"""

import json
import logging
from pathlib import Path
from typing import Tuple, Union

import pandas as pd
import yaml
from omegaconf import DictConfig

from .errors import ConfigError

logger = logging.getLogger(__name__)

CSV_SUFFIXES = (".csv", ".txt")
JSON_SUFFIXES = (".json",)
YAML_SUFFIXES = (".yaml", ".yml")


def _records_frame(records, path: Path) -> pd.DataFrame:
    # Socrata exports wrap records in {"data": [...]} in some releases
    if isinstance(records, dict) and "data" in records:
        records = records["data"]
    if not isinstance(records, list):
        raise ValueError(f"Expected a list of records in {path}, got {type(records).__name__}")
    return pd.DataFrame.from_records(records)


def load_dataset(path: Union[str, Path]) -> pd.DataFrame:
    """Load one raw table, dispatching on the file suffix.

    CSV files are read with every column as text so identifiers keep
    their leading zeros and sentinel strings survive for normalization.
    JSON and YAML files must hold a list of records; nested values such
    as coordinate pairs are kept as Python objects.

    Args:
        path: Path to a ``.csv``, ``.json``, ``.yaml`` or ``.yml`` file.

    Returns:
        Raw DataFrame.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the suffix is not supported.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset not found: {path}")

    suffix = path.suffix.lower()
    if suffix in CSV_SUFFIXES:
        df = pd.read_csv(path, dtype=str)
    elif suffix in JSON_SUFFIXES:
        with open(path, "r") as f:
            df = _records_frame(json.load(f), path)
    elif suffix in YAML_SUFFIXES:
        with open(path, "r") as f:
            df = _records_frame(yaml.safe_load(f), path)
    else:
        raise ValueError(f"Unsupported dataset format: {path.suffix!r} ({path})")

    logger.info(f"Loaded {path.name}: {len(df)} rows, {df.shape[1]} columns")
    return df


def load_inputs(cfg: DictConfig) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Load the hospital and readmission tables named in ``cfg.paths``.

    Returns:
        Tuple of (hospitals_raw, readmissions_raw).

    Raises:
        ConfigError: If either path is not configured.
    """
    hospitals_path = cfg.paths.hospitals
    readmissions_path = cfg.paths.readmissions
    missing = [
        name
        for name, value in (("paths.hospitals", hospitals_path), ("paths.readmissions", readmissions_path))
        if not value
    ]
    if missing:
        raise ConfigError(f"Input paths not configured: {missing}")

    return load_dataset(hospitals_path), load_dataset(readmissions_path)
