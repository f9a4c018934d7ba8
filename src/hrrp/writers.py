# src/hrrp/writers.py
"""Output writing utilities for the analysis pipeline.

Handles writing CSVs, JSONs, and organizing the output directory.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)


def setup_output_directory(output_dir: Union[str, Path]) -> Path:
    """Create the output directory (and its ``tables`` subdirectory).

    Args:
        output_dir: Output directory path

    Returns:
        Path to the output directory
    """
    output_path = Path(output_dir)
    (output_path / "tables").mkdir(parents=True, exist_ok=True)

    logger.info(f"Output directory: {output_path}")
    return output_path


def write_table_csv(
    df: pd.DataFrame,
    output_dir: Union[str, Path],
    filename: str,
) -> str:
    """Write a view DataFrame to CSV.

    Args:
        df: DataFrame to write
        output_dir: Output directory
        filename: Output filename (should end with .csv)

    Returns:
        Path to written file
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    filepath = output_path / filename
    df.to_csv(filepath, index=False)

    logger.info(f"Table written to {filepath} ({len(df)} rows)")
    return str(filepath)


def write_report_json(
    data: Dict[str, Any],
    output_dir: Union[str, Path],
    filename: str = "analysis_report.json",
) -> str:
    """Write the analysis report to JSON.

    Args:
        data: Report dictionary (see ``PipelineResult.to_dict``)
        output_dir: Output directory
        filename: Output filename

    Returns:
        Path to written file
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    filepath = output_path / filename

    data = dict(data)
    data["_generated_at"] = datetime.now().isoformat()
    data["_generator"] = "hrrp"

    with open(filepath, "w") as f:
        json.dump(data, f, indent=2, default=str)

    logger.info(f"Report written to {filepath}")
    return str(filepath)


def collect_output_manifest(output_dir: Union[str, Path]) -> Dict[str, Any]:
    """Collect manifest of all output files.

    Args:
        output_dir: Output directory

    Returns:
        Dictionary with file manifest
    """
    output_path = Path(output_dir)

    manifest = {
        "output_dir": str(output_path.absolute()),
        "generated_at": datetime.now().isoformat(),
        "files": {
            "reports": [],
            "tables": [],
        },
    }

    for f in sorted(output_path.glob("*.json")):
        if f.name == "manifest.json":
            continue
        manifest["files"]["reports"].append({
            "name": f.name,
            "path": str(f.relative_to(output_path)),
            "size_bytes": f.stat().st_size,
        })

    tables_dir = output_path / "tables"
    if tables_dir.exists():
        for f in sorted(tables_dir.glob("*.csv")):
            manifest["files"]["tables"].append({
                "name": f.name,
                "path": str(f.relative_to(output_path)),
                "size_bytes": f.stat().st_size,
            })

    return manifest


def write_manifest(
    output_dir: Union[str, Path],
    manifest: Optional[Dict[str, Any]] = None,
) -> str:
    """Write output manifest to JSON.

    Args:
        output_dir: Output directory
        manifest: Pre-computed manifest (if None, will collect)

    Returns:
        Path to manifest file
    """
    if manifest is None:
        manifest = collect_output_manifest(output_dir)

    filepath = Path(output_dir) / "manifest.json"

    with open(filepath, "w") as f:
        json.dump(manifest, f, indent=2)

    return str(filepath)
