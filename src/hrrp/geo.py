# src/hrrp/geo.py
"""Coordinate unpacking and color classification for the map renderer.

The geo view keeps only rows with a usable coordinate pair; other views
are untouched.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from omegaconf import DictConfig, OmegaConf

logger = logging.getLogger(__name__)

_WKT_POINT = re.compile(
    r"^\s*POINT\s*\(\s*([-+0-9.eE]+)\s+([-+0-9.eE]+)\s*\)\s*$", re.IGNORECASE
)

LABEL_FIELDS = ["hospital_id", "hospital_name", "city", "state", "status"]


@dataclass
class ClassificationScheme:
    """How ``classify`` assigns the color classification.

    Attributes:
        value: Column to classify.
        kind: "quantile" (continuous value bucketed by quantiles) or
            "factor" (discrete levels used as-is).
        n_buckets: Number of quantile buckets.
        labels: Optional bucket labels (length ``n_buckets``).
    """

    value: str = "mean_ratio"
    kind: str = "quantile"
    n_buckets: int = 5
    labels: Optional[List[str]] = None

    def __post_init__(self):
        if self.kind not in ("quantile", "factor"):
            raise ValueError(f"Unknown classification kind: {self.kind!r}")
        if self.kind == "quantile" and self.n_buckets < 1:
            raise ValueError(f"n_buckets must be >= 1, got {self.n_buckets}")
        if self.labels is not None and self.kind == "quantile" and len(self.labels) != self.n_buckets:
            raise ValueError(
                f"Expected {self.n_buckets} labels, got {len(self.labels)}"
            )

    @classmethod
    def from_config(cls, cfg: DictConfig) -> "ClassificationScheme":
        gcfg = cfg.geo
        labels = OmegaConf.to_container(gcfg.labels) if gcfg.labels is not None else None
        return cls(
            value=gcfg.value,
            kind=gcfg.kind,
            n_buckets=int(gcfg.n_buckets),
            labels=labels,
        )


def parse_coordinates(value) -> Optional[Tuple[float, float]]:
    """Parse a coordinate pair into ``(longitude, latitude)``.

    Accepts a two-element sequence, a GeoJSON point mapping, a JSON array
    string or a WKT ``POINT (lon lat)`` string. Returns None for anything
    else, including missing values.

    Example:
        >>> parse_coordinates([-98.5, 39.8])
        (-98.5, 39.8)
        >>> parse_coordinates("POINT (-98.5 39.8)")
        (-98.5, 39.8)
    """
    if value is None:
        return None
    if isinstance(value, dict):
        if "coordinates" in value:
            return parse_coordinates(value["coordinates"])
        # Socrata location objects
        if "longitude" in value and "latitude" in value:
            return parse_coordinates([value["longitude"], value["latitude"]])
        return None
    if isinstance(value, str):
        match = _WKT_POINT.match(value)
        if match:
            return float(match.group(1)), float(match.group(2))
        try:
            return parse_coordinates(json.loads(value))
        except ValueError:
            return None
    if isinstance(value, (list, tuple, np.ndarray)):
        if len(value) != 2:
            return None
        try:
            lon, lat = float(value[0]), float(value[1])
        except (TypeError, ValueError):
            return None
        if np.isnan(lon) or np.isnan(lat):
            return None
        return lon, lat
    return None


def split_coordinates(df: pd.DataFrame, field: str = "location") -> pd.DataFrame:
    """Unpack a coordinate pair column into ``longitude`` and ``latitude``.

    Element 0 becomes the longitude and element 1 the latitude. Rows
    without a usable coordinate are dropped.
    """
    if field not in df.columns:
        logger.warning(f"No {field!r} column; geo view is empty")
        return df.iloc[0:0].assign(longitude=pd.Series(dtype=float), latitude=pd.Series(dtype=float))

    parsed = df[field].map(parse_coordinates)
    keep = parsed.notna()
    out = df[keep].copy()
    pairs = parsed[keep].tolist()
    out["longitude"] = [p[0] for p in pairs]
    out["latitude"] = [p[1] for p in pairs]
    out["longitude"] = out["longitude"].astype(float)
    out["latitude"] = out["latitude"].astype(float)

    dropped = int((~keep).sum())
    if dropped:
        logger.info(f"Geo view: dropped {dropped} rows without coordinates")
    return out.reset_index(drop=True)


def classify(df: pd.DataFrame, scheme: ClassificationScheme) -> pd.DataFrame:
    """Add a ``classification`` column for color mapping.

    Quantile schemes bucket the value column with ``pandas.qcut``; edges
    that coincide are merged, so fewer buckets than requested may result.
    Rows with a missing value get a missing classification.
    """
    out = df.copy()
    values = out[scheme.value]

    if scheme.kind == "factor":
        if isinstance(values.dtype, pd.CategoricalDtype):
            out["classification"] = values
        else:
            out["classification"] = values.astype("category")
        return out

    numeric = pd.to_numeric(values, errors="coerce")
    n_valid = int(numeric.notna().sum())
    if n_valid == 0:
        out["classification"] = pd.Categorical([np.nan] * len(out))
        return out

    buckets = pd.qcut(numeric, q=scheme.n_buckets, duplicates="drop")
    n_buckets = len(buckets.cat.categories)
    if scheme.labels is not None:
        if n_buckets == scheme.n_buckets:
            buckets = buckets.cat.rename_categories(list(scheme.labels))
        else:
            logger.warning(
                f"Only {n_buckets} distinct quantile buckets for {scheme.value}; "
                "using interval labels"
            )
    out["classification"] = buckets
    return out


def build_geo_view(
    summary: pd.DataFrame,
    scheme: Optional[ClassificationScheme] = None,
    field: str = "location",
    label_fields: Sequence[str] = LABEL_FIELDS,
) -> pd.DataFrame:
    """Geo view for the map renderer.

    Args:
        summary: Hospital summary table (one row per hospital) carrying the
            coordinate field and the classified value.
        scheme: Classification scheme (quantile over ``mean_ratio`` when None).
        field: Coordinate pair column.
        label_fields: Columns passed through as labels when present.

    Returns:
        DataFrame with ``longitude``, ``latitude``, ``classification``,
        the classified value and label fields.
    """
    scheme = scheme if scheme is not None else ClassificationScheme()
    located = split_coordinates(summary, field=field)
    classified = classify(located, scheme)

    labels = [c for c in label_fields if c in classified.columns and c != scheme.value]
    columns = ["longitude", "latitude", "classification", scheme.value] + labels
    logger.info(f"Geo view: {len(classified)} located hospitals")
    return classified[columns]
