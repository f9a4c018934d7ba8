# src/hrrp/normalize.py
"""Schema normalization for the raw CMS tables.

Pure DataFrame -> DataFrame transforms: column renaming/pruning, sentinel
replacement, numeric/boolean coercion and ordered categorical coercion.
``normalize_hospitals`` and ``normalize_readmissions`` compose them from
configuration. Every transform returns a new frame and is idempotent, so
normalizing an already normalized table is a no-op.

Example:
    >>> from hrrp.normalize import normalize_hospitals
    >>> hospitals = normalize_hospitals(raw_hospitals)
    >>> hospitals["overall_rating"].cat.categories.tolist()
    ['1', '2', '3', '4', '5']
"""

import logging
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Type

import numpy as np
import pandas as pd
from omegaconf import DictConfig

from .config import default_config
from .errors import SchemaError
from .schemas import Condition, NationalComparison, OverallRating, categorical_dtype, levels

logger = logging.getLogger(__name__)

_BOOL_TOKENS = {
    "yes": True,
    "y": True,
    "true": True,
    "no": False,
    "n": False,
    "false": False,
}

# CMS Certification Numbers are six characters; numeric exports drop the
# leading zeros.
_ID_WIDTH = 6


def rename_columns(
    df: pd.DataFrame,
    mapping: Mapping[str, str],
    required: Optional[Iterable[str]] = None,
    prune: bool = True,
) -> pd.DataFrame:
    """Rename raw columns to normalized names.

    Columns that already carry a normalized name are kept as they are.

    Args:
        df: Raw table.
        mapping: Raw column name -> normalized column name.
        required: Normalized columns that must be present afterwards.
        prune: If True, drop every column that is not a normalized name.

    Returns:
        New DataFrame with renamed (and optionally pruned) columns.

    Raises:
        SchemaError: If a required column is missing or two raw columns
            map to the same normalized name.
    """
    targets = list(dict.fromkeys(mapping.values()))
    present = {raw: new for raw, new in mapping.items() if raw in df.columns and raw != new}

    out = df.rename(columns=present)

    duplicated = out.columns[out.columns.duplicated()].unique().tolist()
    if duplicated:
        raise SchemaError(
            f"Ambiguous input: several columns map to {duplicated}", columns=duplicated
        )

    if required is not None:
        missing = [col for col in required if col not in out.columns]
        if missing:
            raise SchemaError(f"Missing required columns: {missing}", columns=missing)

    if prune:
        out = out[[col for col in out.columns if col in targets]]

    return out.copy()


def replace_sentinels(df: pd.DataFrame, tokens: Iterable[str]) -> pd.DataFrame:
    """Replace exact, case-sensitive sentinel strings with missing values.

    Args:
        df: Input table.
        tokens: Sentinel strings, e.g. ``["Not Available"]``.

    Returns:
        New DataFrame with every sentinel cell set to NaN.
    """
    token_set = set(tokens)
    out = df.copy()
    n_replaced = 0

    for col in out.columns:
        if isinstance(out[col].dtype, pd.CategoricalDtype):
            continue
        mask = out[col].map(lambda v: isinstance(v, str) and v in token_set).astype(bool)
        if mask.any():
            n_replaced += int(mask.sum())
            out[col] = out[col].where(~mask, np.nan)

    if n_replaced:
        logger.debug(f"Replaced {n_replaced} sentinel cells with missing values")
    return out


def coerce_numeric(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """Coerce columns to float; unparsable values become NaN."""
    out = df.copy()
    for col in columns:
        before = out[col].notna().sum()
        out[col] = pd.to_numeric(out[col], errors="coerce").astype(float)
        lost = int(before - out[col].notna().sum())
        if lost:
            logger.warning(f"{col}: {lost} values could not be parsed as numbers")
    return out


def _to_bool(value):
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str):
        return _BOOL_TOKENS.get(value.strip().lower(), pd.NA)
    return pd.NA


def coerce_boolean(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """Coerce Yes/No style columns to the nullable boolean dtype."""
    out = df.copy()
    for col in columns:
        out[col] = out[col].map(_to_bool).astype("boolean")
    return out


def _level_token(value, title_case: bool):
    if value is None or (pd.api.types.is_scalar(value) and pd.isna(value)):
        return np.nan
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        value = int(value)
    token = str(value).strip()
    return token.title() if title_case else token


def coerce_ordered(
    df: pd.DataFrame,
    column: str,
    enum_cls: Type[Enum],
    title_case: bool = False,
) -> pd.DataFrame:
    """Coerce a column to an ordered categorical with the enum's levels.

    Args:
        df: Input table.
        column: Column to coerce.
        enum_cls: Enumeration defining the levels and their order.
        title_case: Title-case raw tokens before matching.

    Returns:
        New DataFrame; tokens outside the levels become NaN.
    """
    out = df.copy()
    tokens = out[column].astype(object).map(lambda v: _level_token(v, title_case))

    allowed = levels(enum_cls)
    unknown = tokens[tokens.notna() & ~tokens.isin(allowed)]
    if len(unknown):
        logger.warning(
            f"{column}: {len(unknown)} values outside {enum_cls.__name__} levels "
            f"set to missing (e.g. {unknown.iloc[0]!r})"
        )

    out[column] = pd.Categorical(tokens.where(tokens.isin(allowed)), dtype=categorical_dtype(enum_cls))
    return out


def map_tokens(
    df: pd.DataFrame,
    column: str,
    table: Mapping[str, str],
    enum_cls: Type[Enum],
) -> pd.DataFrame:
    """Map raw tokens to enum values through an explicit table.

    Values that already equal an enum value are kept; everything else not
    in the table becomes NaN.
    """
    lookup = {str(k): str(v) for k, v in table.items()}
    lookup.update({v: v for v in levels(enum_cls)})

    out = df.copy()
    raw = out[column].astype(object)
    mapped = raw.map(lambda v: lookup.get(str(v).strip()) if isinstance(v, str) else np.nan)

    unmapped = raw[raw.notna() & mapped.isna()]
    if len(unmapped):
        logger.warning(
            f"{column}: {len(unmapped)} values not in the token table set to missing "
            f"(e.g. {unmapped.iloc[0]!r})"
        )

    out[column] = pd.Categorical(mapped, dtype=categorical_dtype(enum_cls))
    return out


def normalize_ids(df: pd.DataFrame, column: str = "hospital_id") -> pd.DataFrame:
    """Render hospital identifiers as zero-padded strings."""

    def _fmt(v):
        if v is None or (pd.api.types.is_scalar(v) and pd.isna(v)):
            return np.nan
        if isinstance(v, (float, np.floating)) and float(v).is_integer():
            v = int(v)
        token = str(v).strip()
        return token.zfill(_ID_WIDTH) if token.isdigit() else token

    out = df.copy()
    out[column] = out[column].map(_fmt).astype(object)
    return out


def _require(df: pd.DataFrame, columns: Iterable[str], what: str) -> List[str]:
    columns = list(columns)
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise SchemaError(f"Configured {what} columns missing from input: {missing}", columns=missing)
    return columns


def normalize_hospitals(
    raw: pd.DataFrame,
    cfg: Optional[DictConfig] = None,
) -> pd.DataFrame:
    """Normalize the Hospital General Information table.

    Args:
        raw: Raw hospital table.
        cfg: Pipeline configuration (defaults when None).

    Returns:
        Normalized hospital table (one row per hospital).

    Raises:
        SchemaError: If a configured column is missing.
    """
    cfg = cfg if cfg is not None else default_config()
    ncfg = cfg.normalize

    df = rename_columns(
        raw,
        ncfg.hospital_columns,
        required=ncfg.hospital_required,
        prune=ncfg.prune,
    )
    df = replace_sentinels(df, ncfg.sentinels)
    df = normalize_ids(df)

    df = coerce_boolean(df, _require(df, ncfg.hospital_boolean, "boolean"))
    df = coerce_ordered(df, _require(df, [ncfg.rating_column], "rating")[0], OverallRating)
    for col in _require(df, ncfg.comparison_columns, "comparison"):
        df = coerce_ordered(df, col, NationalComparison, title_case=True)

    logger.info(f"Normalized hospital table: {len(df)} rows, {df.shape[1]} columns")
    return df


def normalize_readmissions(
    raw: pd.DataFrame,
    cfg: Optional[DictConfig] = None,
) -> pd.DataFrame:
    """Normalize the readmission measures table.

    Args:
        raw: Raw readmission table (one row per hospital and measure).
        cfg: Pipeline configuration (defaults when None).

    Returns:
        Normalized readmission table with condition codes and float metrics.

    Raises:
        SchemaError: If a configured column is missing.
    """
    cfg = cfg if cfg is not None else default_config()
    ncfg = cfg.normalize

    df = rename_columns(
        raw,
        ncfg.readmission_columns,
        required=ncfg.readmission_required,
        prune=ncfg.prune,
    )
    df = replace_sentinels(df, ncfg.sentinels)
    df = normalize_ids(df)
    df = coerce_numeric(df, _require(df, ncfg.readmission_numeric, "numeric"))
    df = map_tokens(df, "condition", ncfg.condition_tokens, Condition)

    for col in ("start_date", "end_date"):
        if col in df.columns:
            df[col] = pd.to_datetime(df[col], errors="coerce")

    logger.info(f"Normalized readmission table: {len(df)} rows")
    return df
