"""
Feature engineering for per-plot drone summary tables.

Turns the raw per-plot table (vegetation-index quantiles, canopy area,
elevation quantiles for vegetation and soil pixels) into the cleaned
feature table used by both heritability and regression:

  1. drop identifier/index columns that are not part of the key
  2. +/-inf (division by near-zero denominators) -> NaN
  3. drop constant columns, counting only finite values
  4. plant height = canopy elevation quantile - reference soil quantile,
     then drop every raw soil-elevation column

Feature names follow ``<index>_<stat>_<YYYYMMDD>``:
    NDVI_q50_20210701, canopy_area_20210701,
    elev_veg_q95_20210701 -> height_q95_20210701 after step 4

Scaling and imputation are deferred to the modeling pipeline.

Usage:
    from flowering.features.engineer_features import engineer_features

    feats = engineer_features(raw, reference_col="elev_soil_q50_20210524")
"""

import re

import numpy as np
import pandas as pd

KEY_COLS = ("plot_id",)

FEATURE_NAME_RE = re.compile(r"^(?P<feature_type>.+?)_(?P<date>\d{8})$")


def drop_index_columns(df: pd.DataFrame, columns) -> pd.DataFrame:
    """Drop identifier/index columns (e.g. a CSV's 'Unnamed: 0')."""
    present = [c for c in columns if c in df.columns and c not in KEY_COLS]
    return df.drop(columns=present)


def drop_constant_columns(df: pd.DataFrame, protect=()) -> pd.DataFrame:
    """Drop numeric columns holding at most one distinct non-missing value."""
    protect = set(protect) | set(KEY_COLS)
    constant = [
        c for c in df.columns
        if c not in protect
        and pd.api.types.is_numeric_dtype(df[c])
        and df[c].nunique(dropna=True) <= 1
    ]
    return df.drop(columns=constant)


def replace_infinite(df: pd.DataFrame) -> pd.DataFrame:
    """Replace +/-inf with NaN in every numeric column."""
    out = df.copy()
    num_cols = out.select_dtypes(include=[np.number]).columns
    out[num_cols] = out[num_cols].replace([np.inf, -np.inf], np.nan)
    return out


def derive_plant_height(df: pd.DataFrame, reference_col: str,
                        soil_marker: str = "elev_soil",
                        canopy_marker: str = "elev_veg",
                        height_marker: str = "height") -> pd.DataFrame:
    """
    Replace canopy-elevation columns by height above a soil reference.

    Parameters
    ----------
    df : pd.DataFrame
        Feature table with canopy and soil elevation quantile columns.
    reference_col : str
        Soil elevation column (fixed quantile and date) used as ground level.
        Embeds a season-specific date, so a mismatch is a hard error.
    soil_marker, canopy_marker, height_marker : str
        Substrings identifying soil, canopy, and derived height columns.

    Returns
    -------
    pd.DataFrame
        Same rows; every ``canopy_marker`` column replaced in place by a
        ``height_marker`` column, and no ``soil_marker`` column left.

    Raises
    ------
    KeyError
        If ``reference_col`` is not in ``df``.
    """
    soil_cols = [c for c in df.columns if soil_marker in c]
    if reference_col not in df.columns:
        raise KeyError(
            f"Reference soil column {reference_col!r} not found; "
            f"soil columns present: {soil_cols}"
        )

    reference = df[reference_col]
    columns = {}
    for c in df.columns:
        if c == reference_col or soil_marker in c:
            continue
        if canopy_marker in c:
            columns[c.replace(canopy_marker, height_marker)] = df[c] - reference
        else:
            columns[c] = df[c]
    return pd.DataFrame(columns, index=df.index)


def engineer_features(raw: pd.DataFrame, reference_col: str,
                      drop_columns=("Unnamed: 0",),
                      soil_marker: str = "elev_soil",
                      canopy_marker: str = "elev_veg",
                      height_marker: str = "height") -> pd.DataFrame:
    """Run the full cleaning sequence; ``raw`` is not modified."""
    df = drop_index_columns(raw, drop_columns)
    df = replace_infinite(df)
    df = drop_constant_columns(df, protect=[reference_col])
    df = derive_plant_height(
        df, reference_col,
        soil_marker=soil_marker,
        canopy_marker=canopy_marker,
        height_marker=height_marker,
    )
    return df


def get_feature_cols(df: pd.DataFrame, exclude=()) -> list:
    """Return numeric feature columns (exclude key/design/label columns)."""
    exclude = set(exclude) | set(KEY_COLS)
    return [c for c in df.columns
            if c not in exclude and pd.api.types.is_numeric_dtype(df[c])]


def parse_feature_name(name: str, date_format: str = "%Y%m%d"):
    """
    Split a feature name into (feature_type, acquisition date).

    >>> parse_feature_name("NDVI_q50_20210701")
    ('NDVI_q50', Timestamp('2021-07-01 00:00:00'))

    Names without a trailing date return (name, NaT).
    """
    m = FEATURE_NAME_RE.match(name)
    if m is None:
        return name, pd.NaT
    date = pd.to_datetime(m.group("date"), format=date_format, errors="coerce")
    return m.group("feature_type"), date
