"""
Season inputs: drone feature table + trial design / ground-truth table.

Design columns are renamed from their season-specific headers to the
canonical names below, then joined onto the feature table by plot ID.
"""

import os

import pandas as pd

from flowering.features.engineer_features import (
    engineer_features,
    get_feature_cols,
)

DESIGN_COLS = ["plot_id", "experiment", "genotype", "rep", "row", "col",
               "anthesis_gdd"]
LABEL_COL = "anthesis_gdd"


def _read_csv(path):
    if not os.path.exists(path):
        raise FileNotFoundError(f"Missing: {path}")
    return pd.read_csv(path)


def standardize_design(design: pd.DataFrame, column_map: dict) -> pd.DataFrame:
    """Rename season-specific design headers and keep the canonical columns."""
    missing = [src for src in column_map if src not in design.columns]
    if missing:
        raise KeyError(f"Design table lacks columns {missing}")
    out = design.rename(columns=column_map)
    out = out[[c for c in DESIGN_COLS if c in out.columns]].copy()
    out["plot_id"] = out["plot_id"].astype(str)
    out[LABEL_COL] = pd.to_numeric(out[LABEL_COL], errors="coerce")
    return out


def load_season_tables(season_cfg: dict, raw_dir: str):
    """
    Load the raw feature table and the standardized design table.

    Returns
    -------
    features : pd.DataFrame
        Raw per-plot features with ``plot_id`` as string.
    design : pd.DataFrame
        Canonical design columns (see DESIGN_COLS).
    """
    column_map = season_cfg["columns"]
    id_col = next(src for src, dst in column_map.items() if dst == "plot_id")

    features = _read_csv(os.path.join(raw_dir, season_cfg["features_file"]))
    if id_col in features.columns and id_col != "plot_id":
        features = features.rename(columns={id_col: "plot_id"})
    if "plot_id" not in features.columns:
        raise KeyError(f"Feature table has no plot ID column ({id_col!r})")
    features["plot_id"] = features["plot_id"].astype(str)

    design = standardize_design(
        _read_csv(os.path.join(raw_dir, season_cfg["design_file"])), column_map
    )
    return features, design


def join_labels(features: pd.DataFrame, design: pd.DataFrame) -> pd.DataFrame:
    """
    Left-join design/labels onto features by plot ID.

    Raises pandas.errors.MergeError if a plot ID repeats in either table.
    """
    return features.merge(design, on="plot_id", how="left",
                          validate="one_to_one")


def filter_experiments(df: pd.DataFrame, experiments) -> pd.DataFrame:
    """Keep plots belonging to the given experiment(s)."""
    if isinstance(experiments, str):
        experiments = [experiments]
    return df[df["experiment"].isin(experiments)].reset_index(drop=True)


def split_labeled(df: pd.DataFrame, label: str = LABEL_COL):
    """Partition into (labeled, unlabeled) by a non-missing label."""
    has_label = df[label].notna()
    return (df[has_label].reset_index(drop=True),
            df[~has_label].reset_index(drop=True))


def prepare_season_plots(season_cfg: dict, raw_dir: str, feature_cfg: dict):
    """
    Load, engineer, and label one season's plots.

    Returns
    -------
    plots : pd.DataFrame
        Engineered features joined with design/labels.
    design : pd.DataFrame
    feature_cols : list of str
    """
    raw, design = load_season_tables(season_cfg, raw_dir)
    feats = engineer_features(
        raw,
        reference_col=season_cfg["reference_soil_column"],
        drop_columns=season_cfg.get("drop_columns", ()),
        soil_marker=feature_cfg["soil_marker"],
        canopy_marker=feature_cfg["canopy_marker"],
        height_marker=feature_cfg["height_marker"],
    )
    feature_cols = get_feature_cols(feats, exclude=DESIGN_COLS)
    plots = join_labels(feats, design)
    return plots, design, feature_cols
