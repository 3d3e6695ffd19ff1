#!/usr/bin/env python3
"""
Train the LASSO flowering-time model for one season and impute the
missing anthesis labels.

Steps:
  1. engineered features + design/labels for the season's experiments
  2. stratified train/test split of labeled plots
  3. 10-fold CV penalty search, refit on the training partition
  4. held-out R2 / rsq / Spearman rho
  5. predictions for unlabeled plots (minus the exclusion list)
  6. replicate concordance + field map of predicted GDD

Produces (models/<season>/ and reports/<season>/model/):
    models/<season>/bundle.pkl           - test predictions, pipeline, metrics
    models/<season>/meta.json            - params + metrics
    tables/predictions_test.csv
    tables/predictions_unlabeled.csv
    tables/coefficients.csv
    tables/cv_results.csv
    tables/label_bins.csv
    tables/replicate_concordance.csv
    figures/*.png

Usage:
    python scripts/run_flowering_model.py --season 2021
    python scripts/run_flowering_model.py --season 2022 --n-jobs 4
"""

import argparse
import json
import os
import pickle
import sys
from datetime import datetime, timezone

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from flowering.config import CFG, MODELS_DIR, RAW_DIR, REPORTS_DIR, SEASONS, season_config  # noqa: E402
from flowering.diagnostics import (  # noqa: E402
    field_map,
    morans_i,
    replicate_concordance,
    replicate_pairs,
)
from flowering.features.labels import (  # noqa: E402
    LABEL_COL,
    filter_experiments,
    prepare_season_plots,
    split_labeled,
)
from flowering.inference import attach_design, predict_unlabeled  # noqa: E402
from flowering.models.evaluation import evaluate_predictions  # noqa: E402
from flowering.models.lasso import LassoModel, penalty_grid  # noqa: E402
from flowering.reporting import (  # noqa: E402
    fig_cv_curve,
    fig_field_map,
    fig_observed_vs_predicted,
    fig_replicate_scatter,
    save_fig,
    save_table,
)
from flowering.splitting import label_bin_proportions, stratified_split  # noqa: E402

MODEL_CFG = CFG["model"]


def main():
    parser = argparse.ArgumentParser(description="LASSO flowering-time model per season")
    parser.add_argument("--season", choices=SEASONS, required=True)
    parser.add_argument("--n-jobs", type=int, default=None)
    args = parser.parse_args()

    season_cfg = season_config(args.season)
    model_dir = os.path.join(MODELS_DIR, args.season)
    out_dir = os.path.join(REPORTS_DIR, args.season, "model")
    tbl_dir = os.path.join(out_dir, "tables")
    fig_dir = os.path.join(out_dir, "figures")
    os.makedirs(model_dir, exist_ok=True)

    # ── Data ──
    print("=" * 70)
    print(f"Flowering-time model -- season {args.season}")
    print("=" * 70)
    plots, design, feature_cols = prepare_season_plots(season_cfg, RAW_DIR, CFG["features"])
    plots = filter_experiments(plots, season_cfg["experiments"])
    labeled, unlabeled = split_labeled(plots, LABEL_COL)
    print(f"  Plots: {len(plots)}  labeled: {len(labeled)}  unlabeled: {len(unlabeled)}")
    print(f"  Features: {len(feature_cols)}")

    # ── Split ──
    train, test = stratified_split(
        labeled, LABEL_COL,
        test_size=MODEL_CFG["test_size"],
        n_bins=MODEL_CFG["n_bins"],
        seed=MODEL_CFG["seed"],
    )
    print(f"  Train: {len(train)}, Test: {len(test)}")
    save_table(label_bin_proportions(train, test, LABEL_COL, MODEL_CFG["n_bins"]),
               tbl_dir, "label_bins")

    # ── Fit ──
    model = LassoModel(
        alphas=penalty_grid(MODEL_CFG["n_alphas"],
                            MODEL_CFG["log10_alpha_min"],
                            MODEL_CFG["log10_alpha_max"]),
        cv_folds=MODEL_CFG["cv_folds"],
        max_iter=MODEL_CFG["max_iter"],
        seed=MODEL_CFG["seed"],
        n_jobs=args.n_jobs,
    )
    model.fit(train[feature_cols], train[LABEL_COL])
    cv_df = model.cv_results()
    print(f"  Best alpha: {model.best_alpha_:.4g}  CV R2={model.best_score_:.4f}  "
          f"non-zero coefs: {model.n_nonzero}/{len(model.retained_features())}")
    print(f"  Degenerate grid points (NaN R2): {int(cv_df['mean_r2'].isna().sum())}")

    # ── Evaluate ──
    test_pred = model.predict(test[feature_cols])
    metrics = evaluate_predictions(test[LABEL_COL].to_numpy(), test_pred)
    print("  Test: rsq={rsq:.4f}  R2={r2:.4f}  rho={spearman_rho:.4f}  "
          "RMSE={rmse:.1f} GDD".format(**metrics))

    test_df = test[["plot_id", LABEL_COL]].copy()
    test_df["predicted_gdd"] = test_pred
    save_table(test_df, tbl_dir, "predictions_test")
    save_table(model.coefficients(nonzero_only=True), tbl_dir, "coefficients")
    save_table(cv_df, tbl_dir, "cv_results")
    save_fig(fig_cv_curve(cv_df, model.best_alpha_), fig_dir, "cv_curve")
    save_fig(fig_observed_vs_predicted(test_df[LABEL_COL], test_pred, metrics),
             fig_dir, "observed_vs_predicted")

    # ── Inference ──
    exclude = season_cfg.get("exclude_plots", [])
    preds = predict_unlabeled(model, unlabeled, feature_cols, exclude=exclude)
    print(f"  Unlabeled predictions: {len(preds)} "
          f"({len(unlabeled) - len(preds)} excluded)")
    save_table(preds, tbl_dir, "predictions_unlabeled")

    # ── Bundle ──
    bundle = {
        "season": args.season,
        "test_predictions": test_df,
        "pipeline": model.pipeline,
        "feature_cols": feature_cols,
        "coefficients": model.coefficients(),
        "metrics": metrics,
    }
    with open(os.path.join(model_dir, "bundle.pkl"), "wb") as f:
        pickle.dump(bundle, f)

    # ── Diagnostics ──
    diag = attach_design(preds, design)
    conc = replicate_concordance(diag, "predicted_gdd")
    save_table(conc, tbl_dir, "replicate_concordance")
    if len(conc) and conc["pearson_r"].notna().any():
        i = conc["n"].idxmax()
        pairs = replicate_pairs(diag, "predicted_gdd",
                                conc.at[i, "rep_a"], conc.at[i, "rep_b"])
        save_fig(fig_replicate_scatter(pairs, conc.at[i, "pearson_r"]),
                 fig_dir, "replicate_concordance")

    grid = field_map(diag, "predicted_gdd")
    moran = morans_i(grid)
    if grid.size:
        save_fig(fig_field_map(grid), fig_dir, "field_map")
    print(f"  Moran's I of predicted GDD: {moran:.3f}")

    meta = {
        "created": datetime.now(timezone.utc).isoformat(),
        "season": args.season,
        "experiments": season_cfg["experiments"],
        "n_train": len(train),
        "n_test": len(test),
        "n_unlabeled_predicted": len(preds),
        "n_excluded": len(unlabeled) - len(preds),
        "n_features": len(feature_cols),
        "params": model.get_params_dict(),
        "cv_r2": model.best_score_,
        "test_metrics": metrics,
        "replicate_concordance": conc.to_dict(orient="records"),
        "morans_i_predicted": None if np.isnan(moran) else moran,
    }
    with open(os.path.join(model_dir, "meta.json"), "w") as f:
        json.dump(meta, f, indent=2, default=str)
    print(f"  * Saved model bundle: {model_dir}")


if __name__ == "__main__":
    main()
