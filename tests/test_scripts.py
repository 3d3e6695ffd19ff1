"""
Smoke tests for the season runs in scripts/: a synthetic season written to
a temporary directory, both scripts run through ``main()``, and every
table, figure, and model artifact checked.

Run with:  python -m pytest tests/test_scripts.py -v
"""

import json
import os
import pickle
import sys

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))

import run_flowering_model  # noqa: E402
import run_heritability  # noqa: E402


# -- Fixtures ---------------------------------------------------------------

SEASON = "2021"
N_GENO = 60
N_REP = 2
N_UNLABELED = 20
SEED = 5
REF = "elev_soil_q50_20210524"
EXCLUDED = ["21-1003", "21-1010", "21-1017"]

SEASON_CFG = {
    "features_file": "features.csv",
    "design_file": "design.csv",
    "drop_columns": ["Unnamed: 0"],
    "reference_soil_column": REF,
    "columns": {
        "PlotID": "plot_id",
        "Experiment": "experiment",
        "Pedigree": "genotype",
        "Rep": "rep",
        "Row": "row",
        "Col": "col",
        "Anthesis_GDD": "anthesis_gdd",
    },
    "experiments": ["HIPS_2021"],
    "heritability_experiment": "HIPS_2021",
    "exclude_plots": EXCLUDED,
}


def _write_season(raw_dir):
    """Two replicates of 60 genotypes; anthesis linear in one NDVI feature."""
    rng = np.random.RandomState(SEED)
    n = N_GENO * N_REP
    geno = np.tile([f"G{i:03d}" for i in range(N_GENO)], N_REP)
    rep = np.repeat(np.arange(1, N_REP + 1), N_GENO)
    g_eff = dict(zip(np.unique(geno), rng.normal(0, 1.0, N_GENO)))
    g = np.array([g_eff[x] for x in geno])
    plot_ids = [f"21-{1000 + i}" for i in range(n)]
    soil = 300.0 + 0.2 * rng.rand(n)

    ndvi = 0.6 + 0.1 * g + 0.03 * rng.randn(n)
    features = pd.DataFrame({
        "Unnamed: 0": np.arange(n),
        "PlotID": plot_ids,
        "NDVI_q50_20210701": ndvi,
        "canopy_area_20210701": 0.4 + 0.05 * g + 0.02 * rng.randn(n),
        "NDVI_q50_20210715": 0.7 + 0.1 * g + 0.03 * rng.randn(n),
        "GRVI_q90_20210715": rng.randn(n),
        "elev_veg_q95_20210701": soil + 1.5 + 0.2 * g + 0.05 * rng.randn(n),
        REF: soil,
        "elev_soil_q95_20210701": soil + 0.05,
    })

    anthesis = 1500.0 + 400.0 * (ndvi - 0.6) + rng.normal(0, 5.0, n)
    unlabeled = np.concatenate([
        [int(p[-3:]) for p in EXCLUDED],
        rng.choice(np.arange(20, n), N_UNLABELED - len(EXCLUDED), replace=False),
    ])
    anthesis[unlabeled] = np.nan
    design = pd.DataFrame({
        "PlotID": plot_ids,
        "Experiment": "HIPS_2021",
        "Pedigree": geno,
        "Rep": rep,
        "Row": np.arange(n) // 12 + 1,
        "Col": np.arange(n) % 12 + 1,
        "Anthesis_GDD": anthesis,
    })

    os.makedirs(raw_dir)
    features.to_csv(os.path.join(raw_dir, "features.csv"), index=False)
    design.to_csv(os.path.join(raw_dir, "design.csv"), index=False)


@pytest.fixture(scope="module")
def season_run(tmp_path_factory):
    root = tmp_path_factory.mktemp("season")
    raw_dir = str(root / "raw")
    reports_dir = str(root / "reports")
    models_dir = str(root / "models")
    _write_season(raw_dir)

    with pytest.MonkeyPatch.context() as mp:
        for module in (run_heritability, run_flowering_model):
            mp.setattr(module, "RAW_DIR", raw_dir)
            mp.setattr(module, "REPORTS_DIR", reports_dir)
            mp.setattr(module, "season_config", lambda season: SEASON_CFG)
        mp.setattr(run_flowering_model, "MODELS_DIR", models_dir)

        mp.setattr(sys, "argv", ["run_heritability.py", "--season", SEASON,
                                 "--limit", "2"])
        run_heritability.main()
        mp.setattr(sys, "argv", ["run_flowering_model.py", "--season", SEASON])
        run_flowering_model.main()

    return {
        "heritability": os.path.join(reports_dir, SEASON, "heritability"),
        "model": os.path.join(reports_dir, SEASON, "model"),
        "models": os.path.join(models_dir, SEASON),
    }


def _table(season_run, part, name):
    return pd.read_csv(os.path.join(season_run[part], "tables", f"{name}.csv"),
                       dtype={"plot_id": str})


# -- Tests -------------------------------------------------------------------

class TestHeritabilityRun:
    def test_heritability_table(self, season_run):
        h2 = _table(season_run, "heritability", "heritability")
        assert len(h2) == 2
        for col in ["feature", "h2", "vg", "ve", "sed", "converged", "negative",
                    "feature_type", "date"]:
            assert col in h2.columns
        assert h2["h2"].notna().all()

    def test_summary_by_type(self, season_run):
        by_type = _table(season_run, "heritability", "heritability_by_type")
        assert len(by_type) > 0

    def test_figures(self, season_run):
        fig_dir = os.path.join(season_run["heritability"], "figures")
        assert os.path.isfile(os.path.join(fig_dir, "h2_by_type.png"))
        assert os.path.isfile(os.path.join(fig_dir, "h2_over_time.png"))


class TestModelRun:
    def test_prediction_tables(self, season_run):
        test = _table(season_run, "model", "predictions_test")
        assert list(test.columns) == ["plot_id", "anthesis_gdd", "predicted_gdd"]
        assert test["anthesis_gdd"].notna().all()
        unlabeled = _table(season_run, "model", "predictions_unlabeled")
        assert list(unlabeled.columns) == ["plot_id", "predicted_gdd"]
        assert len(unlabeled) == N_UNLABELED - len(EXCLUDED)

    def test_excluded_plots_not_predicted(self, season_run):
        unlabeled = _table(season_run, "model", "predictions_unlabeled")
        assert not set(EXCLUDED) & set(unlabeled["plot_id"])

    def test_cv_and_coefficient_tables(self, season_run):
        cv = _table(season_run, "model", "cv_results")
        assert list(cv.columns) == ["alpha", "mean_r2", "std_r2", "rank"]
        assert len(cv) == 50
        coefs = _table(season_run, "model", "coefficients")
        assert "NDVI_q50_20210701" in set(coefs["feature"])
        for name in ["label_bins", "replicate_concordance"]:
            assert os.path.isfile(
                os.path.join(season_run["model"], "tables", f"{name}.csv"))

    def test_bundle(self, season_run):
        with open(os.path.join(season_run["models"], "bundle.pkl"), "rb") as f:
            bundle = pickle.load(f)
        for key in ["season", "test_predictions", "pipeline", "feature_cols",
                    "coefficients", "metrics"]:
            assert key in bundle
        assert bundle["season"] == SEASON
        assert "height_q95_20210701" in bundle["feature_cols"]
        assert not [c for c in bundle["feature_cols"] if "elev_soil" in c]
        saved = _table(season_run, "model", "predictions_test")
        np.testing.assert_allclose(bundle["test_predictions"]["predicted_gdd"],
                                   saved["predicted_gdd"])
        assert len(bundle["pipeline"].named_steps["lasso"].coef_) > 0
        assert bundle["metrics"]["r2"] > 0.8

    def test_meta(self, season_run):
        with open(os.path.join(season_run["models"], "meta.json")) as f:
            meta = json.load(f)
        assert meta["season"] == SEASON
        assert meta["n_excluded"] == len(EXCLUDED)
        assert meta["n_unlabeled_predicted"] == N_UNLABELED - len(EXCLUDED)
        assert meta["n_train"] + meta["n_test"] == N_GENO * N_REP - N_UNLABELED
        assert meta["params"]["model"] == "Lasso"
        assert np.isfinite(meta["cv_r2"])

    def test_figures(self, season_run):
        fig_dir = os.path.join(season_run["model"], "figures")
        for name in ["cv_curve", "observed_vs_predicted", "field_map"]:
            assert os.path.isfile(os.path.join(fig_dir, f"{name}.png"))
