"""
Broad-sense heritability of drone features from mixed-model variance
components (Cullis et al. 2006).

For each trait the model is

    trait ~ 1 + (1 | genotype) + (1 | rep),   e ~ N(0, s2_e I)

fitted by REML with statsmodels MixedLM (crossed random effects as
variance components of a single all-plot group). Genotype predictions
and their prediction-error covariance come from Henderson's mixed model
equations at the REML estimates, and

    H2 = 1 - SED^2 / (2 * s2_g)

with SED the mean standard error of a difference between two genotype
predictions.

Plots with a missing trait carry no information for the likelihood but
their genotype levels are kept, so every entry of the trial is predicted.

A fit that fails or does not converge yields H2 = NaN for that trait;
the loop over traits never aborts.

Usage:
    from flowering.heritability import estimate_heritability

    h2 = estimate_heritability(plots, ["NDVI_q50_20210701", ...])
"""

import warnings

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from flowering.features.engineer_features import parse_feature_name

# Variance components at or below this are treated as boundary (zero) fits
VAR_TOL = 1e-10


# =====================================================================
# Feature selection
# =====================================================================

def select_heritability_features(columns, patterns=("_q50_", "canopy_area")):
    """Return columns containing any of the given substrings, in order."""
    return [c for c in columns if any(p in c for p in patterns)]


# =====================================================================
# Mixed model
# =====================================================================

def fit_variance_components(df, trait, genotype_col="genotype", rep_col="rep"):
    """
    REML fit of genotype and replicate variance components for one trait.

    Returns
    -------
    dict with keys:
        vg : genetic variance
        vrep : replicate variance
        ve : residual variance
        converged : bool
        n_obs : number of non-missing observations used
    """
    data = df[[trait, genotype_col, rep_col]].dropna().copy()
    data = data.rename(columns={trait: "y"})
    data["genotype"] = data[genotype_col].astype(str)
    data["rep"] = data[rep_col].astype(str)
    data["all_plots"] = 1

    if data["genotype"].nunique() < 2:
        raise ValueError(f"{trait}: need at least 2 genotypes with data")

    model = smf.mixedlm(
        "y ~ 1", data, groups="all_plots", re_formula="0",
        vc_formula={"genotype": "0 + C(genotype)", "rep": "0 + C(rep)"},
    )
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConvergenceWarning)
        warnings.simplefilter("ignore", RuntimeWarning)
        result = model.fit(reml=True, method=["lbfgs", "powell"])

    vcomp = dict(zip(model.exog_vc.names, np.asarray(result.vcomp, dtype=float)))
    return {
        "vg": float(vcomp["genotype"]),
        "vrep": float(vcomp["rep"]),
        "ve": float(result.scale),
        "converged": bool(result.converged),
        "n_obs": int(len(data)),
    }


def genotype_prediction_error(df, trait, components,
                              genotype_col="genotype", rep_col="rep"):
    """
    Genotype predictions and prediction-error covariance from the MME.

    Parameters
    ----------
    df : pd.DataFrame
        All plots of the experiment, including those with a missing trait.
    trait : str
    components : dict
        Output of :func:`fit_variance_components`.

    Returns
    -------
    means : pd.DataFrame
        Columns genotype, predicted_mean, blup, pev. One row per genotype
        level in ``df`` (also levels without any observation).
    pev : ndarray, shape (G, G)
        Prediction-error covariance of the genotype effects.
    """
    vg, vrep, ve = components["vg"], components["vrep"], components["ve"]
    if not vg > VAR_TOL:
        raise ValueError(f"{trait}: genetic variance at boundary ({vg:.3g})")

    design = df.dropna(subset=[genotype_col]).copy()
    design[genotype_col] = design[genotype_col].astype(str)
    design[rep_col] = design[rep_col].astype(str)
    levels = sorted(design[genotype_col].unique())

    obs = design.dropna(subset=[trait])
    y = obs[trait].to_numpy(dtype=float)
    n = len(y)

    z_geno = pd.get_dummies(
        pd.Categorical(obs[genotype_col], categories=levels)
    ).to_numpy(dtype=float)
    blocks = [np.ones((n, 1)), z_geno]
    shrink = [np.zeros(1), np.full(len(levels), ve / vg)]

    # Rep variance at the boundary: the effect drops out of the equations
    if vrep > VAR_TOL:
        rep_levels = sorted(design[rep_col].unique())
        z_rep = pd.get_dummies(
            pd.Categorical(obs[rep_col], categories=rep_levels)
        ).to_numpy(dtype=float)
        blocks.append(z_rep)
        shrink.append(np.full(len(rep_levels), ve / vrep))

    W = np.hstack(blocks)
    C = W.T @ W
    C[np.diag_indices_from(C)] += np.concatenate(shrink)
    C_inv = np.linalg.inv(C)
    sol = C_inv @ (W.T @ y)

    g = slice(1, 1 + len(levels))
    pev = ve * C_inv[g, g]
    means = pd.DataFrame({
        "genotype": levels,
        "predicted_mean": sol[0] + sol[g],
        "blup": sol[g],
        "pev": np.diag(pev),
    })
    return means, pev


def mean_sed(pev):
    """Mean standard error of difference over all genotype pairs."""
    pev = np.asarray(pev, dtype=float)
    G = pev.shape[0]
    if G < 2:
        raise ValueError("Need at least 2 genotypes for pairwise SED")
    d = np.diag(pev)
    var_diff = d[:, None] + d[None, :] - 2.0 * pev
    iu = np.triu_indices(G, k=1)
    return float(np.sqrt(np.clip(var_diff[iu], 0.0, None)).mean())


def cullis_h2(vg, sed):
    """
    Cullis heritability, 1 - SED^2 / (2 * vg).

    NaN when vg is not a positive finite number or SED is not finite.
    """
    if not (np.isfinite(vg) and np.isfinite(sed)) or vg <= VAR_TOL:
        return np.nan
    return float(1.0 - sed ** 2 / (2.0 * vg))


# =====================================================================
# Batch over traits
# =====================================================================

def heritability_for_trait(df, trait, genotype_col="genotype", rep_col="rep"):
    """Fit one trait; raises on any failure (see estimate_heritability)."""
    comps = fit_variance_components(df, trait, genotype_col, rep_col)
    record = {"feature": trait, **comps, "sed": np.nan, "h2": np.nan}
    if not comps["converged"]:
        record["error"] = "did not converge"
        return record

    _, pev = genotype_prediction_error(df, trait, comps, genotype_col, rep_col)
    record["sed"] = mean_sed(pev)
    record["h2"] = cullis_h2(comps["vg"], record["sed"])
    record["error"] = None
    return record


def estimate_heritability(df, features, genotype_col="genotype", rep_col="rep",
                          verbose=False):
    """
    Heritability for each feature, each fit isolated from the others.

    Returns
    -------
    pd.DataFrame
        One row per feature with columns feature, h2, vg, vrep, ve, sed,
        converged, n_obs, negative, error. ``h2`` is NaN when undefined;
        ``negative`` flags defined but negative estimates.
    """
    records = []
    for i, trait in enumerate(features):
        try:
            rec = heritability_for_trait(df, trait, genotype_col, rep_col)
        except Exception as e:
            rec = {"feature": trait, "h2": np.nan, "converged": False,
                   "error": f"{type(e).__name__}: {e}"}
        records.append(rec)
        if verbose:
            print(f"  [{i + 1}/{len(features)}] {trait}: H2={rec['h2']:.3f}")

    cols = ["feature", "h2", "vg", "vrep", "ve", "sed",
            "converged", "n_obs", "error"]
    out = pd.DataFrame.from_records(records).reindex(columns=cols)
    out["negative"] = out["h2"] < 0
    return out


# =====================================================================
# Summaries
# =====================================================================

def summarize_heritability(h2_table, date_format="%Y%m%d"):
    """Attach feature_type and acquisition date parsed from the feature name."""
    parsed = [parse_feature_name(f, date_format) for f in h2_table["feature"]]
    out = h2_table.copy()
    out["feature_type"] = [p[0] for p in parsed]
    out["date"] = pd.to_datetime([p[1] for p in parsed])
    return out.sort_values(["date", "feature_type"]).reset_index(drop=True)


def heritability_by_type(summary):
    """Per feature type: count, defined count, mean/median/max H2."""
    grouped = summary.groupby("feature_type")["h2"]
    return pd.DataFrame({
        "n_features": grouped.size(),
        "n_defined": grouped.count(),
        "h2_mean": grouped.mean(),
        "h2_median": grouped.median(),
        "h2_max": grouped.max(),
    }).reset_index().sort_values("h2_median", ascending=False)
