"""
Figures and tables written by the season scripts.

All figure builders return a matplotlib Figure; ``save_fig`` writes and
closes it.
"""

import os

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns

sns.set_theme(style="whitegrid", font_scale=1.1)


# =====================================================================
# Helpers
# =====================================================================

def save_fig(fig, out_dir, name, dpi=150):
    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, f"{name}.png")
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  * Saved figure: {path}")
    return path


def save_table(df, out_dir, name):
    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, f"{name}.csv")
    df.to_csv(path, index=False)
    print(f"  * Saved table: {path}")
    return path


# =====================================================================
# Heritability
# =====================================================================

def fig_h2_by_type(summary):
    """Boxplot of H2 per feature type, ordered by median."""
    data = summary.dropna(subset=["h2"])
    order = (data.groupby("feature_type")["h2"].median()
             .sort_values(ascending=False).index)
    fig, ax = plt.subplots(figsize=(10, max(4, 0.35 * len(order))))
    sns.boxplot(data=data, x="h2", y="feature_type", order=order,
                color="#93c5fd", ax=ax)
    ax.set_xlabel("Heritability (H2)")
    ax.set_ylabel("")
    ax.set_xlim(min(0, data["h2"].min() - 0.05) if len(data) else 0, 1.0)
    ax.set_title("Heritability by Trait")
    return fig


def fig_h2_over_time(summary, top_n=8):
    """H2 against acquisition date, one line per feature type."""
    data = summary.dropna(subset=["h2", "date"])
    keep = (data.groupby("feature_type")["h2"].median()
            .sort_values(ascending=False).index[:top_n])
    fig, ax = plt.subplots(figsize=(10, 5))
    sns.lineplot(data=data[data["feature_type"].isin(keep)], x="date", y="h2",
                 hue="feature_type", marker="o", ax=ax)
    ax.set_xlabel("Flight date")
    ax.set_ylabel("Heritability (H2)")
    ax.set_ylim(min(0, ax.get_ylim()[0]), 1.0)
    ax.set_title("Heritability over the Season")
    ax.legend(fontsize=8, bbox_to_anchor=(1.02, 1), loc="upper left")
    fig.autofmt_xdate()
    return fig


# =====================================================================
# Regression
# =====================================================================

def fig_cv_curve(cv_df, best_alpha):
    """Mean CV R2 against the LASSO penalty."""
    fig, ax = plt.subplots(figsize=(8, 5))
    ax.errorbar(cv_df["alpha"], cv_df["mean_r2"], yerr=cv_df["std_r2"],
                fmt="o-", ms=3, lw=1, capsize=2, color="#2563eb")
    ax.axvline(best_alpha, color="#dc2626", ls="--", lw=1,
               label=f"selected alpha={best_alpha:.3g}")
    ax.set_xscale("log")
    ax.set_xlabel("Penalty (alpha)")
    ax.set_ylabel("CV R2")
    ax.set_title("LASSO Penalty Search")
    ax.legend()
    return fig


def fig_observed_vs_predicted(y_true, y_pred, metrics):
    fig, ax = plt.subplots(figsize=(6, 6))
    ax.scatter(y_true, y_pred, s=14, alpha=0.7, color="#2563eb")
    lo = float(np.nanmin([np.min(y_true), np.min(y_pred)]))
    hi = float(np.nanmax([np.max(y_true), np.max(y_pred)]))
    ax.plot([lo, hi], [lo, hi], "k--", lw=0.8, alpha=0.5)
    ax.set_xlabel("Observed anthesis (GDD)")
    ax.set_ylabel("Predicted anthesis (GDD)")
    ax.set_title("Test set: rsq={:.3f}, rho={:.3f}".format(
        metrics["rsq"], metrics["spearman_rho"]))
    return fig


# =====================================================================
# Diagnostics
# =====================================================================

def fig_replicate_scatter(pairs, r):
    rep_a, rep_b = pairs.columns[:2]
    fig, ax = plt.subplots(figsize=(6, 6))
    ax.scatter(pairs[rep_a], pairs[rep_b], s=14, alpha=0.7, color="#16a34a")
    ax.set_xlabel(f"Predicted GDD, rep {rep_a}")
    ax.set_ylabel(f"Predicted GDD, rep {rep_b}")
    ax.set_title(f"Replicate Concordance (r={r:.3f})")
    return fig


def fig_field_map(grid, title="Predicted anthesis (GDD)"):
    fig, ax = plt.subplots(figsize=(max(6, 0.25 * grid.shape[1]),
                                    max(5, 0.2 * grid.shape[0])))
    sns.heatmap(grid, cmap="viridis", ax=ax, cbar_kws={"label": "GDD"})
    ax.invert_yaxis()
    ax.set_xlabel("Column")
    ax.set_ylabel("Row")
    ax.set_title(title)
    return fig
