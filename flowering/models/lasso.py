"""
LASSO pipeline for predicting anthesis GDD from drone features.

Preprocessing (fit on training rows only, then applied unchanged):
    VarianceThreshold   -> drop near-zero-variance columns
    StandardScaler      -> center and scale (NaN-aware)
    SimpleImputer       -> training-set median per column

The penalty is the only tuned hyperparameter: 10-fold CV over a
log-spaced grid, selected on mean CV R2 (coefficient of determination). Large
penalties collapse the model to the intercept, whose constant
predictions make the score undefined; those grid points score NaN and are
ranked last, so they are never selected.
"""

import warnings

import numpy as np
import pandas as pd
from sklearn.exceptions import ConvergenceWarning
from sklearn.feature_selection import VarianceThreshold
from sklearn.impute import SimpleImputer
from sklearn.linear_model import Lasso
from sklearn.model_selection import GridSearchCV, KFold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from flowering.models.evaluation import r2_scorer


def penalty_grid(n=50, log10_min=-3.0, log10_max=2.0):
    """Log-spaced LASSO penalties, ascending."""
    return np.logspace(log10_min, log10_max, n)


def build_pipeline(alpha=1.0, max_iter=10000, variance_threshold=1e-8):
    """Preprocessing + LASSO as one sklearn Pipeline."""
    return Pipeline([
        ("nzv", VarianceThreshold(threshold=variance_threshold)),
        ("scale", StandardScaler()),
        ("impute", SimpleImputer(strategy="median")),
        ("lasso", Lasso(alpha=alpha, max_iter=max_iter)),
    ])


class LassoModel:
    """
    Cross-validated LASSO regression of flowering time.

    After ``fit``, ``pipeline`` is refit on all training rows at
    ``best_alpha_``.
    """

    def __init__(self, alphas=None, cv_folds=10, max_iter=10000,
                 variance_threshold=1e-8, seed=42, n_jobs=None):
        self.alphas = penalty_grid() if alphas is None else np.asarray(alphas)
        self.cv_folds = cv_folds
        self.max_iter = max_iter
        self.variance_threshold = variance_threshold
        self.seed = seed
        self.n_jobs = n_jobs
        self.search = None
        self.pipeline = None
        self.feature_names = None

    def fit(self, X_train, y_train):
        """Grid-search the penalty, then refit on the full training set."""
        self.feature_names = list(getattr(X_train, "columns", range(X_train.shape[1])))
        search = GridSearchCV(
            build_pipeline(max_iter=self.max_iter,
                           variance_threshold=self.variance_threshold),
            param_grid={"lasso__alpha": list(self.alphas)},
            scoring=r2_scorer,
            cv=KFold(n_splits=self.cv_folds, shuffle=True,
                     random_state=self.seed),
            refit=True,
            error_score=np.nan,
            n_jobs=self.n_jobs,
        )
        # Intercept-only folds: constant predictions, NaN score
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            warnings.simplefilter("ignore", RuntimeWarning)
            warnings.filterwarnings("ignore", message=".*non-finite.*")
            search.fit(X_train, np.asarray(y_train, dtype=float))

        self.search = search
        self.pipeline = search.best_estimator_
        return self

    def predict(self, X):
        return self.pipeline.predict(X)

    @property
    def best_alpha_(self):
        return float(self.search.best_params_["lasso__alpha"])

    @property
    def best_score_(self):
        """Mean CV R2 at the selected penalty."""
        return float(self.search.best_score_)

    @property
    def coef_(self):
        """Coefficients on the standardized, retained features."""
        return self.pipeline.named_steps["lasso"].coef_

    @property
    def intercept_(self):
        return float(self.pipeline.named_steps["lasso"].intercept_)

    @property
    def n_nonzero(self):
        return int((np.abs(self.coef_) > 1e-10).sum())

    def retained_features(self):
        """Feature names surviving the near-zero-variance filter."""
        mask = self.pipeline.named_steps["nzv"].get_support()
        return [f for f, keep in zip(self.feature_names, mask) if keep]

    def coefficients(self, nonzero_only=False):
        """Coefficient table sorted by absolute size."""
        df = pd.DataFrame({"feature": self.retained_features(),
                           "coef": self.coef_})
        if nonzero_only:
            df = df[df["coef"].abs() > 1e-10]
        order = df["coef"].abs().sort_values(ascending=False).index
        return df.loc[order].reset_index(drop=True)

    def cv_results(self):
        """Per-penalty CV R2 (NaN where a fold was degenerate)."""
        res = self.search.cv_results_
        return pd.DataFrame({
            "alpha": np.asarray(res["param_lasso__alpha"], dtype=float),
            "mean_r2": res["mean_test_score"],
            "std_r2": res["std_test_score"],
            "rank": res["rank_test_score"],
        })

    def get_params_dict(self):
        return {
            "model": "Lasso",
            "alpha": self.best_alpha_ if self.search is not None else None,
            "n_alphas": int(len(self.alphas)),
            "alpha_min": float(self.alphas.min()),
            "alpha_max": float(self.alphas.max()),
            "cv_folds": self.cv_folds,
            "max_iter": self.max_iter,
        }
