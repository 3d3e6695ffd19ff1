"""
Evaluation metrics for flowering-time regression.

``rsq`` is the squared Pearson correlation between observed and
predicted values; ``r2`` is the coefficient of determination. Both are
undefined (NaN) here when the predictions are constant, which is what an
intercept-only LASSO fit produces at large penalties.

Penalty selection uses ``r2``: rsq ignores the scale of the predictions,
so every penalty that keeps the same support ties on it.
"""

import warnings

import numpy as np
from scipy import stats
from sklearn.metrics import make_scorer, mean_absolute_error, r2_score


def rsq_score(y_true, y_pred):
    """Squared Pearson correlation; NaN if either input is constant."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if len(y_true) < 2 or np.ptp(y_true) == 0 or np.ptp(y_pred) == 0:
        return np.nan
    r = np.corrcoef(y_true, y_pred)[0, 1]
    return float(r ** 2)


def r2_nonconstant_score(y_true, y_pred):
    """Coefficient of determination; NaN for constant predictions."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if len(y_true) < 2 or np.ptp(y_true) == 0 or np.ptp(y_pred) == 0:
        return np.nan
    return float(r2_score(y_true, y_pred))


r2_scorer = make_scorer(r2_nonconstant_score)


def spearman(y_true, y_pred):
    """Spearman rank correlation (rho, p); NaN pair for constant input."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        res = stats.spearmanr(y_true, y_pred)
    return float(res[0]), float(res[1])


def rmse(y_true, y_pred):
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    return float(np.sqrt(np.mean((y_true - y_pred) ** 2)))


def evaluate_predictions(y_true, y_pred):
    """
    All held-out metrics for one set of predictions.

    Returns
    -------
    dict with keys:
        n, rsq, r2, spearman_rho, spearman_p, rmse, mae
    """
    rho, p = spearman(y_true, y_pred)
    return {
        "n": int(len(y_true)),
        "rsq": rsq_score(y_true, y_pred),
        "r2": float(r2_score(y_true, y_pred)),
        "spearman_rho": rho,
        "spearman_p": p,
        "rmse": rmse(y_true, y_pred),
        "mae": float(mean_absolute_error(y_true, y_pred)),
    }
