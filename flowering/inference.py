"""
Flowering-time predictions for plots without ground truth.

The fitted pipeline is applied as-is (no refitting). Plots on the
season's exclusion list (failed germination, destroyed plants) are
dropped before prediction.
"""

import pandas as pd


def predict_unlabeled(model, unlabeled, feature_cols, exclude=()):
    """
    Predict anthesis GDD for unlabeled plots.

    Parameters
    ----------
    model : LassoModel
        Fitted model.
    unlabeled : pd.DataFrame
        Plots lacking ground truth, with ``plot_id`` and feature columns.
    feature_cols : list of str
        Columns the model was trained on, in training order.
    exclude : iterable of str
        Plot IDs known to be non-viable.

    Returns
    -------
    pd.DataFrame
        Columns plot_id, predicted_gdd.
    """
    exclude = {str(p) for p in exclude}
    keep = unlabeled[~unlabeled["plot_id"].astype(str).isin(exclude)]
    preds = model.predict(keep[feature_cols]) if len(keep) else []
    return pd.DataFrame({
        "plot_id": keep["plot_id"].astype(str).to_numpy(),
        "predicted_gdd": preds,
    })


def attach_design(predictions, design, cols=("genotype", "rep", "row", "col")):
    """Join design metadata onto predictions for diagnostics only."""
    meta = design[["plot_id", *cols]]
    return predictions.merge(meta, on="plot_id", how="left",
                             validate="one_to_one")
