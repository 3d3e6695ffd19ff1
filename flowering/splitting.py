"""
Train/test split of labeled plots, stratified on the flowering-time label.

The continuous label is cut into quantile bins and the split is
stratified on the bin, so the label distribution is preserved in both
partitions. Small label sets fall back to fewer bins.

Usage:
    from flowering.splitting import stratified_split

    train, test = stratified_split(labeled, "anthesis_gdd", seed=42)
"""

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

# A bin with fewer members than this cannot be stratified reliably
MIN_BIN_SIZE = 2


def label_bins(y, n_bins=4):
    """
    Quantile bin index per sample, reducing ``n_bins`` until every bin
    holds at least MIN_BIN_SIZE samples.

    Returns
    -------
    bins : ndarray of int, shape (N,)
        Bin index, or all zeros when no stratification is possible.
    """
    y = pd.Series(np.asarray(y, dtype=float))
    if y.isna().any():
        raise ValueError("Labels must be non-missing before splitting")
    if y.nunique() < 2:
        return np.zeros(len(y), dtype=int)

    for k in range(n_bins, 1, -1):
        bins = pd.qcut(y, q=k, labels=False, duplicates="drop")
        counts = bins.value_counts()
        if len(counts) > 1 and counts.min() >= MIN_BIN_SIZE:
            return bins.to_numpy(dtype=int)
    return np.zeros(len(y), dtype=int)


def stratified_split(df, label, test_size=0.25, n_bins=4, seed=42):
    """
    Split labeled plots into disjoint train and test frames.

    Parameters
    ----------
    df : pd.DataFrame
        Labeled plots only (``label`` non-missing).
    label : str
    test_size : float
    n_bins : int
        Number of label quantile bins to stratify on.
    seed : int

    Returns
    -------
    train, test : pd.DataFrame
    """
    # Each partition needs at least one sample per stratum
    n_test = int(np.ceil(test_size * len(df)))
    n_bins = max(1, min(n_bins, n_test, len(df) - n_test))

    bins = label_bins(df[label].to_numpy(), n_bins=n_bins)
    stratify = bins if np.unique(bins).size > 1 else None
    train_idx, test_idx = train_test_split(
        np.arange(len(df)), test_size=test_size,
        random_state=seed, stratify=stratify,
    )
    train = df.iloc[np.sort(train_idx)].reset_index(drop=True)
    test = df.iloc[np.sort(test_idx)].reset_index(drop=True)
    return train, test


def label_bin_proportions(train, test, label, n_bins=4):
    """
    Share of each partition falling into each label quantile bin.

    Bin edges come from the pooled labels so both partitions are
    measured on the same scale.

    Returns
    -------
    pd.DataFrame
        Columns bin, train, test, abs_diff.
    """
    pooled = pd.concat([train[label], test[label]], ignore_index=True)
    _, edges = pd.qcut(pooled, q=n_bins, retbins=True, duplicates="drop")
    edges[0], edges[-1] = -np.inf, np.inf

    def shares(s):
        b = pd.cut(s, bins=edges, labels=False)
        return b.value_counts(normalize=True).reindex(
            range(len(edges) - 1), fill_value=0.0)

    out = pd.DataFrame({"train": shares(train[label]),
                        "test": shares(test[label])})
    out["abs_diff"] = (out["train"] - out["test"]).abs()
    return out.rename_axis("bin").reset_index()
