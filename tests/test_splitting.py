"""
Unit tests for flowering/splitting.py invariants.

Tests verify structural correctness of the stratified split, not model
performance. Run with: python -m pytest tests/test_splitting.py -v
"""

import sys
import os
import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from flowering.splitting import (
    label_bin_proportions,
    label_bins,
    stratified_split,
)


# -- Fixtures ---------------------------------------------------------------

N = 400
SEED = 42
LABEL = "anthesis_gdd"


@pytest.fixture
def labeled():
    rng = np.random.RandomState(SEED)
    return pd.DataFrame({
        "plot_id": [f"21-{i:04d}" for i in range(N)],
        LABEL: rng.gamma(9.0, 20.0, N) + 1300.0,   # right-skewed GDD
        "x": rng.randn(N),
    })


# -- Helpers -----------------------------------------------------------------

def _check_partition(df, train, test):
    """Every plot ID in exactly one partition."""
    ids_train = set(train["plot_id"])
    ids_test = set(test["plot_id"])
    assert not ids_train & ids_test, "train/test overlap"
    assert ids_train | ids_test == set(df["plot_id"]), "plots lost in split"
    assert len(train) + len(test) == len(df)


# -- Tests -------------------------------------------------------------------

class TestStratifiedSplit:
    def test_partition(self, labeled):
        train, test = stratified_split(labeled, LABEL, seed=SEED)
        _check_partition(labeled, train, test)

    def test_test_fraction(self, labeled):
        _, test = stratified_split(labeled, LABEL, test_size=0.25, seed=SEED)
        assert len(test) == N // 4

    def test_label_distribution_preserved(self, labeled):
        train, test = stratified_split(labeled, LABEL, seed=SEED)
        props = label_bin_proportions(train, test, LABEL, n_bins=4)
        assert props["abs_diff"].max() < 0.05, props

    def test_rows_intact(self, labeled):
        train, _ = stratified_split(labeled, LABEL, seed=SEED)
        merged = train.merge(labeled, on="plot_id", suffixes=("", "_orig"))
        np.testing.assert_allclose(merged[LABEL], merged[f"{LABEL}_orig"])

    def test_deterministic(self, labeled):
        a, _ = stratified_split(labeled, LABEL, seed=SEED)
        b, _ = stratified_split(labeled, LABEL, seed=SEED)
        assert a["plot_id"].tolist() == b["plot_id"].tolist()

    def test_small_table(self, labeled):
        small = labeled.iloc[:9]
        train, test = stratified_split(small, LABEL, n_bins=4, seed=SEED)
        _check_partition(small, train, test)

    def test_missing_label_raises(self, labeled):
        labeled.loc[0, LABEL] = np.nan
        with pytest.raises(ValueError):
            stratified_split(labeled, LABEL, seed=SEED)


class TestLabelBins:
    def test_quartiles(self, labeled):
        bins = label_bins(labeled[LABEL], n_bins=4)
        assert sorted(np.unique(bins)) == [0, 1, 2, 3]
        assert np.bincount(bins).min() >= N // 4 - 1

    def test_ties_reduce_bins(self):
        y = np.array([1500.0] * 10 + [1600.0] * 10)
        bins = label_bins(y, n_bins=4)
        assert np.unique(bins).size == 2

    def test_constant_label_unstratified(self):
        bins = label_bins(np.full(10, 1500.0), n_bins=4)
        assert (bins == 0).all()
