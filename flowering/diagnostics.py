"""
Data-quality diagnostics on predicted flowering time.

  - replicate concordance: correlation of a genotype's value between
    replicates (low values point at noisy plots or mislabeled entries)
  - field map: row x column matrix of the value, for heat maps
  - Moran's I on the field map: spatial trend left in the predictions

None of these feed back into the model.
"""

import itertools
from collections import defaultdict

import numpy as np
import pandas as pd


def replicate_concordance(df, value, genotype_col="genotype", rep_col="rep"):
    """
    Pearson correlation of ``value`` between every pair of replicates.

    Genotypes are matched across replicates; a genotype appearing more
    than once within a replicate is averaged.

    Returns
    -------
    pd.DataFrame
        Columns rep_a, rep_b, n, pearson_r.
    """
    wide = df.pivot_table(index=genotype_col, columns=rep_col,
                          values=value, aggfunc="mean")
    rows = []
    for a, b in itertools.combinations(sorted(wide.columns), 2):
        pair = wide[[a, b]].dropna()
        r = pair[a].corr(pair[b]) if len(pair) > 1 else np.nan
        rows.append({"rep_a": a, "rep_b": b, "n": len(pair), "pearson_r": r})
    return pd.DataFrame(rows, columns=["rep_a", "rep_b", "n", "pearson_r"])


def replicate_pairs(df, value, rep_a, rep_b, genotype_col="genotype",
                    rep_col="rep"):
    """Genotype-matched values for two replicates (scatter plot input)."""
    wide = df.pivot_table(index=genotype_col, columns=rep_col,
                          values=value, aggfunc="mean")
    return wide[[rep_a, rep_b]].dropna()


def field_map(df, value, row_col="row", col_col="col"):
    """Row x column matrix of ``value``; NaN where no plot was observed."""
    grid = df.pivot_table(index=row_col, columns=col_col,
                          values=value, aggfunc="mean")
    return grid.sort_index().sort_index(axis=1)


def _build_rook_adjacency(cells):
    """4-connected adjacency between (row, col) cells present in the field."""
    cell_set = set(cells)
    adj = defaultdict(set)
    for r, c in cells:
        for dr, dc in [(-1, 0), (1, 0), (0, -1), (0, 1)]:
            nbr = (r + dr, c + dc)
            if nbr in cell_set:
                adj[(r, c)].add(nbr)
    return adj


def morans_i(grid):
    """
    Moran's I of a field map under rook adjacency.

    Parameters
    ----------
    grid : pd.DataFrame or ndarray, shape (n_rows, n_cols)
        NaN cells are left out of the graph.

    Returns
    -------
    I : float
        > 0: neighbouring plots alike (spatial trend)
        ~ 0: no spatial pattern
        < 0: neighbouring plots dissimilar
        NaN when fewer than two cells or no variance / no neighbours.
    """
    vals = np.asarray(grid, dtype=float)
    cells = [tuple(rc) for rc in np.argwhere(~np.isnan(vals))]
    N = len(cells)
    if N < 2:
        return np.nan

    x = np.array([vals[r, c] for r, c in cells])
    devs = x - x.mean()
    ss = (devs ** 2).sum()
    if ss < 1e-15:
        return np.nan

    idx = {cell: i for i, cell in enumerate(cells)}
    adj = _build_rook_adjacency(cells)

    W = 0.0
    weighted_sum = 0.0
    for cell, i in idx.items():
        for nbr in adj.get(cell, ()):
            weighted_sum += devs[i] * devs[idx[nbr]]
            W += 1.0

    if W == 0:
        return np.nan
    return float((N / W) * (weighted_sum / ss))
