#!/usr/bin/env python3
"""
Heritability of drone features across the season.

Fits the genotype + replicate mixed model to every 50th-percentile and
canopy-area feature of the season's reference experiment and computes
Cullis H2 per feature.

Outputs (reports/<season>/heritability/):
    tables/heritability.csv          -- one row per feature
    tables/heritability_by_type.csv  -- summary per feature type
    figures/h2_by_type.png
    figures/h2_over_time.png

Usage:
    python scripts/run_heritability.py --season 2021
    python scripts/run_heritability.py --season 2022 --limit 20
"""

import argparse
import os
import sys
import time

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from flowering.config import CFG, RAW_DIR, REPORTS_DIR, SEASONS, season_config  # noqa: E402
from flowering.features.labels import filter_experiments, prepare_season_plots  # noqa: E402
from flowering.heritability import (  # noqa: E402
    estimate_heritability,
    heritability_by_type,
    select_heritability_features,
    summarize_heritability,
)
from flowering.reporting import (  # noqa: E402
    fig_h2_by_type,
    fig_h2_over_time,
    save_fig,
    save_table,
)


def main():
    parser = argparse.ArgumentParser(description="Feature heritability per season")
    parser.add_argument("--season", choices=SEASONS, required=True)
    parser.add_argument("--limit", type=int, default=None,
                        help="Only the first N candidate features (quick check)")
    args = parser.parse_args()

    season_cfg = season_config(args.season)
    out_dir = os.path.join(REPORTS_DIR, args.season, "heritability")
    tbl_dir = os.path.join(out_dir, "tables")
    fig_dir = os.path.join(out_dir, "figures")

    print("=" * 70)
    print(f"Heritability -- season {args.season}")
    print("=" * 70)

    plots, _, feature_cols = prepare_season_plots(season_cfg, RAW_DIR, CFG["features"])
    plots = filter_experiments(plots, season_cfg["heritability_experiment"])
    print(f"  Plots in {season_cfg['heritability_experiment']}: {len(plots)}")

    traits = select_heritability_features(
        feature_cols, CFG["heritability"]["feature_patterns"])
    if args.limit:
        traits = traits[:args.limit]
    print(f"  Candidate features: {len(traits)}")

    t0 = time.time()
    h2 = estimate_heritability(plots, traits, verbose=True)
    print(f"  Fitted in {time.time() - t0:.1f}s; "
          f"defined: {h2['h2'].notna().sum()}/{len(h2)}, "
          f"negative: {int(h2['negative'].sum())}")

    summary = summarize_heritability(h2, CFG["features"]["date_format"])
    save_table(summary, tbl_dir, "heritability")
    save_table(heritability_by_type(summary), tbl_dir, "heritability_by_type")

    if summary["h2"].notna().any():
        save_fig(fig_h2_by_type(summary), fig_dir, "h2_by_type")
        save_fig(fig_h2_over_time(summary), fig_dir, "h2_over_time")
    else:
        print("  No defined heritability estimates; skipping figures")


if __name__ == "__main__":
    main()
