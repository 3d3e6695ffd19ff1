"""
Centralized configuration loader for the flowering-time pipeline.

Usage:
    from flowering.config import CFG, PROJECT_ROOT, season_config

    model_cfg = CFG["model"]
    season = season_config("2021")
"""

import os

import yaml

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
CONFIG_PATH = os.path.join(PROJECT_ROOT, "config", "flowering_config.yml")

with open(CONFIG_PATH, "r") as f:
    CFG = yaml.safe_load(f)

# Convenience paths
RAW_DIR = os.path.join(PROJECT_ROOT, CFG["data"]["raw_dir"])
REPORTS_DIR = os.path.join(PROJECT_ROOT, CFG["data"]["reports_dir"])
MODELS_DIR = os.path.join(PROJECT_ROOT, CFG["data"]["models_dir"])

SEASONS = sorted(CFG["seasons"])


def season_config(season):
    """Return the config block for one season ("2021", "2022")."""
    season = str(season)
    if season not in CFG["seasons"]:
        raise KeyError(f"Unknown season {season!r}; configured: {SEASONS}")
    return CFG["seasons"][season]
