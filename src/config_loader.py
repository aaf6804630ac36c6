import os
import yaml


DEFAULTS = {
    "strategy": "auto",
    "tolerances": {"days": 1},
    "similarity": {"name_algo": "jaro_winkler", "party_min": 0.85},
    "verify": {"cross_check": True, "max_workers": 8, "overall_timeout": 120},
    "truth_source": {"timeout": 15},
}


def _config_path() -> str:
    """Read the path on every call so tests can monkeypatch RECONCILE_CONFIG."""
    default = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "reconcile.yml")
    return os.getenv("RECONCILE_CONFIG", default)


def load_reconcile_config() -> dict:
    try:
        with open(_config_path(), "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULTS.items()}

    # shallow merge defaults
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULTS.items()}
    for k, v in (cfg or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            mv = dict(merged[k])
            mv.update(v)
            merged[k] = mv
        else:
            merged[k] = v
    return merged
