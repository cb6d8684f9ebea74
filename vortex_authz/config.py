# config.py - env knobs and rate-limit policy loading, with loud failures

import os
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from vortex_authz.limits import RateLimitPolicy

logger = logging.getLogger(__name__)

_TRUTHY = ('true', '1', 'yes', 'on')

# Optional knobs with defaults. Nothing here is required.
DEFAULTS = {
    # Rate limiting
    "RATE_LIMIT_ENABLED": True,
    "RATE_LIMIT_CLEANUP_INTERVAL_SECONDS": 300.0,
    "RATE_LIMIT_STALE_AFTER_SECONDS": 60.0,
    "RATE_LIMIT_POLICIES_PATH": None,   # None = built-in policies only

    # Automod evaluation
    "AUTOMOD_REGEX_MAX_LENGTH": 200,
    "AUTOMOD_REGEX_BUDGET_MS": 50,
    "AUTOMOD_DEFAULT_TIMEOUT_SECONDS": 60,

    # Audit trail
    "AUDIT_ENABLED": True,
}

_BOOL_KEYS = {"RATE_LIMIT_ENABLED", "AUDIT_ENABLED"}
_POSITIVE_FLOAT_KEYS = {"RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "RATE_LIMIT_STALE_AFTER_SECONDS"}
_POSITIVE_INT_KEYS = {
    "AUTOMOD_REGEX_MAX_LENGTH",
    "AUTOMOD_REGEX_BUDGET_MS",
    "AUTOMOD_DEFAULT_TIMEOUT_SECONDS",
}


def load_config() -> Dict[str, Any]:
    """
    Load env config over DEFAULTS, normalizing types.

    Raises:
        RuntimeError: If a knob is set to a value of the wrong shape
    """
    cfg: Dict[str, Any] = {}

    for k, v in DEFAULTS.items():
        val = os.getenv(k, v)

        if k in _BOOL_KEYS:
            val = val.lower() in _TRUTHY if isinstance(val, str) else bool(val)
        elif k in _POSITIVE_FLOAT_KEYS:
            try:
                val = float(val)
                if val <= 0:
                    raise ValueError(f"{k} must be positive")
            except (ValueError, TypeError):
                raise RuntimeError(f"{k} must be a positive number, got: {val}")
        elif k in _POSITIVE_INT_KEYS:
            try:
                val = int(val)
                if val <= 0:
                    raise ValueError(f"{k} must be a positive integer")
            except (ValueError, TypeError):
                raise RuntimeError(f"{k} must be a positive integer, got: {val}")
        elif k == "RATE_LIMIT_POLICIES_PATH" and val == "":
            val = None

        cfg[k] = val

    return cfg


# ============================================================================
# Rate-limit Policies
# ============================================================================

DEFAULT_RATE_LIMIT_POLICIES: Dict[str, Dict[str, int]] = {
    "message_post": {"limit": 5, "window_ms": 10_000},
    "thread_msg": {"limit": 5, "window_ms": 10_000},
}


def _build_policies(data: Dict[str, Any]) -> Dict[str, RateLimitPolicy]:
    return {
        name: RateLimitPolicy(name=name, limit=spec["limit"], window_ms=spec["window_ms"])
        for name, spec in data.items()
    }


def load_rate_limit_policies(path: Optional[str] = None) -> Dict[str, RateLimitPolicy]:
    """
    Load named rate-limit policies from YAML, merged over the built-ins.

    The file is a mapping of policy name to {limit, window_ms}. A missing
    or unreadable file falls back to the built-in policies; an individual
    invalid entry is skipped with a warning.

    Args:
        path: YAML file path (defaults to RATE_LIMIT_POLICIES_PATH)

    Returns:
        Dict of policy name to RateLimitPolicy
    """
    policies = _build_policies(DEFAULT_RATE_LIMIT_POLICIES)

    if path is None:
        path = os.getenv("RATE_LIMIT_POLICIES_PATH") or None
    if path is None:
        return policies

    policy_path = Path(path)
    if not policy_path.exists():
        logger.warning(f"Rate-limit policy file not found at {policy_path}. Using default policies.")
        return policies

    try:
        with open(policy_path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse rate-limit YAML at {policy_path}: {e}. Using defaults.")
        return policies

    if not isinstance(data, dict):
        logger.error(
            f"Rate-limit policies must be a YAML mapping, got {type(data).__name__}. "
            f"Using default policies."
        )
        return policies

    for name, spec in data.items():
        try:
            if not isinstance(spec, dict):
                raise ValueError("entry must be a mapping with limit and window_ms")
            policies[name] = RateLimitPolicy(
                name=str(name),
                limit=spec.get("limit"),
                window_ms=spec.get("window_ms"),
            )
        except (ValueError, TypeError) as e:
            logger.warning(f"Invalid rate-limit policy '{name}': {e}. Skipping.")
            continue

    logger.info(f"Loaded {len(policies)} rate-limit policies from {policy_path}")
    return policies
