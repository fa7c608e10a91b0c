"""
Configuration management and loading.

Handles environment-driven settings and pricing configuration files.
"""

import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from ..core.pricing import DEFAULT_MODEL, ModelPricing, PricingTable

CONFIG_DIR_ENV = "CLAUDE_CONFIG_DIR"
CACHE_DIR_ENV = "USAGE_INDEX_CACHE_DIR"
XDG_CACHE_ENV = "XDG_CACHE_HOME"
CACHE_SUBDIR = "ccusage"
PRICING_KEYS = ("input", "output", "cache_write", "cache_read")


@dataclass(frozen=True)
class Settings:
    """Resolved locations and environment for one run."""
    config_dir: Path
    cache_dir: Path
    timezone: str

    @property
    def log_root(self) -> Path:
        """Directory holding the per-project log files."""
        return self.config_dir / "projects"


def local_timezone_label() -> str:
    """Label of the local timezone, used for date bucketing and cache validity."""
    return datetime.now().astimezone().tzname() or ""


def resolve_config_dir(environ: Mapping[str, str], home: Path) -> Path:
    """Locate the agent's config directory.

    ``CLAUDE_CONFIG_DIR`` wins; otherwise ``~/.config/claude`` is used when
    it contains a ``projects`` directory, falling back to ``~/.claude``.
    """
    configured = environ.get(CONFIG_DIR_ENV)
    if configured:
        return Path(configured)
    primary = home / ".config" / "claude"
    if (primary / "projects").exists():
        return primary
    return home / ".claude"


def resolve_cache_dir(environ: Mapping[str, str], home: Path) -> Path:
    """Locate the cache directory, honouring overrides from the environment."""
    override = environ.get(CACHE_DIR_ENV)
    if override:
        return Path(override)
    xdg = environ.get(XDG_CACHE_ENV)
    if xdg:
        return Path(xdg) / CACHE_SUBDIR
    return home / ".cache" / CACHE_SUBDIR


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the environment.

    Args:
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Settings for the current run
    """
    env = os.environ if environ is None else environ
    home = Path.home()
    return Settings(
        config_dir=resolve_config_dir(env, home),
        cache_dir=resolve_cache_dir(env, home),
        timezone=local_timezone_label(),
    )


def load_pricing_config(path: str) -> PricingTable:
    """Load and validate a pricing table from a YAML file.

    The file maps model identifiers to per-million-token rates::

        default:
          input: 3.0
          output: 15.0
          cache_write: 3.75
          cache_read: 0.30

    Args:
        path: Path to YAML pricing file

    Returns:
        Validated PricingTable

    Raises:
        FileNotFoundError: If the pricing file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If the pricing configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Pricing config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in pricing file {path}: {e}")

    if not raw_config:
        raise ValueError("Pricing file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Pricing file must map model names to rates")
    if DEFAULT_MODEL not in raw_config:
        raise ValueError(f"Missing required '{DEFAULT_MODEL}' pricing")

    prices: Dict[str, ModelPricing] = {}
    for model, rates in raw_config.items():
        if not isinstance(rates, dict):
            raise ValueError(f"Pricing for '{model}' must be a dictionary")
        prices[str(model)] = _parse_model_pricing(rates, str(model))
    return PricingTable(prices)


def _parse_model_pricing(data: Dict, model: str) -> ModelPricing:
    """Parse and validate the four rates of one model.

    Raises:
        ValueError: If a rate is missing, unknown, non-numeric or negative
    """
    unknown_keys = set(data.keys()) - set(PRICING_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown keys in pricing for '{model}': {unknown_keys}")

    rates = {}
    for key in PRICING_KEYS:
        if key not in data:
            raise ValueError(f"Missing required '{key}' in pricing for '{model}'")
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"'{key}' in pricing for '{model}' must be a number")
        try:
            rate = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"'{key}' in pricing for '{model}' must be a number")
        if not rate.is_finite() or rate < 0:
            raise ValueError(f"'{key}' in pricing for '{model}' must be >= 0")
        rates[key] = rate
    return ModelPricing(**rates)
