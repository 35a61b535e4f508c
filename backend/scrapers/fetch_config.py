"""
Fetcher tuning - YAML-driven delay/backoff configuration.

Config file format (see fetcher_defaults.yaml):

    defaults:
      initial_delay: 1.0
      min_delay: 0.5
      ...
    domains:
      mitsubishi.epc-data.com:
        initial_delay: 2.0

Domain entries override defaults key by key. All durations are seconds.
"""
import logging
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from utils.normalize import ValidationError, to_float, to_int

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "fetcher_defaults.yaml"


class ConfigError(Exception):
    """Raised when fetcher configuration is missing required structure or is inconsistent."""
    pass


@dataclass
class FetcherConfig:
    """Delay/backoff settings for one AdaptiveFetcher."""
    initial_delay: float = 1.0
    min_delay: float = 0.5
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    success_decay: float = 0.85
    quiet_period: float = 60.0
    max_jitter: float = 2.0
    timeout: float = 30.0
    retries: int = 5

    def validate(self) -> "FetcherConfig":
        """
        Check delay bounds are consistent.

        Raises:
            ConfigError: If bounds are inverted or factors cannot converge.
        """
        if self.min_delay < 0:
            raise ConfigError(f"min_delay must be >= 0, got {self.min_delay}")
        if not self.min_delay <= self.initial_delay <= self.max_delay:
            raise ConfigError(
                f"Expected min_delay <= initial_delay <= max_delay, got "
                f"{self.min_delay} / {self.initial_delay} / {self.max_delay}"
            )
        if self.backoff_multiplier <= 1:
            raise ConfigError(f"backoff_multiplier must be > 1, got {self.backoff_multiplier}")
        if not 0 < self.success_decay < 1:
            raise ConfigError(f"success_decay must be in (0, 1), got {self.success_decay}")
        if self.retries < 1:
            raise ConfigError(f"retries must be >= 1, got {self.retries}")
        if self.max_jitter < 0:
            raise ConfigError(f"max_jitter must be >= 0, got {self.max_jitter}")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    """Convert raw YAML/env values to the field types of FetcherConfig."""
    coerced = {}
    known = {f.name for f in fields(FetcherConfig)}
    for key, value in values.items():
        if key not in known:
            logger.warning(f"Ignoring unknown fetcher config key: {key}")
            continue
        try:
            if key == "retries":
                coerced[key] = to_int(value, field=key)
            else:
                coerced[key] = to_float(value, field=key)
        except ValidationError as e:
            raise ConfigError(str(e)) from e
    return coerced


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    try:
        with open(config_path, "r") as f:
            raw = yaml.safe_load(f) or {}
            logger.info(f"Loaded fetcher config from {config_path}")
    except FileNotFoundError:
        logger.warning(f"Fetcher config not found at {config_path}, using defaults")
        return {"defaults": {}, "domains": {}}

    if not isinstance(raw, dict):
        raise ConfigError(f"Fetcher config {config_path} must be a mapping")
    return raw


def load_fetcher_config(
    config_path: Optional[str] = None,
    domain: Optional[str] = None,
) -> FetcherConfig:
    """
    Load fetcher settings for a domain.

    Args:
        config_path: YAML file path. Defaults to the packaged fetcher_defaults.yaml.
        domain: Host whose overrides should be applied on top of defaults.

    Returns:
        Validated FetcherConfig

    Raises:
        ConfigError: If the file is malformed or values are inconsistent.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    raw = _read_yaml(path)

    values: Dict[str, Any] = {}
    values.update(raw.get("defaults") or {})

    if domain:
        domain_config = (raw.get("domains") or {}).get(domain) or {}
        values.update(domain_config)

    return FetcherConfig(**_coerce(values)).validate()
