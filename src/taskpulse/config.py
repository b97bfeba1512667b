"""YAML-backed configuration for the contextual-analysis pipeline."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

__all__ = [
    "AggregationSettings",
    "AnalysisSettings",
    "CollectionSettings",
    "ConfigError",
    "DEFAULT_ACTION_KEYWORDS",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "ModelSettings",
    "PathSettings",
    "PipelineConfig",
    "RepairSettings",
    "StoreSettings",
    "load_config",
    "write_config",
]

DEFAULT_CONFIG_NAME = "config.yaml"
DEFAULT_ACTION_KEYWORDS = ("create", "review", "contact", "plan", "complete")

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "collection": {
        "enable_user_behavior": True,
        "enable_task_patterns": True,
        "enable_productivity_metrics": True,
        "enable_environmental": True,
        "enable_temporal": True,
        "interval_minutes": 5,
    },
    "store": {
        "max_data_points": 500,
        "retention_hours": 168,
        "min_relevance_score": 0.1,
    },
    "aggregation": {
        "interval_minutes": 15,
    },
    "analysis": {
        "result_ttl_minutes": 10,
        "context_ttl_minutes": 3,
        "manual_trigger": False,
        "max_activity_entries": 8,
        "max_workers": 4,
        "trend_window_hours": 168,
    },
    "repair": {
        "action_keywords": list(DEFAULT_ACTION_KEYWORDS),
        "max_extracted_actions": 2,
    },
    "models": {
        "default": "gpt-5-mini",
        "timeout": 60,
    },
    "paths": {
        "logs": "",
    },
}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or validated."""


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CollectionSettings(_Section):
    """Per-kind collection toggles and the periodic collection interval."""

    enable_user_behavior: bool = True
    enable_task_patterns: bool = True
    enable_productivity_metrics: bool = True
    enable_environmental: bool = True
    enable_temporal: bool = True
    interval_minutes: float = Field(default=5, gt=0)


class StoreSettings(_Section):
    max_data_points: int = Field(default=500, ge=1)
    retention_hours: float = Field(default=168, gt=0)
    min_relevance_score: float = Field(default=0.1, ge=0.0, le=1.0)


class AggregationSettings(_Section):
    interval_minutes: float = Field(default=15, gt=0)


class AnalysisSettings(_Section):
    """Caching, trigger and worker settings for the analysis orchestrator."""

    result_ttl_minutes: float = Field(default=10, ge=0)
    context_ttl_minutes: float = Field(default=3, ge=0)
    manual_trigger: bool = False
    max_activity_entries: int = Field(default=8, ge=0)
    max_workers: int = Field(default=4, ge=1)
    trend_window_hours: float = Field(default=168, gt=0)


class RepairSettings(_Section):
    action_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_ACTION_KEYWORDS))
    max_extracted_actions: int = Field(default=2, ge=0)


class ModelSettings(_Section):
    default: str = "gpt-5-mini"
    timeout: float = Field(default=60, gt=0)


class PathSettings(_Section):
    logs: str = ""

    @property
    def logs_root(self) -> Optional[Path]:
        value = self.logs.strip()
        if not value:
            return None
        return Path(value)


class PipelineConfig(_Section):
    """Top-level configuration document."""

    collection: CollectionSettings = Field(default_factory=CollectionSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    repair: RepairSettings = Field(default_factory=RepairSettings)
    models: ModelSettings = Field(default_factory=ModelSettings)
    paths: PathSettings = Field(default_factory=PathSettings)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "PipelineConfig":
        try:
            return cls.model_validate(dict(data or {}))
        except ValidationError as error:
            raise ConfigError(f"Invalid configuration: {error}") from error


def _copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def load_config(config_path: Path | str) -> PipelineConfig:
    """Load YAML configuration from disk and validate it."""
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    return PipelineConfig.from_mapping(data)


def write_config(config_path: Path | str, config_data: Optional[Mapping[str, Any]] = None) -> Path:
    """Persist configuration data to disk with stable formatting."""
    path = Path(config_path)
    payload = dict(config_data) if config_data is not None else _copy_config_template()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(payload, handle, sort_keys=False)
    return path
