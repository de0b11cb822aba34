"""
Per-detector feature gating.

Each edge type has enabled / min_confidence / alert_threshold / notify.
Defaults live here; an optional JSON file (EDGE_CONFIG_PATH) overrides
them and is re-read whenever its mtime changes.  A file that fails to
parse or validate is logged and the last good config stays in force.

Config only affects alerts produced after it is loaded; persisted alerts
are never re-evaluated.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from lineintel.services.edge_detectors import EdgeAlert, EdgeType, Severity

logger = logging.getLogger(__name__)


class EdgeFeatureConfig(BaseModel):
    """Gate for one detector type."""

    enabled: bool = True
    min_confidence: float = Field(50.0, ge=0, le=100, alias="minConfidence")
    alert_threshold: Severity = Field(Severity.MINOR, alias="alertThreshold")
    notify: bool = True

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("alert_threshold", mode="before")
    @classmethod
    def _lower_severity(cls, v):
        return v.lower() if isinstance(v, str) else v

    def admits(self, alert: EdgeAlert) -> bool:
        """True when ``alert`` clears both the severity floor and the confidence floor."""
        return alert.severity.at_least(self.alert_threshold) and alert.confidence >= self.min_confidence


DEFAULT_EDGE_CONFIG: Dict[EdgeType, EdgeFeatureConfig] = {
    EdgeType.RLM: EdgeFeatureConfig(min_confidence=60, alert_threshold=Severity.MAJOR, notify=True),
    EdgeType.STEAM: EdgeFeatureConfig(min_confidence=70, alert_threshold=Severity.CRITICAL, notify=True),
    EdgeType.CLV: EdgeFeatureConfig(min_confidence=50, alert_threshold=Severity.MINOR, notify=False),
    EdgeType.SHARP_PUBLIC: EdgeFeatureConfig(min_confidence=65, alert_threshold=Severity.MAJOR, notify=True),
    EdgeType.ARBITRAGE: EdgeFeatureConfig(min_confidence=90, alert_threshold=Severity.CRITICAL, notify=True),
    EdgeType.PROPS: EdgeFeatureConfig(min_confidence=55, alert_threshold=Severity.MINOR, notify=False),
}


# Accept snake_case keys and the legacy "notifications" flag in override files.
_FIELD_ALIASES = {
    "min_confidence": "minConfidence",
    "alert_threshold": "alertThreshold",
    "notifications": "notify",
}


def parse_overrides(raw: Dict) -> Dict[EdgeType, EdgeFeatureConfig]:
    """
    Merge a ``{edge_type: {field: value}}`` mapping over the defaults.

    Unknown edge types raise ValueError; missing fields keep their default.
    """
    if not isinstance(raw, dict):
        raise ValueError("edge config must be a JSON object keyed by edge type")
    merged = dict(DEFAULT_EDGE_CONFIG)
    for key, fields in raw.items():
        edge_type = EdgeType(key)
        if not isinstance(fields, dict):
            raise ValueError(f"edge config for {key!r} must be an object")
        base = merged[edge_type].model_dump(by_alias=True)
        for name, value in fields.items():
            base[_FIELD_ALIASES.get(name, name)] = value
        merged[edge_type] = EdgeFeatureConfig.model_validate(base)
    return merged


class EdgeConfigStore:
    """
    Process-wide holder for the current config.

    ``get`` is cheap: it stats the override file and reloads only when the
    mtime moved.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._config: Dict[EdgeType, EdgeFeatureConfig] = dict(DEFAULT_EDGE_CONFIG)
        self._mtime: Optional[float] = None
        self._lock = threading.Lock()
        self.reload_if_changed()

    def reload_if_changed(self) -> bool:
        if not self.path:
            return False
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            if self._mtime is not None:
                logger.warning("Edge config %s disappeared; keeping last loaded values", self.path)
                self._mtime = None
            return False

        with self._lock:
            if self._mtime == mtime:
                return False
            try:
                with open(self.path, "r", encoding="utf-8") as fh:
                    config = parse_overrides(json.load(fh))
            except (OSError, ValueError, ValidationError) as exc:
                # json.JSONDecodeError is a ValueError
                logger.error("Invalid edge config %s, keeping previous: %s", self.path, exc)
                self._mtime = mtime
                return False
            self._config = config
            self._mtime = mtime
        logger.info("Loaded edge config from %s", self.path)
        return True

    def get(self, edge_type) -> EdgeFeatureConfig:
        self.reload_if_changed()
        return self._config[EdgeType(edge_type)]

    def snapshot(self) -> Dict[EdgeType, EdgeFeatureConfig]:
        self.reload_if_changed()
        return dict(self._config)


_store: Optional[EdgeConfigStore] = None


def get_edge_config_store() -> EdgeConfigStore:
    global _store
    if _store is None:
        _store = EdgeConfigStore(os.getenv("EDGE_CONFIG_PATH"))
    return _store
