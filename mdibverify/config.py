"""
Configuration
=============

Frozen configuration objects for each layer plus a TOML loader.

WHY FROZEN:
Config should not change during a run. Changes require a new instance.

TOML LAYOUT:
============
    [historian]
    strict_subtree_deletion = false

    [orchestrator]
    confirmation_timeout_seconds = 10.0
    max_remediation_attempts = 2

    [core]
    worker_count = 4
    manipulation_url = "http://device.local:8080"
    enabled_requirements = ["mdib.unique_handles"]
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import tomllib


@dataclass(frozen=True)
class HistorianConfig:
    """Replay behaviour."""
    strict_subtree_deletion: bool = False

    # Reports captured before the initial full MDIB are stale
    skip_reports_before_initial_document: bool = True


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Bounds for precondition remediation.

    Retries are explicit, never hidden: a remediation runs at most
    max_remediation_attempts times, each confirmation wait lasts at most
    confirmation_timeout_seconds. A precondition whose device never answers
    therefore waits up to max_remediation_attempts * confirmation_timeout_seconds.
    manipulation_timeout_seconds bounds a single HTTP manipulation call.
    """
    confirmation_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 0.5
    max_remediation_attempts: int = 2
    manipulation_timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.confirmation_timeout_seconds < 0:
            raise ValueError("confirmation_timeout_seconds must not be negative")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if self.max_remediation_attempts < 1:
            raise ValueError("max_remediation_attempts must be at least 1")
        if self.manipulation_timeout_seconds <= 0:
            raise ValueError("manipulation_timeout_seconds must be positive")


@dataclass
class CoreConfig:
    """Unified configuration for the whole core."""
    historian: HistorianConfig = None
    orchestrator: OrchestratorConfig = None
    worker_count: int = 1
    enabled_requirements: Optional[Tuple[str, ...]] = None
    manipulation_url: Optional[str] = None

    def __post_init__(self):
        self.historian = self.historian or HistorianConfig()
        self.orchestrator = self.orchestrator or OrchestratorConfig()
        if self.worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        if self.enabled_requirements is not None:
            self.enabled_requirements = tuple(self.enabled_requirements)


def _section(cls, table: Dict[str, Any], name: str):
    known = {f.name for f in fields(cls)}
    unknown = set(table) - known
    if unknown:
        raise ValueError(f"Unknown keys in [{name}]: {', '.join(sorted(unknown))}")
    return cls(**table)


def config_from_dict(data: Dict[str, Any]) -> CoreConfig:
    unknown = set(data) - {"historian", "orchestrator", "core"}
    if unknown:
        raise ValueError(f"Unknown config sections: {', '.join(sorted(unknown))}")

    core = dict(data.get("core", {}))
    unknown = set(core) - {"worker_count", "enabled_requirements", "manipulation_url"}
    if unknown:
        raise ValueError(f"Unknown keys in [core]: {', '.join(sorted(unknown))}")

    return CoreConfig(
        historian=_section(HistorianConfig, data.get("historian", {}), "historian"),
        orchestrator=_section(OrchestratorConfig, data.get("orchestrator", {}), "orchestrator"),
        worker_count=core.get("worker_count", 1),
        enabled_requirements=core.get("enabled_requirements"),
        manipulation_url=core.get("manipulation_url"),
    )


def load_config(path: Path) -> CoreConfig:
    """Load a CoreConfig from a TOML file. Missing sections use defaults."""
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return config_from_dict(data)
