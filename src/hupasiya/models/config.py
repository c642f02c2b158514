"""Configuration models for Hupasiya.

HupasiyaConfig holds per-repository settings. OrchestrationConfig and
ShepherdConfig carry the defaults the engines fall back to when a caller
does not override them per call.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from hupasiya.models.orchestration import ConflictPolicy, GatherStrategy
from hupasiya.models.review import Confidence


class OrchestrationConfig(BaseModel):
    """Defaults for cascade and gather."""

    conflict_strategy: ConflictPolicy = ConflictPolicy.PROMPT
    gather_strategy: GatherStrategy = GatherStrategy.MERGE
    fan_out: int = Field(default=1, ge=1)  # 1 = sequential
    merge_timeout: Optional[float] = 300.0  # seconds per workspace command


class ShepherdConfig(BaseModel):
    """Defaults for the shepherd workflow."""

    auto_apply: bool = False
    confidence_threshold: Confidence = Confidence.HIGH
    provider_attempts: int = Field(default=3, ge=1)
    provider_backoff: float = Field(default=1.0, ge=0)  # seconds; 0 disables waiting
    fan_out: int = Field(default=1, ge=1)


class HupasiyaConfig(BaseModel):
    """Per-repository configuration."""

    db_path: str = ":memory:"
    db_url: Optional[str] = None
    orchestration: OrchestrationConfig = Field(default_factory=OrchestrationConfig)
    shepherd: ShepherdConfig = Field(default_factory=ShepherdConfig)
    workspace_command: str = "hn"
