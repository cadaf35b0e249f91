"""
Static policy knobs: business object names and role allow-lists.

Loaded once from YAML (top-level ``policy`` key) and validated with pydantic.
Every field has a default so the engine also runs without a file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class BusinessObjects(BaseModel):
    establishment: str = "etablissement.management"
    user_management: str = "user.management"
    inspection: str = "inspection.management"
    global_user_management: str = "global.user.management"


class RoleSets(BaseModel):
    inspection_approvers: list[str] = Field(default_factory=lambda: ["INSPECTOR", "DIRECTOR", "SECRETARY_GENERAL"])
    financial_viewers: list[str] = Field(default_factory=lambda: ["DIRECTOR", "SECRETARY_GENERAL"])
    administrators: list[str] = Field(default_factory=lambda: ["DIRECTOR", "SECRETARY_GENERAL"])
    all_establishments: list[str] = Field(default_factory=lambda: ["MINISTER", "SECRETARY_GENERAL"])
    structure_establishments: list[str] = Field(default_factory=lambda: ["DIRECTOR"])
    inspectors: list[str] = Field(default_factory=lambda: ["INSPECTOR"])


class SecurityPolicy(BaseModel):
    objects: BusinessObjects = Field(default_factory=BusinessObjects)
    roles: RoleSets = Field(default_factory=RoleSets)
    ministry_only_objects: list[str] = Field(default_factory=lambda: ["inspection.management"])

    def is_ministry_only(self, business_object: str) -> bool:
        return business_object in self.ministry_only_objects


def load_policy(path: Path | None) -> SecurityPolicy:
    if path is None:
        return SecurityPolicy()

    raw_text = path.read_text(encoding="utf-8")
    raw: dict[str, Any] = yaml.safe_load(raw_text) or {}

    if "policy" not in raw:
        raise ValueError(f"Missing top-level 'policy' key in config: {path}")

    return SecurityPolicy.model_validate(raw["policy"] or {})
