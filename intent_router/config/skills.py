"""Skill catalog: which skills and actions the fallback may resolve messages to."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class SkillAction(BaseModel):
    """One action a skill exposes, with its named parameters."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: str
    description: str = ""
    parameters: list[str] = Field(default_factory=list)


class Skill(BaseModel):
    """A connected service (e.g. an accounting system) and its actions."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: str
    name: str | None = None
    enabled: bool = True
    actions: list[SkillAction] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name or self.id


class SkillCatalog(BaseModel):
    """All configured skills."""

    model_config = ConfigDict(extra="ignore")

    skills: list[Skill] = Field(default_factory=list)

    @property
    def enabled_skills(self) -> list[Skill]:
        return [s for s in self.skills if s.enabled]

    def iter_actions(self) -> list[tuple[Skill, SkillAction]]:
        """Flat `(skill, action)` list over enabled skills, in catalog order."""

        return [(skill, action) for skill in self.enabled_skills for action in skill.actions]


def capabilities_hint(catalog: SkillCatalog) -> str:
    """Short human-readable summary of what the user can ask for."""

    parts = []
    for skill in catalog.enabled_skills:
        actions = [a.id for a in skill.actions][:3]
        parts.append(f"{skill.display_name}: {', '.join(actions)}" if actions else skill.display_name)
    return "; ".join(parts) if parts else "connected services"


def load_skill_catalog(path: str | Path) -> SkillCatalog:
    """Load the catalog JSON; a missing or invalid file gives an empty catalog and a warning."""

    try:
        return SkillCatalog.model_validate_json(Path(path).read_bytes())
    except (OSError, ValidationError) as exc:
        logger.warning("skill catalog unavailable path=%s reason=%s", path, exc)
        return SkillCatalog()
