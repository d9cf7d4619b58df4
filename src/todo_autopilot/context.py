"""Framework rules and project context derived from the request's framework text.

The framework context may be a YAML mapping::

    name: acme-web
    surfaces: [frontend, backend]
    elements: [LoginForm, src/api/users.py]
    substitutions:
      db: database
    rules:
      - use the shared button component

or free text, in which case every non-empty line is a guidance rule and the
project surfaces are inferred from technology keywords.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import yaml
from loguru import logger

from .config import RuleSet
from .utils import keyword_pattern

_MAPPING_KEYS = {"name", "framework", "rules", "substitutions", "surfaces", "elements"}


@dataclass
class FrameworkRules:
    """Refinement hints supplied alongside the raw task list."""

    name: Optional[str] = None
    guidance: list[str] = field(default_factory=list)
    substitutions: dict[str, str] = field(default_factory=dict)
    surfaces: list[str] = field(default_factory=list)
    elements: list[str] = field(default_factory=list)
    source_text: str = ""

    @property
    def is_default(self) -> bool:
        return not (self.guidance or self.substitutions or self.surfaces or self.elements or self.name)

    @classmethod
    def from_context(cls, framework_context: Optional[str]) -> "FrameworkRules":
        """Parse framework context text; ``None`` or blank input yields default rules."""
        if framework_context is None or not framework_context.strip():
            return cls()
        text = framework_context.strip()
        data: Any = None
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError:
            data = None
        if isinstance(data, dict) and set(map(str, data)) & _MAPPING_KEYS:
            return cls._from_mapping(data, text)
        guidance = [line.strip(" -*\t") for line in text.splitlines() if line.strip(" -*\t")]
        return cls(guidance=guidance, source_text=text)

    @classmethod
    def _from_mapping(cls, data: dict[str, Any], text: str) -> "FrameworkRules":
        def _str_list(key: str) -> list[str]:
            raw = data.get(key) or []
            if isinstance(raw, str):
                raw = [raw]
            if not isinstance(raw, list):
                logger.warning("Ignoring framework context key {}: expected a list", key)
                return []
            return [str(item).strip() for item in raw if str(item).strip()]

        subs_raw = data.get("substitutions") or {}
        substitutions: dict[str, str] = {}
        if isinstance(subs_raw, dict):
            substitutions = {str(k): str(v) for k, v in subs_raw.items()}
        else:
            logger.warning("Ignoring framework context substitutions: expected a mapping")
        name = data.get("name") or data.get("framework")
        return cls(
            name=str(name) if name else None,
            guidance=_str_list("rules"),
            substitutions=substitutions,
            surfaces=[s.lower() for s in _str_list("surfaces")],
            elements=_str_list("elements"),
            source_text=text,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "guidance": list(self.guidance),
            "substitutions": dict(self.substitutions),
            "surfaces": list(self.surfaces),
            "elements": list(self.elements),
        }


@dataclass
class ProjectContext:
    """What the target project declares it has.

    Empty ``surfaces`` or ``elements`` mean "unknown", which disables the
    corresponding feasibility checks.
    """

    surfaces: set[str] = field(default_factory=set)
    elements: set[str] = field(default_factory=set)

    @property
    def has_frontend(self) -> bool:
        return "frontend" in self.surfaces

    @property
    def has_backend(self) -> bool:
        return "backend" in self.surfaces

    def has_element(self, name: str) -> bool:
        lowered = name.lower()
        return any(lowered == e.lower() or e.lower().endswith("/" + lowered) for e in self.elements)

    @classmethod
    def from_rules(cls, rules: FrameworkRules, rule_set: Optional[RuleSet] = None) -> "ProjectContext":
        """Use declared surfaces, or infer them from technology keywords in the context text."""
        surfaces = set(rules.surfaces)
        if not surfaces and rules.source_text:
            table = (rule_set or RuleSet()).context_surfaces
            for surface, keywords in table.items():
                if any(keyword_pattern(kw).search(rules.source_text) for kw in keywords):
                    surfaces.add(surface)
        return cls(surfaces=surfaces, elements=set(rules.elements))

    def to_dict(self) -> dict[str, Any]:
        return {"surfaces": sorted(self.surfaces), "elements": sorted(self.elements)}
