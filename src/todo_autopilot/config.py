"""Rule tables and engine settings, optionally loaded from `.autopilot/config.yaml`.

The categorizer, dependency mapper, prioritizer and classifiers are driven by
the tables in :class:`RuleSet`. A config file may override any table; keys it
does not mention keep their defaults.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

from .constants import (
    CONFIG_FILE,
    DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_PARALLEL,
    DEFAULT_PROBE_TEXT,
    DEFAULT_SESSION_TTL_SECONDS,
    DEFAULT_STATUS_BUFFER_SIZE,
    DEFAULT_STATUS_HISTORY_SIZE,
    FUZZY_MATCH_THRESHOLD,
    PRIORITY_WEIGHTS,
    STATE_DIR_NAME,
)
from .errors import RuleConfigError
from .io_utils import _load_data_with_error
from .models import Category


def _default_category_patterns() -> list[list[str]]:
    # Order matters: the first matching pattern wins.
    return [
        ["testing", r"\b(tests?|testing|e2e|end-to-end|specs?|coverage|qa)\b"],
        ["deployment", r"\b(deploy\w*|release|ci/cd|docker\w*|kubernetes|k8s|hosting)\b"],
        ["documentation", r"\b(docs?|documentation|readme|changelog|guide|tutorial)\b"],
        ["database", r"\b(database|db|schema|tables?|migrations?|sql|postgres\w*|mysql|mongo\w*|indexe?s?|seed)\b"],
        ["backend", r"\b(api|endpoints?|routes?|server|controllers?|services?|middleware|auth\w*|webhooks?|graphql|rest)\b"],
        ["ui", r"\b(buttons?|forms?|inputs?|pages?|components?|modals?|navbar|header|footer|layout|css|styles?|colou?rs?|icons?|screens?|views?|ui)\b"],
    ]


def _default_category_keywords() -> dict[str, list[str]]:
    return {
        "ui": ["frontend", "react", "vue", "html", "click", "display", "show", "render", "theme", "responsive"],
        "backend": ["backend", "handler", "request", "response", "session", "token", "login", "logout", "upload"],
        "database": ["model", "record", "column", "relation", "persist", "store", "storage", "query"],
        "testing": ["verify", "assert", "mock", "fixture", "regression"],
        "deployment": ["ship", "publish", "environment", "staging", "infra"],
        "documentation": ["explain", "describe", "comment", "wiki"],
    }


def _default_category_order() -> dict[str, int]:
    return {
        "database": 0,
        "backend": 1,
        "ui": 2,
        "general": 2,
        "testing": 3,
        "documentation": 4,
        "deployment": 5,
    }


def _default_category_rules() -> list[dict[str, Any]]:
    # ``before``/``after`` are categories; "*" means any other category.
    return [
        {"before": "database", "after": "backend", "requires_overlap": True},
        {"before": "backend", "after": "ui", "requires_overlap": True},
        {"before": "database", "after": "ui", "requires_overlap": True},
        {"before": "*", "after": "testing", "requires_overlap": True},
        {"before": "*", "after": "documentation", "requires_overlap": True},
        {"before": "*", "after": "deployment", "requires_overlap": False},
    ]


def _default_context_surfaces() -> dict[str, list[str]]:
    return {
        "frontend": ["frontend", "react", "vue", "angular", "svelte", "html", "css", "next.js", "nextjs", "ui"],
        "backend": ["backend", "api", "express", "django", "flask", "fastapi", "rails", "spring", "server", "node"],
        "database": ["database", "postgres", "postgresql", "mysql", "sqlite", "mongodb", "redis", "sql", "orm"],
    }


# Confirmation vocabulary per language; rule-set defaults merge all of them.
CONFIRMATION_VOCABULARY: dict[str, dict[str, list[str]]] = {
    "en": {
        "completion_phrases": [
            "done", "complete", "completed", "finished", "ready", "yes", "yep", "ok", "okay",
            "all set", "task complete", "work done", "that's it",
        ],
        "completion_words": ["done", "complete", "completed", "finished", "ready", "yes", "ok", "okay"],
        "negation_words": [
            "not", "no", "isn't", "isnt", "aren't", "haven't", "hasn't", "didn't", "wasn't", "won't", "never", "nope",
        ],
        "incomplete_phrases": ["still working", "in progress", "working on", "need more", "not yet", "almost", "halfway"],
        "input_request_markers": [
            "select", "choose", "choice", "which option", "which one", "please confirm", "would you like",
            "do you want me to", "your input", "your preference", "pick one", "let me know which",
        ],
    },
    "de": {
        "completion_phrases": ["fertig", "erledigt", "abgeschlossen", "bereit", "ja", "vollständig", "alles erledigt"],
        "completion_words": ["fertig", "erledigt", "abgeschlossen", "bereit", "ja", "vollständig"],
        "negation_words": ["nicht", "nein", "kein", "keine"],
        "incomplete_phrases": ["nicht fertig", "noch nicht", "arbeitet noch", "in bearbeitung", "braucht mehr", "braucht noch", "teilweise"],
        "input_request_markers": ["bitte wählen", "wählen sie", "welche option", "möchten sie", "soll ich"],
    },
    "es": {
        "completion_phrases": ["listo", "completado", "terminado", "sí", "todo listo"],
        "completion_words": ["listo", "completado", "terminado", "sí"],
        "negation_words": ["no", "nunca"],
        "incomplete_phrases": [
            "no listo", "no terminado", "todavía trabajando", "en progreso", "necesita más", "todavía no", "aún no",
            "casi", "parcialmente",
        ],
        "input_request_markers": ["elige", "seleccione", "qué opción", "cuál prefieres", "quieres que"],
    },
    "fr": {
        "completion_phrases": ["fini", "terminé", "complété", "prêt", "oui", "tout fini"],
        "completion_words": ["fini", "terminé", "complété", "prêt", "oui"],
        "negation_words": ["pas", "non", "jamais"],
        "incomplete_phrases": [
            "pas fini", "pas terminé", "pas encore", "travaille encore", "en cours", "a besoin de plus",
            "presque", "partiellement",
        ],
        "input_request_markers": ["choisissez", "quelle option", "voulez-vous", "veuillez confirmer", "préférez-vous"],
    },
}


def _vocabulary(key: str) -> list[str]:
    merged: list[str] = []
    for table in CONFIRMATION_VOCABULARY.values():
        merged.extend(w for w in table[key] if w not in merged)
    return merged


@dataclass
class RuleSet:
    """Data-driven tables for categorization, mapping, scoring and classification."""

    category_patterns: list[list[str]] = field(default_factory=_default_category_patterns)
    category_keywords: dict[str, list[str]] = field(default_factory=_default_category_keywords)
    category_order: dict[str, int] = field(default_factory=_default_category_order)
    category_rules: list[dict[str, Any]] = field(default_factory=_default_category_rules)
    category_surfaces: dict[str, str] = field(
        default_factory=lambda: {"ui": "frontend", "backend": "backend", "database": "database"}
    )
    context_surfaces: dict[str, list[str]] = field(default_factory=_default_context_surfaces)

    forward_cues: list[str] = field(
        default_factory=lambda: ["after", "once", "following", "requires", "require", "depends on", "depend on", "needs", "prerequisite"]
    )
    reverse_cues: list[str] = field(default_factory=lambda: ["before", "prior to"])
    fuzzy_threshold: float = FUZZY_MATCH_THRESHOLD
    ignore_words: list[str] = field(default_factory=lambda: ["should", "will", "page", "feature", "thing", "stuff"])

    weights: dict[str, float] = field(default_factory=lambda: dict(PRIORITY_WEIGHTS))
    high_value_keywords: list[str] = field(
        default_factory=lambda: ["user", "login", "auth", "payment", "checkout", "security", "core", "critical", "data", "api"]
    )
    simple_keywords: list[str] = field(
        default_factory=lambda: ["simple", "small", "minor", "rename", "typo", "text", "color", "style", "label", "add"]
    )
    complex_keywords: list[str] = field(
        default_factory=lambda: ["complex", "refactor", "migrate", "integrate", "architecture", "redesign", "optimize", "multiple", "system", "entire"]
    )
    low_risk_keywords: list[str] = field(
        default_factory=lambda: ["docs", "documentation", "readme", "comment", "style", "color", "text", "test"]
    )
    high_risk_keywords: list[str] = field(
        default_factory=lambda: ["delete", "drop", "migrate", "migration", "production", "payment", "security", "auth", "deploy", "schema"]
    )

    completion_phrases: list[str] = field(default_factory=lambda: _vocabulary("completion_phrases"))
    completion_words: list[str] = field(default_factory=lambda: _vocabulary("completion_words"))
    negation_words: list[str] = field(default_factory=lambda: _vocabulary("negation_words"))
    incomplete_phrases: list[str] = field(default_factory=lambda: _vocabulary("incomplete_phrases"))
    input_request_markers: list[str] = field(default_factory=lambda: _vocabulary("input_request_markers"))

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise :class:`RuleConfigError` for malformed tables."""
        categories = {c.value for c in Category}
        for entry in self.category_patterns:
            if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                raise RuleConfigError(f"category pattern must be [category, regex]: {entry!r}")
            name, pattern = entry
            if name not in categories:
                raise RuleConfigError(f"unknown category in pattern table: {name!r}")
            try:
                re.compile(pattern)
            except re.error as exc:
                raise RuleConfigError(f"invalid pattern for {name}: {exc}") from exc
        for name in self.category_keywords:
            if name not in categories:
                raise RuleConfigError(f"unknown category in keyword table: {name!r}")
        for rule in self.category_rules:
            for key in ("before", "after"):
                value = rule.get(key)
                if value != "*" and value not in categories:
                    raise RuleConfigError(f"unknown category in rule {rule!r}")
        missing = set(PRIORITY_WEIGHTS) - set(self.weights)
        if missing:
            raise RuleConfigError(f"priority weights missing: {sorted(missing)}")

    def compiled_patterns(self) -> list[tuple[Category, re.Pattern[str]]]:
        return [(Category(name), re.compile(pattern, re.IGNORECASE)) for name, pattern in self.category_patterns]

    def rank(self, category: Category) -> int:
        return int(self.category_order.get(category.value, len(self.category_order)))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "RuleSet":
        """Build a rule set from overrides; unknown keys raise."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise RuleConfigError(f"unknown rule keys: {sorted(unknown)}")
        return cls(**data)


@dataclass
class EngineSettings:
    """Execution limits. ``max_attempts`` and the timeout are mandatory bounds."""

    max_parallel: int = DEFAULT_MAX_PARALLEL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    confirmation_timeout_seconds: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
    probe_text: str = DEFAULT_PROBE_TEXT
    status_buffer_size: int = DEFAULT_STATUS_BUFFER_SIZE
    status_history_size: int = DEFAULT_STATUS_HISTORY_SIZE
    session_ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS

    def __post_init__(self) -> None:
        if self.max_parallel < 1:
            raise RuleConfigError("max_parallel must be at least 1")
        if self.max_attempts < 1:
            raise RuleConfigError("max_attempts must be at least 1")
        if self.confirmation_timeout_seconds <= 0:
            raise RuleConfigError("confirmation_timeout_seconds must be positive")
        if self.status_buffer_size < 1:
            raise RuleConfigError("status_buffer_size must be at least 1")
        if self.session_ttl_seconds <= 0:
            raise RuleConfigError("session_ttl_seconds must be positive")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "EngineSettings":
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise RuleConfigError(f"unknown engine keys: {sorted(unknown)}")
        return cls(**data)


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def config_path(project_dir: Path) -> Path:
    return project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE


def load_config(path: Optional[Path] = None, *, project_dir: Optional[Path] = None) -> tuple[RuleSet, EngineSettings]:
    """Load rule tables and engine settings.

    Args:
        path: Explicit config file (YAML or JSON).
        project_dir: Project root; `.autopilot/config.yaml` is read when ``path`` is not given.

    Returns:
        A tuple of ``(rules, settings)``. A missing file yields the defaults.

    Raises:
        RuleConfigError: If the file cannot be parsed or holds invalid values.
    """
    if path is None:
        if project_dir is None:
            return RuleSet(), EngineSettings()
        path = config_path(project_dir)
    data, err = _load_data_with_error(path, {})
    if err:
        raise RuleConfigError(err)
    rules_raw = _get_nested(data, "rules")
    engine_raw = _get_nested(data, "engine")
    if rules_raw is not None and not isinstance(rules_raw, dict):
        raise RuleConfigError("`rules` must be a mapping")
    if engine_raw is not None and not isinstance(engine_raw, dict):
        raise RuleConfigError("`engine` must be a mapping")
    try:
        return RuleSet.from_dict(rules_raw), EngineSettings.from_dict(engine_raw)
    except TypeError as exc:
        raise RuleConfigError(str(exc)) from exc
