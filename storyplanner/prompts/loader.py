"""
Prompt registry backed by versioned YAML files.

Each YAML file under `v1/<domain>/` maps prompt names to Jinja2 templates:

    v1/
    ├── shared/      # Output-format rules reused by every agent
    ├── planning/    # Context extractor, visual selector, refiner
    └── imaging/     # Shot image, character portrait, image edit

Usage:
    from storyplanner.prompts.loader import render_prompt

    rendered = render_prompt("prompt_visual_plan_system", min_shots=3, max_shots=6, ...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, StrictUndefined, TemplateSyntaxError

logger = logging.getLogger(__name__)

_VERSION_DIR = Path(__file__).resolve().parent / "v1"

# Injected into every render unless the caller passes its own value.
_SHARED_KEYS = ("system_prompt_json",)

_env = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
)


@dataclass(frozen=True)
class PromptEntry:
    domain: str
    template: str


@lru_cache(maxsize=1)
def _registry() -> dict[str, PromptEntry]:
    """Load every prompt file once; template syntax errors fail the load."""
    registry: dict[str, PromptEntry] = {}
    for yaml_file in sorted(_VERSION_DIR.glob("*/*.yaml")):
        domain = yaml_file.parent.name
        data = yaml.safe_load(yaml_file.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{yaml_file} must be a mapping at top level")
        for name, template in data.items():
            if not isinstance(template, str):
                continue
            try:
                _env.parse(template)
            except TemplateSyntaxError as exc:
                raise ValueError(f"Invalid Jinja2 template in {yaml_file}:{name}: {exc}") from exc
            if name in registry:
                logger.warning("prompt %s redefined in %s", name, yaml_file)
            registry[name] = PromptEntry(domain=domain, template=template)
    return registry


def clear_cache() -> None:
    _registry.cache_clear()


def get_prompt(name: str) -> str:
    """
    Get a prompt template by name.

    Raises:
        KeyError: If no prompt with that name exists.
    """
    try:
        return _registry()[name].template
    except KeyError:
        raise KeyError(f"Prompt '{name}' not found") from None


def list_prompts(domain: str | None = None) -> list[str]:
    return [name for name, entry in _registry().items() if domain is None or entry.domain == domain]


def render_prompt(name: str, /, **context: Any) -> str:
    """Render a prompt; shared fragments are supplied automatically."""
    registry = _registry()
    for shared_key in _SHARED_KEYS:
        if shared_key in registry:
            context.setdefault(shared_key, registry[shared_key].template)
    return _env.from_string(get_prompt(name)).render(**context).strip()
