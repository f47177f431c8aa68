"""Coding-guideline catalog.

The catalog is read once (from the packaged ``guidelines/catalog.yml`` or a
user-supplied file) into an immutable ``GuidelineCatalog`` that callers pass
explicitly to whatever builds prompts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml

logger = logging.getLogger(__name__)

BUILTIN_GUIDELINES_DIR = Path(__file__).parent / "guidelines"
_BUILTIN_CATALOG = BUILTIN_GUIDELINES_DIR / "catalog.yml"


@dataclass(frozen=True)
class Guideline:
    id: str
    name: str
    languages: tuple[str, ...]
    description: str
    rules: str


class GuidelineCatalog:
    def __init__(self, guidelines: Iterable[Guideline]):
        self._guidelines = tuple(guidelines)

    def __len__(self) -> int:
        return len(self._guidelines)

    def all(self) -> tuple[Guideline, ...]:
        return self._guidelines

    def get(self, guideline_id: str) -> Guideline | None:
        return next((g for g in self._guidelines if g.id == guideline_id), None)

    def for_language(self, language: str) -> list[Guideline]:
        language = language.lower()
        return [g for g in self._guidelines if any(lang.lower() == language for lang in g.languages)]

    def validate_ids(self, ids: Iterable[str]) -> tuple[list[str], list[str]]:
        """Split ``ids`` into (known, unknown), preserving order."""
        known = {g.id for g in self._guidelines}
        valid: list[str] = []
        invalid: list[str] = []
        for guideline_id in ids:
            (valid if guideline_id in known else invalid).append(guideline_id)
        return valid, invalid

    def combine(self, ids: Iterable[str]) -> str:
        """Render the rules of the selected guidelines as one prompt section ("" if none match)."""
        wanted = set(ids)
        selected = [g for g in self._guidelines if g.id in wanted]
        if not selected:
            return ""
        blocks = "\n\n".join(f"\n[{g.name}]\n{g.rules.rstrip()}" for g in selected)
        return f"CODING GUIDELINES TO ENFORCE:\n{blocks}\n"


def _from_dict(d: dict) -> Guideline:
    languages = d.get("languages") or []
    if isinstance(languages, str):
        languages = [languages]
    return Guideline(
        id=str(d["id"]),
        name=str(d.get("name", d["id"])),
        languages=tuple(str(lang) for lang in languages),
        description=str(d.get("description", "")),
        rules=str(d.get("rules", "")),
    )


def load_catalog(config: dict | None = None) -> GuidelineCatalog:
    """
    Load the guideline catalog.

    If ``guidelines`` is set in config, loads that YAML file (a list of
    guideline mappings). Otherwise falls back to the built-in catalog.
    """
    custom_path = (config or {}).get("guidelines")
    if custom_path:
        path = Path(custom_path)
        if not path.exists():
            raise FileNotFoundError(f"Guidelines file not found: {custom_path}")
    else:
        path = _BUILTIN_CATALOG

    with open(path, encoding="utf-8") as f:
        entries = yaml.safe_load(f) or []
    catalog = GuidelineCatalog(_from_dict(e) for e in entries)
    logger.debug("Loaded %d guideline(s) from %s", len(catalog), path)
    return catalog
