"""Static hairstyle catalog.

The catalog maps style identifiers to their prompt templates and groups them
into categories.  It is loaded once at startup from ``styles.json`` (packaged
with :mod:`cutmatch.data`, or an override path from configuration) and is
never mutated afterwards.

File format::

    {
      "styles": [
        {"id": "buzz_cut", "name": "Buzz Cut", "prompt_text": "...",
         "category": "short", "hair_type": "any"}
      ],
      "categories": {"short": ["buzz_cut", ...]}
    }

Category lists may reference a style more than once across categories (a
fade can be both ``short`` and ``fade``), but every referenced id must exist
in ``styles``.

Ids are opaque strings chosen by each deployment.  The packaged catalog uses
snake_case ids such as ``short_afro_fade``; a deployment that wants ids like
``fade-001`` supplies its own file through ``STYLE_CATALOG_PATH``.
"""

from __future__ import annotations

import json
import logging
import random
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from cutmatch.core.models import StyleDefinition

logger = logging.getLogger(__name__)

# Used when no category preference matches.
DEFAULT_RECOMMENDATIONS = (
    "short_afro_fade",
    "sleek_bob",
    "layered_waves",
    "curly_bob",
    "textured_crop",
)

CULTURAL_RECOMMENDATIONS: dict[str, tuple[str, ...]] = {
    "african": ("short_afro_fade", "tapered_coils", "protective_braids", "twist_out"),
    "afro": ("short_afro_fade", "tapered_coils", "protective_braids", "twist_out"),
    "asian": ("layered_waves", "textured_crop", "sleek_bob", "wavy_lob"),
    "latino": ("curly_bob", "wavy_lob", "voluminous_curls", "layered_waves"),
    "hispanic": ("curly_bob", "wavy_lob", "voluminous_curls", "layered_waves"),
    "middle_eastern": ("thick_waves", "voluminous_curls", "layered_waves", "sleek_bob"),
}

MIN_RECOMMENDATIONS = 3
MAX_RECOMMENDATIONS = 5


class StyleCatalog:
    """Read-only registry of :class:`StyleDefinition` entries.

    Args:
        styles: Style definitions, in display order.  Ids must be unique.
        categories: Mapping of category name to style ids.

    Raises:
        ValueError: If an id is duplicated or a category references an
            unknown style.
    """

    def __init__(
        self,
        styles: list[StyleDefinition],
        categories: Mapping[str, list[str]] | None = None,
    ) -> None:
        by_id: dict[str, StyleDefinition] = {}
        for style in styles:
            if style.id in by_id:
                raise ValueError(f"Duplicate style id in catalog: {style.id}")
            by_id[style.id] = style

        resolved_categories: dict[str, tuple[str, ...]] = {}
        for name, ids in (categories or {}).items():
            unknown = [style_id for style_id in ids if style_id not in by_id]
            if unknown:
                raise ValueError(f"Category '{name}' references unknown styles: {unknown}")
            resolved_categories[name] = tuple(ids)

        self._styles = MappingProxyType(by_id)
        self._categories = MappingProxyType(resolved_categories)

    @classmethod
    def from_dict(cls, data: dict) -> StyleCatalog:
        styles = [StyleDefinition.model_validate(entry) for entry in data.get("styles", [])]
        return cls(styles, data.get("categories", {}))

    @classmethod
    def from_json(cls, path: Path) -> StyleCatalog:
        """Load a catalog from a JSON file on disk."""
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
        catalog = cls.from_dict(data)
        logger.info(f"Loaded {len(catalog)} styles from {path}")
        return catalog

    @classmethod
    def packaged(cls) -> StyleCatalog:
        """Load the catalog shipped inside the ``cutmatch.data`` package."""
        source = resources.files("cutmatch.data").joinpath("styles.json")
        data = json.loads(source.read_text(encoding="utf-8"))
        return cls.from_dict(data)

    def __len__(self) -> int:
        return len(self._styles)

    def __contains__(self, style_id: object) -> bool:
        return style_id in self._styles

    def __iter__(self):
        return iter(self._styles.values())

    @property
    def ids(self) -> list[str]:
        return list(self._styles)

    def get(self, style_id: str) -> StyleDefinition | None:
        return self._styles.get(style_id)

    def prompts(self) -> dict[str, str]:
        """Return a fresh mapping of style id to prompt text."""
        return {style_id: style.prompt_text for style_id, style in self._styles.items()}

    def categories(self) -> dict[str, list[str]]:
        """Return a fresh mapping of category name to style ids."""
        return {name: list(ids) for name, ids in self._categories.items()}

    def recommend(
        self,
        category: str | None = None,
        cultural_background: str | None = None,
        *,
        rng: random.Random | None = None,
    ) -> list[str]:
        """Pick between three and five style ids for a user's preferences.

        A known ``category`` selects that category's styles; otherwise a
        default diverse selection is used.  A recognised
        ``cultural_background`` replaces either selection.  Short selections
        are padded with random catalog styles up to three, and the result is
        capped at five.

        Args:
            category: Preferred category name.
            cultural_background: Free-text background, matched
                case-insensitively.
            rng: Random source used for padding.

        Returns:
            List of style ids present in this catalog.
        """
        rng = rng or random.Random()

        if category and category in self._categories:
            selected = list(self._categories[category])
        else:
            selected = [style_id for style_id in DEFAULT_RECOMMENDATIONS if style_id in self]

        if cultural_background:
            override = CULTURAL_RECOMMENDATIONS.get(cultural_background.strip().lower())
            if override:
                selected = [style_id for style_id in override if style_id in self]

        candidates = [style_id for style_id in self._styles if style_id not in selected]
        rng.shuffle(candidates)
        while len(selected) < MIN_RECOMMENDATIONS and candidates:
            selected.append(candidates.pop())

        return selected[:MAX_RECOMMENDATIONS]


def load_catalog(path: Path | None = None) -> StyleCatalog:
    """Load the configured catalog, falling back to the packaged one."""
    if path is not None:
        return StyleCatalog.from_json(Path(path))
    return StyleCatalog.packaged()
