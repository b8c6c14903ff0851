"""Core functionality shared by the gateway and the client helpers.

- **CutMatchConfig / config**: configuration using Pydantic Settings
- **StyleCatalog**: static hairstyle prompt registry
- **GenerationClient**: Replicate-backed hairstyle generation
- **errors**: the error taxonomy converted to JSON by the gateway

Usage Example
-------------
    from cutmatch.core import GenerationClient, config, load_catalog

    catalog = load_catalog(config.style_catalog_path)
    generator = GenerationClient(config)
"""

from cutmatch.core.catalog import StyleCatalog, load_catalog
from cutmatch.core.config import CutMatchConfig, config
from cutmatch.core.generation import GenerationClient

__all__ = [
    "CutMatchConfig",
    "GenerationClient",
    "StyleCatalog",
    "config",
    "load_catalog",
]
