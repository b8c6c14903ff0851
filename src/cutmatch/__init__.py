"""CutMatch - AI hairstyle previews, style catalog, and user data helpers."""

__version__ = "1.0.0"
