"""Domain models shared across the gateway and the client data helpers.

Models
------
StyleDefinition
    One entry of the static style catalog.
GenerationRequest
    Validated body of a hairstyle generation request.
GenerationResult
    Outcome of a single generation job.
Favorite, UserProfile, SharedStyleLink
    Rows persisted in the managed backend.  They are used to build the row
    payloads; the data helpers hand the backend's own rows back to callers.
"""

from __future__ import annotations

import base64
import binascii
import io
from datetime import datetime, timezone
from typing import Any, Literal

from PIL import Image, UnidentifiedImageError
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Matches the upload limit enforced by the mobile client.
MAX_PHOTO_BYTES = 10 * 1024 * 1024

# Decoded size cap; a small compressed file can still declare huge dimensions.
MAX_PHOTO_PIXELS = 40_000_000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StyleDefinition(BaseModel):
    """A hairstyle entry in the style catalog.

    Attributes:
        id: Stable catalog key (e.g. ``"short_afro_fade"``).
        name: Display name.
        prompt_text: Base prompt sent to the generation provider.
        category: Primary category of the style.
        hair_type: Hair texture the style is designed for.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    prompt_text: str
    category: str
    hair_type: str = "any"


class GenerationRequest(BaseModel):
    """Request body for ``POST /api/generate-hairstyle``.

    The photo may be an ``http(s)`` URL, a ``data:`` URI, or bare base64.
    Inline images are decoded and checked with Pillow, then normalised to a
    ``data:`` URI carrying the detected MIME type, so the generation client
    only ever sees a URL or a well-formed data URI.

    Attributes:
        photo: Source photo (JSON key ``photo``, or ``image`` as sent by the
            older mobile builds).
        style_id: Catalog id of the requested style (JSON key ``styleId``).
        request_timestamp: When the request was received.
    """

    model_config = ConfigDict(populate_by_name=True)

    photo: str = Field(..., validation_alias=AliasChoices("photo", "image"))
    style_id: str = Field(..., validation_alias=AliasChoices("styleId", "style_id"))
    request_timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("style_id")
    @classmethod
    def _style_id_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("styleId must not be empty")
        return value

    @field_validator("photo")
    @classmethod
    def _photo_is_image(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("photo must not be empty")
        if value.startswith(("http://", "https://")):
            return value

        payload = value
        if value.startswith("data:"):
            header, sep, payload = value.partition(",")
            if not sep or ";base64" not in header:
                raise ValueError("photo data URI must be base64 encoded")

        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("photo is not valid base64") from e

        if not raw:
            raise ValueError("photo must not be empty")
        if len(raw) > MAX_PHOTO_BYTES:
            raise ValueError("photo exceeds the 10MB upload limit")

        try:
            with Image.open(io.BytesIO(raw)) as image:
                image_format = image.format
                width, height = image.size
                image.verify()
        except (Image.DecompressionBombError, UnidentifiedImageError, OSError, SyntaxError) as e:
            raise ValueError("photo is not a readable image") from e
        if width * height > MAX_PHOTO_PIXELS:
            raise ValueError("photo dimensions are too large")

        mime = Image.MIME.get(image_format or "", "image/jpeg")
        return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"

    @property
    def is_remote(self) -> bool:
        return self.photo.startswith(("http://", "https://"))


GenerationStatus = Literal["pending", "succeeded", "failed"]


class GenerationResult(BaseModel):
    """Outcome of a generation job, serialised with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    result_image_uri: str | None = Field(default=None, alias="resultImageURI")
    style_id: str = Field(..., alias="styleId")
    status: GenerationStatus = "pending"
    error_message: str | None = Field(default=None, alias="errorMessage")
    prompt: str | None = None


class Favorite(BaseModel):
    user_id: str
    style_id: str
    style_name: str | None = None
    style_data: dict[str, Any] = Field(default_factory=dict)
    personal_note: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class UserProfile(BaseModel):
    """A user's profile row.  Preference columns are open-ended."""

    model_config = ConfigDict(extra="allow")

    user_id: str
    updated_at: datetime = Field(default_factory=utcnow)


class SharedStyleLink(BaseModel):
    share_id: str
    user_id: str | None = None
    style_data: dict[str, Any] = Field(default_factory=dict)
    personal_note: str = ""
    created_at: datetime = Field(default_factory=utcnow)
