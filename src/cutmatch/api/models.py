"""Pydantic response models for the CutMatch gateway.

The request body for ``POST /api/generate-hairstyle`` is
:class:`~cutmatch.core.models.GenerationRequest`, shared with the generation
client.  The models here describe what the gateway sends back; FastAPI uses
them for serialisation and the OpenAPI schema.

Models
------
HealthResponse
    ``GET /health`` liveness payload.
ApiInfoResponse
    ``GET /api`` self-description.
StylesResponse
    ``GET /api/styles`` catalog listing.
ErrorResponse
    Shape of every error payload.
NotFoundResponse
    Error payload for unmatched routes.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

AVAILABLE_ENDPOINTS: tuple[str, ...] = (
    "GET /health",
    "GET /api",
    "POST /api/generate-hairstyle",
    "GET /api/styles",
)

ENDPOINT_DESCRIPTIONS: dict[str, str] = {
    "POST /api/generate-hairstyle": "Generate a hairstyle preview from an uploaded photo",
    "GET /api/styles": "Get available hairstyle categories and prompts",
    "GET /health": "Health check endpoint",
    "GET /api": "API description",
}


class HealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: str
    version: str
    service: str


class ApiInfoResponse(BaseModel):
    name: str
    version: str
    description: str
    endpoints: dict[str, str]
    documentation: str


class StylesData(BaseModel):
    """Catalog listing.

    Attributes:
        prompts: Style id → prompt text.
        categories: Category name → style ids.
        total_styles: Number of distinct style ids (JSON ``totalStyles``).
        recommended: Style ids recommended for the ``category`` /
            ``culturalBackground`` query parameters, when either is given.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompts: dict[str, str]
    categories: dict[str, list[str]]
    total_styles: int = Field(..., alias="totalStyles")
    recommended: list[str] | None = None


class ResponseMetadata(BaseModel):
    version: str
    timestamp: str


class StylesResponse(BaseModel):
    success: bool = True
    data: StylesData
    metadata: ResponseMetadata


class ErrorResponse(BaseModel):
    error: str
    message: str
    timestamp: str | None = None
    details: str | list | dict | None = None


class NotFoundResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error: str = "Not found"
    message: str
    available_endpoints: list[str] = Field(
        default_factory=lambda: list(AVAILABLE_ENDPOINTS),
        alias="availableEndpoints",
    )
