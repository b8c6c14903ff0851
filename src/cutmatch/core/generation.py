"""Client for the external hairstyle generation provider (Replicate).

One call to :meth:`GenerationClient.generate` submits exactly one job to
Replicate and waits for it.  The client adds no retry loop of its own; the
only bound on a job is ``generation_timeout_seconds``.  Provider failures and
timeouts are converted to :class:`~cutmatch.core.errors.UpstreamProviderError`
with the provider's message kept in ``detail`` for development mode.

A missing ``REPLICATE_API_TOKEN`` does not prevent construction.  The client
logs a configuration warning and every ``generate`` call raises
:class:`~cutmatch.core.errors.ConfigurationError` until the server is
restarted with a token.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any

import httpx
import replicate
from replicate.exceptions import ReplicateError

from cutmatch.core.config import CutMatchConfig
from cutmatch.core.errors import ConfigurationError, UpstreamProviderError
from cutmatch.core.models import GenerationRequest, GenerationResult, StyleDefinition

logger = logging.getLogger(__name__)

BRAND_LEAD = "CutMatch hairstyle preview of a person"
BRAND_SUFFIX = ", professional CutMatch hairstyle preview, clean background, high resolution"
NEGATIVE_PROMPT = "blurry, low quality, distorted, facup, watermark, text, logo, signature"

# Inference settings sent with every job.
DEFAULT_INFERENCE_INPUT: dict[str, Any] = {
    "num_inference_steps": 20,
    "guidance_scale": 7.5,
    "strength": 0.8,
    "width": 512,
    "height": 512,
}

_LEGACY_BRAND = re.compile("facup", re.IGNORECASE)


def format_prompt(base_prompt: str) -> str:
    """Apply CutMatch branding to a catalog prompt.

    Args:
        base_prompt: Prompt text from the style catalog.

    Returns:
        The branded prompt sent to the provider.
    """
    prompt = _LEGACY_BRAND.sub("CutMatch", base_prompt)
    if "CutMatch" not in prompt:
        prompt = prompt.replace("Photo of a person", BRAND_LEAD, 1)
    return prompt + BRAND_SUFFIX


def extract_output_uri(output: Any) -> str | None:
    """Normalise a Replicate output to a single image URI.

    Replicate returns a list of outputs for most image models.  Depending
    on SDK version each item is a plain URL string or a ``FileOutput``
    object exposing ``.url``.

    Returns:
        The first output's URI, or ``None`` when the output is empty.
    """
    if isinstance(output, (list, tuple)):
        if not output:
            return None
        output = output[0]
    if output is None:
        return None
    uri = getattr(output, "url", None) or str(output)
    return uri or None


class GenerationClient:
    """Submit hairstyle generation jobs to Replicate.

    Args:
        config: Application configuration (token, model, timeout).
        client: Pre-built Replicate client.  Tests pass a stub exposing
            ``async_run``; production code leaves this unset.
    """

    def __init__(self, config: CutMatchConfig, client: Any | None = None) -> None:
        self.model = config.replicate_model
        self.timeout = config.generation_timeout_seconds

        if client is not None:
            self._client = client
        elif config.replicate_configured:
            self._client = replicate.Client(api_token=config.replicate_api_token)
        else:
            self._client = None
            logger.warning(
                "REPLICATE_API_TOKEN is not set; hairstyle generation requests will fail "
                "until it is configured"
            )

    @property
    def configured(self) -> bool:
        return self._client is not None

    def build_input(self, request: GenerationRequest, style: StyleDefinition) -> dict[str, Any]:
        """Build the provider input payload for one job."""
        return {
            "image": request.photo,
            "prompt": format_prompt(style.prompt_text),
            "negative_prompt": NEGATIVE_PROMPT,
            **DEFAULT_INFERENCE_INPUT,
        }

    async def generate(
        self, request: GenerationRequest, style: StyleDefinition
    ) -> GenerationResult:
        """Run one generation job and wait for its result.

        Args:
            request: Validated generation request.
            style: Catalog entry matching ``request.style_id``.

        Returns:
            A succeeded :class:`GenerationResult`.

        Raises:
            ConfigurationError: If no Replicate token is configured.
            UpstreamProviderError: If the provider fails, times out, or
                returns no image.
        """
        if self._client is None:
            raise ConfigurationError(detail="REPLICATE_API_TOKEN is not set")

        payload = self.build_input(request, style)
        logger.info(f"Generating style {style.id}: {payload['prompt']}")

        started = time.monotonic()
        try:
            output = await asyncio.wait_for(
                self._client.async_run(self.model, input=payload),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Replicate job for {style.id} timed out after {self.timeout:.0f}s")
            raise UpstreamProviderError(
                "Hairstyle generation timed out. Please try again.",
                detail=f"timeout after {self.timeout}s",
            ) from e
        except (ReplicateError, httpx.HTTPError) as e:
            logger.error(f"Replicate error for {style.id}: {e}")
            raise UpstreamProviderError(detail=str(e)) from e

        uri = extract_output_uri(output)
        if not uri:
            logger.error(f"Replicate returned no image for {style.id}")
            raise UpstreamProviderError(detail="provider returned an empty output")

        logger.info(f"Generated style {style.id} in {time.monotonic() - started:.1f}s")
        return GenerationResult(
            result_image_uri=uri,
            style_id=style.id,
            status="succeeded",
            prompt=payload["prompt"],
        )
