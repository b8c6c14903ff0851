"""Tests for cutmatch.core.generation: the Replicate generation client.

All tests use :class:`StubReplicate` from conftest; no network calls are
made.  Async tests run through the anyio pytest plugin.
"""

from __future__ import annotations

import httpx
import pytest
from replicate.exceptions import ReplicateError

from cutmatch.core.config import CutMatchConfig
from cutmatch.core.errors import ConfigurationError, UpstreamProviderError
from cutmatch.core.generation import (
    BRAND_LEAD,
    BRAND_SUFFIX,
    DEFAULT_INFERENCE_INPUT,
    NEGATIVE_PROMPT,
    GenerationClient,
    extract_output_uri,
    format_prompt,
)
from cutmatch.core.models import GenerationRequest


@pytest.fixture
def request_model(png_data_uri) -> GenerationRequest:
    return GenerationRequest(photo=png_data_uri, styleId="fade-001")


# ---------------------------------------------------------------------------
# Prompt formatting.
# ---------------------------------------------------------------------------


class TestFormatPrompt:
    def test_brand_lead_replaces_generic_lead(self):
        prompt = format_prompt("Photo of a person with a buzz cut")
        assert prompt.startswith(BRAND_LEAD)
        assert prompt.endswith(BRAND_SUFFIX)

    def test_legacy_brand_is_replaced(self):
        """An old brand token becomes CutMatch and the lead is left alone."""
        prompt = format_prompt("Photo of a person with Facup braids")
        assert "facup" not in prompt.lower()
        assert prompt.startswith("Photo of a person with CutMatch braids")

    def test_prompt_without_lead_only_gets_suffix(self):
        assert format_prompt("braids") == "braids" + BRAND_SUFFIX


class TestExtractOutputUri:
    def test_list_of_urls(self):
        assert extract_output_uri(["https://a/1.png", "https://a/2.png"]) == "https://a/1.png"

    def test_file_output_objects(self):
        class FileOutput:
            url = "https://a/file.png"

        assert extract_output_uri([FileOutput()]) == "https://a/file.png"

    def test_single_string(self):
        assert extract_output_uri("https://a/x.png") == "https://a/x.png"

    def test_empty_outputs(self):
        assert extract_output_uri([]) is None
        assert extract_output_uri(None) is None


# ---------------------------------------------------------------------------
# Client behaviour.
# ---------------------------------------------------------------------------


@pytest.mark.anyio
class TestGenerationClient:
    async def test_success_returns_succeeded_result(
        self, generator, stub_replicate, catalog, request_model
    ):
        result = await generator.generate(request_model, catalog.get("fade-001"))

        assert result.status == "succeeded"
        assert result.style_id == "fade-001"
        assert result.result_image_uri == stub_replicate.output[0]
        assert result.prompt.startswith(BRAND_LEAD)

    async def test_exactly_one_provider_call(
        self, generator, stub_replicate, catalog, request_model, test_config
    ):
        await generator.generate(request_model, catalog.get("fade-001"))

        assert len(stub_replicate.calls) == 1
        model, payload = stub_replicate.calls[0]
        assert model == test_config.replicate_model
        assert payload["image"] == request_model.photo
        assert payload["negative_prompt"] == NEGATIVE_PROMPT
        for key, value in DEFAULT_INFERENCE_INPUT.items():
            assert payload[key] == value

    async def test_missing_token_raises_configuration_error(self, catalog, request_model):
        cfg = CutMatchConfig(_env_file=None, replicate_api_token=None)
        client = GenerationClient(cfg)

        assert client.configured is False
        with pytest.raises(ConfigurationError):
            await client.generate(request_model, catalog.get("fade-001"))

    async def test_provider_error_becomes_upstream_error(
        self, test_config, catalog, request_model, make_stub
    ):
        stub = make_stub(error=ReplicateError(status=500, detail="model crashed"))
        client = GenerationClient(test_config, client=stub)

        with pytest.raises(UpstreamProviderError) as excinfo:
            await client.generate(request_model, catalog.get("fade-001"))
        assert "model crashed" in excinfo.value.detail
        assert len(stub.calls) == 1

    async def test_transport_error_becomes_upstream_error(
        self, test_config, catalog, request_model, make_stub
    ):
        stub = make_stub(error=httpx.ConnectError("connection refused"))
        client = GenerationClient(test_config, client=stub)

        with pytest.raises(UpstreamProviderError):
            await client.generate(request_model, catalog.get("fade-001"))

    async def test_timeout_becomes_upstream_error(
        self, test_config, catalog, request_model, make_stub
    ):
        cfg = test_config.model_copy(update={"generation_timeout_seconds": 0.05})
        stub = make_stub(delay=1.0)
        client = GenerationClient(cfg, client=stub)

        with pytest.raises(UpstreamProviderError, match="timed out"):
            await client.generate(request_model, catalog.get("fade-001"))

    async def test_empty_output_becomes_upstream_error(
        self, test_config, catalog, request_model, make_stub
    ):
        client = GenerationClient(test_config, client=make_stub(output=[]))

        with pytest.raises(UpstreamProviderError):
            await client.generate(request_model, catalog.get("fade-001"))
