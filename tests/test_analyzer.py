import asyncio
import json
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.api_core import exceptions as google_exceptions

from analyzer import (
    GENERIC_FAILURE,
    CottonAnalyzer,
    CredentialError,
    InvalidResponseFormat,
    NetworkFailure,
    parse_analysis,
)
from image_io import read_image
from schemas import GrowthStage


# ---------------------------
# Strict parsing
# ---------------------------
def test_parse_valid_reply(sample_response):
    result = parse_analysis(json.dumps(sample_response))
    assert result.stage is GrowthStage.BLOOM
    assert result.health_score == 60


@pytest.mark.parametrize("text", ["", "not json", "```json\n{}\n```", "[1, 2]", '{"stage": "Phase 3: Bloom"}', None])
def test_parse_rejects_bad_replies(text):
    with pytest.raises(InvalidResponseFormat):
        parse_analysis(text)


def test_parse_rejects_string_typed_numbers(sample_response):
    sample_response["stage_conf"] = "0.92"
    sample_response["health_score"] = "60"
    sample_response["detected_regions"][0]["box_2d"] = ["100", "100", "400", "400"]
    with pytest.raises(InvalidResponseFormat):
        parse_analysis(json.dumps(sample_response))


def test_formula_mismatch_is_logged_not_rejected(sample_response, caplog):
    sample_response["health_score"] = 95
    with caplog.at_level(logging.WARNING, logger="analyzer"):
        result = parse_analysis(json.dumps(sample_response))
    assert result.health_score == 95
    assert "disagrees with formula" in caplog.text


def test_formula_within_tolerance_is_quiet(sample_response, caplog):
    sample_response["health_score"] = 61
    with caplog.at_level(logging.WARNING, logger="analyzer"):
        parse_analysis(json.dumps(sample_response))
    assert "disagrees" not in caplog.text


# ---------------------------
# Gemini call (mocked)
# ---------------------------
def _mock_genai(reply=None, side_effect=None):
    genai = MagicMock()
    model = genai.GenerativeModel.return_value
    model.generate_content_async = AsyncMock(return_value=reply, side_effect=side_effect)
    return genai, model


def test_missing_key_is_credential_error(png_bytes):
    analyzer = CottonAnalyzer(api_key="")
    with patch("analyzer.genai") as genai:
        with pytest.raises(CredentialError) as err:
            asyncio.run(analyzer.analyze(read_image(png_bytes)))
    genai.GenerativeModel.assert_not_called()
    assert err.value.user_message != GENERIC_FAILURE


def test_analyze_success_sends_image_and_schema(png_bytes, sample_response):
    genai, model = _mock_genai(reply=SimpleNamespace(text=json.dumps(sample_response)))
    analyzer = CottonAnalyzer(api_key="k", model_name="gemini-test", timeout=5)
    with patch("analyzer.genai", genai):
        result = asyncio.run(analyzer.analyze(read_image(png_bytes, "leaf.png")))

    assert result.is_anomaly is True
    genai.configure.assert_called_once_with(api_key="k")
    assert genai.GenerativeModel.call_args.kwargs["model_name"] == "gemini-test"
    contents = model.generate_content_async.call_args.args[0]
    assert contents[0] == {"mime_type": "image/png", "data": png_bytes}
    config_kwargs = genai.types.GenerationConfig.call_args.kwargs
    assert config_kwargs["response_mime_type"] == "application/json"
    assert "detected_regions" in config_kwargs["response_schema"]["required"]
    assert model.generate_content_async.call_args.kwargs["request_options"] == {"timeout": 5}


@pytest.mark.parametrize(
    "exc,expected",
    [
        (google_exceptions.ServiceUnavailable("backend down"), NetworkFailure),
        (google_exceptions.InternalServerError("boom"), NetworkFailure),
        (google_exceptions.InvalidArgument("Unsupported MIME type"), NetworkFailure),
        (ConnectionResetError("reset by peer"), NetworkFailure),
        (google_exceptions.Unauthenticated("missing credentials"), CredentialError),
        (google_exceptions.PermissionDenied("key revoked"), CredentialError),
        (google_exceptions.InvalidArgument("API key not valid. Please pass a valid API key."), CredentialError),
    ],
)
def test_transport_errors_are_translated(png_bytes, exc, expected):
    genai, _ = _mock_genai(side_effect=exc)
    with patch("analyzer.genai", genai):
        with pytest.raises(expected):
            asyncio.run(CottonAnalyzer(api_key="k").analyze(read_image(png_bytes)))


def test_slow_call_times_out_as_network_failure(png_bytes):
    async def hang(*args, **kwargs):
        await asyncio.sleep(5)

    genai, _ = _mock_genai(side_effect=hang)
    with patch("analyzer.genai", genai):
        with pytest.raises(NetworkFailure):
            asyncio.run(CottonAnalyzer(api_key="k", timeout=0.05).analyze(read_image(png_bytes)))


def test_blocked_reply_is_invalid_format(png_bytes):
    class Blocked:
        @property
        def text(self):
            raise ValueError("response has no candidates")

    genai, _ = _mock_genai(reply=Blocked())
    with patch("analyzer.genai", genai):
        with pytest.raises(InvalidResponseFormat) as err:
            asyncio.run(CottonAnalyzer(api_key="k").analyze(read_image(png_bytes)))
    assert err.value.user_message == GENERIC_FAILURE


def test_schema_violation_is_invalid_format(png_bytes, sample_response):
    del sample_response["health_score"]
    genai, _ = _mock_genai(reply=SimpleNamespace(text=json.dumps(sample_response)))
    with patch("analyzer.genai", genai):
        with pytest.raises(InvalidResponseFormat):
            asyncio.run(CottonAnalyzer(api_key="k").analyze(read_image(png_bytes)))
