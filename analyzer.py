import asyncio
import json
import logging
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from pydantic import ValidationError

import config
from analysis_prompt import ANALYSIS_PROMPT, RESPONSE_SCHEMA
from image_io import ImagePayload
from schemas import AnalysisResult, expected_health_score, health_score_drift

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Failed to analyze image. Please try again."
USER_MESSAGE = "Analyze this cotton plant photo and return the analysis JSON."


class AnalysisError(Exception):
    user_message = GENERIC_FAILURE


class NetworkFailure(AnalysisError):
    """Service unreachable, timed out or answered with an error status."""


class InvalidResponseFormat(AnalysisError):
    """Service answered, but not with JSON matching the response schema."""


class CredentialError(AnalysisError):
    user_message = "The analysis service is not configured with a valid API key."


def parse_analysis(text: Optional[str]) -> AnalysisResult:
    """Strict decode of the model reply. Never returns a partial result."""
    raw = (text or "").strip()
    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.warning("Model reply is not JSON (%s): %.500s", e, raw)
        raise InvalidResponseFormat(f"response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        logger.warning("Model reply is JSON but not an object: %.500s", raw)
        raise InvalidResponseFormat("response JSON is not an object")
    try:
        result = AnalysisResult.model_validate(data)
    except ValidationError as e:
        logger.warning("Model reply violates schema: %s\n%.500s", e, raw)
        raise InvalidResponseFormat(f"response does not match schema: {e.error_count()} error(s)") from e

    drift = health_score_drift(result)
    if drift > config.HEALTH_SCORE_TOLERANCE:
        logger.warning(
            "health_score %d disagrees with formula (expected %d from stage_conf=%.3f anomaly_prob=%.3f)",
            result.health_score,
            expected_health_score(result.stage_conf, result.anomaly_prob),
            result.stage_conf,
            result.anomaly_prob,
        )
    return result


def _is_credential_problem(exc: Exception) -> bool:
    if isinstance(exc, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
        return True
    # Gemini answers 400 INVALID_ARGUMENT for a malformed / unknown key
    return isinstance(exc, google_exceptions.InvalidArgument) and "api key" in str(exc).lower()


class CottonAnalyzer:
    """Wraps the single Gemini call: image in, validated AnalysisResult out."""

    def __init__(
        self,
        api_key: str = config.GEMINI_KEY,
        model_name: str = config.GEMINI_MODEL,
        temperature: float = config.GEMINI_TEMPERATURE,
        max_output_tokens: int = config.GEMINI_MAX_TOKENS,
        timeout: float = config.ANALYZE_TIMEOUT,
    ):
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout if timeout and timeout > 0 else None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _model(self):
        genai.configure(api_key=self.api_key)
        return genai.GenerativeModel(model_name=self.model_name, system_instruction=ANALYSIS_PROMPT)

    async def analyze(self, image: ImagePayload) -> AnalysisResult:
        if not self.api_key:
            logger.error("GEMINI_API_KEY not set, refusing to call %s", self.model_name)
            raise CredentialError("GEMINI_API_KEY not set")

        model_g = self._model()
        image_part = {"mime_type": image.mime_type, "data": image.data}
        request_options = {"timeout": self.timeout} if self.timeout else None
        try:
            resp = await asyncio.wait_for(
                model_g.generate_content_async(
                    [image_part, USER_MESSAGE],
                    generation_config=genai.types.GenerationConfig(
                        temperature=self.temperature,
                        max_output_tokens=self.max_output_tokens,
                        response_mime_type="application/json",
                        response_schema=RESPONSE_SCHEMA,
                    ),
                    request_options=request_options,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Gemini call exceeded %.0fs", self.timeout)
            raise NetworkFailure(f"no answer within {self.timeout}s") from e
        except google_exceptions.GoogleAPIError as e:
            if _is_credential_problem(e):
                logger.error("Gemini rejected the API key: %s", e)
                raise CredentialError(str(e)) from e
            logger.error("Gemini call failed: %s", e)
            raise NetworkFailure(str(e)) from e
        except OSError as e:
            logger.error("Transport error calling Gemini: %s", e)
            raise NetworkFailure(str(e)) from e

        try:
            text = resp.text
        except ValueError as e:
            # blocked prompt or empty candidate list
            logger.warning("Gemini reply has no text: %s", e)
            raise InvalidResponseFormat(f"response has no text: {e}") from e
        return parse_analysis(text)
