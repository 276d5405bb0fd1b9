"""
Vision Analysis
===============

Turns an uploaded photo into an ImageAnalysis using an OpenAI vision model
in JSON mode. Failures are reported as distinct error kinds: unreachable or
timed out, rate limited, misconfigured, or malformed output.
"""

import base64
import json
import logging
import time
from typing import Optional

import openai
from openai import OpenAI

from .config import (
    OPENAI_API_KEY,
    VISION_MAX_TOKENS,
    VISION_MODEL,
    VISION_TIMEOUT_SECONDS,
)
from .errors import (
    MalformedUpstreamResponse,
    UpstreamAuthError,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamUnavailable,
)
from .features import ImageAnalysis

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """You analyze photos and describe the music that would feel like them.

Return a JSON object with exactly these fields:

- mood (string): a hyper-specific emotion, e.g. "stillness of a house at 5am before anyone wakes". Avoid generic words like "sad" or "happy".
- target_energy (number 0-1): 0-0.3 calm or sleepy, 0.4-0.6 contemplative, 0.7-1 intense.
- target_valence (number 0-1): 0-0.3 melancholic, 0.4-0.6 bittersweet, 0.7-1 joyful.
- texture (string): visual grain, e.g. "warm-grainy-analog", "cold-digital-crisp", "hazy-dreamlike".
- color_temperature (string): e.g. "golden-amber", "cool-blue-grey", "high-contrast-dark".
- era_preference (string): the decade the aesthetic belongs to, formatted like "1990s" or "2010s".
- language_bias (array of 1-3 strings): song languages suited to the setting, most suitable first. Kerala landscapes suggest Malayalam, Tamil Nadu or Chennai suggest Tamil, North Indian or Bollywood settings suggest Hindi, international or indie settings suggest English.
- vibe_tags (array of 5-8 strings): evocative mood or genre keywords, e.g. "indie", "nostalgic", "monsoon".

Return ONLY the JSON object."""


def translate_openai_error(error: Exception, service: str) -> UpstreamError:
    """Map an OpenAI SDK exception onto the pipeline's error taxonomy."""
    if isinstance(error, openai.RateLimitError):
        retry_after = 60
        headers = getattr(getattr(error, "response", None), "headers", None) or {}
        try:
            retry_after = int(headers.get("retry-after", retry_after))
        except (TypeError, ValueError):
            pass
        return UpstreamRateLimited(f"{service} rate limited", retry_after=retry_after, service=service)
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return UpstreamAuthError(f"{service} rejected the API key", service=service)
    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
        return UpstreamUnavailable(f"{service} unreachable or timed out: {error}", service=service)
    return UpstreamUnavailable(f"{service} request failed: {error}", service=service)


def parse_analysis(content: Optional[str]) -> ImageAnalysis:
    """
    Parse the model's JSON reply into an ImageAnalysis.

    Raises:
        MalformedUpstreamResponse: invalid JSON or missing required fields
    """
    try:
        data = json.loads(content or "")
    except json.JSONDecodeError as e:
        logger.error("Vision model returned invalid JSON: %.200s", content)
        raise MalformedUpstreamResponse("Invalid JSON response from vision model", service="vision") from e
    return ImageAnalysis.from_dict(data)


class VisionAnalyzer:
    """Extracts ImageAnalysis traits from image bytes."""

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: str = VISION_MODEL,
        timeout: float = VISION_TIMEOUT_SECONDS,
    ):
        if client is None:
            if not OPENAI_API_KEY:
                raise UpstreamAuthError("Missing OpenAI API key", service="vision")
            client = OpenAI(api_key=OPENAI_API_KEY, timeout=timeout, max_retries=0)
        self.client = client
        self.model = model

    def analyze(self, image: bytes, mime_type: str = "image/jpeg") -> ImageAnalysis:
        """
        Analyze an image.

        Args:
            image: Raw image bytes
            mime_type: Image MIME type used in the data URL

        Returns:
            ImageAnalysis with energy/valence clamped to [0, 1]
        """
        encoded = base64.standard_b64encode(image).decode("utf-8")
        logger.info("Analyzing image (%.0fKB) with %s", len(image) / 1024, self.model)

        start = time.time()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": ANALYSIS_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "text",
                                "text": "Analyze this image and extract the structured emotional and visual traits.",
                            },
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                            },
                        ],
                    },
                ],
                max_tokens=VISION_MAX_TOKENS,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            raise translate_openai_error(e, "vision") from e

        logger.info("Vision model responded in %.1fs", time.time() - start)

        content = response.choices[0].message.content if response.choices else None
        analysis = parse_analysis(content)

        logger.info(
            "Analysis: energy=%.2f valence=%.2f languages=%s vibe_tags=%s",
            analysis.target_energy,
            analysis.target_valence,
            ", ".join(analysis.language_bias),
            ", ".join(analysis.vibe_tags),
        )
        return analysis
