# backend/services/inference_provider.py
import asyncio
import base64
import json
import logging
import mimetypes
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import anthropic
from pydantic import BaseModel, Field

from models.complaint_models import ComplaintCategory, ImageReference, ImageVerdict
from .automation_config import ImageAnalysisSettings, InferenceSettings
from .errors import InferenceUnavailableError

logger = logging.getLogger(__name__)

CATEGORY_DESCRIPTIONS = {
    ComplaintCategory.ROAD_ISSUES: "Road infrastructure issues including potholes, cracks, and surface damage",
    ComplaintCategory.WASTE_MANAGEMENT: "Waste collection, disposal, and management issues",
    ComplaintCategory.WATER_SUPPLY: "Water supply, leaks, and drainage issues",
    ComplaintCategory.ELECTRICITY: "Electrical infrastructure and power supply issues",
    ComplaintCategory.STREET_LIGHTING: "Street lighting and public illumination issues",
    ComplaintCategory.DRAINAGE: "Drainage and sewer system issues",
    ComplaintCategory.PARKS_RECREATION: "Parks, playgrounds, and recreational facility issues",
    ComplaintCategory.SAFETY_SECURITY: "Safety and security concerns",
    ComplaintCategory.NOISE_POLLUTION: "Noise pollution and disturbance issues",
    ComplaintCategory.AIR_POLLUTION: "Air quality and pollution issues",
    ComplaintCategory.PUBLIC_TRANSPORT: "Public transportation issues",
    ComplaintCategory.OTHER: "Anything that fits none of the categories above",
}

SYSTEM_PROMPT = (
    "You are an expert at categorizing urban infrastructure complaints. "
    "Analyze the input and determine the most appropriate category with high accuracy. "
    "Respond with JSON only."
)


class TextVerdict(BaseModel):
    category: ComplaintCategory
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    keywords_found: List[str] = []


class InferenceProvider:
    """
    Anthropic-backed category inference for complaint text and photos.

    Every call is bounded by the configured timeout. Timeouts, API errors
    and unparseable answers all surface as InferenceUnavailableError so the
    classifier can fall back to keyword scoring.
    """

    def __init__(self, settings: InferenceSettings, image_settings: Optional[ImageAnalysisSettings] = None,
                 client: Optional[anthropic.AsyncAnthropic] = None):
        self.settings = settings
        self.image_settings = image_settings or ImageAnalysisSettings()
        self.client = client
        if self.client is None and settings.api_key:
            self.client = anthropic.AsyncAnthropic(
                api_key=settings.api_key,
                timeout=settings.timeout_seconds,
                max_retries=0,
            )

    @property
    def available(self) -> bool:
        return self.client is not None

    # ==================== PUBLIC API ====================

    async def classify_text(self, text: str) -> TextVerdict:
        prompt = self._build_text_prompt(text)
        response = await self._call_anthropic([{"type": "text", "text": prompt}])
        data = self._parse_json_response(response)

        category = ComplaintCategory.parse(data.get("category"))
        confidence = self._clamp(data.get("confidence", 0.5))
        if category == ComplaintCategory.OTHER and str(data.get("category", "")).lower() != "other":
            # Label outside the taxonomy
            confidence = 0.5

        return TextVerdict(
            category=category,
            confidence=confidence,
            reasoning=str(data.get("reasoning", "")),
            keywords_found=self._string_list(data.get("keywords_found")),
        )

    async def classify_image(self, image: ImageReference) -> ImageVerdict:
        encoded, media_type = await self._load_image(image)
        content = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": encoded},
            },
            {"type": "text", "text": self._build_image_prompt()},
        ]
        response = await self._call_anthropic(content)
        data = self._parse_json_response(response)

        return ImageVerdict(
            category=ComplaintCategory.parse(data.get("category")),
            confidence=self._clamp(data.get("confidence", 0.3)),
            description=str(data.get("description", "")),
            objects_detected=self._string_list(data.get("objects_detected")),
        )

    async def health_check(self) -> Dict[str, Any]:
        if not self.available:
            return {"status": "not_configured"}
        try:
            await self._call_anthropic([{"type": "text", "text": "Respond with 'OK' for health check"}])
            return {"status": "healthy", "model": self.settings.model}
        except InferenceUnavailableError as e:
            return {"status": "unhealthy", "reason": e.reason, "error": str(e)}

    # ==================== PROMPTS ====================

    def _build_text_prompt(self, text: str) -> str:
        categories = "\n".join(
            f"- {category.value}: {description}" for category, description in CATEGORY_DESCRIPTIONS.items()
        )
        return f"""
Analyze the following complaint text and determine the most appropriate category from these options:
{categories}

Text: "{text}"

Respond with a JSON object containing:
{{
    "category": "most_appropriate_category",
    "confidence": 0.0-1.0,
    "reasoning": "brief explanation of why this category was chosen",
    "keywords_found": ["list", "of", "relevant", "keywords"]
}}
"""

    def _build_image_prompt(self) -> str:
        categories = ", ".join(category.value for category in CATEGORY_DESCRIPTIONS)
        return f"""
Analyze this image and determine what type of urban infrastructure issue it shows.
Look for: potholes, road damage, waste/garbage, water leaks, electrical issues,
street lighting problems, drainage issues, park/playground problems, safety hazards, etc.

Allowed categories: {categories}

Respond with a JSON object:
{{
    "category": "most_likely_category",
    "confidence": 0.0-1.0,
    "description": "what you see in the image",
    "objects_detected": ["list", "of", "objects", "seen"]
}}
"""

    # ==================== UTILITY METHODS ====================

    async def _call_anthropic(self, content: List[Dict[str, Any]]) -> str:
        """Call Anthropic Claude API within the configured timeout"""
        if self.client is None:
            raise InferenceUnavailableError("Anthropic client not configured", reason="not_configured")

        try:
            response = await asyncio.wait_for(
                self.client.messages.create(
                    model=self.settings.model,
                    max_tokens=self.settings.max_tokens,
                    temperature=self.settings.temperature,
                    system=SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": content}],
                ),
                timeout=self.settings.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise InferenceUnavailableError(
                f"Anthropic call timed out after {self.settings.timeout_seconds}s", reason="timeout"
            ) from e
        except anthropic.RateLimitError as e:
            raise InferenceUnavailableError(f"Anthropic rate limit: {e}", reason="rate_limited") from e
        except anthropic.APIError as e:
            raise InferenceUnavailableError(f"Anthropic API error: {e}", reason="provider_error") from e

        content_text = ""
        for content_block in response.content:
            content_text += getattr(content_block, "text", "") or ""
        return content_text

    def _parse_json_response(self, response: str) -> Dict[str, Any]:
        json_match = re.search(r"\{.*\}", response, re.DOTALL)
        if not json_match:
            raise InferenceUnavailableError("No JSON object in provider response", reason="bad_response")
        try:
            data = json.loads(json_match.group())
        except json.JSONDecodeError as e:
            raise InferenceUnavailableError(f"Unparseable provider response: {e}", reason="bad_response") from e
        if not isinstance(data, dict):
            raise InferenceUnavailableError("Provider response is not an object", reason="bad_response")
        return data

    async def _load_image(self, image: ImageReference):
        path = Path(image.path) if image.path else Path(self.image_settings.upload_dir) / image.filename
        try:
            image_bytes = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise InferenceUnavailableError(f"Image not readable: {path}", reason="image_missing") from e

        max_bytes = int(self.image_settings.max_image_size_mb * 1024 * 1024)
        if len(image_bytes) > max_bytes:
            raise InferenceUnavailableError(
                f"Image {path.name} exceeds {self.image_settings.max_image_size_mb} MB", reason="image_too_large"
            )

        media_type = image.content_type or mimetypes.guess_type(path.name)[0] or "image/jpeg"
        return base64.b64encode(image_bytes).decode("ascii"), media_type

    @staticmethod
    def _clamp(value: Any) -> float:
        try:
            return max(0.0, min(float(value), 1.0))
        except (TypeError, ValueError):
            return 0.0

    @staticmethod
    def _string_list(value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value]
