# backend/services/content_classifier.py
import logging
import re
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from models.complaint_models import (
    ClassificationResult,
    ComplaintCategory,
    ImageAnalysis,
    ImageReference,
    ImageVerdict,
)
from .automation_config import AutomationConfig
from .errors import InferenceUnavailableError
from .inference_budget import InferenceBudget
from .inference_provider import InferenceProvider

logger = logging.getLogger(__name__)

# Keyword sets used by the deterministic fallback
CATEGORY_KEYWORDS: Dict[ComplaintCategory, List[str]] = {
    ComplaintCategory.ROAD_ISSUES: [
        "pothole", "road damage", "crack", "bump", "asphalt", "pavement", "street", "highway",
        "road surface", "pavement damage",
    ],
    ComplaintCategory.WASTE_MANAGEMENT: [
        "garbage", "trash", "waste", "litter", "dump", "rubbish", "refuse", "bin", "container", "cleanup",
    ],
    ComplaintCategory.WATER_SUPPLY: [
        "water", "water leak", "pipe burst", "water supply", "leakage", "flooding", "drainage", "sewer",
        "water pressure", "pipe damage",
    ],
    ComplaintCategory.ELECTRICITY: [
        "power outage", "electrical", "wire", "cable", "transformer", "electricity", "power line",
        "electrical hazard",
    ],
    ComplaintCategory.STREET_LIGHTING: [
        "street light", "lamp post", "lighting", "dark", "illumination", "bulb", "light fixture",
    ],
    ComplaintCategory.DRAINAGE: [
        "drain", "sewer", "flooding", "water logging", "blocked drain", "overflow", "drainage system",
    ],
    ComplaintCategory.PARKS_RECREATION: [
        "park", "playground", "recreation", "garden", "bench", "equipment", "facility", "amenity",
    ],
    ComplaintCategory.SAFETY_SECURITY: [
        "safety", "security", "dangerous", "hazard", "unsafe", "crime", "vandalism", "theft",
    ],
    ComplaintCategory.NOISE_POLLUTION: [
        "noise", "loud", "disturbance", "sound", "music", "construction noise", "traffic noise",
    ],
    ComplaintCategory.AIR_POLLUTION: [
        "air pollution", "smoke", "dust", "emission", "fumes", "air quality", "pollution",
    ],
    ComplaintCategory.PUBLIC_TRANSPORT: [
        "bus", "transport", "public transport", "transit", "stop", "station", "route", "schedule",
    ],
}

# Higher = more specific; an image verdict may only override a less specific text verdict
CATEGORY_SPECIFICITY: Dict[ComplaintCategory, int] = {
    ComplaintCategory.ROAD_ISSUES: 8,
    ComplaintCategory.WATER_SUPPLY: 8,
    ComplaintCategory.WASTE_MANAGEMENT: 7,
    ComplaintCategory.ELECTRICITY: 7,
    ComplaintCategory.DRAINAGE: 7,
    ComplaintCategory.STREET_LIGHTING: 6,
    ComplaintCategory.PARKS_RECREATION: 6,
    ComplaintCategory.PUBLIC_TRANSPORT: 6,
    ComplaintCategory.SAFETY_SECURITY: 5,
    ComplaintCategory.NOISE_POLLUTION: 5,
    ComplaintCategory.AIR_POLLUTION: 5,
    ComplaintCategory.OTHER: 1,
}

TEXT_WEIGHT = 0.7
IMAGE_WEIGHT = 0.3
IMAGE_OVERRIDE_CONFIDENCE = 0.7
DEFAULT_CONFIDENCE = 0.5


def normalize_text(title: str, description: str) -> str:
    return " ".join(f"{title or ''} {description or ''}".lower().split())


def count_keyword(text: str, keyword: str) -> int:
    return len(re.findall(rf"\b{re.escape(keyword)}\b", text))


def specificity(category: ComplaintCategory) -> int:
    return CATEGORY_SPECIFICITY.get(category, 1)


class ContentClassifier:
    """
    Turns complaint text (and optionally photos) into a category with a
    confidence score.

    The inference provider is consulted only when configuration, business
    hours and the AI budget allow it. Any provider failure drops silently to
    keyword scoring: classify() never raises and its worst case is
    "other" at 0.5 confidence.
    """

    def __init__(self, config: AutomationConfig, provider: Optional[InferenceProvider] = None,
                 budget: Optional[InferenceBudget] = None):
        self.config = config
        self.provider = provider
        self.budget = budget or InferenceBudget(config.cost_control)

    async def classify(self, title: str, description: str,
                       images: Optional[Sequence[ImageReference]] = None,
                       now: Optional[datetime] = None) -> ClassificationResult:
        text = normalize_text(title, description)
        try:
            return await self._classify(text, list(images or []), now)
        except Exception as e:
            logger.error(f"❌ Classification failed unexpectedly, using default category: {e}")
            return ClassificationResult(
                category=ComplaintCategory.OTHER,
                confidence=DEFAULT_CONFIDENCE,
                reasoning="Analysis failed, using default category",
                used_ai=False,
            )

    def ai_usable(self, now: Optional[datetime] = None) -> bool:
        return (
            self.provider is not None
            and self.provider.available
            and self.config.should_use_ai(now)
        )

    async def _classify(self, text: str, images: List[ImageReference],
                        now: Optional[datetime]) -> ClassificationResult:
        use_ai = self.ai_usable(now)

        text_result = None
        if use_ai:
            text_result = await self._classify_text_with_ai(text)
        if text_result is None:
            text_result = self.fallback_text_analysis(text)

        image_analysis = None
        if images and use_ai and self.config.should_analyze_images(text_result.confidence):
            image_analysis = await self._analyze_images(images)

        return self.combine_results(text_result, image_analysis)

    # ==================== TEXT ANALYSIS ====================

    async def _classify_text_with_ai(self, text: str) -> Optional[ClassificationResult]:
        cost = self.config.cost_control.cost_per_complaint
        denial = self.budget.denial_reason(cost)
        if denial:
            logger.info(f"AI budget unavailable ({denial}), using keyword analysis")
            return None

        self.budget.record_request()
        try:
            verdict = await self.provider.classify_text(text)
        except InferenceUnavailableError as e:
            logger.warning(f"⚠️ AI text analysis unavailable ({e.reason}), using fallback: {e}")
            if e.reason == "rate_limited":
                self.budget.suspend("rate_limited")
            return None
        except Exception as e:
            logger.error(f"❌ AI text analysis failed, using fallback: {e}")
            return None

        self.budget.record_spend(cost)
        return ClassificationResult(
            category=verdict.category,
            confidence=verdict.confidence,
            reasoning=verdict.reasoning or f"AI analysis suggests {verdict.category.value}",
            used_ai=True,
            keywords_found=verdict.keywords_found,
        )

    def fallback_text_analysis(self, text: str) -> ClassificationResult:
        """Keyword scoring: the category with most keyword occurrences wins"""
        scores: Dict[ComplaintCategory, int] = {}
        found: Dict[ComplaintCategory, List[str]] = {}

        for category, keywords in CATEGORY_KEYWORDS.items():
            for keyword in keywords:
                occurrences = count_keyword(text, keyword)
                if occurrences:
                    scores[category] = scores.get(category, 0) + occurrences
                    found.setdefault(category, []).append(keyword)

        best_score = max(scores.values(), default=0)
        leaders = [category for category, score in scores.items() if score == best_score]

        if best_score == 0 or len(leaders) > 1:
            reason = "no keywords matched" if best_score == 0 else (
                f"tie between {', '.join(c.value for c in leaders)}"
            )
            return ClassificationResult(
                category=ComplaintCategory.OTHER,
                confidence=DEFAULT_CONFIDENCE,
                reasoning=f"Keyword-based analysis inconclusive ({reason})",
                used_ai=False,
            )

        category = leaders[0]
        return ClassificationResult(
            category=category,
            confidence=min(best_score / 3, 1.0),
            reasoning=f"Keyword-based analysis found {best_score} relevant keyword matches",
            used_ai=False,
            keywords_found=found[category],
        )

    # ==================== IMAGE ANALYSIS ====================

    async def _analyze_images(self, images: List[ImageReference]) -> Optional[ImageAnalysis]:
        verdicts: List[ImageVerdict] = []
        cost = self.config.cost_control.cost_per_image

        for image in images[: self.config.images.max_images_per_complaint]:
            denial = self.budget.denial_reason(cost)
            if denial:
                logger.info(f"AI budget unavailable ({denial}), skipping remaining images")
                break

            self.budget.record_request()
            try:
                verdicts.append(await self.provider.classify_image(image))
            except InferenceUnavailableError as e:
                logger.warning(f"Error analyzing image {image.filename}: {e}")
                if e.reason == "rate_limited":
                    self.budget.suspend("rate_limited")
                    break
                continue
            except Exception as e:
                logger.error(f"❌ Error analyzing image {image.filename}: {e}")
                continue
            self.budget.record_spend(cost, items=0)

        return self.combine_image_analysis(verdicts)

    @staticmethod
    def combine_image_analysis(verdicts: List[ImageVerdict]) -> Optional[ImageAnalysis]:
        """Majority vote on category, mean confidence"""
        if not verdicts:
            return None

        # Counter keeps first-seen order, so ties go to the earliest vote
        votes = Counter(verdict.category for verdict in verdicts)
        category = max(votes, key=lambda c: votes[c])

        objects: List[str] = []
        for verdict in verdicts:
            for item in verdict.objects_detected:
                if item not in objects:
                    objects.append(item)

        return ImageAnalysis(
            category=category,
            confidence=sum(v.confidence for v in verdicts) / len(verdicts),
            total_images=len(verdicts),
            objects_detected=objects,
            individual_results=verdicts,
        )

    # ==================== COMBINATION ====================

    @staticmethod
    def combine_results(text_result: ClassificationResult,
                        image_analysis: Optional[ImageAnalysis]) -> ClassificationResult:
        if image_analysis is None:
            return text_result

        category = text_result.category
        reasoning = text_result.reasoning

        if (image_analysis.confidence > IMAGE_OVERRIDE_CONFIDENCE
                and image_analysis.category != text_result.category
                and specificity(image_analysis.category) > specificity(text_result.category)):
            category = image_analysis.category
            reasoning += f" Image analysis suggests {image_analysis.category.value} with high confidence."

        confidence = min(
            text_result.confidence * TEXT_WEIGHT + image_analysis.confidence * IMAGE_WEIGHT, 1.0
        )

        return text_result.model_copy(update={
            "category": category,
            "confidence": confidence,
            "reasoning": reasoning,
            "image_analysis": image_analysis,
        })
