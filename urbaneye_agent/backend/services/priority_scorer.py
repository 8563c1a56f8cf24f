# backend/services/priority_scorer.py
import re
from typing import Any, Dict, List

from models.complaint_models import ComplaintCategory, Priority

# Priority mapping based on content analysis
PRIORITY_INDICATORS = {
    Priority.URGENT: {
        "keywords": ["emergency", "urgent", "immediate", "dangerous", "hazard", "safety risk",
                     "blocking", "flooding", "fire", "gas leak"],
        "weight": 10,
    },
    Priority.HIGH: {
        "keywords": ["important", "serious", "major", "significant", "affecting", "disruption",
                     "broken", "damaged", "not working"],
        "weight": 7,
    },
    Priority.MEDIUM: {
        "keywords": ["issue", "problem", "concern", "needs attention", "maintenance", "repair"],
        "weight": 5,
    },
    Priority.LOW: {
        "keywords": ["minor", "small", "cosmetic", "improvement", "enhancement", "suggestion"],
        "weight": 2,
    },
}

CATEGORY_PRIORITY_ADJUSTMENTS = {
    ComplaintCategory.SAFETY_SECURITY: 3,
    ComplaintCategory.ELECTRICITY: 2,
    ComplaintCategory.WATER_SUPPLY: 2,
    ComplaintCategory.ROAD_ISSUES: 1,
    ComplaintCategory.PARKS_RECREATION: -1,
}

# (minimum total score, priority), checked top-down
PRIORITY_THRESHOLDS = (
    (8, Priority.URGENT),
    (5, Priority.HIGH),
    (2, Priority.MEDIUM),
)


def _contains(text: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}\b", text) is not None


class PriorityScorer:
    """Derives an urgency level from text signals plus a per-category adjustment"""

    def explain(self, text: str, category: ComplaintCategory) -> Dict[str, Any]:
        text_lower = " ".join(text.lower().split())
        matched: List[Dict[str, Any]] = []
        total = 0

        for priority, data in PRIORITY_INDICATORS.items():
            for keyword in data["keywords"]:
                if _contains(text_lower, keyword):
                    total += data["weight"]
                    matched.append({"priority": priority.value, "keyword": keyword, "weight": data["weight"]})

        adjustment = CATEGORY_PRIORITY_ADJUSTMENTS.get(category, 0)
        total += adjustment

        return {
            "priority": self._threshold(total),
            "score": total,
            "category_adjustment": adjustment,
            "matched_indicators": matched,
        }

    def score(self, text: str, category: ComplaintCategory) -> Priority:
        return self.explain(text, category)["priority"]

    @staticmethod
    def _threshold(total: int) -> Priority:
        for minimum, priority in PRIORITY_THRESHOLDS:
            if total >= minimum:
                return priority
        return Priority.LOW
