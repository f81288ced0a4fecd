import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional

from switchboard.routing import TrafficLight

logger = logging.getLogger(__name__)


# --- Keyword maps for tier 1 ---

RED_KEYWORDS = (
    # Gas
    "gas", "boiler", "gas boiler", "gas cooker", "gas pipe", "gas hob",
    "combi boiler", "central heating",
    # Electrical
    "rewire", "consumer unit", "fuse box", "electrical panel", "new circuit",
    "sockets stopped", "sockets not working", "half the sockets", "electrics",
    "flickering", "tripping", "add sockets", "more sockets", "lights flickering",
    # Structural
    "structural", "load bearing", "foundation", "subsidence", "underpinning",
    "chimney removal", "wall removal", "rsj", "steel beam",
    "big crack", "large crack", "crack getting wider", "bowing", "bulging",
    "floors sloping", "floor sloping", "walls leaning", "wonky", "sloping",
    # Hazardous materials
    "asbestos", "lead paint",
    # Major works
    "extension", "loft conversion", "basement conversion", "new build",
    # Roofing
    "roof", "tiles off", "roof leak", "chimney stack", "guttering repair",
    "slates", "roof repair",
    # Serious damp
    "rising damp", "penetrating damp", "severe damp", "damp survey",
    "mould survey", "mold survey", "walls wet", "wet to the touch",
    "damp coming up", "musty smell", "damp throughout",
)

AMBER_KEYWORDS = (
    "leak", "leaking", "water damage", "flooding",
    "damp patch", "damp spot", "condensation", "mould", "mold",
    "damage", "broken", "cracked", "split",
    "custom", "bespoke", "made to measure", "unusual",
    "few things", "several jobs", "list of jobs", "multiple",
    "not sure", "don't know", "hard to describe", "difficult to explain",
)

ROUTES = ("instant", "video", "visit", "refer")

TIER2_TIMEOUT_SECONDS = 5.0

AssessFn = Callable[[str, dict], Awaitable[dict]]


@dataclass
class JobComplexityResult:
    traffic_light: TrafficLight
    confidence: float
    signals: list[str] = field(default_factory=list)
    tier: int = 1
    recommended_route: str = "video"
    complexity_score: int = 5
    needs_specialist: bool = False
    reasoning: str = ""

    def to_dict(self) -> dict:
        return {
            "traffic_light": self.traffic_light.value,
            "confidence": self.confidence,
            "signals": list(self.signals),
            "tier": self.tier,
            "recommended_route": self.recommended_route,
            "complexity_score": self.complexity_score,
            "needs_specialist": self.needs_specialist,
            "reasoning": self.reasoning,
        }


def classify_tier1(description: str, matched: bool) -> JobComplexityResult:
    """Instant keyword classification. Runs for every task on every pass."""
    if matched:
        return JobComplexityResult(
            traffic_light=TrafficLight.GREEN,
            confidence=95,
            signals=["SKU matched"],
            recommended_route="instant",
            complexity_score=2,
        )

    lower = description.lower()
    red_hits = [f'RED: "{kw}"' for kw in RED_KEYWORDS if kw in lower]
    if red_hits:
        return JobComplexityResult(
            traffic_light=TrafficLight.RED,
            confidence=min(70 + 10 * len(red_hits), 95),
            signals=red_hits,
            recommended_route="refer",
            complexity_score=9,
            needs_specialist=True,
        )

    amber_hits = [f'AMBER: "{kw}"' for kw in AMBER_KEYWORDS if kw in lower]
    return JobComplexityResult(
        traffic_light=TrafficLight.AMBER,
        confidence=60 if amber_hits else 40,
        signals=amber_hits or ["No SKU match"],
        recommended_route="video",
        complexity_score=5,
    )


def _coerce_tier2(parsed: dict) -> Optional[JobComplexityResult]:
    try:
        light = TrafficLight(str(parsed.get("trafficLight", "")).lower())
    except ValueError:
        logger.warning(f"Invalid tier-2 traffic light: {parsed.get('trafficLight')!r}")
        return None

    route = parsed.get("recommendedRoute")
    if route not in ROUTES:
        route = {"green": "instant", "amber": "video", "red": "visit"}[light.value]
    try:
        confidence = float(parsed.get("confidence", 0))
    except (TypeError, ValueError):
        confidence = 0.0
    try:
        score = int(parsed.get("complexityScore", 5))
    except (TypeError, ValueError):
        score = 5
    signals = parsed.get("signals") or []
    return JobComplexityResult(
        traffic_light=light,
        confidence=confidence,
        signals=[str(s) for s in signals] if isinstance(signals, list) else [],
        tier=2,
        recommended_route=route,
        complexity_score=max(1, min(score, 10)),
        needs_specialist=bool(parsed.get("needsSpecialist", False)),
        reasoning=str(parsed.get("reasoning") or ""),
    )


async def refine_tier2(
    assess_fn: AssessFn,
    description: str,
    sku_name: str | None = None,
    other_jobs: Iterable[str] = (),
    timeout: float = TIER2_TIMEOUT_SECONDS,
) -> Optional[JobComplexityResult]:
    """Ask the language model for a detailed assessment.

    Returns None on timeout, error, or an unusable answer; the caller keeps
    its tier-1 result in that case.
    """
    context = {"sku_name": sku_name, "other_jobs": [j for j in other_jobs if j != description]}
    try:
        parsed = await asyncio.wait_for(assess_fn(description, context), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Tier-2 assessment timed out after {timeout}s, keeping tier 1")
        return None
    except Exception as e:
        logger.error(f"Tier-2 assessment failed: {e}")
        return None

    if not parsed or not isinstance(parsed, dict):
        logger.warning("Tier-2 assessment returned no content")
        return None
    result = _coerce_tier2(parsed)
    if result:
        logger.info(
            "Tier-2 %s (%s, complexity %d) for '%s'",
            result.traffic_light.value.upper(), result.recommended_route,
            result.complexity_score, description[:60],
        )
    return result


def overall_recommendation(results: Iterable[JobComplexityResult]) -> dict:
    """Call-level route from per-job complexity. The worst job decides."""
    results = list(results)
    if not results:
        return {"route": "video", "reason": "No jobs detected yet", "confidence": 0}

    red = [r for r in results if r.traffic_light == TrafficLight.RED]
    if red:
        referral = any(r.needs_specialist for r in red)
        plural = "s" if len(red) > 1 else ""
        return {
            "route": "refer" if referral else "visit",
            "reason": f"{len(red)} job{plural} {'need specialist referral' if referral else 'need site visit'}",
            "confidence": max(r.confidence for r in red),
        }

    amber = [r for r in results if r.traffic_light == TrafficLight.AMBER]
    if len(amber) >= 3:
        return {
            "route": "visit",
            "reason": f"{len(amber)} jobs need assessment - visit recommended",
            "confidence": max(r.confidence for r in amber),
        }
    if amber:
        plural = "s" if len(amber) > 1 else ""
        return {
            "route": "video",
            "reason": f"{len(amber)} job{plural} need visual confirmation",
            "confidence": max(r.confidence for r in amber),
        }

    return {
        "route": "instant",
        "reason": "All jobs have SKU matches - instant quote available",
        "confidence": max(r.confidence for r in results),
    }
