"""Single-task detector: decides which catalog item, if any, a job matches.

Tiers run left to right and the first one that reaches a decision wins:

    safety/heuristic -> keyword -> embedding -> language model -> default

Keyword scores are computed up front because they are pure and cheap; the
safety tier attaches them as candidates when it overrides. Embedding and
language-model tiers only ever narrow or confirm candidates, and any provider
failure simply leaves the fold to continue with what it has.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence, Union

from switchboard.catalog import CatalogItem
from switchboard.matching import ScoredItem, embedding_match, keyword_match
from switchboard.routing import Method, Route, TrafficLight
from switchboard.safety import assess_risk

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 5

KEYWORD_INSTANT_THRESHOLD = 85.0
KEYWORD_REVIEW_THRESHOLD = 70.0
EMBEDDING_TRIGGER_THRESHOLD = 50.0  # embed only when the best keyword score is below this
CLASSIFIER_ACCEPT_CONFIDENCE = 75.0
CLASSIFIER_GREEN_CONFIDENCE = 85.0


@dataclass(frozen=True)
class ClassifierVerdict:
    index: Optional[int] = None
    confidence: float = 0.0
    rationale: str = ""

    @classmethod
    def coerce(cls, raw) -> Optional["ClassifierVerdict"]:
        """Accept a verdict or a provider dict; return None for anything malformed."""
        if isinstance(raw, ClassifierVerdict):
            return raw
        if not isinstance(raw, dict):
            return None
        index = raw.get("index", raw.get("matchedIndex"))
        if isinstance(index, bool) or (index is not None and not isinstance(index, int)):
            return None
        confidence = raw.get("confidence", 0)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            return None
        return cls(index=index, confidence=float(confidence), rationale=str(raw.get("rationale") or ""))


EmbedFn = Callable[[str], Awaitable[Optional[Sequence[float]]]]
ClassifyFn = Callable[[str, Sequence[CatalogItem]], Awaitable[ClassifierVerdict]]


@dataclass
class DetectionContext:
    lead_type: str = ""
    is_elderly: bool = False
    is_commercial: bool = False
    history: tuple = ()


@dataclass
class DetectionResult:
    matched: bool
    item: Optional[CatalogItem]
    confidence: float
    method: Method
    rationale: str
    next_route: Route
    traffic_light: TrafficLight
    candidates: list = field(default_factory=list)
    keyword_score: float = 0.0

    def __post_init__(self):
        if self.matched and self.item is None:
            raise ValueError("matched detection must carry an item")
        if self.traffic_light == TrafficLight.RED and self.next_route == Route.INSTANT_PRICE:
            raise ValueError("red traffic light cannot route to INSTANT_PRICE")

    def to_dict(self) -> dict:
        return {
            "matched": self.matched,
            "item": self.item.to_dict() if self.item else None,
            "confidence": round(self.confidence, 1),
            "method": self.method.value,
            "rationale": self.rationale,
            "next_route": self.next_route.value,
            "traffic_light": self.traffic_light.value,
            "candidates": [c.code for c in self.candidates],
        }


def default_result(rationale: str, candidates: Sequence[CatalogItem] = ()) -> DetectionResult:
    """Video quote is the intended path for ambiguous requests, not a failure."""
    return DetectionResult(
        matched=False,
        item=None,
        confidence=0,
        method=Method.NONE,
        rationale=rationale,
        next_route=Route.VIDEO_QUOTE,
        traffic_light=TrafficLight.GREEN,
        candidates=list(candidates),
    )


# --- Tier outcomes ---

@dataclass(frozen=True)
class Decided:
    result: DetectionResult


@dataclass(frozen=True)
class Inconclusive:
    candidates: tuple = ()


TierOutcome = Union[Decided, Inconclusive]


@dataclass
class TierState:
    text: str
    items: Sequence[CatalogItem]
    context: DetectionContext
    keyword_results: list[ScoredItem] = field(default_factory=list)
    candidates: list[CatalogItem] = field(default_factory=list)

    @property
    def best_keyword(self) -> Optional[ScoredItem]:
        return self.keyword_results[0] if self.keyword_results else None

    @property
    def best_keyword_score(self) -> float:
        best = self.best_keyword
        return best.score if best else 0.0

    def add_candidates(self, items: Sequence[CatalogItem]) -> None:
        known = {c.id for c in self.candidates}
        for item in items:
            if item.id not in known:
                self.candidates.append(item)
                known.add(item.id)


class TaskDetector:
    """Runs the tier fold for one job description.

    ``embed_fn`` and ``classify_fn`` are optional: without them the detector
    runs keyword-only, which is also what happens when a provider fails.
    """

    def __init__(self, embed_fn: Optional[EmbedFn] = None, classify_fn: Optional[ClassifyFn] = None):
        self.embed_fn = embed_fn
        self.classify_fn = classify_fn
        self.tiers = (
            self._safety_tier,
            self._keyword_tier,
            self._embedding_tier,
            self._language_model_tier,
        )

    async def detect(
        self,
        description: str,
        items: Sequence[CatalogItem],
        context: Optional[DetectionContext] = None,
    ) -> DetectionResult:
        text = (description or "").strip()
        if len(text) < MIN_TEXT_LENGTH:
            return default_result("Too short")

        state = TierState(text=text, items=items, context=context or DetectionContext())
        state.keyword_results = keyword_match(text, items)
        state.add_candidates([s.item for s in state.keyword_results])

        for tier in self.tiers:
            outcome = await tier(state)
            if isinstance(outcome, Decided):
                outcome.result.keyword_score = state.best_keyword_score
                return outcome.result
            state.add_candidates(outcome.candidates)

        result = default_result(
            "Ambiguous request - Defaulting to Video Quote to qualify",
            state.candidates,
        )
        result.keyword_score = state.best_keyword_score
        return result

    # ── Tiers ──

    async def _safety_tier(self, state: TierState) -> TierOutcome:
        ctx = state.context
        risk = assess_risk(
            state.text,
            history=ctx.history,
            lead_type=ctx.lead_type,
            is_elderly=ctx.is_elderly,
            is_commercial=ctx.is_commercial,
        )
        if not risk.flagged:
            return Inconclusive()
        logger.info(f"Heuristic override for '{state.text[:60]}': {risk.rationale}")
        return Decided(DetectionResult(
            matched=False,
            item=None,
            confidence=60,
            method=Method.HEURISTIC,
            rationale=risk.rationale,
            next_route=Route.SITE_VISIT,
            traffic_light=TrafficLight.AMBER,
            candidates=list(state.candidates),
        ))

    async def _keyword_tier(self, state: TierState) -> TierOutcome:
        best = state.best_keyword
        if best is None:
            return Inconclusive()
        if best.score >= KEYWORD_INSTANT_THRESHOLD:
            return Decided(DetectionResult(
                matched=True,
                item=best.item,
                confidence=best.score,
                method=Method.KEYWORD,
                rationale="Strong keyword match",
                next_route=Route.INSTANT_PRICE,
                traffic_light=TrafficLight.GREEN,
                candidates=list(state.candidates),
            ))
        if best.score >= KEYWORD_REVIEW_THRESHOLD:
            return Decided(DetectionResult(
                matched=True,
                item=best.item,
                confidence=best.score,
                method=Method.KEYWORD,
                rationale=f"Likely {best.item.name}, confirm on video before pricing",
                next_route=Route.VIDEO_QUOTE,
                traffic_light=TrafficLight.AMBER,
                candidates=list(state.candidates),
            ))
        return Inconclusive()

    async def _embedding_tier(self, state: TierState) -> TierOutcome:
        if self.embed_fn is None or state.best_keyword_score >= EMBEDDING_TRIGGER_THRESHOLD:
            return Inconclusive()
        try:
            vector = await self.embed_fn(state.text)
        except Exception as e:
            logger.warning(f"Embedding failed, continuing without it: {e}")
            return Inconclusive()
        if not vector:
            return Inconclusive()
        matches = embedding_match(vector, state.items)
        return Inconclusive(candidates=tuple(s.item for s in matches))

    async def _language_model_tier(self, state: TierState) -> TierOutcome:
        if self.classify_fn is None or not state.candidates:
            return Inconclusive()
        candidates = list(state.candidates)
        try:
            raw = await self.classify_fn(state.text, candidates)
        except Exception as e:
            logger.warning(f"Classifier failed, keeping earlier tiers: {e}")
            return Inconclusive()

        verdict = ClassifierVerdict.coerce(raw)
        if verdict is None:
            logger.warning("Malformed classifier verdict ignored: %r", raw)
            return Inconclusive()
        if verdict.index is None or not 0 <= verdict.index < len(candidates):
            return Inconclusive()
        if verdict.confidence <= CLASSIFIER_ACCEPT_CONFIDENCE:
            return Inconclusive()

        green = verdict.confidence > CLASSIFIER_GREEN_CONFIDENCE
        return Decided(DetectionResult(
            matched=True,
            item=candidates[verdict.index],
            confidence=verdict.confidence,
            method=Method.HYBRID,
            rationale=verdict.rationale or "Classifier decision",
            next_route=Route.INSTANT_PRICE if green else Route.VIDEO_QUOTE,
            traffic_light=TrafficLight.GREEN if green else TrafficLight.AMBER,
            candidates=candidates,
        ))
