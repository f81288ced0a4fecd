import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from switchboard.catalog import CatalogCache, CatalogItem
from switchboard.detector import DetectionContext, DetectionResult, TaskDetector, default_result
from switchboard.routing import CallRoute, Route, TrafficLight
from switchboard.safety import has_global_safety_risk
from switchboard.splitter import TaskItem, TaskSplitter

logger = logging.getLogger(__name__)


@dataclass
class MatchedService:
    task: TaskItem
    item: CatalogItem
    confidence: float

    @property
    def line_total_pence(self) -> int:
        return self.item.price_pence * self.task.quantity

    def to_dict(self) -> dict:
        return {
            "task": self.task.to_dict(),
            "sku": self.item.to_dict(),
            "confidence": round(self.confidence, 1),
            "line_total_pence": self.line_total_pence,
        }


@dataclass
class AggregateRoutingDecision:
    matched_services: list[MatchedService] = field(default_factory=list)
    unmatched_tasks: list[TaskItem] = field(default_factory=list)
    total_matched_price_pence: int = 0
    next_route: CallRoute = CallRoute.VIDEO_QUOTE
    has_safety_risk: bool = False

    def to_dict(self) -> dict:
        return {
            "matched_services": [m.to_dict() for m in self.matched_services],
            "unmatched_tasks": [t.to_dict() for t in self.unmatched_tasks],
            "total_matched_price_pence": self.total_matched_price_pence,
            "next_route": self.next_route.value,
            "has_safety_risk": self.has_safety_risk,
        }


@dataclass
class CallAnalysis:
    """One analysis pass over the transcript."""
    pass_id: int
    text: str
    tasks: list[TaskItem] = field(default_factory=list)
    results: list[tuple[TaskItem, DetectionResult]] = field(default_factory=list)
    decision: AggregateRoutingDecision = field(default_factory=AggregateRoutingDecision)

    def per_task_results(self) -> list[dict]:
        return [{"task": task.to_dict(), "detection": result.to_dict()} for task, result in self.results]


def _needs_video(result: DetectionResult) -> bool:
    return (
        not result.matched
        or result.next_route == Route.VIDEO_QUOTE
        or result.traffic_light != TrafficLight.GREEN
    )


def aggregate(text: str, results: Sequence[tuple[TaskItem, DetectionResult]]) -> AggregateRoutingDecision:
    """Combine per-task results into one call-level decision. Worst case wins.

    The raw unsplit text is checked for safety terms on its own: a hazard the
    splitter rephrased away still forces MIXED_QUOTE.
    """
    decision = AggregateRoutingDecision(has_safety_risk=has_global_safety_risk(text))

    for task, result in results:
        if result.matched and result.item is not None:
            decision.matched_services.append(MatchedService(task=task, item=result.item, confidence=result.confidence))
        else:
            decision.unmatched_tasks.append(task)
    decision.total_matched_price_pence = sum(m.line_total_pence for m in decision.matched_services)

    if decision.has_safety_risk or any(r.next_route == Route.SITE_VISIT for _, r in results):
        decision.next_route = CallRoute.MIXED_QUOTE
    elif not results or any(_needs_video(r) for _, r in results):
        decision.next_route = CallRoute.VIDEO_QUOTE
    else:
        decision.next_route = CallRoute.INSTANT_PRICE
    return decision


class CallAnalyzer:
    """Split the call into tasks and detect each one against a single catalog snapshot."""

    def __init__(self, catalog: CatalogCache, splitter: TaskSplitter, detector: TaskDetector):
        self.catalog = catalog
        self.splitter = splitter
        self.detector = detector

    async def _detect_safe(
        self, task: TaskItem, items: Sequence[CatalogItem], context: Optional[DetectionContext]
    ) -> DetectionResult:
        try:
            return await self.detector.detect(task.description, items, context)
        except Exception as e:
            logger.error(f"Detection failed for task {task.id}: {e}")
            return default_result("Detection error - Defaulting to Video Quote")

    async def analyze(
        self,
        text: str,
        context: Optional[DetectionContext] = None,
        pass_id: int = 0,
    ) -> CallAnalysis:
        items = await self.catalog.snapshot()
        tasks = await self.splitter.split(text)
        detections = await asyncio.gather(*(self._detect_safe(t, items, context) for t in tasks))
        results = list(zip(tasks, detections))
        decision = aggregate(text, results)
        logger.info(
            "[Analysis #%d] %d task(s), %d matched, route=%s, total=%dp",
            pass_id, len(tasks), len(decision.matched_services),
            decision.next_route.value, decision.total_matched_price_pence,
        )
        return CallAnalysis(pass_id=pass_id, text=text, tasks=tasks, results=results, decision=decision)
