"""Per-call driver: owns a CallSession and runs its analysis passes.

Segments are appended immediately; analysis is debounced (main pass 300 ms,
tier-2 complexity refinement 800 ms, independent). Closing the call cancels
pending timers, waits for a pass already running, and forces one last
awaited pass over the full transcript before the session is finalized.
"""

import asyncio
import logging
import time
from typing import Optional

from switchboard.aggregator import AggregateRoutingDecision, CallAnalysis, CallAnalyzer
from switchboard.complexity import (
    AssessFn,
    JobComplexityResult,
    classify_tier1,
    overall_recommendation,
    refine_tier2,
)
from switchboard.detector import DetectionContext
from switchboard.events import (
    ANALYSIS_UPDATED,
    SEGMENT_RECEIVED,
    SESSION_CLOSED,
    SESSION_STARTED,
    EventBus,
    SessionEvent,
)
from switchboard.extraction import MetadataTracker
from switchboard.session import CallSession
from switchboard.state_machine import advance
from switchboard.states import SessionStatus
from switchboard.timers import Debouncer
from switchboard.transcript import chunk_transcript_dump, to_json_array, to_timestamped_dump

logger = logging.getLogger(__name__)

ANALYSIS_DEBOUNCE_S = 0.3
TIER2_DEBOUNCE_S = 0.8


class CallMonitor:
    def __init__(
        self,
        session: CallSession,
        analyzer: CallAnalyzer,
        bus: EventBus | None = None,
        tracker: MetadataTracker | None = None,
        assess_fn: AssessFn | None = None,
        analysis_debounce: float = ANALYSIS_DEBOUNCE_S,
        tier2_debounce: float = TIER2_DEBOUNCE_S,
    ):
        self.session = session
        self.analyzer = analyzer
        self.bus = bus or EventBus()
        self.tracker = tracker or MetadataTracker()
        self.assess_fn = assess_fn
        self._main = Debouncer(analysis_debounce, self._analysis_pass, label=f"{session.session_id}-analysis")
        self._tier2 = Debouncer(tier2_debounce, self._tier2_pass, label=f"{session.session_id}-tier2")
        # Tier-2 results keyed by task content id, carried across passes
        self._tier2_results: dict[str, JobComplexityResult] = {}

    @property
    def session_id(self) -> str:
        return self.session.session_id

    async def _emit(self, event_type: str, payload: dict) -> None:
        await self.bus.emit(SessionEvent(type=event_type, session_id=self.session_id, payload=payload))

    # ── Lifecycle ──

    async def start(self) -> None:
        if self.session.status != SessionStatus.NEW:
            logger.warning(f"[{self.session_id}] start() ignored in {self.session.status.value}")
            return
        advance(self.session, SessionStatus.STREAMING)
        await self._announce_start()

    async def _announce_start(self) -> None:
        if self.session.started_announced:
            return
        self.session.started_announced = True
        if not self.session.start_time:
            self.session.start_time = time.time()
        logger.info(f"[{self.session_id}] Session started for {self.session.phone_number or 'unknown'}")
        await self._emit(SESSION_STARTED, {
            "session_id": self.session_id,
            "phone_number": self.session.phone_number,
        })

    async def on_segment(
        self,
        text: str,
        speaker: str = "caller",
        is_final: bool = True,
    ) -> Optional[AggregateRoutingDecision]:
        """Accept one transcript segment. Never waits for analysis.

        After close the segment is ignored and the existing final decision is
        returned.
        """
        if not self.session.status.is_active:
            logger.warning(
                f"[{self.session_id}] Segment ignored, session is {self.session.status.value}"
            )
            return self.session.final_decision

        text = (text or "").strip()
        if not text:
            return None

        if self.session.status == SessionStatus.NEW:
            advance(self.session, SessionStatus.STREAMING)
            await self._announce_start()

        if is_final:
            self.session.append_segment(text, speaker=speaker, timestamp=time.time())

        await self._emit(SEGMENT_RECEIVED, {
            "session_id": self.session_id,
            "text": text,
            "is_final": is_final,
            "speaker": speaker,
        })

        if is_final:
            self._main.trigger()
        return None

    async def close(self) -> Optional[AggregateRoutingDecision]:
        """End the call: one final awaited pass, then finalize.

        Calling close() again returns the existing final decision.
        """
        if not self.session.status.is_active:
            logger.warning(f"[{self.session_id}] close() ignored, session is {self.session.status.value}")
            return self.session.final_decision

        advance(self.session, SessionStatus.CLOSING)
        self._tier2.abort()
        await self._main.drain()

        try:
            await self._main.run_now(self._final_pass)
        except Exception as e:
            logger.error(f"[{self.session_id}] Final analysis failed: {e}", exc_info=True)

        last = self.session.last_analysis
        self.session.final_decision = last.decision if last else AggregateRoutingDecision()
        self._log_transcript_dump()

        await self._emit(SESSION_CLOSED, {
            "session_id": self.session_id,
            "final_transcript": self.session.transcript,
            "segments": to_json_array(self.session.segment_log),
            "final_decision": self.session.final_decision.to_dict(),
            "metadata": self.session.metadata.to_dict(),
        })
        advance(self.session, SessionStatus.FINALIZED)
        logger.info(
            f"[{self.session_id}] Finalized: route={self.session.final_decision.next_route.value}, "
            f"passes={self.session.analysis_count}"
        )
        return self.session.final_decision

    # ── Analysis passes ──

    async def _analysis_pass(self) -> None:
        await self._run_pass(final=False)

    async def _final_pass(self) -> None:
        await self._run_pass(final=True)

    async def _run_pass(self, final: bool) -> None:
        session = self.session
        session.analysis_count += 1
        pass_id = session.analysis_count

        if session.transcript:
            await self.tracker.update(session, force=final)
        context = DetectionContext(
            lead_type=session.metadata.lead_type,
            history=tuple(session.recent_history),
        )

        analysis = await self.analyzer.analyze(session.transcript, context, pass_id=pass_id)
        session.last_analysis = analysis
        session.last_task_classifications = self._classify(analysis)
        await self._emit_analysis(analysis, tier=1)

        if not final and session.status.is_active and self._tier2_pending(analysis):
            self._tier2.trigger()

    def _classify(self, analysis: CallAnalysis) -> dict[str, JobComplexityResult]:
        """Tier 1 for every task, with tier-2 results carried forward for unmatched ones."""
        classifications = {}
        for task, result in analysis.results:
            refined = self._tier2_results.get(task.id)
            if refined is not None and not result.matched:
                classifications[task.id] = refined
            else:
                classifications[task.id] = classify_tier1(task.description, result.matched)
        return classifications

    def _tier2_pending(self, analysis: CallAnalysis) -> list:
        if self.assess_fn is None:
            return []
        return [
            task for task, result in analysis.results
            if not result.matched and task.id not in self._tier2_results
        ]

    def _superseded(self, analysis: CallAnalysis) -> bool:
        """True once a newer main pass has started or the session stopped streaming."""
        return self.session.analysis_count != analysis.pass_id or not self.session.status.is_active

    async def _tier2_pass(self) -> None:
        analysis = self.session.last_analysis
        if analysis is None or self.assess_fn is None or self._superseded(analysis):
            return

        pending = self._tier2_pending(analysis)
        if pending:
            descriptions = [t.description for t in analysis.tasks]
            refined = await asyncio.gather(*(
                refine_tier2(self.assess_fn, task.description, other_jobs=descriptions)
                for task in pending
            ))
            for task, result in zip(pending, refined):
                if result is not None:
                    self._tier2_results[task.id] = result

        # A newer pass already picked up (or will pick up) these results
        if self._superseded(analysis):
            return

        changed = False
        for task, result in analysis.results:
            refined = self._tier2_results.get(task.id)
            if refined is None or result.matched:
                continue
            if self.session.last_task_classifications.get(task.id) is not refined:
                self.session.last_task_classifications[task.id] = refined
                changed = True

        if changed:
            logger.info(f"[{self.session_id}] Tier-2 refinement for pass #{analysis.pass_id}")
            await self._emit_analysis(analysis, tier=2)

    async def _emit_analysis(self, analysis: CallAnalysis, tier: int) -> None:
        classifications = self.session.last_task_classifications
        per_task = []
        for entry in analysis.per_task_results():
            complexity = classifications.get(entry["task"]["id"])
            entry["complexity"] = complexity.to_dict() if complexity else None
            per_task.append(entry)
        await self._emit(ANALYSIS_UPDATED, {
            "session_id": self.session_id,
            "pass_id": analysis.pass_id,
            "tier": tier,
            "aggregate_decision": analysis.decision.to_dict(),
            "per_task_results": per_task,
            "recommendation": overall_recommendation(classifications.values()),
            "metadata": self.session.metadata.to_dict(),
        })

    def _log_transcript_dump(self) -> None:
        session = self.session
        dump = to_timestamped_dump(
            session.segment_log,
            start_time=session.start_time,
            session_id=session.session_id,
            phone=session.phone_number,
            final_status=SessionStatus.FINALIZED.value,
            final_route=session.final_decision.next_route.value if session.final_decision else "",
        )
        dump["duration_s"] = round(time.time() - session.start_time, 1) if session.start_time > 0 else 0
        for line in chunk_transcript_dump(dump):
            logger.info(line)
