import asyncio
import logging

from pipecat.frames.frames import (
    CancelFrame,
    EndFrame,
    Frame,
    InterimTranscriptionFrame,
    TranscriptionFrame,
)
from pipecat.processors.frame_processor import FrameDirection, FrameProcessor

from switchboard.monitor import CallMonitor

logger = logging.getLogger(__name__)


class LiveAnalysisProcessor(FrameProcessor):
    """Pipecat processor that feeds live transcription into a CallMonitor.

    Sits right after STT and observes only:
      transport.input() -> STT -> [LiveAnalysisProcessor] -> ...

    Every frame is passed downstream unchanged. Final transcriptions become
    segments, interim ones are forwarded as non-final segments, and an
    EndFrame or CancelFrame closes the session in the background.
    """

    def __init__(self, monitor: CallMonitor, speaker: str = "caller", **kwargs):
        super().__init__(**kwargs)
        self.monitor = monitor
        self.speaker = speaker
        self._close_task: asyncio.Task | None = None

    async def process_frame(self, frame: Frame, direction: FrameDirection):
        await super().process_frame(frame, direction)

        if isinstance(frame, TranscriptionFrame) and frame.text.strip():
            await self._safe_segment(frame.text, is_final=True)
        elif isinstance(frame, InterimTranscriptionFrame) and frame.text.strip():
            await self._safe_segment(frame.text, is_final=False)
        elif isinstance(frame, (EndFrame, CancelFrame)):
            self._schedule_close()

        await self.push_frame(frame, direction)

    async def _safe_segment(self, text: str, is_final: bool):
        try:
            await self.monitor.on_segment(text, speaker=self.speaker, is_final=is_final)
        except Exception as e:
            logger.error(f"Segment handling failed: {e}")

    def _schedule_close(self):
        if self._close_task is None:
            self._close_task = asyncio.create_task(self._safe_close())

    async def _safe_close(self):
        """Close the session in the background, catching errors to prevent silent crashes."""
        try:
            await self.monitor.close()
        except Exception as e:
            logger.error(f"Session close failed: {e}")

    async def wait_closed(self):
        if self._close_task is not None:
            await self._close_task
