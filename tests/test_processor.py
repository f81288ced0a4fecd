import pytest
from unittest.mock import AsyncMock, MagicMock

from pipecat.frames.frames import CancelFrame, EndFrame, InterimTranscriptionFrame, TranscriptionFrame
from pipecat.processors.frame_processor import FrameDirection, FrameProcessor

from switchboard.processor import LiveAnalysisProcessor


@pytest.fixture
def monitor():
    mock = MagicMock()
    mock.on_segment = AsyncMock(return_value=None)
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def processor(monitor, monkeypatch):
    # Base bookkeeping needs a started pipeline
    monkeypatch.setattr(FrameProcessor, "process_frame", AsyncMock())
    proc = LiveAnalysisProcessor(monitor=monitor)
    proc.push_frame = AsyncMock()
    return proc


class TestTranscriptionFrames:
    @pytest.mark.asyncio
    async def test_final_transcription_becomes_segment(self, processor, monitor):
        frame = TranscriptionFrame(text="my tap is dripping", user_id="", timestamp="")
        await processor.process_frame(frame, FrameDirection.DOWNSTREAM)
        monitor.on_segment.assert_awaited_once_with("my tap is dripping", speaker="caller", is_final=True)
        processor.push_frame.assert_awaited_once_with(frame, FrameDirection.DOWNSTREAM)

    @pytest.mark.asyncio
    async def test_interim_transcription_is_non_final(self, processor, monitor):
        frame = InterimTranscriptionFrame(text="my tap", user_id="", timestamp="")
        await processor.process_frame(frame, FrameDirection.DOWNSTREAM)
        monitor.on_segment.assert_awaited_once_with("my tap", speaker="caller", is_final=False)

    @pytest.mark.asyncio
    async def test_blank_transcription_ignored_but_forwarded(self, processor, monitor):
        frame = TranscriptionFrame(text="   ", user_id="", timestamp="")
        await processor.process_frame(frame, FrameDirection.DOWNSTREAM)
        monitor.on_segment.assert_not_called()
        processor.push_frame.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_segment_error_does_not_stop_frames(self, processor, monitor):
        monitor.on_segment.side_effect = RuntimeError("boom")
        frame = TranscriptionFrame(text="mount my tv", user_id="", timestamp="")
        await processor.process_frame(frame, FrameDirection.DOWNSTREAM)
        processor.push_frame.assert_awaited_once_with(frame, FrameDirection.DOWNSTREAM)


class TestCallEnd:
    @pytest.mark.asyncio
    async def test_end_frame_closes_once(self, processor, monitor):
        await processor.process_frame(EndFrame(), FrameDirection.DOWNSTREAM)
        await processor.process_frame(CancelFrame(), FrameDirection.DOWNSTREAM)
        await processor.wait_closed()
        monitor.close.assert_awaited_once()
        assert processor.push_frame.await_count == 2

    @pytest.mark.asyncio
    async def test_close_error_is_logged(self, processor, monitor, caplog):
        monitor.close.side_effect = RuntimeError("boom")
        await processor.process_frame(EndFrame(), FrameDirection.DOWNSTREAM)
        await processor.wait_closed()
        assert "Session close failed" in caplog.text

    @pytest.mark.asyncio
    async def test_wait_closed_without_end(self, processor):
        await processor.wait_closed()
