import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket
from pipecat.frames.frames import EndFrame
from pipecat.pipeline.pipeline import Pipeline
from pipecat.pipeline.runner import PipelineRunner
from pipecat.pipeline.task import PipelineParams, PipelineTask
from pipecat.runner.utils import parse_telephony_websocket
from pipecat.serializers.twilio import TwilioFrameSerializer
from pipecat.services.deepgram.stt import DeepgramSTTService
from pipecat.transports.websocket.fastapi import (
    FastAPIWebsocketParams,
    FastAPIWebsocketTransport,
)

from switchboard.aggregator import CallAnalyzer
from switchboard.catalog import CatalogCache, HttpCatalogSource
from switchboard.config import Settings
from switchboard.detector import TaskDetector
from switchboard.events import EventBus
from switchboard.extraction import MetadataTracker
from switchboard.monitor import CallMonitor
from switchboard.processor import LiveAnalysisProcessor
from switchboard.providers import OpenAIProvider
from switchboard.session import CallSession
from switchboard.splitter import TaskSplitter

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Process-wide collaborators shared by every call.

    The catalog cache is the only state sessions share; the provider holds a
    pooled HTTP client and its circuit breaker.
    """
    settings: Settings
    catalog: CatalogCache
    provider: Optional[OpenAIProvider] = None

    async def close(self):
        if self.provider is not None:
            await self.provider.close()


def build_services(settings: Settings) -> Services:
    source = HttpCatalogSource(url=settings.catalog_url, api_key=settings.catalog_api_key)
    catalog = CatalogCache(source, ttl_seconds=settings.catalog_ttl_seconds)
    provider = None
    if settings.language_model_enabled:
        provider = OpenAIProvider(api_key=settings.openai_api_key)
    else:
        logger.warning("No OpenAI key: running keyword-only detection")
    return Services(settings=settings, catalog=catalog, provider=provider)


def create_monitor(
    services: Services,
    phone_number: str = "",
    session_id: str | None = None,
    bus: EventBus | None = None,
) -> CallMonitor:
    """Wire a fresh session to the shared catalog and provider."""
    provider = services.provider
    settings = services.settings

    splitter = TaskSplitter(
        split_fn=provider.split if provider else None,
        window_chars=settings.split_window_chars,
    )
    detector = TaskDetector(
        embed_fn=provider.embed if provider else None,
        classify_fn=provider.classify if provider else None,
    )
    session = CallSession(phone_number=phone_number)
    if session_id:
        session.session_id = session_id

    return CallMonitor(
        session=session,
        analyzer=CallAnalyzer(services.catalog, splitter, detector),
        bus=bus,
        tracker=MetadataTracker(extract_fn=provider.extract_metadata if provider else None),
        assess_fn=provider.assess_complexity if provider else None,
        analysis_debounce=settings.analysis_debounce_s,
        tier2_debounce=settings.tier2_debounce_s,
    )


async def run_twilio_pipeline(websocket: WebSocket, services: Services, registry: dict):
    """Listen-only Pipecat pipeline for a Twilio media stream.

    transport.input() -> Deepgram STT -> LiveAnalysisProcessor. No audio is
    sent back to the caller.
    """
    settings = services.settings
    transport_type, call_data = await parse_telephony_websocket(websocket)
    logger.info(f"Twilio handshake: transport={transport_type}, keys={list(call_data.keys())}")
    stream_sid = call_data["stream_id"]
    call_sid = call_data["call_id"]
    caller_phone = call_data.get("body", {}).get("From", "")
    if not caller_phone:
        logger.warning("No caller phone in Twilio handshake")

    monitor = create_monitor(services, phone_number=caller_phone, session_id=call_sid)
    registry[call_sid] = monitor
    logger.info(f"Call started: {call_sid} from {caller_phone or 'unknown'}")

    serializer = TwilioFrameSerializer(
        stream_sid=stream_sid,
        call_sid=call_sid,
        account_sid=settings.twilio_account_sid or None,
        auth_token=settings.twilio_auth_token or None,
    )
    transport = FastAPIWebsocketTransport(
        websocket=websocket,
        params=FastAPIWebsocketParams(
            audio_in_enabled=True,
            audio_out_enabled=False,
            add_wav_header=False,
            serializer=serializer,
        ),
    )
    stt = DeepgramSTTService(api_key=settings.deepgram_api_key)
    analysis = LiveAnalysisProcessor(monitor)

    task = PipelineTask(
        Pipeline([transport.input(), stt, analysis]),
        params=PipelineParams(audio_in_sample_rate=8000),
    )

    @transport.event_handler("on_client_connected")
    async def on_connected(transport, client):
        await monitor.start()

    @transport.event_handler("on_client_disconnected")
    async def on_disconnected(transport, client):
        logger.info(f"Client disconnected, ending pipeline for {call_sid}")
        await task.queue_frames([EndFrame()])

    try:
        await PipelineRunner().run(task)
        await analysis.wait_closed()
        # EndFrame may never reach the processor if the runner was cancelled
        if monitor.session.status.is_active:
            await monitor.close()
    finally:
        registry.pop(call_sid, None)
    logger.info(f"Call ended: {call_sid}")
