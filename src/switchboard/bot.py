import json
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from switchboard.config import load_settings, validate_config
from switchboard.events import EventBus, SessionEvent
from switchboard.monitor import CallMonitor
from switchboard.pipeline import Services, build_services, create_monitor, run_twilio_pipeline

load_dotenv()
validate_config()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _call_summary(call_sid: str, monitor: CallMonitor) -> dict:
    session = monitor.session
    last = session.last_analysis
    return {
        "call_sid": call_sid,
        "session_id": session.session_id,
        "phone_number": session.phone_number,
        "status": session.status.value,
        "segment_count": session.segment_count,
        "analysis_count": session.analysis_count,
        "next_route": last.decision.next_route.value if last else None,
    }


def create_app(services: Services | None = None) -> FastAPI:
    """Build the HTTP/websocket surface.

    Without ``services`` they are built from the environment on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            app.state.services = build_services(load_settings())
        yield
        for call_sid, monitor in list(app.state.calls.items()):
            if monitor.session.status.is_active:
                logger.info(f"Shutting down, closing {call_sid}")
                await monitor.close()
        await app.state.services.close()

    app = FastAPI(title="Switchboard Live Call Analysis", lifespan=lifespan)
    app.state.services = services
    app.state.calls = {}

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.get("/calls/active")
    async def active_calls():
        return {
            "calls": [
                _call_summary(call_sid, monitor)
                for call_sid, monitor in app.state.calls.items()
                if monitor.session.status.is_active
            ]
        }

    @app.websocket("/ws/calls/{call_sid}")
    async def call_websocket(websocket: WebSocket, call_sid: str):
        """Transcript feed for one call.

        Client messages: {"event": "start", "phone_number": ...},
        {"event": "segment", "text": ..., "speaker": ..., "is_final": ...},
        {"event": "stop"}. Session events are streamed back as JSON.
        """
        await websocket.accept()
        if call_sid in app.state.calls:
            await websocket.send_json({"type": "error", "message": f"call {call_sid} already active"})
            await websocket.close(code=1008)
            return

        bus = EventBus()

        async def forward(event: SessionEvent):
            await websocket.send_json(event.to_dict())

        unsubscribe = bus.subscribe(forward)
        monitor = create_monitor(app.state.services, session_id=call_sid, bus=bus)
        app.state.calls[call_sid] = monitor

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"[{call_sid}] Ignoring non-JSON message")
                    continue
                if not isinstance(message, dict):
                    continue

                event = message.get("event")
                if event == "start":
                    monitor.session.phone_number = message.get("phone_number", "") or ""
                    await monitor.start()
                elif event == "segment":
                    await monitor.on_segment(
                        str(message.get("text", "")),
                        speaker=message.get("speaker", "caller"),
                        is_final=bool(message.get("is_final", True)),
                    )
                elif event == "stop":
                    await monitor.close()
                    break
                else:
                    logger.warning(f"[{call_sid}] Unknown event: {event!r}")
        except WebSocketDisconnect:
            logger.info(f"[{call_sid}] Client disconnected")
            # The final pass still runs; there is nobody left to send it to
            unsubscribe()
            if monitor.session.status.is_active:
                await monitor.close()
            return
        finally:
            app.state.calls.pop(call_sid, None)

        await websocket.close()

    @app.websocket("/ws/twilio")
    async def twilio_websocket(websocket: WebSocket):
        """Twilio media stream, transcribed with Deepgram and analysed live."""
        await websocket.accept()
        if not app.state.services.settings.deepgram_api_key:
            logger.error("DEEPGRAM_API_KEY not set, rejecting Twilio stream")
            await websocket.close(code=1011)
            return
        await run_twilio_pipeline(websocket, app.state.services, app.state.calls)

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8765"))
    uvicorn.run("switchboard.bot:app", host="0.0.0.0", port=port, reload=True)
