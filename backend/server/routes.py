"""
Route registration for the podcast signaling API.

Responsibilities:
- Define HTTP endpoints for the Session Directory and registration workflow
- Wire the signaling gateway to the WebSocket lifecycle
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from directory.models import PodcastSession, Registration, SessionStatus
from directory.service import SessionDirectory
from observability.logger import log_event
from protocol import paths
from server.signaling_gateway import GatewayResult, SignalingGateway
from signaling.channel import SignalingChannel


class RegistrationIn(BaseModel):
    title: str
    topic: str
    date: str
    time: str
    speaker: str = ""
    user_uid: str | None = None


def _session_view(session: PodcastSession, now: datetime) -> dict[str, Any]:
    verdict = SessionDirectory.joinability(session, now)
    return {
        "id": session.session_id,
        "room_id": session.room_id,
        "title": session.title,
        "host_id": session.host_id,
        "host_name": session.host_name,
        "status": session.status.value,
        "topic": session.topic,
        "speaker": session.speaker,
        "date": session.date,
        "time": session.time,
        "participant_count": session.participant_count,
        "max_participants": session.max_participants,
        "joinable": verdict.joinable,
        "reason": verdict.reason,
    }


def _registration_view(registration: Registration) -> dict[str, Any]:
    return {
        "id": registration.registration_id,
        "title": registration.title,
        "topic": registration.topic,
        "date": registration.date,
        "time": registration.time,
        "speaker": registration.speaker,
        "status": registration.status.value,
    }


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    def directory() -> SessionDirectory:
        return app.state.directory

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/ice-servers")
    async def ice_servers() -> list[dict[str, Any]]: # pyright: ignore[reportUnusedFunction]
        return app.state.config.ice_servers()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @app.get("/podcasts")
    async def list_podcasts() -> list[dict[str, Any]]: # pyright: ignore[reportUnusedFunction]
        now = datetime.now()
        return [_session_view(s, now) for s in await directory().list_sessions()]

    @app.get("/podcasts/{session_id}")
    async def get_podcast(session_id: str) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = await directory().require(session_id)
        return _session_view(session, datetime.now())

    @app.post("/podcasts/{session_id}/end")
    async def end_podcast(session_id: str) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        """Force-end a session: Directory status plus the room's status flag."""
        session = await directory().require(session_id)
        await directory().mark_ended(session_id)
        channel = SignalingChannel(app.state.signaling_store, session.room_id)
        await channel.write_value(paths.STATUS, SessionStatus.ENDED.value)
        return {"id": session_id, "status": SessionStatus.ENDED.value}

    # ------------------------------------------------------------------
    # Registrations
    # ------------------------------------------------------------------

    @app.get("/registrations")
    async def list_registrations() -> list[dict[str, Any]]: # pyright: ignore[reportUnusedFunction]
        return [_registration_view(r) for r in await directory().list_pending_registrations()]

    @app.post("/registrations", status_code=201)
    async def submit_registration(body: RegistrationIn) -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        registration_id = await directory().submit_registration(
            title=body.title,
            topic=body.topic,
            date=body.date,
            time=body.time,
            speaker=body.speaker,
            user_uid=body.user_uid,
        )
        return {"id": registration_id}

    @app.post("/registrations/{registration_id}/approve")
    async def approve_registration(registration_id: str) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = await directory().approve_registration(registration_id)
        return _session_view(session, datetime.now())

    @app.post("/registrations/{registration_id}/reject")
    async def reject_registration(registration_id: str) -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        await directory().reject_registration(registration_id)
        return {"id": registration_id, "status": "rejected"}

    # ------------------------------------------------------------------
    # Signaling
    # ------------------------------------------------------------------

    @app.websocket("/ws/signaling/{room_id}")
    async def signaling_endpoint(ws: WebSocket, room_id: str) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        gateway = SignalingGateway(
            store=app.state.signaling_store,
            room_id=room_id,
            ice_servers=app.state.config.ice_servers(),
        )
        pump = asyncio.create_task(_pump_outbound(ws, gateway))

        try:
            result = await gateway.on_ws_connect()
            await _flush_gateway_result(ws, result)

            while True:
                msg = await ws.receive_text()
                result = await gateway.on_json_message(msg)
                await _flush_gateway_result(ws, result)

        except WebSocketDisconnect:
            await gateway.on_ws_disconnect(reason="client_disconnect")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "room_id": room_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            await gateway.on_ws_disconnect(reason="server_error")

        finally:
            pump.cancel()


async def _pump_outbound(ws: WebSocket, gateway: SignalingGateway) -> None:
    """Forward subscription deliveries to the client as they arrive."""
    while True:
        msg = await gateway.outbound.get()
        await ws.send_text(json.dumps(msg))


async def _flush_gateway_result(
    ws: WebSocket,
    result: GatewayResult,
) -> None:
    for msg in result.outbound_json:
        await ws.send_text(json.dumps(msg))
