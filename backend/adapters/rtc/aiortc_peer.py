"""
aiortc implementation of the peer connection, microphone and playback
contracts.

Notes:
- aiortc gathers all local candidates during setLocalDescription and embeds
  them in the SDP, so this adapter never emits LocalCandidateGathered.
  Remote trickled candidates are still applied.
- One microphone track is fanned out to every connection through a
  MediaRelay; a track object must not be read by two senders directly.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Sequence

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder, MediaRelay
from aiortc.sdp import candidate_from_sdp
from av.error import FFmpegError

from adapters.rtc.base import EmitEvent, PeerConnection, PeerConnectionFactory
from media.local import LocalStream, MediaAcquisitionError, MediaSource
from media.playback import PlaybackElement, PlaybackRegistry
from negotiation.enums.state import IceState
from negotiation.events import EventType, IceStateChanged, RemoteTrackReceived
from observability.logger import log_event, now_ms
from protocol.signals import IceCandidate


_CONNECTION_STATE_TO_ICE: dict[str, IceState] = {
    "connecting": IceState.CHECKING,
    "connected": IceState.CONNECTED,
    "disconnected": IceState.DISCONNECTED,
    "failed": IceState.FAILED,
    "closed": IceState.CLOSED,
}


def _rtc_configuration(ice_servers: Sequence[dict[str, Any]]) -> RTCConfiguration:
    return RTCConfiguration(iceServers=[
        RTCIceServer(
            urls=server["urls"],
            username=server.get("username"),
            credential=server.get("credential"),
        )
        for server in ice_servers
    ])


class AiortcPeerConnection(PeerConnection):
    """RTCPeerConnection wrapper stamping events with its generation."""

    def __init__(
        self,
        *,
        participant_id: str,
        generation: int,
        ice_servers: Sequence[dict[str, Any]],
        receive_only: bool,
        emit_event: EmitEvent,
        relay: MediaRelay,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.participant_id = participant_id
        self.generation = generation
        self._emit = emit_event
        self._relay = relay
        self._clock = clock
        self._closed = False

        self._pc = RTCPeerConnection(configuration=_rtc_configuration(ice_servers))
        if receive_only:
            self._pc.addTransceiver("audio", direction="recvonly")

        self._pc.on("connectionstatechange", self._on_connection_state)
        self._pc.on("track", self._on_track)

    # ------------------------------------------------------------------
    # aiortc callbacks
    # ------------------------------------------------------------------

    def _on_connection_state(self) -> None:
        ice_state = _CONNECTION_STATE_TO_ICE.get(self._pc.connectionState)
        if ice_state is None:
            return
        self._emit(IceStateChanged(
            event_type=EventType.ICE_STATE_CHANGED,
            ts_ms=self._clock(),
            participant_id=self.participant_id,
            generation=self.generation,
            ice_state=ice_state,
        ))

    def _on_track(self, track: MediaStreamTrack) -> None:
        if track.kind != "audio":
            return
        self._emit(RemoteTrackReceived(
            event_type=EventType.REMOTE_TRACK_RECEIVED,
            ts_ms=self._clock(),
            participant_id=self.participant_id,
            generation=self.generation,
            track=track,
        ))

    # ------------------------------------------------------------------
    # PeerConnection
    # ------------------------------------------------------------------

    def add_track(self, track: Any) -> None:
        self._pc.addTrack(self._relay.subscribe(track))

    async def set_remote_description(self, kind: str, sdp: str) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type=kind))

    async def create_offer(self) -> str:
        await self._pc.setLocalDescription(await self._pc.createOffer())
        return self._pc.localDescription.sdp

    async def create_answer(self) -> str:
        await self._pc.setLocalDescription(await self._pc.createAnswer())
        return self._pc.localDescription.sdp

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        raw = candidate.candidate
        if raw.startswith("candidate:"):
            raw = raw[len("candidate:"):]
        rtc_candidate = candidate_from_sdp(raw)
        rtc_candidate.sdpMid = candidate.sdp_mid
        rtc_candidate.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(rtc_candidate)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pc.close()


class AiortcPeerConnectionFactory(PeerConnectionFactory):
    def __init__(self) -> None:
        self._relay = MediaRelay()

    def create(
        self,
        *,
        participant_id: str,
        generation: int,
        ice_servers: Sequence[dict[str, Any]],
        receive_only: bool,
        emit_event: EmitEvent,
    ) -> PeerConnection:
        return AiortcPeerConnection(
            participant_id=participant_id,
            generation=generation,
            ice_servers=ice_servers,
            receive_only=receive_only,
            emit_event=emit_event,
            relay=self._relay,
        )


# =============================================================================
# Microphone
# =============================================================================

class SwitchableAudioTrack(MediaStreamTrack):
    """
    Relays a source track; sends silence while enabled is False.

    aiortc tracks have no enabled flag, so muting happens on the frames.
    """

    kind = "audio"

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self._source = source
        self.enabled = True

    async def recv(self) -> Any:
        frame = await self._source.recv()
        if not self.enabled:
            for plane in frame.planes:
                plane.update(bytes(plane.buffer_size))
        return frame

    def stop(self) -> None:
        super().stop()
        self._source.stop()


class MicrophoneSource(MediaSource):
    """
    Captures the local microphone through FFmpeg.

    device/fmt examples: ("default", "pulse") on Linux,
    (":0", "avfoundation") on macOS.
    """

    def __init__(
        self,
        *,
        device: str = "default",
        fmt: str = "pulse",
        options: dict[str, str] | None = None,
    ) -> None:
        self._device = device
        self._fmt = fmt
        self._options = options or {}

    async def acquire(self) -> LocalStream:
        try:
            player = MediaPlayer(self._device, format=self._fmt, options=self._options)
        except PermissionError as exc:
            raise MediaAcquisitionError(str(exc), reason="permission_denied") from exc
        except FileNotFoundError as exc:
            raise MediaAcquisitionError(str(exc), reason="no_device") from exc
        except (FFmpegError, OSError, ValueError) as exc:
            raise MediaAcquisitionError(str(exc), reason="unsupported") from exc

        if player.audio is None:
            raise MediaAcquisitionError(f"no audio on {self._device}", reason="no_device")

        return LocalStream(tracks=[SwitchableAudioTrack(player.audio)])


# =============================================================================
# Playback
# =============================================================================

class MediaSinkPlayback(PlaybackRegistry):
    """
    Consumes inbound audio server-side.

    With record_dir set, each counterpart is written to
    {record_dir}/{participant_id}.wav; otherwise frames are discarded.
    """

    def __init__(self, *, record_dir: str | None = None) -> None:
        super().__init__()
        self._record_dir = record_dir
        self._sinks: dict[str, MediaBlackhole | MediaRecorder] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_attach(self, element: PlaybackElement) -> None:
        sink: MediaBlackhole | MediaRecorder
        if self._record_dir:
            sink = MediaRecorder(f"{self._record_dir}/{element.participant_id}.wav")
        else:
            sink = MediaBlackhole()
        sink.addTrack(element.track)
        self._sinks[element.participant_id] = sink
        self._spawn(sink.start())
        log_event({
            "event_type": "PLAYBACK_SINK_STARTED",
            "participant_id": element.participant_id,
            "recording": bool(self._record_dir),
        })

    def _on_detach(self, element: PlaybackElement) -> None:
        sink = self._sinks.pop(element.participant_id, None)
        if sink is not None:
            self._spawn(sink.stop())
