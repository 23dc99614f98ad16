# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring
import fractions

import pytest
from aiortc import MediaStreamTrack
from av import AudioFrame

from adapters.rtc.aiortc_peer import (
    AiortcPeerConnectionFactory,
    MicrophoneSource,
    SwitchableAudioTrack,
    _rtc_configuration,
)
from media.local import MediaAcquisitionError
from negotiation.enums.state import IceState
from negotiation.events import IceStateChanged


class ToneTrack(MediaStreamTrack):
    kind = "audio"

    async def recv(self) -> AudioFrame:
        frame = AudioFrame(format="s16", layout="mono", samples=160)
        for plane in frame.planes:
            plane.update(b"\x01" * plane.buffer_size)
        frame.sample_rate = 8000
        frame.pts = 0
        frame.time_base = fractions.Fraction(1, 8000)
        return frame


def test_ice_server_configuration() -> None:
    config = _rtc_configuration([
        {"urls": ["stun:stun.l.google.com:19302"]},
        {"urls": ["turn:relay"], "username": "u", "credential": "p"},
    ])

    stun, turn = config.iceServers
    assert stun.urls == ["stun:stun.l.google.com:19302"]
    assert (turn.username, turn.credential) == ("u", "p")


async def test_receive_only_offer_and_idempotent_close() -> None:
    events = []
    pc = AiortcPeerConnectionFactory().create(
        participant_id="host-1",
        generation=3,
        ice_servers=[],
        receive_only=True,
        emit_event=events.append,
    )

    sdp = await pc.create_offer()
    assert "m=audio" in sdp
    assert "a=recvonly" in sdp

    await pc.close()
    await pc.close()

    closed = [e for e in events if isinstance(e, IceStateChanged)]
    assert closed and closed[-1].ice_state is IceState.CLOSED
    assert all(e.generation == 3 and e.participant_id == "host-1" for e in closed)


async def test_sending_offer_carries_the_microphone() -> None:
    pc = AiortcPeerConnectionFactory().create(
        participant_id="listener-a",
        generation=1,
        ice_servers=[],
        receive_only=False,
        emit_event=lambda _e: None,
    )
    pc.add_track(ToneTrack())

    sdp = await pc.create_offer()

    assert "a=sendrecv" in sdp
    await pc.close()


async def test_disabled_track_sends_silence() -> None:
    track = SwitchableAudioTrack(ToneTrack())

    loud = await track.recv()
    assert any(bytes(loud.planes[0]))

    track.enabled = False
    quiet = await track.recv()
    assert not any(bytes(quiet.planes[0]))

    track.stop()
    assert track.readyState == "ended"


async def test_missing_capture_device_is_reported(tmp_path) -> None:
    source = MicrophoneSource(device=str(tmp_path / "missing.wav"), fmt="wav")

    with pytest.raises(MediaAcquisitionError) as info:
        await source.acquire()

    assert info.value.reason == "no_device"
