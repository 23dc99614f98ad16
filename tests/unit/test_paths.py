# pylint: disable=missing-module-docstring,missing-function-docstring
import pytest

from protocol import paths


def test_room_layout() -> None:
    assert paths.participant("listener-a") == "participants/listener-a"
    assert paths.can_speak("listener-a") == "participants/listener-a/canSpeak"
    assert paths.muted("host-1") == "participants/host-1/muted"
    assert paths.speak_request("-Nk1") == "speakRequests/-Nk1"
    assert paths.offer("listener-a") == "webrtc/listener-a/offer"
    assert paths.answer("listener-a") == "webrtc/listener-a/answer"
    assert paths.host_candidates("listener-a") == "webrtc/listener-a/hostIceCandidates"
    assert paths.listener_candidates("listener-a") == "webrtc/listener-a/listenerIceCandidates"


@pytest.mark.parametrize("segment", ["", "a.b", "a/b", "a#", "$a", "a[0]"])
def test_reserved_characters_are_rejected(segment: str) -> None:
    with pytest.raises(paths.InvalidPathError):
        paths.validate_segment(segment)


def test_split_and_join() -> None:
    assert paths.split_path("") == []
    assert paths.split_path("/rooms/r1/status/") == ["rooms", "r1", "status"]
    assert paths.join_path("rooms", "r1", "") == "rooms/r1"
    with pytest.raises(paths.InvalidPathError):
        paths.split_path("rooms//status")
