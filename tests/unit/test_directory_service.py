# pylint: disable=missing-module-docstring,missing-function-docstring
import re

import pytest

from directory.errors import (
    HostNotAuthorized,
    RegistrationNotFound,
    SessionNotFound,
    StoreError,
    describe_store_error,
)
from directory.models import PodcastSession, SessionStatus
from directory.service import SessionDirectory, to_base36


async def test_list_orders_live_first_then_newest(directory, seed_session) -> None:
    await seed_session("old", createdAt=10, webrtcRoomId="r-old")
    await seed_session("new", createdAt=20, webrtcRoomId="r-new")
    await seed_session("on-air", status="live", createdAt=5, webrtcRoomId="r-live")
    await seed_session("done", status="ended", createdAt=30, webrtcRoomId="r-done")

    listed = [s.session_id for s in await directory.list_sessions()]

    assert listed == ["on-air", "new", "old"]


async def test_list_assigns_missing_room_ids(directory, documents, seed_session, logs) -> None:
    await seed_session("room1")

    (session,) = await directory.list_sessions()

    assert re.fullmatch(r"podcast_[0-9a-z]+_[0-9a-z]{5}", session.room_id)
    stored = await documents.get("podcasts", "room1")
    assert stored["webrtcRoomId"] == session.room_id
    assert logs[-1]["event_type"] == "DIRECTORY_ROOM_ID_ASSIGNED"


async def test_require_raises_for_unknown_session(directory) -> None:
    with pytest.raises(SessionNotFound):
        await directory.require("nope")


async def test_status_mirror(directory, documents, seed_session, clock) -> None:
    await seed_session("room1", participantCount=4)

    await directory.mark_waiting("room1", host_id="host-9", host_name="Grace")
    stored = await documents.get("podcasts", "room1")
    assert (stored["status"], stored["hostId"], stored["participantCount"]) == ("waiting", "host-9", 0)

    await directory.mark_live("room1")
    await directory.set_participant_count("room1", -3)
    stored = await documents.get("podcasts", "room1")
    assert (stored["status"], stored["participantCount"]) == ("live", 0)

    await directory.mark_ended("room1")
    session = await directory.require("room1")
    assert session.status is SessionStatus.ENDED
    assert session.ended_at_ms == clock.now_ms


async def test_status_update_on_missing_session_raises_store_error(directory) -> None:
    with pytest.raises(StoreError) as info:
        await directory.mark_live("ghost")

    assert info.value.code == "not-found"


def test_only_designated_speaker_may_host() -> None:
    target = PodcastSession(
        session_id="room1", title="t", host_id="h", host_name="Ada", status=SessionStatus.APPROVED,
        speaker="Ada Lovelace",
    )
    SessionDirectory.authorize_host(target, "  ada lovelace ")
    with pytest.raises(HostNotAuthorized):
        SessionDirectory.authorize_host(target, "Ada")
    with pytest.raises(HostNotAuthorized):
        SessionDirectory.authorize_host(target, None)


async def test_registration_approval_creates_session(directory, documents, clock) -> None:
    registration_id = await directory.submit_registration(
        title="Night Talk", topic="Stars", date="2025-01-01", time="20:00", speaker="Vera",
    )
    (pending,) = await directory.list_pending_registrations()
    assert pending.registration_id == registration_id

    session = await directory.approve_registration(registration_id)

    assert re.fullmatch(r"SKCMP-[A-Z0-9]{5}-\d{8}", session.session_id)
    assert session.host_id.startswith(f"host_{to_base36(clock.now_ms)}_")
    assert session.status is SessionStatus.APPROVED
    assert (session.date, session.time, session.speaker) == ("2025-01-01", "20:00", "Vera")
    assert await documents.get("podcastRegistration", registration_id) is None
    assert (await directory.require(session.session_id)).title == "Night Talk"


async def test_rejected_registrations_leave_the_pending_list(directory) -> None:
    registration_id = await directory.submit_registration(
        title="Maybe", topic="?", date="2025-02-02", time="09:00",
    )

    await directory.reject_registration(registration_id)

    assert await directory.list_pending_registrations() == []
    with pytest.raises(RegistrationNotFound):
        await directory.approve_registration("missing")


async def test_purge_removes_only_expired_ended_sessions(directory, documents, seed_session, clock) -> None:
    day_ms = 24 * 60 * 60 * 1000
    await seed_session("expired", status="ended", endedAt=clock.now_ms - day_ms - 1)
    await seed_session("recent", status="ended", endedAt=clock.now_ms - 1000)
    await seed_session("running", status="live")

    assert await directory.purge_ended() == 1

    assert await documents.get("podcasts", "expired") is None
    assert await documents.get("podcasts", "recent") is not None
    assert await documents.get("podcasts", "running") is not None


def test_base36() -> None:
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"


def test_store_error_messages() -> None:
    assert describe_store_error(StoreError("x", code="permission-denied")) == (
        "Access denied. Please check your permissions."
    )
    assert describe_store_error(StoreError("x", code="weird")) == (
        "An unexpected error occurred. Please try again."
    )
    assert describe_store_error(RuntimeError("x")) == (
        "An unexpected error occurred. Please try again."
    )
