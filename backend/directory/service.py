"""
Session Directory.

Read/derive layer over the document store. The directory is the advisory
catalog of sessions (list, joinability, status mirror); the Signaling
Channel stays authoritative for what is actually happening in a room.
"""

from __future__ import annotations

import random
from dataclasses import replace
from datetime import datetime
from typing import Callable

from directory.errors import HostNotAuthorized, RegistrationNotFound, SessionNotFound
from directory.joinability import is_joinable
from directory.models import (
    JoinVerdict,
    PodcastSession,
    Registration,
    RegistrationStatus,
    SessionStatus,
)
from directory.store import DocumentStore
from observability.logger import log_event, now_ms
from spec import (
    BASE36_ALPHABET,
    DIRECTORY_COLLECTION,
    ENDED_SESSION_RETENTION_S,
    HOST_ID_PREFIX,
    HOST_ID_RANDOM_LEN,
    LISTED_STATUSES,
    REGISTRATION_COLLECTION,
    ROOM_ID_ALPHABET,
    ROOM_ID_PREFIX,
    ROOM_ID_RANDOM_LEN,
    STATUS_PRIORITY,
    WEBRTC_ROOM_PREFIX,
    WEBRTC_ROOM_RANDOM_LEN,
)


# ------------------------------------------------------------------
# Identifier helpers
# ------------------------------------------------------------------

def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def new_webrtc_room_id(ts_ms: int, rng: random.Random) -> str:
    """podcast_<base36 ms>_<5 chars>"""
    suffix = "".join(rng.choice(BASE36_ALPHABET) for _ in range(WEBRTC_ROOM_RANDOM_LEN))
    return f"{WEBRTC_ROOM_PREFIX}_{to_base36(ts_ms)}_{suffix}"


def new_room_id(day: datetime, rng: random.Random) -> str:
    """SKCMP-XXXXX-YYYYMMDD"""
    code = "".join(rng.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_RANDOM_LEN))
    return f"{ROOM_ID_PREFIX}-{code}-{day.strftime('%Y%m%d')}"


def new_host_id(ts_ms: int, rng: random.Random) -> str:
    """host_<base36 ms>_<7 chars>"""
    suffix = "".join(rng.choice(BASE36_ALPHABET) for _ in range(HOST_ID_RANDOM_LEN))
    return f"{HOST_ID_PREFIX}_{to_base36(ts_ms)}_{suffix}"


def _normalize_name(name: str | None) -> str:
    return (name or "").strip().lower()


# ------------------------------------------------------------------
# SessionDirectory
# ------------------------------------------------------------------

class SessionDirectory:
    """
    Catalog operations over the "podcasts" and "podcastRegistration"
    collections.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        collection: str = DIRECTORY_COLLECTION,
        registrations: str = REGISTRATION_COLLECTION,
        clock: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._collection = collection
        self._registrations = registrations
        self._clock = clock
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, session_id: str) -> PodcastSession | None:
        data = await self._store.get(self._collection, session_id)
        if data is None:
            return None
        return PodcastSession.from_document(session_id, data)

    async def require(self, session_id: str) -> PodcastSession:
        session = await self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def list_sessions(self) -> list[PodcastSession]:
        """
        Publicly listed sessions, live first, then newest first.

        Sessions without a signaling room id get one assigned and persisted.
        """
        docs = await self._store.query(self._collection, "status", "in", list(LISTED_STATUSES))
        sessions = [PodcastSession.from_document(doc_id, data) for doc_id, data in docs]
        sessions = [await self.ensure_room_id(s) for s in sessions]
        sessions.sort(
            key=lambda s: (STATUS_PRIORITY.get(s.status.value, 0), s.created_at_ms),
            reverse=True,
        )
        return sessions

    async def ensure_room_id(self, session: PodcastSession) -> PodcastSession:
        if session.webrtc_room_id or session.status is SessionStatus.ENDED:
            return session
        room_id = new_webrtc_room_id(self._clock(), self._rng)
        await self._store.update(self._collection, session.session_id, {"webrtcRoomId": room_id})
        log_event({
            "event_type": "DIRECTORY_ROOM_ID_ASSIGNED",
            "session_id": session.session_id,
            "room_id": room_id,
        })
        return replace(session, webrtc_room_id=room_id)

    @staticmethod
    def joinability(session: PodcastSession, now: datetime) -> JoinVerdict:
        return is_joinable(session, now)

    # ------------------------------------------------------------------
    # Status mirror (driven by the host session manager)
    # ------------------------------------------------------------------

    async def _set_status(self, session_id: str, status: SessionStatus, **extra: object) -> None:
        await self._store.update(self._collection, session_id, {"status": status.value, **extra})
        log_event({
            "event_type": "DIRECTORY_STATUS_CHANGED",
            "session_id": session_id,
            "status": status.value,
        })

    async def mark_waiting(self, session_id: str, *, host_id: str, host_name: str) -> None:
        await self._set_status(
            session_id,
            SessionStatus.WAITING,
            hostId=host_id,
            hostName=host_name,
            participantCount=0,
        )

    async def mark_live(self, session_id: str) -> None:
        await self._set_status(session_id, SessionStatus.LIVE)

    async def mark_ended(self, session_id: str) -> None:
        await self._set_status(session_id, SessionStatus.ENDED, endedAt=self._clock())

    async def set_participant_count(self, session_id: str, count: int) -> None:
        await self._store.update(self._collection, session_id, {"participantCount": max(0, count)})

    # ------------------------------------------------------------------
    # Hosting
    # ------------------------------------------------------------------

    @staticmethod
    def authorize_host(session: PodcastSession, admin_name: str | None) -> None:
        """
        Only the designated speaker may host.

        Raises:
            HostNotAuthorized
        """
        designated = _normalize_name(session.speaker or session.host_name)
        if not designated or _normalize_name(admin_name) != designated:
            raise HostNotAuthorized(
                f"{admin_name!r} is not the designated host of {session.session_id}"
            )

    # ------------------------------------------------------------------
    # Registration workflow
    # ------------------------------------------------------------------

    async def submit_registration(
        self,
        *,
        title: str,
        topic: str,
        date: str,
        time: str,
        speaker: str = "",
        user_uid: str | None = None,
    ) -> str:
        registration = Registration(
            registration_id="",
            title=title,
            topic=topic,
            date=date,
            time=time,
            speaker=speaker,
            user_uid=user_uid,
            created_at_ms=self._clock(),
        )
        return await self._store.add(self._registrations, registration.to_document())

    async def list_pending_registrations(self) -> list[Registration]:
        docs = await self._store.query(
            self._registrations, "status", "==", RegistrationStatus.PENDING.value
        )
        registrations = [Registration.from_document(doc_id, data) for doc_id, data in docs]
        registrations.sort(key=lambda r: (r.date, r.time), reverse=True)
        return registrations

    async def _require_registration(self, registration_id: str) -> Registration:
        data = await self._store.get(self._registrations, registration_id)
        if data is None:
            raise RegistrationNotFound(registration_id)
        return Registration.from_document(registration_id, data)

    async def approve_registration(self, registration_id: str) -> PodcastSession:
        """Create an approved session from a registration, then delete it."""
        registration = await self._require_registration(registration_id)
        ts_ms = self._clock()

        session_id = new_room_id(datetime.fromtimestamp(ts_ms / 1000), self._rng)
        session = PodcastSession(
            session_id=session_id,
            title=registration.title,
            host_id=new_host_id(ts_ms, self._rng),
            host_name=registration.speaker,
            status=SessionStatus.APPROVED,
            approved=True,
            topic=registration.topic,
            speaker=registration.speaker,
            date=registration.date or None,
            time=registration.time or None,
            created_at_ms=ts_ms,
        )

        await self._store.set(self._collection, session_id, session.to_document())
        await self._store.delete(self._registrations, registration_id)

        log_event({
            "event_type": "DIRECTORY_REGISTRATION_APPROVED",
            "registration_id": registration_id,
            "session_id": session_id,
        })
        return session

    async def reject_registration(self, registration_id: str) -> None:
        await self._require_registration(registration_id)
        await self._store.update(
            self._registrations,
            registration_id,
            {"status": RegistrationStatus.REJECTED.value, "rejectedAt": self._clock()},
        )
        log_event({
            "event_type": "DIRECTORY_REGISTRATION_REJECTED",
            "registration_id": registration_id,
        })

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def purge_ended(self, now_ms_value: int | None = None) -> int:
        """Delete ended sessions older than the retention window. Returns the count."""
        now_value = self._clock() if now_ms_value is None else now_ms_value
        cutoff = now_value - ENDED_SESSION_RETENTION_S * 1000

        docs = await self._store.query(
            self._collection, "status", "==", SessionStatus.ENDED.value
        )
        purged = 0
        for doc_id, data in docs:
            ended_at = data.get("endedAt")
            if isinstance(ended_at, (int, float)) and ended_at <= cutoff:
                await self._store.delete(self._collection, doc_id)
                purged += 1

        if purged:
            log_event({"event_type": "DIRECTORY_ENDED_PURGED", "count": purged})
        return purged
