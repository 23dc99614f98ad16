"""
Listener Peer Session Manager.

Responsibilities:
- Check the directory (exists, approved, joinable) before any signaling
- Write the presence record and start the first (receive-only) round
- Apply the host's answer and candidates for the current round only
- Renegotiate with the microphone when canSpeak is granted, and without it
  when revoked
- Request to speak (client-side cooldown), mute, leave
- React to the room being ended by the host

No auto-reconnect: a torn-down connection leaves the manager DISCONNECTED.
"""

from __future__ import annotations

import random
import uuid
from datetime import datetime
from typing import Any, Callable, Sequence

from adapters.rtc.base import PeerConnectionFactory
from directory.errors import JoinRejected
from directory.joinability import is_joinable
from directory.models import JoinVerdict, PodcastSession, SessionStatus
from directory.service import SessionDirectory
from media.local import MediaAcquisitionError, MediaSource
from media.playback import PlaybackRegistry
from negotiation.enums.state import NegotiationState
from negotiation.events import (
    AnswerReceived,
    Event,
    EventType,
    ParticipantJoined,
    ParticipantLeft,
    ParticipantUpdated,
    PeerEvent,
    RemoteCandidateReceived,
    RoomStatusChanged,
    StartNegotiation,
)
from negotiation.runtime import NegotiationRuntime
from observability.logger import now_ms
from observability.metrics import timed
from protocol import paths
from protocol.presence import Participant, Role, encode_participant, try_decode_participant
from protocol.signals import (
    Answer,
    IceCandidate,
    SignalType,
    SpeakRequest,
    encode_signal,
    try_decode_signal,
)
from session.status import ListenerStatus
from signaling.channel import SignalingChannel
from signaling.store import SignalingStore, Unsubscribe
from spec import (
    LISTENER_AVATAR,
    LISTENER_ID_PREFIX,
    LISTENER_NAME_ADJECTIVES,
    LISTENER_NAME_NOUNS,
    NEGOTIATION_TIMEOUT_MS,
    OFFER_ID_PREFIX,
    SPEAK_REQUEST_COOLDOWN_S,
)


# Releases initiated by this manager; status is set by the caller
_LOCAL_RELEASE_REASONS = frozenset({"left", "session_ended"})


def new_listener_id() -> str:
    return f"{LISTENER_ID_PREFIX}-{uuid.uuid4().hex[:12]}"


def new_offer_id() -> str:
    return f"{OFFER_ID_PREFIX}-{uuid.uuid4().hex}"


def generate_display_name(rng: random.Random) -> str:
    return f"{rng.choice(LISTENER_NAME_ADJECTIVES)} {rng.choice(LISTENER_NAME_NOUNS)}"


class ListenerSessionManager(NegotiationRuntime):
    """One listener == one connection to the host."""

    def __init__(
        self,
        *,
        session: PodcastSession,
        directory: SessionDirectory,
        store: SignalingStore,
        peer_factory: PeerConnectionFactory,
        media_source: MediaSource,
        display_name: str | None = None,
        listener_id: str | None = None,
        playback: PlaybackRegistry | None = None,
        ice_servers: Sequence[dict[str, Any]] = (),
        negotiation_timeout_ms: int = NEGOTIATION_TIMEOUT_MS,
        clock: Callable[[], int] = now_ms,
        wall_clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(
            room_id=session.room_id,
            local_id=listener_id or new_listener_id(),
            role=Role.LISTENER,
            channel=SignalingChannel(store, session.room_id),
            peer_factory=peer_factory,
            playback=playback,
            ice_servers=ice_servers,
            negotiation_timeout_ms=negotiation_timeout_ms,
            clock=clock,
        )
        self.session = session
        self.host_peer_id = session.host_id or "host"
        self.display_name = display_name or generate_display_name(rng or random.Random())
        self.status = ListenerStatus.IDLE
        self.participants: dict[str, Participant] = {}
        self.can_speak = False
        self.muted = False

        self._directory = directory
        self._media_source = media_source
        self._wall_clock = wall_clock
        self._subscriptions: list[Unsubscribe] = []
        self._last_speak_request_ms: int | None = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _set_status(self, status: ListenerStatus, **details: Any) -> None:
        if status is self.status:
            return
        self.log({
            "event_type": "LISTENER_STATUS_CHANGED",
            "from_status": self.status.value,
            "to_status": status.value,
            "details": details,
        })
        self.status = status

    # ------------------------------------------------------------------
    # Join
    # ------------------------------------------------------------------

    async def join(self, now: datetime | None = None) -> JoinVerdict:
        """
        Join the session.

        Raises:
            JoinRejected when the session is missing, not approved, ended,
            not started yet or full. No signaling happens in that case.
        """
        async with self._lock:
            if self.status is not ListenerStatus.IDLE:
                raise JoinRejected("already joined")

            session = await self._directory.get(self.session.session_id)
            if session is None or not session.approved:
                self._set_status(ListenerStatus.NOT_FOUND)
                raise JoinRejected("Podcast not found")

            verdict = is_joinable(session, now or self._wall_clock())
            if not verdict.joinable:
                self._set_status(
                    ListenerStatus.ENDED
                    if session.status is SessionStatus.ENDED
                    else ListenerStatus.REJECTED,
                    reason=verdict.reason,
                )
                raise JoinRejected(verdict.reason)
            self.session = session
            if session.host_id:
                self.host_peer_id = session.host_id

            me = Participant(
                participant_id=self.local_id,
                name=self.display_name,
                role=Role.LISTENER,
                avatar=LISTENER_AVATAR,
                joined_at_ms=self._clock(),
            )
            self.participants[me.participant_id] = me

            if not await self.channel.write_value(
                paths.participant(self.local_id), encode_participant(me)
            ):
                self._set_status(ListenerStatus.DISCONNECTED, reason="presence_write_failed")
                raise JoinRejected("Could not join the room. Please try again.")

            self._subscriptions.extend([
                self.channel.subscribe_value(paths.answer(self.local_id), self._on_answer),
                self.channel.subscribe_child_added(
                    paths.host_candidates(self.local_id), self._on_host_candidate
                ),
                self.channel.subscribe_value(
                    paths.participant(self.local_id), self._on_own_record
                ),
                self.channel.subscribe_child_added(paths.PARTICIPANTS, self._on_participant_added),
                self.channel.subscribe_child_removed(
                    paths.PARTICIPANTS, self._on_participant_removed
                ),
                self.channel.subscribe_value(paths.STATUS, self._on_room_status),
            ])

            self._set_status(ListenerStatus.CONNECTING)
            await self._dispatch_peer(self._start_round(send_audio=False))
            return verdict

    def _start_round(self, *, send_audio: bool) -> StartNegotiation:
        return StartNegotiation(
            event_type=EventType.START_NEGOTIATION,
            ts_ms=self._clock(),
            participant_id=self.host_peer_id,
            offer_id=new_offer_id(),
            send_audio=send_audio,
        )

    # ------------------------------------------------------------------
    # Channel callbacks (decode + enqueue only)
    # ------------------------------------------------------------------

    def _on_answer(self, value: Any) -> None:
        if value is None:
            return
        answer = try_decode_signal(
            value, expected=SignalType.ANSWER,
            room_id=self.room_id, path=paths.answer(self.local_id),
        )
        if not isinstance(answer, Answer):
            return
        if not self._processed.check_and_mark(answer.message_id):
            self.log({"event_type": "ANSWER_DUPLICATE_DROPPED", "message_id": answer.message_id})
            return
        self.submit(AnswerReceived(
            event_type=EventType.ANSWER_RECEIVED,
            ts_ms=self._clock(),
            participant_id=self.host_peer_id,
            message_id=answer.message_id,
            in_reply_to=answer.in_reply_to,
            sdp=answer.sdp,
        ))

    def _on_host_candidate(self, key: str, value: Any) -> None:
        candidate = try_decode_signal(
            value, key=key, expected=SignalType.ICE_CANDIDATE,
            room_id=self.room_id, path=paths.host_candidates(self.local_id),
        )
        if not isinstance(candidate, IceCandidate):
            return
        self.submit(RemoteCandidateReceived(
            event_type=EventType.REMOTE_CANDIDATE_RECEIVED,
            ts_ms=self._clock(),
            participant_id=self.host_peer_id,
            candidate=candidate,
        ))

    def _on_own_record(self, value: Any) -> None:
        participant = (
            None if value is None
            else try_decode_participant(value, key=self.local_id, room_id=self.room_id)
        )
        self.submit(ParticipantUpdated(
            event_type=EventType.PARTICIPANT_UPDATED,
            ts_ms=self._clock(),
            participant=participant,
        ))

    def _on_participant_added(self, key: str, value: Any) -> None:
        participant = try_decode_participant(value, key=key, room_id=self.room_id)
        if participant is None:
            return
        self.submit(ParticipantJoined(
            event_type=EventType.PARTICIPANT_JOINED,
            ts_ms=self._clock(),
            participant=participant,
        ))

    def _on_participant_removed(self, key: str, _value: Any) -> None:
        self.submit(ParticipantLeft(
            event_type=EventType.PARTICIPANT_LEFT,
            ts_ms=self._clock(),
            participant_id=key,
        ))

    def _on_room_status(self, value: Any) -> None:
        self.submit(RoomStatusChanged(
            event_type=EventType.ROOM_STATUS_CHANGED,
            ts_ms=self._clock(),
            status=value if isinstance(value, str) else None,
        ))

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------

    def _active(self) -> bool:
        return self.status in (ListenerStatus.CONNECTING, ListenerStatus.CONNECTED)

    async def _dispatch_peer(self, event: PeerEvent) -> None:
        await super()._dispatch_peer(event)
        state = self.peer_state(self.host_peer_id)
        if state is not None and self._active():
            if state.negotiation is NegotiationState.STABLE:
                self._set_status(ListenerStatus.CONNECTED)
            elif state.has_connection:
                self._set_status(ListenerStatus.CONNECTING)

    async def _on_peer_released(self, participant_id: str, reason: str) -> None:
        if reason in _LOCAL_RELEASE_REASONS:
            return
        if participant_id == self.host_peer_id and self._active():
            self._set_status(ListenerStatus.DISCONNECTED, reason=reason)

    async def _handle_room_event(self, event: Event) -> None:
        if isinstance(event, RoomStatusChanged):
            if event.status == SessionStatus.ENDED.value and (
                self._active() or self.status is ListenerStatus.DISCONNECTED
            ):
                await self._release("session_ended")
                self._set_status(ListenerStatus.ENDED)
            return

        if not self._active():
            return

        if isinstance(event, ParticipantJoined):
            self.participants[event.participant.participant_id] = event.participant
        elif isinstance(event, ParticipantLeft):
            self.participants.pop(event.participant_id, None)
            if event.participant_id == self.host_peer_id:
                await self.teardown_peer(self.host_peer_id, "host_left")
        elif isinstance(event, ParticipantUpdated):
            await self._on_own_record_changed(event.participant)

    async def _on_own_record_changed(self, participant: Participant | None) -> None:
        if participant is None:
            return
        self.participants[participant.participant_id] = participant

        if participant.can_speak and not self.can_speak:
            await self._enable_speaking()
        elif not participant.can_speak and self.can_speak:
            await self._disable_speaking()

    async def _enable_speaking(self) -> None:
        try:
            with timed("microphone_acquire", room_id=self.room_id, participant_id=self.local_id):
                stream = await self._media_source.acquire()
        except MediaAcquisitionError as exc:
            # Stay a listen-only participant
            self.log({
                "event_type": "MEDIA_ACQUISITION_FAILED",
                "reason": exc.reason,
                "message": str(exc),
            })
            return

        # Co-host microphone starts muted
        stream.set_enabled(False)
        self.local_stream = stream
        self.can_speak = True
        self.muted = True
        await self.channel.write_value(paths.muted(self.local_id), True)
        self.log({"event_type": "SPEAKING_ENABLED"})
        await self._dispatch_peer(self._start_round(send_audio=True))

    async def _disable_speaking(self) -> None:
        if self.local_stream is not None:
            self.local_stream.stop()
            self.local_stream = None
        self.can_speak = False
        self.muted = False
        self.log({"event_type": "SPEAKING_DISABLED"})
        await self._dispatch_peer(self._start_round(send_audio=False))

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def request_to_speak(self) -> str | None:
        """
        Ask the host for speaking rights.

        Returns the request key, or None when already speaking, inside the
        cooldown window, or when the write failed.
        """
        if not self._active() or self.can_speak:
            return None

        now_value = self._clock()
        if (
            self._last_speak_request_ms is not None
            and now_value - self._last_speak_request_ms < SPEAK_REQUEST_COOLDOWN_S * 1000
        ):
            self.log({"event_type": "SPEAK_REQUEST_COOLDOWN"})
            return None

        request = SpeakRequest(
            request_id="",
            participant_id=self.local_id,
            participant_name=self.display_name,
            ts_ms=now_value,
        )
        key = await self.channel.push_value(paths.SPEAK_REQUESTS, encode_signal(request))
        if key is not None:
            self._last_speak_request_ms = now_value
            self.log({"event_type": "SPEAK_REQUESTED", "request_id": key})
        return key

    async def set_muted(self, muted: bool) -> bool:
        """Mute/unmute the co-host microphone; mirrored into the presence record."""
        if not self.can_speak or self.local_stream is None:
            return False
        self.local_stream.set_enabled(not muted)
        self.muted = muted
        await self.channel.write_value(paths.muted(self.local_id), muted)
        return True

    def set_output_muted(self, muted: bool) -> None:
        self.playback.set_muted(muted)

    async def _release(self, reason: str) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()
        await self.teardown_all(reason)
        if self.local_stream is not None:
            self.local_stream.stop()
            self.local_stream = None
        self.can_speak = False
        self.playback.clear()

    async def leave(self) -> None:
        """Leave the room: remove presence and this listener's webrtc subtree."""
        async with self._lock:
            if self.status in (ListenerStatus.LEFT, ListenerStatus.IDLE):
                return
            await self._release("left")
            await self.channel.remove_value(paths.participant(self.local_id))
            await self.channel.remove_value(paths.peer(self.local_id))
            self._set_status(ListenerStatus.LEFT)
        await self.stop()
