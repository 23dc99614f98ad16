"""
Host Peer Session Manager.

Responsibilities:
- Acquire the microphone and seed the room (status=waiting, host presence)
- Track the roster; first listener flips the session to live
- Subscribe to each listener's offer and ICE candidates
- Drop duplicate offers by message id
- Keep the FIFO speak-request queue; approve/deny/revoke speaking rights
- Mirror waiting/live/ended and the participant count into the directory
- End: release everything and schedule removal of the room subtree

Every channel callback only decodes and enqueues; all state changes happen
while the runtime processes the queue or under its processing lock.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Callable, Sequence

from adapters.rtc.base import PeerConnectionFactory
from directory.models import PodcastSession, SessionStatus
from directory.service import SessionDirectory
from media.local import MediaAcquisitionError, MediaSource
from media.playback import PlaybackRegistry
from negotiation.dedup import ProcessedMessages
from negotiation.events import (
    Event,
    EventType,
    OfferReceived,
    ParticipantJoined,
    ParticipantLeft,
    RemoteCandidateReceived,
    SpeakRequestsChanged,
)
from negotiation.runtime import NegotiationRuntime
from observability.logger import now_ms
from observability.metrics import timed
from protocol import paths
from protocol.presence import Participant, Role, encode_participant, try_decode_participant
from protocol.signals import IceCandidate, Offer, SignalType, SpeakRequest, try_decode_signal
from session.errors import SessionSetupError
from session.status import HostStatus
from signaling.channel import SignalingChannel
from signaling.store import SignalingStore, Unsubscribe
from spec import HOST_AVATAR, NEGOTIATION_TIMEOUT_MS, SIGNALING_CLEANUP_GRACE_S


class HostSessionManager(NegotiationRuntime):
    """One host == one live session; one peer connection per listener."""

    def __init__(
        self,
        *,
        session: PodcastSession,
        directory: SessionDirectory,
        store: SignalingStore,
        peer_factory: PeerConnectionFactory,
        media_source: MediaSource,
        host_name: str | None = None,
        playback: PlaybackRegistry | None = None,
        ice_servers: Sequence[dict[str, Any]] = (),
        negotiation_timeout_ms: int = NEGOTIATION_TIMEOUT_MS,
        cleanup_grace_s: float = SIGNALING_CLEANUP_GRACE_S,
        processed: ProcessedMessages | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(
            room_id=session.room_id,
            local_id=session.host_id or f"host-{clock()}",
            role=Role.HOST,
            channel=SignalingChannel(store, session.room_id),
            peer_factory=peer_factory,
            playback=playback,
            ice_servers=ice_servers,
            negotiation_timeout_ms=negotiation_timeout_ms,
            processed=processed,
            clock=clock,
        )
        self.session = session
        self.host_name = host_name or session.host_name
        self.status = HostStatus.IDLE
        self.participants: dict[str, Participant] = {}
        self.speak_requests: list[SpeakRequest] = []
        self.muted = False
        self.cleanup_task: asyncio.Task[None] | None = None

        self._directory = directory
        self._media_source = media_source
        self._cleanup_grace_s = cleanup_grace_s
        self._subscriptions: list[Unsubscribe] = []
        self._peer_subscriptions: dict[str, list[Unsubscribe]] = {}

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _set_status(self, status: HostStatus, **details: Any) -> None:
        if status is self.status:
            return
        self.log({
            "event_type": "HOST_STATUS_CHANGED",
            "from_status": self.status.value,
            "to_status": status.value,
            "details": details,
        })
        self.status = status

    def listener_ids(self) -> set[str]:
        return {pid for pid, p in self.participants.items() if p.is_listener}

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """
        Verify the session, acquire the microphone, seed the room.

        Raises:
            SessionSetupError (fatal; status becomes ERROR, no retry).
        """
        async with self._lock:
            if self.status is not HostStatus.IDLE:
                raise SessionSetupError("session already opened", reason="already_open")
            self._set_status(HostStatus.LOADING)

            session = await self._directory.get(self.session.session_id)
            if session is None:
                self._setup_failed("Podcast not found", "not_found")
            elif not session.approved:
                self._setup_failed("Podcast is not approved", "not_approved")
            elif session.status is SessionStatus.ENDED:
                self._setup_failed("This podcast has ended", "ended")
            self.session = session

            try:
                with timed("microphone_acquire", room_id=self.room_id, participant_id=self.local_id):
                    self.local_stream = await self._media_source.acquire()
            except MediaAcquisitionError as exc:
                self._set_status(HostStatus.ERROR, reason=exc.reason)
                raise SessionSetupError(str(exc), reason=exc.reason) from exc

            host = Participant(
                participant_id=self.local_id,
                name=self.host_name,
                role=Role.HOST,
                avatar=HOST_AVATAR,
                joined_at_ms=self._clock(),
                can_speak=True,
            )
            self.participants[host.participant_id] = host

            await self.channel.update_values({
                paths.STATUS: SessionStatus.WAITING.value,
                paths.participant(host.participant_id): encode_participant(host),
            })
            await self._mirror("mark_waiting", self._directory.mark_waiting(
                session.session_id, host_id=self.local_id, host_name=self.host_name,
            ))

            self._subscriptions.extend([
                self.channel.subscribe_child_added(paths.PARTICIPANTS, self._on_participant_added),
                self.channel.subscribe_child_removed(paths.PARTICIPANTS, self._on_participant_removed),
                self.channel.subscribe_value(paths.SPEAK_REQUESTS, self._on_speak_requests),
            ])
            self._set_status(HostStatus.WAITING)

    def _setup_failed(self, message: str, reason: str) -> None:
        self._set_status(HostStatus.ERROR, reason=reason)
        raise SessionSetupError(message, reason=reason)

    # ------------------------------------------------------------------
    # Channel callbacks (decode + enqueue only)
    # ------------------------------------------------------------------

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

    def _on_speak_requests(self, value: Any) -> None:
        requests: list[SpeakRequest] = []
        for key, raw in (value or {}).items():
            request = try_decode_signal(
                raw, key=key, expected=SignalType.SPEAK_REQUEST,
                room_id=self.room_id, path=paths.speak_request(key),
            )
            if isinstance(request, SpeakRequest):
                requests.append(request)
        requests.sort(key=lambda r: (r.ts_ms, r.request_id))
        self.submit(SpeakRequestsChanged(
            event_type=EventType.SPEAK_REQUESTS_CHANGED,
            ts_ms=self._clock(),
            requests=tuple(requests),
        ))

    def _offer_handler(self, participant_id: str) -> Callable[[Any], None]:
        def on_offer(value: Any) -> None:
            if value is None:
                return
            offer = try_decode_signal(
                value, expected=SignalType.OFFER,
                room_id=self.room_id, path=paths.offer(participant_id),
            )
            if not isinstance(offer, Offer):
                return
            if offer.sender_id != participant_id:
                self.log({
                    "event_type": "OFFER_SENDER_MISMATCH",
                    "participant_id": participant_id,
                    "sender_id": offer.sender_id,
                })
                return
            if not self._processed.check_and_mark(offer.message_id):
                self.log({
                    "event_type": "OFFER_DUPLICATE_DROPPED",
                    "participant_id": participant_id,
                    "message_id": offer.message_id,
                })
                return
            self.submit(OfferReceived(
                event_type=EventType.OFFER_RECEIVED,
                ts_ms=self._clock(),
                participant_id=participant_id,
                message_id=offer.message_id,
                sdp=offer.sdp,
            ))
        return on_offer

    def _candidate_handler(self, participant_id: str) -> Callable[[str, Any], None]:
        def on_candidate(key: str, value: Any) -> None:
            candidate = try_decode_signal(
                value, key=key, expected=SignalType.ICE_CANDIDATE,
                room_id=self.room_id, path=paths.listener_candidates(participant_id),
            )
            if not isinstance(candidate, IceCandidate):
                return
            self.submit(RemoteCandidateReceived(
                event_type=EventType.REMOTE_CANDIDATE_RECEIVED,
                ts_ms=self._clock(),
                participant_id=participant_id,
                candidate=candidate,
            ))
        return on_candidate

    # ------------------------------------------------------------------
    # Room events
    # ------------------------------------------------------------------

    async def _handle_room_event(self, event: Event) -> None:
        if self.status not in (HostStatus.WAITING, HostStatus.LIVE):
            self.log({
                "event_type": "ROOM_EVENT_IGNORED",
                "source_event": event.event_type.value,
                "status": self.status.value,
            })
            return

        if isinstance(event, ParticipantJoined):
            await self._on_joined(event.participant)
        elif isinstance(event, ParticipantLeft):
            await self._on_left(event.participant_id)
        elif isinstance(event, SpeakRequestsChanged):
            self.speak_requests = list(event.requests)

    async def _on_joined(self, participant: Participant) -> None:
        pid = participant.participant_id
        known = pid in self.participants
        self.participants[pid] = participant

        if not participant.is_listener or known:
            return

        self.log({"event_type": "PARTICIPANT_JOINED", "participant_id": pid})
        self._peer_subscriptions[pid] = [
            self.channel.subscribe_value(paths.offer(pid), self._offer_handler(pid)),
            self.channel.subscribe_child_added(
                paths.listener_candidates(pid), self._candidate_handler(pid)
            ),
        ]

        if self.status is HostStatus.WAITING:
            await self.channel.write_value(paths.STATUS, SessionStatus.LIVE.value)
            await self._mirror("mark_live", self._directory.mark_live(self.session.session_id))
            self._set_status(HostStatus.LIVE, first_listener=pid)

        await self._mirror_count()

    async def _on_left(self, participant_id: str) -> None:
        if participant_id == self.local_id:
            return
        if self.participants.pop(participant_id, None) is None:
            return

        self.log({"event_type": "PARTICIPANT_LEFT", "participant_id": participant_id})
        for unsubscribe in self._peer_subscriptions.pop(participant_id, []):
            unsubscribe()
        await self.teardown_peer(participant_id, "participant_left")
        self.forget_peer(participant_id)
        for request in [r for r in self.speak_requests if r.participant_id == participant_id]:
            await self._drop_request(request)
        await self._mirror_count()

    async def _mirror_count(self) -> None:
        await self._mirror("set_participant_count", self._directory.set_participant_count(
            self.session.session_id, len(self.listener_ids()),
        ))

    async def _mirror(self, operation: str, call: Any) -> None:
        """Directory writes are advisory: failures are logged, never raised."""
        try:
            await call
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self.log({
                "event_type": "DIRECTORY_MIRROR_FAILED",
                "operation": operation,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    # ------------------------------------------------------------------
    # Speak requests
    # ------------------------------------------------------------------

    def _find_request(self, request_id: str) -> SpeakRequest | None:
        for request in self.speak_requests:
            if request.request_id == request_id:
                return request
        return None

    async def _drop_request(self, request: SpeakRequest) -> None:
        await self.channel.remove_value(paths.speak_request(request.request_id))
        if request in self.speak_requests:
            self.speak_requests.remove(request)

    async def approve_speak(self, request_id: str) -> bool:
        """
        Grant speaking rights; the listener renegotiates with its microphone.

        A request from a participant who already left is discarded without
        touching the (removed) presence record.
        """
        async with self._lock:
            request = self._find_request(request_id)
            if request is None:
                return False
            pid = request.participant_id
            if pid not in self.participants:
                await self._drop_request(request)
                self.log({"event_type": "SPEAK_REQUEST_STALE", "participant_id": pid, "request_id": request_id})
                return False
            await self.channel.write_value(paths.can_speak(pid), True)
            await self._drop_request(request)
            self.participants[pid] = replace(self.participants[pid], can_speak=True)
            self.log({"event_type": "SPEAK_APPROVED", "participant_id": pid, "request_id": request_id})
            return True

    async def deny_speak(self, request_id: str) -> bool:
        async with self._lock:
            request = self._find_request(request_id)
            if request is None:
                return False
            await self._drop_request(request)
            self.log({
                "event_type": "SPEAK_DENIED",
                "participant_id": request.participant_id,
                "request_id": request_id,
            })
            return True

    async def revoke_speak(self, participant_id: str) -> None:
        """Withdraw speaking rights and tear the connection down."""
        async with self._lock:
            if participant_id not in self.participants:
                return
            await self.channel.write_value(paths.can_speak(participant_id), False)
            self.participants[participant_id] = replace(
                self.participants[participant_id], can_speak=False
            )
            self.log({"event_type": "SPEAK_REVOKED", "participant_id": participant_id})
            await self.teardown_peer(participant_id, "speak_revoked")

    # ------------------------------------------------------------------
    # Local audio
    # ------------------------------------------------------------------

    async def set_muted(self, muted: bool) -> None:
        """Toggle the outbound microphone track without renegotiating."""
        if self.local_stream is not None:
            self.local_stream.set_enabled(not muted)
        self.muted = muted
        await self.channel.write_value(paths.muted(self.local_id), muted)

    def set_output_muted(self, muted: bool) -> None:
        """Mute every inbound playback element."""
        self.playback.set_muted(muted)

    # ------------------------------------------------------------------
    # Leave / end
    # ------------------------------------------------------------------

    def _unsubscribe_all(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()
        for subs in self._peer_subscriptions.values():
            for unsubscribe in subs:
                unsubscribe()
        self._peer_subscriptions.clear()

    async def _release(self, reason: str) -> None:
        if self.local_stream is not None:
            self.local_stream.stop()
        await self.teardown_all(reason)
        self._peers.clear()
        self.playback.clear()
        self._unsubscribe_all()

    async def leave(self) -> None:
        """Leave without ending: release resources, drop the host presence record."""
        async with self._lock:
            if self.status in (HostStatus.ENDED, HostStatus.LEFT):
                return
            await self._release("host_left")
            await self.channel.remove_value(paths.participant(self.local_id))
            self._set_status(HostStatus.LEFT)
        await self.stop()

    async def end(self) -> None:
        """
        End the session for everyone.

        Stops local tracks, closes every connection, clears playback, marks
        the room and the directory ended, and schedules (does not await)
        removal of the room subtree after the grace delay.
        """
        async with self._lock:
            if self.status in (HostStatus.ENDED, HostStatus.LEFT):
                return
            await self._release("session_ended")
            await self.channel.write_value(paths.STATUS, SessionStatus.ENDED.value)
            await self._mirror("mark_ended", self._directory.mark_ended(self.session.session_id))
            self._set_status(HostStatus.ENDED)
            self.cleanup_task = asyncio.create_task(self._remove_room_after(self._cleanup_grace_s))
        await self.stop()

    async def _remove_room_after(self, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        removed = await self.channel.remove_value()
        self.log({"event_type": "ROOM_REMOVED", "removed": removed})
