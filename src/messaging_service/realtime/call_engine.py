"""Two-party WebRTC signaling over a pub/sub room.

Both sides run the same engine. ``assign_call_role`` picks the host (lesser
user id), which is the only side that ever offers, so the two peers cannot
offer at the same time. The room is named from the ordered pair, so both
compute it without coordination.

    Idle -> AcquiringMedia -> AwaitingPeer (host) | Dialing (caller)
         -> Negotiating -> Connected -> Ended
    any -> Failed(media_unavailable | negotiation_timeout | negotiation_failed)
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Callable, Coroutine

from pydantic import ValidationError as PayloadError

from messaging_service.application.exceptions import CallStateError, MediaUnavailableError
from messaging_service.application.ports.bus import ChannelFactory, PubSubChannel, Unsubscribe
from messaging_service.application.ports.media import (
    MediaDevices,
    MediaStream,
    PeerConnection,
    PeerConnectionFactory,
)
from messaging_service.config import settings
from messaging_service.domain.entities.call import CallSession, IceCandidate, SessionDescription
from messaging_service.domain.value_objects.enums import (
    CallFailure,
    CallRole,
    CallState,
    CallType,
    SignalType,
)
from messaging_service.domain.value_objects.topics import assign_call_role, call_room_name
from messaging_service.realtime.events import SignalPayload

logger = logging.getLogger(__name__)

_SIGNALS = tuple(SignalType)
_TERMINAL = (CallState.ENDED, CallState.FAILED)
_LIVE = (
    CallState.AWAITING_PEER,
    CallState.DIALING,
    CallState.NEGOTIATING,
    CallState.CONNECTED,
)


class CallSignalingEngine:
    def __init__(
        self,
        self_id: str,
        channels: ChannelFactory,
        media: MediaDevices,
        peers: PeerConnectionFactory,
        *,
        media_timeout: float | None = None,
        negotiation_timeout: float | None = None,
        on_state: Callable[[CallSession], None] | None = None,
    ) -> None:
        self.self_id = self_id
        self._channels = channels
        self._media = media
        self._peers = peers
        self._media_timeout = (
            settings.CALL_MEDIA_TIMEOUT_SECONDS if media_timeout is None else media_timeout
        )
        self._negotiation_timeout = (
            settings.CALL_NEGOTIATION_TIMEOUT_SECONDS
            if negotiation_timeout is None
            else negotiation_timeout
        )
        self._on_state = on_state

        self._session: CallSession | None = None
        self._attempt = 0
        self._stream: MediaStream | None = None
        self._pc: PeerConnection | None = None
        self._channel: PubSubChannel | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._timer: asyncio.Task[None] | None = None
        self._local_offer: SessionDescription | None = None
        self._remote_set = False
        self._track_live = False
        self._pending_ice: list[IceCandidate] = []
        self._closing = False
        self._background: set[asyncio.Task[None]] = set()

    @property
    def session(self) -> CallSession | None:
        return self._session

    @property
    def state(self) -> CallState:
        return self._session.state if self._session else CallState.IDLE

    async def start_call(self, peer_id: str, call_type: CallType = CallType.VOICE) -> CallSession:
        return await self._start(peer_id, call_type)

    async def answer(self, peer_id: str, call_type: CallType = CallType.VOICE) -> CallSession:
        """Accept an incoming call. The role still comes from the ids, not from who rang."""
        return await self._start(peer_id, call_type)

    async def decline(self, peer_id: str) -> None:
        if self._session is not None and self._session.peer_id == peer_id and self.state not in _TERMINAL:
            await self._leave(SignalType.DECLINE)
            return
        channel = self._channels.channel(call_room_name(self.self_id, peer_id))
        try:
            await channel.publish(SignalType.DECLINE, SignalPayload(sender=self.self_id).dump())
        finally:
            await channel.close()

    async def hang_up(self) -> None:
        if self._session is None or self.state in _TERMINAL:
            return
        await self._leave(SignalType.HANGUP)

    async def _start(self, peer_id: str, call_type: CallType) -> CallSession:
        if self._session is not None and self.state not in _TERMINAL:
            raise CallStateError(f"call already {self.state}")
        try:
            role = assign_call_role(self.self_id, peer_id)
        except ValueError as exc:
            raise CallStateError(str(exc)) from exc

        self._reset()
        self._attempt += 1
        attempt = self._attempt
        self._session = CallSession(
            room=call_room_name(self.self_id, peer_id),
            self_id=self.self_id,
            peer_id=peer_id,
            role=role,
            call_type=call_type,
            state=CallState.IDLE,
        )
        logger.info("Call %s as %s (%s)", self._session.room, role, call_type)
        self._set_state(CallState.ACQUIRING_MEDIA)

        try:
            stream = await asyncio.wait_for(
                self._media.acquire(audio=True, video=call_type == CallType.VIDEO),
                timeout=self._media_timeout,
            )
        except asyncio.TimeoutError:
            await self._fail(CallFailure.NEGOTIATION_TIMEOUT)
            return self._session
        except MediaUnavailableError as exc:
            logger.warning("Media unavailable for %s: %s", self._session.room, exc)
            await self._fail(CallFailure.MEDIA_UNAVAILABLE)
            return self._session

        if attempt != self._attempt or self.state in _TERMINAL:
            # Hung up while the device prompt was open.
            stream.stop()
            return self._session

        self._stream = stream
        pc = self._peers.create()
        pc.add_stream(stream)
        pc.on_ice_candidate(self._on_local_ice)
        pc.on_track(self._on_remote_track)
        self._pc = pc

        channel = self._channels.channel(self._session.room)
        self._channel = channel
        try:
            unsubscribe = await channel.subscribe(_SIGNALS, self._on_signal)
        except Exception:
            if attempt != self._attempt or self.state in _TERMINAL:
                return self._session
            logger.exception("Could not join room %s", self._session.room)
            await self._fail(CallFailure.NEGOTIATION_FAILED)
            return self._session

        if attempt != self._attempt or self.state in _TERMINAL:
            # Hung up while the room subscription was being confirmed.
            unsubscribe()
            await channel.close()
            return self._session
        self._unsubscribe = unsubscribe

        self._timer = asyncio.get_running_loop().create_task(self._negotiation_deadline(attempt))
        self._set_state(CallState.AWAITING_PEER if role == CallRole.HOST else CallState.DIALING)

        try:
            if role == CallRole.HOST:
                offer = await pc.create_offer()
                await pc.set_local_description(offer)
                self._local_offer = offer
                await self._publish(SignalType.OFFER, sdp=offer.to_payload())
            else:
                await self._publish(SignalType.JOIN)
        except Exception:
            logger.exception("Signaling failed in %s", self._session.room)
            await self._fail(CallFailure.NEGOTIATION_FAILED)
        return self._session

    async def _publish(self, signal: SignalType, **fields: Any) -> None:
        assert self._channel is not None and self._session is not None
        body = SignalPayload(sender=self.self_id, call_type=self._session.call_type, **fields)
        await self._channel.publish(signal, body.dump())

    async def _on_signal(self, event_type: str, data: dict[str, Any]) -> None:
        if self._pc is None or self._session is None or self.state in _TERMINAL:
            return
        try:
            signal = SignalType(event_type)
            payload = SignalPayload.model_validate(data)
        except (ValueError, PayloadError):
            logger.warning("Ignoring malformed %s signal in %s", event_type, self._session.room)
            return
        if payload.sender == self.self_id:
            # Our own publish, delivered back by the room.
            return

        try:
            if signal == SignalType.OFFER:
                await self._handle_offer(payload)
            elif signal == SignalType.ANSWER:
                await self._handle_answer(payload)
            elif signal == SignalType.ICE:
                await self._handle_ice(payload)
            elif signal == SignalType.JOIN:
                await self._handle_join()
            else:
                logger.info("Peer %s sent %s", payload.sender, signal)
                self._spawn(self._teardown(CallState.ENDED))
        except Exception:
            logger.exception("Failed to apply %s in %s", signal, self._session.room)
            self._spawn(self._fail(CallFailure.NEGOTIATION_FAILED))

    async def _handle_offer(self, payload: SignalPayload) -> None:
        assert self._pc is not None and self._session is not None
        if self._session.role == CallRole.HOST or self._remote_set or payload.sdp is None:
            return
        await self._pc.set_remote_description(SessionDescription.from_payload(payload.sdp))
        self._remote_set = True
        self._set_state(CallState.NEGOTIATING)
        await self._flush_ice()
        answer = await self._pc.create_answer()
        await self._pc.set_local_description(answer)
        await self._publish(SignalType.ANSWER, sdp=answer.to_payload())

    async def _handle_answer(self, payload: SignalPayload) -> None:
        assert self._pc is not None and self._session is not None
        if self._session.role == CallRole.CALLER or self._remote_set or payload.sdp is None:
            return
        await self._pc.set_remote_description(SessionDescription.from_payload(payload.sdp))
        self._remote_set = True
        self._set_state(CallState.NEGOTIATING)
        await self._flush_ice()

    async def _handle_ice(self, payload: SignalPayload) -> None:
        assert self._pc is not None
        if payload.candidate is None:
            return
        candidate = IceCandidate.from_payload(payload.candidate)
        if not self._remote_set:
            self._pending_ice.append(candidate)
            return
        await self._pc.add_ice_candidate(candidate)

    async def _handle_join(self) -> None:
        assert self._session is not None
        # The peer subscribed after our offer went out.
        if (
            self._session.role == CallRole.HOST
            and self.state == CallState.AWAITING_PEER
            and self._local_offer is not None
        ):
            await self._publish(SignalType.OFFER, sdp=self._local_offer.to_payload())

    async def _flush_ice(self) -> None:
        assert self._pc is not None
        pending, self._pending_ice = self._pending_ice, []
        for candidate in pending:
            await self._pc.add_ice_candidate(candidate)

    async def _on_local_ice(self, candidate: IceCandidate) -> None:
        if self.state not in _LIVE or self._channel is None:
            return
        await self._publish(SignalType.ICE, candidate=candidate.to_payload())

    async def _on_remote_track(self) -> None:
        self._track_live = True
        if self.state == CallState.NEGOTIATING:
            self._set_state(CallState.CONNECTED)

    async def _negotiation_deadline(self, attempt: int) -> None:
        await asyncio.sleep(self._negotiation_timeout)
        if attempt == self._attempt and self.state not in (CallState.CONNECTED, *_TERMINAL):
            logger.warning("Negotiation timed out in %s", self._session.room if self._session else "?")
            await self._fail(CallFailure.NEGOTIATION_TIMEOUT)

    async def _leave(self, signal: SignalType) -> None:
        # Detach first so nothing more is delivered into this call.
        self._detach()
        if self._channel is not None:
            try:
                await self._publish(signal)
            except Exception:
                logger.warning("Could not announce %s in %s", signal, self._channel.topic, exc_info=True)
        await self._teardown(CallState.ENDED)

    async def _fail(self, reason: CallFailure) -> None:
        if self._session is None or self.state in _TERMINAL or self._closing:
            return
        self._session = dataclasses.replace(self._session, failure=reason)
        await self._teardown(CallState.FAILED)

    async def _teardown(self, final: CallState) -> None:
        """Release everything, then report ``final``."""
        if self._session is None or self.state in _TERMINAL or self._closing:
            return
        self._closing = True
        self._detach()
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
        pc, self._pc = self._pc, None
        channel, self._channel = self._channel, None
        if pc is not None:
            await pc.close()
        self._set_state(final)
        if channel is not None:
            await channel.close()

    def _detach(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def _set_state(self, state: CallState) -> None:
        assert self._session is not None
        if self._session.state == state:
            return
        self._session = dataclasses.replace(self._session, state=state)
        logger.debug("Call %s -> %s", self._session.room, state)
        if state == CallState.NEGOTIATING and self._track_live:
            self._session = dataclasses.replace(self._session, state=CallState.CONNECTED)
        if self._session.state == CallState.CONNECTED and self._timer is not None:
            if self._timer is not asyncio.current_task():
                self._timer.cancel()
            self._timer = None
        if self._on_state is not None:
            self._on_state(self._session)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        # Teardown closes the channel whose listener is running this handler.
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _reset(self) -> None:
        self._stream = None
        self._pc = None
        self._channel = None
        self._unsubscribe = None
        self._timer = None
        self._local_offer = None
        self._remote_set = False
        self._track_live = False
        self._pending_ice = []
        self._closing = False

    async def wait_idle(self) -> None:
        """Wait for teardowns scheduled from signal handlers."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
