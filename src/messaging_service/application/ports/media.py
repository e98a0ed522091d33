from __future__ import annotations

from typing import Any, Callable, Coroutine, Protocol

from messaging_service.domain.entities.call import IceCandidate, SessionDescription

IceCallback = Callable[[IceCandidate], Coroutine[Any, Any, None]]
TrackCallback = Callable[[], Coroutine[Any, Any, None]]


class MediaStream(Protocol):
    def stop(self) -> None:
        """Release the capture devices behind this stream."""
        ...


class MediaDevices(Protocol):
    async def acquire(self, *, audio: bool, video: bool) -> MediaStream:
        """Raise MediaUnavailableError on denied permission or missing device."""
        ...


class PeerConnection(Protocol):
    def add_stream(self, stream: MediaStream) -> None: ...

    def on_ice_candidate(self, callback: IceCallback) -> None: ...

    def on_track(self, callback: TrackCallback) -> None: ...

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> None: ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None: ...

    async def close(self) -> None: ...


class PeerConnectionFactory(Protocol):
    def create(self) -> PeerConnection: ...
