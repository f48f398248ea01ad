"""Build state notifications pushed to the auto-reload websocket."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, Iterable, Iterator, Protocol

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientMessage:
    """A message for the browser: a reload, or a build failure with its reason."""

    reason: str | None = None

    @classmethod
    def reload(cls) -> ClientMessage:
        return cls()

    @classmethod
    def build_failure(cls, reason: str) -> ClientMessage:
        return cls(reason)

    @property
    def is_reload(self) -> bool:
        return self.reason is None

    def to_json(self) -> str:
        if self.is_reload:
            payload: dict[str, Any] = {"type": "reload"}
        else:
            payload = {"type": "buildFailure", "data": {"reason": self.reason}}
        return json.dumps(payload, separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str) -> ClientMessage:
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise ValueError("client message must be an object")
        kind = payload.get("type")
        if kind == "reload":
            return cls.reload()
        if kind == "buildFailure":
            data = payload.get("data")
            if not isinstance(data, dict) or not isinstance(data.get("reason"), str):
                raise ValueError("buildFailure message needs a string reason")
            return cls.build_failure(data["reason"])
        raise ValueError(f"unknown client message type: {kind!r}")


@dataclass(frozen=True)
class State:
    """The outcome of the latest build: ok, or failed with a reason."""

    reason: str | None = None

    @classmethod
    def ok(cls) -> State:
        return cls()

    @classmethod
    def failed(cls, reason: str) -> State:
        return cls(reason)

    @property
    def is_ok(self) -> bool:
        return self.reason is None


@dataclass(frozen=True)
class CloseFrame:
    """A close request received from the browser."""

    reason: Any = None


class ClientSocket(Protocol):
    async def recv(self) -> Any:
        """Next message; None when the connection is gone, CloseFrame on close."""

    async def send(self, message: Any) -> None: ...

    async def close(self) -> None: ...


class _MessageFilter:
    """Turns states into messages, dropping an initial ok state."""

    def __init__(self) -> None:
        self._first = True

    def __call__(self, state: State) -> ClientMessage | None:
        if state.is_ok:
            if self._first:
                # A reload right after connecting would loop; failures still go out.
                self._first = False
                log.debug("Discarding first reload trigger")
                return None
            return ClientMessage.reload()
        return ClientMessage.build_failure(state.reason)


def messages(states: Iterable[State]) -> Iterator[ClientMessage]:
    """Yield the messages a client sees for a sequence of build states."""
    translate = _MessageFilter()
    for state in states:
        message = translate(state)
        if message is not None:
            yield message


async def _next_state(iterator):
    return await iterator.__anext__()


async def handle_ws(websocket: ClientSocket, states: AsyncIterable[State]) -> None:
    """Forward build states to a websocket until either side goes away."""
    log.debug("autoreload websocket opened")
    translate = _MessageFilter()
    iterator = states.__aiter__()
    recv_task = asyncio.ensure_future(websocket.recv())
    state_task = asyncio.ensure_future(_next_state(iterator))
    try:
        while True:
            done, _ = await asyncio.wait(
                {recv_task, state_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if recv_task in done:
                try:
                    received = recv_task.result()
                except Exception as err:
                    log.debug("autoreload websocket closed: %s", err)
                    return
                if received is None:
                    log.debug("lost websocket")
                    return
                if isinstance(received, CloseFrame):
                    log.debug("received close from browser: %r", received.reason)
                    with contextlib.suppress(Exception):
                        await websocket.send(received)
                    with contextlib.suppress(Exception):
                        await websocket.close()
                    return
                log.debug("received message from browser: %r (ignoring)", received)
                recv_task = asyncio.ensure_future(websocket.recv())

            if state_task in done:
                try:
                    state = state_task.result()
                except StopAsyncIteration:
                    log.debug("state watcher closed")
                    return
                log.debug("Build state changed: %r", state)
                message = translate(state)
                if message is not None:
                    try:
                        await websocket.send(message.to_json())
                    except Exception as err:
                        log.info("autoload websocket failed to send: %s", err)
                        break
                state_task = asyncio.ensure_future(_next_state(iterator))
    finally:
        for task in (recv_task, state_task):
            if not task.done():
                task.cancel()
        log.debug("exiting WS handler")