from __future__ import annotations
import asyncio
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from shared.event_kinds import EventKind, is_presence_kind
from shared.frames import ChatEvent, decode, encode_chat
from shared.log import get_logger
from .config import DEFAULT_DISPLAY_NAME, ClientConfig
from .presence import PresenceReconciler
from .state import TRANSITIONS, ChatContext, ChatView, ConnectionState, PresenceEntry

logger = get_logger(__name__)


EventHandler = Callable[[ChatEvent], Awaitable[None]]
StateHandler = Callable[[ConnectionState], Awaitable[None]]
Connector = Callable[..., Awaitable[Any]]


# ========================================
#     SIGNALS POSTED TO THE DISPATCHER
# ========================================
# Every signal carries the epoch (connection attempt number) it belongs to.

@dataclass(frozen=True)
class _Opened:
    epoch: int

@dataclass(frozen=True)
class _Frame:
    epoch: int
    raw: Union[str, bytes]

@dataclass(frozen=True)
class _TransportError:
    epoch: int
    detail: str

@dataclass(frozen=True)
class _Closed:
    epoch: int

@dataclass(frozen=True)
class _Snapshot:
    epoch: int
    entries: List[PresenceEntry]

_Signal = Union[_Opened, _Frame, _TransportError, _Closed, _Snapshot]


class ConnectionManager:
    """
    Owns the single WebSocket connection to the chat backend.

    Transport callbacks (open, frame, error, close) and presence poll results
    are posted onto one queue and applied by a single dispatcher task, so
    state changes never interleave and frames are handled in arrival order.

    connect() and disconnect() only request a change. The Connected and
    Disconnected states are entered when the transport reports open and
    close. There is no automatic reconnect.
    """

    def __init__(
        self,
        config: ClientConfig,
        context: Optional[ChatContext] = None,
        *,
        connector: Optional[Connector] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self.context = context if context is not None else ChatContext()
        self.presence = PresenceReconciler(config, self.context.presence, http_client=http_client)
        self.websocket: Optional[Any] = None
        self.display_name = DEFAULT_DISPLAY_NAME
        self.handlers: Dict[str, EventHandler] = {}
        self.default_handler: Optional[EventHandler] = None
        self.state_handlers: List[StateHandler] = []

        self._connector: Connector = connector or websockets.connect
        self._events: asyncio.Queue[_Signal] = asyncio.Queue()
        self._state_events: Dict[ConnectionState, asyncio.Event] = {}
        self._epoch = 0
        self._closed_epoch = 0
        self._dispatcher: Optional[asyncio.Task] = None
        self._transport_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None

    # ----------------------------------------
    #   Read-only surface
    # ----------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self.context.state

    @property
    def self_id(self) -> Optional[str]:
        return self.context.timeline.self_id

    def view(self) -> ChatView:
        return self.context.view()

    def on(self, kind: Union[str, EventKind], handler: EventHandler) -> None:
        """Call `handler` for every event of this kind, after it is in the timeline."""
        key = kind.value if isinstance(kind, EventKind) else kind
        self.handlers[key] = handler

    def set_default_handler(self, handler: Optional[EventHandler]) -> None:
        self.default_handler = handler

    def on_state_change(self, handler: StateHandler) -> None:
        self.state_handlers.append(handler)

    # ----------------------------------------
    #   Operations
    # ----------------------------------------

    async def connect(self, display_name: Optional[str] = None) -> bool:
        """
        Open the realtime channel as `display_name`.

        Only valid while Disconnected; returns False (and does nothing)
        otherwise. Returns as soon as the state is Connecting.
        """
        if self.state is not ConnectionState.DISCONNECTED:
            logger.debug("connect() ignored while %s", self.state.value)
            return False

        self._ensure_dispatcher()
        self.display_name = (display_name or "").strip() or DEFAULT_DISPLAY_NAME
        self._epoch += 1
        self.context.timeline.begin_connection()
        url = self.config.ws_url(self.display_name)

        await self._set_state(ConnectionState.CONNECTING)
        epoch = self._epoch
        self._transport_task = asyncio.create_task(self._run_transport(epoch, url))
        # A task cancelled before its first step never reaches its finally block
        self._transport_task.add_done_callback(lambda _task: self._post_closed(epoch))
        return True

    async def disconnect(self) -> None:
        """Ask the transport to close. The state changes once it reports closure."""
        if self.state is ConnectionState.DISCONNECTED:
            return
        if self.websocket is not None:
            try:
                await self.websocket.close()
            except (WebSocketException, OSError) as e:
                logger.error("Error closing connection: %s", e, extra={"epoch": self._epoch})
        elif self._transport_task is not None:
            # Still handshaking; abandon the attempt
            self._transport_task.cancel()

    async def send(self, content: str) -> bool:
        """
        Send a chat message. Silently does nothing unless Connected and
        `content` has non-whitespace text. Returns True if a frame went out.
        """
        if self.state is not ConnectionState.CONNECTED or self.websocket is None:
            return False
        text = content.strip()
        if not text:
            return False
        try:
            await self.websocket.send(encode_chat(text, self.display_name))
        except ConnectionClosed as e:
            logger.warning("Send failed: %s", e, extra={"epoch": self._epoch})
            self._post(_TransportError(self._epoch, str(e)))
            return False
        return True

    async def wait_for_state(self, state: ConnectionState, timeout: Optional[float] = None) -> None:
        if self.state is state:
            return
        event = self._state_events.setdefault(state, asyncio.Event())
        await asyncio.wait_for(event.wait(), timeout)

    async def drain(self) -> None:
        """Wait until every posted signal has been applied."""
        await self._events.join()

    async def aclose(self) -> None:
        await self.disconnect()
        transport = self._transport_task
        if transport is not None:
            with suppress(asyncio.CancelledError):
                await transport
        if self._dispatcher is not None:
            await self.drain()
        for task in (self._poll_task, self._dispatcher):
            if task is not None:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._poll_task = None
        self._dispatcher = None

    async def __aenter__(self) -> ConnectionManager:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ----------------------------------------
    #   Transport side (producer)
    # ----------------------------------------

    def _post(self, signal: _Signal) -> None:
        self._events.put_nowait(signal)

    async def _run_transport(self, epoch: int, url: str) -> None:
        try:
            try:
                websocket = await self._connector(
                    url,
                    open_timeout=self.config.open_timeout,
                    ping_interval=self.config.ping_interval,
                )
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning("Could not open %s: %s", url, e, extra={"epoch": epoch})
                self._post(_TransportError(epoch, str(e) or type(e).__name__))
                return

            self.websocket = websocket
            self._post(_Opened(epoch))
            try:
                async for raw in websocket:
                    self._post(_Frame(epoch, raw))
            except ConnectionClosedError as e:
                logger.warning("Connection lost: %s", e, extra={"epoch": epoch})
                self._post(_TransportError(epoch, str(e)))
        finally:
            self._post_closed(epoch)

    def _post_closed(self, epoch: int) -> None:
        if self._closed_epoch >= epoch:
            return
        self._closed_epoch = epoch
        self._post(_Closed(epoch))

    def _on_snapshot(self, epoch: int, entries: List[PresenceEntry]) -> None:
        self._post(_Snapshot(epoch, entries))

    # ----------------------------------------
    #   Dispatcher side (single consumer)
    # ----------------------------------------

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._dispatch_loop())

    async def _dispatch_loop(self) -> None:
        while True:
            signal = await self._events.get()
            try:
                await self._handle(signal)
            except Exception:
                logger.exception("Failed to handle %s", type(signal).__name__, extra={"epoch": signal.epoch})
            finally:
                self._events.task_done()

    async def _handle(self, signal: _Signal) -> None:
        if signal.epoch != self._epoch:
            logger.debug("Dropping %s from an earlier connection", type(signal).__name__, extra={"epoch": signal.epoch})
            return

        if isinstance(signal, _Opened):
            await self._on_open()
        elif isinstance(signal, _Frame):
            await self._on_frame(signal.raw)
        elif isinstance(signal, _TransportError):
            await self._emit(ChatEvent.error(f"WebSocket error: {signal.detail}" if signal.detail else "WebSocket error"))
        elif isinstance(signal, _Closed):
            await self._on_close()
        elif isinstance(signal, _Snapshot):
            if self.state is ConnectionState.CONNECTED:
                self.presence.apply_snapshot(signal.epoch, signal.entries)

    async def _on_open(self) -> None:
        if self.state is not ConnectionState.CONNECTING:
            return
        await self._set_state(ConnectionState.CONNECTED)
        self.presence.activate(self._epoch)
        self._poll_task = asyncio.create_task(self.presence.poll_forever(self._epoch, self._on_snapshot))
        await self._emit(ChatEvent.system("Connected"))

    async def _on_frame(self, raw: Union[str, bytes]) -> None:
        event = decode(raw)
        if event.kind == EventKind.WELCOME.value and event.actor_id:
            self.context.timeline.assign_self_id(event.actor_id)
        elif is_presence_kind(event.kind):
            # Presence itself only changes on the next snapshot
            logger.debug("%s %s", event.actor_name, event.kind, extra={"user_id": event.actor_id, "event_kind": event.kind})
        await self._emit(event)

    async def _on_close(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        self.presence.deactivate()
        self.websocket = None
        self._transport_task = None
        await self._set_state(ConnectionState.DISCONNECTED)
        await self._emit(ChatEvent.system("Disconnected"))

    async def _emit(self, event: ChatEvent) -> None:
        self.context.timeline.append(event)
        handler = self.handlers.get(event.kind, self.default_handler)
        if handler is None:
            return
        try:
            await handler(event)
        except Exception:
            logger.exception("Event handler failed", extra={"event_kind": event.kind})

    async def _set_state(self, new_state: ConnectionState) -> None:
        current = self.context.state
        if new_state is current:
            return
        if new_state not in TRANSITIONS[current]:
            raise RuntimeError(f"Illegal connection transition {current.value} -> {new_state.value}")
        self.context.state = new_state
        for state, event in self._state_events.items():
            if state is new_state:
                event.set()
            else:
                event.clear()
        logger.info("Connection %s -> %s", current.value, new_state.value, extra={"epoch": self._epoch})

        for handler in list(self.state_handlers):
            try:
                await handler(new_state)
            except Exception:
                logger.exception("State handler failed")
