"""
Client connection lifecycle manager.

Owns exactly one relay connection for a client process: the handshake, a
receive loop dispatching server events to listeners, a heartbeat while
connected, and bounded reconnection after a failure. Rooms joined before a
reconnect are not re-joined; the application decides what to subscribe to
after ``on_connect`` fires again.
"""

import asyncio
import inspect
import json
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config.models import ClientConfig
from ..logging.enhanced_logging_config import get_logger
from .backoff import ReconnectPolicy
from .connection_state_machine import ClientConnectionStateMachine

logger = get_logger(__name__)

# Synthetic events dispatched to listeners alongside server events
CONNECT = "connect"
DISCONNECT = "disconnect"
TERMINAL = "terminal"

EventCallback = Callable[[dict[str, Any]], Any]


class Transport(Protocol):
    """The subset of a websockets client connection the manager relies on."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]


class ConnectionLifecycleManager:
    """
    Connect, reconnect and dispatch for one relay client.

    Emitters are fire-and-forget: while not connected they are dropped with a
    debug log rather than queued.
    """

    def __init__(
        self,
        url: str,
        token: str | None = None,
        *,
        policy: ReconnectPolicy | None = None,
        heartbeat_interval: float | None = 20.0,
        open_timeout: float = 10.0,
        connector: Connector | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_connect: Callable[[], Any] | None = None,
        on_disconnect: Callable[[], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
        on_terminal: Callable[[], Any] | None = None,
    ) -> None:
        self.url = url
        self.token = token
        self.policy = policy or ReconnectPolicy()
        self.heartbeat_interval = heartbeat_interval
        self.open_timeout = open_timeout
        self._connector = connector or self._default_connector
        self._sleep = sleep
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.on_error = on_error
        self.on_terminal = on_terminal

        self.client_id = str(uuid.uuid4())
        self.state = ClientConnectionStateMachine(self.client_id)
        self.connection_id: str | None = None
        self.user_id: str | None = None

        self._listeners: dict[str, list[EventCallback]] = defaultdict(list)
        self._transport: Transport | None = None
        self._supervisor: asyncio.Task[None] | None = None
        self._listener_tasks: set[asyncio.Future[Any]] = set()
        self._connected = asyncio.Event()

    @classmethod
    def from_config(cls, config: ClientConfig, token: str | None = None, **kwargs: Any) -> "ConnectionLifecycleManager":
        return cls(
            config.url,
            token,
            policy=ReconnectPolicy.from_config(config),
            heartbeat_interval=config.heartbeat_interval,
            open_timeout=config.open_timeout,
            **kwargs,
        )

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self.state.is_connected

    # --- lifecycle -------------------------------------------------------

    def connect(self) -> None:
        """
        Start connecting in the background.

        A no-op while a previous connect is still connecting, connected or
        backing off. Must be called from a running event loop.
        """
        if self._supervisor is not None and not self._supervisor.done():
            logger.debug("Connect ignored, already running", client_id=self.client_id, state=self.state.state_id)
            return
        self._supervisor = asyncio.create_task(self._supervise(), name=f"collab-client-{self.client_id}")

    async def disconnect(self) -> None:
        """
        Close the connection deliberately.

        Cancels a pending backoff immediately and never schedules a retry.
        """
        supervisor, self._supervisor = self._supervisor, None
        was_connected = self.is_connected
        if supervisor is not None and not supervisor.done():
            supervisor.cancel()
            try:
                await supervisor
            except asyncio.CancelledError:
                pass
        await self._cancel_listener_tasks()
        if self.state.current_state != self.state.disconnected:
            self.state.shutdown()
        logger.info("Client disconnected", client_id=self.client_id, was_connected=was_connected)
        if was_connected:
            self._notify(self.on_disconnect)
            self._dispatch({"event_type": DISCONNECT, "data": {"reason": "client_disconnect"}})

    async def wait_until_connected(self, timeout: float | None = None) -> bool:
        """Wait for the next successful handshake; False on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except TimeoutError:
            return False
        return True

    async def _supervise(self) -> None:
        try:
            await self._connect_loop()
        except Exception as e:  # noqa: BLE001  # Reason: unexpected faults end the lifecycle in a terminal state
            logger.error("Connection supervisor failed", client_id=self.client_id, error=str(e), exc_info=True)
            was_connected = self.state.is_connected
            if self.state.current_state != self.state.disconnected:
                self.state.shutdown()
            self._notify(self.on_error, e)
            if was_connected:
                self._notify(self.on_disconnect)
                self._dispatch({"event_type": DISCONNECT, "data": {"reason": "connection_lost"}})
            self._notify(self.on_terminal)
            self._dispatch({"event_type": TERMINAL, "data": {"attempts": 0, "error": str(e)}})

    async def _connect_loop(self) -> None:
        attempt = 0
        self.state.start_connect()
        while True:
            try:
                transport = await self._connector(self._build_url())
            except (OSError, TimeoutError, WebSocketException) as e:
                self.state.handshake_failed(error=e)
                self._notify(self.on_error, e)
                attempt += 1
                if not await self._back_off(attempt):
                    return
                continue

            attempt = 0
            error = await self._run_session(transport)
            self.state.connection_lost(error=error)
            self._notify(self.on_disconnect)
            self._dispatch({"event_type": DISCONNECT, "data": {"reason": "connection_lost"}})
            attempt += 1
            if not await self._back_off(attempt):
                return

    async def _back_off(self, attempt: int) -> bool:
        """Sleep before attempt ``attempt``; give up when the policy is exhausted."""
        delay = self.policy.delay_for(attempt)
        if delay is None:
            self.state.give_up()
            self._notify(self.on_terminal)
            self._dispatch({"event_type": TERMINAL, "data": {"attempts": attempt - 1}})
            return False
        logger.info("Reconnecting after delay", client_id=self.client_id, attempt=attempt, delay=delay)
        await self._sleep(delay)
        self.state.retry()
        return True

    async def _run_session(self, transport: Transport) -> Exception | None:
        """Pump one connected transport until it closes. Returns the closing error, if any."""
        self._transport = transport
        self.state.handshake_succeeded()
        self._connected.set()
        logger.info("Client connected", client_id=self.client_id, url=self.url)
        self._notify(self.on_connect)
        self._dispatch({"event_type": CONNECT, "data": {}})

        heartbeat = None
        if self.heartbeat_interval:
            heartbeat = asyncio.create_task(self._heartbeat_loop(self.heartbeat_interval))
        try:
            while True:
                raw = await transport.recv()
                self._handle_frame(raw)
        except ConnectionClosed as e:
            logger.info("Relay closed the connection", client_id=self.client_id, code=e.rcvd.code if e.rcvd else None)
            return e
        except OSError as e:
            logger.warning("Relay connection failed", client_id=self.client_id, error=str(e))
            return e
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                await asyncio.gather(heartbeat, return_exceptions=True)
            self._transport = None
            self._connected.clear()
            try:
                await transport.close()
            except (OSError, WebSocketException) as e:
                logger.debug("Transport close failed", client_id=self.client_id, error=str(e))

    async def _heartbeat_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if not await self._send({"type": "heartbeat"}):
                return

    # --- events ----------------------------------------------------------

    def on(self, event_type: str, callback: EventCallback) -> Callable[[], None]:
        """
        Register a listener for one event type.

        Server events are keyed by ``event_type``; ``connect``, ``disconnect``
        and ``terminal`` are dispatched by the manager itself.

        Returns:
            A callable that removes the listener
        """
        self._listeners[event_type].append(callback)

        def unsubscribe() -> None:
            try:
                self._listeners[event_type].remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            event = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Dropping undecodable frame", client_id=self.client_id, error=str(e))
            return
        if not isinstance(event, dict):
            logger.warning("Dropping non-object frame", client_id=self.client_id)
            return
        if event.get("event_type") == "welcome":
            data = event.get("data") or {}
            self.connection_id = data.get("connectionId")
            self.user_id = data.get("userId")
        self._dispatch(event)

    def _dispatch(self, event: dict[str, Any]) -> None:
        event_type = event.get("event_type") or event.get("type")
        for callback in list(self._listeners.get(event_type, ())):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._listener_tasks.add(task)
                    task.add_done_callback(partial(self._on_listener_done, event_type))
            except Exception as e:  # noqa: BLE001  # Reason: one listener must not break dispatch to others
                logger.error("Event listener failed", event_type=event_type, error=str(e), exc_info=True)

    def _on_listener_done(self, event_type: str | None, task: asyncio.Future[Any]) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Event listener failed", event_type=event_type, error=str(error), exc_info=error)

    async def _cancel_listener_tasks(self) -> None:
        tasks = list(self._listener_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _notify(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:  # noqa: BLE001  # Reason: application callbacks must not kill the supervisor
            logger.error("Lifecycle callback failed", client_id=self.client_id, error=str(e), exc_info=True)

    # --- emitters --------------------------------------------------------

    async def join_document(self, document_id: str) -> bool:
        return await self._send({"type": "join-room", "documentId": document_id})

    async def leave_document(self, document_id: str) -> bool:
        return await self._send({"type": "leave-room", "documentId": document_id})

    async def emit_edit(self, document_id: str, content: Any) -> bool:
        return await self._send({"type": "edit", "documentId": document_id, "content": content})

    async def emit_cursor(self, document_id: str, position: dict[str, Any] | list[Any]) -> bool:
        return await self._send({"type": "cursor-update", "documentId": document_id, "position": position})

    async def _send(self, message: dict[str, Any]) -> bool:
        transport = self._transport
        if transport is None or not self.state.is_connected:
            logger.debug("Not connected, dropping message", client_id=self.client_id, message_type=message["type"])
            return False
        try:
            await transport.send(json.dumps(message))
        except (ConnectionClosed, OSError) as e:
            logger.debug("Send failed", client_id=self.client_id, message_type=message["type"], error=str(e))
            return False
        return True

    # --- transport -------------------------------------------------------

    def _build_url(self) -> str:
        if not self.token:
            return self.url
        parts = urlsplit(self.url)
        query = [(k, v) for k, v in parse_qsl(parts.query) if k != "token"]
        query.append(("token", self.token))
        return urlunsplit(parts._replace(query=urlencode(query)))

    async def _default_connector(self, url: str) -> Transport:
        return await websocket_connect(url, open_timeout=self.open_timeout)

    def get_stats(self) -> dict[str, Any]:
        stats = self.state.get_stats()
        stats.update(
            {
                "url": self.url,
                "connection_id": self.connection_id,
                "user_id": self.user_id,
                "listeners": sum(len(v) for v in self._listeners.values()),
            }
        )
        return stats
