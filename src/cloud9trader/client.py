"""
Cloud9Trader WebSocket client with request correlation, topic subscriptions
and automatic reconnection.

Features:
- Public (key in query string) or private (HMAC-signed headers) connections
- One-shot requests correlated by generated request ids, with timeouts
- Topic subscriptions replayed after every reconnect
- Capped exponential reconnect backoff, retrying forever until stopped
"""

import asyncio
import json
import logging
import math
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union
from urllib.parse import quote

import websockets
from pydantic import BaseModel
from websockets.exceptions import ConnectionClosedError, WebSocketException
from websockets.protocol import State

from .auth import Cloud9Auth
from .config import DEFAULT_SOCKET_URL, ClientConfig
from .correlation import RequestIdFactory
from .emitter import EventEmitter, same_callable
from .errors import Cloud9ClientError
from .models import ConnectionState, ConnectionStatus, Status
from .reference_data import ReferenceDataAPI
from .subscriptions import AUTO_SUBSCRIBED_TOPICS, Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)

AUTH_REJECTED_MESSAGE = "401 Authentication rejected by server. Check that your key and secret are correct"
NOT_CONNECTED_MESSAGE = "Socket is not connected"

BACKOFF_BASE = 1.9805
BACKOFF_MAX_EXPONENT = 4


def reconnect_delay(attempts: int) -> int:
    """Seconds to wait before reconnect attempt number ``attempts``."""
    exponent = math.floor(min(attempts / 2, BACKOFF_MAX_EXPONENT))
    return round(BACKOFF_BASE ** exponent)


def _encode_json(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", exclude_none=True)
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(repr(obj) + " is not JSON serializable")


class Client(EventEmitter):
    """
    Cloud9Trader socket client.

    All methods must be called from the event loop the client runs on.
    Lifecycle events: "connected", "disconnected", "status" (one of the
    Status values) and "error" (human-readable message). Topic pushes are
    emitted under the topic name, request replies under their request id.
    """

    def __init__(
        self,
        key: str,
        secret: Optional[str] = None,
        host: Optional[str] = None,
        auto_subscribed: Iterable[str] = AUTO_SUBSCRIBED_TOPICS,
        request_timeout: float = 3.0,
        submit_timeout: float = 5.0,
        ping_interval: Optional[float] = 20.0,
        ping_timeout: Optional[float] = 20.0,
        reference_data: Optional[ReferenceDataAPI] = None,
    ):
        """
        Initialize the client. Nothing connects until start() is called.

        Args:
            key: API key
            secret: Base64 API secret; when given the connection is signed
            host: Socket URL (defaults to the public Cloud9Trader endpoint)
            auto_subscribed: Topics pushed without explicit subscribe frames
            request_timeout: Default seconds to wait for a request reply
            submit_timeout: Default seconds to wait for a submit reply
            ping_interval: Seconds between keepalive pings
            ping_timeout: Seconds to wait for a pong
            reference_data: HTTP helper for instruments and historical prices
        """
        super().__init__()
        if not key:
            raise Cloud9ClientError("Please provide API key")

        self.key = key
        self.host = host or DEFAULT_SOCKET_URL
        self.auth: Optional[Cloud9Auth] = Cloud9Auth(key, secret) if secret else None
        self.request_timeout = request_timeout
        self.submit_timeout = submit_timeout
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.reference_data = reference_data or ReferenceDataAPI()

        # Connection state
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.should_reconnect = True
        self._socket: Optional[Any] = None
        self._connection_task: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._last_connected: Optional[datetime] = None
        self._last_error: Optional[str] = None

        self._request_ids = RequestIdFactory()
        self._subscriptions = SubscriptionRegistry(auto_subscribed)
        self._deferred_subscriptions: List[Subscription] = []

        logger.info(f"Initialized Cloud9Trader client for {self.host} ({'private' if self.auth else 'public'})")

    @classmethod
    def from_env(cls, config: Optional[ClientConfig] = None, **kwargs) -> "Client":
        """
        Create client instance from environment variables.

        Required environment variables:
        - C9T_API_KEY: The API key

        Optional: C9T_API_SECRET for private connections, plus the endpoint
        and timeout settings read by ClientConfig.
        """
        config = config or ClientConfig()
        if not config.API_KEY:
            raise Cloud9ClientError("C9T_API_KEY environment variable is required")

        options = dict(
            key=config.API_KEY,
            secret=config.API_SECRET,
            host=config.SOCKET_URL,
            request_timeout=config.REQUEST_TIMEOUT,
            submit_timeout=config.SUBMIT_TIMEOUT,
            ping_interval=config.PING_INTERVAL,
            ping_timeout=config.PING_TIMEOUT,
            reference_data=ReferenceDataAPI(config.INSTRUMENTS_URL, config.HISTORICAL_PRICE_URL),
        )
        options.update(kwargs)
        return cls(**options)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Open the socket in the background. No-op while a connection attempt or socket exists."""
        if self._connection_task is not None:
            return

        self.should_reconnect = True
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

        self.state = ConnectionState.CONNECTING
        self._connection_task = asyncio.get_running_loop().create_task(self._run_connection())

    async def stop(self) -> None:
        """Close the socket, cancel any pending reconnect and release the HTTP session."""
        logger.info("Stopping Cloud9Trader client")
        self.should_reconnect = False

        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

        socket, task = self._socket, self._connection_task
        if socket is not None:
            await socket.close()
        if task is not None and task is not asyncio.current_task():
            if socket is None:
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self.reference_data.close()

    def reconnect(self) -> None:
        """Schedule start() after the backoff delay for the current attempt count."""
        seconds = reconnect_delay(self.reconnect_attempts)
        logger.info(
            f"Cloud9Trader socket attempting reconnect {self.reconnect_attempts} "
            f"in {seconds} second{'s' if seconds > 1 else ''}"
        )
        self.emit("status", Status.WAITING_FOR_RECONNECT.value)

        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
        self._reconnect_timer = asyncio.get_running_loop().call_later(seconds, self._reconnect_now)

    def _reconnect_now(self) -> None:
        self._reconnect_timer = None
        self.reconnect_attempts += 1
        self.start()

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def get_connection_status(self) -> ConnectionStatus:
        """Current connection status snapshot."""
        return ConnectionStatus(
            connected=self.is_connected(),
            state=self.state,
            reconnect_attempts=self.reconnect_attempts,
            last_connected=self._last_connected,
            error_message=self._last_error,
            topics=self._subscriptions.topics(),
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _connection_target(self) -> Tuple[str, Optional[dict]]:
        """URL and handshake headers for a new connection attempt."""
        if self.auth is not None:
            return self.host, self.auth.create_auth_headers("/")
        return f"{self.host}?key={quote(self.key, safe='')}", None

    async def _run_connection(self) -> None:
        """Single connection lifecycle: connect, listen until closed, then hand over to reconnect."""
        try:
            url, headers = self._connection_target()
            logger.info(f"Connecting to Cloud9Trader socket: {self.host}")
            try:
                self._socket = await websockets.connect(
                    url,
                    additional_headers=headers,
                    ping_interval=self.ping_interval,
                    ping_timeout=self.ping_timeout,
                    close_timeout=10,
                )
            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                self._on_error(e)
                return

            self._on_open()

            try:
                async for message in self._socket:
                    self._on_message(message)
            except ConnectionClosedError as e:
                logger.warning(f"Cloud9Trader socket closed abnormally: {e}")
            except WebSocketException as e:
                self._on_error(e)
        finally:
            self._on_close()

    def _on_open(self) -> None:
        logger.info("Cloud9Trader socket connected")
        self.emit("status", Status.CONNECTED.value)
        self._set_connected(True)
        self.reconnect_attempts = 0

    def _on_close(self) -> None:
        logger.info("Cloud9Trader socket disconnected")
        self.emit("status", Status.DISCONNECTED.value)
        self._set_connected(False)
        self._socket = None
        self._connection_task = None
        if self.should_reconnect:
            self.reconnect()

    def _on_error(self, error: BaseException) -> None:
        message = self._describe_error(error)
        self._last_error = message
        self.emit("status", Status.ERROR.value)
        self.emit("error", message)
        logger.error(f"Cloud9Trader socket error: {message}")

    def _on_message(self, raw: Union[str, bytes]) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.error(f"Cloud9Trader socket could not parse incoming message: {raw!r}")
            return

        if not isinstance(frame, list) or not frame or not isinstance(frame[0], str):
            logger.error(f"Cloud9Trader socket received malformed message: {raw!r}")
            return

        event, *args = frame
        logger.debug(f"Received {event} with {len(args)} args")
        self.emit(event, *args)

    def _set_connected(self, connected: bool) -> None:
        was_connected = self.state is ConnectionState.CONNECTED
        self.state = ConnectionState.CONNECTED if connected else ConnectionState.DISCONNECTED
        if not was_connected and connected:
            self._last_connected = datetime.now(timezone.utc)
            self.emit("connected")
        elif was_connected and not connected:
            self.emit("disconnected")
            self._reset_subscriptions()

    @staticmethod
    def _describe_error(error: BaseException) -> str:
        response = getattr(error, "response", None)
        status_code = getattr(response, "status_code", None) or getattr(error, "status_code", None)
        if status_code == 401:
            return AUTH_REJECTED_MESSAGE
        return str(error) or type(error).__name__

    def send(self, *args: Any) -> None:
        """
        Send args as one JSON array frame.

        Dropped with a warning if the client was never started; deferred
        until the next "connected" event if the socket is not open yet.
        """
        if self._connection_task is None:
            logger.warning(f"Cloud9Trader socket could not send - socket initializing {args}")
            return

        socket = self._socket
        if socket is None or socket.state is not State.OPEN:
            state = socket.state.name if socket is not None else State.CONNECTING.name
            logger.warning(f"Cloud9Trader socket could not send - socket is {state} {args}")
            self.once("connected", lambda: self.send(*args))
            return

        frame = json.dumps(args, default=_encode_json)
        logger.debug(f"Sending frame: {frame}")
        task = asyncio.ensure_future(socket.send(frame))
        task.add_done_callback(self._on_send_done)

    @staticmethod
    def _on_send_done(task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Cloud9Trader socket send failed: {error}")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def request(self, topic: str, handler: Callable, timeout: Optional[float] = None) -> None:
        """
        Request a one-off snapshot of topic.

        handler receives (error, payload) from the server, or the single
        argument TIMEOUT if no reply arrives in time. Issued while
        disconnected, the request waits for the next connection.
        """
        if not self.is_connected():
            self.once("connected", lambda: self.request(topic, handler, timeout))
            return

        request_id = self._request_ids.next_id()
        self.send("request", topic, request_id)
        self.wait_for(request_id, handler, self.request_timeout if timeout is None else timeout)

    def submit(self, kind: str, payload: Any, handler: Callable, timeout: Optional[float] = None) -> None:
        """
        Submit an item (e.g. an order) and wait for its acknowledgement.

        Submissions are never queued: while disconnected handler is called
        immediately with NOT_CONNECTED_MESSAGE.
        """
        if not self.is_connected():
            logger.warning(f"Cloud9Trader socket could not submit {kind} - {NOT_CONNECTED_MESSAGE}")
            handler(NOT_CONNECTED_MESSAGE)
            return

        request_id = self._request_ids.next_id()
        self.send("submit", kind, payload, request_id)
        self.wait_for(request_id, handler, self.submit_timeout if timeout is None else timeout)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, listener: Callable) -> Subscription:
        """
        Receive pushes for topic until unsubscribed.

        Returns a Subscription token for unsubscribe(). Subscribing the same
        listener to the same topic again returns the existing token.
        """
        existing = self._find_subscription(topic, listener)
        if existing is not None:
            return existing

        subscription = Subscription(topic, listener)
        self._subscribe(subscription)
        return subscription

    def _subscribe(self, subscription: Subscription) -> None:
        if subscription in self._deferred_subscriptions:
            self._deferred_subscriptions.remove(subscription)
        subscription.deferred = None

        if not self.is_connected():
            subscription.deferred = self.once("connected", lambda: self._subscribe(subscription))
            self._deferred_subscriptions.append(subscription)
            return

        if self._subscriptions.add(subscription):
            self.send("subscribe", subscription.topic)
        subscription.handle = self.listen(subscription.topic, subscription.listener)

    def unsubscribe(self, topic_or_subscription: Union[str, Subscription], listener: Optional[Callable] = None) -> None:
        """Stop a subscription, given its token or its topic and listener."""
        if isinstance(topic_or_subscription, Subscription):
            subscription = topic_or_subscription
            topic = subscription.topic
        else:
            topic = topic_or_subscription
            subscription = self._find_subscription(topic, listener)

        if subscription is not None and subscription.pending:
            self.off(subscription.deferred)
            subscription.deferred = None
            self._deferred_subscriptions.remove(subscription)
            logger.debug(f"Cancelled pending subscription to {topic}")
            return

        if topic not in self._subscriptions:
            logger.warning(f"Cloud9Trader socket - No existing subscriptions for {topic}")
            return

        if subscription is None or subscription not in self._subscriptions.get(topic):
            logger.warning(f"Cloud9Trader socket - Listener is not subscribed to {topic}")
            return

        if self._subscriptions.remove(subscription):
            self.send("unsubscribe", topic)
        # The dispatcher registration may already be gone via off()
        if subscription.handle is not None:
            self.off(subscription.handle)
            subscription.handle = None

    def _find_subscription(self, topic: str, listener: Optional[Callable]) -> Optional[Subscription]:
        existing = self._subscriptions.find(topic, listener)
        if existing is not None:
            return existing
        for subscription in self._deferred_subscriptions:
            if subscription.topic == topic and same_callable(subscription.listener, listener):
                return subscription
        return None

    def _reset_subscriptions(self) -> None:
        """Move every live subscription back to pending so it is replayed on reconnect."""
        if self.is_connected():
            return
        for subscription in self._subscriptions.drain():
            if subscription.handle is not None:
                self.off(subscription.handle)
                subscription.handle = None
            self._subscribe(subscription)

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    async def fetch_instruments(self, callback: Optional[Callable] = None) -> Optional[Any]:
        """Fetch the full instrument list over HTTP."""
        return await self.reference_data.fetch_instruments(callback=callback)

    async def fetch_historical_price(self, instrument_id: str, interval: str, start_date, end_date=None,
                                     callback: Optional[Callable] = None) -> Optional[Any]:
        """Fetch a historical price series over HTTP."""
        return await self.reference_data.fetch_historical_price(
            instrument_id, interval, start_date, end_date, callback=callback
        )
