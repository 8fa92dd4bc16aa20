"""
RPC gateway — Solana node access for the monitor.

HTTP JSON-RPC (httpx) for point lookups: getAccountInfo, getTransaction.
WebSocket JSON-RPC (websockets) for long-lived subscriptions:
accountSubscribe and logsSubscribe (mentions filter), with unsubscribe.

The websocket connection is owned by one background task that reconnects
with exponential backoff and re-subscribes every live handle, so handles
returned to callers survive provider disconnects. Every failure surfaces as
ProviderUnavailable; callers treat it as retryable on the next sweep tick.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from itertools import count
from typing import Any, Awaitable, Callable, Protocol

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from wallet_sentinel.config.env import mask_url
from wallet_sentinel.config.settings import Settings
from wallet_sentinel.core.exceptions import ProviderUnavailable
from wallet_sentinel.sentinel_logging import get_logger, short_id
from wallet_sentinel.solana_listener.models import (
    AccountInfo,
    AccountNotification,
    LogNotification,
    SubscriptionHandle,
    SubscriptionKind,
    TransactionInfo,
)
from wallet_sentinel.utils.rate_limit import RateLimiter

logger = get_logger(__name__)

NotificationHandler = Callable[[Any], "Awaitable[None] | None"]

DEFAULT_WS_PING_INTERVAL = 30.0
DEFAULT_WS_PING_TIMEOUT = 10.0
DEFAULT_RECONNECT_MIN_SEC = 1.0
DEFAULT_RECONNECT_MAX_SEC = 60.0
_WS_CLOSE_TIMEOUT = 5.0

_SUBSCRIBE_METHODS = {
    SubscriptionKind.ACCOUNT: ("accountSubscribe", "accountUnsubscribe"),
    SubscriptionKind.LOGS: ("logsSubscribe", "logsUnsubscribe"),
}


class RpcGateway(Protocol):
    """What the monitor needs from a blockchain node."""

    async def get_account_info(self, address: str) -> AccountInfo | None: ...

    async def get_transaction(self, signature: str) -> TransactionInfo | None: ...

    async def subscribe_account_changes(
        self, address: str, handler: NotificationHandler
    ) -> SubscriptionHandle: ...

    async def subscribe_logs(
        self, address: str, handler: NotificationHandler
    ) -> SubscriptionHandle: ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None: ...

    async def close(self) -> None: ...


@dataclass
class GatewayConfig:
    """Connection settings for SolanaRpcGateway."""

    rpc_url: str = "https://api.mainnet-beta.solana.com"
    ws_url: str = "wss://api.mainnet-beta.solana.com"
    commitment: str = "confirmed"
    request_timeout_sec: float = 15.0
    subscribe_timeout_sec: float = 10.0
    rpc_rate_per_sec: float = 8.0
    reconnect_min_sec: float = DEFAULT_RECONNECT_MIN_SEC
    reconnect_max_sec: float = DEFAULT_RECONNECT_MAX_SEC
    ws_ping_interval: float | None = DEFAULT_WS_PING_INTERVAL
    ws_ping_timeout: float | None = DEFAULT_WS_PING_TIMEOUT

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayConfig":
        return cls(
            rpc_url=settings.solana_rpc_url,
            ws_url=settings.solana_ws_url,
            commitment=settings.commitment,
            request_timeout_sec=settings.rpc_request_timeout_sec,
            subscribe_timeout_sec=settings.subscribe_timeout_sec,
            rpc_rate_per_sec=settings.rpc_rate_per_sec,
        )


@dataclass
class _Subscription:
    handle: SubscriptionHandle
    method: str
    unsubscribe_method: str
    params: list[Any]
    handler: NotificationHandler
    server_id: int | None = None


class SolanaRpcGateway:
    """
    Solana RPC adapter: httpx for requests, one websocket for subscriptions.

    Use as an async context manager or call close() on shutdown.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        if not config.ws_url.strip():
            raise ValueError("ws_url must be non-empty")
        self._config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout_sec)
        )
        self._rate_limiter = RateLimiter(config.rpc_rate_per_sec)
        self._ids = count(1)
        self._handle_ids = count(1)
        self._subscriptions: dict[int, _Subscription] = {}
        self._server_to_handle: dict[int, int] = {}
        self._pending: dict[int, asyncio.Future[Any]] = {}
        # Subscribe requests in flight, keyed by request id
        self._pending_subs: dict[int, _Subscription] = {}
        self._handler_tasks: set[asyncio.Task[Any]] = set()
        self._ws: Any = None
        self._connected = asyncio.Event()
        self._stop = asyncio.Event()
        self._conn_task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> "SolanaRpcGateway":
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def start(self) -> None:
        """Start the websocket connection task (idempotent)."""
        if self._conn_task is None or self._conn_task.done():
            self._stop.clear()
            self._conn_task = asyncio.create_task(self._run_connection())

    async def close(self) -> None:
        """Stop reconnecting, close the websocket and the HTTP client."""
        self._stop.set()
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug("gateway_ws_close_failed", error=str(e))
        if self._conn_task is not None:
            self._conn_task.cancel()
            try:
                await self._conn_task
            except (asyncio.CancelledError, Exception):
                pass
            self._conn_task = None
        for task in list(self._handler_tasks):
            task.cancel()
        self._fail_pending("gateway closed")
        if self._owns_client:
            await self._http.aclose()
        logger.info("gateway_closed", subscriptions=len(self._subscriptions))

    # ------------------------------------------------------------------
    # HTTP JSON-RPC
    # ------------------------------------------------------------------

    async def _rpc_call(self, method: str, params: list[Any]) -> Any:
        """Perform one JSON-RPC call over HTTP; raise ProviderUnavailable on transport or RPC error."""
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        await self._rate_limiter.acquire()
        try:
            resp = await self._http.post(self._config.rpc_url, json=body)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            raise ProviderUnavailable(method, f"{type(e).__name__}: {e}") from e
        if not isinstance(data, dict):
            raise ProviderUnavailable(method, "response is not a JSON object")
        if "error" in data:
            err = data["error"] or {}
            message = err.get("message", err) if isinstance(err, dict) else err
            code = err.get("code") if isinstance(err, dict) else None
            raise ProviderUnavailable(method, f"Solana RPC error: {message} (code={code})")
        return data.get("result")

    async def get_account_info(self, address: str) -> AccountInfo | None:
        """Current account snapshot; None when the account does not exist."""
        result = await self._rpc_call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self._config.commitment}],
        )
        if not isinstance(result, dict):
            raise ProviderUnavailable("getAccountInfo", "missing result")
        return AccountInfo.from_rpc_value(result.get("value"))

    async def get_transaction(self, signature: str) -> TransactionInfo | None:
        """Full transaction by signature; None when the node does not have it (yet)."""
        result = await self._rpc_call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self._config.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            return None
        return TransactionInfo.from_rpc_result(signature, result)

    # ------------------------------------------------------------------
    # WebSocket subscriptions
    # ------------------------------------------------------------------

    async def subscribe_account_changes(
        self, address: str, handler: NotificationHandler
    ) -> SubscriptionHandle:
        params = [address, {"encoding": "base64", "commitment": self._config.commitment}]
        return await self._subscribe(SubscriptionKind.ACCOUNT, address, params, handler)

    async def subscribe_logs(
        self, address: str, handler: NotificationHandler
    ) -> SubscriptionHandle:
        params = [{"mentions": [address]}, {"commitment": self._config.commitment}]
        return await self._subscribe(SubscriptionKind.LOGS, address, params, handler)

    async def _subscribe(
        self,
        kind: SubscriptionKind,
        address: str,
        params: list[Any],
        handler: NotificationHandler,
    ) -> SubscriptionHandle:
        method, unsubscribe_method = _SUBSCRIBE_METHODS[kind]
        handle = SubscriptionHandle(handle_id=next(self._handle_ids), kind=kind, address=address)
        sub = _Subscription(
            handle=handle,
            method=method,
            unsubscribe_method=unsubscribe_method,
            params=params,
            handler=handler,
        )
        self._subscriptions[handle.handle_id] = sub
        try:
            await self._ws_request(method, params, subscription=sub)
        except ProviderUnavailable:
            self._subscriptions.pop(handle.handle_id, None)
            raise
        server_id = sub.server_id
        if server_id is None:
            self._subscriptions.pop(handle.handle_id, None)
            raise ProviderUnavailable(method, "subscription id missing from response")
        logger.info(
            "gateway_subscribed",
            wallet_id=short_id(address),
            kind=kind.value,
            handle_id=handle.handle_id,
            subscription_id=server_id,
        )
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Release a handle. Local state is dropped first; provider errors still raise."""
        sub = self._subscriptions.pop(handle.handle_id, None)
        if sub is None:
            return
        if sub.server_id is None:
            return
        self._server_to_handle.pop(sub.server_id, None)
        if not self.connected:
            # Provider already dropped every subscription with the socket
            return
        await self._ws_request(sub.unsubscribe_method, [sub.server_id])
        logger.info(
            "gateway_unsubscribed",
            wallet_id=short_id(handle.address),
            kind=handle.kind.value,
            handle_id=handle.handle_id,
        )

    async def _ws_request(
        self,
        method: str,
        params: list[Any],
        subscription: _Subscription | None = None,
    ) -> Any:
        """
        Send one request over the websocket and wait for its response.

        For subscribe requests the receive loop binds the provider id to the
        subscription before any later message is read.
        """
        self.start()
        timeout = self._config.subscribe_timeout_sec
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(method, "websocket not connected") from e
        ws = self._ws
        if ws is None:
            raise ProviderUnavailable(method, "websocket not connected")
        req_id = next(self._ids)
        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        if subscription is not None:
            self._pending_subs[req_id] = subscription
        try:
            await ws.send(json.dumps({"jsonrpc": "2.0", "id": req_id, "method": method, "params": params}))
            return await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(method, f"no response within {timeout}s") from e
        except ConnectionClosed as e:
            raise ProviderUnavailable(method, f"websocket closed: {e}") from e
        finally:
            self._pending.pop(req_id, None)
            self._pending_subs.pop(req_id, None)

    async def _run_connection(self) -> None:
        """Connect, re-subscribe, receive; reconnect with backoff until close()."""
        backoff = self._config.reconnect_min_sec
        run_id = 0
        while not self._stop.is_set():
            run_id += 1
            try:
                logger.info("gateway_connecting", run_id=run_id, url=mask_url(self._config.ws_url))
                async with websockets.connect(
                    self._config.ws_url,
                    ping_interval=self._config.ws_ping_interval,
                    ping_timeout=self._config.ws_ping_timeout,
                    close_timeout=_WS_CLOSE_TIMEOUT,
                ) as ws:
                    self._ws = ws
                    backoff = self._config.reconnect_min_sec
                    receiver = asyncio.create_task(self._receive_loop(ws))
                    self._connected.set()
                    await self._resubscribe_all()
                    logger.info(
                        "gateway_connected",
                        run_id=run_id,
                        subscriptions=len(self._subscriptions),
                    )
                    await receiver
            except asyncio.CancelledError:
                break
            except ConnectionClosed as e:
                logger.warning("gateway_disconnected", run_id=run_id, code=e.code, reason=e.reason)
            except Exception as e:
                logger.exception("gateway_connection_error", run_id=run_id, error=str(e))
            finally:
                self._connected.clear()
                self._ws = None
                self._server_to_handle.clear()
                for sub in self._subscriptions.values():
                    sub.server_id = None
                self._fail_pending("websocket disconnected")

            if self._stop.is_set():
                break
            logger.info("gateway_reconnect", run_id=run_id, backoff_sec=round(backoff, 1))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=backoff)
            except asyncio.TimeoutError:
                pass
            backoff = min(backoff * 2, self._config.reconnect_max_sec)
        logger.info("gateway_connection_stopped", run_id=run_id)

    async def _resubscribe_all(self) -> None:
        """Restore provider subscriptions for every live handle after (re)connect."""
        for sub in list(self._subscriptions.values()):
            if sub.server_id is not None or self._in_flight(sub):
                continue
            try:
                await self._ws_request(sub.method, sub.params, subscription=sub)
            except ProviderUnavailable as e:
                logger.warning(
                    "gateway_resubscribe_failed",
                    wallet_id=short_id(sub.handle.address),
                    kind=sub.handle.kind.value,
                    error=str(e),
                )
                continue

    def _in_flight(self, sub: _Subscription) -> bool:
        return any(pending is sub for pending in self._pending_subs.values())

    def _bind_server_id(self, sub: _Subscription, server_id: Any) -> None:
        if not isinstance(server_id, int):
            logger.warning(
                "gateway_bad_subscription_id",
                wallet_id=short_id(sub.handle.address),
                subscription_id=repr(server_id),
            )
            return
        if self._subscriptions.get(sub.handle.handle_id) is not sub:
            # Released while the request was in flight
            return
        sub.server_id = server_id
        self._server_to_handle[server_id] = sub.handle.handle_id

    async def _receive_loop(self, ws: Any) -> None:
        """Route responses to pending requests and notifications to handlers."""
        async for raw in ws:
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue
            req_id = msg.get("id")
            if req_id is not None:
                sub = self._pending_subs.pop(req_id, None)
                if sub is not None and "error" not in msg:
                    self._bind_server_id(sub, msg.get("result"))
                fut = self._pending.get(req_id)
                if fut is not None and not fut.done():
                    if "error" in msg:
                        err = msg["error"] or {}
                        fut.set_exception(
                            ProviderUnavailable("websocket request", str(err.get("message", err)))
                        )
                    else:
                        fut.set_result(msg.get("result"))
                continue
            method = msg.get("method")
            if method in ("accountNotification", "logsNotification"):
                self._route_notification(method, msg.get("params") or {})

    def _route_notification(self, method: str, params: dict[str, Any]) -> None:
        sub_id = params.get("subscription")
        handle_id = self._server_to_handle.get(sub_id) if sub_id is not None else None
        sub = self._subscriptions.get(handle_id) if handle_id is not None else None
        if sub is None:
            return
        result = params.get("result") or {}
        slot = (result.get("context") or {}).get("slot")
        value = result.get("value")
        address = sub.handle.address
        try:
            if method == "accountNotification":
                payload: Any = AccountNotification(
                    address=address,
                    slot=slot,
                    account=AccountInfo.from_rpc_value(value),
                )
            else:
                value = value or {}
                payload = LogNotification(
                    address=address,
                    signature=str(value.get("signature") or ""),
                    slot=slot,
                    logs=tuple(str(line) for line in value.get("logs") or []),
                    err=value.get("err"),
                )
        except Exception as e:
            logger.warning(
                "gateway_notification_malformed",
                wallet_id=short_id(address),
                method=method,
                error=str(e),
            )
            return
        self._dispatch(sub.handler, payload)

    def _dispatch(self, handler: NotificationHandler, payload: Any) -> None:
        """Invoke a handler; async handlers run as tracked tasks."""
        try:
            result = handler(payload)
        except Exception as e:
            logger.exception("gateway_handler_failed", error=str(e))
            return
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task[Any]) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("gateway_handler_failed", error=str(task.exception()))

    def _fail_pending(self, reason: str) -> None:
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(ProviderUnavailable("websocket request", reason))
        self._pending.clear()
        self._pending_subs.clear()
