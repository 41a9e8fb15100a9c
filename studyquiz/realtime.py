"""
Realtime change notifications as message-passing subscriptions.

subscribe(topic, table, event, filter) returns a Subscription: a thread-safe
stream of ChangeEvents plus cancel(). Events are signals to re-fetch the
affected view; consumers never patch state from the payload.

The Supabase transport runs the async realtime client on its own event loop
thread, since the Streamlit script thread is synchronous.
"""
import asyncio
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from supabase import acreate_client

logger = logging.getLogger(__name__)

SUBSCRIBE_TIMEOUT_SECONDS = 10


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str  # INSERT, UPDATE or DELETE
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)


def parse_change_payload(table: str, payload: Dict[str, Any]) -> ChangeEvent:
    """Normalize a postgres_changes payload; realtime versions nest it under 'data' or not."""
    data = payload.get("data", payload) or {}
    return ChangeEvent(
        table=data.get("table") or table,
        event=(data.get("type") or data.get("eventType") or "").upper(),
        new=data.get("record") or data.get("new") or {},
        old=data.get("old_record") or data.get("old") or {},
    )


class Subscription:
    def __init__(self, topic: str, close: Optional[Callable[[], None]] = None):
        self.topic = topic
        self._events: "queue.Queue[ChangeEvent]" = queue.Queue()
        self._close = close
        self.cancelled = False

    def push(self, event: ChangeEvent) -> None:
        if not self.cancelled:
            self._events.put(event)

    def drain(self) -> List[ChangeEvent]:
        """All events received since the last drain, oldest first. Never blocks."""
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._close is not None:
            try:
                self._close()
            except Exception as e:
                logger.warning(f"Failed to close channel {self.topic}: {e}")


class ChangeTransport(Protocol):
    def open(
        self,
        topic: str,
        table: str,
        event: str,
        row_filter: Optional[str],
        on_event: Callable[[ChangeEvent], None],
    ) -> Callable[[], None]:
        """Start delivering changes to on_event; return a function that stops them."""
        ...


class SupabaseRealtimeTransport:
    """postgres_changes channels on an AsyncClient driven by a background loop thread."""

    def __init__(self, url: str, key: str, access_token: Optional[str] = None, refresh_token: Optional[str] = None):
        self.url = url
        self.key = key
        self.access_token = access_token
        self.refresh_token = refresh_token
        self._client = None
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="realtime-feed", daemon=True)
        self._thread.start()

    async def _get_client(self):
        if self._client is None:
            self._client = await acreate_client(self.url, self.key)
            if self.access_token and self.refresh_token:
                # Row-level filtering on the change feed needs the user's JWT
                await self._client.auth.set_session(self.access_token, self.refresh_token)
        return self._client

    async def _subscribe(self, topic, table, event, row_filter, on_event):
        client = await self._get_client()
        channel = client.channel(topic)

        def _callback(payload):
            on_event(parse_change_payload(table, payload))

        channel.on_postgres_changes(event, callback=_callback, table=table, schema="public", filter=row_filter)
        await channel.subscribe()
        logger.info(f"Subscribed to {table} changes on {topic} ({row_filter or 'no filter'})")
        return channel

    def open(self, topic, table, event, row_filter, on_event):
        future = asyncio.run_coroutine_threadsafe(
            self._subscribe(topic, table, event, row_filter, on_event), self._loop
        )
        channel = future.result(timeout=SUBSCRIBE_TIMEOUT_SECONDS)

        def close():
            future = asyncio.run_coroutine_threadsafe(self._client.remove_channel(channel), self._loop)
            future.result(timeout=SUBSCRIBE_TIMEOUT_SECONDS)

        return close

    def shutdown(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)


class ChangeFeed:
    """Hands out Subscriptions over a transport. One feed per signed-in user."""

    def __init__(self, transport: ChangeTransport):
        self.transport = transport
        self._subscriptions: Dict[str, Subscription] = {}

    def subscribe(self, topic: str, table: str, event: str = "*", row_filter: Optional[str] = None) -> Subscription:
        existing = self._subscriptions.get(topic)
        if existing is not None and not existing.cancelled:
            return existing
        subscription = Subscription(topic)
        subscription._close = self.transport.open(topic, table, event, row_filter, subscription.push)
        self._subscriptions[topic] = subscription
        return subscription

    def drain_all(self) -> List[ChangeEvent]:
        events: List[ChangeEvent] = []
        for subscription in self._subscriptions.values():
            events.extend(subscription.drain())
        return events

    def cancel_all(self) -> None:
        for subscription in self._subscriptions.values():
            subscription.cancel()
        self._subscriptions.clear()
