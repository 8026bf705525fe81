"""
Order change feed.

Committed inserts, updates and deletes of orders are captured from
SQLAlchemy session events and handed to async subscribers. The watcher
republishes every change as an orderUpdate to the order's user rooms, which
also covers writes that never went through the order service.
"""
import asyncio
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

from config.logging import get_logger
from config.settings import get_settings
from models.order import Order
from schemas.order import order_document
from services.notification_service import order_update_payload
from services.realtime import EventKind, RealtimeHub, compute_channels

logger = get_logger("realtime")

PENDING_CHANGES_KEY = "pending_order_changes"


@dataclass
class OrderChange:
    operation_type: str
    document_id: Any
    full_document: Optional[Dict[str, Any]] = None


class OrderChangeFeed:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self._subscribers: List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []
        self._lock = threading.Lock()
        self._installed = False

    def install(self):
        if self._installed:
            return
        event.listen(self.session_factory, "after_flush", self._after_flush)
        event.listen(self.session_factory, "after_commit", self._after_commit)
        event.listen(self.session_factory, "after_rollback", self._after_rollback)
        self._installed = True
        logger.info("Order change feed installed")

    def uninstall(self):
        if not self._installed:
            return
        event.remove(self.session_factory, "after_flush", self._after_flush)
        event.remove(self.session_factory, "after_commit", self._after_commit)
        event.remove(self.session_factory, "after_rollback", self._after_rollback)
        self._installed = False

    # Session hooks. new/dirty/deleted still describe the flushed state here.

    def _after_flush(self, session: Session, flush_context):
        changes = session.info.setdefault(PENDING_CHANGES_KEY, [])
        for obj in session.new:
            if isinstance(obj, Order):
                changes.append(OrderChange("insert", obj.id, order_document(obj)))
        for obj in session.dirty:
            if isinstance(obj, Order) and session.is_modified(obj):
                changes.append(OrderChange("update", obj.id, order_document(obj)))
        for obj in session.deleted:
            if isinstance(obj, Order):
                changes.append(OrderChange("delete", obj.id))

    def _after_commit(self, session: Session):
        for change in session.info.pop(PENDING_CHANGES_KEY, []):
            self.publish(change)

    def _after_rollback(self, session: Session):
        session.info.pop(PENDING_CHANGES_KEY, None)

    def publish(self, change: Optional[OrderChange]):
        """Hand a change to every subscriber; safe to call from any thread."""
        with self._lock:
            subscribers = list(self._subscribers)
        for loop, queue in subscribers:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, change)
            except RuntimeError:
                # Subscriber's loop is closed
                self._unsubscribe((loop, queue))

    def _unsubscribe(self, subscriber):
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def watch(self) -> AsyncIterator[OrderChange]:
        """Yield committed changes until the feed is closed."""
        subscriber = (asyncio.get_running_loop(), asyncio.Queue())
        with self._lock:
            self._subscribers.append(subscriber)
        try:
            while True:
                change = await subscriber[1].get()
                if change is None:
                    return
                yield change
        finally:
            self._unsubscribe(subscriber)

    def close(self):
        self.publish(None)


class ChangeFeedWatcher:
    """Background task republishing the change feed, restarted on failure."""

    def __init__(self, feed: OrderChangeFeed, hub: RealtimeHub, settings=None):
        settings = settings or get_settings()
        self.feed = feed
        self.hub = hub
        self.max_restarts = settings.CHANGE_FEED_MAX_RESTARTS
        self.restart_delay = settings.CHANGE_FEED_RESTART_DELAY
        self.max_restart_delay = settings.CHANGE_FEED_MAX_RESTART_DELAY
        self.restarts = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def handle(self, change: OrderChange) -> int:
        if change.full_document is None:
            # Deletes are announced by the service that performed them
            return 0
        document = change.full_document
        rooms = compute_channels(document, EventKind.CHANGE_FEED)
        return await self.hub.emit(
            rooms, EventKind.ORDER_UPDATE.value, order_update_payload(document, change.operation_type)
        )

    async def run(self):
        failures = 0
        delay = self.restart_delay
        while True:
            stream = self.feed.watch()
            try:
                async for change in stream:
                    await self.handle(change)
                    failures, delay = 0, self.restart_delay
                logger.info("Order change feed closed")
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failures += 1
                error = e
            finally:
                await stream.aclose()

            if failures > self.max_restarts:
                logger.error(f"Order change feed failed {failures} times, giving up: {error}")
                return
            logger.error(f"Order change feed error: {error}. Restarting in {delay:.2f}s ({failures}/{self.max_restarts})")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_restart_delay)
            self.restarts += 1

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Order change feed watcher stopped")
