"""
Change-notification transports for design job records.

Every committed write to the job store is published as the full job record
on a per-job channel. Redis pub/sub carries updates between the worker and
API processes; the in-memory notifier serves tests and single-process runs.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import redis

from design_pipeline.errors import NotificationDeliveryError

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "design_updates"

NotificationCallback = Callable[[Dict[str, Any]], None]
DeliveryErrorCallback = Callable[[NotificationDeliveryError], None]


def channel_for(job_id: str) -> str:
    return f"{CHANNEL_PREFIX}:{job_id}"


class Subscription:
    """
    Handle for one subscriber on one job.

    Delivery and cancellation share a lock: once cancel() returns, no
    callback is running and none will run again.
    """

    def __init__(
        self,
        job_id: str,
        callback: NotificationCallback,
        on_delivery_error: Optional[DeliveryErrorCallback] = None,
    ):
        self.job_id = job_id
        self._callback = callback
        self._on_delivery_error = on_delivery_error
        self._lock = threading.RLock()
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            if self._active:
                self._callback(payload)

    def delivery_failed(self, error: NotificationDeliveryError) -> None:
        with self._lock:
            if not self._active:
                return
            logger.warning(f"Notification delivery failed for job {self.job_id}: {error.message}")
            if self._on_delivery_error:
                self._on_delivery_error(error)

    def cancel(self) -> None:
        with self._lock:
            self._active = False


class Notifier(ABC):
    """Broadcasts job records to every subscriber of that job id."""

    @abstractmethod
    def publish(self, job_id: str, payload: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def subscribe(
        self,
        job_id: str,
        callback: NotificationCallback,
        on_delivery_error: Optional[DeliveryErrorCallback] = None,
    ) -> Subscription:
        ...

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None:
        ...

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


class InMemoryNotifier(Notifier):
    """Synchronous in-process broadcaster. Callbacks run on the publishing thread."""

    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def publish(self, job_id: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscriptions.get(job_id, []))
        for subscription in subscribers:
            try:
                subscription.deliver(payload)
            except Exception:
                # One broken subscriber must not block the writer or the others
                logger.exception(f"Subscriber callback failed for job {job_id}")

    def subscribe(
        self,
        job_id: str,
        callback: NotificationCallback,
        on_delivery_error: Optional[DeliveryErrorCallback] = None,
    ) -> Subscription:
        subscription = Subscription(job_id, callback, on_delivery_error)
        with self._lock:
            self._subscriptions.setdefault(job_id, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.cancel()
        with self._lock:
            subscribers = self._subscriptions.get(subscription.job_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.job_id, None)

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(job_id, []))


class RedisNotifier(Notifier):
    """Redis pub/sub transport, one channel per job id."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        client: Optional[redis.Redis] = None,
        poll_interval: float = 0.05,
        retry_delay: float = 1.0,
    ):
        self._client = client if client is not None else redis.Redis.from_url(url, socket_connect_timeout=2)
        self._poll_interval = poll_interval
        self._retry_delay = retry_delay
        self._workers: Dict[int, Any] = {}
        self._lock = threading.Lock()

    def publish(self, job_id: str, payload: Dict[str, Any]) -> None:
        try:
            self._client.publish(channel_for(job_id), json.dumps(payload, default=str))
        except redis.RedisError as e:
            logger.warning(f"Failed to publish update for job {job_id}: {e}")

    def subscribe(
        self,
        job_id: str,
        callback: NotificationCallback,
        on_delivery_error: Optional[DeliveryErrorCallback] = None,
    ) -> Subscription:
        subscription = Subscription(job_id, callback, on_delivery_error)
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)

        def handle_message(message: Dict[str, Any]) -> None:
            try:
                payload = json.loads(message["data"])
            except (KeyError, TypeError, ValueError) as e:
                subscription.delivery_failed(
                    NotificationDeliveryError(f"Malformed notification for job {job_id}: {e}")
                )
                return
            subscription.deliver(payload)

        def handle_error(exc: BaseException, pubsub, thread) -> None:
            subscription.delivery_failed(NotificationDeliveryError(str(exc)))
            # redis-py reconnects on the next poll; back off while it is down
            time.sleep(self._retry_delay)

        pubsub.subscribe(**{channel_for(job_id): handle_message})
        thread = pubsub.run_in_thread(
            sleep_time=self._poll_interval,
            daemon=True,
            exception_handler=handle_error,
        )
        with self._lock:
            self._workers[id(subscription)] = thread
        logger.debug(f"Subscribed to {channel_for(job_id)}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.cancel()
        with self._lock:
            thread = self._workers.pop(id(subscription), None)
        if thread is None:
            return
        thread.stop()
        if thread is not threading.current_thread():
            thread.join(timeout=self._retry_delay + 1)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    def close(self) -> None:
        with self._lock:
            threads = list(self._workers.values())
            self._workers.clear()
        for thread in threads:
            thread.stop()
        self._client.close()


def build_notifier(backend: str, redis_url: str) -> Notifier:
    """Create the notifier selected by configuration."""
    if backend == "memory":
        return InMemoryNotifier()
    if backend == "redis":
        return RedisNotifier(redis_url)
    raise ValueError(f"Unknown notifier backend: {backend}")
