"""
Job record store and change notifications.
"""

from .notifier import InMemoryNotifier, Notifier, RedisNotifier, Subscription, build_notifier
from .store import JobReader, JobStore, build_engine
