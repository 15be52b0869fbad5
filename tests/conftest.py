"""Shared fixtures for the toggles tests."""

import threading

import pytest

from features.toggles import Environment, FeatureService, MemoryStore, NotificationDispatcher
from features.toggles.errors import NotificationError


class RecordingNotifier:
    """Records every notification; fails on demand."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []
        self._lock = threading.Lock()

    def notify_status_change(self, feature, enabled, environment):
        with self._lock:
            self.calls.append((feature, enabled, environment))
        if self.fail:
            raise NotificationError("notifier is down")


@pytest.fixture
def store():
    store = MemoryStore()
    store.create_environment(Environment(name="staging"))
    store.create_environment(Environment(name="prod"))
    return store


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier):
    dispatcher = NotificationDispatcher(notifier, max_workers=2, retries=0, backoff=0)
    yield dispatcher
    dispatcher.shutdown(wait=True)


@pytest.fixture
def service(store, dispatcher):
    return FeatureService(store, dispatcher)
