import threading
import time

import pytest

from extask_worker.backoff import BackoffStrategy
from extask_worker.task.models import ExternalTask
from extask_worker.topic.manager import TopicSubscriptionManager


class FakeEngineClient:
    """
    In-memory stand-in for EngineClient. Queued responses are returned (or
    raised, for exceptions) by successive fetch_and_lock calls; once they run
    out every fetch returns an empty list.
    """
    def __init__(self, responses=None, delay=0.001):
        self.responses = list(responses or [])
        self.delay = delay
        self.fetch_calls = []
        self.calls = []
        self.on_fetch = None
        self.closed = False
        self._lock = threading.Lock()

    def fetch_and_lock(self, topics):
        with self._lock:
            self.fetch_calls.append(list(topics))
            response = self.responses.pop(0) if self.responses else []
        if self.on_fetch is not None:
            self.on_fetch(topics)
        if self.delay:
            time.sleep(self.delay)
        if isinstance(response, Exception):
            raise response
        return response

    def complete(self, task_id, variables=None, local_variables=None):
        self.calls.append(("complete", task_id, variables, local_variables))

    def extend_lock(self, task_id, new_duration):
        self.calls.append(("extend_lock", task_id, new_duration))

    def failure(self, task_id, error_message, error_details=None, retries=0, retry_timeout=0):
        self.calls.append(("failure", task_id, error_message, error_details, retries, retry_timeout))

    def bpmn_error(self, task_id, error_code, error_message=None, variables=None):
        self.calls.append(("bpmn_error", task_id, error_code, error_message, variables))

    def unlock(self, task_id):
        self.calls.append(("unlock", task_id))

    def close(self):
        self.closed = True


class RecordingBackoff(BackoffStrategy):
    def __init__(self):
        self.events = []

    def suspend(self):
        self.events.append("suspend")

    def resume(self):
        self.events.append("resume")

    def reset(self):
        self.events.append("reset")


class RecordingHandler:
    def __init__(self, error=None):
        self.invocations = []
        self.error = error

    def __call__(self, task, service):
        self.invocations.append((task, service))
        if self.error is not None:
            raise self.error


def make_task(topic_name, task_id=None, **kwargs):
    return ExternalTask(task_id or f"{topic_name}-task", topic_name, **kwargs)


def wait_until(predicate, timeout=2.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def engine():
    return FakeEngineClient()


@pytest.fixture
def manager(engine):
    manager = TopicSubscriptionManager(engine, lock_duration=20000, idle_interval=0.05)
    yield manager
    manager.stop()
