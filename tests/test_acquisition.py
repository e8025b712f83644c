import logging

import pytest

from conftest import FakeEngineClient, RecordingBackoff, RecordingHandler, make_task
from extask_worker.backoff import BackoffStrategy
from extask_worker.errors import DuplicateTopicError, EngineClientError, NotFoundError
from extask_worker.task.service import ExternalTaskService
from extask_worker.topic.manager import TopicSubscriptionManager
from extask_worker.topic.models import TopicSubscription


def _manager(engine, backoff=None):
    return TopicSubscriptionManager(engine, lock_duration=20000, backoff_strategy=backoff)


def test_no_remote_call_without_subscriptions():
    engine = FakeEngineClient()
    manager = _manager(engine)

    assert manager.acquire() is None
    assert engine.fetch_calls == []


def test_invoice_check_scenario():
    task = make_task("invoice-check", "task-1")
    engine = FakeEngineClient(responses=[[task], []])
    backoff = RecordingBackoff()
    manager = _manager(engine, backoff)
    handler = RecordingHandler()
    manager.subscribe(TopicSubscription("invoice-check", handler, lock_duration=30000))
    backoff.events.clear()

    assert manager.acquire() == 1
    request = engine.fetch_calls[0]
    assert [(r.topic_name, r.lock_duration) for r in request] == [("invoice-check", 30000)]
    assert len(handler.invocations) == 1
    dispatched, service = handler.invocations[0]
    assert dispatched is task
    assert isinstance(service, ExternalTaskService)
    assert backoff.events == ["reset"]

    # A working service facade reaches the engine client
    service.complete(dispatched, {"approved": True})
    assert engine.calls[0][:2] == ("complete", "task-1")

    assert manager.acquire() == 0
    assert backoff.events == ["reset", "suspend"]
    assert len(handler.invocations) == 1


def test_tasks_only_reach_their_own_topic_handler():
    tasks = [make_task("a", "a-1"), make_task("a", "a-2")]
    engine = FakeEngineClient(responses=[tasks])
    manager = _manager(engine)
    handler_a = RecordingHandler()
    handler_b = RecordingHandler()
    manager.subscribe(TopicSubscription("a", handler_a))
    manager.subscribe(TopicSubscription("b", handler_b))

    manager.acquire()

    assert [t.id for t, _ in handler_a.invocations] == ["a-1", "a-2"]
    assert handler_b.invocations == []
    assert [r.topic_name for r in engine.fetch_calls[0]] == ["a", "b"]


def test_every_fetched_task_is_dispatched_once():
    tasks = [make_task("a", "a-1"), make_task("b", "b-1"), make_task("a", "a-2"), make_task("c", "c-1")]
    engine = FakeEngineClient(responses=[tasks])
    manager = _manager(engine)
    handlers = {name: RecordingHandler() for name in "abc"}
    for name, handler in handlers.items():
        manager.subscribe(TopicSubscription(name, handler))

    assert manager.acquire() == 4
    assert sum(len(h.invocations) for h in handlers.values()) == 4
    assert [t.id for t, _ in handlers["a"].invocations] == ["a-1", "a-2"]


def test_lock_duration_falls_back_to_manager_default():
    engine = FakeEngineClient()
    manager = _manager(engine)
    manager.subscribe(TopicSubscription("default", RecordingHandler()))
    manager.subscribe(TopicSubscription("explicit", RecordingHandler(), lock_duration=5000, variables=["amount"]))

    manager.acquire()

    default, explicit = engine.fetch_calls[0]
    assert default.lock_duration == 20000
    assert explicit.lock_duration == 5000
    assert explicit.variables == ["amount"]


def test_failing_handler_does_not_stop_siblings(caplog):
    tasks = [make_task("a", "a-1"), make_task("b", "b-1")]
    engine = FakeEngineClient(responses=[tasks])
    manager = _manager(engine)
    failing = RecordingHandler(error=ValueError("boom"))
    healthy = RecordingHandler()
    manager.subscribe(TopicSubscription("a", failing))
    manager.subscribe(TopicSubscription("b", healthy))

    with caplog.at_level(logging.ERROR):
        manager.acquire()

    assert len(failing.invocations) == 1
    assert len(healthy.invocations) == 1
    messages = [r.getMessage() for r in caplog.records]
    assert any("handler_failed" in m and '"topic_name": "a"' in m for m in messages)


def test_task_service_errors_are_reported_separately(caplog):
    engine = FakeEngineClient(responses=[[make_task("a")]])
    manager = _manager(engine)
    manager.subscribe(TopicSubscription("a", RecordingHandler(error=NotFoundError("gone"))))

    with caplog.at_level(logging.ERROR):
        manager.acquire()

    assert any("task_service_failed" in r.getMessage() for r in caplog.records)


def test_fetch_failure_is_treated_as_empty_result(caplog):
    engine = FakeEngineClient(responses=[EngineClientError("connection refused")])
    backoff = RecordingBackoff()
    manager = _manager(engine, backoff)
    handler = RecordingHandler()
    manager.subscribe(TopicSubscription("a", handler))
    backoff.events.clear()

    with caplog.at_level(logging.ERROR):
        assert manager.acquire() == 0

    assert handler.invocations == []
    assert backoff.events == ["suspend"]
    failures = [r for r in caplog.records if "fetch_and_lock_failed" in r.getMessage()]
    assert len(failures) == 1


def test_task_for_topic_unsubscribed_mid_flight_is_skipped(caplog):
    engine = FakeEngineClient(responses=[[make_task("a", "a-1"), make_task("b", "b-1")]])
    manager = _manager(engine)
    handler_a = RecordingHandler()
    handler_b = RecordingHandler()
    sub_a = TopicSubscription("a", handler_a)
    manager.subscribe(sub_a)
    manager.subscribe(TopicSubscription("b", handler_b))

    # "a" is closed while its fetch is in flight
    engine.on_fetch = lambda topics: manager.unsubscribe(sub_a)

    with caplog.at_level(logging.WARNING):
        manager.acquire()

    assert handler_a.invocations == []
    assert len(handler_b.invocations) == 1
    warnings = [r.getMessage() for r in caplog.records if "handler_not_found" in r.getMessage()]
    assert len(warnings) == 1
    assert '"topic_name": "a"' in warnings[0]


def test_task_for_unknown_topic_is_skipped_and_reported(caplog):
    engine = FakeEngineClient(responses=[[make_task("gone", "g-1"), make_task("a", "a-1")]])
    manager = _manager(engine)
    handler = RecordingHandler()
    manager.subscribe(TopicSubscription("a", handler))

    with caplog.at_level(logging.WARNING):
        assert manager.acquire() == 2

    assert [t.id for t, _ in handler.invocations] == ["a-1"]
    warnings = [r.getMessage() for r in caplog.records if "handler_not_found" in r.getMessage()]
    assert len(warnings) == 1
    assert '"topic_name": "gone"' in warnings[0]


def test_dispatch_uses_handlers_from_request_snapshot():
    engine = FakeEngineClient(responses=[[make_task("a", "a-1"), make_task("b", "b-1")]])
    manager = _manager(engine)
    original_b = RecordingHandler()
    replacement_b = RecordingHandler()
    sub_b = TopicSubscription("b", original_b)

    def swap_b(task, service):
        manager.unsubscribe(sub_b)
        manager.subscribe(TopicSubscription("b", replacement_b))

    manager.subscribe(TopicSubscription("a", swap_b))
    manager.subscribe(sub_b)

    manager.acquire()

    assert len(original_b.invocations) == 1
    assert replacement_b.invocations == []


def test_subscription_added_during_cycle_joins_next_cycle():
    engine = FakeEngineClient()
    manager = _manager(engine)
    manager.subscribe(TopicSubscription("a", RecordingHandler()))
    engine.on_fetch = lambda topics: manager.subscribe(TopicSubscription("late", RecordingHandler()))

    manager.acquire()
    engine.on_fetch = None
    manager.acquire()

    assert [r.topic_name for r in engine.fetch_calls[0]] == ["a"]
    assert [r.topic_name for r in engine.fetch_calls[1]] == ["a", "late"]


def test_duplicate_subscribe_surfaces_to_caller():
    manager = _manager(FakeEngineClient())
    manager.subscribe(TopicSubscription("a", RecordingHandler()))

    with pytest.raises(DuplicateTopicError):
        manager.subscribe(TopicSubscription("a", RecordingHandler()))
    assert len(manager.get_subscriptions()) == 1


def test_subscribe_resumes_backoff():
    backoff = RecordingBackoff()
    manager = _manager(FakeEngineClient(), backoff)

    manager.subscribe(TopicSubscription("a", RecordingHandler()))

    assert backoff.events == ["resume"]


class _ExplodingBackoff(BackoffStrategy):
    def suspend(self):
        raise RuntimeError("no sleep for you")

    def resume(self):
        raise RuntimeError("cannot resume")

    def reset(self):
        raise RuntimeError("cannot reset")


def test_backoff_failures_do_not_escape_the_cycle():
    engine = FakeEngineClient(responses=[[make_task("a")], []])
    manager = _manager(engine, _ExplodingBackoff())
    handler = RecordingHandler()
    manager.subscribe(TopicSubscription("a", handler))

    assert manager.acquire() == 1
    assert manager.acquire() == 0
    assert len(handler.invocations) == 1


def test_no_backoff_calls_without_strategy():
    engine = FakeEngineClient()
    manager = _manager(engine)
    manager.subscribe(TopicSubscription("a", RecordingHandler()))
    backoff = RecordingBackoff()

    manager.acquire()
    manager.set_backoff_strategy(backoff)
    manager.acquire()
    manager.set_backoff_strategy(None)
    manager.acquire()

    assert backoff.events == ["suspend"]
