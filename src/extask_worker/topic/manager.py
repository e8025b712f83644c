import enum
import json
import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from extask_worker.backoff import BackoffController, BackoffStrategy
from extask_worker.engine.schemas import TopicRequest
from extask_worker.errors import ExternalTaskClientError
from extask_worker.reporting import isolated
from extask_worker.task.models import ExternalTask, Handler
from extask_worker.task.service import ExternalTaskService
from extask_worker.topic.models import TopicSubscription
from extask_worker.topic.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class WorkerState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


def _dispatch_failure_event(e: Exception) -> str:
    if isinstance(e, ExternalTaskClientError):
        return "task_service_failed"
    return "handler_failed"


class TopicSubscriptionManager:
    """
    Owns the background acquisition loop. Each cycle snapshots the
    subscriptions, fetches and locks tasks for all topics in one request,
    then hands every task to the handler of its topic.
    """
    def __init__(
        self,
        engine_client,
        lock_duration: int = 20000,
        backoff_strategy: Optional[BackoffStrategy] = None,
        idle_interval: float = 1.0,
        task_service: Optional[ExternalTaskService] = None,
    ):
        self.engine_client = engine_client
        self.task_service = task_service or ExternalTaskService(engine_client)
        self.lock_duration = lock_duration
        self.idle_interval = idle_interval

        self.registry = SubscriptionRegistry()
        self.backoff = BackoffController(backoff_strategy)

        self._monitor = threading.Lock()
        self._state = WorkerState.STOPPED
        self._thread: Optional[threading.Thread] = None
        # Set by subscribe/stop to end an idle wait early
        self._wakeup = threading.Event()

    # --- Subscriptions ---
    def subscribe(self, subscription: TopicSubscription):
        self.registry.add(subscription)
        self._wakeup.set()
        if self.backoff.installed:
            self.backoff.resume_now()
        logger.info(json.dumps({"event": "topic_subscribed", "topic_name": subscription.topic_name}))

    def unsubscribe(self, subscription: TopicSubscription):
        if self.registry.remove(subscription):
            logger.info(json.dumps({"event": "topic_unsubscribed", "topic_name": subscription.topic_name}))

    def get_subscriptions(self) -> List[TopicSubscription]:
        return list(self.registry.snapshot())

    def set_backoff_strategy(self, strategy: Optional[BackoffStrategy]):
        self.backoff.strategy = strategy

    # --- Acquisition ---
    def acquire(self) -> Optional[int]:
        """
        Run one acquisition cycle. Returns the number of fetched tasks, or
        None when nothing is subscribed and no request was made.
        """
        topic_requests, subscriptions = self._prepare_acquisition(self.registry.snapshot())
        if not topic_requests:
            return None

        tasks = isolated(
            lambda: self.engine_client.fetch_and_lock(topic_requests),
            "fetch_and_lock_failed",
            default=[],
            log=logger,
            topics=[r.topic_name for r in topic_requests],
        )
        handlers = self._index_handlers(subscriptions)

        for task in tasks:
            handler = handlers.get(task.topic_name)
            if handler is None:
                logger.warning(json.dumps({
                    "event": "handler_not_found",
                    "topic_name": task.topic_name,
                    "task_id": task.id,
                }))
                continue
            self._handle_external_task(task, handler)

        if self.backoff.installed:
            if tasks:
                self.backoff.on_non_empty_result()
            else:
                self.backoff.on_empty_result()

        return len(tasks)

    def _prepare_acquisition(
        self, snapshot: Sequence[TopicSubscription]
    ) -> Tuple[List[TopicRequest], Dict[str, TopicSubscription]]:
        topic_requests: List[TopicRequest] = []
        subscriptions: Dict[str, TopicSubscription] = {}
        for subscription in snapshot:
            topic_requests.append(subscription.to_request(self.lock_duration))
            subscriptions[subscription.topic_name] = subscription
        return topic_requests, subscriptions

    def _index_handlers(self, subscriptions: Dict[str, TopicSubscription]) -> Dict[str, Handler]:
        """
        Handlers of the subscriptions the request was built from, minus those
        closed while the request was in flight. Nothing subscribed since the
        snapshot is added, and later registry changes don't affect the index.
        """
        return {
            topic_name: subscription.handler
            for topic_name, subscription in subscriptions.items()
            if subscription in self.registry
        }

    def _handle_external_task(self, task: ExternalTask, handler: Handler):
        isolated(
            lambda: handler(task, self.task_service),
            _dispatch_failure_event,
            log=logger,
            topic_name=task.topic_name,
            task_id=task.id,
        )

    # --- Lifecycle ---
    def run(self):
        """Worker thread body; loops until stop() or a newer thread takes over."""
        current = threading.current_thread()
        while self._state is WorkerState.RUNNING and self._thread is current:
            try:
                if self.acquire() is None:
                    self._wait_for_subscriptions()
            except Exception:
                logger.exception(json.dumps({"event": "acquisition_failed"}))

    def _wait_for_subscriptions(self):
        self._wakeup.wait(self.idle_interval)
        self._wakeup.clear()

    def start(self):
        with self._monitor:
            if self._state is WorkerState.RUNNING and self._thread is not None:
                return

            # A handler-initiated stop leaves its thread finishing the cycle
            self._join_previous()
            self._state = WorkerState.RUNNING
            self._wakeup.clear()
            thread = threading.Thread(target=self.run, name=type(self).__name__, daemon=True)
            self._thread = thread
            thread.start()
        logger.info(json.dumps({"event": "worker_started", "thread": thread.name}))

    def stop(self):
        """
        Stop the loop and block until the worker thread has exited. An
        in-flight fetch or handler runs to completion first.

        Called from a handler (the worker thread itself), stop() only flips
        the state without taking the monitor, since another thread may hold
        it while joining this one; the loop exits after the handler returns.
        The next stop() or start() from another thread joins that thread.
        """
        if threading.current_thread() is self._thread:
            self._state = WorkerState.STOPPED
            self._wake()
            logger.info(json.dumps({"event": "worker_stop_requested", "thread": self._thread.name}))
            return

        with self._monitor:
            thread = self._thread
            if thread is None:
                return
            if self._state is WorkerState.STOPPED and not thread.is_alive():
                return

            self._state = WorkerState.STOPPED
            self._wake()
            self._join_previous()
        logger.info(json.dumps({"event": "worker_stopped", "thread": thread.name}))

    def _join_previous(self):
        thread = self._thread
        if thread is None or thread is threading.current_thread() or not thread.is_alive():
            return
        try:
            thread.join()
        except KeyboardInterrupt:
            logger.warning(json.dumps({"event": "shutdown_interrupted", "thread": thread.name}))
            raise

    def _wake(self):
        self._wakeup.set()
        if self.backoff.installed:
            self.backoff.resume_now()

    def is_running(self) -> bool:
        return self._state is WorkerState.RUNNING

    @property
    def state(self) -> WorkerState:
        return self._state
