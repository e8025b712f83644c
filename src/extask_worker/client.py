import json
import logging
from typing import List, Optional

from extask_worker.backoff import BackoffStrategy, ExponentialBackoffStrategy
from extask_worker.config import ClientSettings
from extask_worker.engine.client import EngineClient
from extask_worker.task.models import Handler
from extask_worker.topic.manager import TopicSubscriptionManager
from extask_worker.topic.models import TopicSubscription

logger = logging.getLogger(__name__)

_DEFAULT = object()


class ExternalTaskClient:
    """
    Entry point for worker processes. Wires an engine client and a
    subscription manager together from settings; the caller owns the
    instance and is responsible for stopping it (or using it as a
    context manager).
    """
    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        engine_client: Optional[EngineClient] = None,
        backoff_strategy=_DEFAULT,
    ):
        self.settings = settings or ClientSettings()
        self.engine_client = engine_client or EngineClient.from_settings(self.settings)

        if backoff_strategy is _DEFAULT:
            backoff_strategy = self._default_backoff_strategy()

        self.manager = TopicSubscriptionManager(
            self.engine_client,
            lock_duration=self.settings.lock_duration,
            backoff_strategy=backoff_strategy,
            idle_interval=self.settings.idle_interval,
        )

    @classmethod
    def from_settings(cls, settings: Optional[ClientSettings] = None, **kwargs) -> "ExternalTaskClient":
        client = cls(settings, **kwargs)
        if client.settings.auto_fetching:
            client.start()
        return client

    def _default_backoff_strategy(self) -> Optional[BackoffStrategy]:
        if self.settings.disable_backoff:
            return None
        return ExponentialBackoffStrategy(
            init_time=self.settings.backoff_init_time,
            factor=self.settings.backoff_factor,
            max_time=self.settings.backoff_max_time,
        )

    def subscribe(
        self,
        topic_name: str,
        handler: Handler,
        lock_duration: Optional[int] = None,
        variables: Optional[List[str]] = None,
        local_variables: bool = False,
        business_key: Optional[str] = None,
        process_definition_key: Optional[str] = None,
        tenant_ids: Optional[List[str]] = None,
    ) -> TopicSubscription:
        if not topic_name:
            raise ValueError("Topic name must not be empty")
        if handler is None:
            raise ValueError(f"Handler for topic '{topic_name}' must not be None")
        if lock_duration is not None and lock_duration <= 0:
            raise ValueError(f"Lock duration for topic '{topic_name}' must be greater than zero")

        subscription = TopicSubscription(
            topic_name,
            handler,
            lock_duration=lock_duration,
            variables=variables,
            local_variables=local_variables,
            business_key=business_key,
            process_definition_key=process_definition_key,
            tenant_ids=tenant_ids,
            manager=self.manager,
        )
        self.manager.subscribe(subscription)
        return subscription

    def unsubscribe(self, subscription: TopicSubscription):
        self.manager.unsubscribe(subscription)

    def get_subscriptions(self) -> List[TopicSubscription]:
        return self.manager.get_subscriptions()

    def set_backoff_strategy(self, strategy: Optional[BackoffStrategy]):
        self.manager.set_backoff_strategy(strategy)

    def start(self):
        self.manager.start()

    def stop(self):
        self.manager.stop()

    def is_active(self) -> bool:
        return self.manager.is_running()

    def close(self):
        """Stops fetching and releases the HTTP connection pool."""
        self.manager.stop()
        self.engine_client.close()
        logger.info(json.dumps({"event": "client_closed", "worker_id": self.settings.worker_id}))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
