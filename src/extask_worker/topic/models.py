from typing import List, Optional

from extask_worker.engine.schemas import TopicRequest
from extask_worker.task.models import Handler


class TopicSubscription:
    """
    Interest in one topic. Compared by identity; the registry enforces that
    topic names are unique among active subscriptions.
    """
    def __init__(
        self,
        topic_name: str,
        handler: Handler,
        lock_duration: Optional[int] = None,
        variables: Optional[List[str]] = None,
        local_variables: bool = False,
        business_key: Optional[str] = None,
        process_definition_key: Optional[str] = None,
        tenant_ids: Optional[List[str]] = None,
        manager=None,
    ):
        self.topic_name = topic_name
        self.handler = handler
        self.lock_duration = lock_duration
        self.variables = variables
        self.local_variables = local_variables
        self.business_key = business_key
        self.process_definition_key = process_definition_key
        self.tenant_ids = tenant_ids
        self._manager = manager

    def to_request(self, default_lock_duration: int) -> TopicRequest:
        lock_duration = self.lock_duration
        if lock_duration is None or lock_duration <= 0:
            lock_duration = default_lock_duration
        return TopicRequest(
            topic_name=self.topic_name,
            lock_duration=lock_duration,
            variables=list(self.variables) if self.variables is not None else None,
            local_variables=self.local_variables,
            business_key=self.business_key,
            process_definition_key=self.process_definition_key,
            tenant_id_in=list(self.tenant_ids) if self.tenant_ids else None,
        )

    def close(self):
        """Unsubscribe from the manager this subscription was opened on."""
        if self._manager is not None:
            self._manager.unsubscribe(self)

    def __repr__(self):
        return f"TopicSubscription(topic_name={self.topic_name!r}, lock_duration={self.lock_duration!r})"
