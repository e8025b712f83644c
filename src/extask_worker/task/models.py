from typing import Any, Callable, Dict, Optional

from extask_worker.engine.schemas import LockedTask, TypedValue
from extask_worker.engine.variables import decode_value, decode_variables


class ExternalTask:
    """
    A unit of work locked for this worker. Produced by fetch-and-lock,
    handed to exactly one handler invocation and then dropped.
    """
    def __init__(
        self,
        id: str,
        topic_name: str,
        raw_variables: Optional[Dict[str, TypedValue]] = None,
        worker_id: Optional[str] = None,
        activity_id: Optional[str] = None,
        activity_instance_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        process_definition_id: Optional[str] = None,
        process_definition_key: Optional[str] = None,
        process_instance_id: Optional[str] = None,
        business_key: Optional[str] = None,
        tenant_id: Optional[str] = None,
        lock_expiration_time: Optional[str] = None,
        retries: Optional[int] = None,
        priority: int = 0,
        error_message: Optional[str] = None,
        error_details: Optional[str] = None,
    ):
        self.id = id
        self.topic_name = topic_name
        self.raw_variables = raw_variables or {}
        self.worker_id = worker_id
        self.activity_id = activity_id
        self.activity_instance_id = activity_instance_id
        self.execution_id = execution_id
        self.process_definition_id = process_definition_id
        self.process_definition_key = process_definition_key
        self.process_instance_id = process_instance_id
        self.business_key = business_key
        self.tenant_id = tenant_id
        self.lock_expiration_time = lock_expiration_time
        self.retries = retries
        self.priority = priority
        self.error_message = error_message
        self.error_details = error_details

    @classmethod
    def from_locked(cls, locked: LockedTask) -> "ExternalTask":
        fields = locked.model_dump(exclude={"variables"})
        return cls(raw_variables=dict(locked.variables), **fields)

    @property
    def variables(self) -> Dict[str, Any]:
        return decode_variables(self.raw_variables)

    def get_variable(self, name: str, default: Any = None) -> Any:
        typed = self.raw_variables.get(name)
        if typed is None:
            return default
        return decode_value(typed)

    def __repr__(self):
        return f"ExternalTask(id={self.id!r}, topic_name={self.topic_name!r})"


class ExternalTaskHandler:
    """Base class for handlers. Any callable taking (task, service) works too."""
    def execute(self, task: ExternalTask, service) -> None:
        raise NotImplementedError

    def __call__(self, task: ExternalTask, service) -> None:
        return self.execute(task, service)


Handler = Callable[[ExternalTask, Any], None]
