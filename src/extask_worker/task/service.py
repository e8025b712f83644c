from typing import Any, Dict, Optional

from extask_worker.errors import (
    BadRequestError,
    ConnectionLostError,
    EngineClientError,
    EngineError,
    ExternalTaskClientError,
    NotFoundError,
)
from extask_worker.task.models import ExternalTask


def _translate(e: EngineClientError, action: str, task: ExternalTask) -> ExternalTaskClientError:
    message = f"Exception while {action} the external task '{task.id}': {e}"
    if e.status_code == 404:
        return NotFoundError(message)
    if e.status_code == 400:
        return BadRequestError(message)
    if e.status_code == 500:
        return EngineError(message)
    return ConnectionLostError(message)


class ExternalTaskService:
    """
    Facade handed to handlers for reporting the outcome of a task.
    Engine failures are raised as ExternalTaskClientError subclasses.
    """
    def __init__(self, engine_client):
        self.engine_client = engine_client

    def complete(self, task: ExternalTask, variables: Optional[Dict[str, Any]] = None,
                 local_variables: Optional[Dict[str, Any]] = None):
        try:
            self.engine_client.complete(task.id, variables, local_variables)
        except EngineClientError as e:
            raise _translate(e, "completing", task) from e

    def extend_lock(self, task: ExternalTask, new_duration: int):
        try:
            self.engine_client.extend_lock(task.id, new_duration)
        except EngineClientError as e:
            raise _translate(e, "extending the lock of", task) from e

    def handle_failure(self, task: ExternalTask, error_message: Optional[str], error_details: Optional[str] = None,
                       retries: int = 0, retry_timeout: int = 0):
        try:
            self.engine_client.failure(task.id, error_message, error_details, retries, retry_timeout)
        except EngineClientError as e:
            raise _translate(e, "reporting a failure for", task) from e

    def handle_bpmn_error(self, task: ExternalTask, error_code: str, error_message: Optional[str] = None,
                          variables: Optional[Dict[str, Any]] = None):
        try:
            self.engine_client.bpmn_error(task.id, error_code, error_message, variables)
        except EngineClientError as e:
            raise _translate(e, "reporting a BPMN error for", task) from e

    def unlock(self, task: ExternalTask):
        try:
            self.engine_client.unlock(task.id)
        except EngineClientError as e:
            raise _translate(e, "unlocking", task) from e
