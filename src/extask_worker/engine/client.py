import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from extask_worker.config import ClientSettings
from extask_worker.engine.schemas import (
    BpmnErrorRequest,
    CompleteRequest,
    EngineErrorBody,
    EngineModel,
    ExtendLockRequest,
    FailureRequest,
    FetchAndLockRequest,
    LockedTask,
    TopicRequest,
)
from extask_worker.engine.variables import encode_variables
from extask_worker.errors import EngineClientError
from extask_worker.task.models import ExternalTask

logger = logging.getLogger(__name__)


class EngineClient:
    """
    REST transport for the engine's external task API. Every call is a single
    blocking request; failures surface as EngineClientError.
    """
    def __init__(
        self,
        base_url: str,
        worker_id: str,
        max_tasks: int = 10,
        use_priority: bool = True,
        async_response_timeout: Optional[int] = None,
        request_timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[httpx.Auth] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.worker_id = worker_id
        self.max_tasks = max_tasks
        self.use_priority = use_priority
        self.async_response_timeout = async_response_timeout

        # Long polling keeps the fetch request open on the server side
        read_timeout = request_timeout
        if async_response_timeout:
            read_timeout += async_response_timeout / 1000.0

        self.http_client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(request_timeout, read=read_timeout),
            headers=headers,
            auth=auth,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: ClientSettings, transport: Optional[httpx.BaseTransport] = None) -> "EngineClient":
        auth = None
        if settings.auth_user is not None:
            auth = httpx.BasicAuth(settings.auth_user, settings.auth_password or "")
        return cls(
            settings.base_url,
            settings.worker_id,
            max_tasks=settings.max_tasks,
            use_priority=settings.use_priority,
            async_response_timeout=settings.async_response_timeout,
            request_timeout=settings.request_timeout,
            auth=auth,
            transport=transport,
        )

    def _make_request(self, endpoint: str, body: Optional[EngineModel] = None) -> Any:
        payload = body.to_wire() if body is not None else None
        try:
            resp = self.http_client.post(endpoint, json=payload)
        except httpx.RequestError as e:
            raise EngineClientError(f"Request to {self.base_url}{endpoint} failed: {e}") from e

        if resp.is_error:
            error = self._parse_error(resp)
            raise EngineClientError(
                error.message or f"Engine responded with status {resp.status_code}",
                status_code=resp.status_code,
                error_type=error.type,
            )

        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise EngineClientError(f"Malformed response from {endpoint}: {e}", status_code=resp.status_code) from e

    @staticmethod
    def _parse_error(resp: httpx.Response) -> EngineErrorBody:
        try:
            return EngineErrorBody.model_validate(resp.json())
        except (json.JSONDecodeError, ValidationError):
            return EngineErrorBody()

    # --- External task API ---
    def fetch_and_lock(self, topics: List[TopicRequest]) -> List[ExternalTask]:
        body = FetchAndLockRequest(
            worker_id=self.worker_id,
            max_tasks=self.max_tasks,
            use_priority=self.use_priority,
            async_response_timeout=self.async_response_timeout,
            topics=topics,
        )
        data = self._make_request("/external-task/fetchAndLock", body)
        try:
            locked = [LockedTask.model_validate(item) for item in data or []]
        except (TypeError, ValidationError) as e:
            raise EngineClientError(f"Unexpected fetchAndLock payload: {e}") from e
        return [ExternalTask.from_locked(item) for item in locked]

    def complete(self, task_id: str, variables: Optional[Dict[str, Any]] = None,
                 local_variables: Optional[Dict[str, Any]] = None):
        body = CompleteRequest(
            worker_id=self.worker_id,
            variables=encode_variables(variables),
            local_variables=encode_variables(local_variables),
        )
        self._make_request(f"/external-task/{task_id}/complete", body)

    def extend_lock(self, task_id: str, new_duration: int):
        body = ExtendLockRequest(worker_id=self.worker_id, new_duration=new_duration)
        self._make_request(f"/external-task/{task_id}/extendLock", body)

    def failure(self, task_id: str, error_message: Optional[str], error_details: Optional[str] = None,
                retries: int = 0, retry_timeout: int = 0):
        body = FailureRequest(
            worker_id=self.worker_id,
            error_message=error_message,
            error_details=error_details,
            retries=retries,
            retry_timeout=retry_timeout,
        )
        self._make_request(f"/external-task/{task_id}/failure", body)

    def bpmn_error(self, task_id: str, error_code: str, error_message: Optional[str] = None,
                   variables: Optional[Dict[str, Any]] = None):
        body = BpmnErrorRequest(
            worker_id=self.worker_id,
            error_code=error_code,
            error_message=error_message,
            variables=encode_variables(variables),
        )
        self._make_request(f"/external-task/{task_id}/bpmnError", body)

    def unlock(self, task_id: str):
        self._make_request(f"/external-task/{task_id}/unlock")

    def close(self):
        self.http_client.close()
