from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class EngineModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class TypedValue(EngineModel):
    value: Any = None
    type: Optional[str] = None
    value_info: Optional[Dict[str, Any]] = None


class TopicRequest(EngineModel):
    topic_name: str
    lock_duration: int
    variables: Optional[List[str]] = None
    local_variables: bool = False
    business_key: Optional[str] = None
    process_definition_key: Optional[str] = None
    tenant_id_in: Optional[List[str]] = None


class FetchAndLockRequest(EngineModel):
    worker_id: str
    max_tasks: int
    use_priority: bool = True
    async_response_timeout: Optional[int] = None
    topics: List[TopicRequest]


class CompleteRequest(EngineModel):
    worker_id: str
    variables: Optional[Dict[str, TypedValue]] = None
    local_variables: Optional[Dict[str, TypedValue]] = None


class ExtendLockRequest(EngineModel):
    worker_id: str
    new_duration: int


class FailureRequest(EngineModel):
    worker_id: str
    error_message: Optional[str] = None
    error_details: Optional[str] = None
    retries: int = 0
    retry_timeout: int = 0


class BpmnErrorRequest(EngineModel):
    worker_id: str
    error_code: str
    error_message: Optional[str] = None
    variables: Optional[Dict[str, TypedValue]] = None


class LockedTask(EngineModel):
    """One task as returned by fetchAndLock."""
    model_config = ConfigDict(extra="ignore")

    id: str
    topic_name: str
    worker_id: Optional[str] = None
    activity_id: Optional[str] = None
    activity_instance_id: Optional[str] = None
    execution_id: Optional[str] = None
    process_definition_id: Optional[str] = None
    process_definition_key: Optional[str] = None
    process_instance_id: Optional[str] = None
    business_key: Optional[str] = None
    tenant_id: Optional[str] = None
    lock_expiration_time: Optional[str] = None
    retries: Optional[int] = None
    priority: int = 0
    error_message: Optional[str] = None
    error_details: Optional[str] = None
    variables: Dict[str, TypedValue] = {}


class EngineErrorBody(EngineModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    message: Optional[str] = None
