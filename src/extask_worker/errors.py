from typing import Optional


class ExternalTaskClientError(Exception):
    pass


class DuplicateTopicError(ExternalTaskClientError):
    def __init__(self, topic_name: str):
        super().__init__(f"Topic name '{topic_name}' has already been subscribed")
        self.topic_name = topic_name


class EngineClientError(ExternalTaskClientError):
    """
    Raised by the REST transport when a request cannot be sent or the engine
    answers with a non-2xx status.
    """
    def __init__(self, message: str, status_code: Optional[int] = None, error_type: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type


# --- Task service errors ---
class NotFoundError(ExternalTaskClientError):
    pass


class BadRequestError(ExternalTaskClientError):
    pass


class EngineError(ExternalTaskClientError):
    pass


class ConnectionLostError(ExternalTaskClientError):
    pass
