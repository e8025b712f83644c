import json
import logging
from typing import Callable, TypeVar, Union

T = TypeVar("T")

logger = logging.getLogger(__name__)


def isolated(
    fn: Callable[[], T],
    event: Union[str, Callable[[Exception], str]],
    default: T = None,
    log: logging.Logger = logger,
    **fields,
) -> T:
    """
    Run fn, logging and swallowing any Exception it raises. `event` is the
    event name to log, or a callable picking one from the exception.
    Returns fn's result, or `default` when it failed.
    """
    try:
        return fn()
    except Exception as e:
        name = event(e) if callable(event) else event
        log.exception(json.dumps({"event": name, **fields, "error": str(e)}, default=str))
        return default
