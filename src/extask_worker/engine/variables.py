import json
from typing import Any, Dict, Optional

from extask_worker.engine.schemas import TypedValue

INT_MIN = -(2 ** 31)
INT_MAX = 2 ** 31 - 1


def encode_value(value: Any) -> TypedValue:
    if isinstance(value, TypedValue):
        return value
    if value is None:
        return TypedValue(value=None, type="Null")
    # bool before int, bool is an int subclass
    if isinstance(value, bool):
        return TypedValue(value=value, type="Boolean")
    if isinstance(value, int):
        return TypedValue(value=value, type="Integer" if INT_MIN <= value <= INT_MAX else "Long")
    if isinstance(value, float):
        return TypedValue(value=value, type="Double")
    if isinstance(value, str):
        return TypedValue(value=value, type="String")
    if isinstance(value, (dict, list)):
        return TypedValue(value=json.dumps(value), type="Json")
    raise TypeError(f"Cannot encode variable of type {type(value).__name__}")


def encode_variables(variables: Optional[Dict[str, Any]]) -> Optional[Dict[str, TypedValue]]:
    if variables is None:
        return None
    return {name: encode_value(value) for name, value in variables.items()}


def decode_value(typed: TypedValue) -> Any:
    if typed.type == "Json" and isinstance(typed.value, str):
        return json.loads(typed.value)
    return typed.value


def decode_variables(variables: Dict[str, TypedValue]) -> Dict[str, Any]:
    return {name: decode_value(typed) for name, typed in variables.items()}
