# core/services/utils.py
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Iterable as TIterable, Tuple
from collections.abc import Mapping, Iterable

from hexbytes import HexBytes
from pydantic import BaseModel
from web3 import Web3


def to_json_safe(obj: Any) -> Any:
    """
    Recursively convert web3 / pydantic / HexBytes-heavy structures into plain
    JSON-serializable primitives.

    - HexBytes / bytes -> "0x..." str
    - IntEnum / StrEnum -> member name / value
    - pydantic models -> model_dump(mode="json")
    - dataclasses -> dict (signing keys are never part of the output)
    - Mapping -> {k: to_json_safe(v)}   (covers AttributeDict, dict-like)
    - list/tuple/set -> [to_json_safe(v), ...]
    - ints beyond 2**53 stay ints; json handles them, JS consumers should read them as strings
    """
    if isinstance(obj, HexBytes):
        return Web3.to_hex(obj)

    if isinstance(obj, (bytes, bytearray)):
        return "0x" + bytes(obj).hex()

    if isinstance(obj, Enum):
        return obj.name if isinstance(obj.value, int) else obj.value

    if isinstance(obj, (str, int, float, bool)) or obj is None:
        return obj

    if isinstance(obj, BaseModel):
        return to_json_safe(obj.model_dump(mode="json"))

    if is_dataclass(obj) and not isinstance(obj, type):
        as_dict = getattr(obj, "as_dict", None)
        data = as_dict() if callable(as_dict) else asdict(obj)
        return to_json_safe(data)

    if isinstance(obj, Mapping):
        return {str(k): to_json_safe(v) for (k, v) in obj.items()}

    if isinstance(obj, (list, tuple, set)):
        return [to_json_safe(v) for v in obj]

    if isinstance(obj, Iterable) and not isinstance(obj, (str, bytes, bytearray)):
        return [to_json_safe(v) for v in obj]

    return str(obj)


def format_rows(rows: TIterable[Tuple[str, Any]], *, width: int = 0) -> str:
    """
    Aligned "label : value" lines for human-readable command output.
    """
    rows = [(str(k), v) for k, v in rows]
    pad = max([width] + [len(k) for k, _ in rows])
    lines = []
    for label, value in rows:
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(to_json_safe(v)) for v in value) or "-"
        elif isinstance(value, bool):
            value = "yes" if value else "no"
        elif value is None:
            value = "-"
        lines.append(f"{label.ljust(pad)} : {to_json_safe(value) if not isinstance(value, str) else value}")
    return "\n".join(lines)
