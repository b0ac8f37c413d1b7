import json
from typing import Any, Dict, Optional


def make_json_serializable(obj: Any) -> Any:
    """Helper to convert objects like UUIDs or datetimes to JSON serializable formats"""
    from uuid import UUID
    from datetime import datetime, date
    from decimal import Decimal
    from pydantic import BaseModel

    if isinstance(obj, BaseModel):
        return make_json_serializable(obj.model_dump(by_alias=True, exclude_none=True, mode="json"))
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, dict):
        return {str(k): make_json_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [make_json_serializable(i) for i in obj]
    if isinstance(obj, (set, frozenset)):
        return sorted((make_json_serializable(i) for i in obj), key=repr)
    return obj


def canonical_json(obj: Any) -> str:
    """
    Serialize with sorted keys at every nesting level and no incidental
    whitespace, so equal maps always produce the same text.
    """
    return json.dumps(
        make_json_serializable(obj),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def make_cache_key(query_id: str, parameters: Optional[Dict[str, Any]]) -> str:
    """Cache key for a query invocation: ``<query_id>:<canonical parameters>``"""
    return f"{query_id}:{canonical_json(parameters or {})}"


def same_parameters(left: Optional[Dict[str, Any]], right: Optional[Dict[str, Any]]) -> bool:
    """Deep, key-order-insensitive equality of two parameter maps"""
    return canonical_json(left or {}) == canonical_json(right or {})
