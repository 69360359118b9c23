"""
JSON envelopes shared by every router.
"""
from typing import Any, Dict, List, Optional

from fastapi import HTTPException


def validation_body(fields: Dict[str, List[str]]) -> Dict[str, Any]:
    return {"error": "Validation failed", "fields": fields}


def list_body(items: List[Any], page: int, limit: int, total: int) -> Dict[str, Any]:
    return {"items": items, "page": page, "limit": limit, "total": total}


def single_body(key: str, item: Any) -> Dict[str, Any]:
    return {key: item}


def warning_body(key: str, item: Any, message: str) -> Dict[str, Any]:
    return {key: item, "warning": True, "message": message}


def fields_from_validation_errors(errors: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """
    Collapse pydantic/FastAPI error entries into {field: [messages]}.

    The location prefix (body/query/path) is dropped; nested locations are
    joined with dots.
    """
    fields: Dict[str, List[str]] = {}
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "form")]
        field = ".".join(loc) or "_body"
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        fields.setdefault(field, []).append(message)
    return fields


def detail_to_body(detail: Any) -> Dict[str, Any]:
    """Map an HTTPException detail to the error envelope"""
    if isinstance(detail, dict):
        if "error" in detail:
            return detail
        return {"error": "Error", "details": detail}
    return {"error": str(detail) if detail is not None else "Error"}


def paginate(page: Optional[int], limit: Optional[int], default_limit: int = 20, max_limit: int = 100):
    """Clamp page/limit and return (page, limit, start, end) for .range()"""
    page = max(1, page or 1)
    limit = min(max(1, limit or default_limit), max_limit)
    start = (page - 1) * limit
    return page, limit, start, start + limit - 1


def raise_for_result(result: Dict[str, Any], default_status: int = 500) -> None:
    """
    Turn a failed service result into an HTTPException.

    Service results look like {"success": False, "error": msg,
    "status_code": 404, ...}; "fields" becomes a validation envelope and
    any other extra keys are passed through.
    """
    if result.get("success"):
        return

    status_code = result.get("status_code", default_status)
    if result.get("fields"):
        detail = validation_body(result["fields"])
    else:
        detail = {"error": result.get("error") or "Request failed"}

    for key, value in result.items():
        if key not in ("success", "error", "status_code", "data", "fields"):
            detail[key] = value
    raise HTTPException(status_code=status_code, detail=detail)
