from typing import Any, Dict, List

from core.errors import CaptionCraftError, ValidationError


def error_response(exc: CaptionCraftError) -> Dict[str, Any]:
    return exc.to_dict()


def validation_error_from_pydantic(errors: List[Dict[str, Any]]) -> ValidationError:
    """把 FastAPI/pydantic 的错误列表转成字段级的 ValidationError。"""
    details = []
    for err in errors or []:
        loc = [str(x) for x in (err.get("loc") or []) if x not in ("body", "query", "path")]
        details.append({
            "field": ".".join(loc) or "body",
            "message": str(err.get("msg") or "invalid value"),
            "type": str(err.get("type") or ""),
        })
    return ValidationError("Invalid input", details=details)
