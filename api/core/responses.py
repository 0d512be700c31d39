"""
Response envelope helpers.

Success bodies are `{"success": true, "data": ...}`; failures are produced by
the exception handlers in `api/main.py` as `{"success": false, "message": ...}`.
"""

from __future__ import annotations

from typing import Any


def ok(data: Any = None, *, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def fail(message: str) -> dict[str, Any]:
    return {"success": False, "message": message}
