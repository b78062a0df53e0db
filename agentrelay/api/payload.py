from __future__ import annotations

import json
from typing import Any, Dict

from fastapi import Request

from agentrelay.logging import get_logger
from agentrelay.service.errors import UnsupportedPayloadError

logger = get_logger(__name__)

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def _read_form(request: Request) -> Dict[str, Any]:
    try:
        form = await request.form()
    except Exception as exc:
        raise UnsupportedPayloadError(
            "Unsupported content type.", detail={"reason": "invalid_form"}
        ) from exc
    # Uploaded files carry no identifiers; keep plain fields only
    return {key: value for key, value in form.items() if isinstance(value, str)}


async def _read_json(request: Request) -> Dict[str, Any]:
    body = await request.body()
    if not body.strip():
        return {}
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise UnsupportedPayloadError(
            "Unsupported content type.", detail={"reason": "invalid_json"}
        ) from exc
    if not isinstance(data, dict):
        raise UnsupportedPayloadError(
            "Unsupported content type.",
            detail={"reason": "not_an_object", "type": type(data).__name__},
        )
    return data


async def read_webhook_payload(request: Request) -> Dict[str, Any]:
    """Decode a webhook body into a dict.

    JSON and form bodies are accepted; any other or missing content type is
    tried as JSON. An empty body decodes to ``{}``. For GET requests the
    query parameters are used as a base that body fields override.

    Raises:
        UnsupportedPayloadError: body is not a JSON object or valid form
    """
    content_type = request.headers.get("content-type", "").lower()
    if any(form_type in content_type for form_type in _FORM_TYPES):
        data = await _read_form(request)
    else:
        data = await _read_json(request)

    if request.method.upper() == "GET" and request.query_params:
        data = {**dict(request.query_params), **data}
    logger.debug(
        "webhook_payload_parsed",
        content_type=content_type or None,
        fields=sorted(data.keys()),
    )
    return data


__all__ = ["read_webhook_payload"]
