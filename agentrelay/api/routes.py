from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from agentrelay.api.payload import read_webhook_payload
from agentrelay.api.schemas import FetchResponseBody, InboundAck, WebhookFailure
from agentrelay.logging import get_logger, preview
from agentrelay.service.completion import extract_message, extract_user_profile
from agentrelay.service.correlation import Channel, derive_key
from agentrelay.service.errors import UnsupportedPayloadError
from agentrelay.service.relay import PROCESSING_TEXT
from agentrelay.service.runtime import Runtime, get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])

UNSUPPORTED_TEXT = "Unsupported content type."
FETCH_ERROR_TEXT = "Sorry, an error occurred."
EMPTY_MESSAGE_TEXT = "Empty message received."


async def _process_inbound(
    runtime: Runtime, key: str, message: str, profile: Dict[str, str]
) -> None:
    async def produce() -> str:
        return await runtime.completion.complete(message, profile=profile, key=key)

    await runtime.relay.publish_completion(key, produce)


@router.post("/{channel}/{webhook_id}")
async def receive_message(
    channel: Channel,
    webhook_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    runtime: Runtime = Depends(get_runtime),
):
    """Accept an inbound message and answer before the completion runs.

    The reply is published to the slot store by a background task and
    collected later through the fetchresponse endpoint.
    """
    try:
        payload = await read_webhook_payload(request)
    except UnsupportedPayloadError as exc:
        logger.warning(
            "inbound_payload_unsupported",
            channel=channel.value,
            webhook_id=webhook_id,
            detail=exc.detail,
        )
        return JSONResponse(
            status_code=400, content=WebhookFailure.from_text(UNSUPPORTED_TEXT).model_dump()
        )

    key = derive_key(webhook_id, payload, channel)
    message = extract_message(payload, channel)
    if not message:
        logger.warning("inbound_message_empty", channel=channel.value, key=key)
        return JSONResponse(
            status_code=400, content=WebhookFailure.from_text(EMPTY_MESSAGE_TEXT).model_dump()
        )

    profile = extract_user_profile(payload)
    logger.info(
        "inbound_message_received",
        channel=channel.value,
        key=key,
        preview=preview(message),
    )
    background_tasks.add_task(_process_inbound, runtime, key, message, profile)
    return InboundAck().model_dump()


@router.get("/{channel}/{webhook_id}")
async def receive_message_get(channel: Channel, webhook_id: str):
    return JSONResponse(status_code=405, content={"message": "Use POST method"})


@router.api_route("/{channel}/{webhook_id}/fetchresponse", methods=["POST", "GET"])
async def fetch_response(
    channel: Channel,
    webhook_id: str,
    request: Request,
    runtime: Runtime = Depends(get_runtime),
):
    """Hand the pending reply to the platform's poll, consuming it.

    Always answers 200: the platform polls again based on ``status``.
    """
    try:
        payload = await read_webhook_payload(request)
        key = derive_key(webhook_id, payload, channel)
        result = await runtime.relay.fetch(key)
    except UnsupportedPayloadError as exc:
        logger.warning(
            "fetch_payload_unsupported",
            channel=channel.value,
            webhook_id=webhook_id,
            detail=exc.detail,
        )
        body = FetchResponseBody(text=UNSUPPORTED_TEXT, success=False, status="error")
        return body.to_payload()
    except Exception as exc:
        logger.exception(
            "fetch_response_failed",
            channel=channel.value,
            webhook_id=webhook_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        body = FetchResponseBody(text=FETCH_ERROR_TEXT, success=False, status="error")
        return body.to_payload()

    if result.completed:
        logger.info(
            "fetch_completed",
            channel=channel.value,
            key=key,
            attempts=result.attempts,
            preview=preview(result.text),
        )
        body = FetchResponseBody(
            text=result.text,
            success=True,
            response=result.text,
            status="completed",
        )
    else:
        body = FetchResponseBody(
            text=PROCESSING_TEXT, success=False, pending=True, status="processing"
        )
    return body.to_payload()
