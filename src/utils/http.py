"""Helpers shared by the serverless HTTP handlers in ``api/``."""

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from src.models.account import Actor
from src.utils.errors import PropertyAIError
from src.utils.logging import correlation_context, get_structured_logger, mask_sensitive_data
from src.utils.logging_config import LoggingConfig

logger = get_structured_logger(__name__)

ACCOUNT_ID_HEADER = "x-account-id"
ACCOUNT_ROLE_HEADER = "x-account-role"


class Unauthorized(PropertyAIError):
    """Request carries no usable identity."""
    status_code = 401
    code = "unauthorized"


class BadRequest(PropertyAIError):
    """Request body or method cannot be handled."""
    status_code = 400
    code = "bad_request"


class MethodNotAllowed(PropertyAIError):
    status_code = 405
    code = "method_not_allowed"


def run_async(coro: Awaitable) -> Any:
    """Run a coroutine to completion from a synchronous handler."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def json_response(status_code: int, body: Any, headers: Optional[dict] = None) -> dict:
    response_headers = {"Content-Type": "application/json"}
    response_headers.update(headers or {})
    return {
        "statusCode": status_code,
        "headers": response_headers,
        "body": json.dumps(body, default=str),
    }


def text_response(status_code: int, body: str, content_type: str, headers: Optional[dict] = None) -> dict:
    response_headers = {"Content-Type": content_type}
    response_headers.update(headers or {})
    return {"statusCode": status_code, "headers": response_headers, "body": body}


def error_response(error: PropertyAIError) -> dict:
    return json_response(error.status_code, error.to_dict())


def get_header(request: dict, name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    headers = request.get("headers") or {}
    name = name.lower()
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def parse_body(request: dict) -> dict:
    raw = request.get("body")
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        body = json.loads(raw)
    except json.JSONDecodeError as e:
        raise BadRequest(f"Invalid JSON body: {e.msg}") from e
    if not isinstance(body, dict):
        raise BadRequest("JSON body must be an object")
    return body


def actor_from_request(request: dict) -> Actor:
    """Identity and role asserted by the upstream authentication layer."""
    account_id = get_header(request, ACCOUNT_ID_HEADER)
    role = get_header(request, ACCOUNT_ROLE_HEADER)
    if not account_id or not role:
        raise Unauthorized("Missing account identity headers")
    try:
        return Actor(account_id=account_id, role=role.lower())
    except ValidationError as e:
        raise Unauthorized(f"Invalid account identity: {e.errors()[0]['msg']}") from e


def dispatch(request: dict, routes: dict[str, Callable[[dict], Awaitable[dict]]]) -> dict:
    """Route by HTTP method and translate errors into status codes.

    Each route is an async callable returning a response dict.
    """
    method = (request.get("method") or "GET").upper()
    correlation_id = get_header(request, LoggingConfig.LOG_CORRELATION_ID_HEADER)

    with correlation_context(correlation_id):
        try:
            route = routes.get(method)
            if route is None:
                raise MethodNotAllowed(f"Method {method} not allowed")
            return run_async(route(request))
        except PropertyAIError as e:
            log = logger.error if e.status_code >= 500 else logger.warning
            log(
                "Request failed",
                method=method,
                path=request.get("path"),
                error_code=e.code,
                status_code=e.status_code,
                error=mask_sensitive_data(str(e)),
            )
            return error_response(e)
        except Exception as e:
            logger.error(
                "Unhandled error processing request",
                exc_info=True,
                method=method,
                path=request.get("path"),
                error=mask_sensitive_data(str(e)),
            )
            return json_response(500, {"error": "internal_error", "message": "Internal server error"})
