"""Test helper functions."""

import json
from typing import Dict, Any, Optional

from src.models.account import Actor


def identity_headers(actor: Actor) -> Dict[str, str]:
    """Headers the upstream auth layer adds for an authenticated account."""
    return {
        "content-type": "application/json",
        "x-account-id": actor.account_id,
        "x-account-role": actor.role.value,
    }


def create_vercel_request(
    method: str = "POST",
    path: str = "/api/agent/listings",
    body: Any = None,
    headers: Optional[Dict[str, str]] = None,
    query: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Create a Vercel request object for testing."""
    if headers is None:
        headers = {
            "content-type": "application/json"
        }

    return {
        "method": method,
        "path": path,
        "headers": headers,
        "body": json.dumps(body) if isinstance(body, (dict, list)) else body,
        "query": query or {},
    }
