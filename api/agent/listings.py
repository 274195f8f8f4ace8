"""Agent listings endpoint: list, create, edit and move listings through their states."""

from src.models.listing import ListingStatus
from src.services.agent_console import AgentConsole
from src.utils.http import (
    BadRequest,
    actor_from_request,
    dispatch,
    json_response,
    parse_body,
)
from src.utils.logging import setup_logging

setup_logging()


def _listing_id(body: dict) -> str:
    listing_id = body.get("listing_id")
    if not listing_id:
        raise BadRequest("listing_id is required")
    return listing_id


def _listing_payload(body: dict) -> dict:
    attributes = body.get("attributes")
    if attributes is None:
        attributes = {k: v for k, v in body.items() if k not in ("listing_id", "status", "commands")}
    if not isinstance(attributes, dict):
        raise BadRequest("attributes must be an object")
    return attributes


async def _list_listings(request: dict) -> dict:
    console = AgentConsole(actor_from_request(request))
    query = request.get("query") or {}

    if query.get("stats"):
        stats = await console.dashboard_stats()
        return json_response(200, {"ok": True, "stats": stats.model_dump()})

    listings = await console.list_my_listings(status=query.get("status") or None)
    return json_response(200, {
        "ok": True,
        "listings": [listing.model_dump(mode="json") for listing in listings],
    })


async def _create_listing(request: dict) -> dict:
    console = AgentConsole(actor_from_request(request))
    body = parse_body(request)

    if body.get("boost"):
        listing = await console.boost_listing(body["boost"])
        return json_response(200, {"ok": True, "listing": listing.model_dump(mode="json")})

    if body.get("duplicate_of"):
        listing = await console.duplicate_listing(body["duplicate_of"])
    else:
        listing = await console.create_listing(_listing_payload(body))
    return json_response(201, {"ok": True, "listing": listing.model_dump(mode="json")})


async def _update_listing(request: dict) -> dict:
    console = AgentConsole(actor_from_request(request))
    body = parse_body(request)
    listing_id = _listing_id(body)

    commands = body.get("commands")
    if commands is not None:
        if not isinstance(commands, list):
            raise BadRequest("commands must be a list")
        listing = await console.edit_content(listing_id, commands)
    else:
        listing = await console.update_listing(listing_id, _listing_payload(body))
    return json_response(200, {"ok": True, "listing": listing.model_dump(mode="json")})


async def _transition_listing(request: dict) -> dict:
    console = AgentConsole(actor_from_request(request))
    body = parse_body(request)
    listing_id = _listing_id(body)

    status = body.get("status")
    if status == ListingStatus.PENDING.value:
        listing = await console.resubmit_listing(listing_id, body.get("attributes"))
    elif status == ListingStatus.ARCHIVED.value:
        listing = await console.archive_listing(listing_id)
    else:
        listing = await console.lifecycle.transition_status(listing_id, console.actor, status)
    return json_response(200, {"ok": True, "listing": listing.model_dump(mode="json")})


def handler(request):
    """
    Agent listing operations.

    GET lists the caller's listings (``?status=`` filter, ``?stats=1`` for
    dashboard counters); POST creates (or duplicates with ``duplicate_of``, or features an
    approved listing with ``boost``);
    PATCH replaces attributes or applies content ``commands``; PUT moves the
    listing to ``status``.
    """
    return dispatch(request, {
        "GET": _list_listings,
        "POST": _create_listing,
        "PATCH": _update_listing,
        "PUT": _transition_listing,
    })
