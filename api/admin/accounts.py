"""Admin accounts endpoint: list accounts, export them, adjust balances."""

from src.services.admin_console import AdminConsole
from src.utils.http import (
    BadRequest,
    actor_from_request,
    dispatch,
    json_response,
    parse_body,
    text_response,
)
from src.utils.logging import get_structured_logger, setup_logging

setup_logging()
logger = get_structured_logger(__name__)


async def _list_accounts(request: dict) -> dict:
    console = AdminConsole(actor_from_request(request))
    query = request.get("query") or {}

    export = (query.get("export") or "").lower()
    if export in ("accounts", "users", "csv"):
        document = await console.export_accounts_csv()
    elif export == "transactions":
        document = await console.export_transactions_csv()
    elif export:
        raise BadRequest(f"Unknown export: {export}")
    else:
        accounts = await console.list_accounts()
        summary = await console.credit_summary()
        return json_response(200, {
            "ok": True,
            "accounts": [account.model_dump(mode="json") for account in accounts],
            "summary": summary.model_dump(),
        })

    logger.info("CSV export served", export=export, filename=document.filename, row_count=document.row_count)
    return text_response(
        200,
        document.content,
        "text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{document.filename}"'},
    )


async def _adjust_credits(request: dict) -> dict:
    console = AdminConsole(actor_from_request(request))
    body = parse_body(request)

    account_id = body.get("account_id")
    if not account_id:
        raise BadRequest("account_id is required")

    adjustment = await console.adjust_balance(
        account_id,
        body.get("delta"),
        credit_type=body.get("credit_type") or "general",
        reason=body.get("reason"),
    )
    return json_response(200, {"ok": True, "adjustment": adjustment.model_dump(mode="json")})


def handler(request):
    """
    Admin account operations.

    GET lists accounts (``?export=accounts|transactions`` returns CSV);
    POST adjusts a general or listing credit balance.
    """
    return dispatch(request, {"GET": _list_accounts, "POST": _adjust_credits})
