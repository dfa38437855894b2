"""Lighthouse Sign MCP Server: agreement tools for AI agents.

Exposes the staff side of the agreement workflow as MCP tools so an
assistant can answer "who still has to sign?" and chase or cancel
agreements. Signing itself is never exposed here; signers sign through
their own links.

Tools:
    list_agreements   List a tenant's agreements, filtered by status
    get_agreement     Get one agreement with its signing chain
    agreement_counts  Per-status counts for a tenant
    void_agreement    Void an open agreement
    send_reminder     Queue a reminder email for a pending signer
    get_audit_trail   Get the audit history of an agreement

Invocation:
    lighthouse-sign-mcp
    python -m lighthouse_sign.mcp_server

Client configuration:
    {"mcpServers": {"lighthouse-sign": {"command": "lighthouse-sign-mcp"}}}
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .errors import AgreementError
from .models import Agreement, EffectiveStatus
from .models_template import SignerRole
from .query import ALL
from .service import AgreementService

logger = logging.getLogger("lighthouse_sign.mcp")

# Built on first use from LIGHTHOUSE_* settings.
_service: AgreementService | None = None

server = Server("lighthouse-sign")


def _get_service() -> AgreementService:
    global _service
    if _service is None:
        _service = AgreementService.from_settings()
    return _service


# ─────────────────────────────────────────────────────────────
# Response helpers
# ─────────────────────────────────────────────────────────────


def _json(data: Any) -> list[TextContent]:
    """Wrap data as a JSON TextContent response."""
    return [TextContent(type="text", text=json.dumps(data, indent=2, default=str))]


def _error(message: str) -> list[TextContent]:
    """Return an error payload as a JSON TextContent response."""
    return [TextContent(type="text", text=json.dumps({"error": message}))]


def _summary(a: Agreement, svc: AgreementService) -> dict[str, Any]:
    """Agreement overview without signing tokens."""
    primary = a.primary_signer
    return {
        "id": a.id,
        "document_title": a.document_title,
        "status": svc.effective_status(a).value,
        "recipient": primary.name if primary else None,
        "signed": sum(1 for s in a.signers if s.is_signed),
        "signers": len(a.signers),
        "sent_at": a.sent_at.isoformat(),
        "expires_at": a.expires_at.isoformat() if a.expires_at else None,
    }


# ─────────────────────────────────────────────────────────────
# Tool Definitions
# ─────────────────────────────────────────────────────────────

_AGREEMENT_ID = {"type": "string", "description": "Agreement ID."}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """Register all Lighthouse Sign tools with the MCP server."""
    return [
        Tool(
            name="list_agreements",
            description=(
                "List a tenant's agreements, newest first. Status is the "
                "effective status, so agreements past their deadline show as expired."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "tenant_id": {"type": "string", "description": "Tenant ID."},
                    "status": {
                        "type": "string",
                        "enum": [ALL] + [s.value for s in EffectiveStatus],
                        "description": "Status filter (default: all).",
                    },
                    "search": {
                        "type": "string",
                        "description": "Match on document title or signer name.",
                    },
                },
                "required": ["tenant_id"],
            },
        ),
        Tool(
            name="get_agreement",
            description=(
                "Get an agreement with its signing chain: who has signed, "
                "who is next, and when it expires."
            ),
            inputSchema={
                "type": "object",
                "properties": {"agreement_id": _AGREEMENT_ID},
                "required": ["agreement_id"],
            },
        ),
        Tool(
            name="agreement_counts",
            description="Number of agreements per effective status for a tenant.",
            inputSchema={
                "type": "object",
                "properties": {"tenant_id": {"type": "string", "description": "Tenant ID."}},
                "required": ["tenant_id"],
            },
        ),
        Tool(
            name="void_agreement",
            description=(
                "Permanently void an open agreement. Completed or already "
                "voided agreements cannot be voided."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "agreement_id": _AGREEMENT_ID,
                    "actor": {
                        "type": "string",
                        "description": "Staff member recorded in the audit trail.",
                    },
                },
                "required": ["agreement_id", "actor"],
            },
        ),
        Tool(
            name="send_reminder",
            description=(
                "Queue a reminder email for a pending signer. Defaults to "
                "whoever is next in the signing order."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "agreement_id": _AGREEMENT_ID,
                    "role": {
                        "type": "string",
                        "enum": [r.value for r in SignerRole],
                        "description": "Signer role to remind.",
                    },
                },
                "required": ["agreement_id"],
            },
        ),
        Tool(
            name="get_audit_trail",
            description="Get the full audit history of an agreement, oldest first.",
            inputSchema={
                "type": "object",
                "properties": {"agreement_id": _AGREEMENT_ID},
                "required": ["agreement_id"],
            },
        ),
    ]


# ─────────────────────────────────────────────────────────────
# Tool Dispatch
# ─────────────────────────────────────────────────────────────


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Dispatch incoming tool calls to the appropriate handler.

    Agreement errors come back as ``{"error": ...}`` payloads; anything
    else is logged with its traceback first.
    """
    handlers = {
        "list_agreements": _handle_list_agreements,
        "get_agreement": _handle_get_agreement,
        "agreement_counts": _handle_agreement_counts,
        "void_agreement": _handle_void_agreement,
        "send_reminder": _handle_send_reminder,
        "get_audit_trail": _handle_get_audit_trail,
    }
    handler = handlers.get(name)
    if handler is None:
        return _error(f"Unknown tool: {name}")
    try:
        return await handler(arguments)
    except AgreementError as exc:
        return _error(str(exc))
    except Exception as exc:
        logger.exception("Tool '%s' failed", name)
        return _error(f"{name} failed: {exc}")


# ─────────────────────────────────────────────────────────────
# Tool Handlers
# ─────────────────────────────────────────────────────────────


async def _handle_list_agreements(args: dict) -> list[TextContent]:
    tenant_id: str = args.get("tenant_id", "")
    if not tenant_id:
        return _error("tenant_id is required")
    status: str = args.get("status") or ALL
    if status != ALL and status not in {s.value for s in EffectiveStatus}:
        return _error(
            f"Invalid status '{status}'. Valid values: "
            + ", ".join([ALL] + [s.value for s in EffectiveStatus])
        )

    svc = _get_service()
    agreements = svc.list_agreements(tenant_id, status=status, search=args.get("search", ""))
    return _json([_summary(a, svc) for a in agreements])


async def _handle_get_agreement(args: dict) -> list[TextContent]:
    """Return one agreement with its signers (tokens omitted).

    Args:
        args: agreement_id (str).
    """
    agreement_id: str = args.get("agreement_id", "")
    if not agreement_id:
        return _error("agreement_id is required")

    svc = _get_service()
    a = svc.get_agreement(agreement_id)
    nxt = a.next_signer
    data = _summary(a, svc)
    data.update({
        "next_signer": nxt.role.value if nxt and not a.is_terminal else None,
        "can_glrs_sign": a.can_glrs_sign,
        "completed_at": a.completed_at.isoformat() if a.completed_at else None,
        "pdf_path": a.pdf_path,
        "signers": [
            {
                "role": s.role.value,
                "order": s.order,
                "name": s.name,
                "email": s.email,
                "status": s.status.value,
                "signed_at": s.signed_at.isoformat() if s.signed_at else None,
            }
            for s in a.ordered_signers
        ],
    })
    return _json(data)


async def _handle_agreement_counts(args: dict) -> list[TextContent]:
    tenant_id: str = args.get("tenant_id", "")
    if not tenant_id:
        return _error("tenant_id is required")
    return _json(_get_service().counts(tenant_id))


async def _handle_void_agreement(args: dict) -> list[TextContent]:
    agreement_id: str = args.get("agreement_id", "")
    actor: str = args.get("actor", "")
    if not agreement_id or not actor:
        return _error("agreement_id and actor are required")

    a = _get_service().void(agreement_id, actor)
    return _json({"voided": True, "agreement_id": a.id, "status": a.status.value})


async def _handle_send_reminder(args: dict) -> list[TextContent]:
    """Queue a reminder; returns the recipient, never the link."""
    agreement_id: str = args.get("agreement_id", "")
    if not agreement_id:
        return _error("agreement_id is required")
    role_str = args.get("role")
    try:
        role = SignerRole(role_str) if role_str else None
    except ValueError:
        return _error(f"Invalid role '{role_str}'")

    message = _get_service().remind(agreement_id, role=role)
    return _json({"queued": True, "to": message.to, "subject": message.subject})


async def _handle_get_audit_trail(args: dict) -> list[TextContent]:
    agreement_id: str = args.get("agreement_id", "")
    if not agreement_id:
        return _error("agreement_id is required")

    a = _get_service().get_agreement(agreement_id)
    return _json([
        {
            "timestamp": e.timestamp.isoformat(),
            "action": e.action.value,
            "actor": e.actor,
            "actor_role": e.actor_role.value if e.actor_role else None,
            "fields": e.fields,
            "recipients": e.recipients,
        }
        for e in a.audit_trail
    ])


# ─────────────────────────────────────────────────────────────
# Entry Point
# ─────────────────────────────────────────────────────────────


def main() -> None:
    """Run the Lighthouse Sign MCP server on stdio transport."""
    logging.basicConfig(level=logging.WARNING, format="%(name)s: %(message)s")
    asyncio.run(_run_server())


async def _run_server() -> None:
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream, write_stream, server.create_initialization_options()
        )


if __name__ == "__main__":
    main()
