"""Lighthouse Sign CLI: GLRS agreement administration from the command line.

Usage:
    lighthouse-sign templates [--tenant glrs]
    lighthouse-sign list --tenant glrs [--status sent] [--search smith]
    lighthouse-sign show <agreement-id>
    lighthouse-sign audit <agreement-id>
    lighthouse-sign link <agreement-id>
    lighthouse-sign remind <agreement-id> [--role family]
    lighthouse-sign void <agreement-id> --actor "Jane Admin"
    lighthouse-sign export <agreement-id>
    lighthouse-sign serve [--port 8400]
"""

import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .errors import AgreementError
from .models import Agreement, EffectiveStatus
from .models_template import SignerRole, role_label
from .query import ALL
from .service import AgreementService

console = Console()

STATUS_COLORS = {
    EffectiveStatus.SENT: "yellow",
    EffectiveStatus.PARTIALLY_SIGNED: "blue",
    EffectiveStatus.COMPLETED: "green",
    EffectiveStatus.VOIDED: "red",
    EffectiveStatus.EXPIRED: "magenta",
}


def _fail(exc: object) -> NoReturn:
    console.print(f"[red]{exc}[/]", soft_wrap=True)
    sys.exit(1)


def _status_text(status: EffectiveStatus) -> str:
    return f"[{STATUS_COLORS.get(status, 'white')}]{status.value}[/]"


def _load(service: AgreementService, agreement_id: str) -> Agreement:
    try:
        return service.get_agreement(agreement_id)
    except FileNotFoundError:
        _fail(f"Agreement not found: {agreement_id}")


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(),
    default=None,
    help="Data directory (default: $LIGHTHOUSE_DATA_DIR or ~/.lighthouse-sign)",
)
@click.pass_context
def main(ctx: click.Context, data_dir: Optional[str]) -> None:
    """Lighthouse Sign: sequential multi-party signing for GLRS agreements."""
    ctx.ensure_object(dict)
    if "service" not in ctx.obj:
        base = Path(data_dir) if data_dir else None
        ctx.obj["service"] = AgreementService.from_settings(data_dir=base)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

@main.command()
@click.option("--tenant", default=None, help="Only this tenant's templates")
@click.pass_context
def templates(ctx: click.Context, tenant: Optional[str]) -> None:
    """List templates."""
    service: AgreementService = ctx.obj["service"]
    tpls = service.list_templates(tenant_id=tenant)

    if not tpls:
        console.print("[dim]No templates found.[/]")
        return

    table = Table(title="Templates")
    table.add_column("ID", style="dim", max_width=12)
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Blocks", justify="right")
    table.add_column("Sendable", justify="center")

    for t in tpls:
        table.add_row(
            t.id[:12],
            t.name,
            t.status.value,
            str(len(t.content.blocks)),
            "[green]yes[/]" if t.is_sendable else "[dim]no[/]",
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Agreements
# ---------------------------------------------------------------------------

@main.command("list")
@click.option("--tenant", required=True, help="Tenant id")
@click.option(
    "--status",
    default=ALL,
    type=click.Choice([ALL] + [s.value for s in EffectiveStatus]),
    help="Filter by effective status",
)
@click.option("--search", default="", help="Match document title or signer name")
@click.pass_context
def list_agreements(ctx: click.Context, tenant: str, status: str, search: str) -> None:
    """List a tenant's agreements with per-status counts."""
    service: AgreementService = ctx.obj["service"]
    counts = service.counts(tenant)
    agreements = service.list_agreements(tenant, status=status, search=search)

    console.print(
        "  ".join(f"{key}: [bold]{n}[/]" for key, n in counts.items())
    )

    if not agreements:
        console.print("[dim]No agreements found.[/]")
        return

    table = Table(title="Agreements")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Title", style="cyan")
    table.add_column("Recipient")
    table.add_column("Status", justify="center")
    table.add_column("Signed", justify="right")
    table.add_column("Sent")

    for a in agreements:
        signed = sum(1 for s in a.signers if s.is_signed)
        primary = a.primary_signer
        table.add_row(
            a.id[:8],
            a.document_title,
            primary.name if primary else "-",
            _status_text(service.effective_status(a)),
            f"{signed}/{len(a.signers)}",
            a.sent_at.strftime("%Y-%m-%d"),
        )

    console.print(table)


@main.command()
@click.argument("agreement_id")
@click.pass_context
def show(ctx: click.Context, agreement_id: str) -> None:
    """Show an agreement and its signing chain."""
    service: AgreementService = ctx.obj["service"]
    a = _load(service, agreement_id)
    expires = a.expires_at.strftime("%Y-%m-%d") if a.expires_at else "-"

    console.print(
        Panel(
            f"  Title:    {a.document_title}\n"
            f"  ID:       {a.id}\n"
            f"  Status:   {_status_text(service.effective_status(a))}\n"
            f"  Sent:     {a.sent_at:%Y-%m-%d %H:%M}\n"
            f"  Expires:  {expires}\n"
            f"  PDF:      {a.pdf_path or '-'}",
            title="Agreement",
            border_style="cyan",
        )
    )

    table = Table(title="Signers")
    table.add_column("#", justify="right")
    table.add_column("Role")
    table.add_column("Name", style="cyan")
    table.add_column("Email")
    table.add_column("Status")
    table.add_column("Signed at", style="dim")

    for s in a.ordered_signers:
        table.add_row(
            str(s.order),
            role_label(s.role),
            s.name,
            s.email or "-",
            "[green]signed[/]" if s.is_signed else "[yellow]pending[/]",
            s.signed_at.strftime("%Y-%m-%d %H:%M") if s.signed_at else "",
        )

    console.print(table)


@main.command()
@click.argument("agreement_id")
@click.pass_context
def audit(ctx: click.Context, agreement_id: str) -> None:
    """Show the audit trail for an agreement."""
    service: AgreementService = ctx.obj["service"]
    entries = _load(service, agreement_id).audit_trail

    table = Table(title="Audit Trail")
    table.add_column("Time", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Actor")
    table.add_column("Details")

    for e in entries:
        details = ""
        if e.fields:
            details = f"{len(e.fields)} field(s)"
        elif e.recipients:
            details = ", ".join(e.recipients)
        table.add_row(
            e.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            e.action.value,
            e.actor,
            details,
        )

    console.print(table)


@main.command()
@click.argument("agreement_id")
@click.pass_context
def link(ctx: click.Context, agreement_id: str) -> None:
    """Print the signing link of every external signer."""
    service: AgreementService = ctx.obj["service"]
    _load(service, agreement_id)
    links = service.signing_links(agreement_id)

    if not links:
        console.print("[dim]No external signers.[/]")
        return

    for sl in links:
        console.print(f"[bold]{role_label(sl.role)}[/] {sl.name}")
        # soft_wrap keeps the URL on one line for copy and paste
        console.print(sl.link, soft_wrap=True)


@main.command()
@click.argument("agreement_id")
@click.option(
    "--role",
    default=None,
    type=click.Choice([r.value for r in SignerRole]),
    help="Signer to remind (default: whoever is up next)",
)
@click.pass_context
def remind(ctx: click.Context, agreement_id: str, role: Optional[str]) -> None:
    """Queue a reminder email for a pending signer."""
    service: AgreementService = ctx.obj["service"]
    try:
        message = service.remind(agreement_id, role=SignerRole(role) if role else None)
    except AgreementError as exc:
        _fail(exc)
    console.print(f"[green]Reminder queued[/] for {message.to}")


@main.command()
@click.argument("agreement_id")
@click.option("--actor", required=True, help="Name recorded in the audit trail")
@click.confirmation_option(prompt="Voiding cannot be undone. Continue?")
@click.pass_context
def void(ctx: click.Context, agreement_id: str, actor: str) -> None:
    """Void an open agreement."""
    service: AgreementService = ctx.obj["service"]
    try:
        a = service.void(agreement_id, actor)
    except AgreementError as exc:
        _fail(exc)
    console.print(f"[red]Voided[/] {a.document_title} ({a.id[:8]})")


@main.command()
@click.argument("agreement_id")
@click.pass_context
def export(ctx: click.Context, agreement_id: str) -> None:
    """Render a completed agreement to PDF."""
    service: AgreementService = ctx.obj["service"]
    with console.status("[bold]Rendering PDF...[/]"):
        try:
            a = service.export(agreement_id)
        except AgreementError as exc:
            _fail(exc)
    console.print(f"[green]PDF written:[/] {a.pdf_path}")


# ---------------------------------------------------------------------------
# Serve
# ---------------------------------------------------------------------------

@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8400, help="Port")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Start the Lighthouse Sign API server."""
    import uvicorn

    from .api import create_app

    console.print(
        f"[bold]Lighthouse Sign API[/] listening on [cyan]http://{host}:{port}[/]"
    )
    uvicorn.run(create_app(ctx.obj["service"]), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
