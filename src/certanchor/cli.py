"""Typer CLI for CertAnchor."""

import asyncio
from datetime import datetime

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="certanchor", help="CertAnchor: certificate issuance and verification")
console = Console()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the CertAnchor API server."""
    import uvicorn
    from certanchor.app import create_app

    console.print(f"[bold green]Starting CertAnchor on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def fingerprint(
    certificate_id: str = typer.Argument(..., help="Certificate id, e.g. CERT20260001"),
    subject: str = typer.Option(..., help="Subject name"),
    course: str = typer.Option(..., help="Course name"),
    issued_at: str = typer.Option(..., help="Issue timestamp (ISO-8601)"),
    institute: str = typer.Option(None, help="Institute name (defaults to configured)"),
):
    """Recompute a certificate fingerprint offline (no DB required)."""
    from certanchor.common.config import get_settings
    from certanchor.identity.fingerprint import compute_fingerprint

    try:
        moment = datetime.fromisoformat(issued_at)
    except ValueError:
        console.print(f"[bold red]Invalid timestamp:[/bold red] {issued_at}")
        raise typer.Exit(1)

    digest = compute_fingerprint(
        certificate_id=certificate_id,
        subject_name=subject,
        course_name=course,
        institute_name=institute or get_settings().institute_name,
        issued_at=moment,
    )
    console.print(f"[bold]{digest}[/bold]")


@app.command()
def sweep():
    """Run the temp-document and stale-provisional sweeps once."""
    from certanchor import deps

    async def _run():
        db = deps.get_db()
        await db.init()
        await db.create_all()
        try:
            return await deps.get_scheduler().run_once()
        finally:
            await db.close()

    result = asyncio.run(_run())
    table = Table(title="Maintenance sweep")
    table.add_column("Sweep")
    table.add_column("Removed / reconciled", justify="right")
    for name, items in result.items():
        table.add_row(name, str(len(items)))
    console.print(table)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check CertAnchor server and ledger health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] — v{data['version']}")
        ledger = httpx.get(f"{url}/verify/ledger/health", timeout=30).json()
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if ledger.get("usable"):
        console.print(f"Ledger: [bold green]ledger mode[/bold green] at block {ledger['block_height']}")
    else:
        console.print(f"Ledger: [bold yellow]fallback mode[/bold yellow] ({ledger.get('error')})")


if __name__ == "__main__":
    app()
