"""
CLI interface for Quote Engine.

Provides command-line access to pricing, tax configuration and the
quote approval workflow.
"""

import logging
import sys
from decimal import Decimal
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from quote_engine.config.loader import (
    EngineConfig,
    load_catalog,
    load_draft,
    load_engine_config,
    load_tax_rules,
)
from quote_engine.core.analysis import analyze_quote
from quote_engine.core.approval import check_approval_requirements
from quote_engine.core.errors import (
    InsufficientStockError,
    InvalidTransitionError,
    QuoteNotFoundError,
    QuoteValidationError,
)
from quote_engine.core.quote_builder import ComputedQuote
from quote_engine.core.taxes import DEFAULT_TAX_RULES
from quote_engine.core.workflow import approve_quote, price_draft, recompute_record, submit_quote
from quote_engine.sdk import QuoteAssistant
from quote_engine.storage.db import DEFAULT_DB_PATH
from quote_engine.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# Errors a user can fix; anything else is reported as unexpected
USER_ERRORS = (
    QuoteValidationError,
    InvalidTransitionError,
    QuoteNotFoundError,
    InsufficientStockError,
    FileNotFoundError,
    yaml.YAMLError,
    ValueError,
)


def _config(ctx: typer.Context) -> EngineConfig:
    return ctx.obj["config"]


def _repository(ctx: typer.Context):
    return get_repository(ctx.obj["db_path"])


def _fail(error: Exception) -> None:
    """Print an error and exit with the failure code."""
    if isinstance(error, QuoteValidationError) and error.index is not None:
        console.print(f"[red]Error on line {error.index + 1} ({error.sku}):[/] {error}")
    else:
        console.print(f"[red]Error:[/] {error}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db_path: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the SQLite database"),
    config_path: Optional[str] = typer.Option(
        None, "--config", "-c", help="YAML settings file (built-in defaults if omitted)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show engine log messages"),
):
    """Quote Engine CLI."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_engine_config(config_path) if config_path else EngineConfig()
    except USER_ERRORS as e:
        _fail(e)
    ctx.obj = {"db_path": db_path, "config": config}

    if ctx.invoked_subcommand is None:
        console.print("Quote Engine - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the database and seed the first tax configuration."""
    try:
        initialize_schema(ctx.obj["db_path"])
        repository = _repository(ctx)
        if repository.current_tax_configuration() is None:
            rules = _config(ctx).taxes if _config(ctx).taxes is not None else DEFAULT_TAX_RULES
            saved = repository.save_tax_configuration(rules, created_by="system")
            console.print(f"[green]✓[/] Tax configuration v{saved.version} created")
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("import-catalog")
def import_catalog(ctx: typer.Context, path: str = typer.Argument(..., help="Catalog YAML file")):
    """Insert or update catalog items from a YAML file."""
    try:
        count = _repository(ctx).upsert_catalog_items(load_catalog(path))
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]✓[/] Imported {count} catalog item(s)")


@app.command("set-taxes")
def set_taxes(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Tax rules YAML file"),
    actor: str = typer.Option(..., "--actor", "-a", help="Who is changing the tax rules"),
):
    """Save a new tax configuration version. Approved invoices keep theirs."""
    try:
        saved = _repository(ctx).save_tax_configuration(load_tax_rules(path), created_by=actor)
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]✓[/] Tax configuration v{saved.version} saved")


@app.command()
def taxes(ctx: typer.Context):
    """Show the current tax configuration."""
    current = _repository(ctx).current_tax_configuration()
    if current is None:
        console.print("[yellow]No tax configuration saved.[/] Run `quote-engine init` first.")
        return

    table = Table(title=f"Tax configuration v{current.version}")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Rate", justify="right")
    table.add_column("Applies to")
    table.add_column("Enabled")
    for rule in current.rules:
        table.add_row(rule.id, rule.name, f"{rule.rate}%", rule.applies_to.value, "yes" if rule.enabled else "no")
    console.print(table)
    console.print(f"Saved {current.created_at:%Y-%m-%d %H:%M} by {current.created_by}")


@app.command()
def price(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Quote draft YAML file"),
    actor: str = typer.Option(..., "--actor", "-a", help="Who is pricing the quote"),
    save: Optional[str] = typer.Option(None, "--save", "-s", help="Save the draft under this quote id"),
):
    """Price a quote draft against the current catalog and tax rules."""
    config = _config(ctx)
    repository = _repository(ctx)
    try:
        draft = load_draft(path)
        quote = price_draft(draft, repository, config.pricing, actor)
        if save:
            repository.save_draft(save, draft, actor, quote)
    except USER_ERRORS as e:
        _fail(e)

    _display_quote(quote)
    check = check_approval_requirements(quote, config.approval)
    for message in check.messages:
        console.print(f"[yellow]Needs approval:[/] {message}")
    if save:
        console.print(f"[green]✓[/] Saved draft {save}")


@app.command()
def submit(
    ctx: typer.Context,
    quote_id: str = typer.Argument(...),
    actor: str = typer.Option(..., "--actor", "-a"),
):
    """Re-price a draft and send it for approval."""
    config = _config(ctx)
    try:
        record, check = submit_quote(quote_id, _repository(ctx), config.pricing, config.approval, actor)
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]✓[/] Quote {record.id} is {record.status.value}")
    for message in check.messages:
        console.print(f"[yellow]Needs approval:[/] {message}")


@app.command()
def approve(
    ctx: typer.Context,
    quote_id: str = typer.Argument(...),
    actor: str = typer.Option(..., "--actor", "-a"),
):
    """Approve a pending quote: freeze taxes, decrement stock, number it."""
    try:
        record = approve_quote(quote_id, _repository(ctx), _config(ctx).pricing, actor)
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]✓[/] Quote {record.id} approved as {record.invoice_number}")


@app.command()
def reject(
    ctx: typer.Context,
    quote_id: str = typer.Argument(...),
    reason: Optional[str] = typer.Option(None, "--reason", "-r"),
):
    """Reject a pending quote."""
    try:
        record = _repository(ctx).reject(quote_id, reason)
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]✓[/] Quote {record.id} rejected")


@app.command()
def redraft(ctx: typer.Context, quote_id: str = typer.Argument(...)):
    """Send a pending quote back to draft."""
    try:
        record = _repository(ctx).redraft(quote_id)
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]✓[/] Quote {record.id} is {record.status.value}")


@app.command()
def show(
    ctx: typer.Context,
    quote_id: str = typer.Argument(...),
    actor: str = typer.Option("cli", "--actor", "-a"),
):
    """Show a stored quote, re-priced (approved quotes use their frozen snapshot)."""
    repository = _repository(ctx)
    try:
        record = repository.get_quote(quote_id)
        quote = recompute_record(record, repository, _config(ctx).pricing, actor)
    except USER_ERRORS as e:
        _fail(e)

    console.print(f"\n[bold]Quote {record.id}[/bold] - {record.status.value}")
    if record.invoice_number:
        console.print(f"Invoice number: {record.invoice_number}")
    if record.approved_by:
        console.print(f"Approved by {record.approved_by} at {record.approved_at:%Y-%m-%d %H:%M}")
    _display_quote(quote)


@app.command()
def explain(
    ctx: typer.Context,
    quote_id: str = typer.Argument(...),
    model: str = typer.Option("gpt-4o-mini", "--model", "-m", help="OpenAI model name"),
    tier: str = typer.Option("standard", "--tier", help="Customer tier"),
    actor: str = typer.Option("cli", "--actor", "-a"),
):
    """Write a customer-facing summary of a stored quote."""
    repository = _repository(ctx)
    try:
        record = repository.get_quote(quote_id)
        quote = recompute_record(record, repository, _config(ctx).pricing, actor)
    except USER_ERRORS as e:
        _fail(e)

    analysis = analyze_quote(quote, tier)
    console.print(f"Profitability: {analysis.profitability} (risk {analysis.risk_level.value})")
    for factor in analysis.risk_factors:
        console.print(f"[yellow]![/] {factor}")

    try:
        summary = QuoteAssistant(model).summarize(quote, record.draft.customer_name, tier)
    except Exception as e:
        console.print(f"[red]Error generating summary:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(summary)


def _format_money(amount: Decimal, currency: str) -> str:
    """Format an amount with thousands separators at the precision it was rounded to."""
    return f"{currency} {amount:,}"


def _display_quote(quote: ComputedQuote):
    """Display line items and totals."""
    currency = quote.currency
    table = Table(title=f"Quote ({quote.incoterm}, {currency})")
    table.add_column("SKU")
    table.add_column("Description")
    table.add_column("Qty", justify="right")
    table.add_column("Landed", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Unit price", justify="right")
    table.add_column("Line total", justify="right")
    for line in quote.line_items:
        table.add_row(
            line.sku,
            line.description,
            str(line.quantity),
            f"{line.unit_landed_cost:,}",
            f"{line.percent_used}",
            f"{line.unit_price:,}",
            f"{line.line_total:,}",
        )
    console.print(table)

    totals = quote.totals
    names = {rule.id: rule.name for rule in quote.tax_rules}
    console.print(f"Subtotal: {_format_money(totals.subtotal, currency)}")
    console.print(f"Shipping: {_format_money(totals.shipping, currency)}")
    console.print(f"Handling: {_format_money(totals.handling, currency)}")
    console.print(f"Discount: -{_format_money(totals.discount, currency)}")
    for rule_id, amount in totals.tax_amounts.items():
        console.print(f"{names.get(rule_id, rule_id)}: {_format_money(amount, currency)}")
    console.print(f"Levy total: {_format_money(totals.levy_total, currency)}")
    console.print(f"[bold]Grand total: {_format_money(totals.grand_total, currency)}[/bold]")
    console.print(f"Gross margin: {totals.gross_margin_percent}%")


if __name__ == "__main__":
    app()
