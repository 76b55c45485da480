"""
pagepatch CLI - Command-line interface for persistent page edits.

Works on HTML snapshots (saved pages or `pagepatch capture` output) and a
JSON patch store shared by every command.
"""

from pathlib import Path
from typing import Optional
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from pagepatch.core.errors import ImportValidationError, MalformedPatchPayload
from pagepatch.core.scope import Scope

console = Console()

DEFAULT_STORE = "./.pagepatch/patches.json"
SCOPES = [scope.value for scope in Scope]
KINDS = ["text", "html", "attr", "style_append", "style_replace", "hide", "remove"]


def _open_session(store_path: str, scope: str, address: str, html_file: Optional[str] = None):
    """Session over an HTML file (or an empty page when there is none)."""
    from pagepatch import PatchSession, SessionConfig
    from pagepatch.layers.memory.persistence import JsonFileStorage
    from pagepatch.layers.sense.document import Document

    if html_file:
        markup = Path(html_file).read_text(encoding="utf-8")
    else:
        markup = "<html><head></head><body></body></html>"
    document = Document.from_html(markup, address=address)
    session = PatchSession(document, JsonFileStorage(store_path), SessionConfig(scope=scope))
    session.activate()
    return session


def _address_for(html_file: str, url: Optional[str]) -> str:
    return url or Path(html_file).resolve().as_uri()


def _write_html(session, html_file: str, output: Optional[str]) -> str:
    target = output or html_file
    Path(target).write_text(session.document.to_html(), encoding="utf-8")
    return target


def _truncate(text: str, width: int = 60) -> str:
    return text[:width] + "..." if len(text) > width else text


@click.group()
@click.version_option(version="0.1.0", prog_name="pagepatch")
@click.option('--verbose', '-v', is_flag=True, help='Show engine logs')
def cli(verbose):
    """🩹 pagepatch - Persistent visual edits for live pages

    Locate nodes, record edits as patches and re-apply them to fresh
    copies of a page.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@cli.command()
@click.argument('html_file', type=click.Path(exists=True, dir_okay=False))
@click.argument('selector')
@click.option('--url', default=None, help='Page address (default: file URI of HTML_FILE)')
def locate(html_file, selector, url):
    """
    Show the stable locator of every node matching SELECTOR.

    SELECTOR is a CSS selector; it also searches open shadow roots.

    \b
    Example:

        pagepatch locate page.html "button.buy"
    """
    from pagepatch.layers.sense.document import query_all

    session = _open_session(DEFAULT_STORE, "full", _address_for(html_file, url), html_file)
    nodes = query_all(session.document, selector)
    if not nodes:
        console.print(f"[yellow]⚠️ No node matches {escape(selector)}[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Tag", style="green")
    table.add_column("Type", style="blue")
    table.add_column("Locator", style="yellow")
    table.add_column("Unique", justify="center")

    for i, node in enumerate(nodes, 1):
        locator = session.synthesize(node)
        matches = session.resolve_all(locator)
        unique = "[green]✅[/green]" if len(matches) == 1 and matches[0] is node else "[red]❌[/red]"
        table.add_row(str(i), node.tag, locator.kind, escape(str(locator)), unique)

    console.print(table)


@cli.command()
@click.argument('html_file', type=click.Path(exists=True, dir_okay=False))
@click.argument('selector')
@click.argument('kind', type=click.Choice(KINDS))
@click.argument('value', required=False, default="")
@click.option('--attr', 'attribute_name', default=None, help='Attribute name (for kind "attr")')
@click.option('--first', is_flag=True, help='Edit only the first match')
@click.option('--url', default=None, help='Page address (default: file URI of HTML_FILE)')
@click.option('--scope', default='full', type=click.Choice(SCOPES), help='Patch scope granularity')
@click.option('--store', 'store_path', default=DEFAULT_STORE, help='Patch store file')
@click.option('--output', '-o', default=None, help='Write the edited page here (default: in place)')
def edit(html_file, selector, kind, value, attribute_name, first, url, scope, store_path, output):
    """
    Edit the nodes matching SELECTOR and save the edit as a patch.

    \b
    Examples:

        pagepatch edit page.html "#price" text '$12'

        pagepatch edit page.html ".promo" hide

        pagepatch edit page.html "img.hero" attr "/img/new.png" --attr src
    """
    from pagepatch.layers.sense.document import query_all

    session = _open_session(store_path, scope, _address_for(html_file, url), html_file)
    nodes = query_all(session.document, selector)
    if first:
        nodes = nodes[:1]
    if not nodes:
        console.print(f"[yellow]⚠️ No node matches {escape(selector)}[/yellow]")
        raise SystemExit(1)

    try:
        result = session.commit(nodes, kind, value, attribute_name)
    except MalformedPatchPayload as e:
        console.print(f"[red]❌ Error: {escape(str(e))}[/red]")
        raise SystemExit(1)
    session.deactivate()
    target = _write_html(session, html_file, output)

    if result.success:
        console.print(f"[bold green]✅ {result.kind.label} applied to {result.applied} element(s)[/bold green]")
    else:
        console.print("[bold red]❌ Failed to apply changes[/bold red]")
    for error in result.errors:
        console.print(f"[dim]└─ {escape(error)}[/dim]")
    for patch in result.patches:
        console.print(f"  [cyan]{patch.kind.value}[/cyan] → {escape(str(patch.locator))}")
    console.print(f"\n[dim]Page: {target}[/dim]")
    console.print(f"[dim]Scope: {session.scope_key}[/dim]")


@cli.command()
@click.argument('html_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--url', default=None, help='Page address (default: file URI of HTML_FILE)')
@click.option('--scope', default='full', type=click.Choice(SCOPES), help='Patch scope granularity')
@click.option('--store', 'store_path', default=DEFAULT_STORE, help='Patch store file')
@click.option('--output', '-o', default=None, help='Write the patched page here (default: in place)')
def apply(html_file, url, scope, store_path, output):
    """
    Re-apply the saved patches of a scope to a fresh copy of a page.

    \b
    Example:

        pagepatch apply fresh.html --url https://shop.example/item -o patched.html
    """
    session = _open_session(store_path, scope, _address_for(html_file, url), html_file)
    report = session.apply_all()
    target = _write_html(session, html_file, output)

    patches = {p.id: p for p in session.patches}
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Kind", style="green")
    table.add_column("Locator", style="yellow", max_width=50)
    table.add_column("Status", justify="center")
    table.add_column("Reason", style="dim")

    colors = {"applied": "green", "skipped": "yellow", "failed": "red"}
    for result in report.results:
        patch = patches[result.patch_id]
        color = colors[result.status.value]
        table.add_row(
            patch.kind.value,
            escape(_truncate(str(patch.locator), 50)),
            f"[{color}]{result.status.value}[/{color}]",
            escape(result.reason or ""),
        )

    console.print(table)
    console.print(
        f"\n[bold]{report.applied} applied, {report.skipped} skipped, {report.failed} failed[/bold]"
    )
    console.print(f"[dim]Page: {target}[/dim]")


@cli.command(name="list")
@click.option('--url', required=True, help='Page address')
@click.option('--scope', default='full', type=click.Choice(SCOPES), help='Patch scope granularity')
@click.option('--store', 'store_path', default=DEFAULT_STORE, help='Patch store file')
def list_patches(url, scope, store_path):
    """
    List the saved patches of a scope.

    Example:

        pagepatch list --url https://shop.example/item
    """
    session = _open_session(store_path, scope, url)
    console.print(f"[bold]Scope:[/bold] {session.scope_key} ({session.scope.value})")

    if not session.patches:
        console.print("[dim]No patches saved for this scope.[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", width=10)
    table.add_column("Kind", style="green")
    table.add_column("Locator", style="yellow", max_width=50)
    table.add_column("Value", max_width=30)
    table.add_column("Created", style="dim")

    for patch in session.patches:
        kind = f"{patch.kind.value}:{patch.attribute_name}" if patch.attribute_name else patch.kind.value
        table.add_row(
            patch.id[:8],
            kind,
            escape(_truncate(str(patch.locator), 50)),
            escape(_truncate(patch.value, 30)),
            patch.created_at,
        )
    console.print(table)


@cli.command(name="export")
@click.option('--url', required=True, help='Page address')
@click.option('--scope', default='full', type=click.Choice(SCOPES), help='Patch scope granularity')
@click.option('--store', 'store_path', default=DEFAULT_STORE, help='Patch store file')
@click.option('--output', '-o', default=None, help='Write JSON here instead of stdout')
def export_patches(url, scope, store_path, output):
    """
    Export the patches of a scope as JSON.

    Example:

        pagepatch export --url https://shop.example/item -o item.json
    """
    session = _open_session(store_path, scope, url)
    payload = json.dumps(session.export_patches(), indent=2, ensure_ascii=False)
    if output:
        Path(output).write_text(payload, encoding="utf-8")
        console.print(f"[green]✅ Exported {len(session.patches)} patch(es) to {output}[/green]")
    else:
        click.echo(payload)


@cli.command(name="import")
@click.argument('payload_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--url', required=True, help='Page address')
@click.option('--scope', default='full', type=click.Choice(SCOPES), help='Patch scope granularity')
@click.option('--store', 'store_path', default=DEFAULT_STORE, help='Patch store file')
def import_patches(payload_file, url, scope, store_path):
    """
    Replace the patches of a scope with an exported JSON file.

    Example:

        pagepatch import item.json --url https://shop.example/item
    """
    session = _open_session(store_path, scope, url)
    try:
        session.import_patches(Path(payload_file).read_text(encoding="utf-8"))
    except ImportValidationError as e:
        console.print(f"[red]❌ Import error: {escape(str(e))}[/red]")
        console.print("[dim]The saved patches were left unchanged.[/dim]")
        raise SystemExit(1)
    session.deactivate()
    console.print(f"[green]✅ Imported {len(session.patches)} patch(es) into {session.scope_key}[/green]")


@cli.command()
@click.option('--url', required=True, help='Page address')
@click.option('--scope', default='full', type=click.Choice(SCOPES), help='Patch scope granularity')
@click.option('--store', 'store_path', default=DEFAULT_STORE, help='Patch store file')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
def clear(url, scope, store_path, yes):
    """
    Delete every saved patch of a scope.

    Example:

        pagepatch clear --url https://shop.example/item --yes
    """
    session = _open_session(store_path, scope, url)
    if not yes and not click.confirm(f"Clear all saved changes for {session.scope_key}?"):
        console.print("[dim]Nothing cleared.[/dim]")
        return
    count = session.clear_patches()
    console.print(f"[green]✅ Cleared {count} patch(es)[/green]")


@cli.command()
@click.argument('patch_id')
@click.option('--url', required=True, help='Page address')
@click.option('--scope', default='full', type=click.Choice(SCOPES), help='Patch scope granularity')
@click.option('--store', 'store_path', default=DEFAULT_STORE, help='Patch store file')
def delete(patch_id, url, scope, store_path):
    """
    Delete one saved patch by id (or the id prefix shown by list).

    Example:

        pagepatch delete 3f2a9c1e --url https://shop.example/item
    """
    session = _open_session(store_path, scope, url)
    matches = [p for p in session.patches if p.id.startswith(patch_id)]
    if len(matches) != 1:
        reason = "No patch matches" if not matches else f"{len(matches)} patches match"
        console.print(f"[red]❌ {reason} id {escape(patch_id)}[/red]")
        raise SystemExit(1)

    patch = matches[0]
    session.delete_patch(patch.id)
    session.deactivate()
    console.print(f"[green]✅ Deleted {patch.kind.label} on {escape(str(patch.locator))}[/green]")


@cli.command()
@click.argument('url')
@click.option('--output', '-o', required=True, help='HTML file to write')
@click.option('--headless/--headed', default=True, help='Run browser in headless mode')
@click.option('--apply', 'apply_patches', is_flag=True, help='Apply saved patches to the capture')
@click.option('--scope', default='full', type=click.Choice(SCOPES), help='Patch scope granularity')
@click.option('--store', 'store_path', default=DEFAULT_STORE, help='Patch store file')
def capture(url, output, headless, apply_patches, scope, store_path):
    """
    Save a live page, open shadow roots included, as an HTML snapshot.

    \b
    Examples:

        pagepatch capture https://shop.example/item -o item.html

        pagepatch capture https://shop.example/item -o item.html --apply
    """
    console.print(Panel.fit(
        f"[bold blue]📸 Page Capture[/bold blue]\n"
        f"[dim]{url}[/dim]",
        border_style="blue"
    ))

    from pagepatch import PatchSession, SessionConfig
    from pagepatch.core.driver_factory import browser_session, capture_document
    from pagepatch.layers.memory.persistence import JsonFileStorage

    try:
        with browser_session(headless=headless) as driver:
            driver.get(url)
            document = capture_document(driver)
    except Exception as e:
        console.print(f"[red]❌ Error: {escape(str(e))}[/red]")
        raise SystemExit(1)

    if apply_patches:
        session = PatchSession(document, JsonFileStorage(store_path), SessionConfig(scope=scope))
        session.activate()
        report = session.apply_all()
        console.print(f"[bold]{report.applied} applied, {report.skipped} skipped, {report.failed} failed[/bold]")

    Path(output).write_text(document.to_html(), encoding="utf-8")
    console.print(f"[green]✅ Saved {document.address} to {output}[/green]")


@cli.command()
def doctor():
    """
    Check that the engine's dependencies are installed.
    """
    console.print(Panel.fit(
        f"[bold cyan]🩺 pagepatch Doctor[/bold cyan]\n"
        f"[dim]System Health Check[/dim]",
        border_style="cyan"
    ))
    console.print()

    dependencies = [
        ("lxml", "Sense - Document tree"),
        ("cssselect", "Sense - CSS selectors"),
        ("selenium", "Capture - WebDriver"),
        ("click", "CLI"),
        ("rich", "CLI - Output"),
    ]

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Package", style="blue")
    table.add_column("Role", style="dim")
    table.add_column("Status", justify="center")

    all_good = True
    for package, role in dependencies:
        try:
            __import__(package)
            status = "[green]✅ Installed[/green]"
        except ImportError:
            status = "[red]❌ Missing[/red]"
            all_good = False
        table.add_row(package, role, status)

    console.print(table)
    console.print()

    if all_good:
        console.print("[bold green]✅ All dependencies installed! pagepatch is ready.[/bold green]")
    else:
        console.print("[yellow]⚠️ Some dependencies are missing.[/yellow]")
        console.print("[dim]Install with: pip install pagepatch[/dim]")


@cli.command()
def version():
    """Show version information."""
    from pagepatch import __version__
    console.print(f"pagepatch v{__version__}")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
