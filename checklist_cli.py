#!/usr/bin/env python3
"""SLF Checklist CLI — Rich terminal UI for inspecting the checklist catalog.

Usage:
    python checklist_cli.py resolve --specialization struktur --building-type baru
    python checklist_cli.py items general --specialization mep
    python checklist_cli.py photo m21
    python checklist_cli.py validate --config data/slf_checklist_templates.json
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from checklist_catalog import ChecklistCatalog, get_catalog
from checklist_resolver import (
    flatten_checklist_items,
    get_checklist_template,
    get_checklists_by_specialization,
    get_items_for_inspector,
    get_photo_requirements,
    item_requires_photogeotag,
    normalize_specialization,
)
from errors import ComplianceError, ConfigurationError

load_dotenv()

console = Console()


CATEGORY_STYLES = {
    "administrative": "dim",
    "tata_bangunan": "cyan",
    "keandalan": "yellow",
    "keselamatan": "green",
}


def _category(value) -> str:
    if value is None:
        return "[dim]mixed[/dim]"
    name = getattr(value, "value", value)
    style = CATEGORY_STYLES.get(name, "")
    return f"[{style}]{name}[/{style}]" if style else name


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def show_templates(specialization: Optional[str], building_type: str, catalog: ChecklistCatalog) -> None:
    templates = get_checklists_by_specialization(specialization, building_type, catalog=catalog)
    spec = normalize_specialization(specialization)

    console.print(
        Panel(
            f"Specialization: [bold]{spec.value}[/bold]  |  "
            f"Building type: [bold]{building_type}[/bold]  |  "
            f"Templates: {len(templates)}  |  "
            f"Catalog: {catalog.last_updated}",
            title="[bold white]Applicable Checklists[/]",
            border_style="cyan",
        )
    )

    if not templates:
        console.print("  [dim]No checklist templates apply.[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan", border_style="dim", expand=True)
    table.add_column("#", style="dim", width=3)
    table.add_column("ID", width=20)
    table.add_column("Title", min_width=24)
    table.add_column("Category", width=14)
    table.add_column("Items", width=5, justify="right")

    for i, t in enumerate(templates, 1):
        table.add_row(str(i), t.id, t.title, _category(t.category), str(sum(1 for _ in t.iter_items())))

    console.print(table)


def show_items(template_id: str, specialization: Optional[str], catalog: ChecklistCatalog) -> None:
    template = get_checklist_template(template_id, catalog=catalog)
    if specialization:
        items = get_items_for_inspector(template_id, specialization, catalog=catalog)
    else:
        items = flatten_checklist_items([template])

    table = Table(
        show_header=True,
        header_style="bold cyan",
        border_style="dim",
        expand=True,
        title=f"{template.id}: {template.title}",
    )
    table.add_column("#", style="dim", width=3)
    table.add_column("Item", min_width=20)
    table.add_column("Section", width=10)
    table.add_column("Category", width=14)
    table.add_column("Geotag", width=6, justify="center")

    for i, item in enumerate(items, 1):
        geotag = item_requires_photogeotag(template_id, item.id, item.category, catalog=catalog)
        table.add_row(
            str(i),
            item.item_name,
            item.section_id,
            _category(item.category),
            "[green]yes[/green]" if geotag else "[dim]no[/dim]",
        )

    console.print(table)
    console.print(f"\n  [bold green]{len(items)}[/] items")


def show_photo_requirements(template_id: str, catalog: ChecklistCatalog) -> None:
    req = get_photo_requirements(template_id, catalog=catalog)
    lines = [
        f"[bold]Geotag required:[/bold] {'Yes' if req.require_geotag else 'No'}",
        f"[bold]Photos:[/bold] {req.min_photos}–{req.max_photos if req.max_photos is not None else 'any'}",
    ]
    if req.required_shots:
        lines.append("[bold]Required shots:[/bold] " + ", ".join(req.required_shots))
    if req.recommended_subjects:
        lines.append("[bold]Recommended:[/bold] " + ", ".join(req.recommended_subjects))
    no_gps = req.no_gps_handling
    lines.append(
        f"[dim]No GPS: manual location {'allowed' if no_gps.allow_manual_location else 'not allowed'}"
        f"{', description required' if no_gps.require_manual_location_description else ''}"
        f"{', reviewer approval' if no_gps.require_alternative_verification else ''}[/dim]"
    )
    console.print(
        Panel(
            "\n".join(lines),
            title=f"[bold white]Photo requirements: {template_id} ({_category(req.category)})[/]",
            border_style="green",
        )
    )


def validate_config(path: Optional[str]) -> int:
    try:
        catalog = ChecklistCatalog.from_file(path) if path else get_catalog()
    except ConfigurationError as e:
        console.print(f"  [bold red]Invalid:[/] {e.message}")
        for err in e.context.get("errors", []):
            console.print(f"    [red]{err['loc']}[/red]: {err['msg']}")
        return 1

    item_count = sum(1 for t in catalog.templates for _ in t.iter_items())
    console.print(
        f"  [bold green]Valid:[/] {len(catalog)} templates, {item_count} items  |  "
        f"last_updated {catalog.last_updated}"
    )
    return 0


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="checklist",
        description="Inspect the SLF checklist catalog.",
    )
    parser.add_argument("--config", default=None, help="Checklist JSON (defaults to SLF_CHECKLIST_CONFIG)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("resolve", help="Templates applicable to a specialization and building type")
    p.add_argument("--specialization", default=None, help="struktur, arsitektur, mep, building_inspection")
    p.add_argument("--building-type", default="baru", help="baru, existing, perubahan_fungsi, pascabencana, ...")

    p = sub.add_parser("items", help="Flattened items of a template")
    p.add_argument("template_id", help="Template id, or 'general' for the merged technical template")
    p.add_argument("--specialization", default=None)

    p = sub.add_parser("photo", help="Photo requirements of a template")
    p.add_argument("template_id")

    sub.add_parser("validate", help="Validate the checklist configuration")

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)

    if args.command == "validate":
        return validate_config(args.config)

    try:
        catalog = ChecklistCatalog.from_file(args.config) if args.config else get_catalog()
        if args.command == "resolve":
            show_templates(args.specialization, args.building_type, catalog)
        elif args.command == "items":
            show_items(args.template_id, args.specialization, catalog)
        elif args.command == "photo":
            show_photo_requirements(args.template_id, catalog)
    except ComplianceError as e:
        console.print(f"  [bold red]{e.kind}:[/] {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
