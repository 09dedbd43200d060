"""Output rendering for parsed BTM results."""

import json
from io import StringIO

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from btm_parser.hierarchy import parent_reference
from btm_parser.models import ParsedResult


def render_json(result: ParsedResult) -> str:
    """
    Render a parse result as JSON.

    Keys use the camelCase output names, absent optional fields are
    omitted, and MDM payloads and diagnostics are not included.

    Args:
        result: ParsedResult to render

    Returns:
        JSON string with sorted keys and indentation
    """
    result_dict = result.model_dump(mode="json", by_alias=True, exclude_none=True)

    # Serialize with sorted keys for deterministic output
    return json.dumps(result_dict, sort_keys=True, indent=2, ensure_ascii=False)


def render_table(result: ParsedResult, width: int = 140) -> str:
    """
    Render a parse result as rich tables, one per user scope.

    Args:
        result: ParsedResult to render
        width: Console width used for layout

    Returns:
        Formatted string suitable for terminal display
    """
    output_buffer = StringIO()
    console = Console(file=output_buffer, width=width, force_terminal=True)

    header_text = Text()
    header_text.append("Background Task Management items", style="bold cyan")
    header_text.append(f"\n{result.path}", style="dim")
    console.print(Panel(header_text, border_style="cyan", box=box.ROUNDED))

    if not result.items_by_user_identifier:
        console.print("[dim]No user scopes found[/dim]")
        return output_buffer.getvalue()

    for scope, items in result.items_by_user_identifier.items():
        table = Table(
            title=f"[bold]{escape(scope)}[/bold] [dim]({len(items)} items)[/dim]",
            show_header=True,
            header_style="bold cyan",
            box=box.ROUNDED,
            border_style="blue",
            row_styles=["", "dim"],
        )
        table.add_column("Name", style="bold", overflow="fold")
        table.add_column("Type", no_wrap=True)
        table.add_column("Disposition")
        table.add_column("Developer", overflow="fold")
        table.add_column("Parent", style="dim", overflow="fold")
        table.add_column("Executable", style="dim", overflow="fold")

        for item in items:
            table.add_row(
                Text(item.name),
                item.type_details or f"0x{item.type:x}",
                item.disposition_details,
                Text(item.developer_name or item.team_identifier or ""),
                Text(parent_reference(item, items) or ""),
                Text(item.executable_path or ""),
            )

        console.print(table)
        console.print()

    if result.diagnostics:
        console.print(f"[yellow]{len(result.diagnostics)} diagnostic(s)[/yellow]")
        for diagnostic in result.diagnostics:
            console.print(Text(f"  • {diagnostic}"))

    return output_buffer.getvalue()
