"""
Rich table formatter for terminal output
"""

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from graphbridge.cli.formatters.base import BaseFormatter


class TableFormatter(BaseFormatter):
    """Format results as a Rich table"""

    def format(self, results: List[Dict[str, Any]], columns: Optional[List[str]] = None, **kwargs) -> str:
        """
        Format results as a Rich table

        Args:
            results: List of row dictionaries
            columns: Column order
            **kwargs: Options like 'no_color', 'show_footer', 'title'

        Returns:
            Formatted table string
        """
        columns = self.resolve_columns(results, columns)
        if not results and not columns:
            return "No results found."

        console = Console(force_terminal=not kwargs.get("no_color", False), no_color=kwargs.get("no_color", False))
        terminal_width = console.width

        # Narrow terminal or many columns: aggressive truncation
        if terminal_width < 80 or len(columns) > 8:
            max_col_width = kwargs.get("max_width", 15)
            table = Table(show_header=True, header_style="bold magenta", box=box.SIMPLE, title=kwargs.get("title"))
            for col in columns:
                table.add_column(col, style="cyan", overflow="ellipsis", max_width=max_col_width, no_wrap=True)
        else:
            table = Table(show_header=True, header_style="bold magenta", title=kwargs.get("title"))
            for col in columns:
                table.add_column(col, style="cyan", overflow="ellipsis", max_width=30, no_wrap=False)

        for row in results:
            values = [
                escape(str(row.get(col))) if row.get(col) is not None else "[dim]NULL[/dim]"
                for col in columns
            ]
            table.add_row(*values)

        with console.capture() as capture:
            console.print(table)

        output = capture.get()

        if kwargs.get("show_footer", True):
            row_count = len(results)
            footer = f"[dim]{row_count} row{'s' if row_count != 1 else ''}[/dim]"
            with console.capture() as capture:
                console.print(footer)
            output += capture.get()

        return output
