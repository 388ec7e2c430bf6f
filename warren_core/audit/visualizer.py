"""
Warren - Trace Visualizer

Terminal dashboard for one explored trace: its events in order, what was
left in every store, and how each lemma fared on it.
Deterministic and compact.
"""

from typing import Dict, List, Optional, Tuple
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.text import Text
from rich.markup import escape
from rich import box

from ..runtime import Trace
from ..verification.trace_checker import LemmaCheck


class TraceVisualizer:
    def __init__(
        self,
        width: int = 92,
        max_value_len: int = 80,
        max_items: int = 50,
        console: Optional[Console] = None,
    ):
        self.console = console or Console()
        self.width = width
        self.max_value_len = max_value_len
        self.max_items = max_items

    def visualize(self, trace: Trace, lemmas: Optional[Dict[str, LemmaCheck]] = None, title: str = "Warren Trace"):
        self.console.print()
        lemmas = lemmas or {}
        failed = [name for name, check in lemmas.items() if check.holds is False]

        # --- Header status ---
        if failed:
            header_style, status_text, border_style = "bold red", "⛔ LEMMA VIOLATED", "red"
        elif trace.truncated:
            header_style, status_text, border_style = "bold yellow", "⚠️  TRACE TRUNCATED", "yellow"
        elif trace.blocked:
            header_style, status_text, border_style = "bold yellow", "⏸️  INSTANCES BLOCKED", "yellow"
        else:
            header_style, status_text, border_style = "bold green", "✅ TRACE COMPLETE", "green"

        self.console.print(
            Panel(
                Text(status_text, justify="center", style=header_style),
                title=f"[white]{escape(title)}[/]",
                border_style=border_style,
                width=self.width,
            )
        )

        # --- Meta ---
        meta_table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan", width=self.width)
        meta_table.add_column("Meta", style="cyan", width=26)
        meta_table.add_column("Value", style="white")
        for k, v in self._meta(trace):
            meta_table.add_row(k, escape(v))
        self.console.print(meta_table)

        # --- Events ---
        ev_table = Table(title="Events", box=box.ROUNDED, style="cyan", width=self.width, show_header=True)
        ev_table.add_column("#", style="dim", width=4)
        ev_table.add_column("Instance", style="cyan", width=20)
        ev_table.add_column("Event", style="white")
        for i, event in enumerate(trace.events):
            if i >= self.max_items:
                ev_table.add_row("…", "", f"(truncated after {self.max_items} events)")
                break
            ev_table.add_row(str(i), escape(event.instance), escape(self._format_value(event.term)))
        self.console.print(ev_table)

        # --- Stores ---
        store_table = Table(title="Final Stores", box=box.SIMPLE, show_header=True, header_style="bold cyan",
                            width=self.width)
        store_table.add_column("Store", style="cyan", width=20)
        store_table.add_column("Facts", style="white")
        for name, facts in self._store_rows(trace):
            store_table.add_row(escape(name), escape(facts))
        self.console.print(store_table)

        # --- Lemmas ---
        if lemmas:
            self.console.print()
            lemma_table = Table(title="Lemmas", box=box.ROUNDED, width=self.width, show_header=True)
            lemma_table.add_column("Lemma", style="cyan")
            lemma_table.add_column("Result", width=10)
            for name in sorted(lemmas):
                check = lemmas[name]
                if check.holds is None:
                    verdict = "[yellow]unknown[/yellow]"
                else:
                    verdict = "[green]holds[/green]" if check.holds else "[red]fails[/red]"
                lemma_table.add_row(escape(name), verdict)
            self.console.print(lemma_table)

        # --- Footer metrics ---
        self.console.print()
        footer = Text.assemble(
            ("Steps: ", "dim"),
            (str(trace.steps), "bold white"),
            (" | ", "dim"),
            ("Events: ", "dim"),
            (str(len(trace.events)), "bold white"),
        )
        self.console.print(footer, justify="right", width=self.width)
        self.console.print()

    def _meta(self, trace: Trace) -> List[Tuple[str, str]]:
        out = [("Finished", ", ".join(trace.finished) or "-")]
        if trace.blocked:
            out.append(("Blocked", ", ".join(trace.blocked)))
        if trace.truncated:
            out.append(("Truncated", f"after {trace.steps} steps"))
        return out

    def _store_rows(self, trace: Trace) -> List[Tuple[str, str]]:
        """Stores in name order; empty stores are shown too."""
        rows = []
        for name in sorted(trace.stores):
            facts = trace.stores[name]
            shown = ", ".join(str(f) for f in facts[:10])
            if len(facts) > 10:
                shown += f", … ({len(facts)} facts)"
            rows.append((name, self._format_value(shown or "∅")))
        return rows

    def _format_value(self, v) -> str:
        s = str(v)
        if len(s) > self.max_value_len:
            s = s[: self.max_value_len - 3] + "..."
        return s
