from typing import Dict, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from warren_core.language.errors import CompileError, ErrorCategory


SUGGESTIONS: Dict[ErrorCategory, List[tuple]] = {
    ErrorCategory.DECLARATION: [
        ("Check names", "Every symbol, syscall, constant, channel and template shares one namespace; rename clashes."),
        ("Check arities", "Symbol and call arities are fixed by their declaration; count the arguments."),
        ("Check types", "Channels need channel types, files need filesys types, processes need process types."),
    ],
    ErrorCategory.SCOPING: [
        ("Bind before use", "Variables are bound by let, new, or a consume/read pattern, and are write-once per scope."),
        ("Quantify lemma variables", "Every lemma variable and #index must be bound by All/Ex (or be implicit)."),
    ],
    ErrorCategory.POLICY: [
        ("Add a grant", "Allow the process type to invoke the operation on the channel/file type."),
        ("Grant the attack", "Attacks need an attacker grant on the process type or an argument's type."),
        ("Passive attacks", "Passive attacks may only insert into the attacker store."),
    ],
    ErrorCategory.THEORY: [
        ("Orient equations", "Each equation is used left to right; make sure rewriting terminates."),
        ("Raise the budget", "Deep but terminating rewrites may need CompilerConfig(rewrite_budget=...)."),
    ],
    ErrorCategory.STRUCTURAL: [
        ("Break recursion", "Syscalls are inlined, so call chains must be acyclic."),
        ("Match the events", "Lemma events must be emitted by some process, with the same arity."),
        ("Produce before removing", "A removed fact must be inserted somewhere, or be initial file content."),
    ],
}


class DiagnosticReporter:
    """Renders compile errors and lemma check results as rich panels and tables."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def report_errors(self, errors: Sequence[CompileError]):
        if not errors:
            self._print_success()
            return

        self._print_header(len(errors))
        for i, error in enumerate(errors, 1):
            self._render_error(i, error)
        self._print_suggestions({e.category for e in errors})
        self._print_footer()

    def _render_error(self, index: int, error: CompileError):
        border = "red" if error.category in (ErrorCategory.POLICY, ErrorCategory.THEORY) else "magenta"
        title = f"[bold red]{error.kind} #{index}[/bold red]"

        lines = [escape(error.message)]
        if error.declaration:
            lines.append(f"\n[bold]Declaration:[/bold] {escape(error.declaration)}")
        if error.position:
            lines.append(f"[bold]Position:[/bold] {escape(error.position)}")
        if error.location:
            lines.append(f"[bold]Line:[/bold] {error.location[0]}, [bold]Col:[/bold] {error.location[1]}")

        self.console.print(Panel(Text.from_markup("\n".join(lines), style="white"),
                                 title=title, border_style=border, width=96))

    def _print_suggestions(self, categories):
        table = Table(title="💡 Suggestions", show_header=True, header_style="bold yellow", width=96)
        table.add_column("Strategy", style="cyan", width=26)
        table.add_column("What to do", style="white")
        for category in ErrorCategory:
            if category in categories:
                for strategy, advice in SUGGESTIONS[category]:
                    table.add_row(strategy, advice)
        self.console.print(table)
        self.console.print()

    def report_lemmas(self, results: Dict[str, Optional[bool]]):
        """Lemma name -> True (holds), False (fails), None (undecided)."""
        table = Table(title="📜 Lemmas on Trace", show_header=True, header_style="bold cyan", width=96)
        table.add_column("Lemma", style="cyan", width=40)
        table.add_column("Result", style="white")
        for name, holds in results.items():
            verdict = "[green]holds[/green]" if holds else ("[red]fails[/red]" if holds is False else "[yellow]unknown[/yellow]")
            table.add_row(escape(name), verdict)
        self.console.print(table)
        self.console.print()

    def _print_header(self, count: int):
        self.console.print()
        self.console.print(Panel(
            "[bold white]Warren Compilation Report[/bold white]",
            style="bold red",
            subtitle=f"[red]{count} error(s)[/red]",
            width=96
        ))
        self.console.print()

    def _print_success(self):
        self.console.print()
        self.console.print(Panel(
            "[bold green]No errors.[/bold green]\n"
            "The model compiled to IR.",
            style="bold green",
            title="✅ Compilation Passed",
            width=96
        ))
        self.console.print()

    def _print_footer(self):
        self.console.print(
            "[dim]Tip: declaration errors are reported together; elaboration stops at the first "
            "error of each instance.[/dim]"
        )
        self.console.print()
