"""Console output formatting utilities for buildflow."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from ..model import ExecutionReport, Target, TargetResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-target progress lines
        """
        self.debug = debug
        self.quiet = quiet

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(
        self,
        build: str,
        definition: str,
        targets: Iterable[str],
        parameters: Optional[dict[str, str]] = None,
    ) -> None:
        """Print run start information. Parameters must already be secret-safe."""
        print("\nRUN STARTED")
        print(f"Build: {build}")
        print(f"Definition: {definition}")
        print(f"Targets: {', '.join(targets)}")
        if parameters and self.debug:
            for name, value in parameters.items():
                print(f"  {name} = {value}")
        print()

    def print_plan(self, order: list["Target"], skipped: Iterable[str] = ()) -> None:
        """Print the execution order."""
        print("PLAN")
        for i, target in enumerate(order, start=1):
            print(f"  {i}. {target.name}")
        for name in skipped:
            print(f"  - {name} (skipped by user)")

    def print_target_start(self, name: str) -> None:
        if not self.quiet:
            print(f"\nTARGET STARTED: {name}")

    def print_step(self, name: str) -> None:
        if not self.quiet:
            print(f"STEP: {name}")

    def print_target_result(self, result: "TargetResult") -> None:
        if self.quiet:
            return
        state = result.state.value
        if result.error is not None:
            print(f"TARGET {state.upper()}: {result.name}")
            print(f"Error: [{result.error.kind}] {result.error.diagnostic}")
            if self.debug:
                print(f"Error details: {result.error}")
        elif result.reason:
            print(f"TARGET {state.upper()}: {result.name} ({result.reason})")
        else:
            print(f"STATUS: {state} ({result.duration:.1f}s)")

    def print_targets(self, targets: list["Target"], default: Optional[str] = None) -> None:
        """Print target listing."""
        width = max((len(t.name) for t in targets), default=0)
        for t in targets:
            marker = " (default)" if default and t.key == default.lower() else ""
            desc = f"  {t.description}" if t.description else ""
            print(f"  {t.name.ljust(width)}{marker}{desc}")

    def print_results(self, report: "ExecutionReport") -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for line in report.summary_lines():
            print(f"  {line}")
        first = report.first_failure
        if first is not None:
            kind = first.error_kind or first.state.value
            print(f"\nBuild failed at {first.name} ({kind})")
        else:
            print("\nBuild succeeded")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
