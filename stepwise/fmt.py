"""ANSI-formatted stderr output using Rich."""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Hop structure -----------------------------------------------------------


def hop_header(n: int, max_n: int) -> None:
    _console.print(Rule(f"Hop {n}/{max_n}", style="cyan"))


def context_stats(turns: int, chars: int, tokens: int) -> None:
    _console.print(
        Text(f"  Context: {turns} turns, ~{tokens} tokens, {chars} chars", style="dim")
    )


def compaction(before: int, after: int, tool_turns: int) -> None:
    line = Text()
    line.append("  ↻ Compacted: ", style="yellow")
    line.append(
        f"{tool_turns} tool turns summarized, {before} -> {after} chars",
        style="yellow",
    )
    _console.print(line)


def llm_timing(elapsed: float, kind: str) -> None:
    style = "green" if kind == "final" else "yellow"
    text = Text()
    text.append(f"  LLM responded in {elapsed:.1f}s", style=style)
    text.append(f"  reply={escape(kind)}", style=style)
    _console.print(text)


def llm_spinner(label: str = "Agent thinking"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {label}", spinner="dots")


def rate_limit_wait(delay: float, attempt: int, retries: int) -> None:
    warning(
        f"rate limit hit, waiting {delay:g}s before retry ({attempt}/{retries})"
    )


def completion(hops: int, outcome: str) -> None:
    if outcome == "ok":
        _console.print(Text(f"  ✓ Agent finished: {hops} hops", style="bold green"))
    else:
        _console.print(
            Text(f"  Agent finished: {hops} hops, exit={outcome}", style="bold red")
        )


# -- Actions -----------------------------------------------------------------


def action_request(name: str, description: str) -> None:
    header = Text()
    header.append("  ▶ ", style="bold magenta")
    header.append(name, style="bold magenta")
    header.append(f"  {description}", style="dim")
    _console.print(header)


def action_result(name: str, elapsed: float, preview: str) -> None:
    header = Text()
    header.append(f"  ✓ {name}", style="green")
    header.append(f"  {elapsed:.1f}s", style="green")
    _console.print(header)
    if preview:
        _console.print(Text(f"    {preview}", style="dim"))


def action_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


def permission_request(description: str, args: dict) -> None:
    line = Text()
    line.append("Agent wants to: ", style="bold cyan")
    line.append(description)
    _console.print()
    _console.print(line)
    if args.get("path"):
        _console.print(Text(f"  Path: {args['path']}", style="dim"))
    if args.get("command"):
        _console.print(Text(f"  Command: {args['command']}", style="dim"))


# -- Assistant text ----------------------------------------------------------


def assistant_text(text: str) -> None:
    line = Text()
    line.append("  [assistant] ", style="blue")
    line.append(text)
    _console.print(line)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def success(msg: str) -> None:
    _console.print(Text(msg, style="green"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def plan_mode(enabled: bool) -> None:
    if enabled:
        success("Plan mode enabled. Agent will create plans before executing.")
    else:
        info("Plan mode disabled.")


def repl_banner(project_dir: str) -> None:
    _console.print(Text(f"Project: {project_dir}", style="dim"))
    _console.print(Text("Ready! Type your request, or /exit to quit.", style="green"))
    _console.print(Text("Type /help for available commands.", style="dim"))
