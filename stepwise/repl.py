"""Command-line entry point and interactive shell."""

import argparse
import os
import sys
from importlib import metadata
from pathlib import Path

from . import fmt
from .agent import Agent
from .config import (
    _UNSET,
    PROJECT_CONFIG,
    apply_config_to_args,
    config_to_limits,
    generate_config,
    load_config,
    resolve_api_key,
)
from .errors import AgentError
from .permissions import Decision
from .storage import DEFAULT_MODEL, HistoryStore, SettingsStore, state_dir

PROMPT = "stepwise> "
PERMISSION_PROMPT = "Allow? [y]es / [a]lways / [n]o: "


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="stepwise",
        description="An interactive coding agent that reads, edits and runs things in one project directory.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "--project",
        default=".",
        help="Project directory the agent is confined to (default: current directory).",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Continue the most recent session instead of starting a new one.",
    )
    parser.add_argument(
        "--model",
        default=_UNSET,
        help=f"LiteLLM model string, persisted for the project (default: {DEFAULT_MODEL}).",
    )
    parser.add_argument(
        "--api-key",
        default=_UNSET,
        help="API key for the provider (overrides env var).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Custom API base URL.",
    )
    parser.add_argument(
        "--plan",
        action="store_true",
        help="Start in plan mode.",
    )
    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Only print final answers and prompts, no progress output.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help=f"Write a commented {PROJECT_CONFIG} into the project directory and exit.",
    )
    return parser


# -- Permission prompt -------------------------------------------------------


def parse_permission_answer(answer: str | None) -> Decision:
    """Map a typed answer to a decision. Anything but y/yes/a/always denies."""
    if answer is None:
        return Decision(False)
    answer = answer.strip().lower()
    if answer in ("a", "always"):
        return Decision(True, always_allow=True)
    if answer in ("y", "yes"):
        return Decision(True)
    return Decision(False)


def ask_permission(capability: str, args: dict, description: str) -> Decision:
    from prompt_toolkit import prompt

    fmt.permission_request(description, args)
    try:
        answer = prompt(PERMISSION_PROMPT)
    except EOFError:
        answer = None
    return parse_permission_answer(answer)


# -- Slash commands ----------------------------------------------------------


def _repl_help() -> None:
    """Print available REPL commands."""
    fmt.info(
        "Available commands:\n"
        "  /help           Show this help message\n"
        "  /plan           Toggle plan mode\n"
        "  /clear          Start a new session (plan mode off)\n"
        "  /context        Show the size of the current conversation\n"
        "  /reset          Reset all permissions and the model\n"
        "  /model [name]   Show or change the model\n"
        "  /exit, /quit    Exit the REPL"
    )


def _repl_plan(agent: Agent) -> None:
    agent.set_plan_mode(not agent.plan_mode)
    fmt.plan_mode(agent.plan_mode)


def _repl_clear(agent: Agent) -> None:
    """Detach the current session and start a fresh one."""
    agent.history.clear_current_session()
    agent.history.create_session()
    agent.set_plan_mode(False)
    fmt.info("conversation cleared, new session started")


def _repl_context(agent: Agent) -> None:
    turns = len(agent.history.get_messages())
    fmt.context_stats(turns, agent.context_size(), agent.context_tokens())
    fmt.info(f"compaction threshold: {agent.limits.max_context_chars} chars")


def _repl_reset(agent: Agent) -> None:
    agent.settings.reset()
    fmt.info(f"permissions reset, model set to {agent.settings.model}")


def _repl_model(agent: Agent, arg: str) -> None:
    arg = arg.strip()
    if not arg:
        fmt.info(f"current model: {agent.settings.model}")
        return
    agent.settings.set_model(arg)
    fmt.info(f"model set to {arg}")


def repl_loop(agent: Agent, *, verbose: bool) -> None:
    """Interactive read-eval-print loop."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory

    history_path = state_dir(agent.project_dir) / "repl_history"
    os.makedirs(history_path.parent, exist_ok=True)
    session = PromptSession(
        history=FileHistory(str(history_path)),
        enable_history_search=True,
    )
    prompt_text = FormattedText([("bold fg:ansigreen", PROMPT)])

    if verbose:
        fmt.repl_banner(agent.project_dir)

    while True:
        try:
            print(file=sys.stderr)  # blank line before prompt
            line = session.prompt(prompt_text)
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)
            break

        line = line.strip()
        if not line:
            continue
        if line in ("/exit", "/quit", "exit", "quit"):
            break

        cmd_parts = line.split(None, 1)
        cmd = cmd_parts[0].lower()
        cmd_arg = cmd_parts[1] if len(cmd_parts) > 1 else ""

        try:
            if cmd == "/help":
                _repl_help()
                continue
            elif cmd == "/plan":
                _repl_plan(agent)
                continue
            elif cmd == "/clear":
                _repl_clear(agent)
                continue
            elif cmd == "/context":
                _repl_context(agent)
                continue
            elif cmd == "/reset":
                _repl_reset(agent)
                continue
            elif cmd == "/model":
                _repl_model(agent, cmd_arg)
                continue
            elif cmd.startswith("/"):
                fmt.error(f"unknown command {cmd}, type /help for the list")
                continue

            answer = agent.process_message(line)
        except KeyboardInterrupt:
            fmt.warning("interrupted, request aborted.")
            continue
        except AgentError as e:
            fmt.error(str(e))
            continue

        print(answer)


# -- Entry point -------------------------------------------------------------


def _init_config(project_dir: Path) -> None:
    path = project_dir / PROJECT_CONFIG
    if path.exists():
        raise AgentError(f"{path} already exists, not overwriting")
    path.write_text(generate_config(project=True), encoding="utf-8")
    fmt.success(f"wrote {path}")


def _open_session(history: HistoryStore, resume: bool, verbose: bool) -> None:
    if resume:
        session = history.resume_last_session()
        if session is not None:
            if verbose:
                fmt.info(f"resumed session {session.id} ({len(session.turns)} turns)")
            return
        fmt.warning("no previous session to resume, starting a new one")
    history.create_session()


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("stepwise")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    try:
        _run_main(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


def _run_main(args) -> None:
    project_dir = Path(args.project).expanduser().resolve()
    if not project_dir.is_dir():
        raise AgentError(f"project directory not found: {args.project}")

    if args.init_config:
        fmt.init()
        _init_config(project_dir)
        return

    # Only an explicit --model is persisted; a config model is the default.
    cli_model = args.model if args.model is not _UNSET else None
    apply_config_to_args(args, load_config(project_dir))
    args.verbose = not args.quiet

    fmt.init(color=args.color, no_color=args.no_color)

    settings = SettingsStore(project_dir, default_model=args.model or DEFAULT_MODEL)
    if cli_model:
        settings.set_model(cli_model)
    history = HistoryStore(project_dir)
    _open_session(history, args.resume, args.verbose)

    llm_kwargs = {}
    api_key = resolve_api_key(args)
    if api_key:
        llm_kwargs["api_key"] = api_key
    if args.base_url:
        llm_kwargs["base_url"] = args.base_url

    agent = Agent(
        project_dir,
        settings,
        history,
        ask_permission,
        limits=config_to_limits(args),
        llm_kwargs=llm_kwargs,
        verbose=args.verbose,
    )
    if args.plan:
        agent.set_plan_mode(True)
        if args.verbose:
            fmt.plan_mode(True)

    repl_loop(agent, verbose=args.verbose)


if __name__ == "__main__":
    main()
