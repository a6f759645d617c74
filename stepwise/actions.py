"""Action catalog: schemas, capability classes, and human-readable descriptions."""

from dataclasses import dataclass
from typing import Callable

READ = "read"
WRITE = "write"
LIST = "list"
EXECUTE = "execute"
CAPABILITIES = (READ, WRITE, LIST, EXECUTE)

DEFAULT_LINES = 100


@dataclass(frozen=True)
class ActionSpec:
    name: str
    capability: str
    description: str
    parameters: dict
    describe: Callable[[dict], str]

    def schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def _path_param(what: str) -> dict:
    return {
        "type": "string",
        "description": f"The path to the {what}, relative to the project directory.",
    }


def _lines_label(args: dict) -> object:
    return args.get("lines") or DEFAULT_LINES


_SPECS = [
    ActionSpec(
        name="read_file",
        capability=READ,
        description="Read the contents of a file. Returns the full file content as a string.",
        parameters={
            "type": "object",
            "properties": {"path": _path_param("file to read")},
            "required": ["path"],
        },
        describe=lambda args: f"Read file: {args.get('path')}",
    ),
    ActionSpec(
        name="write_file",
        capability=WRITE,
        description=(
            "Write content to a file. Creates the file if it does not exist, "
            "overwrites if it does. Creates parent directories if needed."
        ),
        parameters={
            "type": "object",
            "properties": {
                "path": _path_param("file to write"),
                "content": {
                    "type": "string",
                    "description": "The content to write to the file.",
                },
            },
            "required": ["path", "content"],
        },
        describe=lambda args: f"Write file: {args.get('path')}",
    ),
    ActionSpec(
        name="head_file",
        capability=READ,
        description="Read the first N lines of a file. Useful for previewing large files.",
        parameters={
            "type": "object",
            "properties": {
                "path": _path_param("file"),
                "lines": {
                    "type": "integer",
                    "description": "Number of lines to read from the beginning. Defaults to 100.",
                    "default": DEFAULT_LINES,
                },
            },
            "required": ["path"],
        },
        describe=lambda args: f"Read first {_lines_label(args)} lines of: {args.get('path')}",
    ),
    ActionSpec(
        name="tail_file",
        capability=READ,
        description="Read the last N lines of a file. Useful for checking the end of logs or large files.",
        parameters={
            "type": "object",
            "properties": {
                "path": _path_param("file"),
                "lines": {
                    "type": "integer",
                    "description": "Number of lines to read from the end. Defaults to 100.",
                    "default": DEFAULT_LINES,
                },
            },
            "required": ["path"],
        },
        describe=lambda args: f"Read last {_lines_label(args)} lines of: {args.get('path')}",
    ),
    ActionSpec(
        name="list_dir",
        capability=LIST,
        description="List the contents of a directory. Subdirectories get a trailing /.",
        parameters={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": (
                        "The path to the directory, relative to the project directory. "
                        'Use "." for the project root.'
                    ),
                },
                "recursive": {
                    "type": "boolean",
                    "description": "Whether to list contents recursively. Defaults to false.",
                    "default": False,
                },
            },
            "required": ["path"],
        },
        describe=lambda args: (
            f"List directory: {args.get('path')}"
            + (" (recursive)" if args.get("recursive") else "")
        ),
    ),
    ActionSpec(
        name="run_command",
        capability=EXECUTE,
        description=(
            "Execute a shell command in the project directory. "
            "Use with caution. Timeout is 60 seconds."
        ),
        parameters={
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute. Runs in the project directory.",
                },
            },
            "required": ["command"],
        },
        describe=lambda args: f"Run command: {args.get('command')}",
    ),
    ActionSpec(
        name="edit_file",
        capability=WRITE,
        description=(
            "Edit a file by replacing the first occurrence of an exact string. "
            "Safer than rewriting entire files."
        ),
        parameters={
            "type": "object",
            "properties": {
                "path": _path_param("file to edit"),
                "old_string": {
                    "type": "string",
                    "description": "The exact string to find and replace. Must match exactly.",
                },
                "new_string": {
                    "type": "string",
                    "description": "The string to replace the old string with.",
                },
            },
            "required": ["path", "old_string", "new_string"],
        },
        describe=lambda args: f"Edit file: {args.get('path')}",
    ),
]

ACTIONS: dict[str, ActionSpec] = {spec.name: spec for spec in _SPECS}


def tool_schemas() -> list[dict]:
    """Function declarations for every catalogued action, in catalog order."""
    return [spec.schema() for spec in _SPECS]


def is_known(name: str) -> bool:
    return name in ACTIONS


def capability_of(name: str) -> str | None:
    spec = ACTIONS.get(name)
    return spec.capability if spec else None


def required_args(name: str) -> list[str]:
    spec = ACTIONS.get(name)
    return list(spec.parameters.get("required", [])) if spec else []


def describe(name: str, args: dict) -> str:
    """One-line summary shown before asking for permission. Never raises."""
    spec = ACTIONS.get(name)
    if spec is None:
        return f"Unknown action: {name}"
    return spec.describe(args or {})
