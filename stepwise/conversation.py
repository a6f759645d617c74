"""Conversation data model: turns, parts, action requests and results.

A Turn is one contribution by the user or the model. Its parts are plain
text, action requests (proposed by the model) or action results (sent back
by the agent). Turns serialise to plain dicts for JSON storage.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

USER = "user"
MODEL = "model"
ROLES = (USER, MODEL)


class ErrorKind:
    """Categories of recoverable action failures."""

    PATH_ESCAPE = "path_escape"
    NOT_FOUND = "not_found"
    NO_MATCH = "no_match"
    PERMISSION_DENIED = "permission_denied"
    COMMAND_FAILURE = "command_failure"
    TIMEOUT = "timeout"
    UNKNOWN_ACTION = "unknown_action"
    INVALID_ARGUMENTS = "invalid_arguments"
    IO_ERROR = "io_error"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one action: exactly one of output or error is set."""

    output: str | None = None
    error: str | None = None
    kind: str | None = None

    def __post_init__(self):
        if (self.output is None) == (self.error is None):
            raise ValueError("ActionResult needs exactly one of output or error")

    @classmethod
    def ok(cls, output: str) -> "ActionResult":
        return cls(output=output)

    @classmethod
    def failure(cls, kind: str, message: str) -> "ActionResult":
        return cls(error=message, kind=kind)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.error is not None:
            d = {"error": self.error}
            if self.kind:
                d["kind"] = self.kind
            return d
        return {"output": self.output}

    @classmethod
    def from_dict(cls, data: dict) -> "ActionResult":
        if "error" in data:
            return cls.failure(data.get("kind"), data["error"])
        return cls.ok(data.get("output", ""))


ABORTED_MESSAGE = "Action aborted before it completed"


def aborted_result() -> ActionResult:
    return ActionResult.failure(ErrorKind.ABORTED, ABORTED_MESSAGE)


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class TextPart:
    text: str

    def to_dict(self) -> dict:
        return {"text": self.text}


@dataclass(frozen=True)
class ActionRequest:
    """A model-proposed action. parse_error is set when its arguments were unreadable."""

    name: str
    args: dict = field(default_factory=dict)
    call_id: str = field(default_factory=new_call_id)
    parse_error: str | None = None

    def payload(self) -> dict:
        return {"id": self.call_id, "name": self.name, "args": self.args}

    def to_dict(self) -> dict:
        data = self.payload()
        if self.parse_error is not None:
            data["parse_error"] = self.parse_error
        return {"action_request": data}


@dataclass(frozen=True)
class ActionResultPart:
    name: str
    result: ActionResult
    call_id: str

    def payload(self) -> dict:
        return {"id": self.call_id, "name": self.name, **self.result.to_dict()}

    def to_dict(self) -> dict:
        return {"action_result": self.payload()}


Part = TextPart | ActionRequest | ActionResultPart


def part_from_dict(data: dict) -> Part:
    if "text" in data:
        return TextPart(data["text"])
    if "action_request" in data:
        req = data["action_request"]
        return ActionRequest(
            name=req["name"],
            args=dict(req.get("args") or {}),
            call_id=req.get("id") or new_call_id(),
            parse_error=req.get("parse_error"),
        )
    if "action_result" in data:
        res = data["action_result"]
        return ActionResultPart(
            name=res["name"],
            result=ActionResult.from_dict(res),
            call_id=res.get("id") or "",
        )
    raise ValueError(f"unrecognised part: {sorted(data)}")


@dataclass
class Turn:
    role: str
    parts: list = field(default_factory=list)

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"invalid role {self.role!r}")

    @classmethod
    def user_text(cls, text: str) -> "Turn":
        return cls(USER, [TextPart(text)])

    @classmethod
    def model_text(cls, text: str) -> "Turn":
        return cls(MODEL, [TextPart(text)])

    @classmethod
    def result(cls, request: ActionRequest, result: ActionResult) -> "Turn":
        return cls(USER, [ActionResultPart(request.name, result, request.call_id)])

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def requests(self) -> list[ActionRequest]:
        return [p for p in self.parts if isinstance(p, ActionRequest)]

    @property
    def is_tool_turn(self) -> bool:
        return any(isinstance(p, (ActionRequest, ActionResultPart)) for p in self.parts)

    def to_dict(self) -> dict:
        return {"role": self.role, "parts": [p.to_dict() for p in self.parts]}

    @classmethod
    def from_dict(cls, data: dict) -> "Turn":
        return cls(data["role"], [part_from_dict(p) for p in data.get("parts", [])])


def dump_json(data) -> str:
    """Compact JSON, keeping non-ASCII characters as-is."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def part_size(part: Part) -> int:
    if isinstance(part, TextPart):
        return len(part.text)
    return len(dump_json(part.payload()))


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Session:
    id: str
    created_at: str
    turns: list[Turn] = field(default_factory=list)

    @classmethod
    def new(cls) -> "Session":
        return cls(id=uuid.uuid4().hex, created_at=now_iso())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "messages": [t.to_dict() for t in self.turns],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            id=data["id"],
            created_at=data.get("created_at", ""),
            turns=[Turn.from_dict(t) for t in data.get("messages", [])],
        )
