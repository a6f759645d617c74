"""Completion boundary: conversation <-> chat-completion messages via LiteLLM.

The model's answer is reduced to one of two shapes: a FinalText (no actions
requested) or an ActionBatch (one or more requested actions, in order). Both
carry the raw model turn so it can be appended to the conversation.
"""

import json
import re
from dataclasses import dataclass

from .conversation import (
    ABORTED_MESSAGE,
    MODEL,
    ActionRequest,
    ActionResultPart,
    TextPart,
    Turn,
    dump_json,
    new_call_id,
)
from .errors import AgentError, CompletionTimeout, RateLimitedError

API_TIMEOUT = 600  # seconds

_RATE_LIMIT_RE = re.compile(
    r"\b429\b|RESOURCE_EXHAUSTED|rate.{0,3}limit",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class FinalText:
    text: str
    turn: Turn


@dataclass(frozen=True)
class ActionBatch:
    requests: list[ActionRequest]
    turn: Turn


ModelReply = FinalText | ActionBatch


def is_rate_limit(exc: BaseException) -> bool:
    """Recognise a rate-limit rejection by status code or message."""
    for attr in ("status_code", "status", "code"):
        if getattr(exc, attr, None) == 429:
            return True
    return bool(_RATE_LIMIT_RE.search(str(exc)))


def to_messages(turns: list[Turn], system: str | None = None) -> list[dict]:
    """Convert a conversation to OpenAI-style chat messages.

    Every tool call gets a tool message before the conversation moves on;
    calls whose result never reached the session are answered as aborted.
    """
    messages: list[dict] = []
    if system:
        messages.append({"role": "system", "content": system})
    open_calls: list[str] = []

    def close_open_calls():
        for call_id in open_calls:
            messages.append(
                {"role": "tool", "tool_call_id": call_id, "content": f"error: {ABORTED_MESSAGE}"}
            )
        open_calls.clear()

    for turn in turns:
        if turn.role == MODEL:
            msg: dict = {"role": "assistant", "content": turn.text or None}
            requests = turn.requests
            if requests:
                msg["tool_calls"] = [
                    {
                        "id": r.call_id,
                        "type": "function",
                        "function": {"name": r.name, "arguments": dump_json(r.args)},
                    }
                    for r in requests
                ]
            elif not turn.text:
                continue
            close_open_calls()
            messages.append(msg)
            open_calls.extend(r.call_id for r in requests)
            continue
        for part in turn.parts:
            if isinstance(part, ActionResultPart):
                if part.call_id in open_calls:
                    open_calls.remove(part.call_id)
                result = part.result
                content = result.output if result.succeeded else f"error: {result.error}"
                messages.append(
                    {"role": "tool", "tool_call_id": part.call_id, "content": content}
                )
        if turn.text:
            close_open_calls()
            messages.append({"role": "user", "content": turn.text})
    close_open_calls()
    return messages


def _parse_arguments(raw) -> tuple[dict, str | None]:
    if isinstance(raw, dict):
        return raw, None
    if raw is None or raw == "":
        return {}, None
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        return {}, f"invalid JSON in action arguments: {e}"
    if not isinstance(parsed, dict):
        return {}, "action arguments must be a JSON object"
    return parsed, None


def parse_message(message) -> ModelReply:
    """Turn a LiteLLM response message into a FinalText or an ActionBatch."""
    content = getattr(message, "content", None) or ""
    parts: list = [TextPart(content)] if content else []
    requests: list[ActionRequest] = []
    for tc in getattr(message, "tool_calls", None) or []:
        args, parse_error = _parse_arguments(tc.function.arguments)
        requests.append(
            ActionRequest(
                name=tc.function.name or "unknown",
                args=args,
                call_id=getattr(tc, "id", None) or new_call_id(),
                parse_error=parse_error,
            )
        )
    turn = Turn(MODEL, parts + requests)
    if requests:
        return ActionBatch(requests, turn)
    return FinalText(content, turn)


def call_llm(
    model: str,
    turns: list[Turn],
    tools: list | None,
    system: str | None,
    *,
    timeout: float = API_TIMEOUT,
    api_key: str | None = None,
    base_url: str | None = None,
) -> ModelReply:
    """Call LiteLLM once. Maps failures onto CompletionTimeout, RateLimitedError or AgentError."""
    import litellm

    litellm.suppress_debug_info = True

    completion_kwargs: dict = dict(
        model=model,
        messages=to_messages(turns, system),
        timeout=timeout,
    )
    if tools:
        completion_kwargs["tools"] = tools
        completion_kwargs["tool_choice"] = "auto"
    if api_key:
        completion_kwargs["api_key"] = api_key
    if base_url:
        completion_kwargs["api_base"] = base_url

    try:
        response = litellm.completion(**completion_kwargs)
    except litellm.Timeout as e:
        raise CompletionTimeout(f"API request timed out after {timeout:g} seconds") from e
    except Exception as e:
        if is_rate_limit(e):
            raise RateLimitedError(f"rate limited: {e}") from e
        raise AgentError(f"LLM call failed: {e}") from e

    return parse_message(response.choices[0].message)
