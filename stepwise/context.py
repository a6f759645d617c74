"""Context size accounting and lossy compaction of tool-call turns."""

import functools
from typing import Callable

from .conversation import TextPart, Turn, dump_json, part_size

MAX_CONTEXT_CHARS = 100_000
MIN_TOOL_TURNS = 4

SUMMARY_FALLBACK = "Tool calls were performed."


def content_size(turns: list[Turn]) -> int:
    """Characters of text plus serialized length of every request/result payload."""
    return sum(part_size(p) for t in turns for p in t.parts)


@functools.lru_cache(maxsize=1)
def _encoder():
    import tiktoken

    return tiktoken.get_encoding("cl100k_base")


def estimate_tokens(turns: list[Turn]) -> int:
    """Approximate token count of the conversation, for display only."""
    enc = _encoder()
    total = 0
    for turn in turns:
        for part in turn.parts:
            if isinstance(part, TextPart):
                text = part.text
            else:
                text = dump_json(part.payload())
            total += len(enc.encode(text, disallowed_special=()))
        # Per-turn overhead (role, separators), ~4 tokens each
        total += 4
    return total


def split_tool_turns(turns: list[Turn]) -> tuple[list[int], list[int]]:
    """Return (tool_turn_indices, plain_turn_indices)."""
    tool, plain = [], []
    for i, turn in enumerate(turns):
        (tool if turn.is_tool_turn else plain).append(i)
    return tool, plain


def summary_turn(summary: str) -> Turn:
    return Turn.user_text(f"[Previous tool calls summary: {summary}]")


def splice_summary(turns: list[Turn], summary: str) -> list[Turn]:
    """Drop all tool turns, putting one summary turn where the last of them was.

    Every request and its result are removed together, so no result is left
    without its request.
    """
    tool_idx, _ = split_tool_turns(turns)
    if not tool_idx:
        return list(turns)
    last_tool = tool_idx[-1]
    result = []
    for i, turn in enumerate(turns):
        if not turn.is_tool_turn:
            result.append(turn)
        if i == last_tool:
            result.append(summary_turn(summary))
    return result


def serialize_tool_turns(turns: list[Turn]) -> str:
    return "\n\n".join(dump_json(t.to_dict()) for t in turns if t.is_tool_turn)


class ContextAccountant:
    """Keeps the conversation under a character budget by summarizing tool turns."""

    def __init__(
        self, threshold: int = MAX_CONTEXT_CHARS, min_tool_turns: int = MIN_TOOL_TURNS
    ):
        self.threshold = threshold
        self.min_tool_turns = min_tool_turns

    def needs_compaction(self, turns: list[Turn]) -> bool:
        return content_size(turns) > self.threshold

    def compact(
        self, turns: list[Turn], summarize: Callable[[str], str]
    ) -> list[Turn]:
        """Replace all tool turns with one summary turn.

        Returns the input unchanged when there are too few tool turns to be
        worth a summarization call.
        """
        tool_idx, _ = split_tool_turns(turns)
        if len(tool_idx) < self.min_tool_turns:
            return turns
        summary = summarize(serialize_tool_turns(turns)).strip()
        return splice_summary(turns, summary or SUMMARY_FALLBACK)
