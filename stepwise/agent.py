"""The agentic loop: model call, permission-gated actions, results, repeat."""

import time
from dataclasses import dataclass

from . import actions, fmt
from .completion import API_TIMEOUT, FinalText, ModelReply, call_llm
from .context import (
    MAX_CONTEXT_CHARS,
    ContextAccountant,
    content_size,
    estimate_tokens,
    split_tool_turns,
)
from .conversation import (
    ActionRequest,
    ActionResult,
    ActionResultPart,
    ErrorKind,
    Turn,
    aborted_result,
)
from .errors import RateLimitedError
from .permissions import PermissionGate, denied_result
from .tools import COMMAND_TIMEOUT, Executor

MAX_HOPS = 25
RATE_LIMIT_RETRIES = 3
RATE_LIMIT_DELAY = 60  # seconds
MAX_PREVIEW = 200

EXHAUSTED_MESSAGE = "Maximum iterations reached. Please try a more specific request."
NO_RESPONSE = "No response from agent."

SYSTEM_INSTRUCTION = """You are a coding assistant with access to file system tools. Be conservative and thorough:

- Read relevant files before making changes
- Make targeted edits using edit_file rather than rewriting entire files
- Use head_file/tail_file for large files to avoid reading too much content
- Run commands only when necessary
- Explain what you're doing before taking action
- If a tool fails, read the error message and try to recover
- Ask for clarification if the request is ambiguous

Available tools:
- read_file: Read file contents
- write_file: Create or overwrite a file
- head_file: Read first N lines of a file
- tail_file: Read last N lines of a file
- list_dir: List directory contents
- run_command: Execute a shell command
- edit_file: Edit a file by replacing a specific string"""

PLAN_SYSTEM_ADDITION = """

IMPORTANT: You are in PLAN MODE. Before taking any action:
1. First analyze the request and create a detailed step-by-step plan
2. List all files you plan to read, modify, or create
3. Explain the reasoning for each step
4. After presenting the plan, wait for user approval before executing

Do NOT execute any actions until the user approves the plan."""

SUMMARIZE_PROMPT = """Summarize the following tool calls and their results into a concise summary.
Keep key information like file names, important code changes, and outcomes.
Format as a brief bullet list. Do not include full file contents."""


@dataclass(frozen=True)
class Limits:
    """Fixed bounds for one process. Not negotiable per call."""

    max_hops: int = MAX_HOPS
    max_context_chars: int = MAX_CONTEXT_CHARS
    api_timeout: float = API_TIMEOUT
    command_timeout: int = COMMAND_TIMEOUT
    rate_limit_retries: int = RATE_LIMIT_RETRIES
    rate_limit_delay: float = RATE_LIMIT_DELAY


class Agent:
    """Drives one project's conversation through the completion API.

    `settings` provides the model and the permission records, `history` the
    current session. `decide(capability, args, description)` is asked before
    any action whose capability is not already allowed.
    """

    def __init__(
        self,
        project_dir,
        settings,
        history,
        decide,
        *,
        completion=None,
        limits: Limits | None = None,
        llm_kwargs: dict | None = None,
        verbose: bool = False,
    ):
        self.project_dir = str(project_dir)
        self.settings = settings
        self.history = history
        self.limits = limits or Limits()
        self.completion = completion or call_llm
        self.llm_kwargs = llm_kwargs or {}
        self.verbose = verbose
        self.executor = Executor(project_dir, command_timeout=self.limits.command_timeout)
        self.gate = PermissionGate(settings, decide)
        self.accountant = ContextAccountant(self.limits.max_context_chars)
        self._plan_mode = False

    # -- Modes and stats -----------------------------------------------------

    @property
    def plan_mode(self) -> bool:
        return self._plan_mode

    def set_plan_mode(self, enabled: bool) -> None:
        self._plan_mode = enabled

    def system_instruction(self) -> str:
        if self._plan_mode:
            return SYSTEM_INSTRUCTION + PLAN_SYSTEM_ADDITION
        return SYSTEM_INSTRUCTION

    def context_size(self) -> int:
        return content_size(self.history.get_messages())

    def context_tokens(self) -> int:
        return estimate_tokens(self.history.get_messages())

    # -- Public entry point --------------------------------------------------

    def process_message(self, text: str) -> str:
        """Answer one user message, running actions as the model requests them.

        Completion-boundary failures (timeout, rate limiting past the retry
        cap, anything else the API raises) and storage failures propagate.
        Everything persisted before the failure stays in the session.
        """
        self.history.add_message(Turn.user_text(text))
        answer = self._run(self.history.get_messages())
        self.history.add_message(Turn.model_text(answer))
        return answer

    # -- Loop ----------------------------------------------------------------

    def _run(self, turns: list[Turn]) -> str:
        turns = list(turns)
        tools = actions.tool_schemas()
        max_hops = self.limits.max_hops
        hops = 0

        while hops < max_hops:
            hops += 1
            if self.verbose:
                fmt.hop_header(hops, max_hops)
                fmt.context_stats(len(turns), content_size(turns), estimate_tokens(turns))

            turns = self._check_context(turns)

            t0 = time.monotonic()
            reply = self._call_model(turns, tools, self.system_instruction())
            if self.verbose:
                kind = "final" if isinstance(reply, FinalText) else "actions"
                fmt.llm_timing(time.monotonic() - t0, kind)

            if isinstance(reply, FinalText):
                if self.verbose:
                    fmt.completion(hops, "ok")
                return reply.text or NO_RESPONSE

            self._append(turns, reply.turn)
            if reply.turn.text and self.verbose:
                fmt.assistant_text(reply.turn.text)

            # Strictly in order: later actions may depend on earlier side effects.
            try:
                for request in reply.requests:
                    result = self._dispatch(request)
                    self._append(turns, Turn.result(request, result))
            except BaseException:
                self._close_batch(turns, reply.requests)
                raise

        if self.verbose:
            fmt.completion(hops, "max_hops")
        return EXHAUSTED_MESSAGE

    def _append(self, turns: list[Turn], turn: Turn) -> None:
        self.history.add_message(turn)
        turns.append(turn)

    def _close_batch(self, turns: list[Turn], requests: list[ActionRequest]) -> None:
        """Answer every request of an interrupted batch with an aborted result.

        A request left without a result makes every later completion call
        fail, so the session must never keep one.
        """
        answered = {
            part.call_id
            for turn in self.history.get_messages()
            for part in turn.parts
            if isinstance(part, ActionResultPart)
        }
        for request in requests:
            if request.call_id not in answered:
                self._append(turns, Turn.result(request, aborted_result()))

    def _check_context(self, turns: list[Turn]) -> list[Turn]:
        if not self.accountant.needs_compaction(turns):
            return turns
        before = content_size(turns)
        fmt.warning(
            f"context size {before} exceeds limit {self.accountant.threshold}"
        )
        compacted = self.accountant.compact(turns, self._summarize)
        if compacted is turns:
            if self.verbose:
                fmt.info("too few tool turns to summarize, keeping context as is")
            return turns
        self.history.set_current_session_messages(compacted)
        if self.verbose:
            tool_turns = len(split_tool_turns(turns)[0])
            fmt.compaction(before, content_size(compacted), tool_turns)
        return compacted

    def _summarize(self, serialized: str) -> str:
        prompt = Turn.user_text(f"{SUMMARIZE_PROMPT}\n\n{serialized}")
        reply = self._call_model([prompt], None, None)
        return reply.turn.text

    def _call_model(self, turns: list[Turn], tools, system) -> ModelReply:
        """One completion call, retrying rate-limit rejections with a fixed delay."""
        retries = self.limits.rate_limit_retries
        attempt = 0
        while True:
            try:
                if self.verbose:
                    with fmt.llm_spinner():
                        return self._complete(turns, tools, system)
                return self._complete(turns, tools, system)
            except RateLimitedError:
                if attempt >= retries:
                    raise
                attempt += 1
                fmt.rate_limit_wait(self.limits.rate_limit_delay, attempt, retries)
                time.sleep(self.limits.rate_limit_delay)

    def _complete(self, turns, tools, system) -> ModelReply:
        return self.completion(
            self.settings.model,
            turns,
            tools,
            system,
            timeout=self.limits.api_timeout,
            **self.llm_kwargs,
        )

    # -- Actions -------------------------------------------------------------

    def _dispatch(self, request: ActionRequest) -> ActionResult:
        """Gate and run one requested action. Always returns a result."""
        name = request.name
        if request.parse_error is not None:
            result = ActionResult.failure(ErrorKind.INVALID_ARGUMENTS, request.parse_error)
        elif not actions.is_known(name):
            result = ActionResult.failure(
                ErrorKind.UNKNOWN_ACTION, actions.describe(name, request.args)
            )
        else:
            description = actions.describe(name, request.args)
            if self.verbose:
                fmt.action_request(name, description)
            capability = actions.capability_of(name)
            if self.gate.authorize(capability, request.args, description):
                t0 = time.monotonic()
                result = self.executor.execute(name, request.args)
                elapsed = time.monotonic() - t0
                if self.verbose and result.succeeded:
                    preview = result.output[:MAX_PREVIEW]
                    if len(result.output) > MAX_PREVIEW:
                        preview += "..."
                    fmt.action_result(name, elapsed, preview)
            else:
                result = denied_result()

        if self.verbose and not result.succeeded:
            fmt.action_error(name, result.error)
        return result
