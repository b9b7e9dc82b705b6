"""Agent loop: Gemini tool-calling that drives a DiagramSession."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from google import genai
from google.genai import types

from drawchat import config
from drawchat.agent.prompts import build_diagram_context, get_system_prompt
from drawchat.agent.tools import APPEND_DIAGRAM, DISPLAY_DIAGRAM, EDIT_DIAGRAM, TOOL_DECLARATIONS
from drawchat.diagram.cells import parse_cells
from drawchat.diagram.errors import PatchNotFoundError
from drawchat.diagram.session import DiagramSession
from drawchat.storage.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)

MUTATING_TOOLS = frozenset({DISPLAY_DIAGRAM, APPEND_DIAGRAM, EDIT_DIAGRAM})

TRUNCATION_MESSAGE = (
    "Output was truncated due to length limits. The partial diagram has been kept. "
    "Call append_diagram with the remaining mxCell elements, continuing from EXACTLY "
    "where your previous output stopped. Do not repeat earlier elements or add wrapper tags."
)

USER_INPUT_TEMPLATE = 'User input:\n"""md\n{text}\n"""'


@dataclass
class ToolStep:
    """One tool call made by the model, with a short summary of its outcome."""

    tool: str
    args: dict
    summary: str
    ok: bool = True


@dataclass
class AgentResult:
    """Result from an agent run."""

    answer: str
    steps: list[ToolStep] = field(default_factory=list)
    xml: str = ""


def _format_user_input(text: str) -> str:
    return USER_INPUT_TEMPLATE.format(text=text)


def _short_args(args: dict) -> str:
    parts = []
    for k, v in args.items():
        if isinstance(v, str) and len(v) > 60:
            parts.append(f"{k}=<{len(v)} chars>")
        elif isinstance(v, list):
            parts.append(f"{k}=<{len(v)} items>")
        else:
            parts.append(f"{k}={v!r}")
    return ", ".join(parts)


def _is_truncated(response) -> bool:
    candidate = response.candidates[0]
    return getattr(candidate, "finish_reason", None) == types.FinishReason.MAX_TOKENS


class DiagramAgent:
    """Gemini-powered agent that edits a diagram through the three diagram tools."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_steps: int | None = None,
        max_edit_retries: int | None = None,
    ) -> None:
        self._client = genai.Client(api_key=api_key or config.GEMINI_API_KEY)
        self._model = model or config.GEMINI_MODEL
        self._max_steps = max_steps or config.MAX_AGENT_STEPS
        self._max_edit_retries = max_edit_retries or config.MAX_EDIT_RETRIES
        # Per-run state (reset at start of each run())
        self._edit_failures = 0

    @property
    def model(self) -> str:
        return self._model

    def _build_config(self, session: DiagramSession, previous_xml: str | None) -> types.GenerateContentConfig:
        """Generation config with the current diagram baked into the system instruction."""
        system = (
            get_system_prompt(self._model, max_edit_retries=self._max_edit_retries)
            + "\n\n"
            + build_diagram_context(session.xml, previous_xml)
        )
        kwargs: dict = {}
        if config.MAX_OUTPUT_TOKENS:
            kwargs["max_output_tokens"] = config.MAX_OUTPUT_TOKENS
        if config.TEMPERATURE is not None:
            kwargs["temperature"] = config.TEMPERATURE
        return types.GenerateContentConfig(
            tools=[types.Tool(function_declarations=TOOL_DECLARATIONS)],
            system_instruction=system,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
            tool_config=types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(mode="AUTO")
            ),
            **kwargs,
        )

    def _edit_error_hint(self) -> str:
        """Corrective hint after a failed edit_diagram, escalating to a full replace."""
        if self._edit_failures >= self._max_edit_retries:
            return (
                f"\nHINT: edit_diagram has failed {self._edit_failures} times. Stop patching and "
                "use display_diagram to regenerate the complete diagram instead."
            )
        remaining = self._max_edit_retries - self._edit_failures
        return (
            "\nHINT: No edits were applied. Copy the search text EXACTLY from the current "
            "diagram XML, including attribute order and whitespace, and include the mxCell id. "
            f"{remaining} retr{'y' if remaining == 1 else 'ies'} left before you should use display_diagram."
        )

    def _execute_tool(self, session: DiagramSession, name: str, args: dict, truncated: bool = False) -> str:
        """Execute a diagram tool against the session. Raises on invalid input."""
        logger.debug("  tool exec: %s(%s) truncated=%s", name, _short_args(args), truncated)

        if name == DISPLAY_DIAGRAM:
            loaded = session.display(args["xml"], truncated=truncated)
            if loaded is None:
                return TRUNCATION_MESSAGE
            return f"Diagram displayed ({len(parse_cells(loaded))} cells)."
        if name == APPEND_DIAGRAM:
            loaded = session.append(args["xml"], truncated=truncated)
            if loaded is None:
                return TRUNCATION_MESSAGE
            return f"Diagram completed and displayed ({len(parse_cells(loaded))} cells)."
        if name == EDIT_DIAGRAM:
            edits = args["edits"]
            session.edit(edits)
            self._edit_failures = 0
            return f"Applied {len(edits)} edit(s)."
        return f"Unknown tool: {name}"

    def run(
        self,
        session: DiagramSession,
        prompt: str,
        history: list[types.Content] | None = None,
        images: list[tuple[bytes, str]] | None = None,
        previous_xml: str | None = None,
        on_progress: Callable[[dict], None] | None = None,
    ) -> AgentResult:
        """Run until the model answers in text or the step budget is spent.

        Args:
            session: Diagram session the tools operate on.
            prompt: The user's latest message.
            history: Earlier conversation turns, oldest first.
            images: Optional (bytes, mime_type) attachments for the latest message.
            previous_xml: Diagram before the user's last message, for comparison.
            on_progress: Called with a dict after each tool call.
        """
        logger.info("[%s] Agent run started: %r", session.session_id, prompt[:120])
        run_t0 = time.perf_counter()
        self._edit_failures = 0
        steps: list[ToolStep] = []
        last_text = ""

        user_parts = [types.Part.from_text(text=_format_user_input(prompt))]
        for data, mime_type in images or []:
            user_parts.append(types.Part.from_bytes(data=data, mime_type=mime_type))
        contents: list[types.Content] = list(history or [])
        contents.append(types.Content(role="user", parts=user_parts))

        for step in range(self._max_steps):
            logger.info("--- Step %d/%d ---", step + 1, self._max_steps)
            t0 = time.perf_counter()
            response = self._client.models.generate_content(
                model=self._model,
                contents=contents,
                config=self._build_config(session, previous_xml),
            )
            llm_elapsed = time.perf_counter() - t0

            contents.append(response.candidates[0].content)

            if not response.function_calls:
                answer = response.text or ""
                logger.info(
                    "LLM returned final answer: %d chars (LLM %.2fs, total %.2fs)",
                    len(answer), llm_elapsed, time.perf_counter() - run_t0,
                )
                return AgentResult(answer=answer, steps=steps, xml=session.xml)

            if response.text:
                last_text = response.text
            truncated = _is_truncated(response)
            call_names = [c.name for c in response.function_calls]
            logger.info(
                "LLM requested %d tool call(s): %s (LLM %.2fs%s)",
                len(call_names), ", ".join(call_names), llm_elapsed,
                ", truncated" if truncated else "",
            )

            fn_response_parts: list[types.Part] = []
            for call in response.function_calls:
                args = dict(call.args) if call.args else {}
                logger.info("  -> %s(%s)", call.name, _short_args(args))
                ok = True
                try:
                    result = self._execute_tool(session, call.name, args, truncated=truncated)
                    summary = result
                    if call.name in MUTATING_TOOLS and result != TRUNCATION_MESSAGE:
                        session.export_for_history()
                except PatchNotFoundError as e:
                    ok = False
                    self._edit_failures += 1
                    result = f"Error: {e}" + self._edit_error_hint()
                    summary = f"Error: {e}"
                    logger.warning("  edit failed (%d/%d): %s",
                                   self._edit_failures, self._max_edit_retries, e)
                except Exception as e:
                    ok = False
                    result = f"Error: {e}\nHINT: The {call.name} call failed. Check the arguments and try again."
                    summary = f"Error: {e}"
                    logger.error("  tool error: %s: %s", call.name, e)

                steps.append(ToolStep(tool=call.name, args=args, summary=summary, ok=ok))
                if on_progress is not None:
                    on_progress({
                        "step": step + 1,
                        "tool": call.name,
                        "summary": summary,
                        "ok": ok,
                    })
                fn_response_parts.append(
                    types.Part.from_function_response(
                        name=call.name,
                        response={"result": result},
                    )
                )

            contents.append(types.Content(role="user", parts=fn_response_parts))

        total = time.perf_counter() - run_t0
        logger.warning("Max steps (%d) reached without final answer (%.2fs)", self._max_steps, total)
        return AgentResult(answer=last_text, steps=steps, xml=session.xml)


def create_diagram_agent(
    store: SqliteStore | None = None,
    api_key: str | None = None,
    model: str | None = None,
) -> DiagramAgent:
    """Create a DiagramAgent, preferring a stored Gemini credential over the environment."""
    if api_key is None and store is not None:
        api_key = store.get_credential("gemini")
        if api_key:
            logger.info("Using stored Gemini credential")
    logger.info("Model: %s", model or config.GEMINI_MODEL)
    return DiagramAgent(api_key=api_key, model=model)
