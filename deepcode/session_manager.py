"""Session lifecycle and the bounded model/tool agent loop."""

import asyncio
import inspect
import json
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

from deepcode.cancellation import CancellationToken
from deepcode.config import Config, get_config
from deepcode.exceptions import ConfigurationError, LLMError, RequestAbortedError, SessionBusyError
from deepcode.instructions import InstructionLoader
from deepcode.llm import LLMProvider, create_provider
from deepcode.logging import get_logger
from deepcode.prompt import (
    get_compact_prompt,
    get_compact_resume_prompt,
    get_skill_prompt,
    get_system_prompt,
)
from deepcode.session import (
    MessageMeta,
    SessionEntry,
    SessionMessage,
    SessionStore,
)
from deepcode.skills import SkillInfo, list_skills, load_skill_document, parse_skill_command
from deepcode.tools.executor import ToolCallExecution, ToolExecutor, build_default_registry
from deepcode.tools.registry import ToolName

log = get_logger(__name__)

MessageListener = Callable[[SessionMessage, bool], Awaitable[None] | None]
ProviderFactory = Callable[[], LLMProvider | None]

IMAGE_PROMPT_SUMMARY = "[Image Prompt]"
SUMMARY_MAX_CHARS = 100
RESULT_SNIPPET_MAX_CHARS = 2000

MISSING_CREDENTIAL_REASON = "API key not found"
MISSING_CREDENTIAL_NOTICE = (
    "API key not found. Please configure ~/.deepcode/config.yaml or ~/.deepcode/settings.json."
)
ITERATION_LIMIT_NOTICE = (
    "The AI agent has taken several steps but hasn't reached a conclusion yet. "
    "Do you want to continue?"
)
INTERRUPTED_NOTICE = "Interrupted."
INTERRUPTED_REASON = "interrupted"


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class UserPrompt:
    """Prompt submitted by the user."""

    text: str = ""
    image_urls: list[str] = field(default_factory=list)
    skills: list[SkillInfo] = field(default_factory=list)


def build_chat_messages(messages: list[SessionMessage]) -> list[dict[str, Any]]:
    """Convert the stored log into the outbound chat message list.

    Compacted records are skipped. User messages carrying content params are
    sent as multi-part content: the text part first, then each param.
    """
    outbound: list[dict[str, Any]] = []
    for message in messages:
        if message.compacted:
            continue
        item: dict[str, Any] = {"role": message.role, "content": message.content or ""}
        params = message.message_params or {}
        if params.get("tool_calls"):
            item["tool_calls"] = params["tool_calls"]
        if params.get("tool_call_id"):
            item["tool_call_id"] = params["tool_call_id"]

        if message.role == "user" and message.content_params:
            parts: list[Any] = []
            if message.content:
                parts.append({"type": "text", "text": message.content})
            extra = message.content_params
            for param in extra if isinstance(extra, list) else [extra]:
                if isinstance(param, dict):
                    parts.append(param)
            if parts:
                item["content"] = parts
        outbound.append(item)
    return outbound


def clip_snippet(value: str, max_chars: int = RESULT_SNIPPET_MAX_CHARS) -> str:
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}... (total {len(value)} chars)"


def build_params_snippet(function: dict[str, Any] | None, project_root: str) -> str:
    """Short display form of a tool call's arguments (its first value)."""
    if not isinstance(function, dict):
        return ""
    arguments = function.get("arguments")
    if not isinstance(arguments, str) or not arguments.strip():
        return ""
    trimmed = arguments.strip()
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        return trimmed
    if not isinstance(parsed, dict) or not parsed:
        return trimmed

    value = next(iter(parsed.values()))
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    if function.get("name") == ToolName.READ.value and text.startswith(project_root):
        return text[len(project_root):].lstrip("/\\")
    return text


def build_result_snippet(content: str) -> str:
    """Short display form of a tool result: its output, else the raw content."""
    if not content.strip():
        return ""
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        return clip_snippet(content)
    if isinstance(parsed, dict) and "output" in parsed:
        output = parsed["output"]
        return clip_snippet(output if isinstance(output, str) else json.dumps(output, ensure_ascii=False))
    return clip_snippet(content)


def find_tool_function(tool_calls: list[Any], tool_call_id: str) -> dict[str, Any] | None:
    for call in tool_calls:
        if isinstance(call, dict) and call.get("id") == tool_call_id:
            function = call.get("function")
            return function if isinstance(function, dict) else None
    return None


class SessionManager:
    """Creates sessions, runs the agent loop and tracks interruption.

    One loop may run per session at a time; different sessions may run
    concurrently on the same event loop.
    """

    def __init__(
        self,
        project_root: Path | str,
        on_message: MessageListener | None = None,
        provider_factory: ProviderFactory | None = None,
        store: SessionStore | None = None,
        executor: ToolExecutor | None = None,
        config: Config | None = None,
        loader: InstructionLoader | None = None,
        skill_roots: list[str] | None = None,
    ):
        """Initialize session manager.

        Args:
            project_root: Absolute workspace path
            on_message: Listener called with (message, should_connect) for every
                emitted message; may be sync or async
            provider_factory: Returns a model provider, or None when no
                credential is configured
            store: Optional session store (defaults to the configured data dir)
            executor: Optional tool executor (defaults to the enabled built-ins)
            config: Optional config (defaults to the global config)
            loader: Optional instruction loader for prompt templates
            skill_roots: Optional skill roots overriding config ``skills.roots``
        """
        self.project_root = str(project_root)
        self.config = config or get_config()
        self.on_message = on_message
        self.provider_factory = provider_factory or (lambda: create_provider(self.config.model))
        self.store = store or SessionStore(self.project_root, self.config.resolved_data_dir())
        self.executor = executor or ToolExecutor(
            self.project_root,
            registry=build_default_registry(self.config),
        )
        self.loader = loader or InstructionLoader()
        self.skill_roots = skill_roots
        self._active_session_id: str | None = None
        self._tokens: dict[str, CancellationToken] = {}
        self._tokens_lock = threading.Lock()

    # Queries

    def get_active_session_id(self) -> str | None:
        return self._active_session_id

    def set_active_session_id(self, session_id: str | None) -> None:
        self._active_session_id = session_id

    def list_sessions(self) -> list[SessionEntry]:
        return self.store.list_entries()

    def get_session(self, session_id: str) -> SessionEntry | None:
        return self.store.get_entry(session_id)

    def list_session_messages(self, session_id: str) -> list[SessionMessage]:
        return self.store.list_messages(session_id)

    def list_skills(self) -> list[SkillInfo]:
        return list_skills(self.skill_roots, config=self.config)

    def is_running(self, session_id: str) -> bool:
        with self._tokens_lock:
            return session_id in self._tokens

    # Prompt entry points

    async def handle_user_prompt(self, prompt: UserPrompt) -> str:
        """Continue the active session, or start a new one."""
        active_id = self._active_session_id
        if not active_id or self.get_session(active_id) is None:
            return await self.create_session(prompt)
        return await self.reply_session(active_id, prompt)

    async def create_session(self, prompt: UserPrompt) -> str:
        """Start a new session from a prompt and run the loop.

        A leading ``/name`` line selects a skill; the line is removed from the
        prompt text when the skill exists.
        """
        if prompt.text.startswith("/"):
            skill, remaining = parse_skill_command(prompt.text, self.list_skills())
            if skill is not None:
                prompt.skills = [*prompt.skills, skill]
                prompt.text = remaining

        entry = SessionEntry(
            summary=prompt.text[:SUMMARY_MAX_CHARS] if prompt.text else IMAGE_PROMPT_SUMMARY,
        )
        self.store.add_entry(entry, self.config.session.max_entries)
        log.info("Session created", session_id=entry.id, skills=[s.name for s in prompt.skills])

        system_message = self._system_message(entry.id, get_system_prompt(self.project_root, self.loader))
        await self._append(system_message, False)
        await self._append_prompt(entry.id, prompt)

        self._active_session_id = entry.id
        await self.activate_session(entry.id)
        return entry.id

    async def reply_session(self, session_id: str, prompt: UserPrompt) -> str:
        """Append a follow-up prompt to an existing session and run the loop.

        Raises:
            SessionBusyError if the session has an active run; nothing is
            written in that case
        """
        if self.get_session(session_id) is None:
            return await self.create_session(prompt)
        if self.is_running(session_id):
            raise SessionBusyError(session_id)

        self._update_entry(session_id, status="pending", fail_reason=None)
        await self._append_prompt(session_id, prompt)

        self._active_session_id = session_id
        await self.activate_session(session_id)
        return session_id

    # Agent loop

    async def activate_session(self, session_id: str) -> None:
        """Run the model/tool loop until the turn ends or a bound is hit.

        Raises:
            SessionBusyError if the session already has an active run
        """
        token = self._acquire_token(session_id)
        provider: LLMProvider | None = None
        try:
            provider = self.provider_factory()
            if provider is None:
                log.warning("No model credential configured", session_id=session_id)
                self._update_entry(session_id, status="failed", fail_reason=MISSING_CREDENTIAL_REASON)
                await self._emit(self._notice(session_id, MISSING_CREDENTIAL_NOTICE), False)
                return

            self._update_entry(session_id, status="processing")
            finished = await self._run_loop(session_id, token, provider)
            if not finished:
                log.info("Iteration limit reached", session_id=session_id)
                self._update_entry(session_id, status="completed")
                await self._emit(self._notice(session_id, ITERATION_LIMIT_NOTICE), False)
        except RequestAbortedError as e:
            log.info("Session interrupted", session_id=session_id)
            # interrupt_session already recorded the terminal state.
            if not token.cancelled:
                self._update_entry(session_id, status="interrupted", fail_reason=str(e))
        except asyncio.CancelledError:
            self._update_entry(session_id, status="interrupted", fail_reason=INTERRUPTED_REASON)
            raise
        except Exception as e:
            log.error("Session failed", session_id=session_id, error=str(e))
            self._update_entry(session_id, status="failed", fail_reason=str(e))
            await self._emit(self._notice(session_id, f"Request failed: {e}"), False)
        finally:
            self._release_token(session_id, token)
            if provider is not None:
                await provider.close()

    async def _run_loop(self, session_id: str, token: CancellationToken, provider: LLMProvider) -> bool:
        """Return True when the turn ended on its own, False when the bound was hit."""
        tools = self.executor.get_definitions()
        for _ in range(self.config.session.max_iterations):
            if token.cancelled:
                return True
            entry = self.get_session(session_id)
            if entry is not None and entry.status in ("interrupted", "failed"):
                return True

            messages = build_chat_messages(self.store.list_messages(session_id))
            response = await token.run(provider.complete(messages, tools))
            tool_calls = response.tool_calls or None
            if token.cancelled:
                return True

            await self._append(self._assistant_message(session_id, response.content, tool_calls), True)

            if tool_calls:
                executions = await self.executor.execute_tool_calls(session_id, tool_calls)
                if token.cancelled:
                    return True
                for execution in executions:
                    await self._append(self._tool_message(session_id, execution, tool_calls), True)

            if token.cancelled:
                return True

            refusal = response.refusal
            changes: dict[str, Any] = {
                "assistant_reply": response.content,
                "assistant_thinking": response.reasoning_content,
                "assistant_refusal": refusal,
                "tool_calls": tool_calls,
                "usage": response.usage,
                "status": "failed" if refusal else "processing" if tool_calls else "completed",
            }
            if refusal:
                changes["fail_reason"] = refusal
            self._update_entry(session_id, **changes)

            if refusal or not tool_calls:
                return True
        return False

    async def interrupt_session(self, session_id: str) -> None:
        """Cancel the session's run and mark it interrupted."""
        with self._tokens_lock:
            token = self._tokens.pop(session_id, None)
        if token is not None:
            token.cancel(INTERRUPTED_REASON)

        log.info("Interrupting session", session_id=session_id, running=token is not None)
        self._update_entry(session_id, status="interrupted", fail_reason=INTERRUPTED_REASON)
        await self._emit(
            self._notice(session_id, INTERRUPTED_NOTICE, self.config.session.interrupt_notice_role),
            False,
        )

    async def compact_session(self, session_id: str) -> str | None:
        """Replace the session's history with a model-written summary.

        Returns:
            The summary, or None when there is nothing to compact

        Raises:
            SessionBusyError while the session runs
            ConfigurationError when no credential is configured
        """
        token = self._acquire_token(session_id)
        provider: LLMProvider | None = None
        try:
            messages = self.store.list_messages(session_id)
            keep_first = bool(messages) and messages[0].role == "system"
            candidates = [
                message for position, message in enumerate(messages)
                if not message.compacted and not (keep_first and position == 0)
            ]
            if not candidates:
                return None

            provider = self.provider_factory()
            if provider is None:
                raise ConfigurationError(MISSING_CREDENTIAL_REASON)

            request = get_compact_prompt(
                ({"role": message.role, "content": message.content or ""} for message in candidates),
                self.loader,
            )
            response = await token.run(provider.complete([{"role": "user", "content": request}], None))
            summary = (response.content or "").strip()
            if not summary:
                raise LLMError("Compaction returned an empty summary")

            now = _utcnow_iso()
            compacted = [
                message if message.compacted or (keep_first and position == 0)
                else message.model_copy(update={"compacted": True, "update_time": now})
                for position, message in enumerate(messages)
            ]
            compacted.append(self._system_message(session_id, get_compact_resume_prompt(summary, self.loader)))
            self.store.rewrite_messages(session_id, compacted)
            self._update_entry(session_id)
            log.info("Session compacted", session_id=session_id, compacted=len(candidates))
            return summary
        finally:
            self._release_token(session_id, token)
            if provider is not None:
                await provider.close()

    # Internals

    def _acquire_token(self, session_id: str) -> CancellationToken:
        with self._tokens_lock:
            if session_id in self._tokens:
                raise SessionBusyError(session_id)
            token = CancellationToken()
            self._tokens[session_id] = token
            return token

    def _release_token(self, session_id: str, token: CancellationToken) -> None:
        with self._tokens_lock:
            if self._tokens.get(session_id) is token:
                del self._tokens[session_id]

    def _update_entry(self, session_id: str, **changes: Any) -> SessionEntry | None:
        changes["update_time"] = _utcnow_iso()
        return self.store.update_entry(session_id, lambda entry: entry.model_copy(update=changes))

    async def _append_prompt(self, session_id: str, prompt: UserPrompt) -> None:
        """Append skill documents, then the user message."""
        for skill in prompt.skills:
            try:
                document = load_skill_document(skill)
            except OSError as e:
                log.warning("Skill document unreadable", skill=skill.name, path=skill.path, error=str(e))
                continue
            content = get_skill_prompt(skill.name, skill.path, document, self.loader)
            await self._append(self._system_message(session_id, content), False)
        await self._append(self._user_message(session_id, prompt), False)

    async def _append(self, message: SessionMessage, should_connect: bool) -> None:
        self.store.append_message(message.session_id, message)
        await self._emit(message, should_connect)

    async def _emit(self, message: SessionMessage, should_connect: bool) -> None:
        if self.on_message is None:
            return
        try:
            result = self.on_message(message, should_connect)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log.warning("Message listener failed", session_id=message.session_id, error=str(e))

    def _system_message(self, session_id: str, content: str) -> SessionMessage:
        return SessionMessage(session_id=session_id, role="system", content=content, visible=False)

    def _user_message(self, session_id: str, prompt: UserPrompt) -> SessionMessage:
        image_params = [
            {"type": "image_url", "image_url": {"url": url}}
            for url in prompt.image_urls
            if url
        ]
        return SessionMessage(
            session_id=session_id,
            role="user",
            content=prompt.text or "",
            content_params=image_params or None,
        )

    def _assistant_message(
        self,
        session_id: str,
        content: str | None,
        tool_calls: list[Any] | None,
    ) -> SessionMessage:
        return SessionMessage(
            session_id=session_id,
            role="assistant",
            content=content,
            message_params={"tool_calls": tool_calls} if tool_calls else None,
            visible=bool((content or "").strip() or tool_calls),
            meta=MessageMeta(as_thinking=True) if tool_calls else None,
        )

    def _tool_message(
        self,
        session_id: str,
        execution: ToolCallExecution,
        tool_calls: list[Any],
    ) -> SessionMessage:
        function = find_tool_function(tool_calls, execution.tool_call_id)
        return SessionMessage(
            session_id=session_id,
            role="tool",
            content=execution.content,
            message_params={"tool_call_id": execution.tool_call_id},
            visible=not self._is_hidden_failure(execution.content),
            meta=MessageMeta(
                function=function,
                params_md=build_params_snippet(function, self.project_root),
                result_md=build_result_snippet(execution.content),
            ),
        )

    def _is_hidden_failure(self, content: str) -> bool:
        """Failed results of tools in the hide list are not shown."""
        if not content.strip():
            return False
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            return False
        if not isinstance(parsed, dict):
            return False
        return parsed.get("name") in self.config.session.hide_failed_tools and parsed.get("ok") is not True

    def _notice(self, session_id: str, text: str, role: str | None = None) -> SessionMessage:
        """Build a synthetic notice that is shown but never persisted."""
        return SessionMessage(
            session_id=session_id,
            role=role or self.config.session.notice_role,
            content=text,
        )
