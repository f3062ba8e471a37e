"""SessionController.

This is the single place that owns:
- the per-channel query lifecycle (start, supersede, interrupt, close)
- tool-approval and question wiring through the correlator
- routing agent events and terminal snapshots into the renderer

It depends only on ports, not on XMPP or a concrete agent transport.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from functools import partial
from typing import Any, Coroutine, Iterable

from switchboard.core.api import (
    ChatSurfacePort,
    EventSinkPort,
    OutboundMessage,
    ProcessingChanged,
)
from switchboard.core.correlator import (
    ApprovalRequest,
    InteractionCorrelator,
    InteractionKind,
    QuestionOption,
    QuestionRequest,
)
from switchboard.core.ports import (
    CANCELLED,
    AgentEvent,
    AgentInit,
    AgentQuery,
    AgentTransport,
    ApprovalDecision,
    AssistantText,
    QueryOptions,
    QueryResult,
    ToolApprovalCallback,
    ToolUse,
)
from switchboard.core.registry import SessionRegistry
from switchboard.core.render import OutputRenderer, truncate_for_display
from switchboard.core.replies import (
    parse_approval_choice,
    parse_approval_reply,
    parse_question_reply,
)
from switchboard.core.session import (
    PermissionMode,
    Session,
    SessionStatus,
    TokenUsage,
    format_uptime,
)
from switchboard.core.terminal import clean_terminal_output
from switchboard.core.tools import ToolKind, summarize_tool_use
from switchboard.errors import SessionDeadError, TransportError, ValidationError

log = logging.getLogger("controller")

ERROR_TEXT_LIMIT = 500
QUESTION_CANCELLED = "User question cancelled"

# Handled by the bridge itself, so never blocked by the tool allow-list.
_BRIDGE_TOOLS = frozenset(
    {ToolKind.ASK_USER_QUESTION, ToolKind.EXIT_PLAN_MODE, ToolKind.TASK}
)


def format_error(error: BaseException | str) -> str:
    if isinstance(error, BaseException):
        text = f"Error: {type(error).__name__}: {error}"
    else:
        text = f"Error: {error}"
    if len(text) > ERROR_TEXT_LIMIT:
        text = text[:ERROR_TEXT_LIMIT] + "..."
    return text


def question_requests(tool_input: dict[str, Any]) -> list[QuestionRequest]:
    """One request per AskUserQuestion sub-question; option values are labels."""
    out: list[QuestionRequest] = []
    questions = tool_input.get("questions")
    if not isinstance(questions, list):
        return out
    for q in questions:
        if not isinstance(q, dict):
            continue
        options: list[QuestionOption] = []
        for i, opt in enumerate(q.get("options") or [], 1):
            if not isinstance(opt, dict):
                continue
            label = str(opt.get("label") or f"Option {i}").strip()
            options.append(
                QuestionOption(
                    label=label,
                    value=label,
                    description=str(opt.get("description") or "").strip(),
                )
            )
        header = str(q.get("header") or "").strip()
        out.append(
            QuestionRequest(
                question=str(q.get("question") or "").strip(),
                options=tuple(options),
                header=header or None,
                multi_select=bool(q.get("multiSelect")),
            )
        )
    return out


def format_run_stats(result: QueryResult, session_usage: TokenUsage) -> OutboundMessage:
    run = TokenUsage()
    run.add(result.usage)

    bits: list[str] = []
    if result.turns is not None:
        bits.append(f"{result.turns}t")
    if result.cost_usd is not None:
        bits.append(f"${result.cost_usd:.3f}")
    if result.duration_s is not None:
        bits.append(f"{result.duration_s:.1f}s")
    bits.append(f"{run.total / 1000:.1f}k tokens")
    summary = f"[done {' '.join(bits)} | session {session_usage.total / 1000:.1f}k]"

    attrs = {
        "session_id": result.session_id,
        "turns": result.turns,
        "cost_usd": result.cost_usd,
        "duration_s": result.duration_s,
        "tokens_in": run.input,
        "tokens_out": run.output,
        "tokens_cache_read": run.cache_read,
        "tokens_cache_write": run.cache_write,
        "tokens_total": run.total,
        "session_tokens_total": session_usage.total,
        "summary": summary,
    }
    return OutboundMessage(
        summary,
        meta_type="run-stats",
        meta_attrs={k: str(v) for k, v in attrs.items() if v is not None},
    )


class SessionController:
    def __init__(
        self,
        *,
        registry: SessionRegistry,
        correlator: InteractionCorrelator,
        renderer: OutputRenderer,
        transport: AgentTransport,
        surface: ChatSurfacePort,
        events: EventSinkPort | None = None,
        auto_approve_tools: Iterable[str] = (),
        allowed_tools: Iterable[str] = (),
    ):
        self.registry = registry
        self.correlator = correlator
        self.renderer = renderer
        self.transport = transport
        self._surface = surface
        self._events = events
        self.auto_approve_tools = tuple(auto_approve_tools)
        self.allowed_tools = frozenset(allowed_tools)

        self._tasks: set[asyncio.Task] = set()

        registry.init(self._terminate)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def session_for(self, channel_key: str) -> Session:
        """Existing session, a re-attached running agent, or a fresh one."""
        session, _ = await self.registry.get_or_create(channel_key)
        await self._ensure_attached(session)
        return session

    async def _ensure_attached(self, session: Session) -> None:
        if session.attached:
            return
        key = session.channel_key
        async with self.registry.lock(key):
            if session.attached or self.registry.get(key) is not session:
                return
            recovered = await self.transport.attach(session, self)
            session.attached = True
            if recovered:
                log.info("Re-attached to running agent %s for %s", session.external_name, key)

    async def recover_orphan(self, channel_key: str) -> bool:
        """Adopt an agent process left running by a previous bridge instance."""
        if self.registry.get(channel_key) is not None:
            return False
        if not await self.transport.has_orphan(channel_key):
            return False
        await self.session_for(channel_key)
        return True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def handle_message(self, channel_key: str, text: str) -> None:
        prompt = (text or "").strip()
        if not prompt:
            return
        session = await self.session_for(channel_key)
        await self.start_query(session, prompt)

    async def start_query(self, session: Session, prompt: str) -> int:
        """Start a query; an active one is cancelled first without waiting."""
        key = session.channel_key
        if session.active:
            log.info("Superseding active query for %s", key)
            self._abort(session)

        session.query_token += 1
        token = session.query_token
        session.transition(SessionStatus.ACTIVE)
        session.touch()
        session.last_output = ""

        options = QueryOptions(
            cwd=session.working_dir,
            resume_id=session.session_id,
            permission_mode=session.permission_mode,
            allowed_tools=self.auto_approve_tools,
            on_tool_approval=self._approval_callback(session, token),
            token=token,
        )
        try:
            query = self.transport.start_query(session, prompt, options)
        except Exception:
            session.transition(SessionStatus.ERRORED)
            raise

        session.query = query
        self._set_processing(key, True)
        session.task = self._spawn(self._drive(session, query, token), name=f"query:{key}")
        log.info(
            "Query %d started for %s (resume=%s)", token, key, session.session_id or "-"
        )
        return token

    async def _drive(self, session: Session, query: AgentQuery, token: int) -> None:
        key = session.channel_key
        outcome = SessionStatus.COMPLETED
        try:
            async for event in query.events():
                if session.query_token != token:
                    log.debug("Dropping output of stale query %d for %s", token, key)
                    break
                if await self._on_event(session, event):
                    outcome = SessionStatus.ERRORED
        except SessionDeadError as exc:
            if session.query_token == token:
                await self.on_transport_dead(session, str(exc) or "agent process exited")
            return
        except Exception as exc:
            if session.query_token != token:
                log.debug("Stale query %d for %s failed: %s", token, key, exc)
                return
            log.exception("Query %d failed for %s", token, key)
            outcome = SessionStatus.ERRORED
            await self._post(key, OutboundMessage(format_error(exc)))
        finally:
            await self._close_query(query, key)
            if session.query_token == token and session.active:
                session.query = None
                session.transition(outcome)
                self._set_processing(key, False)

    async def _on_event(self, session: Session, event: AgentEvent) -> bool:
        """Apply one agent event. Returns True when the agent reported an error."""
        key = session.channel_key
        session.touch()

        if isinstance(event, AgentInit):
            if event.session_id and event.session_id != session.session_id:
                session.session_id = event.session_id
                log.info("Agent session %s for %s", event.session_id, key)
        elif isinstance(event, AssistantText):
            text = event.text.strip()
            if not text:
                return False
            session.last_output = (
                f"{session.last_output}\n\n{text}" if session.last_output else text
            )
            self.renderer.append(key, text)
            await self.renderer.publish(key)
        elif isinstance(event, ToolUse):
            if ToolKind.of(event.name) is ToolKind.ASK_USER_QUESTION:
                return False
            self.renderer.append(
                key, summarize_tool_use(event.name, event.input), separator="\n"
            )
            await self.renderer.publish(key)
        elif isinstance(event, QueryResult):
            session.usage.add(event.usage)
            if event.session_id:
                session.session_id = event.session_id
            self.renderer.reset(key)
            if event.is_error:
                await self._post(
                    key, OutboundMessage(format_error(event.result or "agent reported an error"))
                )
                return True
            await self._post(key, format_run_stats(event, session.usage))
        return False

    def _abort(self, session: Session) -> None:
        """Invalidate the running query and deny its pending interactions.

        The output block is finished too, so the next query starts a new
        message instead of editing the aborted one.
        """
        key = session.channel_key
        session.query_token += 1
        query, session.query = session.query, None
        if query is not None:
            self._spawn(self._interrupt_query(query, key), name=f"interrupt:{key}")
        self.correlator.cancel_all(key, CANCELLED)
        self.renderer.reset(key)
        if session.active:
            session.transition(SessionStatus.ABORTED)
            self._set_processing(key, False)

    async def _interrupt_query(self, query: AgentQuery, key: str) -> None:
        try:
            await query.interrupt()
        except (TransportError, SessionDeadError) as exc:
            log.debug("Interrupt for %s failed: %s", key, exc)

    async def _close_query(self, query: AgentQuery, key: str) -> None:
        try:
            await query.close()
        except Exception:
            log.warning("Failed to close query for %s", key, exc_info=True)

    # -------------------------------------------------------------------------
    # Approvals and questions
    # -------------------------------------------------------------------------

    def _approval_callback(self, session: Session, token: int) -> ToolApprovalCallback:
        async def on_tool_approval(
            tool_name: str, tool_input: dict[str, Any]
        ) -> ApprovalDecision:
            return await self._approve_tool(session, token, tool_name, tool_input or {})

        return on_tool_approval

    def _tool_enabled(self, tool_name: str) -> bool:
        if not self.allowed_tools or tool_name in self.allowed_tools:
            return True
        return ToolKind.of(tool_name) in _BRIDGE_TOOLS

    async def _approve_tool(
        self,
        session: Session,
        token: int,
        tool_name: str,
        tool_input: dict[str, Any],
    ) -> ApprovalDecision:
        key = session.channel_key
        if session.query_token != token:
            return CANCELLED

        kind = ToolKind.of(tool_name)
        if kind is ToolKind.ASK_USER_QUESTION:
            return await self._ask_questions(session, token, tool_input)

        if tool_name in self.auto_approve_tools or tool_name in session.always_allow:
            log.debug("Auto-approved %s for %s", tool_name, key)
            return ApprovalDecision.allow()

        if not self._tool_enabled(tool_name):
            log.info("Rejected disabled tool %s for %s", tool_name, key)
            return ApprovalDecision.deny(f"Tool {tool_name} is not enabled")

        if kind is ToolKind.EXIT_PLAN_MODE:
            await self._upload_plan(key, tool_input)

        _, future = await self.correlator.request(
            InteractionKind.APPROVAL, key, ApprovalRequest(tool_name, dict(tool_input))
        )
        decision = await future
        if not isinstance(decision, ApprovalDecision):
            return CANCELLED
        if decision.remember:
            session.always_allow.add(tool_name)
            log.info("Always allowing %s for %s", tool_name, key)
        return decision

    async def _ask_questions(
        self, session: Session, token: int, tool_input: dict[str, Any]
    ) -> ApprovalDecision:
        key = session.channel_key
        requests = question_requests(tool_input)
        if not requests:
            return ApprovalDecision.deny(QUESTION_CANCELLED)

        answers: dict[str, str] = {}
        for request in requests:
            if session.query_token != token:
                return ApprovalDecision.deny(QUESTION_CANCELLED)
            _, future = await self.correlator.request(InteractionKind.QUESTION, key, request)
            answer = await future
            if not isinstance(answer, str):
                log.info("Question for %s was cancelled", key)
                return ApprovalDecision.deny(QUESTION_CANCELLED)
            answers[request.header or request.question] = answer

        return ApprovalDecision.allow(updated_input={**tool_input, "answers": answers})

    async def _upload_plan(self, key: str, tool_input: dict[str, Any]) -> None:
        plan = tool_input.get("plan")
        if not isinstance(plan, str) or not plan.strip():
            return
        try:
            await self._surface.upload_file(key, plan, "plan.md", comment="[Plan]")
        except TransportError as exc:
            log.warning("Could not upload plan for %s: %s", key, exc)

    def resolve_text_reply(self, channel_key: str, text: str) -> bool:
        """Answer the newest pending request of the channel with plain text."""
        interaction = self.correlator.latest(channel_key)
        if interaction is None:
            return False
        payload = interaction.payload
        if isinstance(payload, QuestionRequest):
            decision = parse_question_reply(
                payload.options, text, multi_select=payload.multi_select
            )
        else:
            decision = parse_approval_reply(text)
        if decision is None:
            return False
        return self.correlator.resolve(interaction.request_id, decision)

    def resolve_reply(
        self,
        channel_key: str,
        request_id: str,
        value: str,
        *,
        feedback: str | None = None,
    ) -> bool:
        """Answer a specific request (button click carrying its request id)."""
        interaction = self.correlator.get(request_id)
        if interaction is None or interaction.channel_key != channel_key:
            log.info("Ignoring reply for unknown request %s from %s", request_id, channel_key)
            return False
        payload = interaction.payload
        if isinstance(payload, QuestionRequest):
            decision = parse_question_reply(
                payload.options, value, multi_select=payload.multi_select
            ) or (value or "").strip() or None
        else:
            decision = parse_approval_choice(value, feedback)
        if decision is None:
            return False
        return self.correlator.resolve(request_id, decision)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def interrupt(self, channel_key: str) -> bool:
        """Soft stop: keeps the session id so the next message resumes.

        A tmux pane keeps working after its query has sent the prompt, so an
        idle attached session still gets the transport's interrupt signal.
        """
        session = self.registry.get(channel_key)
        if session is None:
            return False
        if session.active:
            self._abort(session)
            log.info("Interrupted query for %s", channel_key)
            return True

        interrupted = self.correlator.cancel_all(channel_key, CANCELLED) > 0
        if session.attached:
            try:
                if await self.transport.interrupt(session):
                    log.info("Interrupted agent for %s", channel_key)
                    interrupted = True
            except SessionDeadError as exc:
                await self.on_transport_dead(session, str(exc) or "agent process exited")
                return False
        return interrupted

    async def close(self, channel_key: str) -> bool:
        """Hard stop: ends the conversation and forgets the session."""
        session = self.registry.get(channel_key)
        if session is None:
            return False
        self.registry.remove(channel_key, session)
        await self._terminate(session)
        log.info("Closed session for %s", channel_key)
        return True

    async def _terminate(self, session: Session, *, kill: bool = True) -> None:
        key = session.channel_key
        self._abort(session)
        task, session.task = session.task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if session.attached:
            await self.transport.detach(session, kill=kill)
            session.attached = False
        session.session_id = None
        if not session.closed:
            session.transition(SessionStatus.CLOSED)
        self.renderer.drop(key)

    async def change_directory(self, channel_key: str, raw_path: str) -> Session:
        raw = (raw_path or "").strip()
        target = os.path.abspath(os.path.expanduser(raw or "~"))
        if not os.path.isdir(target):
            raise ValidationError(f"Directory not found: {raw or target}")
        session, _ = await self.registry.get_or_create(
            channel_key, replace=True, working_dir=target
        )
        await self._ensure_attached(session)
        return session

    async def set_permission_mode(self, channel_key: str, text: str) -> PermissionMode:
        mode = PermissionMode.parse(text)
        session, _ = await self.registry.get_or_create(channel_key)
        session.permission_mode = mode
        return mode

    def status_text(self, channel_key: str) -> str:
        session = self.registry.get(channel_key)
        if session is None:
            return "No session. Send a message to start one."
        lines = [
            f"Status: {session.status.value}",
            f"Session: {session.session_id or '(new)'}",
            f"Directory: {session.working_dir}",
            f"Mode: {session.permission_mode.value}",
            f"Transport: {self.transport.name}",
        ]
        if session.external_name:
            lines.append(
                f"Terminal: {session.external_name} (up {format_uptime(session.created_at)})"
            )
        lines.append(f"Tokens: {session.usage.summary()}")
        pending = len(self.correlator.pending(channel_key))
        if pending:
            lines.append(f"Pending requests: {pending}")
        if session.always_allow:
            lines.append(f"Always allowed: {', '.join(sorted(session.always_allow))}")
        return "\n".join(lines)

    async def upload_full(self, channel_key: str) -> bool:
        session = self.registry.get(channel_key)
        if session is None:
            return False
        try:
            captured = await self.transport.capture_full(session)
        except SessionDeadError as exc:
            await self.on_transport_dead(session, str(exc) or "agent process exited")
            return False
        text = clean_terminal_output(captured) if captured is not None else session.last_output
        if not text.strip():
            return False
        prefix = self.renderer.state(channel_key).file_prefix
        filename = f"{prefix}_full_{int(time.time() * 1000)}.txt"
        await self._surface.upload_file(
            channel_key,
            text,
            filename,
            comment=f"[Full output ({len(text)} chars) uploaded as {filename}]",
        )
        return True

    async def reset_output(self, channel_key: str) -> None:
        self.renderer.reset(channel_key)
        session = self.registry.get(channel_key)
        if session is not None and session.attached:
            await self.transport.clear(session)

    # -------------------------------------------------------------------------
    # Transport callbacks
    # -------------------------------------------------------------------------

    async def on_transport_output(self, session: Session, raw: str) -> None:
        key = session.channel_key
        if self.registry.get(key) is not session:
            return
        cleaned = clean_terminal_output(raw)
        if not cleaned or cleaned == session.last_output:
            return
        session.last_output = cleaned
        session.touch()
        title = (
            f"Claude Terminal | {session.external_name or key} | "
            f"up {format_uptime(session.created_at)}"
        )
        snapshot = truncate_for_display(
            cleaned, self.renderer.config.display_budget, keep_tail=True
        )
        self.renderer.replace(key, snapshot, title=title)
        await self.renderer.publish(key)

    async def on_transport_dead(self, session: Session, reason: str) -> None:
        key = session.channel_key
        if self.registry.get(key) is not session:
            return
        self.registry.remove(key, session)
        log.warning("Agent for %s is gone: %s", key, reason)

        self._abort(session)
        if not session.closed:
            session.transition(SessionStatus.CLOSED)
        if session.attached:
            session.attached = False
            await self.transport.detach(session, kill=False)
        self.renderer.drop(key)
        await self._post(
            key,
            OutboundMessage(
                f"Session {session.external_name or key} ended ({reason}). "
                "Send a message to start a new one."
            ),
        )

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    async def _post(self, channel_key: str, message: OutboundMessage) -> None:
        try:
            await self._surface.post_message(channel_key, message)
        except TransportError as exc:
            log.warning("Could not post to %s: %s", channel_key, exc)

    def _set_processing(self, channel_key: str, active: bool) -> None:
        if self._events is None:
            return
        self._spawn(
            self._events.emit(ProcessingChanged(channel_key, active)),
            name=f"processing:{channel_key}",
        )

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Task %s failed", task.get_name(), exc_info=exc)

    async def shutdown(self) -> None:
        """Deny pending requests and release sessions; agent processes survive."""
        await self.correlator.shutdown(CANCELLED)
        await self.registry.shutdown_all(partial(self._terminate, kill=False))
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
