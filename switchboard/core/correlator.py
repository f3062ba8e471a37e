"""Interaction correlator.

Pairs asynchronous human decisions (tool approvals, multiple-choice answers)
arriving from the chat surface with the agent requests blocked on them.
Each pending interaction is an asyncio.Future keyed by request id.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from switchboard.core.ports import ApprovalDecision
from switchboard.errors import CorrelationError, TransportError

log = logging.getLogger("correlator")


class InteractionKind(str, Enum):
    APPROVAL = "approval"
    QUESTION = "question"


@dataclass(frozen=True)
class QuestionOption:
    label: str
    value: str
    description: str = ""


@dataclass(frozen=True)
class ApprovalRequest:
    tool_name: str
    tool_input: dict[str, Any]


@dataclass(frozen=True)
class QuestionRequest:
    question: str
    options: tuple[QuestionOption, ...] = ()
    header: str | None = None
    multi_select: bool = False


Decision = ApprovalDecision | str


@dataclass
class PendingInteraction:
    request_id: str
    kind: InteractionKind
    channel_key: str
    payload: ApprovalRequest | QuestionRequest
    future: asyncio.Future
    message_handle: str | None = None
    created_at: float = field(default_factory=time.monotonic)
    # Decision that arrived before the request message was shown.
    early_decision: tuple[object] | None = field(default=None, repr=False)

    @property
    def options(self) -> tuple[QuestionOption, ...]:
        if isinstance(self.payload, QuestionRequest):
            return self.payload.options
        return ()


class InteractionPresenter(Protocol):
    """Shows requests on the chat surface and marks them settled."""

    async def present(self, interaction: PendingInteraction) -> str: ...

    async def settle(self, interaction: PendingInteraction, decision: object) -> None: ...


def _fallback_decision(interaction: PendingInteraction) -> Decision:
    if interaction.kind is InteractionKind.QUESTION:
        options = interaction.options
        return options[0].value if options else ""
    return ApprovalDecision.deny("Approval request could not be delivered")


class InteractionCorrelator:
    def __init__(self, presenter: InteractionPresenter):
        self._presenter = presenter
        self._pending: dict[str, PendingInteraction] = {}
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._pending)

    def get(self, request_id: str) -> PendingInteraction | None:
        return self._pending.get(request_id)

    def pending(self, channel_key: str) -> list[PendingInteraction]:
        return [p for p in self._pending.values() if p.channel_key == channel_key]

    def latest(
        self, channel_key: str, kind: InteractionKind | None = None
    ) -> PendingInteraction | None:
        """Most recent pending interaction of a channel (for plain-text replies)."""
        for p in reversed(list(self._pending.values())):
            if p.channel_key == channel_key and (kind is None or p.kind is kind):
                return p
        return None

    async def request(
        self,
        kind: InteractionKind,
        channel_key: str,
        payload: ApprovalRequest | QuestionRequest,
    ) -> tuple[str, asyncio.Future]:
        """Record a pending interaction and surface it.

        The returned future has no timeout; waiting forever is a valid state.
        If the request cannot be shown, the future is already resolved with
        the fallback (first option for questions, deny for approvals).
        """
        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        interaction = PendingInteraction(
            request_id=request_id,
            kind=kind,
            channel_key=channel_key,
            payload=payload,
            future=future,
        )
        self._pending[request_id] = interaction

        try:
            interaction.message_handle = await self._presenter.present(interaction)
        except TransportError as exc:
            log.warning(
                "Failed to deliver %s %s to %s: %s", kind.value, request_id, channel_key, exc
            )
            self._pending.pop(request_id, None)
            if not future.done():
                future.set_result(_fallback_decision(interaction))
            return request_id, future

        if interaction.early_decision is not None:
            # Cancelled or answered while it was being shown.
            (decision,) = interaction.early_decision
            self._settle_nowait(interaction, decision)
            return request_id, future

        log.info("Pending %s %s for %s", kind.value, request_id, channel_key)
        return request_id, future

    def _take(self, request_id: str) -> PendingInteraction:
        interaction = self._pending.pop(request_id, None)
        if interaction is None or interaction.future.done():
            raise CorrelationError(f"No pending interaction {request_id!r}")
        return interaction

    def resolve(self, request_id: str, decision: Decision) -> bool:
        try:
            interaction = self._take(request_id)
        except CorrelationError as exc:
            log.info("Ignoring decision: %s", exc)
            return False

        interaction.future.set_result(decision)
        log.info("Resolved %s %s", interaction.kind.value, request_id)
        self._settle_nowait(interaction, decision)
        return True

    def cancel_all(
        self, channel_key: str, default_decision: Decision
    ) -> int:
        """Resolve every pending interaction of a channel with the default."""
        cancelled = 0
        for interaction in self.pending(channel_key):
            self._pending.pop(interaction.request_id, None)
            if interaction.future.done():
                continue
            interaction.future.set_result(default_decision)
            cancelled += 1
            self._settle_nowait(interaction, None)
        if cancelled:
            log.info("Cancelled %d pending interaction(s) for %s", cancelled, channel_key)
        return cancelled

    async def shutdown(self, default_decision: Decision) -> None:
        for channel_key in {p.channel_key for p in self._pending.values()}:
            self.cancel_all(channel_key, default_decision)
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _settle_nowait(self, interaction: PendingInteraction, decision: object) -> None:
        """Best-effort status update of the request message."""
        if interaction.message_handle is None:
            interaction.early_decision = (decision,)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._settle(interaction, decision))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _settle(self, interaction: PendingInteraction, decision: object) -> None:
        try:
            await self._presenter.settle(interaction, decision)
        except TransportError as exc:
            log.debug("Could not update request %s: %s", interaction.request_id, exc)
