"""Chat formatting for approval and question requests."""

from __future__ import annotations

from switchboard.core.api import ChatSurfacePort, OutboundMessage
from switchboard.core.correlator import (
    ApprovalRequest,
    InteractionKind,
    PendingInteraction,
    QuestionRequest,
)
from switchboard.core.ports import ApprovalDecision
from switchboard.core.tools import ToolKind, format_tool_input

APPROVAL_CHOICES = ("allow", "deny", "always")
MAX_OPTION_BUTTONS = 5
MAX_OPTION_LABEL = 75


def format_approval_request(request: ApprovalRequest) -> str:
    parts = [f"[Approval] {request.tool_name}"]
    details = format_tool_input(request.tool_name, request.tool_input)
    if details:
        parts.append(details)
    reply = "Reply: allow | deny | always"
    if ToolKind.of(request.tool_name) is ToolKind.EXIT_PLAN_MODE:
        reply += " | deny: <feedback>"
    parts.append(reply)
    return "\n".join(parts)


def format_question(request: QuestionRequest) -> str:
    parts = ["[Question]"]
    if request.header:
        parts.append(request.header)
    if request.question:
        parts.append(request.question)
    if request.options:
        parts.append("Options:")
        for i, opt in enumerate(request.options, 1):
            parts.append(
                f"  {i}) {opt.label}" + (f" - {opt.description}" if opt.description else "")
            )
        parts.append("Reply with the option number or label text.")
    return "\n".join(parts)


def format_status(interaction: PendingInteraction, decision: object) -> str:
    if decision is None:
        return "[Cancelled]"
    if interaction.kind is InteractionKind.QUESTION:
        return f"[Answered] {decision}"
    if isinstance(decision, ApprovalDecision):
        if decision.remember:
            return f"[Always allowed] {_tool_name(interaction)}"
        if decision.allowed:
            return f"[Approved] {_tool_name(interaction)}"
        if decision.feedback:
            return f"[Denied] {_tool_name(interaction)}: {decision.feedback}"
    return f"[Denied] {_tool_name(interaction)}"


def _tool_name(interaction: PendingInteraction) -> str:
    payload = interaction.payload
    return payload.tool_name if isinstance(payload, ApprovalRequest) else ""


class SurfacePresenter:
    """InteractionPresenter that posts requests as chat messages with meta."""

    def __init__(self, surface: ChatSurfacePort):
        self._surface = surface

    def build_message(self, interaction: PendingInteraction) -> OutboundMessage:
        payload = interaction.payload
        if isinstance(payload, ApprovalRequest):
            return OutboundMessage(
                format_approval_request(payload),
                meta_type="approval",
                meta_tool=payload.tool_name,
                meta_attrs={
                    "version": "1",
                    "request_id": interaction.request_id,
                },
                meta_payload={
                    "version": 1,
                    "request_id": interaction.request_id,
                    "tool": payload.tool_name,
                    "input": payload.tool_input,
                    "choices": list(APPROVAL_CHOICES)
                    + (
                        ["feedback"]
                        if ToolKind.of(payload.tool_name) is ToolKind.EXIT_PLAN_MODE
                        else []
                    ),
                },
            )

        buttons = [
            {"label": opt.label[:MAX_OPTION_LABEL], "value": opt.value}
            for opt in payload.options[:MAX_OPTION_BUTTONS]
        ]
        return OutboundMessage(
            format_question(payload),
            meta_type="question",
            meta_tool="question",
            meta_attrs={
                "version": "1",
                "request_id": interaction.request_id,
                "option_count": str(len(payload.options)),
            },
            meta_payload={
                "version": 1,
                "request_id": interaction.request_id,
                "header": payload.header,
                "question": payload.question,
                "multi_select": payload.multi_select,
                "options": buttons,
            },
        )

    async def present(self, interaction: PendingInteraction) -> str:
        return await self._surface.post_message(
            interaction.channel_key, self.build_message(interaction)
        )

    async def settle(self, interaction: PendingInteraction, decision: object) -> None:
        if interaction.message_handle is None:
            return
        await self._surface.update_message(
            interaction.channel_key,
            interaction.message_handle,
            OutboundMessage(
                format_status(interaction, decision),
                meta_type="interaction-status",
                meta_attrs={"request_id": interaction.request_id},
            ),
        )
