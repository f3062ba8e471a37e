from unittest.mock import AsyncMock, Mock

import pytest
from claude_agent_sdk import (
    AssistantMessage,
    ClaudeSDKError,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolUseBlock,
)
from claude_agent_sdk.types import PermissionResultAllow, PermissionResultDeny

from switchboard.core.ports import (
    AgentInit,
    ApprovalDecision,
    AssistantText,
    QueryOptions,
    QueryResult,
    ToolUse,
)
from switchboard.core.session import PermissionMode, Session
from switchboard.errors import TransportError
from switchboard.runners.claude import ClaudeQuery, ClaudeSDKTransport
from switchboard.runners.claude import runner as runner_module
from switchboard.runners.claude.processor import ClaudeEventProcessor


def result_message(**overrides):
    fields = dict(
        subtype="success",
        duration_ms=3200,
        duration_api_ms=3000,
        is_error=False,
        num_turns=2,
        session_id="sess-1",
        total_cost_usd=0.012,
        usage={"input_tokens": 10, "output_tokens": 5},
        result="done",
    )
    fields.update(overrides)
    return ResultMessage(**fields)


def assistant(*blocks):
    return AssistantMessage(content=list(blocks), model="claude-sonnet-4-5")


def options(on_tool_approval=None, **overrides):
    fields = dict(
        cwd="/work",
        resume_id=None,
        permission_mode=PermissionMode.ACCEPT_EDITS,
        allowed_tools=("Read", "Grep"),
        on_tool_approval=on_tool_approval or AsyncMock(return_value=ApprovalDecision.allow()),
        token=1,
    )
    fields.update(overrides)
    return QueryOptions(**fields)


class FakeClient:
    def __init__(self, agent_options, messages=()):
        self.options = agent_options
        self.messages = list(messages)
        self.prompts = []
        self.connected = False
        self.disconnected = False
        self.interrupt = AsyncMock()

    async def connect(self):
        self.connected = True

    async def query(self, prompt):
        self.prompts.append(prompt)

    async def receive_response(self):
        for message in self.messages:
            yield message

    async def disconnect(self):
        self.disconnected = True


def test_processor_maps_sdk_messages():
    processor = ClaudeEventProcessor()

    assert processor.parse_message(SystemMessage(subtype="init", data={"session_id": "s1"})) == [
        AgentInit("s1")
    ]
    assert processor.parse_message(SystemMessage(subtype="compact", data={})) == []

    events = processor.parse_message(
        assistant(
            TextBlock(text="Looking."),
            TextBlock(text="   "),
            ToolUseBlock(id="t1", name="Grep", input={"pattern": "x"}),
        )
    )
    assert events == [AssistantText("Looking."), ToolUse("Grep", {"pattern": "x"})]
    assert processor.state.tool_count == 1

    [result] = processor.parse_message(result_message(session_id=""))
    assert result == QueryResult(
        usage={"input_tokens": 10, "output_tokens": 5},
        session_id="s1",
        is_error=False,
        result="done",
        cost_usd=0.012,
        duration_s=3.2,
        turns=2,
    )
    assert processor.state.saw_result
    assert processor.parse_message(object()) == []


async def test_query_streams_events_and_disconnects():
    clients = []

    def factory(agent_options):
        client = FakeClient(
            agent_options,
            [
                SystemMessage(subtype="init", data={"session_id": "s1"}),
                assistant(TextBlock(text="Hi")),
                result_message(),
            ],
        )
        clients.append(client)
        return client

    query = ClaudeQuery("hello", options(resume_id="s0"), client_factory=factory)
    events = [event async for event in query.events()]

    [client] = clients
    assert [type(e) for e in events] == [AgentInit, AssistantText, QueryResult]
    assert client.prompts == ["hello"]
    assert client.connected and client.disconnected
    assert client.options.resume == "s0"
    assert client.options.permission_mode == "acceptEdits"
    assert client.options.allowed_tools == ["Read", "Grep"]
    assert client.options.cwd == "/work"


async def test_can_use_tool_maps_decisions():
    approve = AsyncMock(return_value=ApprovalDecision.allow({"answers": {"Q": "A"}}))
    query = ClaudeQuery("x", options(approve))
    allowed = await query._can_use_tool("AskUserQuestion", {"questions": []}, Mock())
    assert isinstance(allowed, PermissionResultAllow)
    assert allowed.updated_input == {"answers": {"Q": "A"}}
    approve.assert_awaited_once_with("AskUserQuestion", {"questions": []})

    approve.return_value = ApprovalDecision.deny("use tabs")
    denied = await query._can_use_tool("Edit", {}, Mock())
    assert isinstance(denied, PermissionResultDeny)
    assert denied.message == "User denied with feedback: use tabs"


async def test_interrupt_before_start_and_after_close():
    client = FakeClient(None)
    query = ClaudeQuery("x", options(), client_factory=lambda _: client)
    await query.interrupt()
    client.interrupt.assert_not_awaited()

    [_ async for _ in query.events()]
    await query.interrupt()
    client.interrupt.assert_not_awaited()


async def test_interrupt_error_is_transport_error():
    client = FakeClient(None)
    client.interrupt.side_effect = ClaudeSDKError("broken pipe")
    query = ClaudeQuery("x", options(), client_factory=lambda _: client)
    query._client = client

    with pytest.raises(TransportError, match="interrupt failed"):
        await query.interrupt()


def test_transport_resolves_cli_path(monkeypatch):
    assert ClaudeSDKTransport(claude_path="claude").cli_path is None

    monkeypatch.setattr(runner_module.shutil, "which", lambda name: f"/opt/bin/{name}")
    assert ClaudeSDKTransport(claude_path="claude-dev").cli_path == "/opt/bin/claude-dev"

    monkeypatch.setattr(runner_module.shutil, "which", lambda name: None)
    assert ClaudeSDKTransport(claude_path="missing").cli_path is None


async def test_transport_has_nothing_to_interrupt_between_queries():
    session = Session("alice@example.com", "/tmp")
    assert not await ClaudeSDKTransport().interrupt(session)
