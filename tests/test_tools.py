import pytest

from switchboard.core.tools import ToolKind, format_tool_input, summarize_tool_use


def test_unknown_tool_kind():
    assert ToolKind.of("Bash") is ToolKind.BASH
    assert ToolKind.of("mcp__db__query") is ToolKind.UNKNOWN


@pytest.mark.parametrize(
    "name, tool_input, expected",
    [
        ("Read", {"file_path": "/src/a.py"}, "File: /src/a.py"),
        ("Write", {"file_path": "b.txt", "content": "hello"}, "File: b.txt\nContent length: 5 chars"),
        ("Edit", {"file_path": "c.py", "old_string": "x"}, "File: c.py"),
        ("Glob", {"pattern": "**/*.py"}, "Pattern: **/*.py"),
        ("Grep", {"pattern": "TODO"}, "Pattern: TODO\nPath: ."),
        ("WebSearch", {"query": "asyncio"}, "Query: asyncio"),
        ("WebFetch", {"url": "https://example.com"}, "URL: https://example.com"),
    ],
)
def test_format_tool_input(name, tool_input, expected):
    assert format_tool_input(name, tool_input) == expected


def test_bash_command_is_clipped():
    text = format_tool_input("Bash", {"command": "x" * 600})
    assert text == "Command:\n" + "x" * 500 + "..."


def test_plan_and_task_previews():
    plan = format_tool_input("ExitPlanMode", {"plan": "p" * 400})
    assert plan.startswith("Plan preview:\n" + "p" * 300 + "...")
    assert plan.endswith("(Full plan uploaded as plan.md)")

    task = format_tool_input(
        "Task", {"subagent_type": "general", "description": "scan", "prompt": "look"}
    )
    assert task == "Agent: general\nDescription: scan\nPrompt: look..."


def test_unknown_tool_is_json_dump_clipped():
    text = format_tool_input("mcp__x", {"blob": "z" * 2000})
    assert len(text) == 803
    assert text.startswith("{\n")
    assert format_tool_input("mcp__x", {}) == ""


@pytest.mark.parametrize(
    "name, tool_input, expected",
    [
        ("Bash", {"command": "ls   -la\n"}, "[tool:bash ls -la]"),
        ("Read", {"file_path": "/deep/path/main.py"}, "[tool:read main.py]"),
        ("Grep", {"pattern": "foo"}, "[tool:grep foo]"),
        ("TodoWrite", {"todos": []}, "[tool:todowrite]"),
        ("", None, "[tool:?]"),
    ],
)
def test_summarize_tool_use(name, tool_input, expected):
    assert summarize_tool_use(name, tool_input) == expected
