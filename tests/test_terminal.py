import pytest

from switchboard.core.terminal import SEPARATOR_REPLACEMENT, clean_terminal_output, strip_ansi

SNAPSHOT = "\n".join(
    [
        " ▐▛███▜▌   Claude Code v2.0.14",
        "▝▜█████▛▘  Sonnet 4.5 · Claude Max",
        "  ▘▘ ▝▝    /home/alice/project",
        "",
        "> \x1b[1mfix the tests\x1b[0m",
        "",
        "\x1b[32m●\x1b[0m Running pytest",
        "─" * 80,
        "⏸ plan mode on (shift+tab to cycle)",
        "Tip: /ide for editor integration",
    ]
)


def test_strip_ansi():
    assert strip_ansi("\x1b[31mred\x1b[0m plain") == "red plain"
    assert strip_ansi("") == ""


def test_clean_drops_banner_status_and_tips():
    cleaned = clean_terminal_output(SNAPSHOT)
    assert cleaned == "\n".join(
        ["> fix the tests", "", "● Running pytest", SEPARATOR_REPLACEMENT]
    )


def test_model_line_is_dropped():
    assert clean_terminal_output("Opus 4.1 · Claude Pro\nhello") == "hello"


@pytest.mark.parametrize(
    "text",
    [
        SNAPSHOT,
        "",
        "plain text\n\n\n",
        "─" * 12 + "\nafter",
        "\x1b[2J\x1b[Hscreen",
    ],
)
def test_cleaning_is_a_fixed_point(text):
    once = clean_terminal_output(text)
    assert clean_terminal_output(once) == once
