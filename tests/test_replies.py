import pytest

from switchboard.core.correlator import QuestionOption
from switchboard.core.replies import (
    parse_approval_choice,
    parse_approval_reply,
    parse_question_reply,
)

OPTIONS = (
    QuestionOption("Postgres", "Postgres"),
    QuestionOption("SQLite", "SQLite"),
    QuestionOption("Mongo", "Mongo"),
)


@pytest.mark.parametrize("text", ["allow", "Yes", "y", "ok", "approve!"])
def test_allow_words(text):
    decision = parse_approval_reply(text)
    assert decision.allowed and not decision.remember


@pytest.mark.parametrize("text", ["deny", "No", "n", "reject."])
def test_deny_words(text):
    decision = parse_approval_reply(text)
    assert not decision.allowed and decision.feedback is None


def test_always_and_feedback():
    assert parse_approval_reply("Always allow").remember
    decision = parse_approval_reply("deny - run the linter first")
    assert not decision.allowed
    assert decision.feedback == "run the linter first"


@pytest.mark.parametrize("text", ["", "maybe later", "allow this and that"])
def test_not_an_approval(text):
    assert parse_approval_reply(text) is None


def test_approval_choice_values():
    assert parse_approval_choice("always_allow").remember
    assert parse_approval_choice("ALLOW").allowed
    assert parse_approval_choice("deny").feedback is None
    assert parse_approval_choice("feedback", "slower").feedback == "slower"
    assert parse_approval_choice("later") is None


def test_question_by_number_and_label():
    assert parse_question_reply(OPTIONS, "2") == "SQLite"
    assert parse_question_reply(OPTIONS, "mongo") == "Mongo"
    assert parse_question_reply(OPTIONS, "4") is None
    assert parse_question_reply(OPTIONS, "something else") is None


def test_single_select_takes_first_token():
    assert parse_question_reply(OPTIONS, "3, 1") == "Mongo"


def test_multi_select_joins_unique_choices():
    assert parse_question_reply(OPTIONS, "1, sqlite 1", multi_select=True) == "Postgres, SQLite"


def test_free_text_without_options():
    assert parse_question_reply((), "  blue  ") == "blue"
    assert parse_question_reply((), "   ") is None
