from unittest.mock import AsyncMock, Mock

import pytest

from conftest import CHANNEL
from switchboard.core.correlator import (
    ApprovalRequest,
    InteractionCorrelator,
    InteractionKind,
    QuestionOption,
    QuestionRequest,
)
from switchboard.core.ports import CANCELLED, ApprovalDecision
from switchboard.errors import TransportError

OTHER = "bob@example.com"


@pytest.fixture
def presenter():
    return Mock(present=AsyncMock(return_value="msg-1"), settle=AsyncMock())


@pytest.fixture
def correlator(presenter):
    return InteractionCorrelator(presenter)


def approval(tool="Bash"):
    return ApprovalRequest(tool, {"command": "ls"})


async def test_request_presents_and_waits(correlator, presenter):
    request_id, future = await correlator.request(InteractionKind.APPROVAL, CHANNEL, approval())

    assert not future.done()
    assert correlator.get(request_id).message_handle == "msg-1"
    presenter.present.assert_awaited_once()


async def test_resolve_once(correlator, presenter):
    request_id, future = await correlator.request(InteractionKind.APPROVAL, CHANNEL, approval())

    assert correlator.resolve(request_id, ApprovalDecision.allow())
    assert not correlator.resolve(request_id, ApprovalDecision.deny())
    assert (await future).allowed
    assert len(correlator) == 0

    await correlator.shutdown(CANCELLED)
    presenter.settle.assert_awaited_once()


async def test_resolve_unknown_has_no_effect(correlator):
    _, future = await correlator.request(InteractionKind.APPROVAL, CHANNEL, approval())
    assert not correlator.resolve("nope", ApprovalDecision.allow())
    assert len(correlator) == 1
    assert not future.done()


async def test_cancel_all_is_scoped_to_channel(correlator):
    _, mine_a = await correlator.request(InteractionKind.APPROVAL, CHANNEL, approval())
    _, mine_b = await correlator.request(
        InteractionKind.QUESTION, CHANNEL, QuestionRequest("Pick?")
    )
    theirs_id, theirs = await correlator.request(InteractionKind.APPROVAL, OTHER, approval())

    assert correlator.cancel_all(CHANNEL, CANCELLED) == 2
    assert (await mine_a) is CANCELLED
    assert (await mine_b) is CANCELLED
    assert correlator.pending(CHANNEL) == []
    assert [p.request_id for p in correlator.pending(OTHER)] == [theirs_id]
    assert not theirs.done()


async def test_latest_prefers_newest(correlator):
    await correlator.request(InteractionKind.APPROVAL, CHANNEL, approval("Write"))
    second_id, _ = await correlator.request(InteractionKind.APPROVAL, CHANNEL, approval("Edit"))

    assert correlator.latest(CHANNEL).request_id == second_id
    assert correlator.latest(CHANNEL, InteractionKind.QUESTION) is None
    assert correlator.latest(OTHER) is None


async def test_undeliverable_approval_is_denied(correlator, presenter):
    presenter.present.side_effect = TransportError("offline")
    _, future = await correlator.request(InteractionKind.APPROVAL, CHANNEL, approval())

    decision = future.result()
    assert not decision.allowed
    assert len(correlator) == 0


async def test_undeliverable_question_takes_first_option(correlator, presenter):
    presenter.present.side_effect = TransportError("offline")
    options = (QuestionOption("Yes", "Yes"), QuestionOption("No", "No"))
    _, future = await correlator.request(
        InteractionKind.QUESTION, CHANNEL, QuestionRequest("Go?", options)
    )
    assert future.result() == "Yes"


async def test_settle_failure_is_swallowed(correlator, presenter):
    presenter.settle.side_effect = TransportError("gone")
    request_id, _ = await correlator.request(InteractionKind.APPROVAL, CHANNEL, approval())
    assert correlator.resolve(request_id, ApprovalDecision.allow())
    await correlator.shutdown(CANCELLED)


async def test_shutdown_resolves_everything(correlator):
    _, a = await correlator.request(InteractionKind.APPROVAL, CHANNEL, approval())
    _, b = await correlator.request(InteractionKind.APPROVAL, OTHER, approval())
    await correlator.shutdown(CANCELLED)

    assert a.result() is CANCELLED and b.result() is CANCELLED
    assert len(correlator) == 0


async def test_cancel_while_presenting_still_marks_request(correlator, presenter):
    async def present(interaction):
        correlator.cancel_all(CHANNEL, CANCELLED)
        return "msg-1"

    presenter.present.side_effect = present
    _, future = await correlator.request(InteractionKind.APPROVAL, CHANNEL, approval())
    await correlator.shutdown(CANCELLED)

    assert future.result() is CANCELLED
    interaction, decision = presenter.settle.await_args.args
    assert interaction.message_handle == "msg-1"
    assert decision is None
    assert len(correlator) == 0
