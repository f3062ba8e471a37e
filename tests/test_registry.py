import asyncio
from unittest.mock import AsyncMock

from switchboard.core.registry import SessionRegistry
from switchboard.core.session import PermissionMode


async def test_get_or_create_reuses_session(tmp_path):
    registry = SessionRegistry(str(tmp_path))
    first, created = await registry.get_or_create("a@x")
    again, created_again = await registry.get_or_create("a@x")

    assert created and not created_again
    assert first is again
    assert first.working_dir == str(tmp_path)
    assert "a@x" in registry and len(registry) == 1


async def test_concurrent_creation_yields_one_session(tmp_path):
    registry = SessionRegistry(str(tmp_path))
    results = await asyncio.gather(*(registry.get_or_create("a@x") for _ in range(5)))
    sessions = {id(s) for s, _ in results}
    assert len(sessions) == 1
    assert sum(created for _, created in results) == 1


async def test_replace_terminates_old_session(tmp_path):
    terminate = AsyncMock()
    registry = SessionRegistry(str(tmp_path))
    registry.init(terminate)

    old, _ = await registry.get_or_create("a@x")
    old.permission_mode = PermissionMode.BYPASS
    new, created = await registry.get_or_create("a@x", replace=True, working_dir="/srv")

    assert created and new is not old
    terminate.assert_awaited_once_with(old)
    assert new.working_dir == "/srv"
    assert new.permission_mode is PermissionMode.BYPASS
    assert registry.get("a@x") is new


async def test_remove_only_matching_session(tmp_path):
    registry = SessionRegistry(str(tmp_path))
    old, _ = await registry.get_or_create("a@x")
    new, _ = await registry.get_or_create("a@x", replace=True)

    registry.remove("a@x", old)
    assert registry.get("a@x") is new
    registry.remove("a@x")
    registry.remove("a@x")
    assert registry.get("a@x") is None


async def test_shutdown_all_runs_hook_and_clears(tmp_path):
    registry = SessionRegistry(str(tmp_path))
    await registry.get_or_create("a@x")
    await registry.get_or_create("b@x")
    hook = AsyncMock(side_effect=[RuntimeError("boom"), None])

    await registry.shutdown_all(hook)

    assert hook.await_count == 2
    assert len(registry) == 0
    assert registry.keys() == []
