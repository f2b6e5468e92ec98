"""Test smart action routes with a mocked executor."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient

ACTION = {
    "name": "Evening",
    "stages": [
        {"actions": [{"switchId": "10.0.0.5:light:0", "action": "on"}]},
        {"actions": [{"switchId": "10.0.0.5:shade:0", "action": "close"}]},
    ],
    "scheduling": [{"type": "delay", "delayMs": 500}],
}


@pytest.fixture
def executor():
    ex = MagicMock()
    ex.start_action.return_value = "action_1700000000000_1"
    ex.stop_action = AsyncMock(return_value=True)
    with patch("panelhub.api.routes.actions.get_action_executor", return_value=ex):
        yield ex


@pytest.mark.asyncio
async def test_run_action(client: AsyncClient, executor):
    resp = await client.post("/api/actions/run", json={"ownerId": 3, "action": ACTION})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "executionId": "action_1700000000000_1"}
    owner_id, action = executor.start_action.call_args.args
    assert owner_id == 3
    assert len(action.stages) == 2
    assert action.scheduling[0].delay_ms == 500


@pytest.mark.asyncio
async def test_run_legacy_steps(client: AsyncClient, executor):
    body = {
        "action": {
            "name": "Old",
            "steps": [
                {"switchId": "10.0.0.5:light:0", "action": "on", "delayMs": 200},
                {"switchId": "10.0.0.5:light:1", "action": "off"},
            ],
        }
    }
    resp = await client.post("/api/actions/run", json=body)

    assert resp.status_code == 200
    _, action = executor.start_action.call_args.args
    assert len(action.stages) == 2
    assert action.scheduling[0].delay_ms == 200


@pytest.mark.asyncio
async def test_run_requires_stages(client: AsyncClient, executor):
    resp = await client.post("/api/actions/run", json={"action": {"name": "Empty"}})
    assert resp.status_code == 400
    executor.start_action.assert_not_called()


@pytest.mark.asyncio
async def test_list_actions(client: AsyncClient, executor):
    executor.list_progress.return_value = [{"executionId": "action_1", "state": "running"}]
    resp = await client.get("/api/actions/run")
    assert resp.json() == {"actions": [{"executionId": "action_1", "state": "running"}], "count": 1}


@pytest.mark.asyncio
async def test_progress_not_found(client: AsyncClient, executor):
    executor.get_progress.return_value = None
    resp = await client.get("/api/actions/action_404")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stop_action(client: AsyncClient, executor):
    resp = await client.delete("/api/actions/action_1", params={"stopCurtains": "false"})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "curtainsStopped": False}
    executor.stop_action.assert_awaited_once_with("action_1", False)


@pytest.mark.asyncio
async def test_stop_finished_action(client: AsyncClient, executor):
    executor.stop_action.return_value = False
    resp = await client.delete("/api/actions/action_1")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stream_ends_on_terminal_state(client: AsyncClient, executor):
    done = {"executionId": "action_1", "state": "completed", "currentStage": 2}
    executor.get_progress.return_value = done
    executor.add_progress_listener.side_effect = lambda execution_id, listener: listener(done)

    resp = await client.get("/api/actions/action_1/stream")

    assert resp.status_code == 200
    assert "event: progress" in resp.text
    assert "event: complete" in resp.text
    executor.remove_progress_listener.assert_called_once()


@pytest.mark.asyncio
async def test_stream_unknown_action(client: AsyncClient, executor):
    executor.get_progress.return_value = None
    resp = await client.get("/api/actions/missing/stream")
    assert resp.status_code == 404
