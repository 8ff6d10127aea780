from __future__ import annotations

from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from backend.app import create_app
from backend.config import get_settings

FUNNEL = {
    "id": "course",
    "name": "Course funnel",
    "flow": {
        "startBlockId": "t1",
        "stages": [
            {"id": "s1", "name": "TRANSITION", "blockIds": ["t1"]},
            {"id": "s2", "name": "EXPERIENCE_QUALIFICATION", "blockIds": ["q1"]},
            {"id": "s3", "name": "OFFER", "cardType": "product", "blockIds": ["offer_1", "u1", "d1"]},
        ],
        "blocks": {
            "t1": {"id": "t1", "message": "Let's chat [LINK]", "options": [{"text": "Go", "nextBlockId": "q1"}]},
            "q1": {
                "id": "q1",
                "message": "Are you new to trading?",
                "options": [
                    {"text": "Yes, brand new", "nextBlockId": "offer_1"},
                    {"text": "No, just browsing", "nextBlockId": None},
                ],
            },
            "offer_1": {
                "id": "offer_1",
                "message": "Starter course",
                "options": [],
                "upsellBlockId": "u1",
                "downsellBlockId": "d1",
                "resourceId": "res_1",
            },
            "u1": {"id": "u1", "message": "Add mentoring?", "options": [{"text": "Yes", "nextBlockId": None}]},
            "d1": {"id": "d1", "message": "Try the free guide", "options": [{"text": "Ok", "nextBlockId": None}]},
        },
    },
}


@pytest.fixture(autouse=True)
def reset_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Force each test to use a clean funnel catalogue."""

    monkeypatch.setenv("FUNNELS_PATH", str(tmp_path / "funnels.json"))
    monkeypatch.setenv("DEBOUNCE_SECONDS", "1.0")
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


def create_client() -> TestClient:
    app = create_app()
    return TestClient(app)


def start_conversation(client: TestClient, **payload) -> dict:
    assert client.post("/funnels", json=FUNNEL).status_code == 201
    response = client.post("/funnels/course/conversations", json=payload)
    assert response.status_code == 201
    return response.json()


def test_health_endpoint_reports_status():
    client = create_client()
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["funnels"] == 0


def test_create_funnel_is_listed_and_persisted(tmp_path: Path):
    client = create_client()
    response = client.post("/funnels", json=FUNNEL)
    assert response.status_code == 201
    created = response.json()
    assert created["startBlockId"] == "t1"
    assert created["blockCount"] == 5
    assert created["issues"] == []
    assert created["offerBlockIds"] == ["offer_1", "u1", "d1"]

    funnels = client.get("/funnels").json()["funnels"]
    assert [f["id"] for f in funnels] == ["course"]
    assert (tmp_path / "funnels.json").exists()

    reloaded = create_client().get("/funnels").json()["funnels"]
    assert reloaded[0]["blockCount"] == 5


def test_validation_endpoint_reports_issues():
    client = create_client()
    broken = {"id": "broken", "flow": {"startBlockId": "nope", "blocks": {}}}
    assert client.post("/funnels", json=broken).status_code == 201

    issues = client.get("/funnels/broken/validation").json()
    assert [issue["code"] for issue in issues] == ["missing_start_block"]


def test_start_conversation_auto_advances_transition():
    client = create_client()
    conversation = start_conversation(client, selectedOffer="1")

    assert conversation["funnelId"] == "course"
    assert conversation["currentBlockId"] == "q1"
    assert [m["type"] for m in conversation["history"]] == ["bot", "system", "bot"]
    assert conversation["history"][1]["text"] == "redirect_to_live_chat"
    assert conversation["optionsLeadingToOffer"] == [0]
    assert conversation["stage"] == "EXPERIENCE_QUALIFICATION"


def test_option_click_and_offer_timer():
    client = create_client()
    conversation_id = start_conversation(client)["id"]

    clicked = client.post(f"/conversations/{conversation_id}/options", json={"index": 0}).json()
    assert clicked["history"][-1]["text"] == "Starter course"
    assert clicked["currentBlockId"] is None

    timer = client.post(f"/conversations/{conversation_id}/timer", json={"blockId": "offer_1"})
    assert timer.status_code == 200
    assert timer.json()["offerTimerBlockId"] == "offer_1"
    assert timer.json()["currentBlockId"] == "offer_1"

    resolved = client.post(
        f"/conversations/{conversation_id}/timer/resolve", json={"outcome": "didnt_buy"}
    ).json()
    assert resolved["currentBlockId"] == "d1"
    assert resolved["history"][-1]["text"] == "Try the free guide"
    assert resolved["offerTimerBlockId"] is None


def test_free_text_guidance_and_debounce():
    client = create_client()
    conversation_id = start_conversation(client)["id"]

    first = client.post(f"/conversations/{conversation_id}/messages", json={"text": "huh"}).json()
    second = client.post(f"/conversations/{conversation_id}/messages", json={"text": "huh"}).json()
    assert len(first["history"]) == 5
    assert len(second["history"]) == 5
    assert first["history"][-1]["text"] == "Please choose one of the available options above."

    matched = client.post(f"/conversations/{conversation_id}/messages", json={"text": "2"}).json()
    assert matched["currentBlockId"] is None
    assert matched["completed"] is True
    assert matched["progress"] == 100


def test_errors_map_to_status_codes():
    client = create_client()
    conversation_id = start_conversation(client)["id"]

    assert client.get("/conversations/missing").status_code == 404
    assert client.post("/funnels/missing/conversations", json={}).status_code == 404
    assert (
        client.post(f"/conversations/{conversation_id}/options", json={"index": 7}).status_code
        == 422
    )
    assert (
        client.post(f"/conversations/{conversation_id}/timer", json={"blockId": "q1"}).status_code
        == 409
    )


def test_restart_resets_transcript():
    client = create_client()
    conversation_id = start_conversation(client)["id"]
    client.post(f"/conversations/{conversation_id}/options", json={"index": 1})

    restarted = client.post(f"/conversations/{conversation_id}/restart").json()
    assert restarted["currentBlockId"] == "q1"
    assert len(restarted["history"]) == 3


@pytest.mark.asyncio
async def test_resume_snapshot_over_async_client():
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.post("/funnels", json=FUNNEL)
        resume = {
            "currentBlockId": "q1",
            "messages": [{"type": "bot", "text": "Are you new to trading?", "metadata": {"blockId": "q1"}}],
        }
        response = await client.post("/funnels/course/conversations", json={"resume": resume})

    assert response.status_code == 201
    payload = response.json()
    assert payload["currentBlockId"] == "q1"
    assert len(payload["history"]) == 1
    assert payload["history"][0]["metadata"]["blockId"] == "q1"


def test_delete_conversation_frees_registry_slot():
    client = create_client()
    conversation_id = start_conversation(client)["id"]
    assert client.get("/health").json()["conversations"] == 1

    assert client.delete(f"/conversations/{conversation_id}").status_code == 204
    assert client.get(f"/conversations/{conversation_id}").status_code == 404
    assert client.delete(f"/conversations/{conversation_id}").status_code == 404
    assert client.get("/health").json()["conversations"] == 0


def test_registry_keeps_only_newest_conversations(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MAX_CONVERSATIONS", "2")
    get_settings.cache_clear()  # type: ignore[attr-defined]
    client = create_client()

    first = start_conversation(client)["id"]
    second = client.post("/funnels/course/conversations", json={}).json()["id"]
    third = client.post("/funnels/course/conversations", json={}).json()["id"]

    assert client.get("/health").json()["conversations"] == 2
    assert client.get(f"/conversations/{first}").status_code == 404
    assert client.get(f"/conversations/{second}").status_code == 200
    assert client.get(f"/conversations/{third}").status_code == 200
