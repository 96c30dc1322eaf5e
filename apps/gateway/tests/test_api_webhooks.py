"""Webhook 管理 API 测试"""

from httpx import AsyncClient
from mobzap.core.timeutil import utc_now


async def _register(client: AsyncClient, **extra) -> dict:
    resp = await client.post(
        "/api/webhooks",
        json={"url": "https://example.com/hook", "events": ["task.completed"], **extra},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestWebhookApi:
    async def test_register_generates_secret(self, client: AsyncClient):
        data = await _register(client)
        assert len(data["secret"]) == 64
        assert data["active"] is True
        assert data["events"] == ["task.completed"]

    async def test_register_with_secret(self, client: AsyncClient):
        data = await _register(client, secret="my-own-secret")
        assert data["secret"] == "my-own-secret"

    async def test_unknown_event_rejected(self, client: AsyncClient):
        resp = await client.post(
            "/api/webhooks",
            json={"url": "https://example.com/hook", "events": ["task.exploded"]},
        )
        assert resp.status_code == 400

    async def test_list_hides_secret(self, client: AsyncClient):
        await _register(client)
        resp = await client.get("/api/webhooks")
        [webhook] = resp.json()["webhooks"]
        assert "secret" not in webhook

    async def test_delete(self, client: AsyncClient):
        data = await _register(client)
        resp = await client.delete(f"/api/webhooks/{data['webhook_id']}")
        assert resp.status_code == 204
        resp = await client.delete(f"/api/webhooks/{data['webhook_id']}")
        assert resp.status_code == 404

    async def test_reactivate_resets_failures(self, client: AsyncClient, store_group):
        data = await _register(client)
        for _ in range(3):
            async with store_group.transaction():
                await store_group.webhook_store.record_failure(data["webhook_id"], 3, utc_now())

        resp = await client.post(f"/api/webhooks/{data['webhook_id']}/reactivate")

        assert resp.status_code == 200
        assert resp.json()["active"] is True
        assert resp.json()["consecutive_failures"] == 0

    async def test_other_owner_cannot_manage(self, client: AsyncClient):
        data = await _register(client)
        resp = await client.post(
            f"/api/webhooks/{data['webhook_id']}/reactivate",
            headers={"X-Owner-ID": "owner-2"},
        )
        assert resp.status_code == 404
