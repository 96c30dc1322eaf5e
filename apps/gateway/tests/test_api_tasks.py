"""任务 API 测试 -- 创建、查询、进度、取消与错误信封"""

from httpx import AsyncClient

CHAT = {"category": "message", "payload": {"phone_number": "11999887766", "text": "hi"}}


async def _create(client: AsyncClient, body: dict | None = None) -> dict:
    resp = await client.post("/api/tasks", json=body or CHAT)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestCreateTask:
    async def test_create(self, client: AsyncClient, owner):
        data = await _create(client, {**CHAT, "priority": 9})

        assert len(data["task_id"]) == 26
        assert data["status"] == "pending"
        assert data["priority"] == 9
        assert data["owner_id"] == "owner-1"
        assert data["payload"]["phone_number"] == "11999887766"

    async def test_unknown_category_400(self, client: AsyncClient, owner):
        resp = await client.post("/api/tasks", json={"category": "poll", "payload": {}})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "UNKNOWN_CATEGORY"

    async def test_malformed_payload_400(self, client: AsyncClient, owner):
        resp = await client.post(
            "/api/tasks",
            json={"category": "media", "payload": {"phone_number": "11999887766"}},
        )
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "MALFORMED_PAYLOAD"
        assert any(d["field"].endswith("media_url") for d in error["details"])

    async def test_quota_402(self, client: AsyncClient):
        resp = await client.post("/api/tasks", json=CHAT)
        assert resp.status_code == 402
        assert resp.json()["error"]["code"] == "QUOTA_EXCEEDED"

    async def test_unknown_device_404(self, client: AsyncClient, owner):
        resp = await client.post("/api/tasks", json={**CHAT, "device_id": "nope"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_missing_owner_header_400(self, test_app, owner):
        from httpx import ASGITransport

        async with AsyncClient(
            transport=ASGITransport(app=test_app), base_url="http://test"
        ) as anonymous:
            resp = await anonymous.post("/api/tasks", json=CHAT)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "MALFORMED_REQUEST"


class TestQueryTasks:
    async def test_list_and_filter(self, client: AsyncClient, owner):
        first = await _create(client)
        second = await _create(client)
        await client.post(f"/api/tasks/{first['task_id']}/cancel")

        resp = await client.get("/api/tasks")
        assert [t["task_id"] for t in resp.json()["tasks"]] == [
            second["task_id"],
            first["task_id"],
        ]

        resp = await client.get("/api/tasks", params={"status": "cancelled"})
        assert [t["task_id"] for t in resp.json()["tasks"]] == [first["task_id"]]

    async def test_detail_includes_messages(self, client: AsyncClient, device):
        task = await _create(client, {**CHAT, "device_id": "device-1"})
        await client.post("/api/devices/fetch", json={"phone_normal": "5511988887777"})

        resp = await client.get(f"/api/tasks/{task['task_id']}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["task"]["status"] == "processing"
        assert len(data["messages"]) == 1
        assert data["messages"][0]["phone_number"] == "5511999887766"
        assert data["messages"][0]["status"] == "pending"

    async def test_detail_other_owner_404(self, client: AsyncClient, owner):
        task = await _create(client)
        resp = await client.get(
            f"/api/tasks/{task['task_id']}", headers={"X-Owner-ID": "owner-2"}
        )
        assert resp.status_code == 404

    async def test_bulk_progress(self, client: AsyncClient, owner):
        task = await _create(
            client,
            {
                "category": "bulk-message",
                "payload": {"phone_numbers": ["11999880001", "11999880002"], "text": "promo"},
            },
        )
        resp = await client.get(f"/api/tasks/{task['task_id']}/progress")
        assert resp.json() == {
            "task_id": task["task_id"],
            "sent": 0,
            "failed": 0,
            "total": 2,
        }


class TestCancelTask:
    async def test_cancel_pending(self, client: AsyncClient, owner):
        task = await _create(client)
        resp = await client.post(f"/api/tasks/{task['task_id']}/cancel")
        assert resp.status_code == 200
        assert resp.json() == {"task_id": task["task_id"], "status": "cancelled"}

    async def test_cancel_claimed_409(self, client: AsyncClient, device):
        task = await _create(client, {**CHAT, "device_id": "device-1"})
        await client.post("/api/devices/fetch", json={"phone_normal": "5511988887777"})

        resp = await client.post(f"/api/tasks/{task['task_id']}/cancel")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "NOT_CANCELLABLE"

    async def test_cancel_nonexistent_404(self, client: AsyncClient):
        resp = await client.post("/api/tasks/01NONEXISTENT0000000000000/cancel")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"
