"""健康检查与可观测性测试"""

from httpx import AsyncClient
from mobzap.delivery import LoopbackChannel


class TestHealth:
    async def test_liveness(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_ready_pull_mode(self, client: AsyncClient):
        resp = await client.get("/ready")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ready"
        assert data["mode"] == "pull"
        assert data["checks"]["sqlite"] == "ok"
        assert data["checks"]["delivery"] == "skipped"
        assert data["checks"]["sessions"] == 0

    async def test_ready_checks_push_channel(self, client: AsyncClient, test_app):
        class DownChannel(LoopbackChannel):
            async def health_check(self) -> bool:
                return False

        test_app.state.delivery_channel = DownChannel()

        resp = await client.get("/ready")

        assert resp.status_code == 503
        assert resp.json()["checks"]["delivery"] == "unreachable"


class TestObservability:
    async def test_request_id_in_response_header(self, client: AsyncClient):
        resp = await client.get("/health")
        # ULID 格式：26 字符
        assert len(resp.headers["x-request-id"]) == 26

    async def test_request_ids_are_unique(self, client: AsyncClient):
        ids = set()
        for _ in range(3):
            resp = await client.get("/health")
            ids.add(resp.headers["x-request-id"])
        assert len(ids) == 3
