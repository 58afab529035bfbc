"""
Integration tests for the API layer.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import make_metric, make_position
from fundingpilot.api.server import create_app
from fundingpilot.database.models import PositionStatus


@pytest.fixture
def btc_metrics(reader):
    reader.metrics = [
        make_metric(exchange="binance", funding_rate="0"),
        make_metric(exchange="bybit", funding_rate="0.0059"),
    ]


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, async_client: AsyncClient):
        """Test the health check endpoint."""
        response = await async_client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["database"] is True
        # The scheduler loop is not started in tests
        assert data["status"] == "degraded"
        assert data["scheduler_running"] is False
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_readiness_check(self, async_client: AsyncClient):
        """Test the readiness endpoint."""
        response = await async_client.get("/api/ready")
        assert response.status_code == 200
        assert response.json()["ready"] is True

    @pytest.mark.asyncio
    async def test_liveness_check(self, async_client: AsyncClient):
        """Test the liveness endpoint."""
        response = await async_client.get("/api/live")
        assert response.status_code == 200
        assert response.json()["alive"] is True

    @pytest.mark.asyncio
    async def test_unwired_engine(self):
        """Test engine routes return 503 before the scheduler is wired."""
        transport = ASGITransport(app=create_app())
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            assert (await client.get("/api/status")).status_code == 503
            health = (await client.get("/api/health")).json()
            assert health["status"] == "unhealthy"
            assert (await client.get("/api/ready")).json()["ready"] is False


class TestRootEndpoint:
    """Tests for root endpoint."""

    @pytest.mark.asyncio
    async def test_root_endpoint(self, async_client: AsyncClient):
        """Test the root endpoint."""
        response = await async_client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Funding Pilot API"
        assert data["version"] == "1.0.0"


class TestStatusEndpoints:
    """Tests for status and opportunity endpoints."""

    @pytest.mark.asyncio
    async def test_status_before_first_cycle(self, async_client: AsyncClient):
        response = await async_client.get("/api/status")
        assert response.status_code == 200
        data = response.json()
        assert data["risk_state"]["mode"] == "paper"
        assert data["risk"]["risk_level"] == "normal"
        assert data["last_cycle"] is None
        assert data["cycle_sequence"] == 0
        assert data["open_positions"] == 0
        assert data["open_circuits"] == []
        assert data["market_data_age_seconds"] is None

    @pytest.mark.asyncio
    async def test_status_after_cycle(self, async_client: AsyncClient, scheduler, btc_metrics):
        """Test status reflects the cycle that opened a hedge."""
        await scheduler.tick()

        data = (await async_client.get("/api/status")).json()
        assert data["cycle_sequence"] == 1
        assert data["last_cycle"]["changed"] is True
        assert len(data["last_cycle"]["positions_opened"]) == 1
        assert data["open_positions"] == 1
        assert data["deployed_eur"] == 20.0
        assert data["risk_state"]["bucket_occupancy"]["safe"] == 1

    @pytest.mark.asyncio
    async def test_opportunities(self, async_client: AsyncClient, scheduler, btc_metrics):
        """Test the last scan is exposed with the engine's numbers."""
        empty = (await async_client.get("/api/opportunities")).json()
        assert empty["total"] == 0
        assert empty["scanned_at"] is None

        await scheduler.tick()

        data = (await async_client.get("/api/opportunities")).json()
        assert data["total"] == 1
        opportunity = data["opportunities"][0]
        assert opportunity["symbol"] == "BTC"
        assert opportunity["net_profit_bps"] == pytest.approx(44)
        assert opportunity["apr"] == pytest.approx(481.8)
        assert opportunity["risk_tier"] == "safe"


class TestPositionEndpoints:
    """Tests for position endpoints."""

    @pytest.mark.asyncio
    async def test_list_positions(self, async_client: AsyncClient, store):
        await store.create_position(make_position(symbol="BTC"))
        await store.create_position(make_position(symbol="ETH", status=PositionStatus.STOPPED))

        data = (await async_client.get("/api/positions")).json()
        assert data["total"] == 2

        data = (await async_client.get("/api/positions", params={"status": "open"})).json()
        assert [p["symbol"] for p in data["positions"]] == ["BTC"]
        assert data["positions"][0]["current_long_price"] is None

    @pytest.mark.asyncio
    async def test_unknown_status_filter(self, async_client: AsyncClient):
        response = await async_client.get("/api/positions", params={"status": "pending"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_position(self, async_client: AsyncClient, store):
        position = await store.create_position(make_position())

        response = await async_client.get(f"/api/positions/{position.id}")
        assert response.status_code == 200
        assert response.json()["hedge_id"] == "hedge-btc"

        assert (await async_client.get("/api/positions/missing")).status_code == 404


class TestControlEndpoints:
    """Tests for control endpoints."""

    @pytest.mark.asyncio
    async def test_set_mode_is_queued(self, async_client: AsyncClient, scheduler, store):
        """Test control commands are accepted and applied on the next cycle."""
        response = await async_client.post("/api/control/mode", json={"mode": "off"})
        assert response.status_code == 202
        data = response.json()
        assert data["accepted"] is True
        assert data["type"] == "set_mode"
        assert data["pending_commands"] == 1

        # Nothing changes until the scheduler runs
        assert (await store.get_risk_state()).mode.value == "paper"
        report = await scheduler.tick()
        assert report.skip_reason == "Mode is off"
        assert (await store.get_risk_state()).mode.value == "off"

    @pytest.mark.asyncio
    async def test_invalid_mode(self, async_client: AsyncClient):
        response = await async_client.post("/api/control/mode", json={"mode": "turbo"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_set_running(self, async_client: AsyncClient, scheduler):
        response = await async_client.post("/api/control/running", json={"running": False})
        assert response.status_code == 202
        assert (await scheduler.tick()).skip_reason == "Autopilot stopped"

    @pytest.mark.asyncio
    async def test_reset_kill_switch(self, async_client: AsyncClient, scheduler):
        response = await async_client.post("/api/control/kill-switch/reset")
        assert response.status_code == 202
        assert response.json()["type"] == "reset_kill_switch"

    @pytest.mark.asyncio
    async def test_stop_all_requires_confirmation(self, async_client: AsyncClient, scheduler):
        response = await async_client.post("/api/control/stop-all", json={"confirm": False})
        assert response.status_code == 400
        assert len(scheduler.commands) == 0

        response = await async_client.post("/api/control/stop-all", json={"confirm": True})
        assert response.status_code == 202

    @pytest.mark.asyncio
    async def test_close_position(self, async_client: AsyncClient, scheduler, store):
        """Test closing a position through the API."""
        position = await store.create_position(make_position())

        response = await async_client.post(
            f"/api/control/positions/{position.id}/close",
            json={"reason": "Operator exit"},
        )
        assert response.status_code == 202

        await scheduler.tick()
        closed = await store.get_position(position.id)
        assert closed.status == PositionStatus.CLOSED
        assert closed.exit_reason == "Operator exit"

        # A second close is refused once the position is terminal
        response = await async_client.post(f"/api/control/positions/{position.id}/close")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_close_missing_position(self, async_client: AsyncClient):
        response = await async_client.post("/api/control/positions/missing/close")
        assert response.status_code == 404
