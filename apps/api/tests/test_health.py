from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from main import app


@pytest.mark.asyncio
async def test_liveness_and_readiness():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        live = await client.get("/health/live")
        assert live.json() == {"alive": True}

        ready = await client.get("/health/ready")
        assert ready.status_code == 200
        assert ready.json() == {"ready": True}

        with patch("routers.health.settings.OPENAI_API_KEY", ""):
            not_ready = await client.get("/health/ready")
        assert not_ready.status_code == 503
        assert not_ready.json()["missing"] == ["OPENAI_API_KEY"]
