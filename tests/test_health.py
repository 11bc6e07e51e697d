# tests/test_health.py
from typing import Any

import pytest


@pytest.mark.asyncio
async def test_health_responds(client: Any) -> None:
    """Verify that the health endpoint reports the service as up."""
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
