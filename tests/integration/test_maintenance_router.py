"""Integration tests for maintenance endpoints."""

import os
import time
from pathlib import Path


class TestSweepEndpoint:
    async def test_requires_api_key(self, client):
        resp = await client.post("/maintenance/sweep", headers={"X-CertAnchor-Api-Key": "wrong"})
        assert resp.status_code == 403

    async def test_sweep_removes_old_temp_documents(self, client, admin_headers, tmp_path):
        temp = Path(tmp_path / "tmp")
        temp.mkdir(parents=True, exist_ok=True)
        old = temp / "Certificate_OLD.pdf"
        old.write_bytes(b"%PDF")
        past = time.time() - 7 * 24 * 3600
        os.utime(old, (past, past))

        resp = await client.post("/maintenance/sweep", headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["temp_documents"] == ["Certificate_OLD.pdf"]
        assert data["provisional_certificates"] == []
        assert not old.exists()
