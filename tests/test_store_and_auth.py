"""Tests for client settings stores and API token checks."""

from __future__ import annotations

import threading

from sqlalchemy import select

from tests.conftest import CUSTOMER_MAPPING, SPREADSHEET_ID
from tour_sync.client.store import JsonFileSettingsStore, MemorySettingsStore, mapping_key
from tour_sync.models import ApiToken
from tour_sync.utils import auth
from tour_sync.utils.auth import generate_token, hash_token, seed_api_token, verify_token


class TestSettingsStores:
    def test_mapping_drops_blank_targets(self):
        store = MemorySettingsStore({mapping_key("tours"): {"id": "ID", "tour_note": ""}})
        assert store.load_mapping("tours") == {"id": "ID"}

    def test_non_dict_mapping_ignored(self):
        store = MemorySettingsStore({mapping_key("tours"): "garbage"})
        assert store.load_mapping("tours") == {}

    def test_json_file_persists(self, tmp_path):
        path = tmp_path / "client" / "settings.json"
        JsonFileSettingsStore(path).save_mapping("customers", {"name": "이름"})

        reloaded = JsonFileSettingsStore(path)
        assert reloaded.load_mapping("customers") == {"name": "이름"}
        reloaded.delete(mapping_key("customers"))
        assert JsonFileSettingsStore(path).load_mapping("customers") == {}

    def test_unreadable_file_starts_empty(self, tmp_path, caplog):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonFileSettingsStore(path)
        assert store.get("anything") is None
        assert "Ignoring unreadable settings file" in caplog.text


class TestApiTokens:
    def test_hash_and_verify(self):
        token = generate_token()
        token_hash = hash_token(token)
        assert verify_token(token, token_hash)
        assert not verify_token(token + "x", token_hash)

    async def test_seed_replaces_changed_token(self, session_factory):
        await seed_api_token(session_factory, "first-token")
        await seed_api_token(session_factory, "second-token")

        async with session_factory() as session:
            tokens = (await session.execute(select(ApiToken))).scalars().all()
        assert len(tokens) == 1
        assert verify_token("second-token", tokens[0].token_hash)

    async def test_token_check_runs_in_worker_thread(self, client, monkeypatch):
        loop_thread = threading.get_ident()
        checked_in: list[int] = []
        real_verify = auth.verify_token

        def recording_verify(token, token_hash):
            checked_in.append(threading.get_ident())
            return real_verify(token, token_hash)

        monkeypatch.setattr(auth, "verify_token", recording_verify)
        body = {
            "spreadsheetId": SPREADSHEET_ID,
            "sheetName": "S_Customers",
            "targetTable": "customers",
            "columnMapping": CUSTOMER_MAPPING,
        }
        resp = await client.post(
            "/api/sync/optimized", json=body, headers={"Authorization": "Bearer wrong-token"}
        )

        assert resp.status_code == 401
        assert checked_in
        assert loop_thread not in checked_in
