"""Tests for the canonical read routes and the error envelope."""

import sqlite3

from app.config import get_settings


def _create(change_id, timestamp, content):
    return {
        "id": change_id,
        "type": "CREATE_JOURNAL",
        "payload": {"encryptedContent": content, "mood": "Peaceful", "intensity": 4},
        "timestamp": timestamp,
    }


def _mood(change_id, timestamp, mood="Sad"):
    return {
        "id": change_id,
        "type": "LOG_MOOD",
        "payload": {"mood": mood, "intensity": 7, "note": "rainy"},
        "timestamp": timestamp,
    }


class TestJournals:
    def test_content_is_returned_as_client_ciphertext(self, client, auth_headers):
        client.post(
            "/sync",
            json={"queue": [_create("j1", "2024-03-01T12:00:00Z", "client-ct")]},
            headers=auth_headers,
        )

        journals = client.get("/journals", headers=auth_headers).json()["data"]

        assert len(journals) == 1
        journal = journals[0]
        assert journal["encryptedContent"] == "client-ct"
        assert journal["mood"] == "Peaceful"
        assert journal["createdAt"].startswith("2024-03-01T12:00:00")

    def test_stored_content_is_wrapped(self, client, auth_headers):
        client.post(
            "/sync",
            json={"queue": [_create("j1", "2024-03-01T12:00:00Z", "client-ct")]},
            headers=auth_headers,
        )

        with sqlite3.connect(get_settings().database_path) as conn:
            (stored,) = conn.execute("SELECT cipher_content FROM journals").fetchone()

        assert stored != "client-ct"
        assert stored.count(":") == 2

    def test_tampered_content_is_generic_500(self, client, auth_headers):
        client.post(
            "/sync",
            json={"queue": [_create("j1", "2024-03-01T12:00:00Z", "client-ct")]},
            headers=auth_headers,
        )
        with sqlite3.connect(get_settings().database_path) as conn:
            conn.execute("UPDATE journals SET cipher_content = 'aa:bb:cc'")

        response = client.get("/journals", headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"status": "error", "message": "Something went wrong"}

    def test_storage_failure_is_generic_500(self, client, auth_headers):
        with sqlite3.connect(get_settings().database_path) as conn:
            conn.execute("DROP TABLE journals")

        response = client.get("/journals", headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"status": "error", "message": "Something went wrong"}

    def test_limit_out_of_range_is_400(self, client, auth_headers):
        response = client.get("/journals", params={"limit": 0}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["status"] == "fail"

    def test_requires_auth(self, client):
        assert client.get("/journals").status_code == 401


class TestMoods:
    def test_range_query(self, client, auth_headers):
        queue = [
            _mood("m1", "2024-03-01T08:00:00Z"),
            _mood("m2", "2024-03-02T08:00:00Z", mood="Content"),
            _mood("m3", "2024-03-05T08:00:00Z"),
        ]
        client.post("/sync", json={"queue": queue}, headers=auth_headers)

        data = client.get(
            "/moods",
            params={"start": "2024-03-01T00:00:00Z", "end": "2024-03-03T00:00:00Z"},
            headers=auth_headers,
        ).json()["data"]

        assert [m["mood"] for m in data["moods"]] == ["Sad", "Content"]
        assert data["moods"][0]["note"] == "rainy"

    def test_start_after_end_is_400(self, client, auth_headers):
        response = client.get(
            "/moods",
            params={"start": "2024-03-05T00:00:00Z", "end": "2024-03-01T00:00:00Z"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["status"] == "fail"

    def test_storage_failure_is_generic_500(self, client, auth_headers):
        with sqlite3.connect(get_settings().database_path) as conn:
            conn.execute("DROP TABLE moods")

        response = client.get("/moods", headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["status"] == "error"

    def test_default_window_excludes_old_moods(self, client, auth_headers):
        client.post("/sync", json={"queue": [_mood("m1", "2020-01-01T00:00:00Z")]}, headers=auth_headers)

        data = client.get("/moods", headers=auth_headers).json()["data"]

        assert data["moods"] == []
        assert data["start"] is not None


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json()["status"] == "ok"

    def test_health_reports_database(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "connected"}
