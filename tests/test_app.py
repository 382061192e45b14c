"""
API tests for the Flask shell using Flask's test client
"""
import base64
import io
from unittest.mock import patch

import pytest

import codec
from app import SessionStore, create_app
from conftest import FakeClient, image_bytes
from editor import Outcome
from errors import UpstreamError
from suggestions import READ_FAILURE, SUGGESTIONS


@pytest.fixture
def app(fake_client):
    app = create_app(edit_client=fake_client)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def upload(client, data, filename="photo.jpg", content_type="image/jpeg", via="picker"):
    return client.post("/api/upload", data={
        "image": (io.BytesIO(data), filename, content_type),
        "via": via,
    }, content_type="multipart/form-data")


def test_index_renders_page_with_suggestions(client):
    response = client.get("/")

    assert response.status_code == 200
    body = response.get_data(as_text=True)
    assert "NanoEdit" in body
    assert SUGGESTIONS[0] in body
    assert "/*__SUGGESTIONS__*/" not in body


def test_initial_state(client):
    data = client.get("/api/state").get_json()

    assert data["state"] == "IDLE"
    assert data["preview"] is None
    assert data["can_generate"] is False


class TestUpload:

    def test_picker_upload_sets_preview(self, client, jpeg_bytes):
        response = upload(client, jpeg_bytes)

        assert response.status_code == 200
        data = response.get_json()
        assert data["accepted"] is True
        assert data["filename"] == "photo.jpg"
        assert data["preview"] == codec.to_data_url("image/jpeg", codec.encode(jpeg_bytes))

    def test_dropped_non_image_is_ignored(self, client):
        response = upload(client, b"hello", "notes.txt", "text/plain", via="drop")

        assert response.status_code == 200
        data = response.get_json()
        assert data["accepted"] is False
        assert data["preview"] is None

    def test_missing_file(self, client):
        response = client.post("/api/upload", data={"via": "picker"}, content_type="multipart/form-data")

        assert response.status_code == 400

    def test_read_failure(self, client):
        with patch("app.source_from_upload", side_effect=OSError("device error")):
            response = upload(client, b"\xff\xd8")

        assert response.status_code == 500
        assert response.get_json()["error"] == READ_FAILURE
        assert response.get_json()["state"] == "IDLE"


class TestPrompt:

    def test_set_prompt(self, client):
        data = client.post("/api/prompt", json={"prompt": "Make it snow"}).get_json()

        assert data["prompt"] == "Make it snow"

    def test_suggestion_overwrites_prompt(self, client):
        client.post("/api/prompt", json={"prompt": "Make it snow"})

        data = client.post("/api/prompt", json={"suggestion": 1}).get_json()

        assert data["prompt"] == SUGGESTIONS[1]

    @pytest.mark.parametrize("bad", [99, -1, "abc"])
    def test_unknown_suggestion(self, client, bad):
        response = client.post("/api/prompt", json={"suggestion": bad})

        assert response.status_code == 400


class TestGenerate:

    def test_without_image_is_rejected(self, client, fake_client):
        response = client.post("/api/generate", json={"prompt": "x"})

        assert response.status_code == 409
        assert response.get_json()["state"] == "IDLE"
        assert fake_client.calls == []

    def test_with_empty_prompt_is_rejected(self, client, fake_client, jpeg_bytes):
        upload(client, jpeg_bytes)

        response = client.post("/api/generate", json={"prompt": ""})

        assert response.status_code == 409
        assert response.get_json()["state"] == "IDLE"
        assert fake_client.calls == []

    def test_success(self, client, fake_client, jpeg_bytes):
        upload(client, jpeg_bytes)

        response = client.post("/api/generate", json={"prompt": "Add a retro cyberpunk filter"})

        assert response.status_code == 200
        data = response.get_json()
        assert data["state"] == "SUCCESS"
        assert data["result"] == "data:image/png;base64,AAA="
        assert data["applied"] is True
        assert "elapsed" in data
        assert fake_client.calls[0][1:] == ("image/jpeg", "Add a retro cyberpunk filter")

    def test_upstream_error(self, client, fake_client, jpeg_bytes):
        fake_client.error = UpstreamError("quota exceeded")
        upload(client, jpeg_bytes)

        response = client.post("/api/generate", json={"prompt": "x"})

        assert response.status_code == 502
        data = response.get_json()
        assert data["state"] == "ERROR"
        assert "quota exceeded" in data["error"]

    def test_new_upload_after_error_resets(self, client, fake_client, jpeg_bytes, png_bytes):
        fake_client.error = UpstreamError("quota exceeded")
        upload(client, jpeg_bytes)
        client.post("/api/generate", json={"prompt": "x"})

        data = upload(client, png_bytes, "other.png", "image/png").get_json()

        assert data["state"] == "IDLE"
        assert data["error"] is None
        assert data["result"] is None


class TestDownload:

    def test_nothing_to_download(self, client):
        assert client.get("/api/download").status_code == 404

    @pytest.mark.parametrize("fmt,mime", [("PNG", "image/png"), ("JPEG", "image/jpeg")])
    def test_download_is_png_attachment(self, client, fake_client, jpeg_bytes, fmt, mime):
        raw = image_bytes(fmt)
        fake_client.result = codec.to_data_url(mime, base64.b64encode(raw).decode("utf-8"))
        upload(client, jpeg_bytes)
        client.post("/api/generate", json={"prompt": "x"})

        response = client.get("/api/download")

        assert response.status_code == 200
        assert response.mimetype == "image/png"
        disposition = response.headers["Content-Disposition"]
        assert "attachment" in disposition
        assert "nanoedit-" in disposition and ".png" in disposition
        assert response.data.startswith(codec.PNG_SIGNATURE)


def test_reset(client, jpeg_bytes):
    upload(client, jpeg_bytes)
    client.post("/api/prompt", json={"prompt": "x"})

    data = client.post("/api/reset").get_json()

    assert data["state"] == "IDLE"
    assert data["preview"] is None
    assert data["prompt"] == ""


def test_health_reports_configuration(client):
    data = client.get("/api/health").get_json()

    assert data["configured"] is True
    assert data["model"] == "fake-image-model"


def test_health_without_key():
    unconfigured = FakeClient()
    unconfigured.configured = False
    client = create_app(edit_client=unconfigured).test_client()

    assert client.get("/api/health").get_json()["configured"] is False


def test_each_browser_gets_its_own_session(app, jpeg_bytes):
    first, second = app.test_client(), app.test_client()

    upload(first, jpeg_bytes)

    assert first.get("/api/state").get_json()["preview"] is not None
    assert second.get("/api/state").get_json()["preview"] is None
    assert len(app.extensions["nanoedit"]) == 1


class TestSessionLifetime:

    def test_reading_state_creates_no_session(self, app):
        for _ in range(50):
            assert app.test_client().get("/api/state").get_json()["state"] == "IDLE"

        assert len(app.extensions["nanoedit"]) == 0

    def test_reset_and_download_create_no_session(self, app):
        client = app.test_client()

        assert client.post("/api/reset").get_json()["state"] == "IDLE"
        assert client.get("/api/download").status_code == 404
        assert len(app.extensions["nanoedit"]) == 0

    def test_store_is_capped(self, fake_client, jpeg_bytes):
        app = create_app(edit_client=fake_client, sessions=SessionStore(fake_client, max_sessions=3))
        clients = [app.test_client() for _ in range(5)]

        for client in clients:
            upload(client, jpeg_bytes)

        assert len(app.extensions["nanoedit"]) == 3
        assert clients[0].get("/api/state").get_json()["preview"] is None
        assert clients[-1].get("/api/state").get_json()["preview"] is not None

    def test_store_evicts_least_recently_used(self, fake_client):
        store = SessionStore(fake_client, max_sessions=2)
        first = store.get("a")
        store.get("b")
        assert store.peek("a") is first

        store.get("c")

        assert store.peek("b") is None
        assert store.peek("a") is first
        assert store.peek("c") is not None
        assert len(store) == 2


def test_undecodable_result_download(client, fake_client, jpeg_bytes):
    fake_client.result = "data:image/webp;base64,AAA="
    upload(client, jpeg_bytes)
    client.post("/api/generate", json={"prompt": "x"})

    response = client.get("/api/download")

    assert response.status_code == 502
    assert response.get_json()["error"]


def test_stale_generate_is_not_reported_as_completed(client, jpeg_bytes):
    upload(client, jpeg_bytes)

    with patch("editor.EditorSession.generate", return_value=Outcome.STALE):
        response = client.post("/api/generate", json={"prompt": "x"})

    assert response.status_code == 200
    data = response.get_json()
    assert data["applied"] is False
    assert "elapsed" not in data
