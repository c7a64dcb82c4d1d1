import inspect

from fastapi.testclient import TestClient

import server


client = TestClient(server.app)


def test_health_includes_versions():
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data.get("status") == "ok"
    assert "yt_dlp" in data
    assert "ffmpeg" in data


def test_health_reports_missing_ffmpeg(make_client):
    resp = make_client().get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["ffmpeg"] == "missing"


def test_health_reports_ffmpeg_version_line(make_tool, make_client):
    ffmpeg = make_tool("ffmpeg", 'echo "ffmpeg version 6.1.1 Copyright (c)"\necho "built with gcc"')
    resp = make_client(ffmpeg=ffmpeg).get("/api/health")
    assert resp.json()["ffmpeg"] == "ffmpeg version 6.1.1 Copyright (c)"


def test_malformed_body_is_a_400_with_message(make_client):
    resp = make_client().post(
        "/api/SoundBox/get-formats",
        content="not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid request"


def test_cors_exposes_content_disposition(make_client):
    resp = make_client().get("/api/health", headers={"Origin": "http://localhost:4200"})
    assert resp.headers["access-control-allow-origin"] == "http://localhost:4200"
    assert "Content-Disposition" in resp.headers["access-control-expose-headers"]


def test_static_frontend_is_served_when_configured(tmp_path, make_client):
    static = tmp_path / "wwwroot"
    static.mkdir()
    (static / "index.html").write_text("<html>soundbox</html>")
    client = make_client(static_dir=str(static))
    resp = client.get("/")
    assert resp.status_code == 200
    assert "soundbox" in resp.text
    # API routes still win over the static mount
    assert client.get("/api/health").status_code == 200


def test_apps_do_not_share_format_caches():
    first = server.create_app()
    second = server.create_app()
    assert first.state.formats_cache is not second.state.formats_cache


def test_static_frontend_falls_back_to_index_for_client_routes(tmp_path, make_client):
    static = tmp_path / "wwwroot"
    static.mkdir()
    (static / "index.html").write_text("<html>soundbox</html>")
    (static / "main.js").write_text("console.log('app')")
    client = make_client(static_dir=str(static))

    resp = client.get("/player/abc")
    assert resp.status_code == 200
    assert "soundbox" in resp.text
    assert client.get("/main.js").text == "console.log('app')"


def test_healthcheck_runs_in_threadpool():
    # ffmpeg -version is a blocking call; FastAPI only offloads plain functions
    assert not inspect.iscoroutinefunction(server.healthcheck)
