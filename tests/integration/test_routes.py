"""
HTTP routes and push channel endpoints, driven through Starlette's TestClient
against a context built from in-memory fakes.
"""

import zipfile
from io import BytesIO
from typing import List

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from remoteaccess.base.settings import PLAYBACK_CONTROL
from remoteaccess.server.api import create_app
from remoteaccess.server.auth import AuthGate, DirectorySessionStorage, SessionCodec
from remoteaccess.server.commands import CommandDispatcher
from remoteaccess.server.connections import ConnectionRegistry
from remoteaccess.server.context import ServerContext
from remoteaccess.server.discovery import DiscoveredShare, NetworkDiscovery
from remoteaccess.server.hub import PushHub
from remoteaccess.server.logs import LogGatherer
from remoteaccess.server.playback import NowPlayingPublisher

from fakes import FakeCatalog, FakePlaybackEngine, FakeScanner, make_media


class Clock:
    def __init__(self):
        self.now = 1_700_000_000.0

    def __call__(self):
        return self.now


class Rig:
    def __init__(self, config, settings):
        self.config = config
        self.settings = settings
        self.clock = Clock()
        self.codes: List[str] = []
        self.engine = FakePlaybackEngine()
        self.catalog = FakeCatalog({"tracks": [make_media(9, "Found")]})
        self.scanner = FakeScanner([DiscoveredShare("NAS", "smb://10.0.0.9")])
        hub = PushHub()
        self.context = ServerContext(
            config=config,
            settings=settings,
            engine=self.engine,
            catalog=self.catalog,
            hub=hub,
            registry=ConnectionRegistry(),
            auth=AuthGate(
                SessionCodec("e" * 32, "s" * 32),
                DirectorySessionStorage(config.storage.sessions_path),
                config.security,
                clock=self.clock,
            ),
            commands=CommandDispatcher(self.engine, settings, hub),
            publisher=NowPlayingPublisher(hub, self.engine),
            discovery=NetworkDiscovery(hub, lambda: self.scanner, timeout=1.0),
            log_gatherer=LogGatherer(config.storage.logs_path, config.storage.downloads_path),
            login_prompt=self.codes.append,
            secure_port=lambda: 8443,
        )
        self.app = create_app(self.context)

    def login(self, client: TestClient) -> None:
        assert client.post("/code").status_code == 200
        response = client.post("/verify-code", json={"code": self.codes[-1]})
        assert response.status_code == 200


@pytest.fixture
def rig(config, settings):
    return Rig(config, settings)


@pytest.fixture
def client(rig):
    with TestClient(rig.app) as test_client:
        yield test_client


@pytest.fixture
def authed(rig, client):
    rig.login(client)
    return client


# --- Auth gate ---

@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/api/now-playing"),
        ("get", "/api/play-queue"),
        ("get", "/api/search?query=x"),
        ("get", "/artwork"),
        ("post", "/logs"),
        ("get", "/download?file=x.zip"),
        ("post", "/network/discover"),
        ("post", "/logout"),
    ],
)
def test_protected_routes_require_a_session(client, method, path):
    response = getattr(client, method)(path)

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_001"


def test_garbage_cookie_is_rejected(client):
    client.cookies.set("user_session", "forged")
    response = client.get("/api/play-queue")

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_002"


def test_code_flow_grants_a_session(rig, client):
    response = client.post("/code")
    assert response.json() == {"status": "code-sent", "expires_in": rig.config.security.login_code_ttl}

    response = client.post("/verify-code", json={"code": rig.codes[-1]})

    assert response.status_code == 200
    set_cookie = response.headers["set-cookie"]
    assert "user_session=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "Max-Age=604800" in set_cookie
    assert client.get("/api/play-queue").status_code == 200


def test_wrong_code_is_refused(rig, client):
    client.post("/code")
    wrong = "0000" if rig.codes[-1] != "0000" else "1111"

    response = client.post("/verify-code", json={"code": wrong})

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_003"
    assert "set-cookie" not in response.headers


def test_code_requests_are_refused_after_repeated_failures(rig, client):
    client.post("/code")
    wrong = "0000" if rig.codes[-1] != "0000" else "1111"
    for _ in range(5):
        assert client.post("/verify-code", json={"code": wrong}).status_code == 401

    response = client.post("/code")

    assert response.status_code == 429
    assert response.json()["code"] == "AUTH_004"
    assert len(rig.codes) == 1

    rig.clock.now += rig.config.security.login_lockout
    assert client.post("/code").status_code == 200


def test_session_expires(rig, authed):
    assert authed.get("/api/play-queue").status_code == 200

    rig.clock.now += rig.config.security.session_max_age

    response = authed.get("/api/play-queue")
    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_002"


def test_logout_revokes_the_session(rig, authed):
    cookie = authed.cookies.get("user_session")

    assert authed.post("/logout").status_code == 200

    authed.cookies.set("user_session", cookie)
    assert authed.get("/api/play-queue").status_code == 401


# --- Player & library ---

def test_now_playing(rig, authed):
    rig.engine.is_playing = True

    body = authed.get("/api/now-playing").json()

    assert body["type"] == "now-playing"
    assert body["title"] == "First"
    assert body["playing"] is True


def test_now_playing_without_media(rig, authed):
    rig.engine.queue = []
    rig.engine.current_index = -1

    response = authed.get("/api/now-playing")

    assert response.status_code == 404
    assert response.json()["code"] == "SERVER_004"


def test_play_queue(authed):
    body = authed.get("/api/play-queue").json()

    assert [m["title"] for m in body["medias"]] == ["First", "Second"]
    assert body["medias"][0]["playing"] is True


def test_search_groups_results(rig, authed):
    body = authed.get("/api/search", params={"query": "fou"}).json()

    assert [t["title"] for t in body["tracks"]] == ["Found"]
    assert body["albums"] == []
    assert rig.catalog.queries == ["fou"]


def test_browse(authed):
    body = authed.get("/api/browse/tracks").json()
    assert [m["id"] for m in body["content"]] == [9]


def test_artwork(rig, authed):
    assert authed.get("/artwork").status_code == 404

    rig.engine.art = b"\xff\xd8\xff\xe0jpeg"
    response = authed.get("/artwork")

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert response.headers["cache-control"] == "max-age=86400, private"


def test_secure_url(authed):
    assert authed.get("/api/secure-url").json() == {"url": "https://testserver:8443"}


# --- Files ---

def test_upload_lands_in_uploads_dir(rig, authed):
    response = authed.post("/upload.json", files={"media": ("song.mp3", b"ID3 data", "audio/mpeg")})

    assert response.json() == {"success": True, "name": "song.mp3"}
    assert (rig.config.storage.uploads_path / "song.mp3").read_bytes() == b"ID3 data"


def test_upload_cannot_escape_uploads_dir(rig, authed):
    response = authed.post("/upload.json", files={"media": ("../../evil.sh", b"#!/bin/sh", "text/plain")})

    assert response.json()["name"] == "evil.sh"
    assert (rig.config.storage.uploads_path / "evil.sh").exists()
    assert not (rig.config.storage.base_dir / "evil.sh").exists()


def test_logs_then_download(rig, authed):
    (rig.config.storage.logs_path / "remoteaccess.log").write_text("line\n")

    body = authed.post("/logs").json()
    response = authed.get(body["url"])

    assert response.status_code == 200
    with zipfile.ZipFile(BytesIO(response.content)) as zf:
        assert zf.namelist() == ["remoteaccess.log"]


@pytest.mark.parametrize("name", ["../settings.json", "missing.zip"])
def test_download_outside_downloads_dir(rig, authed, name):
    rig.config.storage.settings_path.write_text("{}")

    response = authed.get("/download", params={"file": name})

    assert response.status_code == 404


def test_download_rejects_dot_names(authed):
    response = authed.get("/download", params={"file": ".."})
    assert response.status_code == 400


# --- Discovery ---

def test_network_discover_is_accepted(rig, authed):
    response = authed.post("/network/discover")

    assert response.status_code == 202
    assert response.json()["started"] is True


# --- Pipeline ---

def test_root_redirects_to_web_client(rig, client):
    (rig.config.storage.static_path / "index.html").write_text("<html></html>")

    response = client.get("/", follow_redirects=False)
    assert response.status_code == 301
    assert response.headers["location"] == "/index.html"

    page = client.get("/index.html")
    assert page.status_code == 200
    assert page.headers["cache-control"] == "max-age=86400, private"


def test_json_is_never_cached(authed):
    assert authed.get("/api/play-queue").headers["cache-control"] == "no-store, private"


def test_cors_preflight(client):
    response = client.options(
        "/api/play-queue",
        headers={"Origin": "http://phone.local", "Access-Control-Request-Method": "GET"},
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_peers_are_registered(rig, client):
    client.get("/")
    client.get("/index.html")

    assert [c.ip for c in rig.context.registry.connections.value] == ["testclient"]


# --- Push channel ---

def test_push_channel_refuses_missing_session(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws") as ws:
            ws.receive_text()

    assert exc_info.value.code == 4001


def test_push_channel_roundtrip(rig, authed):
    rig.engine.volume = 33

    with authed.websocket_connect("/ws") as ws:
        assert ws.receive_json() == {"type": "auth", "status": "authorized", "initialMessage": ""}
        ws.send_text("play")
        ws.send_text('{"message": "get-volume"}')
        assert ws.receive_json() == {"type": "volume", "volume": 33}

    assert ("play",) in rig.engine.calls
    assert len(rig.context.hub) == 0


def test_echo_alias_negotiates_player_subprotocol(authed):
    with authed.websocket_connect("/echo", subprotocols=["player"]) as ws:
        assert ws.accepted_subprotocol == "player"
        assert ws.receive_json()["type"] == "auth"


def test_forbidden_playback_control(rig, authed):
    rig.settings.put(PLAYBACK_CONTROL, False)

    with authed.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("next")
        assert ws.receive_json() == {"type": "playback-control-forbidden", "forbidden": True}

    assert rig.engine.calls == []


def test_login_request_is_pushed_to_live_clients(rig, authed):
    with authed.websocket_connect("/ws") as ws:
        ws.receive_json()
        authed.post("/code")
        assert ws.receive_json() == {"type": "login-needed", "dialogOpened": True}


def test_discovery_results_are_pushed(rig, authed):
    with authed.websocket_connect("/ws") as ws:
        ws.receive_json()
        authed.post("/network/discover")
        first = ws.receive_json()

    assert first["type"] == "network-shares"
    assert first["shares"][0]["path"] == "smb://10.0.0.9"
