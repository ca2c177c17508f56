import pytest
import pytest_asyncio

from remoteaccess.host.events import (
    BrowserDescriptionChanged,
    LibraryChanged,
    LoginDialogChanged,
    MediaEvent,
    MediaEventKind,
    NowPlayingChanged,
    PlayerEvent,
    PlayerEventKind,
    PlayerVisibilityChanged,
    ResumeConfirmationChanged,
    VolumeChanged,
)
from remoteaccess.server.controller import RemoteAccessServer
from remoteaccess.server.hub import PushChannel
from remoteaccess.server.state import ServerStatus

from fakes import FakeCatalog, FakePlaybackEngine, FakeTransport, settle


@pytest.fixture
def engine():
    return FakePlaybackEngine()


@pytest_asyncio.fixture
async def rig(config, settings, engine):
    server = RemoteAccessServer(config, settings, engine, FakeCatalog())
    transport = FakeTransport()
    channel = PushChannel(transport, peer="phone")
    server.hub.add_channel(channel)
    yield server, channel, transport
    await server.hub.close_all()


async def dispatched(rig, *events):
    server, channel, transport = rig
    for event in events:
        await server.dispatch(event)
    await settle(channel)
    await server.publisher.close()
    return transport.frames()


@pytest.mark.asyncio
async def test_now_playing_changed(rig):
    frames = await dispatched(rig, NowPlayingChanged())
    assert [f["type"] for f in frames] == ["now-playing", "play-queue"]


@pytest.mark.asyncio
async def test_parsed_media_asks_for_library_refresh(rig):
    frames = await dispatched(rig, MediaEvent(MediaEventKind.PARSED_CHANGED))
    assert [f["type"] for f in frames] == ["library-refresh-needed", "now-playing", "play-queue"]


@pytest.mark.asyncio
async def test_other_media_event_only_refreshes_now_playing(rig):
    frames = await dispatched(rig, MediaEvent(MediaEventKind.META_CHANGED))
    assert [f["type"] for f in frames] == ["now-playing", "play-queue"]


@pytest.mark.asyncio
async def test_player_error_reports_last_location(rig, engine):
    engine.current_location = "smb://nas/movie.mkv"
    await rig[0].dispatch(PlayerEvent(PlayerEventKind.PLAYING))
    engine.current_location = ""

    frames = await dispatched(rig, PlayerEvent(PlayerEventKind.ENCOUNTERED_ERROR))

    assert frames == [{"type": "error", "text": "Invalid location: smb://nas/movie.mkv"}]


@pytest.mark.asyncio
async def test_time_changed_is_debounced(rig, engine):
    engine.is_playing = True
    frames = await dispatched(rig, *[PlayerEvent(PlayerEventKind.TIME_CHANGED) for _ in range(10)])

    assert [f["type"] for f in frames].count("now-playing") == 1


@pytest.mark.asyncio
async def test_visibility_reports_playing(rig, engine):
    engine.is_playing = True
    frames = await dispatched(rig, PlayerVisibilityChanged(playing=False))
    assert frames == [{"type": "player-status", "playing": True}]


@pytest.mark.asyncio
async def test_simple_notifications(rig):
    frames = await dispatched(
        rig,
        LoginDialogChanged(shown=True),
        ResumeConfirmationChanged(media_title="Movie"),
        ResumeConfirmationChanged(media_title=None),
        LibraryChanged(),
        BrowserDescriptionChanged(path="/music", description="3 folders"),
        VolumeChanged(volume=70),
    )

    assert frames == [
        {"type": "login-needed", "dialogOpened": True},
        {"type": "resume-confirmation", "mediaTitle": "Movie", "consumed": False},
        {"type": "resume-confirmation", "mediaTitle": None, "consumed": True},
        {"type": "library-refresh-needed", "refreshNeeded": True},
        {"type": "browser-description", "path": "/music", "description": "3 folders"},
        {"type": "volume", "volume": 70},
    ]


@pytest.mark.asyncio
async def test_unknown_event_is_rejected(rig):
    with pytest.raises(TypeError):
        await rig[0].dispatch(object())


@pytest.mark.asyncio
async def test_post_event_before_start_is_dropped(rig):
    server = rig[0]

    assert server.status.value == ServerStatus.NOT_INIT
    assert not server.post_event(VolumeChanged(volume=1))


@pytest.mark.asyncio
async def test_stop_before_start_is_a_no_op(rig, settings):
    server = rig[0]

    await server.stop()

    assert server.status.value == ServerStatus.NOT_INIT
    assert server.get_addresses() == []
    assert server.get_secure_url("example") is None
