"""Everything a request handler needs, attached to the app as `app.state.context`."""

from dataclasses import dataclass
from typing import Callable, Optional

from remoteaccess.base.config import RemoteAccessConfig
from remoteaccess.base.settings import SettingsStore
from remoteaccess.host.interfaces import MediaCatalog, PlaybackEngine
from remoteaccess.server.auth import AuthGate
from remoteaccess.server.commands import CommandDispatcher
from remoteaccess.server.connections import ConnectionRegistry
from remoteaccess.server.discovery import NetworkDiscovery
from remoteaccess.server.hub import PushHub
from remoteaccess.server.logs import LogGatherer
from remoteaccess.server.playback import NowPlayingPublisher


@dataclass
class ServerContext:
    config: RemoteAccessConfig
    settings: SettingsStore
    engine: PlaybackEngine
    catalog: MediaCatalog
    hub: PushHub
    registry: ConnectionRegistry
    auth: AuthGate
    commands: CommandDispatcher
    publisher: NowPlayingPublisher
    discovery: NetworkDiscovery
    log_gatherer: LogGatherer

    # Shows the pairing code on the host (dialog, notification, log line)
    login_prompt: Callable[[str], None]

    # Port of the TLS listener once bound, None otherwise
    secure_port: Callable[[], Optional[int]]
