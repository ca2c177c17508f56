"""
Command line entry point.

    remote-access serve            run the server with an idle host
    remote-access identity         print the certificate fingerprint
    remote-access reset-identity   wipe keystore and secrets
"""

import argparse
import asyncio
import logging
import sys

from remoteaccess.base.config import get_config, setup_logging
from remoteaccess.base.settings import JsonSettings
from remoteaccess.errors import RemoteAccessError
from remoteaccess.host.idle import EmptyCatalog, IdlePlaybackEngine
from remoteaccess.identity.store import IdentityStore
from remoteaccess.server.controller import RemoteAccessServer

logger = logging.getLogger("remoteaccess.cli")


async def _serve() -> None:
    config = get_config()
    server = RemoteAccessServer(
        config,
        JsonSettings(config.storage.settings_path),
        IdlePlaybackEngine(),
        EmptyCatalog(),
    )
    await server.start()
    for address in server.get_addresses():
        logger.info(f"[CLI] Listening on {address}")
    try:
        await server.wait_closed()
    finally:
        await server.stop()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="remote-access", description="Remote access server")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the server")
    sub.add_parser("identity", help="Show the TLS certificate fingerprint")
    sub.add_parser("reset-identity", help="Delete the TLS identity and all sessions")
    args = parser.parse_args(argv)

    config = get_config()
    setup_logging(config)

    try:
        if args.command == "serve":
            asyncio.run(_serve())
        else:
            store = IdentityStore.from_config(config, JsonSettings(config.storage.settings_path))
            if args.command == "identity":
                identity = store.ensure_identity()
                print(f"SHA-256 fingerprint: {identity.fingerprint}")
                print(f"Valid until: {identity.certificate.not_valid_after_utc:%Y-%m-%d}")
            else:
                store.reset()
                print("Identity reset")
    except RemoteAccessError as e:
        logger.error(f"[CLI] {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("[CLI] Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
