# remoteaccess/server
#
# KEY MODULES:
# - **controller.py**: RemoteAccessServer, start/stop and host event dispatch
# - **api.py / routes.py**: FastAPI app, HTTP routes and the push channel endpoints
# - **auth.py**: cookie sessions and the pairing-code login
# - **hub.py / messages.py / playback.py**: push protocol, snapshots, debounce
# - **commands.py**: inbound playback commands
# - **connections.py**: connected peers, observable by the host
# - **discovery.py**: bounded mDNS scan for network shares
# - **logs.py**: log archive for download
#
