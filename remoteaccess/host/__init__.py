# remoteaccess/host
#
# Boundary with the host media player.
# - **interfaces.py**: PlaybackEngine / MediaCatalog protocols and media value types
# - **events.py**: closed set of events the host posts into the server
# - **idle.py**: do-nothing host used when the server runs standalone
#
