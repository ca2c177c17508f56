"""
Remote access server for a media player host.

A LAN HTTP(S)/WebSocket endpoint that lets a browser pair with the player,
browse its library and remote-control playback while receiving live updates.
"""

__version__ = "1.0.0"
