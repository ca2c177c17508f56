from enum import Enum


class ServerStatus(Enum):
    NOT_INIT = "not_init"
    CONNECTING = "connecting"
    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"
