"""Local TCP reachability probe."""

import socket

from deskfleet.constants import DEFAULT_PROBE_TIMEOUT


class PortProber:
    def __init__(self, host: str = "127.0.0.1", timeout: float = DEFAULT_PROBE_TIMEOUT, socket_module=socket):
        self.host = host
        self.timeout = timeout
        self.socket = socket_module

    def is_open(self, port: int) -> bool:
        try:
            connection = self.socket.create_connection((self.host, port), timeout=self.timeout)
        except OSError:
            return False
        connection.close()
        return True
