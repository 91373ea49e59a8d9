"""Catalog of known reference endpoints"""

from dataclasses import dataclass
from typing import List, Optional

from .config import ProtocolVariant
from .utils import ellipsize

MAX_SPONSOR_LENGTH = 20
MAX_NAME_LENGTH = 20

# catalog servers tried in turn when none is chosen
DEFAULT_SERVER_COUNT = 3

LOCAL_ECHO_PORT = 7007
LOCAL_HTTP_PORT = 8080


@dataclass(frozen=True)
class Server:
    """A reference endpoint with its metadata."""

    id: int
    sponsor: str
    name: str
    endpoint: str
    protocol: ProtocolVariant

    def __str__(self) -> str:
        return (
            f"Server {self.id} - {ellipsize(self.sponsor, MAX_SPONSOR_LENGTH)} "
            f"({ellipsize(self.name, MAX_NAME_LENGTH)}) - {self.protocol.value}"
        )


BUILTIN_SERVERS = (
    Server(1, "Cloudflare", "speed.cloudflare.com", "https://speed.cloudflare.com", ProtocolVariant.CLOUDFLARE),
    Server(2, "Local", "swifi --serve (echo)", f"127.0.0.1:{LOCAL_ECHO_PORT}", ProtocolVariant.ECHO),
    Server(3, "Local", "swifi --serve (http)", f"http://127.0.0.1:{LOCAL_HTTP_PORT}", ProtocolVariant.CLOUDFLARE),
)


class ServerList:
    """A collection of available reference endpoints. The first one is the default."""

    def __init__(self, servers: List[Server]):
        self.servers = servers

    @classmethod
    def builtin(cls) -> "ServerList":
        return cls(list(BUILTIN_SERVERS))

    def format_table(self) -> str:
        """Format the list of servers as a human-readable table."""
        lines = [
            "Available Servers:",
            f"{'ID':<10} {'Sponsor':<20} {'Name':<30} {'Protocol':<12} {'Endpoint'}",
            "-" * 100,
        ]
        for server in self.servers:
            lines.append(
                f"{server.id:<10} {server.sponsor:<20} {server.name:<30} "
                f"{server.protocol.value:<12} {server.endpoint}"
            )
        return "\n".join(lines) + "\n"

    def select(self, server_id: Optional[str] = None) -> Server:
        """
        Pick a server by ID, or the default server when no ID is given.

        Raises ValueError for a non-numeric ID and LookupError for an unknown one.
        """
        if not self.servers:
            raise LookupError("No servers available for testing")
        if server_id is None:
            return self.servers[0]
        try:
            wanted = int(server_id)
        except ValueError:
            raise ValueError("Server ID must be a valid number") from None
        for server in self.servers:
            if server.id == wanted:
                return server
        raise LookupError(f'Server with ID="{wanted}" not found in available servers.')

    def candidates(self, server_id: Optional[str] = None) -> List[Server]:
        """The chosen server, or the first DEFAULT_SERVER_COUNT servers when none is chosen."""
        if server_id is not None:
            return [self.select(server_id)]
        if not self.servers:
            raise LookupError("No servers available for testing")
        return self.servers[:DEFAULT_SERVER_COUNT]
