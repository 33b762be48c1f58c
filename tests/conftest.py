import pytest

from liveserver.registry import Connection, ConnectionRegistry, Outbox


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def connect(registry):
    """Register a fresh unclassified connection."""
    async def _connect(port: int = 50000, outbox_size: int = 64) -> Connection:
        conn = Connection(peer_address="127.0.0.1", peer_port=port, outbox=Outbox(outbox_size))
        await registry.register(conn)
        return conn
    return _connect


def drain(conn: Connection) -> list:
    """Everything currently queued for ``conn``."""
    messages = []
    while True:
        envelope = conn.outbox.get_nowait()
        if envelope is None:
            return messages
        messages.append(envelope)
