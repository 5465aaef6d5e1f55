"""
Real-time replication

Components:
- Replication bridge with echo suppression and a connection-state machine
- Realtime backends (in-memory, Firebase REST streaming)
- Pairing token codec for bootstrapping new devices
"""

from .remote import RemoteBackend, InMemoryRemoteBackend, create_backend
from .replication_bridge import ReplicationBridge, PushResult, remote_path
from .pairing import PairingCodec, PairingResult

__all__ = [
    'RemoteBackend',
    'InMemoryRemoteBackend',
    'create_backend',
    'ReplicationBridge',
    'PushResult',
    'remote_path',
    'PairingCodec',
    'PairingResult'
]
