"""
The Supervisor package.
Manages the lifecycle of the tunnel client process.

This package contains the central ConnectionSupervisor class and its helper
modules, which together handle starting, stopping and supervising the tunnel
client, probing privileges and watching host connectivity.
"""
from .state import ConnectionState, RetryState
from .supervisor import ConnectionSupervisor
from .network import NetworkEvent, NetworkWatcher
from .permissions import PermissionProbe
from .process_utils import TunnelProcessController

__all__ = [
    'ConnectionSupervisor', 'ConnectionState', 'RetryState', 'NetworkEvent',
    'NetworkWatcher', 'PermissionProbe', 'TunnelProcessController',
]
