"""GitHub hosting integration for dot"""

from .cli import GhCliHostingClient
from .client import GitHubClient, HostingClient, get_hosting_client

__all__ = [
    "GitHubClient",
    "GhCliHostingClient",
    "HostingClient",
    "get_hosting_client",
]
