"""Source connectors for the directory, endpoint protection and RMM platforms."""

from .base_connector import BaseAsyncConnector
from .directory_connector import DirectoryConnector, create_directory_connector
from .endpoint_protection_connector import (
    EndpointProtectionConnector,
    create_endpoint_protection_connector
)
from .rmm_connector import RmmConnector, create_rmm_connector

__all__ = [
    'BaseAsyncConnector',
    'DirectoryConnector',
    'create_directory_connector',
    'EndpointProtectionConnector',
    'create_endpoint_protection_connector',
    'RmmConnector',
    'create_rmm_connector'
]
