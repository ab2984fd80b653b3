"""
Scheme transport abstraction for HydroNet.

Supports multiple transports:
- HttpSchemeTransport: the map backend API (default)
- FileSchemeTransport: local JSON files for offline editing
"""

from hydronet.storage.protocol import SchemeTransport
from hydronet.storage.http_backend import HttpSchemeTransport
from hydronet.storage.file_backend import FileSchemeTransport
from hydronet.storage.factory import create_transport

__all__ = [
    'SchemeTransport',
    'HttpSchemeTransport',
    'FileSchemeTransport',
    'create_transport',
]
