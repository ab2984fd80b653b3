"""
Transport Factory for HydroNet.

Creates the scheme transport selected by Settings.transport.
"""

import logging
from typing import Optional, TYPE_CHECKING

from hydronet.config import Settings
from hydronet.storage.file_backend import FileSchemeTransport
from hydronet.storage.http_backend import HttpSchemeTransport

if TYPE_CHECKING:
    from hydronet.storage.protocol import SchemeTransport

logger = logging.getLogger(__name__)

# Default transport type
DEFAULT_TRANSPORT = "http"


def create_transport(settings: Settings, force_transport: Optional[str] = None) -> "SchemeTransport":
    """
    Create a scheme transport.

    Args:
        settings: Resolved application settings
        force_transport: Override the configured transport type

    Returns:
        SchemeTransport instance (HttpSchemeTransport or FileSchemeTransport)
    """
    transport_type = (force_transport or settings.transport or DEFAULT_TRANSPORT).lower()

    if transport_type == "file":
        logger.info(f"Using file transport in {settings.data_dir}")
        return FileSchemeTransport(settings.data_dir, id_scheme=settings.scheme_id)

    if transport_type != "http":
        logger.warning(f"Unknown transport {transport_type!r}, falling back to http")
    logger.info(f"Using http transport at {settings.api_base_url or '(same origin)'}")
    return HttpSchemeTransport(
        base_url=settings.api_base_url,
        auth_token=settings.auth_token,
        timeout=settings.request_timeout,
    )
