"""
HTTP Scheme Transport for HydroNet.

Implements the SchemeTransport protocol against the map backend API:

    POST   /api/map/data_scheme     {"id_scheme": 7}
    DELETE /api/map/delete_object   {"data": FeatureCollection}
    POST   /api/map/update_object   {"data": FeatureCollection}
    POST   /api/map/create_object   {"data": FeatureCollection}
"""

import logging
from typing import Any, Dict, Optional

import requests

from hydronet.errors import SyncError
from hydronet.storage.protocol import TransportResult, failed, ok

logger = logging.getLogger(__name__)

LOAD_PATH = "/api/map/data_scheme"
DELETE_PATH = "/api/map/delete_object"
UPDATE_PATH = "/api/map/update_object"
CREATE_PATH = "/api/map/create_object"


class HttpSchemeTransport:
    """Scheme backend reached over authenticated HTTP."""

    def __init__(self, base_url: str = "", auth_token: Optional[str] = None,
                 timeout: float = 15.0, session: Optional[requests.Session] = None):
        """
        Args:
            base_url: Backend origin, e.g. "https://maps.example.org"
            auth_token: Optional bearer token
            timeout: Per-request timeout in seconds
            session: Injected requests.Session (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        if auth_token:
            self.session.headers["Authorization"] = f"Bearer {auth_token}"

    @property
    def backend_type(self) -> str:
        return "http"

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def load_scheme(self, id_scheme: int) -> Dict[str, Any]:
        try:
            response = self.session.post(
                self._url(LOAD_PATH), json={"id_scheme": id_scheme}, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise SyncError(f"Failed to load scheme {id_scheme}: {e}", "load", status) from e
        except (requests.RequestException, ValueError) as e:
            raise SyncError(f"Failed to load scheme {id_scheme}: {e}", "load") from e

    def _send(self, method: str, path: str, payload: Dict[str, Any], operation: str) -> TransportResult:
        try:
            response = self.session.request(
                method, self._url(path), json=payload, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"{operation} request failed: {e}")
            return failed(f"{operation} request failed: {e}")
        if not response.ok:
            logger.error(f"{operation} rejected with HTTP {response.status_code}")
            return failed(f"{operation} rejected: HTTP {response.status_code}", response.status_code)
        return ok(f"{operation}: {len(payload.get('data', {}).get('features', []))} features")

    def delete_objects(self, payload: Dict[str, Any]) -> TransportResult:
        return self._send("DELETE", DELETE_PATH, payload, "delete")

    def update_objects(self, payload: Dict[str, Any]) -> TransportResult:
        return self._send("POST", UPDATE_PATH, payload, "update")

    def create_objects(self, payload: Dict[str, Any]) -> TransportResult:
        return self._send("POST", CREATE_PATH, payload, "create")
