import logging
from typing import Any, Dict, Optional

import requests

import config
from .catalog import ComponentCatalog
from .errors import FlowDiffError, FlowNotFoundError

logger = logging.getLogger(__name__)


class RemoteFlowClient:
    """
    Thin client for a remote flow service.

    Flows are read with GET and written back with PATCH; the component catalog
    comes from a single endpoint, flat or grouped by category.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.base_url = (base_url or config.REMOTE_API_URL).rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        api_key = api_key or config.REMOTE_API_KEY
        if api_key:
            self.session.headers["x-api-key"] = api_key

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            resp = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise FlowDiffError(f"Remote flow service unreachable: {e}") from e
        return resp

    def get_flow(self, flow_id: str) -> Dict[str, Any]:
        resp = self._request("GET", f"/api/v1/flows/{flow_id}")
        if resp.status_code == 404:
            raise FlowNotFoundError(flow_id)
        self._raise_for_status(resp, f"fetch flow {flow_id}")
        return resp.json()

    def update_flow(self, flow_id: str, flow: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._request("PATCH", f"/api/v1/flows/{flow_id}", json=flow)
        if resp.status_code == 404:
            raise FlowNotFoundError(flow_id)
        self._raise_for_status(resp, f"update flow {flow_id}")
        logger.info(f"Updated remote flow {flow_id}")
        return resp.json()

    def get_components(self) -> ComponentCatalog:
        resp = self._request("GET", "/api/v1/all")
        self._raise_for_status(resp, "fetch components")
        catalog = ComponentCatalog.from_mapping(resp.json())
        logger.info(f"Fetched {len(catalog)} component schemas from {self.base_url}")
        return catalog

    @staticmethod
    def _raise_for_status(resp: requests.Response, action: str):
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise FlowDiffError(f"Failed to {action}: {resp.status_code} {resp.text}") from e
