"""HTTP access to upstream providers."""

import logging
from typing import Any, Dict, Optional

import requests

from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "busmap/0.1 (+https://github.com/busmap/busmap)"


class UpstreamClient:
    """Thin wrapper around a ``requests.Session``.

    Every transport failure or non-success status is raised as
    ``UpstreamUnavailable``; nothing is retried here.
    """

    def __init__(
        self,
        timeout: Optional[float] = 30,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = user_agent
        self.session = session

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Request to {url} failed: {e}")
            raise UpstreamUnavailable(f"Request to {url} failed: {e}", url=url) from e
        if not response.ok:
            raise UpstreamUnavailable(
                f"{url} responded with {response.status_code}",
                url=url,
                status=response.status_code,
            )
        return response

    def get_bytes(self, url: str, params: Optional[Dict[str, Any]] = None,
                  headers: Optional[Dict[str, str]] = None) -> bytes:
        return self.request("GET", url, params=params, headers=headers).content

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None) -> Any:
        response = self.request("GET", url, params=params, headers=headers)
        return self._decode_json(response, url)

    def post_form_json(self, url: str, data: Dict[str, str],
                       headers: Optional[Dict[str, str]] = None) -> Any:
        response = self.request("POST", url, data=data, headers=headers)
        return self._decode_json(response, url)

    @staticmethod
    def _decode_json(response: requests.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"{url} returned invalid JSON: {e}", url=url) from e

    def close(self) -> None:
        self.session.close()
