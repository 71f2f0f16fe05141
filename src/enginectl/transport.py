"""
HTTP transport against the engine control-plane endpoint.

Thin request/response primitive built on the docker SDK's APIClient, which
is a requests.Session already configured for the engine's base URL. The
transport never interprets status codes: callers receive (status, body)
and decide, because the engine returns structured error bodies that have
to reach the user verbatim.

No retries, no authentication, and no timeout unless one is configured.
"""

import json
import logging
from typing import Any, Dict, Iterator, Optional, Tuple

import docker
import requests
from docker.constants import DEFAULT_DOCKER_API_VERSION

from .errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://127.0.0.1:2375"
DEFAULT_CHUNK_SIZE = 4096


def _encode_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    if not params:
        return None
    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        elif isinstance(value, (list, dict)):
            value = json.dumps(value)
        encoded[key] = str(value)
    return encoded


class Transport:
    """Request primitive bound to one engine endpoint."""

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT, api_version: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.endpoint = endpoint
        self.timeout = timeout
        # An explicit version keeps APIClient from probing the engine here.
        self._session = docker.APIClient(
            base_url=endpoint,
            version=api_version or DEFAULT_DOCKER_API_VERSION,
            timeout=timeout,
        )
        self.base_url = self._session.base_url

    def _prepare(self, body: Any) -> Tuple[Optional[bytes], Dict[str, str]]:
        if body is None:
            return None, {}
        if isinstance(body, (bytes, bytearray)):
            return bytes(body), {'Content-Type': 'application/octet-stream'}
        if isinstance(body, str):
            return body.encode('utf-8'), {'Content-Type': 'text/plain; charset=utf-8'}
        return json.dumps(body).encode('utf-8'), {'Content-Type': 'application/json'}

    def _send(self, method: str, path: str, body: Any, params: Optional[Dict[str, Any]],
              headers: Optional[Dict[str, str]], stream: bool) -> requests.Response:
        data, req_headers = self._prepare(body)
        if headers:
            req_headers.update(headers)
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url} params={params}")
        try:
            return self._session.request(
                method, url,
                params=_encode_params(params),
                data=data,
                headers=req_headers,
                timeout=self.timeout,
                stream=stream,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Engine unreachable at {self.endpoint}: {e}")
            raise TransportError(f"Engine unreachable at {self.endpoint}: {e}", cause=e) from e

    def request(self, method: str, path: str, body: Any = None,
                params: Optional[Dict[str, Any]] = None,
                headers: Optional[Dict[str, str]] = None) -> Tuple[int, bytes]:
        """
        Perform one request and return (status code, body bytes).

        Non-2xx statuses are returned, not raised.

        Raises:
            TransportError: the engine could not be reached
        """
        response = self._send(method, path, body, params, headers, stream=False)
        try:
            return response.status_code, response.content
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Connection lost reading {path}: {e}", cause=e) from e
        finally:
            response.close()

    def stream(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
               chunk_size: int = DEFAULT_CHUNK_SIZE) -> Tuple[int, Iterator[bytes]]:
        """
        Perform one request and return (status code, chunk iterator).

        The response is closed once the iterator is exhausted or closed.
        """
        response = self._send(method, path, None, params, None, stream=True)

        def chunks() -> Iterator[bytes]:
            try:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        yield chunk
            except requests.exceptions.RequestException as e:
                raise TransportError(f"Connection lost reading {path}: {e}", cause=e) from e
            finally:
                response.close()

        return response.status_code, chunks()

    def close(self) -> None:
        self._session.close()
