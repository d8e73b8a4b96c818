"""Storage served over plain HTTP.

The server exposes objects at ``<base>/<name>``. ``GET <base>/*?prefix=<p>``
returns matching names, one per line. Mutating requests carry the
environment's storage auth key as the ``authkey`` query parameter.
"""
from __future__ import annotations

import io
from typing import BinaryIO

import httpx

from ..logging import get_logger
from ..utils.retry import RetryPolicy
from .base import NotFoundError, StorageError, read_stream

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0


class HTTPStorage:
    """Storage client for an HTTP blob server."""

    def __init__(
        self,
        base_url: str,
        *,
        auth_key: str | None = None,
        policy: RetryPolicy | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """Bind the client to *base_url*; *client* lets tests inject a transport."""
        self.base_url = base_url.rstrip("/")
        self.auth_key = auth_key
        self._policy = policy or RetryPolicy()
        self._client = client or httpx.Client(timeout=DEFAULT_TIMEOUT)

    def default_retry_policy(self) -> RetryPolicy:
        """Return the retry policy applied to reads."""
        return self._policy

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        self._client.close()

    # Reader ---------------------------------------------------------
    def get(self, name: str) -> BinaryIO:
        response = self._request("GET", self.url(name), name=name)
        return io.BytesIO(response.content)

    def list(self, prefix: str) -> list[str]:
        response = self._request("GET", f"{self.base_url}/*", name=prefix, params={"prefix": prefix})
        names = [line.strip() for line in response.text.splitlines() if line.strip()]
        return sorted(name for name in names if name.startswith(prefix))

    def url(self, name: str) -> str:
        return f"{self.base_url}/{name}"

    # Writer ---------------------------------------------------------
    def put(self, name: str, stream: BinaryIO, size: int) -> None:
        data = read_stream(stream, size)
        self._request(
            "PUT",
            self.url(name),
            name=name,
            params=self._auth_params(),
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )

    def remove(self, name: str) -> None:
        try:
            self._request("DELETE", self.url(name), name=name, params=self._auth_params())
        except NotFoundError:
            return

    def remove_all(self) -> None:
        for name in self.list(""):
            self.remove(name)

    # Internal helpers -----------------------------------------------
    def _auth_params(self) -> dict[str, str]:
        return {"authkey": self.auth_key} if self.auth_key else {}

    def _request(
        self,
        method: str,
        url: str,
        *,
        name: str,
        params: dict[str, str] | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = self._client.request(
                method,
                url,
                params=params,
                content=content,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"{method} {url} failed: {exc}") from exc
        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(f'file "{name}" not found')
        if response.is_error:
            logger.debug("%s %s returned %s", method, url, response.status_code)
            raise StorageError(
                f"{method} {url} failed: {response.status_code} {response.reason_phrase}"
            )
        return response


__all__ = ["HTTPStorage"]
