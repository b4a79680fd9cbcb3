from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from config import get_settings


logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
RETRYABLE_STATUS = {408, 429}


class RemoteStoreError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class RemoteStore(Protocol):
    def create(self, payload: dict[str, Any], idempotency_key: str) -> dict[str, Any]: ...

    def update(
        self, resource_id: str, payload: dict[str, Any], idempotency_key: str
    ) -> dict[str, Any]: ...

    def delete(self, resource_id: str, idempotency_key: Optional[str] = None) -> None: ...

    def get(self, resource_id: str) -> Optional[dict[str, Any]]: ...

    def list(self, **filters: Any) -> list[dict[str, Any]]: ...


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)


class HttpRemoteStore:
    """Client for the transactions API.

    Any ``httpx.Client`` works, including FastAPI's ``TestClient``. Writes
    carry the record's idempotency key in the ``Idempotency-Key`` header.
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if client is None:
            settings = get_settings()
            client = httpx.Client(
                base_url=base_url or settings.remote_url,
                timeout=timeout or settings.remote_timeout_secs,
            )
        self.client = client

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if idempotency_key:
            headers[IDEMPOTENCY_HEADER] = idempotency_key
        try:
            return self.client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(method: str, path: str, resp: httpx.Response) -> None:
        if resp.is_success:
            return
        status = resp.status_code
        raise RemoteStoreError(
            f"{method} {path} returned {status}: {_error_detail(resp)}",
            status_code=status,
            retryable=status >= 500 or status in RETRYABLE_STATUS,
        )

    def create(self, payload: dict[str, Any], idempotency_key: str) -> dict[str, Any]:
        path = "/api/transactions"
        resp = self._request("POST", path, json=payload, idempotency_key=idempotency_key)
        if resp.status_code == 409 and payload.get("id"):
            # Row already exists under the client id, e.g. after ledger expiry.
            logger.info(f"remote_create_exists: id={payload['id']}")
            existing = self.get(str(payload["id"]))
            if existing is not None:
                return existing
        self._raise_for_status("POST", path, resp)
        return resp.json()["data"]

    def update(
        self, resource_id: str, payload: dict[str, Any], idempotency_key: str
    ) -> dict[str, Any]:
        path = f"/api/transactions/{resource_id}"
        resp = self._request("PATCH", path, json=payload, idempotency_key=idempotency_key)
        self._raise_for_status("PATCH", path, resp)
        return resp.json()["data"]

    def delete(self, resource_id: str, idempotency_key: Optional[str] = None) -> None:
        path = f"/api/transactions/{resource_id}"
        resp = self._request("DELETE", path, idempotency_key=idempotency_key)
        if resp.status_code == 404:
            return
        self._raise_for_status("DELETE", path, resp)

    def get(self, resource_id: str) -> Optional[dict[str, Any]]:
        path = f"/api/transactions/{resource_id}"
        resp = self._request("GET", path)
        if resp.status_code == 404:
            return None
        self._raise_for_status("GET", path, resp)
        return resp.json()["data"]

    def list(self, **filters: Any) -> list[dict[str, Any]]:
        path = "/api/transactions"
        params = {k: v for k, v in filters.items() if v is not None}
        resp = self._request("GET", path, params=params)
        self._raise_for_status("GET", path, resp)
        return resp.json()["data"]

    def ping(self) -> bool:
        try:
            resp = self.client.get("/api/health")
        except httpx.HTTPError:
            return False
        return resp.is_success

    def close(self) -> None:
        self.client.close()
