from __future__ import annotations

from typing import Optional

import httpx

from models.records import Reading


class DeliveryError(RuntimeError):
    """A reading did not reach the ingestion endpoint."""

    def __init__(self, message: str, retryable: bool, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class HttpReadingSender:
    """Posts readings to the ingestion endpoint over one shared connection pool."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def __call__(self, reading: Reading) -> None:
        payload = {
            "name": reading.name,
            "timestamp": reading.timestamp.isoformat(),
            "temperature": reading.temperature,
        }
        try:
            response = self._client.post("/sensors", json=payload)
        except httpx.TransportError as exc:
            raise DeliveryError(f"{type(exc).__name__}: {exc}", retryable=True) from exc

        if response.status_code >= 500:
            raise DeliveryError(
                f"Server error {response.status_code}", retryable=True, status_code=response.status_code
            )
        if response.status_code >= 400:
            raise DeliveryError(
                f"Rejected with {response.status_code}: {response.text.strip()}",
                retryable=False,
                status_code=response.status_code,
            )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
