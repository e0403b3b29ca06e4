from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the ingestion and view endpoints."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def submit_reading(self, name: str, temperature: float, timestamp: datetime) -> Dict[str, Any]:
        payload = {"name": name, "timestamp": timestamp.isoformat(), "temperature": temperature}
        try:
            response = self._client.post("/sensors", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def get_view(self, name: str) -> Dict[str, Any]:
        try:
            response = self._client.get(f"/views/{name}")
            if response.status_code == 404:
                raise typer.BadParameter(f"View {name} was not found.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def create_sink(self, name: str, view: str) -> Dict[str, Any]:
        try:
            response = self._client.post("/sinks", json={"name": name, "view": view})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def list_sinks(self) -> List[Dict[str, Any]]:
        try:
            response = self._client.get("/sinks")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def read_topic(self, topic: str, offset: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        try:
            response = self._client.get(
                f"/topics/{topic}/messages", params={"offset": offset, "limit": limit}
            )
            if response.status_code == 404:
                raise typer.BadParameter(f"Topic {topic} was not found.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except ValueError:
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
