"""Client for the local language-model server (Ollama)."""

from __future__ import annotations

import logging
from typing import Any, List

import httpx

from ragchat.errors import ModelServerError

logger = logging.getLogger(__name__)


class OllamaClient:
    """Lists the models available on an Ollama server."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch_tags(self) -> dict[str, Any]:
        """Return the raw ``/api/tags`` payload."""
        url = f"{self.base_url}/api/tags"
        logger.debug("Fetching models from %s", url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            raise ModelServerError(
                f"Model server returned {exc.response.status_code}",
                {"url": url},
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ModelServerError(f"Model server unreachable: {exc}", {"url": url}) from exc

    async def list_models(self) -> List[str]:
        payload = await self.fetch_tags()
        return [model["name"] for model in payload.get("models") or [] if model.get("name")]
