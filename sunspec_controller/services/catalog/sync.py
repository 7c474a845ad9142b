"""
Model Catalog Sync

Downloads official SunSpec model definitions and writes them as a model
index file that load_model_index_file() accepts.

Models are fetched concurrently over a single HTTP client. A model that
fails to download is reported and skipped; the rest still make it into
the index.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Iterable

import httpx

from sunspec_controller.common import constants
from sunspec_controller.common.exceptions import ConfigError
from sunspec_controller.common.logging_setup import get_service_logger
from sunspec_controller.common.models import load_model_index

logger = get_service_logger("catalog.sync")


def model_key(content: dict[str, Any], requested_id: int) -> str:
    """Index key of a downloaded model document."""
    group = content.get("group") or {}
    return str(content.get("id") or group.get("id") or requested_id)


class ModelCatalogSync:
    """Fetches SunSpec model JSON files and builds a model index"""

    def __init__(
        self,
        base_url: str = constants.SUNSPEC_MODELS_URL,
        timeout: float = constants.MODEL_DOWNLOAD_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ModelCatalogSync":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def fetch_model(self, model_id: int) -> dict[str, Any]:
        """
        Download one model definition.

        Raises:
            httpx.HTTPError: request failed or non-2xx status
            ValueError: body is not JSON
        """
        client = await self._get_client()
        response = await client.get(f"{self.base_url}/model_{model_id}.json")
        response.raise_for_status()
        content = response.json()
        if not isinstance(content, dict):
            raise ValueError(f"model_{model_id}.json is not a JSON object")
        return content

    async def _fetch_or_none(self, model_id: int) -> dict[str, Any] | None:
        try:
            return await self.fetch_model(model_id)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to download model {model_id}: {e}")
            return None

    async def fetch_index(
        self, model_ids: Iterable[int] = constants.OFFICIAL_MODEL_IDS
    ) -> tuple[dict[str, Any], list[int]]:
        """
        Download several models.

        Returns:
            (index document keyed by model ID, IDs that failed)
        """
        model_ids = list(model_ids)
        contents = await asyncio.gather(*(self._fetch_or_none(m) for m in model_ids))

        index: dict[str, Any] = {}
        failed: list[int] = []
        for model_id, content in zip(model_ids, contents):
            if content is None:
                failed.append(model_id)
            else:
                index[model_key(content, model_id)] = content
        return index, failed

    async def update_index_file(
        self,
        path: str | Path,
        model_ids: Iterable[int] = constants.OFFICIAL_MODEL_IDS,
    ) -> dict[str, Any]:
        """
        Download models and write them to a model index file.

        The document is parsed before it is written, so a file that lands
        on disk always loads.

        Raises:
            ConfigError: nothing could be downloaded, or a definition is malformed
        """
        index, failed = await self.fetch_index(model_ids)
        if not index:
            raise ConfigError("No SunSpec models could be downloaded")

        loaded = load_model_index(index)

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(index, f, indent=2)
        os.replace(tmp_path, path)

        logger.info(
            f"Model index written: {len(loaded)} models, {len(failed)} failed",
            extra={"path": str(path), "failed": failed},
        )
        return {
            "path": str(path),
            "models": loaded.model_ids,
            "failed": failed,
        }
