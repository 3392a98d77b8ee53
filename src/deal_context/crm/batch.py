"""Chunked batch reads against ``/crm/v3/objects/{kind}/batch/read``."""

from __future__ import annotations

import asyncio

import structlog

from src.deal_context.crm.client import HubSpotClient

logger = structlog.get_logger(__name__)

MAX_BATCH_SIZE = 50


class BatchReader:
    """Reads records of one object type by ID list.

    ID lists longer than the upstream ceiling are split into chunks that
    are requested concurrently and concatenated. Result order follows chunk
    order but carries no other guarantee; IDs the CRM does not know are
    simply absent. Any failing chunk fails the whole read.
    """

    def __init__(self, client: HubSpotClient, max_batch_size: int = MAX_BATCH_SIZE) -> None:
        self._client = client
        self._max_batch_size = max_batch_size

    async def read(self, kind: str, ids: list[str], properties: list[str]) -> list[dict]:
        if not ids:
            return []

        chunks = [
            ids[start:start + self._max_batch_size]
            for start in range(0, len(ids), self._max_batch_size)
        ]
        responses = await asyncio.gather(
            *(self._read_chunk(kind, chunk, properties) for chunk in chunks)
        )

        records = [record for chunk_records in responses for record in chunk_records]
        logger.debug(
            "crm.batch_read",
            kind=kind,
            requested=len(ids),
            returned=len(records),
            chunks=len(chunks),
        )
        return records

    async def _read_chunk(self, kind: str, ids: list[str], properties: list[str]) -> list[dict]:
        data = await self._client.post(
            f"/crm/v3/objects/{kind}/batch/read",
            json={"inputs": [{"id": object_id} for object_id in ids], "properties": properties},
        )
        return data.get("results") or []
