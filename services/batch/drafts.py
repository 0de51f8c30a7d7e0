"""Draft persistence for extracted invoices awaiting review."""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from services.batch.extraction import ExtractionOutcome

DRAFT_KEY_PREFIX = "invoice_draft:"


class DraftRecord(BaseModel):
    """Extracted invoice saved for review."""

    extraction_id: str
    owner_id: str
    source_name: str
    status: str = "draft"
    extraction: ExtractionOutcome


class DraftSink(ABC):
    """Abstract destination for extracted invoice drafts."""

    @abstractmethod
    async def save_draft(self, owner_id: str, outcome: ExtractionOutcome, source_name: str) -> str:
        """Persist a draft and return its extraction id."""
        pass


class InMemoryDraftSink(DraftSink):
    def __init__(self) -> None:
        self.drafts: dict[str, DraftRecord] = {}
        self._lock = asyncio.Lock()

    async def save_draft(self, owner_id: str, outcome: ExtractionOutcome, source_name: str) -> str:
        record = DraftRecord(
            extraction_id=str(uuid.uuid4()),
            owner_id=owner_id,
            source_name=source_name,
            extraction=outcome,
        )
        async with self._lock:
            self.drafts[record.extraction_id] = record
        return record.extraction_id


class RedisDraftSink(DraftSink):
    """Stores drafts as JSON under ``invoice_draft:{id}`` with a TTL."""

    def __init__(self, redis: Any, ttl_seconds: int) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def save_draft(self, owner_id: str, outcome: ExtractionOutcome, source_name: str) -> str:
        record = DraftRecord(
            extraction_id=str(uuid.uuid4()),
            owner_id=owner_id,
            source_name=source_name,
            extraction=outcome,
        )
        await self._redis.set(
            f"{DRAFT_KEY_PREFIX}{record.extraction_id}", record.model_dump_json(), ex=self._ttl
        )
        return record.extraction_id
