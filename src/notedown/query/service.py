"""Document query service: scan, parse in parallel, filter, collect."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from ..models import Document, FileRecord, ListDocumentsResponse
from ..parser import parse_document
from ..uris import uri_to_path
from ..workspace import Workspace
from .filters import collect, filter_documents

log = logging.getLogger(__name__)

# Files parsed concurrently by one query
DEFAULT_PARSE_CONCURRENCY = 8


def _load(record: FileRecord) -> Document | None:
    path = uri_to_path(record.uri)
    try:
        document, error = parse_document(path, record.relative_path)
    except OSError as e:
        log.warning("Failed to read %s: %s", path, e)
        return None
    if error:
        log.warning("Failed to parse %s: %s", record.relative_path, error)
    return document


class DocumentService:
    """Answers ``ListDocuments`` for one workspace."""

    def __init__(self, workspace: Workspace, concurrency: int = DEFAULT_PARSE_CONCURRENCY) -> None:
        self.workspace = workspace
        self.concurrency = max(1, concurrency)

    async def discover(self) -> list[FileRecord]:
        """Rescan the workspace and return the file snapshot."""
        await asyncio.to_thread(self.workspace.scan_all)
        return self.workspace.list()

    async def parse_documents(
        self, files: Sequence[FileRecord], ordered: bool = False
    ) -> AsyncIterator[Document]:
        """Parse ``files`` concurrently.

        With ``ordered`` the documents come out in the order of ``files``;
        otherwise in completion order. Unreadable files are skipped.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def load(record: FileRecord) -> Document | None:
            async with semaphore:
                return await asyncio.to_thread(_load, record)

        tasks = [asyncio.create_task(load(record)) for record in files]
        try:
            pending = tasks if ordered else asyncio.as_completed(tasks)
            for next_document in pending:
                document = await next_document
                if document is not None:
                    yield document
        finally:
            for task in tasks:
                task.cancel()

    async def stream_documents(self, filter: Any = None, ordered: bool = False) -> AsyncIterator[Document]:
        """Yield matching documents as soon as each is parsed and accepted.

        Raises:
            FilterError: Once, if the filter is malformed; the stream ends with it.
        """
        files = await self.discover()
        async for document in filter_documents(self.parse_documents(files, ordered), filter):
            yield document

    async def list_documents(self, filter: Any = None, ordered: bool = False) -> ListDocumentsResponse:
        documents, error = await collect(self.stream_documents(filter, ordered))
        if error is not None:
            log.warning("Document query failed: %s", error)
            return ListDocumentsResponse(documents=[], error=str(error))
        return ListDocumentsResponse(documents=documents)
