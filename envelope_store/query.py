"""
Paged iteration over query results.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, AsyncIterator, List

from .errors import ServiceError, translate_service_error
from .types import Query, QueryPage, Record

if TYPE_CHECKING:
    from .client import Client


class QueryResult:
    """
    Async iterable over every record matching a query.

    Pages are requested lazily; each page resumes after the ``last_index``
    of the previous one. Records are decrypted one by one unless ``raw`` is
    set or the query excludes data.

    Example:
        async for record in client.query(type="contact"):
            print(record.text("name"))
    """

    def __init__(self, client: Client, query: Query, raw: bool = False) -> None:
        self._client = client
        self._query = query
        self._raw = raw

    @property
    def query(self) -> Query:
        return self._query

    async def pages(self) -> AsyncIterator[QueryPage]:
        """Yield non-empty pages of ciphertext records."""
        query = self._query
        while True:
            try:
                page = await self._client.service.list_records(query)
            except ServiceError as e:
                raise translate_service_error(e, "record", f"Error while querying records: {e}")
            if not page.records:
                return
            yield page
            query = query.next_page(page.last_index)

    async def __aiter__(self) -> AsyncIterator[Record]:
        decrypt = self._query.include_data and not self._raw
        async for page in self.pages():
            for record in page.records:
                if decrypt:
                    yield await self._client.decrypt_record(record)
                else:
                    yield record

    async def all(self) -> List[Record]:
        """Collect every matching record."""
        return [record async for record in self]
