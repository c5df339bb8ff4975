"""
Author and Book services.

Each service depends only on the other's public contract (``AuthorDirectory``
/ ``BookDirectory``); ``build_services`` constructs both and binds them to
each other.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

import structlog

from api.database import MongoStore, serialize, to_object_id
from api.exceptions import BadRequestError, ConflictError, NotFoundError, StoreCastError

logger = structlog.get_logger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10


@dataclass
class Page:
    """One page of records plus pagination metadata."""

    items: List[Dict[str, Any]]
    page: int
    limit: int
    total_items: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_items / self.limit)

    @property
    def meta(self) -> Dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
            "totalItems": self.total_items,
        }


class AuthorDirectory(Protocol):
    async def get_by_id(self, author_id: str) -> Dict[str, Any]:
        ...


class BookDirectory(Protocol):
    async def find_by_author_id(self, author_id: str) -> List[Dict[str, Any]]:
        ...


def _pagination(page: int, limit: int) -> Tuple[int, int]:
    """Return (skip, limit) for a 1-based page."""
    if page < 1:
        raise BadRequestError("page must be a positive integer")
    if limit < 1:
        raise BadRequestError("limit must be a positive integer")
    return (page - 1) * limit, limit


def _search_filter(search: Optional[str], *fields: str) -> Dict[str, Any]:
    if not search:
        return {}
    pattern = re.escape(search)
    return {"$or": [{field: {"$regex": pattern, "$options": "i"}} for field in fields]}


class AuthorService:
    """CRUD over Authors with a delete-time referential guard."""

    def __init__(self, store: MongoStore, books: Optional[BookDirectory] = None):
        self.store = store
        self.books = books

    def bind(self, books: BookDirectory) -> None:
        self.books = books

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        doc = await self.store.authors.create(fields)
        logger.info("Author created", author_id=str(doc["_id"]))
        return serialize(doc)

    async def list(
        self,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
        search: Optional[str] = None,
    ) -> Page:
        skip, limit = _pagination(page, limit)
        filter_query = _search_filter(search, "firstName", "lastName")

        total = await self.store.authors.count_documents(filter_query)
        docs = await self.store.authors.find(filter_query, skip=skip, limit=limit)
        return Page(items=[serialize(doc) for doc in docs], page=page, limit=limit, total_items=total)

    async def get_by_id(self, author_id: str) -> Dict[str, Any]:
        doc = await self.store.authors.find_by_id(author_id)
        if not doc:
            raise NotFoundError("Author not found")
        return serialize(doc)

    async def update(self, author_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        doc = await self.store.authors.find_by_id_and_update(author_id, fields)
        if not doc:
            raise NotFoundError("Author not found")
        return serialize(doc)

    async def delete(self, author_id: str) -> None:
        if await self.books.find_by_author_id(author_id):
            logger.warning("Refusing to delete author with books", author_id=author_id)
            raise ConflictError("Cannot delete author with associated books")

        deleted = await self.store.authors.find_by_id_and_delete(author_id)
        if not deleted:
            raise NotFoundError("Author not found")

        # A book may have been attached between the check and the delete.
        if await self.books.find_by_author_id(author_id):
            logger.warning("Book attached during author delete, restoring author", author_id=author_id)
            await self.store.authors.restore(deleted)
            raise ConflictError("Cannot delete author with associated books")
        logger.info("Author deleted", author_id=author_id)


class BookService:
    """CRUD over Books with an author existence guard and author expansion."""

    def __init__(self, store: MongoStore, authors: Optional[AuthorDirectory] = None):
        self.store = store
        self.authors = authors

    def bind(self, authors: AuthorDirectory) -> None:
        self.authors = authors

    async def _expand(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        docs = await self.store.books.populate(docs, "author", self.store.authors)
        return [serialize(doc) for doc in docs]

    async def _expand_one(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return (await self._expand([doc]))[0]

    async def _validate_author(self, author_id: str) -> None:
        try:
            await self.authors.get_by_id(author_id)
        except (NotFoundError, StoreCastError):
            logger.warning("Rejected unknown author reference", author_id=author_id)
            raise BadRequestError("Invalid authorId: Author does not exist")

    async def _author_exists(self, author_id: str) -> bool:
        try:
            await self.authors.get_by_id(author_id)
        except NotFoundError:
            return False
        return True

    @staticmethod
    def _to_document_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
        doc = {key: value for key, value in fields.items() if key != "authorId"}
        if "authorId" in fields:
            doc["author"] = fields["authorId"]
        return doc

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        author_id = fields.get("authorId")
        await self._validate_author(author_id)

        doc = await self.store.books.create(self._to_document_fields(fields))
        book_id = str(doc["_id"])

        # The author may have been deleted between the check and the insert.
        if not await self._author_exists(author_id):
            logger.warning("Author vanished during book create, rolling back", book_id=book_id)
            await self.store.books.find_by_id_and_delete(book_id)
            raise BadRequestError("Invalid authorId: Author does not exist")

        logger.info("Book created", book_id=book_id, author_id=author_id)
        return await self._expand_one(doc)

    async def list(
        self,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
        search: Optional[str] = None,
        author_id: Optional[str] = None,
    ) -> Page:
        skip, limit = _pagination(page, limit)
        filter_query = _search_filter(search, "title", "isbn")
        if author_id:
            filter_query["author"] = to_object_id(author_id, "author")

        total = await self.store.books.count_documents(filter_query)
        docs = await self.store.books.find(filter_query, skip=skip, limit=limit)
        return Page(items=await self._expand(docs), page=page, limit=limit, total_items=total)

    async def get_by_id(self, book_id: str) -> Dict[str, Any]:
        doc = await self.store.books.find_by_id(book_id)
        if not doc:
            raise NotFoundError("Book not found")
        return await self._expand_one(doc)

    async def update(self, book_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        author_id = fields.get("authorId")
        if author_id is None:
            doc = await self.store.books.find_by_id_and_update(book_id, self._to_document_fields(fields))
            if not doc:
                raise NotFoundError("Book not found")
            return await self._expand_one(doc)

        await self._validate_author(author_id)
        changes = self._to_document_fields(fields)
        previous = await self.store.books.find_by_id_and_update(book_id, changes, new=False)
        if not previous:
            raise NotFoundError("Book not found")

        if not await self._author_exists(author_id):
            logger.warning("Author vanished during book update, reverting", book_id=book_id)
            await self.store.books.revert(book_id, previous, changes)
            raise BadRequestError("Invalid authorId: Author does not exist")

        return await self.get_by_id(book_id)

    async def delete(self, book_id: str) -> None:
        deleted = await self.store.books.find_by_id_and_delete(book_id)
        if not deleted:
            raise NotFoundError("Book not found")
        logger.info("Book deleted", book_id=book_id)

    async def find_by_author_id(self, author_id: str) -> List[Dict[str, Any]]:
        docs = await self.store.books.find({"author": to_object_id(author_id, "author")})
        return await self._expand(docs)


def build_services(store: MongoStore) -> Tuple[AuthorService, BookService]:
    """Construct both services and bind their cross references."""
    authors = AuthorService(store)
    books = BookService(store, authors)
    authors.bind(books)
    return authors, books
