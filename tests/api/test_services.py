"""
Tests for the author and book services against the in-memory database.
"""

import copy

import pytest
from bson import ObjectId

from api.exceptions import (
    BadRequestError,
    ConflictError,
    DuplicateKeyError,
    NotFoundError,
    StoreCastError,
    StoreValidationError,
)
from api.services import Page

MISSING_ID = "507f1f77bcf86cd799439011"


async def _create_author(author_service, first="Jane", last="Austen"):
    return await author_service.create({"firstName": first, "lastName": last})


class TestPage:
    """Test pagination metadata."""

    @pytest.mark.parametrize("total,limit,pages", [(0, 10, 0), (1, 10, 1), (10, 10, 1), (11, 10, 2), (25, 7, 4)])
    def test_total_pages(self, total, limit, pages):
        page = Page(items=[], page=1, limit=limit, total_items=total)
        assert page.total_pages == pages
        assert page.meta == {"page": 1, "limit": limit, "totalPages": pages, "totalItems": total}


class TestAuthorService:
    """Test cases for AuthorService."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, author_service):
        created = await author_service.create({"firstName": "Jane", "lastName": "Austen", "bio": "Novelist"})

        assert created["id"]
        assert "_id" not in created
        fetched = await author_service.get_by_id(created["id"])
        assert fetched == created

    @pytest.mark.asyncio
    async def test_create_requires_names(self, author_service, fake_database):
        with pytest.raises(StoreValidationError) as exc_info:
            await author_service.create({"lastName": "Test"})

        assert "firstName" in exc_info.value.fields
        assert exc_info.value.fields["firstName"].kind == "required"
        assert fake_database.authors.docs == []

    @pytest.mark.asyncio
    async def test_get_missing(self, author_service):
        with pytest.raises(NotFoundError, match="Author not found"):
            await author_service.get_by_id(MISSING_ID)

    @pytest.mark.asyncio
    async def test_get_malformed_id(self, author_service):
        with pytest.raises(StoreCastError):
            await author_service.get_by_id("not-an-id")

    @pytest.mark.asyncio
    async def test_list_defaults(self, author_service):
        for i in range(12):
            await _create_author(author_service, first=f"First{i}")

        page = await author_service.list()

        assert len(page.items) == 10
        assert page.meta == {"page": 1, "limit": 10, "totalPages": 2, "totalItems": 12}

    @pytest.mark.asyncio
    async def test_list_offset(self, author_service):
        for i in range(7):
            await _create_author(author_service, first=f"First{i}")

        page = await author_service.list(page=3, limit=3)

        assert [item["firstName"] for item in page.items] == ["First6"]
        assert page.total_pages == 3

    @pytest.mark.asyncio
    async def test_list_search_first_or_last_name(self, author_service):
        await _create_author(author_service, "Jane", "Austen")
        await _create_author(author_service, "Mark", "Twain")
        await _create_author(author_service, "Austin", "Clarke")

        page = await author_service.list(search="aust")

        assert {item["lastName"] for item in page.items} == {"Austen", "Clarke"}
        assert page.meta["totalItems"] == 2

    @pytest.mark.asyncio
    async def test_list_search_is_literal(self, author_service):
        await _create_author(author_service, "Jane", "Austen")

        page = await author_service.list(search=".*")

        assert page.items == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,limit", [(0, 10), (-1, 10), (1, 0)])
    async def test_list_rejects_non_positive(self, author_service, page, limit):
        with pytest.raises(BadRequestError):
            await author_service.list(page=page, limit=limit)

    @pytest.mark.asyncio
    async def test_update_partial(self, author_service):
        author = await _create_author(author_service)

        updated = await author_service.update(author["id"], {"bio": "Updated"})

        assert updated["bio"] == "Updated"
        assert updated["firstName"] == "Jane"

    @pytest.mark.asyncio
    async def test_update_missing(self, author_service):
        with pytest.raises(NotFoundError):
            await author_service.update(MISSING_ID, {"bio": "x"})

    @pytest.mark.asyncio
    async def test_update_cannot_clear_required(self, author_service):
        author = await _create_author(author_service)

        with pytest.raises(StoreValidationError):
            await author_service.update(author["id"], {"lastName": None})

    @pytest.mark.asyncio
    async def test_delete_without_books(self, author_service):
        author = await _create_author(author_service)

        await author_service.delete(author["id"])

        with pytest.raises(NotFoundError):
            await author_service.get_by_id(author["id"])

    @pytest.mark.asyncio
    async def test_delete_missing(self, author_service):
        with pytest.raises(NotFoundError):
            await author_service.delete(MISSING_ID)

    @pytest.mark.asyncio
    async def test_delete_blocked_by_books(self, author_service, book_service, sample_book_data):
        author = await _create_author(author_service)
        await book_service.create({**sample_book_data, "authorId": author["id"]})

        with pytest.raises(ConflictError, match="Cannot delete author with associated books"):
            await author_service.delete(author["id"])

        assert (await author_service.get_by_id(author["id"]))["id"] == author["id"]

    @pytest.mark.asyncio
    async def test_delete_restores_author_when_book_attached_concurrently(
        self, author_service, store, fake_database
    ):
        author = await _create_author(author_service)
        book_doc = {"title": "Emma", "isbn": "9780141439587", "author": ObjectId(author["id"])}
        calls = []

        class RacingBooks:
            async def find_by_author_id(self, author_id):
                calls.append(author_id)
                if len(calls) == 1:
                    await fake_database.books.insert_one(dict(book_doc))
                    return []
                return [book_doc]

        author_service.bind(RacingBooks())

        with pytest.raises(ConflictError):
            await author_service.delete(author["id"])

        assert (await author_service.get_by_id(author["id"]))["firstName"] == "Jane"


class TestBookService:
    """Test cases for BookService."""

    @pytest.mark.asyncio
    async def test_create_expands_author(self, author_service, book_service, sample_book_data):
        author = await _create_author(author_service)

        book = await book_service.create({**sample_book_data, "authorId": author["id"]})

        assert book["id"]
        assert book["author"]["id"] == author["id"]
        assert book["author"]["firstName"] == "Jane"
        assert "authorId" not in book

    @pytest.mark.asyncio
    async def test_create_with_unknown_author(self, book_service, fake_database, sample_book_data):
        with pytest.raises(BadRequestError, match="Invalid authorId"):
            await book_service.create({**sample_book_data, "authorId": MISSING_ID})

        assert fake_database.books.docs == []

    @pytest.mark.asyncio
    async def test_create_with_malformed_author_id(self, book_service, fake_database, sample_book_data):
        with pytest.raises(BadRequestError, match="Invalid authorId: Author does not exist"):
            await book_service.create({**sample_book_data, "authorId": "not-an-id"})

        assert fake_database.books.docs == []

    @pytest.mark.asyncio
    async def test_create_rolls_back_when_author_vanishes(
        self, author_service, book_service, fake_database, sample_book_data
    ):
        author = await _create_author(author_service)
        original_create = fake_database.books.insert_one

        async def insert_then_delete_author(doc):
            result = await original_create(doc)
            fake_database.authors.docs.clear()
            return result

        fake_database.books.insert_one = insert_then_delete_author

        with pytest.raises(BadRequestError):
            await book_service.create({**sample_book_data, "authorId": author["id"]})

        assert fake_database.books.docs == []

    @pytest.mark.asyncio
    async def test_duplicate_isbn(self, author_service, book_service, sample_book_data):
        author = await _create_author(author_service)
        await book_service.create({**sample_book_data, "authorId": author["id"]})

        with pytest.raises(DuplicateKeyError) as exc_info:
            await book_service.create({**sample_book_data, "title": "Other", "authorId": author["id"]})

        assert exc_info.value.key_pattern == {"isbn": 1}
        assert exc_info.value.key_value == {"isbn": sample_book_data["isbn"]}

    @pytest.mark.asyncio
    async def test_get_missing(self, book_service):
        with pytest.raises(NotFoundError, match="Book not found"):
            await book_service.get_by_id(MISSING_ID)

    @pytest.mark.asyncio
    async def test_list_filters(self, author_service, book_service):
        austen = await _create_author(author_service, "Jane", "Austen")
        twain = await _create_author(author_service, "Mark", "Twain")
        await book_service.create({"title": "Emma", "isbn": "9780141439587", "authorId": austen["id"]})
        await book_service.create({"title": "Persuasion", "isbn": "9780141439686", "authorId": austen["id"]})
        await book_service.create({"title": "Tom Sawyer", "isbn": "9780143039563", "authorId": twain["id"]})

        by_author = await book_service.list(author_id=austen["id"])
        by_title = await book_service.list(search="SAWYER")
        by_isbn = await book_service.list(search="439686")

        assert {book["title"] for book in by_author.items} == {"Emma", "Persuasion"}
        assert all(book["author"]["lastName"] == "Austen" for book in by_author.items)
        assert [book["title"] for book in by_title.items] == ["Tom Sawyer"]
        assert [book["title"] for book in by_isbn.items] == ["Persuasion"]

    @pytest.mark.asyncio
    async def test_update_reassigns_author(self, author_service, book_service, sample_book_data):
        austen = await _create_author(author_service, "Jane", "Austen")
        twain = await _create_author(author_service, "Mark", "Twain")
        book = await book_service.create({**sample_book_data, "authorId": austen["id"]})

        updated = await book_service.update(book["id"], {"authorId": twain["id"], "genre": "Satire"})

        assert updated["author"]["id"] == twain["id"]
        assert updated["genre"] == "Satire"

    @pytest.mark.asyncio
    async def test_update_with_unknown_author(self, author_service, book_service, sample_book_data):
        author = await _create_author(author_service)
        book = await book_service.create({**sample_book_data, "authorId": author["id"]})

        with pytest.raises(BadRequestError):
            await book_service.update(book["id"], {"authorId": MISSING_ID})

        assert (await book_service.get_by_id(book["id"]))["author"]["id"] == author["id"]

    @pytest.mark.asyncio
    async def test_update_reverted_when_author_vanishes(
        self, author_service, book_service, fake_database, sample_book_data
    ):
        austen = await _create_author(author_service, "Jane", "Austen")
        twain = await _create_author(author_service, "Mark", "Twain")
        book = await book_service.create({**sample_book_data, "authorId": austen["id"]})
        before = copy.deepcopy(fake_database.books.docs[0])
        original_update = fake_database.books.find_one_and_update

        async def update_then_delete_author(query, update, return_document=False):
            result = await original_update(query, update, return_document=return_document)
            fake_database.authors.docs[:] = [
                doc for doc in fake_database.authors.docs if str(doc["_id"]) != twain["id"]
            ]
            return result

        fake_database.books.find_one_and_update = update_then_delete_author

        with pytest.raises(BadRequestError, match="Invalid authorId"):
            await book_service.update(book["id"], {"authorId": twain["id"], "genre": "Satire"})

        assert fake_database.books.docs == [before]
        assert "genre" not in fake_database.books.docs[0]

    @pytest.mark.asyncio
    async def test_update_missing(self, book_service):
        with pytest.raises(NotFoundError):
            await book_service.update(MISSING_ID, {"title": "x"})

    @pytest.mark.asyncio
    async def test_delete(self, author_service, book_service, sample_book_data):
        author = await _create_author(author_service)
        book = await book_service.create({**sample_book_data, "authorId": author["id"]})

        await book_service.delete(book["id"])

        with pytest.raises(NotFoundError):
            await book_service.delete(book["id"])

    @pytest.mark.asyncio
    async def test_find_by_author_id(self, author_service, book_service, sample_book_data):
        author = await _create_author(author_service)
        other = await _create_author(author_service, "Mark", "Twain")
        await book_service.create({**sample_book_data, "authorId": author["id"]})

        assert len(await book_service.find_by_author_id(author["id"])) == 1
        assert await book_service.find_by_author_id(other["id"]) == []
