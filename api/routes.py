"""
Author, book and health endpoints.
"""

import time
from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from api.models import (
    AuthorCreate, AuthorListResponse, AuthorResponse, AuthorUpdate,
    BookCreate, BookListResponse, BookResponse, BookUpdate,
    ErrorResponse, HealthResponse, ObjectIdStr,
)
from api.services import AuthorService, BookService

PROCESS_STARTED = time.monotonic()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    404: {"model": ErrorResponse, "description": "Record not found"},
    409: {"model": ErrorResponse, "description": "Conflicting state"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}

health_router = APIRouter(tags=["Health"])
authors_router = APIRouter(prefix="/authors", tags=["Authors"], responses=ERROR_RESPONSES)
books_router = APIRouter(prefix="/books", tags=["Books"], responses=ERROR_RESPONSES)


class AuthorQueryParams(BaseModel):
    """Query parameters for author listing."""
    model_config = ConfigDict(extra="forbid")

    page: int = Field(1, ge=1, description="Page number")
    limit: int = Field(10, ge=1, description="Items per page")
    search: Optional[str] = Field(None, description="Match first or last name")


class BookQueryParams(AuthorQueryParams):
    """Query parameters for book listing."""
    search: Optional[str] = Field(None, description="Match title or ISBN")
    authorId: Optional[ObjectIdStr] = Field(None, description="Filter by author")


def get_author_service(request: Request) -> AuthorService:
    return request.app.state.authors


def get_book_service(request: Request) -> BookService:
    return request.app.state.books


@health_router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        message="Server is running",
        timestamp=datetime.now(timezone.utc),
        version=request.app.version,
        uptime=round(time.monotonic() - PROCESS_STARTED, 3),
    )


# Authors endpoints
@authors_router.post(
    "", response_model=AuthorResponse, status_code=status.HTTP_201_CREATED,
    response_model_exclude_none=True,
)
async def create_author(
    body: AuthorCreate,
    service: AuthorService = Depends(get_author_service),
):
    return await service.create(body.model_dump(exclude_unset=True))


@authors_router.get("", response_model=AuthorListResponse, response_model_exclude_none=True)
async def list_authors(
    params: Annotated[AuthorQueryParams, Query()],
    service: AuthorService = Depends(get_author_service),
):
    """
    Get authors with optional search and pagination.

    - **page**: Page number (starts from 1)
    - **limit**: Items per page
    - **search**: Case-insensitive match on first or last name
    """
    result = await service.list(page=params.page, limit=params.limit, search=params.search)
    return {"data": result.items, "meta": result.meta}


@authors_router.get("/{author_id}", response_model=AuthorResponse, response_model_exclude_none=True)
async def get_author(author_id: str, service: AuthorService = Depends(get_author_service)):
    return await service.get_by_id(author_id)


@authors_router.patch("/{author_id}", response_model=AuthorResponse, response_model_exclude_none=True)
async def update_author(
    author_id: str,
    body: AuthorUpdate,
    service: AuthorService = Depends(get_author_service),
):
    return await service.update(author_id, body.model_dump(exclude_unset=True))


@authors_router.delete("/{author_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_author(author_id: str, service: AuthorService = Depends(get_author_service)):
    """Delete an author. Fails with 409 while any book references it."""
    await service.delete(author_id)


# Books endpoints
@books_router.post(
    "", response_model=BookResponse, status_code=status.HTTP_201_CREATED,
    response_model_exclude_none=True,
)
async def create_book(body: BookCreate, service: BookService = Depends(get_book_service)):
    return await service.create(body.model_dump(exclude_unset=True))


@books_router.get("", response_model=BookListResponse, response_model_exclude_none=True)
async def list_books(
    params: Annotated[BookQueryParams, Query()],
    service: BookService = Depends(get_book_service),
):
    """
    Get books with optional search, author filter and pagination.

    - **page**: Page number (starts from 1)
    - **limit**: Items per page
    - **search**: Case-insensitive match on title or ISBN
    - **authorId**: Only books by this author
    """
    result = await service.list(
        page=params.page,
        limit=params.limit,
        search=params.search,
        author_id=params.authorId,
    )
    return {"data": result.items, "meta": result.meta}


@books_router.get("/{book_id}", response_model=BookResponse, response_model_exclude_none=True)
async def get_book(book_id: str, service: BookService = Depends(get_book_service)):
    return await service.get_by_id(book_id)


@books_router.patch("/{book_id}", response_model=BookResponse, response_model_exclude_none=True)
async def update_book(
    book_id: str,
    body: BookUpdate,
    service: BookService = Depends(get_book_service),
):
    return await service.update(book_id, body.model_dump(exclude_unset=True))


@books_router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_book(book_id: str, service: BookService = Depends(get_book_service)):
    await service.delete(book_id)
