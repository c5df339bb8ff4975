"""
API models and schemas for the FastAPI application.
"""

from datetime import date, datetime
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from api.validation import check_isbn, check_object_id

ObjectIdStr = Annotated[str, AfterValidator(check_object_id)]
ISBNStr = Annotated[str, AfterValidator(check_isbn)]


class AuthorCreate(BaseModel):
    """Request body for creating an author."""
    model_config = ConfigDict(extra="forbid")

    firstName: str = Field(..., min_length=1, description="Author first name")
    lastName: str = Field(..., min_length=1, description="Author last name")
    bio: Optional[str] = Field(None, description="Short biography")
    birthDate: Optional[date] = Field(None, description="Date of birth")


class AuthorUpdate(BaseModel):
    """Request body for a partial author update."""
    model_config = ConfigDict(extra="forbid")

    firstName: Optional[str] = Field(None, min_length=1)
    lastName: Optional[str] = Field(None, min_length=1)
    bio: Optional[str] = None
    birthDate: Optional[date] = None


class AuthorResponse(BaseModel):
    """Author record returned by the API."""
    id: str = Field(..., description="Unique author identifier")
    firstName: str
    lastName: str
    bio: Optional[str] = None
    birthDate: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class BookCreate(BaseModel):
    """Request body for creating a book."""
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., description="Book title")
    isbn: ISBNStr = Field(..., description="ISBN-10 or ISBN-13")
    publishedDate: Optional[date] = Field(None, description="Publication date")
    genre: Optional[str] = Field(None, description="Book genre")
    authorId: ObjectIdStr = Field(..., description="Identifier of an existing author")


class BookUpdate(BaseModel):
    """Request body for a partial book update."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    isbn: Optional[ISBNStr] = None
    publishedDate: Optional[date] = None
    genre: Optional[str] = None
    authorId: Optional[ObjectIdStr] = None


class BookResponse(BaseModel):
    """Book record returned by the API, with its author expanded."""
    id: str = Field(..., description="Unique book identifier")
    title: str
    isbn: str
    publishedDate: Optional[datetime] = None
    genre: Optional[str] = None
    author: Optional[AuthorResponse] = Field(None, description="Expanded author record")
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class PaginationMeta(BaseModel):
    page: int = Field(..., description="Current page number")
    limit: int = Field(..., description="Items per page")
    totalPages: int = Field(..., description="Total number of pages")
    totalItems: int = Field(..., description="Total number of matching items")


class AuthorListResponse(BaseModel):
    """Response model for author list with pagination."""
    data: List[AuthorResponse]
    meta: PaginationMeta


class BookListResponse(BaseModel):
    """Response model for book list with pagination."""
    data: List[BookResponse]
    meta: PaginationMeta


class FieldError(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    """Error envelope produced by the error normalizer."""
    statusCode: int = Field(..., description="HTTP status code")
    message: str = Field(..., description="Error message")
    error: Optional[str] = Field(None, description="Canonical status phrase")
    errors: Optional[List[FieldError]] = Field(None, description="Field-level errors")
    timestamp: str = Field(..., description="When the error was formatted (ISO-8601 UTC)")
    path: str = Field(..., description="Request path")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    message: str = Field(..., description="Human readable status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    uptime: float = Field(..., description="Seconds since process start")
