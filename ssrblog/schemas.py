from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

ArticleStatusLiteral = Literal["draft", "published"]


# --- Comment ---

class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    # The browser client posts ``authorName``; both spellings are accepted.
    author_name: str = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("author_name", "authorName"),
    )
    content: str = Field(min_length=1, max_length=5000)


class CommentResponse(BaseModel):
    id: int
    article_id: int
    author_name: str
    content: str
    created_at: datetime | None
    model_config = ConfigDict(from_attributes=True)


class CommentListResponse(BaseModel):
    comments: list[CommentResponse]


# --- Article ---

class ArticleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    summary: str | None = Field(None, max_length=500)
    # A list of names or an already comma-joined string.
    tags: list[str] | str = []
    status: ArticleStatusLiteral = "draft"


class ArticleUpdate(BaseModel):
    """Partial update: only fields present (and not null) in the payload change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str | None = Field(None, min_length=1, max_length=200)
    content: str | None = Field(None, min_length=1)
    summary: str | None = Field(None, max_length=500)
    tags: list[str] | str | None = None
    status: ArticleStatusLiteral | None = None


# --- Listing ---

class ArticleListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    articles: list[dict]
    total: int
    page: int
    page_size: int = Field(alias="pageSize")


class TagCount(BaseModel):
    name: str
    count: int


class TagCloudResponse(BaseModel):
    tags: list[TagCount]


# --- Metrics ---

class MetricsResponse(BaseModel):
    published_articles: int
    draft_articles: int
    deleted_articles: int
    total_comments: int
    cache_info: dict = {}
