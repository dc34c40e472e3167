"""
Pagination utilities for list endpoints
"""
from typing import Generic, TypeVar
from pydantic import BaseModel, Field
from fastapi import Query

T = TypeVar('T')


class PaginationParams:
    """
    Reusable pagination parameters for FastAPI endpoints

    Usage:
        @router.get("/projects")
        def list_projects(pagination: PaginationParams = Depends()):
            ...
    """
    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number, starting at 1"),
        limit: int = Query(20, ge=1, le=100, description="Items per page (max 100)")
    ):
        self.page = page
        self.limit = limit

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int = Field(description="Total number of items")
    page: int = Field(description="Current page")
    limit: int = Field(description="Items per page")
    pages: int = Field(description="Total number of pages")
    has_more: bool = Field(description="Whether more items are available")

    class Config:
        from_attributes = True


def paginate_query(query, skip: int = 0, limit: int = 20):
    """
    Apply pagination to SQLAlchemy query

    Returns:
        tuple: (items, total_count)
    """
    total = query.count()
    items = query.offset(skip).limit(limit).all()
    return items, total


def create_paginated_response(items: list, total: int, page: int, limit: int) -> dict:
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit if limit else 0,
        "has_more": page * limit < total,
    }
