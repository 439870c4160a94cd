"""
Filter Option Schemas
"""
from typing import List, Optional

from pydantic import BaseModel


class FilterOptionCreate(BaseModel):
    category: str
    name: str
    display_order: int = 0
    parent_id: Optional[int] = None


class FilterOptionOut(BaseModel):
    id: int
    category: str
    name: str
    display_order: int
    parent_id: Optional[int] = None
    version: int

    class Config:
        from_attributes = True
        frozen = True


class FilterOptionListResponse(BaseModel):
    total: int
    items: List[FilterOptionOut]
