# spendwise/models/finance.py

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4
from pydantic import BaseModel, Field


class Category(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    name: str
    parent_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Transaction(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    amount: Decimal
    description: str = ""
    category_id: Optional[str] = None
    receipt_url: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    parent_id: Optional[str] = None


class TransactionCreate(BaseModel):
    amount: Decimal
    description: str = Field(default="", max_length=500)
    category_id: Optional[str] = None
    receipt_url: Optional[str] = None
