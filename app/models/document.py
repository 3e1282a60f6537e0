from datetime import datetime, UTC
from typing import Any, Dict, Optional
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field, UniqueConstraint


class Document(SQLModel, table=True):
    """One record of the roster store, addressed by collection and document id."""
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("collection", "doc_id", name="unique_collection_doc"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    collection: str = Field(index=True)
    doc_id: str = Field(index=True)
    version: int = Field(default=1)
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
