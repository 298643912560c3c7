from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class EntityRow(Base):
    __tablename__ = "entities"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    name: Mapped[str] = mapped_column(String(300), default="")
    display_name: Mapped[str] = mapped_column(String(300), default="")
    sort_order: Mapped[int] = mapped_column(Integer, default=0)  # directory order


class DomainRow(Base):
    __tablename__ = "domains"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    name: Mapped[str] = mapped_column(String(300), default="")
    display_name: Mapped[str] = mapped_column(String(300), default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    questions: Mapped[list[QuestionRow]] = relationship(
        "QuestionRow", back_populates="domain", cascade="all, delete-orphan",
        order_by="QuestionRow.position",
    )


class QuestionRow(Base):
    __tablename__ = "questions"
    __table_args__ = (UniqueConstraint("domain_id", "key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain_id: Mapped[str] = mapped_column(String(200), ForeignKey("domains.id"), nullable=False)
    key: Mapped[str] = mapped_column(String(100), nullable=False)  # question id as text
    numeric_key: Mapped[bool] = mapped_column(default=False)  # id was an integer
    text: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str | None] = mapped_column(String(200), nullable=True)
    weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    display_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)

    domain: Mapped[DomainRow] = relationship("DomainRow", back_populates="questions")


class AnalysisRecord(Base):
    __tablename__ = "analysis_records"
    __table_args__ = (UniqueConstraint("domain_id", "entity_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain_id: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(200), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, default="{}")  # raw, any historical shape
    stored_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class MetadataRecord(Base):
    __tablename__ = "metadata_records"
    __table_args__ = (UniqueConstraint("domain_id", "entity_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain_id: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(200), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, default="{}")
    stored_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
