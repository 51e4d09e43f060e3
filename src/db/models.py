"""SQLAlchemy declarative base and ORM models for the battle collections.

Each table mirrors one document collection: characters, items, foes,
questions (+ question_tags for tag-membership queries), encounters, and
the per-turn submission history.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import JSON


class Base(DeclarativeBase):
    """Base class for all database models."""


class CharacterModel(Base):
    """ORM model for characters/{ownerId}."""

    __tablename__ = "characters"

    owner_id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    class_name: Mapped[str] = mapped_column(String, default="Apprentice")
    level: Mapped[int] = mapped_column(Integer, default=1)
    xp: Mapped[int] = mapped_column(Integer, default=0)
    gold: Mapped[int] = mapped_column(Integer, default=0)
    max_hp: Mapped[int] = mapped_column(Integer, default=15)
    # 현재 HP. max_hp와 별개로 부상 유지
    hp: Mapped[int] = mapped_column(Integer, default=15)
    base_damage: Mapped[int] = mapped_column(Integer, default=1)
    base_defense: Mapped[int] = mapped_column(Integer, default=0)
    inventory: Mapped[list] = mapped_column(JSON, default=list)
    equipment: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class ItemDefinitionModel(Base):
    """ORM model for items/{itemId}."""

    __tablename__ = "item_definitions"

    item_id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[int] = mapped_column(Integer, default=0)
    slot: Mapped[str | None] = mapped_column(String, nullable=True)
    stats: Mapped[dict] = mapped_column(JSON, default=dict)
    max_durability: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)


class FoeModel(Base):
    """ORM model for foes/{foeId}."""

    __tablename__ = "foes"

    foe_id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    max_hp: Mapped[int] = mapped_column(Integer, nullable=False)
    attack_damage: Mapped[int] = mapped_column(Integer, default=1)
    defense: Mapped[int] = mapped_column(Integer, default=0)
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)


class QuestionModel(Base):
    """ORM model for questions/{questionId}."""

    __tablename__ = "questions"

    question_id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str] = mapped_column(String, default="")
    prompt_type: Mapped[str] = mapped_column(String, default="text")
    prompt_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    prompt_latex: Mapped[str | None] = mapped_column(Text, nullable=True)
    prompt_image_url: Mapped[str | None] = mapped_column(String, nullable=True)
    choices: Mapped[list] = mapped_column(JSON, nullable=False)
    correct_index: Mapped[int] = mapped_column(Integer, nullable=False)
    difficulty: Mapped[int] = mapped_column(Integer, default=1)
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_limit: Mapped[float | None] = mapped_column(Float, nullable=True)

    tags: Mapped[list["QuestionTagModel"]] = relationship(
        "QuestionTagModel",
        back_populates="question",
        cascade="all, delete-orphan",
    )


class QuestionTagModel(Base):
    """Tag membership of a question (one row per tag)."""

    __tablename__ = "question_tags"

    question_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("questions.question_id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag: Mapped[str] = mapped_column(String, primary_key=True)

    question: Mapped["QuestionModel"] = relationship(
        "QuestionModel", back_populates="tags"
    )

    __table_args__ = (Index("idx_question_tag", "tag"),)


class EncounterModel(Base):
    """ORM model for encounters/{encounterId}."""

    __tablename__ = "encounters"

    encounter_id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    foe_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    question_tags: Mapped[list] = mapped_column(JSON, nullable=False)
    win_reward_xp: Mapped[int] = mapped_column(Integer, default=0)
    win_reward_gold: Mapped[int] = mapped_column(Integer, default=0)
    win_item_ids: Mapped[list] = mapped_column(JSON, default=list)
    time_multiplier: Mapped[float] = mapped_column(Float, default=1.0)
    shuffle_questions: Mapped[bool] = mapped_column(Boolean, default=True)
    visual: Mapped[dict] = mapped_column(JSON, default=dict)


class SubmissionModel(Base):
    """One resolved turn (answer, skip or timeout)."""

    __tablename__ = "battle_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False)
    encounter_id: Mapped[str] = mapped_column(String, nullable=False)
    question_id: Mapped[str] = mapped_column(String, nullable=False)
    selected_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    outcome: Mapped[str] = mapped_column(String, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (Index("idx_submission_owner", "owner_id"),)
