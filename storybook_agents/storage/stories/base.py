from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text as sa_text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storybook_agents.storage.base import Base


class Story(Base):
    __tablename__ = "stories"
    __table_args__ = (Index("idx_stories_owner_id", "owner_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    art_style: Mapped[str | None] = mapped_column(String(64), nullable=True)
    art_style_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    page_count: Mapped[int] = mapped_column(Integer, nullable=False)
    target_audience: Mapped[str] = mapped_column(String(64), nullable=False, default="children")
    cover_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    snapshot_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=sa_text("CURRENT_TIMESTAMP"), nullable=False
    )

    characters: Mapped[list["StoryCharacter"]] = relationship(
        "StoryCharacter",
        back_populates="story",
        cascade="all, delete-orphan",
        order_by="StoryCharacter.id",
    )
    pages: Mapped[list["StoryPage"]] = relationship(
        "StoryPage",
        back_populates="story",
        cascade="all, delete-orphan",
        order_by="StoryPage.page_number",
    )


class StoryCharacter(Base):
    __tablename__ = "story_characters"
    __table_args__ = (Index("idx_story_characters_story_id", "story_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    story_id: Mapped[int] = mapped_column(ForeignKey("stories.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    avatar_prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    consistency_tag: Mapped[str | None] = mapped_column(Text, nullable=True)
    visual_identity_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    has_reference_image: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    story: Mapped[Story] = relationship("Story", back_populates="characters")


class StoryPage(Base):
    __tablename__ = "story_pages"
    __table_args__ = (UniqueConstraint("story_id", "page_number", name="uq_story_pages_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    story_id: Mapped[int] = mapped_column(ForeignKey("stories.id", ondelete="CASCADE"), nullable=False)
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    image_description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    characters_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    illustration_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    custom_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    regenerated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    story: Mapped[Story] = relationship("Story", back_populates="pages")
