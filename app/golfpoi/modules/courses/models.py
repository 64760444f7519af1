from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.golfpoi.models import Base


class Course(Base):
    __tablename__ = "courses"
    __table_args__ = (
        Index("idx_courses_category_id", "category_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Both set or both NULL.
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Plain column, not a foreign key: deleting a category leaves this id dangling.
    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    last_updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    images: Mapped[list["CourseImage"]] = relationship(
        "CourseImage",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="CourseImage.id",
        lazy="selectin",
    )

    @property
    def location(self) -> tuple[float, float] | None:
        if self.longitude is None or self.latitude is None:
            return None
        return (self.longitude, self.latitude)

    @property
    def related_images(self) -> list[str]:
        """External image ids in display (insertion) order."""
        return [img.image_id for img in self.images]


class CourseImage(Base):
    __tablename__ = "course_images"
    __table_args__ = (
        Index("idx_course_images_course", "course_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    image_id: Mapped[str] = mapped_column(String(512), nullable=False)

    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    added_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    course: Mapped[Course] = relationship("Course", back_populates="images")
