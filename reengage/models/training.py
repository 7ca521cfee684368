"""
Read-side mappings of the training platform's tables.
The engine never writes these; only the columns it reads are mapped.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from reengage.database import Base

# Step / course status values as stored by the platform
STATUS_COMPLETED = "COMPLETED"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_NOT_STARTED = "NOT_STARTED"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.username}>"


class Pet(Base):
    __tablename__ = "pets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class UserCourse(Base):
    __tablename__ = "user_courses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), ForeignKey("courses.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=STATUS_NOT_STARTED)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_user_courses_user_status", "user_id", "status"),
    )


class CourseReview(Base):
    __tablename__ = "course_reviews"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), ForeignKey("courses.id"), nullable=False)
    rating: Mapped[Optional[int]] = mapped_column(Integer)  # 1-5


class UserTraining(Base):
    __tablename__ = "user_trainings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)

    __table_args__ = (
        Index("ix_user_trainings_user_id", "user_id"),
    )


class UserStep(Base):
    __tablename__ = "user_steps"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_training_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_trainings.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default=STATUS_NOT_STARTED)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_user_steps_status_updated", "status", "updated_at"),
        Index("ix_user_steps_training", "user_training_id"),
    )

    def __repr__(self) -> str:
        return f"<UserStep {self.id} {self.status}>"
