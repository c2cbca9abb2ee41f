"""SQLAlchemy models for the Metadata Store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from apk_shop.db.base import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(16), default="user")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    api_key: Mapped[Optional[str]] = mapped_column(String(128), unique=True, index=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class Package(Base):
    """一次上传的 APK 记录。

    同一 (user_id, name) 下的记录通过 ``previous_version_id`` 组成按上传时间
    排序的单链表。每条链上至多一条 ``is_active`` 记录，由部分唯一索引保证。
    """

    __tablename__ = "apks"
    __table_args__ = (
        UniqueConstraint("user_id", "name", "version", name="uq_apks_owner_name_version"),
        Index("ix_apks_chain", "user_id", "name", "upload_date"),
        Index(
            "uq_apks_one_active",
            "user_id",
            "name",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), index=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    version: Mapped[str] = mapped_column(String(64), index=True)
    description: Mapped[str] = mapped_column(Text)
    filename: Mapped[str] = mapped_column(String(512))
    original_name: Mapped[str] = mapped_column(String(512))
    file_size: Mapped[int] = mapped_column(Integer)
    file_hash: Mapped[str] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_rollback: Mapped[bool] = mapped_column(Boolean, default=False)
    previous_version_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("apks.id", ondelete="SET NULL"),
        nullable=True,
    )
    upload_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class DownloadEvent(Base):
    __tablename__ = "download_analytics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Kept after the package is deleted; the reference is cleared by the engine.
    apk_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("apks.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    download_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, index=True)
    download_success: Mapped[bool] = mapped_column(Boolean, default=True)
    file_size_downloaded: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class AccessLogEntry(Base):
    __tablename__ = "api_access_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    endpoint: Mapped[str] = mapped_column(String(512))
    method: Mapped[str] = mapped_column(String(16))
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    response_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    access_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
