from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scopeguard.db.base import Base


class UserAccount(Base):
    """
    Ministry and school staff share one table; ``scope`` partitions them.

    ``structure_id`` is the administrative structure of a MINISTRY user and
    ``establishment_id`` the school of a SCHOOL user.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    scope: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    user_type: Mapped[str] = mapped_column(String(50), nullable=False)
    structure_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    establishment_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    manager_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    memberships: Mapped[list["GroupMembership"]] = relationship(back_populates="user")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class SecurityGroup(Base):
    __tablename__ = "security_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    memberships: Mapped[list["GroupMembership"]] = relationship(back_populates="group")
    permissions: Mapped[list["GroupPermission"]] = relationship(back_populates="group")


class GroupMembership(Base):
    __tablename__ = "group_memberships"
    __table_args__ = (UniqueConstraint("user_id", "group_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("security_groups.id"), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Naive UTC; NULL means the membership never expires.
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    user: Mapped[UserAccount] = relationship(back_populates="memberships")
    group: Mapped[SecurityGroup] = relationship(back_populates="memberships")


class BusinessObject(Base):
    __tablename__ = "business_objects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class GroupPermission(Base):
    __tablename__ = "group_permissions"
    __table_args__ = (UniqueConstraint("group_id", "business_object_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("security_groups.id"), nullable=False, index=True)
    business_object_id: Mapped[int] = mapped_column(ForeignKey("business_objects.id"), nullable=False)

    can_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_write: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_create: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_delete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_approve: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    group: Mapped[SecurityGroup] = relationship(back_populates="permissions")
    business_object: Mapped[BusinessObject] = relationship()


class VisibilityRuleRecord(Base):
    __tablename__ = "visibility_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("security_groups.id"), nullable=False, index=True)
    business_object_id: Mapped[int] = mapped_column(ForeignKey("business_objects.id"), nullable=False)

    rule_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    condition: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    business_object: Mapped[BusinessObject] = relationship()


class UIRuleRecord(Base):
    __tablename__ = "ui_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("security_groups.id"), nullable=False, index=True)

    element_pattern: Mapped[str] = mapped_column(String(200), nullable=False)
    element_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    conditions: Mapped[dict | None] = mapped_column(JSON, nullable=True)
