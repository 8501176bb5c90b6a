import uuid

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base
from app.models.common import UUIDMixin, TimestampMixin

PHONE_NUMBER_ATTRIBUTE = "phoneNumber"
PHONE_NUMBER_VERIFIED_ATTRIBUTE = "phoneNumberVerified"


class User(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("realm_id", "username", name="uq_users_realm_username"),)

    realm_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False)

    attributes: Mapped[list["UserAttribute"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", lazy="selectin"
    )
    credentials: Mapped[list["UserCredential"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", order_by="UserCredential.created_at"
    )
    required_actions: Mapped[list["UserRequiredAction"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class UserAttribute(Base, UUIDMixin):
    __tablename__ = "user_attributes"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    user: Mapped[User] = relationship(back_populates="attributes")


class UserCredential(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "user_credentials"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # phone-otp|password|...
    user_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credential_data: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped[User] = relationship(back_populates="credentials")


class UserRequiredAction(Base):
    __tablename__ = "user_required_actions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    action: Mapped[str] = mapped_column(String(64), primary_key=True)

    user: Mapped[User] = relationship(back_populates="required_actions")
