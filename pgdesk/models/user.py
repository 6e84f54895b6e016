"""ORM model for application users (credentials and RBAC)."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from pgdesk.models.base import Base


class User(Base):
    """
    User account for JWT authentication and role-based access control.

    role: 'resident', 'admin' or 'superadmin'. Users are soft-disabled via
    is_active and never hard-deleted.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(String(32), nullable=False, default="resident")
    branch_id = Column(String(64), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    login_attempts = Column(Integer, nullable=False, default=0)
    lock_until = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    password_changed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"
