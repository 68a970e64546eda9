from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import relationship

from ..database import Base, new_id
from ..roles import Role


class User(Base):
    """SQLAlchemy model for a back-office credential record."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False, default="")
    email = Column(String, unique=True, index=True, nullable=False)
    # ``salt:hash`` hex, or plaintext for rows not yet migrated
    password = Column(String, nullable=False)
    role = Column(Enum(Role, name="user_role"), default=Role.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"), index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    client = relationship("Client")
