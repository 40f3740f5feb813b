import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship

from app.core.database import Base


class User(Base):
	__tablename__ = "users"

	id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
	email = Column(String, unique=True, nullable=False, index=True)
	name = Column(String, nullable=True)
	created_at = Column(DateTime(timezone=True), server_default=func.now())

	# ORM-зв’язки
	subscription = relationship("Subscription", back_populates="user", uselist=False)
	sessions = relationship("AuthSession", back_populates="user")


# прості cookie/bearer сесії, які пише auth-сервіс
class AuthSession(Base):
	__tablename__ = "sessions"

	id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
	token = Column(String, unique=True, nullable=False, index=True)
	user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
	expires_at = Column(DateTime(timezone=True), nullable=False)
	created_at = Column(DateTime(timezone=True), server_default=func.now())

	user = relationship("User", back_populates="sessions")
