"""SQLAlchemy database models."""
from sqlalchemy import CheckConstraint, Column, Identity, Index, Integer, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

TODO_STATUSES = ("pending", "done")


class Todo(Base):
    """Todo model, mirrors schema.sql."""
    __tablename__ = "todos"
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'done')", name="todos_status_check"),
        Index("idx_todos_status", "status"),
        {"schema": "public"},
    )

    id = Column(Integer, Identity(always=True), primary_key=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="", server_default="")
    status = Column(Text, nullable=False, default="pending", server_default="pending")

    def __repr__(self):
        return f"<Todo(id={self.id}, title='{self.title}', status={self.status})>"
