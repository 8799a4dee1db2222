"""
SQLAlchemy-backed question store.

One table of persisted questions. Rows are inserted per subject batch in
a single transaction; diagram URLs and enrichment fields are written
later with targeted updates.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from qbank_toolkit.common.numbering import extract_leading_question_number
from qbank_toolkit.core.models import DEFAULT_TOPIC_CATEGORY
from qbank_toolkit.ingestion.errors import PersistenceError

from .base import QuestionStore

logger = logging.getLogger(__name__)

Base = declarative_base()

UPDATABLE_FIELDS = frozenset(
    {
        "diagram_url",
        "image_url",
        "ai_explanation",
        "hint",
        "rationale",
        "topic_category",
        "topic_keywords",
        "difficulty_level",
    }
)


class QuestionRow(Base):
    """A persisted question, qualified by subject, year and exam session."""
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    subject = Column(String(255), nullable=False, index=True)
    year = Column(Integer, nullable=False, index=True)
    exam_session = Column(Integer, nullable=True, index=True)
    certification = Column(String(255), nullable=True)
    question_text = Column(Text, nullable=False)
    options = Column(JSON, nullable=False, default=list)
    answer_index = Column(Integer, nullable=True)
    ai_explanation = Column(Text, nullable=True)
    hint = Column(Text, nullable=True)
    rationale = Column(Text, nullable=True)
    topic_category = Column(String(255), nullable=False, default=DEFAULT_TOPIC_CATEGORY)
    topic_keywords = Column(JSON, nullable=False, default=list)
    difficulty_level = Column(String(16), nullable=True)
    image_url = Column(Text, nullable=True)
    diagram_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject": self.subject,
            "year": self.year,
            "exam_session": self.exam_session,
            "certification": self.certification,
            "question_text": self.question_text,
            "options": list(self.options or []),
            "answer_index": self.answer_index,
            "ai_explanation": self.ai_explanation,
            "hint": self.hint,
            "rationale": self.rationale,
            "topic_category": self.topic_category,
            "topic_keywords": list(self.topic_keywords or []),
            "difficulty_level": self.difficulty_level,
            "image_url": self.image_url,
            "diagram_url": self.diagram_url,
        }

    def __repr__(self):
        return f"<QuestionRow(id={self.id}, subject='{self.subject}', year={self.year})>"


def create_store_engine(database_url: str) -> Engine:
    """Engine for the store; in-memory SQLite is shared across threads."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


class SqlQuestionStore(QuestionStore):
    """QuestionStore over a SQLAlchemy engine."""

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = create_store_engine(database_url)
        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        Base.metadata.create_all(bind=engine)

    def insert_questions(self, rows: Sequence[Dict[str, Any]]) -> List[int]:
        if not rows:
            return []
        db = self.SessionLocal()
        try:
            records = [QuestionRow(**self._row_columns(row)) for row in rows]
            db.add_all(records)
            db.commit()
            ids = [record.id for record in records]
        except (SQLAlchemyError, TypeError) as e:
            db.rollback()
            logger.error(f"Insert of {len(rows)} question(s) failed: {e}")
            raise PersistenceError(f"문항 저장에 실패했습니다: {e}") from e
        finally:
            db.close()
        logger.info(f"Inserted {len(ids)} question(s)", extra={"count": len(ids)})
        return ids

    def find_question_ids(
        self,
        subject: str,
        year: int,
        exam_session: int,
        question_number: int,
    ) -> List[int]:
        db = self.SessionLocal()
        try:
            query = (
                db.query(QuestionRow.id, QuestionRow.question_text)
                .filter(QuestionRow.subject == subject)
                .filter(QuestionRow.year == year)
                .filter(QuestionRow.exam_session == exam_session)
                .order_by(QuestionRow.id)
            )
            return [
                row_id
                for row_id, text in query.all()
                if extract_leading_question_number(text) == question_number
            ]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Question lookup failed: {e}") from e
        finally:
            db.close()

    def update_question(self, record_id: int, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise PersistenceError(f"Fields not updatable: {sorted(unknown)}")
        db = self.SessionLocal()
        try:
            record = db.get(QuestionRow, record_id)
            if record is None:
                raise PersistenceError(f"Question {record_id} not found")
            for name, value in fields.items():
                if name == "topic_keywords":
                    value = list(value or [])
                setattr(record, name, value)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Update of question {record_id} failed: {e}") from e
        finally:
            db.close()

    def get_question(self, record_id: int) -> Optional[Dict[str, Any]]:
        db = self.SessionLocal()
        try:
            record = db.get(QuestionRow, record_id)
            return record.to_dict() if record is not None else None
        finally:
            db.close()

    @staticmethod
    def _row_columns(row: Dict[str, Any]) -> Dict[str, Any]:
        columns = {column.name for column in QuestionRow.__table__.columns} - {"id", "created_at"}
        values = {name: row[name] for name in columns if name in row}
        values["options"] = list(values.get("options") or [])
        values["topic_keywords"] = list(values.get("topic_keywords") or [])
        values["topic_category"] = values.get("topic_category") or DEFAULT_TOPIC_CATEGORY
        return values
