"""
Database connection, session management and the raw data store read API
for the audit report engine.
"""

import logging
import re
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import create_engine, func, inspect, text
from sqlalchemy.orm import sessionmaker, scoped_session

from checklist import normalize_record
from config import DATABASE_URL
from history import OVERALL_KEY
from models import (
    Base,
    AuditInstance,
    AuditSection,
    AuditResponse,
    AuditSectionScore,
    AuditPicture,
    TemperatureReading
)

logger = logging.getLogger(__name__)

# Create engine
engine = create_engine(DATABASE_URL, echo=False, connect_args={"check_same_thread": False})

# Create session factory
session_factory = sessionmaker(bind=engine)
Session = scoped_session(session_factory)


def init_db():
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(engine)
    _ensure_audit_columns()
    _ensure_response_columns()
    logger.info(f"Database initialized at {DATABASE_URL}")


def _add_missing_columns(table: str, wanted: Dict[str, str]):
    inspector = inspect(engine)
    if table not in inspector.get_table_names():
        return

    columns = {col["name"] for col in inspector.get_columns(table)}
    alters = [
        f"ALTER TABLE {table} ADD COLUMN {name} {column_type}"
        for name, column_type in wanted.items()
        if name not in columns
    ]

    if not alters:
        return

    with engine.begin() as conn:
        for stmt in alters:
            conn.execute(text(stmt))


def _ensure_audit_columns():
    """Add visit-time columns to audit_instances if the database already exists."""
    _add_missing_columns("audit_instances", {
        "time_in": "VARCHAR(20)",
        "time_out": "VARCHAR(20)",
    })


def _ensure_response_columns():
    """Add the corrective action column to audit_responses if needed."""
    _add_missing_columns("audit_responses", {
        "corrective_action": "TEXT",
    })


def drop_db():
    """Drop all tables (use with caution!)."""
    Base.metadata.drop_all(engine)
    logger.info("All tables dropped")


@contextmanager
def get_session():
    """
    Context manager for database sessions.

    Usage:
        with get_session() as session:
            session.query(AuditInstance).all()
    """
    session = Session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        raise e
    finally:
        session.close()


# =============================================================================
# WRITE FUNCTIONS
# =============================================================================

def save_audit(document_number: str, store_name: str, responses: Iterable[dict] = (),
               **metadata) -> dict:
    """
    Save an audit and its responses.

    Responses may use any of the source system's field names; they are
    normalized before storage.

    Args:
        document_number: Unique document number of the audit
        store_name: Audited store
        responses: Raw response records
        **metadata: Optional AuditInstance columns (cycle, audit_date, ...)

    Returns:
        Dictionary representation of the audit
    """
    with get_session() as session:
        audit = AuditInstance(
            document_number=document_number,
            store_name=store_name,
            schema_name=metadata.get("schema_name"),
            audit_date=metadata.get("audit_date"),
            time_in=metadata.get("time_in"),
            time_out=metadata.get("time_out"),
            cycle=metadata.get("cycle"),
            year=metadata.get("year"),
            auditors=metadata.get("auditors"),
            accompanied_by=metadata.get("accompanied_by"),
            status=metadata.get("status", "completed"),
            total_score=metadata.get("total_score")
        )
        session.add(audit)

        for raw in responses:
            record = normalize_record(raw)
            session.add(AuditResponse(
                document_number=document_number,
                section_number=record["section_number"],
                section_title=record["section_title"],
                reference_value=record["reference_value"],
                title=record["title"],
                criterion=record["criterion"],
                coeff=record["weight"],
                selected_choice=record["selected_choice"],
                value=record["numeric_value"],
                comment=record["comment"],
                finding=record["finding"],
                priority=record["priority"],
                corrective_action=record["corrective_action"],
                image_ref_id=record["image_ref_id"]
            ))

        session.commit()
        session.refresh(audit)
        return audit.to_dict()


def save_sections(schema_name: str, titles: List[str]) -> int:
    """
    Replace the canonical section order of a checklist template.

    Returns:
        Number of sections saved
    """
    with get_session() as session:
        session.query(AuditSection).filter(
            AuditSection.schema_name == schema_name
        ).delete(synchronize_session=False)

        for number, title in enumerate(titles, start=1):
            session.add(AuditSection(schema_name=schema_name, section_number=number, title=title))

        session.commit()
        return len(titles)


def add_picture(document_number: str, image_ref_id: str, file_data: Optional[bytes],
                is_corrective: bool = False, file_name: str = None,
                content_type: str = "image/jpeg") -> dict:
    """Attach a photo to an audit."""
    with get_session() as session:
        picture = AuditPicture(
            document_number=document_number,
            image_ref_id=image_ref_id,
            is_corrective=is_corrective,
            file_name=file_name,
            content_type=content_type,
            file_data=file_data
        )
        session.add(picture)
        session.commit()
        session.refresh(picture)
        return picture.to_dict()


def add_temperature_reading(document_number: str, reading_type: str, unit: str,
                            display_temp: float = None, probe_temp: float = None,
                            issue: str = None, section: str = None,
                            picture: bytes = None) -> dict:
    """Record a fridge or freezer reading for an audit."""
    with get_session() as session:
        reading = TemperatureReading(
            document_number=document_number,
            reading_type=reading_type,
            unit=unit,
            display_temp=display_temp,
            probe_temp=probe_temp,
            issue=issue,
            section=section,
            picture=picture
        )
        session.add(reading)
        session.commit()
        session.refresh(reading)
        return reading.to_dict()


def save_section_scores(document_number: str, scores: Dict[str, Optional[float]]) -> int:
    """
    Replace the legacy stored section percentages of an audit.

    Returns:
        Number of scores saved
    """
    with get_session() as session:
        session.query(AuditSectionScore).filter(
            AuditSectionScore.document_number == document_number
        ).delete(synchronize_session=False)

        for section_title, percentage in scores.items():
            session.add(AuditSectionScore(
                document_number=document_number,
                section_title=section_title,
                percentage=percentage
            ))

        session.commit()
        return len(scores)


def delete_audit(document_number: str) -> bool:
    """
    Delete an audit and everything attached to it.

    Returns:
        True if deleted, False if not found
    """
    with get_session() as session:
        audit = session.query(AuditInstance).filter(
            AuditInstance.document_number == document_number
        ).first()
        if audit:
            session.delete(audit)
            session.commit()
            return True
        return False


# =============================================================================
# READ FUNCTIONS
# =============================================================================

def get_audit(document_id: str) -> Optional[dict]:
    """
    Get an audit by document number.

    Returns:
        Dictionary representation of the audit, or None if not found
    """
    with get_session() as session:
        audit = session.query(AuditInstance).filter(
            AuditInstance.document_number == document_id
        ).first()
        if audit:
            return audit.to_dict()
        return None


def get_section_order(document_id: str) -> List[str]:
    """
    Canonical section titles of the audit's checklist template.

    Falls back to the order of the audit's own responses when the template
    has no stored sections.
    """
    with get_session() as session:
        audit = session.query(AuditInstance).filter(
            AuditInstance.document_number == document_id
        ).first()
        if not audit:
            return []

        if audit.schema_name:
            sections = session.query(AuditSection)\
                .filter(AuditSection.schema_name == audit.schema_name)\
                .order_by(AuditSection.section_number)\
                .all()
            if sections:
                return [s.title for s in sections]

        rows = session.query(AuditResponse.section_number, AuditResponse.section_title)\
            .filter(AuditResponse.document_number == document_id)\
            .order_by(AuditResponse.section_number, AuditResponse.id)\
            .all()
        return list(dict.fromkeys(title for _, title in rows if title))


def get_responses(document_id: str) -> List[dict]:
    """
    Get the responses of an audit as canonical records.
    """
    with get_session() as session:
        responses = session.query(AuditResponse)\
            .filter(AuditResponse.document_number == document_id)\
            .order_by(AuditResponse.id)\
            .all()
        return [normalize_record(r.to_dict()) for r in responses]


def get_images(document_id: str) -> List[dict]:
    """
    Get picture metadata of an audit, in capture order.

    Payloads are read separately with get_image_payload.
    """
    with get_session() as session:
        pictures = session.query(AuditPicture)\
            .filter(AuditPicture.document_number == document_id)\
            .order_by(AuditPicture.created_at, AuditPicture.id)\
            .all()
        return [p.to_dict() for p in pictures]


def get_image_payload(picture_id: int) -> Optional[bytes]:
    """Raw bytes of one picture, or None."""
    with get_session() as session:
        picture = session.query(AuditPicture).filter(AuditPicture.id == picture_id).first()
        if picture:
            return picture.file_data
        return None


def _cycle_pattern(cycle_id: str):
    # "C1" matches "C1" and "C1 (Jan/Feb)" but not "C10"
    return re.compile(rf"^{re.escape(cycle_id)}(?!\d)", re.IGNORECASE)


def _find_cycle_audit(session, store_name: str, cycle_id: str,
                      exclude_document_id: str) -> Optional[AuditInstance]:
    """Most recent audit of a store in a cycle, never the excluded document."""
    candidates = session.query(AuditInstance)\
        .filter(AuditInstance.store_name == store_name)\
        .filter(AuditInstance.document_number != exclude_document_id)\
        .filter(AuditInstance.cycle.like(f"{cycle_id}%"))\
        .order_by(AuditInstance.year.desc(),
                  AuditInstance.audit_date.desc(),
                  AuditInstance.created_at.desc(),
                  AuditInstance.id.desc())\
        .all()

    pattern = _cycle_pattern(cycle_id)
    for audit in candidates:
        if pattern.match(audit.cycle or ""):
            return audit
    return None


def get_historical_responses(store_name: str, section_title: Optional[str], cycle_id: str,
                             exclude_document_id: str) -> List[dict]:
    """
    Responses of a store's audit in a previous cycle.

    Args:
        store_name: Audited store
        section_title: Section to read, or None for all sections
        cycle_id: Cycle tag, e.g. "C1"
        exclude_document_id: Document being compiled; never returned

    Returns:
        Canonical response records (empty when no audit matches)
    """
    with get_session() as session:
        audit = _find_cycle_audit(session, store_name, cycle_id, exclude_document_id)
        if not audit:
            return []

        query = session.query(AuditResponse)\
            .filter(AuditResponse.document_number == audit.document_number)
        if section_title is not None:
            query = query.filter(AuditResponse.section_title == section_title)

        return [normalize_record(r.to_dict()) for r in query.order_by(AuditResponse.id).all()]


def get_stored_scores(store_name: str, cycle_id: str, exclude_document_id: str) -> Dict[str, Any]:
    """
    Legacy stored percentages of a store's audit in a previous cycle.

    Returns:
        Section title -> stored percentage, plus the audit's total score
        under OVERALL_KEY. Empty when no audit matches.
    """
    with get_session() as session:
        audit = _find_cycle_audit(session, store_name, cycle_id, exclude_document_id)
        if not audit:
            return {}

        scores = {s.section_title: s.percentage for s in audit.section_scores}
        scores[OVERALL_KEY] = audit.total_score
        return scores


FINDING_CHOICES = ("no", "partially", "partial")


def get_historical_findings(store_name: str, exclude_document_id: str) -> List[dict]:
    """
    Deficient answers (No / Partially) from the store's earlier completed audits.

    Used to flag findings that keep coming back. Newest audit first within
    each reference value.

    Returns:
        Records with reference_value, title, section_title, selected_choice,
        document_id and audit_date
    """
    with get_session() as session:
        rows = session.query(AuditResponse, AuditInstance)\
            .join(AuditInstance, AuditResponse.document_number == AuditInstance.document_number)\
            .filter(AuditInstance.store_name == store_name)\
            .filter(AuditInstance.document_number != exclude_document_id)\
            .filter(func.lower(AuditInstance.status) == "completed")\
            .filter(func.lower(AuditResponse.selected_choice).in_(FINDING_CHOICES))\
            .order_by(AuditResponse.reference_value,
                      AuditInstance.audit_date.desc(),
                      AuditInstance.id.desc())\
            .all()

        return [
            {
                "reference_value": response.reference_value,
                "title": response.title,
                "section_title": response.section_title,
                "selected_choice": response.selected_choice,
                "document_id": audit.document_number,
                "audit_date": audit.audit_date,
            }
            for response, audit in rows
        ]


SPECIALIZED_KINDS = ("temperature",)


def get_specialized_records(kind: str, document_id: str) -> List[dict]:
    """
    Records outside the checklist that feed an enrichment block.

    Raises:
        ValueError: for an unknown kind
    """
    if kind not in SPECIALIZED_KINDS:
        raise ValueError(f"Unknown specialized record kind: {kind}")

    with get_session() as session:
        readings = session.query(TemperatureReading)\
            .filter(TemperatureReading.document_number == document_id)\
            .order_by(TemperatureReading.section, TemperatureReading.reading_type,
                      TemperatureReading.created_at, TemperatureReading.id)\
            .all()
        return [r.to_dict() for r in readings]


# Initialize database on import
init_db()
