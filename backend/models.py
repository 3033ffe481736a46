"""
SQLAlchemy models for the audit report data store.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, Float, LargeBinary
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


class AuditInstance(Base):
    """
    Represents one audit of a store, identified by its document number.
    """
    __tablename__ = 'audit_instances'

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_number = Column(String(100), nullable=False, unique=True)  # e.g., "GMRL-FSACR-0048"
    store_name = Column(String(255), nullable=False)
    schema_name = Column(String(100), nullable=True)  # Checklist template

    audit_date = Column(String(50), nullable=True)
    time_in = Column(String(20), nullable=True)
    time_out = Column(String(20), nullable=True)
    cycle = Column(String(50), nullable=True)  # e.g., "C2 (Mar/Apr)"
    year = Column(Integer, nullable=True)
    auditors = Column(String(255), nullable=True)
    accompanied_by = Column(String(255), nullable=True)
    status = Column(String(50), default='completed')

    # Legacy stored overall score (0.1 = not yet scored)
    total_score = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    responses = relationship("AuditResponse", back_populates="audit", cascade="all, delete-orphan")
    section_scores = relationship("AuditSectionScore", back_populates="audit", cascade="all, delete-orphan")
    pictures = relationship("AuditPicture", back_populates="audit", cascade="all, delete-orphan")
    temperature_readings = relationship("TemperatureReading", back_populates="audit",
                                        cascade="all, delete-orphan")

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "document_number": self.document_number,
            "store_name": self.store_name,
            "schema_name": self.schema_name,
            "audit_date": self.audit_date,
            "time_in": self.time_in,
            "time_out": self.time_out,
            "cycle": self.cycle,
            "year": self.year,
            "auditors": self.auditors,
            "accompanied_by": self.accompanied_by,
            "status": self.status,
            "total_score": self.total_score,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }


class AuditSection(Base):
    """
    Represents a section of a checklist template, in canonical order.
    """
    __tablename__ = 'audit_sections'

    id = Column(Integer, primary_key=True, autoincrement=True)
    schema_name = Column(String(100), nullable=False)
    section_number = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False)  # e.g., "Fridges and Freezers"

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "schema_name": self.schema_name,
            "section_number": self.section_number,
            "title": self.title
        }


class AuditResponse(Base):
    """
    Represents one answered checklist question of an audit.
    """
    __tablename__ = 'audit_responses'

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_number = Column(String(100), ForeignKey('audit_instances.document_number'), nullable=False)

    section_number = Column(Integer, nullable=True)
    section_title = Column(String(255), nullable=True)
    reference_value = Column(String(50), nullable=True)  # e.g., "2.26"
    title = Column(Text, nullable=True)
    criterion = Column(Text, nullable=True)
    coeff = Column(Float, nullable=True)  # Weight, typically 2 or 4
    selected_choice = Column(String(20), nullable=True)  # "Yes", "Partially", "No", "NA" or blank
    value = Column(Float, nullable=True)  # 2 / 1 / 0 encoding of the choice
    comment = Column(Text, nullable=True)
    finding = Column(Text, nullable=True)
    priority = Column(String(50), nullable=True)
    corrective_action = Column(Text, nullable=True)
    image_ref_id = Column(String(150), nullable=True)  # e.g., "GMRL-FSACR-0048-87"

    audit = relationship("AuditInstance", back_populates="responses")

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "document_number": self.document_number,
            "section_number": self.section_number,
            "section_title": self.section_title,
            "reference_value": self.reference_value,
            "title": self.title,
            "criterion": self.criterion,
            "coeff": self.coeff,
            "selected_choice": self.selected_choice,
            "numeric_value": self.value,
            "comment": self.comment,
            "finding": self.finding,
            "priority": self.priority,
            "corrective_action": self.corrective_action,
            "image_ref_id": self.image_ref_id
        }


class AuditSectionScore(Base):
    """
    Represents a section percentage stored by the legacy survey lists.
    """
    __tablename__ = 'audit_section_scores'

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_number = Column(String(100), ForeignKey('audit_instances.document_number'), nullable=False)
    section_title = Column(String(255), nullable=False)
    percentage = Column(Float, nullable=True)  # 0.1 = not yet scored

    audit = relationship("AuditInstance", back_populates="section_scores")

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "document_number": self.document_number,
            "section_title": self.section_title,
            "percentage": self.percentage
        }


class AuditPicture(Base):
    """
    Represents a photo captured during an audit.
    """
    __tablename__ = 'audit_pictures'

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_number = Column(String(100), ForeignKey('audit_instances.document_number'), nullable=False)
    image_ref_id = Column(String(150), nullable=False)
    is_corrective = Column(Boolean, default=False)  # True = remediation evidence
    file_name = Column(String(255), nullable=True)
    content_type = Column(String(100), default='image/jpeg')
    file_data = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    audit = relationship("AuditInstance", back_populates="pictures")

    def to_dict(self):
        """Convert to dictionary for JSON serialization (metadata only)."""
        return {
            "id": self.id,
            "document_number": self.document_number,
            "image_ref_id": self.image_ref_id,
            "is_corrective": bool(self.is_corrective),
            "file_name": self.file_name,
            "content_type": self.content_type,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }


class TemperatureReading(Base):
    """
    Represents a fridge or freezer temperature reading.
    """
    __tablename__ = 'temperature_readings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_number = Column(String(100), ForeignKey('audit_instances.document_number'), nullable=False)
    section = Column(String(255), nullable=True)
    reading_type = Column(String(20), nullable=False, default='Good')  # "Good" or "Finding"
    unit = Column(String(255), nullable=True)
    display_temp = Column(Float, nullable=True)
    probe_temp = Column(Float, nullable=True)
    issue = Column(Text, nullable=True)
    picture = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    audit = relationship("AuditInstance", back_populates="temperature_readings")

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "document_number": self.document_number,
            "section": self.section,
            "reading_type": self.reading_type,
            "unit": self.unit,
            "display_temp": self.display_temp,
            "probe_temp": self.probe_temp,
            "issue": self.issue,
            "picture": self.picture,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }
