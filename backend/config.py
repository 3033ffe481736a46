"""
Configuration settings for the Audit Report Compilation Engine.
"""

import os
from dataclasses import dataclass
from typing import List

# Base directory
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Database configuration (supports Docker override via environment variable)
DATABASE_PATH = os.getenv('DATABASE_PATH', os.path.join(BASE_DIR, 'audit_reports.db'))
DATABASE_URL = f'sqlite:///{DATABASE_PATH}'

os.makedirs(os.path.dirname(DATABASE_PATH), exist_ok=True) if os.path.dirname(DATABASE_PATH) else None

# Scoring and layout
PASS_THRESHOLD = float(os.getenv('PASS_THRESHOLD', '83'))
MAX_GALLERY_COLUMNS = int(os.getenv('MAX_GALLERY_COLUMNS', '2'))
HISTORICAL_CYCLE_COUNT = int(os.getenv('HISTORICAL_CYCLE_COUNT', '4'))

# External fetches (historical lookups, image payloads)
FETCH_TIMEOUT_SECONDS = float(os.getenv('FETCH_TIMEOUT_SECONDS', '10'))
FETCH_MAX_WORKERS = int(os.getenv('FETCH_MAX_WORKERS', '8'))

# Temperature monitoring enrichment
TEMPERATURE_QUESTION_MARKER = os.getenv(
    'TEMPERATURE_QUESTION_MARKER', 'air temperature of fridges and freezers'
)
DEFAULT_TEMPERATURE_REFERENCE = os.getenv('DEFAULT_TEMPERATURE_REFERENCE', '2.26')


@dataclass(frozen=True)
class ReportConfig:
    """Settings handed to one compilation run."""
    pass_threshold: float = 83.0
    max_gallery_columns: int = 2
    historical_cycle_count: int = 4
    fetch_timeout: float = 10.0
    max_workers: int = 8
    temperature_marker: str = 'air temperature of fridges and freezers'
    temperature_default_reference: str = '2.26'

    def __post_init__(self):
        if self.max_gallery_columns < 1:
            raise ValueError("max_gallery_columns must be at least 1")
        if self.historical_cycle_count < 0:
            raise ValueError("historical_cycle_count cannot be negative")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")

    @property
    def cycle_ids(self) -> List[str]:
        return cycle_ids(self.historical_cycle_count)


def cycle_ids(count: int) -> List[str]:
    """Historical cycle tags, oldest first: C1, C2, ..."""
    return [f"C{i}" for i in range(1, count + 1)]


def load_report_config() -> ReportConfig:
    """Build a ReportConfig from the environment-driven module settings."""
    return ReportConfig(
        pass_threshold=PASS_THRESHOLD,
        max_gallery_columns=MAX_GALLERY_COLUMNS,
        historical_cycle_count=HISTORICAL_CYCLE_COUNT,
        fetch_timeout=FETCH_TIMEOUT_SECONDS,
        max_workers=FETCH_MAX_WORKERS,
        temperature_marker=TEMPERATURE_QUESTION_MARKER,
        temperature_default_reference=DEFAULT_TEMPERATURE_REFERENCE,
    )
