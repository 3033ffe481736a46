"""
One compilation run: fetch -> score -> correlate -> trend -> extract -> assemble.

Only the audit itself and its own responses are required. Every other read
(section order, images, history, earlier findings, temperature readings) degrades to an empty
or "not available" value with a logged warning.
"""

import logging
from typing import Any, Dict, List, Optional

from checklist import (
    AuditNotFoundError,
    ChecklistResponse,
    ReportCompilationError,
    build_responses,
    normalize_record,
)
from config import ReportConfig, load_report_config
import database as db
from corrective_actions import extract
from evidence import EvidenceImage, EvidenceIndex, extract_question_id, image_from_record
from fetch_pool import fetch_all
from history import HistoryCache, TrendAggregator
from report_assembler import ReportDocument, assemble, order_responses, section_titles_in_order
from temperature import load_temperature_block

logger = logging.getLogger(__name__)


def load_evidence(store, document_id: str, config: ReportConfig) -> List[EvidenceImage]:
    """
    Read the image records of a document and fetch missing payloads.

    Payloads are fetched concurrently; an image whose payload cannot be read
    is kept with no payload.
    """
    try:
        records = list(store.get_images(document_id) or [])
    except Exception as e:
        logger.warning(f"Images unavailable for {document_id}: {e}")
        return []

    images = [image_from_record(r, document_id) for r in records]

    calls = {
        i: (lambda pid=image.picture_id: store.get_image_payload(pid))
        for i, image in enumerate(images)
        if image.payload is None and image.picture_id is not None
    }
    outcomes = fetch_all(calls, max_workers=config.max_workers, timeout=config.fetch_timeout)

    for i, outcome in outcomes.items():
        images[i] = images[i].with_payload(outcome.value if outcome.ok else None)

    return images


def _read_responses(store, document_id: str) -> List[Dict[str, Any]]:
    try:
        return [normalize_record(r) for r in (store.get_responses(document_id) or [])]
    except Exception as e:
        raise ReportCompilationError(
            f"Could not read responses of {document_id}: {e}"
        ) from e


def _read_section_order(store, document_id: str) -> List[str]:
    try:
        return list(store.get_section_order(document_id) or [])
    except Exception as e:
        logger.warning(f"Section order unavailable for {document_id}: {e}")
        return []


def _known_question_ids(responses: List[ChecklistResponse], rejected) -> List[str]:
    ids = [extract_question_id(r.image_ref_id, r.document_id) for r in responses if r.image_ref_id]
    ids += [extract_question_id(r.image_ref_id) for r in rejected if r.image_ref_id]
    return ids


def compile_report(document_id: str, store=None,
                   config: Optional[ReportConfig] = None) -> ReportDocument:
    """
    Compile the report of one audit.

    Args:
        document_id: Document number of the audit
        store: Raw data store read API; defaults to the database module
        config: Report settings; defaults to the environment configuration

    Returns:
        The assembled ReportDocument

    Raises:
        AuditNotFoundError: if the audit does not exist
        ReportCompilationError: if the audit's responses cannot be read
    """
    store = store if store is not None else db
    config = config if config is not None else load_report_config()

    logger.info(f"Compiling report for {document_id}")

    try:
        audit = store.get_audit(document_id)
    except Exception as e:
        raise ReportCompilationError(f"Could not read audit {document_id}: {e}") from e
    if not audit:
        raise AuditNotFoundError(f"Audit {document_id} not found")

    records = _read_responses(store, document_id)
    responses, rejected = build_responses(records)

    section_order = _read_section_order(store, document_id)
    responses = order_responses(responses, section_order)

    images = load_evidence(store, document_id, config)
    evidence_index = EvidenceIndex.build(images)
    warnings = evidence_index.find_orphans(_known_question_ids(responses, rejected))

    titles = section_titles_in_order(section_order, list(responses) + list(rejected))
    aggregator = TrendAggregator(
        store,
        audit.get("store_name") or "",
        document_id,
        cache=HistoryCache(),
    )
    historical = aggregator.collect(
        titles,
        config.cycle_ids,
        max_workers=config.max_workers,
        timeout=config.fetch_timeout,
    )

    repeat_findings = aggregator.get_repeat_findings()

    actions = extract(responses, evidence_index, repeat_findings)
    temperature_block = load_temperature_block(store, document_id, responses, config)

    document = assemble(
        responses,
        evidence_index,
        historical,
        actions,
        [temperature_block],
        audit=audit,
        section_order=section_order,
        rejected=rejected,
        cycle_ids=config.cycle_ids,
        pass_threshold=config.pass_threshold,
        max_gallery_columns=config.max_gallery_columns,
        integrity_warnings=warnings,
        repeat_findings=repeat_findings,
    )

    logger.info(
        f"Compiled {document_id}: {len(responses)} scored responses, {len(rejected)} rejected, "
        f"{evidence_index.image_count()} images, {len(actions)} corrective actions "
        f"({sum(1 for a in actions if a.is_repeat)} repeated), "
        f"status {document.header.status.value}"
    )
    return document
