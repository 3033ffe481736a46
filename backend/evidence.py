"""
Evidence Correlator.

Indexes captured photos by the checklist question they belong to and splits
them into pre-action (the deficiency) and post-action (the remediation)
evidence. Also lays images out as a gallery grid for the renderers.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from checklist import IntegrityWarning

logger = logging.getLogger(__name__)

ID_SEPARATOR = "-"


def extract_question_id(image_ref_id: Any, document_number: Optional[str] = None) -> str:
    """
    Derive the question identifier from a composite image reference.

    "GMRL-FSACR-0048-87" -> "87". A reference without a separator is
    returned whole; with several separators the last segment wins. Trailing
    tokens are passed through as-is, numeric or not.

    Args:
        image_ref_id: Composite identifier (document number + ordinal)
        document_number: Optional known prefix to strip first
    """
    if image_ref_id is None:
        return ""
    token = str(image_ref_id).strip()

    if document_number and token.startswith(document_number + ID_SEPARATOR):
        token = token[len(document_number) + len(ID_SEPARATOR):]

    if ID_SEPARATOR not in token:
        return token

    last = token.rsplit(ID_SEPARATOR, 1)[1]
    return last if last else token


@dataclass(frozen=True)
class EvidenceImage:
    """One captured photo attached to a checklist response."""
    question_id: str
    is_corrective: bool
    payload: Optional[bytes] = None
    image_ref_id: str = ""
    picture_id: Optional[int] = None
    file_name: str = ""
    content_type: str = "image/jpeg"
    created_at: Optional[str] = None

    @property
    def available(self) -> bool:
        return bool(self.payload)

    def with_payload(self, payload: Optional[bytes]) -> "EvidenceImage":
        return replace(self, payload=payload)


def image_from_record(record: Dict[str, Any], document_number: Optional[str] = None) -> EvidenceImage:
    """Build an EvidenceImage from a store picture record."""
    image_ref_id = str(record.get("image_ref_id") or "")
    return EvidenceImage(
        question_id=extract_question_id(image_ref_id, document_number),
        is_corrective=bool(record.get("is_corrective")),
        payload=record.get("file_data"),
        image_ref_id=image_ref_id,
        picture_id=record.get("id"),
        file_name=record.get("file_name") or "",
        content_type=record.get("content_type") or "image/jpeg",
        created_at=record.get("created_at"),
    )


@dataclass(frozen=True)
class EvidenceBuckets:
    """Images of one question, split by the corrective flag."""
    pre: Tuple[EvidenceImage, ...] = ()
    post: Tuple[EvidenceImage, ...] = ()

    @property
    def total(self) -> int:
        return len(self.pre) + len(self.post)


EMPTY_BUCKETS = EvidenceBuckets()


class EvidenceIndex:
    """
    Question identifier -> pre/post evidence.

    Insertion order of the input list is preserved inside each bucket.
    Images for unknown questions stay in the index; see `find_orphans`.
    """

    def __init__(self, buckets: Dict[str, EvidenceBuckets]):
        self._buckets = dict(buckets)

    @classmethod
    def build(cls, images: Iterable[EvidenceImage]) -> "EvidenceIndex":
        pre: Dict[str, List[EvidenceImage]] = {}
        post: Dict[str, List[EvidenceImage]] = {}
        order: List[str] = []

        for image in images:
            if image.question_id not in pre:
                pre[image.question_id] = []
                post[image.question_id] = []
                order.append(image.question_id)
            target = post if image.is_corrective else pre
            target[image.question_id].append(image)

        return cls({
            qid: EvidenceBuckets(pre=tuple(pre[qid]), post=tuple(post[qid]))
            for qid in order
        })

    def lookup(self, question_id: str) -> EvidenceBuckets:
        """Both buckets for a question; empty tuples when nothing was captured."""
        return self._buckets.get(question_id, EMPTY_BUCKETS)

    def question_ids(self) -> List[str]:
        return list(self._buckets)

    def image_count(self) -> int:
        return sum(b.total for b in self._buckets.values())

    def __contains__(self, question_id: str) -> bool:
        return question_id in self._buckets

    def __len__(self) -> int:
        return len(self._buckets)

    def find_orphans(self, known_question_ids: Iterable[str]) -> List[IntegrityWarning]:
        """
        Report evidence whose question matches no response.

        Orphans are logged and returned; they are not removed from the index.
        """
        known = set(known_question_ids)
        warnings: List[IntegrityWarning] = []
        for qid, buckets in self._buckets.items():
            if qid in known:
                continue
            warning = IntegrityWarning(
                f"{buckets.total} image(s) reference unknown question {qid!r}"
            )
            logger.warning(str(warning))
            warnings.append(warning)
        return warnings


@dataclass(frozen=True)
class GalleryCell:
    """One slot of a gallery grid."""
    position: int
    image: EvidenceImage
    caption: str = ""


@dataclass(frozen=True)
class Gallery:
    rows: Tuple[Tuple[GalleryCell, ...], ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    @property
    def cells(self) -> List[GalleryCell]:
        return [cell for row in self.rows for cell in row]


def render_gallery(images: Sequence[EvidenceImage], max_columns: int = 2) -> Gallery:
    """
    Lay images out in rows of at most `max_columns`, keeping list order.

    Captions default to the file name, else "Image <n>".
    """
    if max_columns < 1:
        raise ValueError("max_columns must be at least 1")

    cells = [
        GalleryCell(position=i, image=image, caption=image.file_name or f"Image {i + 1}")
        for i, image in enumerate(images)
    ]
    rows = tuple(
        tuple(cells[start:start + max_columns])
        for start in range(0, len(cells), max_columns)
    )
    return Gallery(rows=rows)
