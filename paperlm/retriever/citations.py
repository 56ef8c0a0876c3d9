"""
Citation Builder

Turns retrieved chunks into citations a reader can verify: page and section
when they can be recovered from the text, a query-focused snippet, and
APA / MLA / Chicago renderings.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Callable, List, Optional

from ..common.schemas import RAGMetadata, RAGResult, SourceType

logger = logging.getLogger("paperlm.retriever.citations")

SNIPPET_LENGTH = 200
DEFAULT_CONFIDENCE = 0.8
UNKNOWN_AUTHOR = "Unknown Author"
CITATION_STYLES = ("apa", "mla", "chicago")

_PAGE_PATTERNS = [
    re.compile(r"\[page\s*(\d+)\]", re.IGNORECASE),
    re.compile(r"\b(?:page|pg\.?|p\.)\s*(\d+)", re.IGNORECASE),
    re.compile(r"\A\s*(\d+)\s*(?:\n|\Z)"),
]

_SECTION_PATTERNS = [
    re.compile(r"^(#{1,6}\s+.+)$", re.MULTILINE),
    re.compile(r"^([A-Z][A-Z ]{2,50})\s*$", re.MULTILINE),
    re.compile(r"^(\d+\.?\s+[A-Z].+)$", re.MULTILINE),
    re.compile(r"^([IVX]+\.?\s+[A-Z].+)$", re.MULTILINE),
]


@dataclass
class CitationFormats:
    apa: str
    mla: str
    chicago: str

    def get(self, style: str) -> str:
        if style not in CITATION_STYLES:
            raise ValueError(f"Unknown citation style: {style}")
        return getattr(self, style)


@dataclass
class EnhancedCitation:
    """A verifiable reference to one retrieved chunk"""
    id: str
    content: str
    full_content: str
    metadata: RAGMetadata
    display_title: str
    exact_reference: str
    confidence: float
    contextual_snippet: str
    source_type: SourceType
    citation_format: CitationFormats
    page_number: Optional[int] = None
    section_title: Optional[str] = None


@dataclass
class CitationValidation:
    is_valid: bool
    issues: List[str] = field(default_factory=list)
    cleaned_citation: Optional[EnhancedCitation] = None


def extract_page_number(content: str, metadata: Optional[RAGMetadata] = None) -> Optional[int]:
    """Page number from metadata, else from ``[page N]``, ``page N``, ``p. N`` or a leading number."""
    if metadata is not None and metadata.page_number:
        return metadata.page_number
    for pattern in _PAGE_PATTERNS:
        match = pattern.search(content)
        if match:
            page = int(match.group(1))
            if 0 < page < 10000:
                return page
    return None


def extract_section_title(content: str, metadata: Optional[RAGMetadata] = None) -> Optional[str]:
    if metadata is not None and metadata.section_title:
        return metadata.section_title
    for pattern in _SECTION_PATTERNS:
        match = pattern.search(content)
        if match:
            title = re.sub(r"^#+\s*", "", match.group(1).strip())
            if title:
                return title
    return None


def determine_source_type(metadata: RAGMetadata) -> SourceType:
    file_name = (metadata.file_name or "").lower()
    file_type = (metadata.file_type or "").lower()
    if file_name.endswith(".pdf") or "pdf" in file_type:
        return SourceType.PDF
    if file_name.endswith((".docx", ".doc")) or "word" in file_type:
        return SourceType.WORD
    if (metadata.source_url or "").startswith(("http://", "https://")):
        return SourceType.WEB
    if file_name.endswith((".txt", ".md")) or "text" in file_type:
        return SourceType.TEXT
    return SourceType.UNKNOWN


def contextual_snippet(content: str, query: Optional[str] = None, length: int = SNIPPET_LENGTH) -> str:
    """
    Window of at most ``length`` chars centred on the densest cluster of query
    terms, else the leading ``length`` chars. Ellipses mark cut ends.
    """
    if len(content) <= length:
        return content

    start = 0
    if query:
        lower = content.lower()
        terms = {w for w in re.findall(r"\w+", query.lower()) if len(w) > 2}
        positions = sorted(
            m.start() for term in terms for m in re.finditer(re.escape(term), lower)
        )
        best_cluster: List[int] = []
        for anchor in positions:
            cluster = [p for p in positions if anchor <= p < anchor + length]
            if len(cluster) > len(best_cluster):
                best_cluster = cluster
        if best_cluster:
            middle = (best_cluster[0] + best_cluster[-1]) // 2
            start = max(0, min(middle - length // 2, len(content) - length))

    end = min(len(content), start + length)
    snippet = content[start:end]
    return ("..." if start > 0 else "") + snippet + ("..." if end < len(content) else "")


def _title_of(metadata: RAGMetadata) -> str:
    if not metadata.file_name:
        return "Untitled"
    return PurePosixPath(metadata.file_name).stem or metadata.file_name


class CitationBuilder:
    """
    Builds, validates and formats citations.

    Args:
        clock: Returns the current time (for years and access dates)
        min_confidence: Citations below this are flagged by ``validate``
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        min_confidence: float = 0.3,
    ):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.min_confidence = min_confidence

    def _year(self, metadata: RAGMetadata) -> int:
        if metadata.uploaded_at:
            try:
                return datetime.fromisoformat(metadata.uploaded_at.replace("Z", "+00:00")).year
            except ValueError:
                logger.debug("Unparseable uploadedAt for chunk %s", metadata.chunk_id)
        return self._clock().year

    def formats(self, metadata: RAGMetadata, page_number: Optional[int] = None) -> CitationFormats:
        author = metadata.author or UNKNOWN_AUTHOR
        title = _title_of(metadata)
        year = self._year(metadata)
        page_ref = f", p. {page_number}" if page_number else ""
        url = metadata.source_url
        accessed = self._clock().strftime("%B %d, %Y")

        apa = f"{author} ({year}). {title}{page_ref}"
        if url:
            apa += f". Retrieved from {url}"

        mla = f'{author}. "{title}." {year}{page_ref}'
        if url:
            mla += f". Web. {url}"

        chicago = f'{author}. "{title}." Accessed {accessed}{page_ref}.'
        if url:
            chicago += f" {url}."

        return CitationFormats(apa=apa, mla=mla, chicago=chicago)

    def build(self, result: RAGResult, query: Optional[str] = None) -> EnhancedCitation:
        content = result.page_content
        page_number = extract_page_number(content, result.metadata)
        section_title = extract_section_title(content, result.metadata)

        reference = result.metadata.file_name or "Unknown source"
        if page_number:
            reference += f", Page {page_number}"
        if section_title:
            reference += f", Section: {section_title}"
        if result.metadata.paragraph_index:
            reference += f", Paragraph {result.metadata.paragraph_index}"

        if result.metadata.rank_score is not None:
            confidence = result.metadata.rank_score
        elif result.metadata.confidence is not None:
            confidence = result.metadata.confidence
        else:
            confidence = DEFAULT_CONFIDENCE

        metadata = replace(result.metadata, page_number=page_number, section_title=section_title)
        return EnhancedCitation(
            id=result.metadata.chunk_id,
            content=content,
            full_content=content,
            metadata=metadata,
            display_title=section_title or _title_of(result.metadata),
            exact_reference=reference,
            confidence=confidence,
            contextual_snippet=contextual_snippet(content, query),
            source_type=determine_source_type(result.metadata),
            citation_format=self.formats(result.metadata, page_number),
            page_number=page_number,
            section_title=section_title,
        )

    def build_all(self, results: List[RAGResult], query: Optional[str] = None) -> List[EnhancedCitation]:
        return [self.build(r, query) for r in results]

    def validate(self, citation: EnhancedCitation) -> CitationValidation:
        """Flag short content, missing source name and low confidence; clean valid ones."""
        issues = []
        if not citation.content or len(citation.content.strip()) < 10:
            issues.append("Citation content is too short")
        if not citation.metadata.file_name:
            issues.append("Missing source file name")
        if citation.confidence < self.min_confidence:
            issues.append("Low confidence score - citation may not be relevant")

        if issues:
            return CitationValidation(is_valid=False, issues=issues)

        cleaned_content = re.sub(r"\s+", " ", citation.content.strip())
        cleaned_content = re.sub(r"[^\w\s.,;:!?()\-]", "", cleaned_content)
        cleaned = replace(
            citation,
            content=cleaned_content,
            contextual_snippet=contextual_snippet(cleaned_content),
        )
        return CitationValidation(is_valid=True, issues=[], cleaned_citation=cleaned)

    def bibliography(self, citations: List[EnhancedCitation], style: str = "apa") -> List[str]:
        """One entry per document (highest confidence wins), sorted by file name."""
        if style not in CITATION_STYLES:
            raise ValueError(f"Unknown citation style: {style}")
        best = {}
        for citation in citations:
            key = citation.metadata.document_id
            if key not in best or citation.confidence > best[key].confidence:
                best[key] = citation
        ordered = sorted(best.values(), key=lambda c: (c.metadata.file_name.lower(), c.metadata.document_id))
        return [c.citation_format.get(style) for c in ordered]


def format_citation_for_display(citation: EnhancedCitation, full: bool = False) -> str:
    if not full:
        return citation.exact_reference
    return (
        f"{citation.exact_reference}\n\n"
        f"\"{citation.contextual_snippet}\"\n\n"
        f"Citation: {citation.citation_format.apa}"
    )
