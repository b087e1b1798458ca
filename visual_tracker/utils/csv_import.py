"""
Student CSV parsing for mass import.

The file must carry the headers ``Full Name``, ``Expertise Check`` and
``Learning Session`` (matched case-insensitively, surrounding whitespace and
a leading byte-order mark ignored). Parsing never touches the database; it
produces a preview plus the list of candidates that
``import_students_from_csv`` will create.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import pandas as pd

from ..domain.models import LearningSession
from ..infrastructure.exceptions import CSVImportError
from ..infrastructure.logging import get_logger

logger = get_logger(__name__)

BOM = "\ufeff"
EXPERTISE_PROPERTY_KEY = "Expertise Check"

REQUIRED_HEADERS: dict[str, str] = {
    "full name": "Full Name",
    "expertise check": "Expertise Check",
    "learning session": "Learning Session",
}


class DomainKeyword(str, Enum):
    DOMAIN_EXPERT = "Domain Expert"
    TECH = "Tech"
    DESIGN = "Design"

    @property
    def domain_name(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class CSVImportPreviewRow:
    row_number: int
    full_name: str
    expertise_check: str
    learning_session: str
    is_valid: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class CSVImportCandidate:
    name: str
    expertise_raw: str
    domain_keyword: DomainKeyword | None
    session: LearningSession


@dataclass(slots=True)
class CSVImportResult:
    preview_rows: list[CSVImportPreviewRow] = field(default_factory=list)
    candidates: list[CSVImportCandidate] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.preview_rows)

    @property
    def valid_rows(self) -> int:
        return len(self.candidates)

    @property
    def skipped_rows(self) -> int:
        return max(0, self.total_rows - self.valid_rows)


def normalize_header(header: str) -> str:
    normalized = str(header).strip()
    if normalized.startswith(BOM):
        normalized = normalized[len(BOM) :].strip()
    return normalized.lower()


def header_map(headers: list[str]) -> dict[str, int]:
    """Lower-cased header -> column index; a repeated header keeps its last column."""
    return {normalize_header(h): index for index, h in enumerate(headers)}


def normalized_expertise(value: str) -> str:
    """Drop any parenthesised suffix, e.g. ``"Tech (iOS)"`` -> ``"Tech"``."""
    trimmed = value.strip()
    paren = trimmed.find("(")
    if paren >= 0:
        trimmed = trimmed[:paren].strip()
    return trimmed


def domain_keyword(value: str) -> DomainKeyword | None:
    lowered = value.lower()
    if "domain expert" in lowered:
        return DomainKeyword.DOMAIN_EXPERT
    if "tech" in lowered:
        return DomainKeyword.TECH
    if "design" in lowered:
        return DomainKeyword.DESIGN
    return None


def mapped_session(value: str) -> LearningSession:
    if "afternoon" in value.lower():
        return LearningSession.AFTERNOON
    return LearningSession.MORNING


def read_csv_rows(source: str | bytes | Path) -> list[list[str]]:
    """
    Read every row of ``source`` as strings.

    ``str`` is treated as CSV text, ``bytes`` as UTF-8 file content and
    ``Path`` as a file on disk. The header row fixes the width: cells past
    it (notes, trailing commas) are dropped and short rows are padded.
    """
    if isinstance(source, str):
        text = source[len(BOM) :] if source.startswith(BOM) else source
        buffer: io.StringIO | io.BytesIO | Path = io.StringIO(text)
    elif isinstance(source, bytes):
        buffer = io.BytesIO(source)
    else:
        buffer = source

    width = 0

    def keep_header_width(cells: list[str]) -> list[str]:
        return cells[:width]

    try:
        width = len(_read_frame(buffer, nrows=1).columns)
        if isinstance(buffer, (io.StringIO, io.BytesIO)):
            buffer.seek(0)
        frame = _read_frame(buffer, on_bad_lines=keep_header_width)
    except pd.errors.EmptyDataError as e:
        raise CSVImportError("The selected CSV file is empty.") from e
    except pd.errors.ParserError as e:
        raise CSVImportError(f"The CSV file could not be parsed: {e}") from e
    except UnicodeDecodeError as e:
        raise CSVImportError("The CSV file must be UTF-8 encoded.") from e
    except OSError as e:
        raise CSVImportError(f"The CSV file could not be read: {e}") from e

    frame = frame.fillna("")
    return [[str(cell) for cell in row] for row in frame.itertuples(index=False, name=None)]


def _read_frame(buffer: io.StringIO | io.BytesIO | Path, **options) -> pd.DataFrame:
    return pd.read_csv(
        buffer,
        header=None,
        dtype=str,
        keep_default_na=False,
        encoding="utf-8-sig",
        engine="python",
        **options,
    )


def _cell(row: list[str], index: int | None) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


def parse_student_csv(source: str | bytes | Path) -> CSVImportResult:
    """
    Parse a student roster into preview rows and import candidates.

    Raises:
        CSVImportError: If the file is empty, unreadable or lacks a required header

    Example:
        >>> result = parse_student_csv("Full Name,Expertise Check,Learning Session\\nAda,Tech,Morning\\n")
        >>> result.valid_rows
        1
    """
    rows = read_csv_rows(source)
    if not rows:
        raise CSVImportError("The selected CSV file is empty.")

    lookup = header_map(rows[0])
    missing = [display for key, display in REQUIRED_HEADERS.items() if key not in lookup]
    if missing:
        raise CSVImportError(
            f"Missing required headers: {', '.join(missing)}", missing_headers=missing
        )

    name_index = lookup["full name"]
    expertise_index = lookup["expertise check"]
    session_index = lookup["learning session"]

    result = CSVImportResult()
    seen_names: set[str] = set()

    for line_number, row in enumerate(rows[1:], start=2):
        if not any(cell.strip() for cell in row):
            continue

        full_name = _cell(row, name_index)
        expertise_raw = _cell(row, expertise_index)
        session_raw = _cell(row, session_index)
        normalized_name = full_name.lower()

        reason = None
        if not full_name:
            reason = "missing name"
        elif normalized_name in seen_names:
            reason = "duplicate name"

        result.preview_rows.append(
            CSVImportPreviewRow(
                row_number=line_number,
                full_name=full_name,
                expertise_check=expertise_raw,
                learning_session=session_raw,
                is_valid=reason is None,
                reason=reason,
            )
        )
        if reason is not None:
            continue

        seen_names.add(normalized_name)
        result.candidates.append(
            CSVImportCandidate(
                name=full_name,
                expertise_raw=expertise_raw,
                domain_keyword=domain_keyword(normalized_expertise(expertise_raw)),
                session=mapped_session(session_raw),
            )
        )

    logger.info(
        "Parsed student CSV: %d rows, %d valid, %d skipped",
        result.total_rows,
        result.valid_rows,
        result.skipped_rows,
    )
    return result
