"""
Schema — Pydantic models for the JSON run report.

The tags file itself is plain text (see core.tag_formatter); the report
summarizes what the run indexed and what it had to skip.

Runtime contract fields (present in every output):
  package_name, tool_version, profile_id, schema_version.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from dwarf_tags import PACKAGE_NAME, SCHEMA_VERSION, TOOL_VERSION


# ── Per-unit warnings ────────────────────────────────────────────────────────

class UnitWarning(BaseModel):
    """A recoverable failure confined to one compilation unit."""

    unit_index: int
    unit_offset: str         # hex
    unit_name: Optional[str] = None
    reason: str              # CORRUPT_ABBREVIATION | UNIT_DECODE_ERROR | LINE_TABLE_ERROR
    detail: str


# ── Counts ───────────────────────────────────────────────────────────────────

class IndexCounts(BaseModel):
    units_total: int = 0
    units_skipped: int = 0
    subprograms: int = 0
    functions: int = 0           # FunctionRecords before dedup
    indexed: int = 0             # tag lines written
    duplicates: int = 0
    unresolved_files: int = 0
    skipped: Dict[str, int] = Field(default_factory=dict)   # SkipReason -> n


# ── Run report ───────────────────────────────────────────────────────────────

class IndexReport(BaseModel):
    """Run summary — written with --report."""

    package_name: str = PACKAGE_NAME
    tool_version: str = TOOL_VERSION
    schema_version: str = SCHEMA_VERSION
    profile_id: str

    object_path: str
    object_sha256: str
    machine: str
    elf_class: int
    byte_order: str

    verdict: str             # ACCEPT | WARN
    counts: IndexCounts = Field(default_factory=IndexCounts)
    warnings: List[UnitWarning] = Field(default_factory=list)

    output_path: Optional[str] = None

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
