"""
Error taxonomy for the indexing pipeline.

Fatal errors abort the run before anything is written.  Unit-level errors
are recoverable: the offending compilation unit is skipped and the run
continues with the next one.
"""
from typing import Optional


class DwarfTagsError(Exception):
    """Base class for every pipeline error."""

    exit_code = 1


# ── Fatal ────────────────────────────────────────────────────────────────────

class FormatError(DwarfTagsError):
    """Input is not a recognized ELF container (or its DWARF is unusable)."""

    exit_code = 3


class NoDebugInfo(DwarfTagsError):
    """Valid object file, but the debug sections are absent."""

    exit_code = 4

    def __init__(self, path: str, missing):
        self.path = path
        self.missing = list(missing)
        super().__init__(
            f"nothing to index: {path} has no {', '.join(self.missing)}"
        )


class TruncatedData(DwarfTagsError):
    """A declared length or offset runs past the end of its buffer."""

    exit_code = 5


# ── Recoverable (per compilation unit) ───────────────────────────────────────

class UnitDecodeError(DwarfTagsError):
    """A single compilation unit could not be decoded."""

    def __init__(self, unit_index: int, unit_offset: int, message: str):
        self.unit_index = unit_index
        self.unit_offset = unit_offset
        super().__init__(
            f"unit {unit_index} at {unit_offset:#x}: {message}"
        )


class CorruptAbbreviation(UnitDecodeError):
    """An entry references an abbreviation the unit's table cannot supply."""

    def __init__(
        self,
        unit_index: int,
        unit_offset: int,
        message: str,
        code: Optional[int] = None,
    ):
        self.code = code
        super().__init__(unit_index, unit_offset, message)


class LineTableError(UnitDecodeError):
    """The unit's line program header could not be decoded."""
