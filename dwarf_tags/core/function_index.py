"""
Function index — walk each CU's entries and collect indexable subprograms.

Responsibilities:
  - Load the unit's abbreviation table from .debug_abbrev.
  - Walk the DIE stream of a CU in one linear pass, tracking nesting
    depth with an explicit counter (no parent/child object tree).
  - Decode attributes through the closed form-class dispatch in
    core.forms.
  - Turn DW_TAG_subprogram entries into FunctionRecords when they have
    code (DW_AT_low_pc), a name and a declaration line; count the rest
    by SkipReason.
  - Isolate unit-local failures: a unit whose entries cannot be decoded
    contributes no functions and the walk moves on to the next unit.

References (DW_AT_abstract_origin, DW_AT_specification) are never chased:
an entry is judged on the attributes it carries itself.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Iterator, List, Optional, Tuple

from elftools.common.exceptions import DWARFError, ELFError
from elftools.dwarf.die import DIE

from dwarf_tags.core.dwarf_loader import DwarfLoader, UnitHandle
from dwarf_tags.core.errors import CorruptAbbreviation, UnitDecodeError
from dwarf_tags.core.forms import DecodedValue, FormClass, decode_attribute

logger = logging.getLogger(__name__)

_UNIT_TAGS = frozenset({
    "DW_TAG_compile_unit",
    "DW_TAG_partial_unit",
    "DW_TAG_skeleton_unit",
    "DW_TAG_type_unit",
})


@unique
class EntryKind(str, Enum):
    COMPILE_UNIT = "COMPILE_UNIT"
    SUBPROGRAM = "SUBPROGRAM"
    OTHER = "OTHER"


@unique
class SkipReason(str, Enum):
    NO_LOW_PC = "NO_LOW_PC"      # declaration / prototype, no code
    NO_NAME = "NO_NAME"          # anonymous, or name only via abstract origin
    NO_LINE = "NO_LINE"          # no DW_AT_decl_line on the entry itself


@dataclass(frozen=True)
class DebugEntry:
    """One decoded DIE, positioned by its depth inside the unit tree."""

    offset: int
    tag: str
    kind: EntryKind
    depth: int
    has_children: bool
    attributes: Tuple[Tuple[str, DecodedValue], ...] = ()

    def get(self, name: str) -> Optional[DecodedValue]:
        for attr_name, value in self.attributes:
            if attr_name == name:
                return value
        return None

    def has(self, name: str) -> bool:
        return self.get(name) is not None


@dataclass(frozen=True)
class FunctionRecord:
    """A function with code, a name and a declaration line."""

    name: str
    file_index: Optional[int]     # raw DW_AT_decl_file (before resolution)
    line: int
    address: int                  # DW_AT_low_pc, unsigned 64-bit
    unit_index: int
    die_offset: int


@dataclass
class UnitFunctions:
    """Everything one unit contributed to the index."""

    handle: UnitHandle
    functions: List[FunctionRecord] = field(default_factory=list)
    skipped: Counter = field(default_factory=Counter)
    subprograms: int = 0
    error: Optional[UnitDecodeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _entry_kind(tag) -> EntryKind:
    if tag == "DW_TAG_subprogram":
        return EntryKind.SUBPROGRAM
    if tag in _UNIT_TAGS:
        return EntryKind.COMPILE_UNIT
    return EntryKind.OTHER


# ── Abbreviations ────────────────────────────────────────────────────────────

def load_abbreviations(handle: UnitHandle):
    """
    Decode the unit's abbreviation table (code -> attribute/form list).

    pyelftools parses the table from the offset in the unit header up to
    the terminating null code, and caches it by offset.
    """
    try:
        return handle.cu.get_abbrev_table()
    except (KeyError, ValueError, ELFError, DWARFError) as e:
        raise CorruptAbbreviation(
            handle.unit_index,
            handle.unit_offset,
            f"abbreviation table at {handle.cu['debug_abbrev_offset']:#x} "
            f"cannot be decoded: {e}",
        ) from e


# ── Walk ─────────────────────────────────────────────────────────────────────

def _read_die(handle: UnitHandle, stream, offset: int) -> DIE:
    try:
        return DIE(cu=handle.cu, stream=stream, offset=offset)
    except KeyError as e:
        # Unknown abbreviation code, or a form code no table knows.
        code = e.args[0] if e.args and isinstance(e.args[0], int) else None
        raise CorruptAbbreviation(
            handle.unit_index,
            handle.unit_offset,
            f"entry at {offset:#x} references unknown abbreviation/form {e}",
            code=code,
        ) from e
    except (ValueError, ELFError, DWARFError) as e:
        raise UnitDecodeError(
            handle.unit_index,
            handle.unit_offset,
            f"entry at {offset:#x} cannot be decoded: {e}",
        ) from e


def walk_unit(handle: UnitHandle) -> Iterator[DebugEntry]:
    """
    Yield the unit's entries in stream order with their nesting depth.

    The unit's top entry has depth 0.  A null entry closes the innermost
    open sibling list; the walk stops once the top entry's children are
    closed or the unit's bytes are exhausted.
    """
    load_abbreviations(handle)

    byte_order = handle.ctx.byte_order
    stream = handle.cu.dwarfinfo.debug_info_sec.stream
    offset = handle.cu.cu_die_offset
    end = handle.ctx.end_offset
    depth = 0

    while offset < end:
        die = _read_die(handle, stream, offset)
        if die.size <= 0:
            raise UnitDecodeError(
                handle.unit_index, handle.unit_offset,
                f"zero-length entry at {offset:#x}",
            )
        offset += die.size

        if die.is_null():
            depth -= 1
            if depth <= 0:
                break
            continue

        yield DebugEntry(
            offset=die.offset,
            tag=str(die.tag),
            kind=_entry_kind(die.tag),
            depth=depth,
            has_children=die.has_children,
            attributes=tuple(
                (str(name), decode_attribute(attr, byte_order))
                for name, attr in die.attributes.items()
            ),
        )

        if die.has_children:
            depth += 1
        elif depth == 0:
            # Childless top entry: nothing else belongs to this unit.
            break

    if offset > end:
        raise UnitDecodeError(
            handle.unit_index, handle.unit_offset,
            f"entries run past unit end {end:#x}",
        )


# ── Subprogram extraction ────────────────────────────────────────────────────

def judge_subprogram(
    has_low_pc: bool,
    name: Optional[str],
    line: Optional[int],
) -> Optional[SkipReason]:
    """Return why a subprogram cannot be indexed, or None if it can."""
    if not has_low_pc:
        return SkipReason.NO_LOW_PC
    if not name:
        return SkipReason.NO_NAME
    if line is None:
        return SkipReason.NO_LINE
    return None


def _value(entry: DebugEntry, name: str, *classes: FormClass):
    decoded = entry.get(name)
    if decoded is None or decoded.form_class not in classes:
        return None
    return decoded.value


def extract_function(
    entry: DebugEntry,
    handle: UnitHandle,
) -> Tuple[Optional[FunctionRecord], Optional[SkipReason]]:
    """Build a FunctionRecord from a subprogram entry, or say why not."""
    low_pc = _value(entry, "DW_AT_low_pc", FormClass.ADDRESS)
    name = _value(entry, "DW_AT_name", FormClass.STRING)
    line = _value(entry, "DW_AT_decl_line", FormClass.CONSTANT)
    file_index = _value(entry, "DW_AT_decl_file", FormClass.CONSTANT)

    reason = judge_subprogram(low_pc is not None, name, line)
    if reason is not None:
        return None, reason

    return FunctionRecord(
        name=name,
        file_index=file_index,
        line=line,
        address=low_pc & 0xFFFFFFFFFFFFFFFF,
        unit_index=handle.unit_index,
        die_offset=entry.offset,
    ), None


def index_unit(handle: UnitHandle) -> UnitFunctions:
    """
    Walk one unit completely and collect its FunctionRecords.

    Raises UnitDecodeError (or CorruptAbbreviation) if any entry of the
    unit cannot be decoded; partial results are discarded.
    """
    result = UnitFunctions(handle=handle)
    for entry in walk_unit(handle):
        if entry.kind is not EntryKind.SUBPROGRAM:
            continue
        result.subprograms += 1
        record, reason = extract_function(entry, handle)
        if record is None:
            result.skipped[reason] += 1
            logger.debug(
                "Skipping subprogram at %#x in unit %d: %s",
                entry.offset, handle.unit_index, reason.value,
            )
            continue
        result.functions.append(record)
    return result


def iter_unit_functions(loader: DwarfLoader) -> Iterator[UnitFunctions]:
    """
    Lazily index every unit of *loader*.

    A unit-local failure yields a UnitFunctions with ``error`` set and no
    functions; the iteration continues with the next unit.  Fatal errors
    (TruncatedData, FormatError) propagate from the loader.
    """
    for handle in loader.iter_units():
        try:
            unit = index_unit(handle)
        except UnitDecodeError as e:
            logger.warning("Skipping unit %d at %#x: %s",
                           handle.unit_index, handle.unit_offset, e)
            unit = UnitFunctions(handle=handle, error=e)
        yield unit


def iter_functions(loader: DwarfLoader) -> Iterator[FunctionRecord]:
    """FunctionRecords of every unit that decoded cleanly."""
    for unit in iter_unit_functions(loader):
        yield from unit.functions
