"""
Verdict — run-level gate and outcome classification.

Two layers:
  1. Object-level gate  (gate_object)    — is there anything to index?
  2. Run-level verdict  (overall_verdict) — did every unit index cleanly?

Per-subprogram skip reasons live with the walker in core.function_index.
"""
from enum import Enum, unique
from typing import List, Sequence

from dwarf_tags.core.elf_reader import ObjectMeta
from dwarf_tags.core.errors import (
    CorruptAbbreviation,
    LineTableError,
    NoDebugInfo,
    UnitDecodeError,
)
from dwarf_tags.policy.profile import Profile


# ── Verdict enum ──────────────────────────────────────────────────────────────

@unique
class Verdict(str, Enum):
    ACCEPT = "ACCEPT"
    WARN = "WARN"


# ── Unit-level failure reasons ───────────────────────────────────────────────

@unique
class UnitFailureReason(str, Enum):
    CORRUPT_ABBREVIATION = "CORRUPT_ABBREVIATION"
    UNIT_DECODE_ERROR = "UNIT_DECODE_ERROR"
    LINE_TABLE_ERROR = "LINE_TABLE_ERROR"


def classify_unit_error(err: UnitDecodeError) -> UnitFailureReason:
    if isinstance(err, CorruptAbbreviation):
        return UnitFailureReason.CORRUPT_ABBREVIATION
    if isinstance(err, LineTableError):
        return UnitFailureReason.LINE_TABLE_ERROR
    return UnitFailureReason.UNIT_DECODE_ERROR


# ── Object gate ──────────────────────────────────────────────────────────────

_PRESENCE = {
    ".debug_info": "has_debug_info",
    ".debug_abbrev": "has_debug_abbrev",
    ".debug_str": "has_debug_str",
    ".debug_line": "has_debug_line",
}


def missing_sections(meta: ObjectMeta, profile: Profile) -> List[str]:
    """Required sections absent from *meta*, in profile order."""
    missing: List[str] = []
    for name in profile.required_sections:
        flag = _PRESENCE.get(name)
        present = getattr(meta, flag) if flag else name in meta.debug_section_names
        if not present:
            missing.append(name)
    return missing


def gate_object(meta: ObjectMeta, profile: Profile) -> None:
    """
    Raise NoDebugInfo if the object lacks a section the profile requires.

    A stripped binary lands here, as opposed to a corrupt one, which
    fails earlier with FormatError.
    """
    missing = missing_sections(meta, profile)
    if missing:
        raise NoDebugInfo(meta.path, missing)


# ── Run verdict ──────────────────────────────────────────────────────────────

def overall_verdict(failures: Sequence[UnitFailureReason]) -> Verdict:
    return Verdict.WARN if failures else Verdict.ACCEPT
