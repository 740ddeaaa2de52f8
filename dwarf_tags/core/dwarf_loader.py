"""
DWARF loader — load DWARFInfo and iterate Compilation Units.

Responsibilities:
  - Obtain a DWARFInfo handle from a loaded ObjectFile.
  - Iterate CU headers in .debug_info order and yield UnitHandle
    descriptors carrying the explicit per-unit decoding context.
  - Reject units whose declared length runs past the section (fatal).
"""
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from elftools.common.exceptions import DWARFError, ELFError, ELFParseError
from elftools.dwarf.compileunit import CompileUnit
from elftools.dwarf.dwarfinfo import DWARFInfo

from dwarf_tags.core.elf_reader import ObjectFile
from dwarf_tags.core.errors import FormatError, TruncatedData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitContext:
    """Decoding context for one compilation unit, passed explicitly."""

    unit_index: int          # 0-based sequential index
    unit_offset: int         # byte offset of the CU header in .debug_info
    end_offset: int          # one past the last byte of the unit
    version: int             # DWARF version of the unit header
    address_size: int        # from the unit header
    dwarf_format: int        # 32 or 64 (initial length encoding)
    byte_order: str          # "little" or "big", from the ELF header


@dataclass
class UnitHandle:
    """Lightweight descriptor for a single Compilation Unit."""

    ctx: UnitContext
    name: Optional[str]      # DW_AT_name (main source file)
    comp_dir: Optional[str]  # DW_AT_comp_dir (build directory)
    cu: CompileUnit          # pyelftools CU object (needed by walker/resolver)

    @property
    def unit_index(self) -> int:
        return self.ctx.unit_index

    @property
    def unit_offset(self) -> int:
        return self.ctx.unit_offset


def _decode_str(raw) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


class DwarfLoader:
    """
    Holds an ObjectFile and its DWARFInfo.

    Usage::

        loader = DwarfLoader(obj)
        for handle in loader.iter_units():
            ...

    The DWARFInfo is built on first access; the object buffer stays
    owned by the ObjectFile.
    """

    def __init__(self, obj: ObjectFile):
        self._obj = obj
        self._dwarfinfo: Optional[DWARFInfo] = None

    @property
    def obj(self) -> ObjectFile:
        return self._obj

    @property
    def dwarf(self) -> DWARFInfo:
        if self._dwarfinfo is None:
            self._dwarfinfo = self._obj.dwarf_info()
        return self._dwarfinfo

    def iter_units(self) -> Iterator[UnitHandle]:
        """Yield a UnitHandle for every Compilation Unit, in stream order."""
        dwarf = self.dwarf
        section_size = dwarf.debug_info_sec.size
        units = dwarf.iter_CUs()
        idx = 0
        while True:
            try:
                cu = next(units)
            except StopIteration:
                return
            except ELFParseError as e:
                raise TruncatedData(
                    f"{self._obj.path}: unit header {idx} cannot be decoded: {e}"
                ) from e
            except (ELFError, DWARFError) as e:
                raise FormatError(
                    f"{self._obj.path}: unsupported unit header {idx}: {e}"
                ) from e

            ctx = _unit_context(cu, idx, self._obj.byte_order)
            if ctx.end_offset > section_size:
                raise TruncatedData(
                    f"{self._obj.path}: unit {idx} at {ctx.unit_offset:#x} "
                    f"declares {ctx.end_offset - ctx.unit_offset:#x} bytes but "
                    f"only {section_size - ctx.unit_offset:#x} remain in .debug_info"
                )

            name, comp_dir = _unit_names(cu)
            logger.debug(
                "Unit %d at %#x: DWARF %d, %d-byte addresses, name=%s",
                idx, ctx.unit_offset, ctx.version, ctx.address_size, name,
            )
            yield UnitHandle(ctx=ctx, name=name, comp_dir=comp_dir, cu=cu)
            idx += 1


def _unit_context(cu: CompileUnit, idx: int, byte_order: str) -> UnitContext:
    structs = cu.structs
    end = cu.cu_offset + cu["unit_length"] + structs.initial_length_field_size()
    return UnitContext(
        unit_index=idx,
        unit_offset=cu.cu_offset,
        end_offset=end,
        version=cu["version"],
        address_size=cu["address_size"],
        dwarf_format=structs.dwarf_format,
        byte_order=byte_order,
    )


def _unit_names(cu: CompileUnit):
    """DW_AT_name / DW_AT_comp_dir of the unit's top DIE, if decodable."""
    try:
        attrs = cu.get_top_DIE().attributes
    except (KeyError, ELFError, DWARFError) as e:
        # The walker reports this unit; nothing to name it by here.
        logger.debug("Top DIE of unit at %#x not decodable: %s", cu.cu_offset, e)
        return None, None

    name = _decode_str(attrs["DW_AT_name"].value) if "DW_AT_name" in attrs else None
    comp_dir = (
        _decode_str(attrs["DW_AT_comp_dir"].value)
        if "DW_AT_comp_dir" in attrs else None
    )
    return name, comp_dir
