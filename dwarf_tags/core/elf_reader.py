"""
ELF reader — own the object-file buffer and expose its sections.

Responsibilities:
  - Read the whole file into memory and validate the ELF magic/header.
  - Build the section map name -> (offset, size) from the section header
    table, checking that every section fits inside the buffer.
  - Record byte order and address width from the header so every later
    decoder receives them explicitly.
  - Hand out section contents as views of the owned buffer.
  - Build the pyelftools DWARFInfo (relocations applied) on request.

This module intentionally does NOT decide whether there is anything to
index; the policy gate does that from ObjectMeta.
"""
import hashlib
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from elftools.common.exceptions import DWARFError, ELFError, ELFParseError
from elftools.dwarf.dwarfinfo import DWARFInfo
from elftools.elf.elffile import ELFFile

from dwarf_tags.core.errors import FormatError, TruncatedData

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"

DEBUG_INFO = ".debug_info"
DEBUG_ABBREV = ".debug_abbrev"
DEBUG_STR = ".debug_str"
DEBUG_LINE = ".debug_line"


@dataclass(frozen=True)
class SectionRange:
    """Location of one section inside the object-file buffer."""

    name: str
    offset: int
    size: int
    nobits: bool = False
    compressed: bool = False


@dataclass(frozen=True)
class ObjectMeta:
    """Structural metadata extracted from an ELF object file."""

    path: str
    file_sha256: str
    file_size: int

    # ELF header fields
    elf_class: int           # 32 or 64
    machine: str             # e.g. "EM_X86_64", "EM_386"
    byte_order: str          # "little" or "big"
    address_size: int        # 4 or 8

    # Debug section presence
    has_debug_info: bool
    has_debug_abbrev: bool
    has_debug_str: bool
    has_debug_line: bool
    debug_section_names: List[str] = field(default_factory=list)


SectionData = Union[memoryview, bytes]


class ObjectFile:
    """
    An ELF object file held fully in memory.

    Usage::

        obj = ObjectFile.load("prog.o")
        info = obj.section_bytes(".debug_info")
        dwarf = obj.dwarf_info()

    The buffer is never mutated; every section is handed out as a
    ``memoryview`` slice of it.
    """

    def __init__(self, buffer: bytes, path: str = "<memory>"):
        self._buffer = bytes(buffer)
        self._view = memoryview(self._buffer)
        self._path = path

        if self._buffer[:4] != ELF_MAGIC:
            raise FormatError(f"{path}: not an ELF object file (bad magic)")

        try:
            self._elffile = ELFFile(io.BytesIO(self._buffer))
        except ELFError as e:
            raise FormatError(f"{path}: invalid ELF header: {e}") from e

        self._byte_order = "little" if self._elffile.little_endian else "big"
        self._address_size = self._elffile.elfclass // 8
        self._sections = self._map_sections()

        logger.debug(
            "Loaded %s: ELF%d %s-endian, %d sections",
            path, self._elffile.elfclass, self._byte_order, len(self._sections),
        )

    # -- construction ----------------------------------------------------------

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ObjectFile":
        """Read *path* completely into memory and parse it."""
        p = Path(path)
        return cls(p.read_bytes(), str(p))

    @classmethod
    def from_bytes(cls, buffer: bytes, path: str = "<memory>") -> "ObjectFile":
        return cls(buffer, path)

    def _map_sections(self) -> Dict[str, SectionRange]:
        sections: Dict[str, SectionRange] = {}
        try:
            for section in self._elffile.iter_sections():
                header = section.header
                nobits = header["sh_type"] == "SHT_NOBITS"
                rng = SectionRange(
                    name=section.name,
                    offset=header["sh_offset"],
                    size=header["sh_size"],
                    nobits=nobits,
                    compressed=bool(getattr(section, "compressed", False)),
                )
                if not nobits and rng.offset + rng.size > len(self._buffer):
                    raise TruncatedData(
                        f"{self._path}: section {rng.name!r} "
                        f"[{rng.offset:#x}, +{rng.size:#x}) runs past end of "
                        f"file ({len(self._buffer):#x} bytes)"
                    )
                # First section wins on duplicate names.
                sections.setdefault(rng.name, rng)
        except ELFParseError as e:
            raise TruncatedData(
                f"{self._path}: section header table is truncated: {e}"
            ) from e
        except ELFError as e:
            raise FormatError(f"{self._path}: bad section header table: {e}") from e
        return sections

    # -- public API ------------------------------------------------------------

    @property
    def path(self) -> str:
        return self._path

    @property
    def byte_order(self) -> str:
        return self._byte_order

    @property
    def address_size(self) -> int:
        return self._address_size

    @property
    def elf_class(self) -> int:
        return self._elffile.elfclass

    @property
    def machine(self) -> str:
        return str(self._elffile.header["e_machine"])

    def section_names(self) -> List[str]:
        return list(self._sections)

    def section_range(self, name: str) -> Optional[SectionRange]:
        return self._sections.get(name)

    def has_section(self, name: str) -> bool:
        return name in self._sections

    def section_bytes(self, name: str) -> Optional[SectionData]:
        """
        Return the contents of section *name*, or None if it does not exist.

        Plain sections are zero-copy views into the owned buffer.
        ``SHF_COMPRESSED`` sections are returned decompressed.
        """
        rng = self._sections.get(name)
        if rng is None:
            return None
        if rng.nobits:
            return memoryview(b"")
        if rng.compressed:
            return self._elffile.get_section_by_name(name).data()
        return self._view[rng.offset:rng.offset + rng.size]

    def dwarf_info(self) -> DWARFInfo:
        """
        Build a pyelftools DWARFInfo over this object's debug sections.

        Relocations from ``.rel(a).debug_*`` are applied, which is what makes
        string offsets and low_pc values right in relocatable ``.o`` files.
        """
        try:
            return self._elffile.get_dwarf_info(relocate_dwarf_sections=True)
        except (ELFError, DWARFError) as e:
            raise FormatError(f"{self._path}: cannot load debug sections: {e}") from e

    @property
    def meta(self) -> ObjectMeta:
        names = self.section_names()
        return ObjectMeta(
            path=self._path,
            file_sha256=hashlib.sha256(self._buffer).hexdigest(),
            file_size=len(self._buffer),
            elf_class=self.elf_class,
            machine=self.machine,
            byte_order=self._byte_order,
            address_size=self._address_size,
            has_debug_info=DEBUG_INFO in names or ".zdebug_info" in names,
            has_debug_abbrev=DEBUG_ABBREV in names or ".zdebug_abbrev" in names,
            has_debug_str=DEBUG_STR in names or ".zdebug_str" in names,
            has_debug_line=DEBUG_LINE in names or ".zdebug_line" in names,
            debug_section_names=[
                n for n in names if n.startswith((".debug_", ".zdebug_"))
            ],
        )


def read_object(path: str) -> ObjectMeta:
    """
    Open *path* as an ELF object file and return structural metadata.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    FormatError
        If the file is not a valid ELF object.
    TruncatedData
        If a section runs past the end of the file.
    """
    return ObjectFile.load(path).meta

