"""
File resolver — turn DW_AT_decl_file indices into source paths.

Responsibilities:
  - Parse the line program header of a CU (.debug_line at the CU's
    DW_AT_stmt_list offset) and build its file table.
  - Handle both header layouts: the flat include_directories /
    file_names lists of DWARF 2-4 and the entry-format tables of DWARF 5.
  - Join directory and file name; directory 0 is the compilation
    directory, so such files stay unit-relative unless absolute paths
    are requested.
  - Resolve (unit_index, file_index) -> path, adjusting for the 1-based
    (DWARF <= 4) vs 0-based (DWARF 5) index base.

An unresolvable index is not an error: resolve() returns None and the
formatter writes a placeholder.
"""
import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, List, Optional

from elftools.common.exceptions import DWARFError, ELFError

from dwarf_tags.core.dwarf_loader import DwarfLoader, UnitHandle
from dwarf_tags.core.errors import LineTableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileTable:
    """Resolved source paths of one CU, indexed from ``base``."""

    version: int = 0
    base: int = 1
    paths: List[str] = field(default_factory=list)

    def lookup(self, file_index: Optional[int]) -> Optional[str]:
        if file_index is None:
            return None
        idx = file_index - self.base
        if idx < 0 or idx >= len(self.paths):
            return None
        return self.paths[idx]

    def __len__(self) -> int:
        return len(self.paths)


def _text(raw) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


def _field(entry, *names):
    """First present field of a line-header entry (v4 or v5 naming)."""
    for name in names:
        try:
            value = entry[name]
        except (KeyError, TypeError):
            value = getattr(entry, name, None)
        if value is not None:
            return value
    return None


def _directory(entry) -> str:
    # DWARF 2-4: plain strings; DWARF 5: entries keyed by content type
    if isinstance(entry, (bytes, str)):
        return _text(entry)
    return _text(_field(entry, "DW_LNCT_path", "name"))


def _join(directory: str, name: str) -> str:
    if not directory:
        return name
    return str(PurePosixPath(directory) / name)


def build_file_table(
    line_program,
    comp_dir: Optional[str] = None,
    absolute: bool = False,
) -> FileTable:
    """
    Build the FileTable for one CU from its pyelftools LineProgram.

    Directory index 0 denotes the compilation directory in every DWARF
    version, so those files are returned as written.  With *absolute*,
    relative results are prefixed with *comp_dir*.
    """
    header = line_program.header
    version = header["version"]
    base = 0 if version >= 5 else 1

    directories = [_directory(d) for d in header.get("include_directory", [])]

    paths: List[str] = []
    for entry in header.get("file_entry", []):
        name = _text(_field(entry, "name", "DW_LNCT_path"))
        dir_index = _field(entry, "dir_index", "DW_LNCT_directory_index") or 0

        directory = ""
        if dir_index > 0:
            # include_directory is 0-based in the header array, but
            # dir_index is 1-based before DWARF 5.
            adj = dir_index if version >= 5 else dir_index - 1
            if 0 <= adj < len(directories):
                directory = directories[adj]

        full = _join(directory, name)
        if absolute and comp_dir and not PurePosixPath(full).is_absolute():
            full = _join(comp_dir, full)
        paths.append(full)

    return FileTable(version=version, base=base, paths=paths)


class FileResolver:
    """
    Per-unit file tables, loaded on demand and cached by unit index.

    Usage::

        resolver = FileResolver(loader, absolute_paths=True)
        resolver.load(handle)
        path = resolver.resolve(handle.unit_index, record.file_index)
    """

    def __init__(self, loader: DwarfLoader, absolute_paths: bool = False):
        self._loader = loader
        self._absolute_paths = absolute_paths
        self._tables: Dict[int, FileTable] = {}

    def load(self, handle: UnitHandle) -> FileTable:
        """
        Parse and cache the file table of *handle*'s unit.

        A unit without DW_AT_stmt_list gets an empty table.  A line
        program that cannot be decoded raises LineTableError after an
        empty table has been cached, so every index of that unit
        resolves to None.
        """
        cached = self._tables.get(handle.unit_index)
        if cached is not None:
            return cached

        self._tables[handle.unit_index] = FileTable()
        if self._loader.dwarf.debug_line_sec is None:
            return self._tables[handle.unit_index]
        try:
            line_program = self._loader.dwarf.line_program_for_CU(handle.cu)
            if line_program is None:
                logger.debug("Unit %d has no line program", handle.unit_index)
                return self._tables[handle.unit_index]
            table = build_file_table(
                line_program,
                comp_dir=handle.comp_dir,
                absolute=self._absolute_paths,
            )
        except (KeyError, ValueError, ELFError, DWARFError) as e:
            raise LineTableError(
                handle.unit_index,
                handle.unit_offset,
                f"line program cannot be decoded: {e}",
            ) from e

        self._tables[handle.unit_index] = table
        return table

    def table(self, unit_index: int) -> Optional[FileTable]:
        return self._tables.get(unit_index)

    def resolve(self, unit_index: int, file_index: Optional[int]) -> Optional[str]:
        """Path for *file_index* in unit *unit_index*, or None."""
        table = self._tables.get(unit_index)
        if table is None:
            return None
        return table.lookup(file_index)
