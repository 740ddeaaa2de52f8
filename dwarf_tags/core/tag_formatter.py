"""
Tag formatter — merge resolved functions into sorted, unique tag lines.

Pure functions, no IO.  Output for a given set of inputs is
byte-identical no matter the order the inputs arrive in.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from dwarf_tags.core.function_index import FunctionRecord

HEADER_LINES = (
    '!_TAG_FILE_FORMAT\t2\t/extended format; --format=1 will not append ;" to lines/',
    "!_TAG_FILE_SORTED\t1\t/0=unsorted, 1=sorted, 2=foldcase/",
)


@dataclass(frozen=True)
class TagRecord:
    """One line of the tags file."""

    name: str
    path: str
    line: int
    kind: str = "f"

    @property
    def key(self) -> Tuple[str, str, int]:
        return (self.name, self.path, self.line)


@dataclass
class TagSet:
    records: List[TagRecord] = field(default_factory=list)
    duplicates: int = 0

    def __len__(self) -> int:
        return len(self.records)


def build_tag_records(
    pairs: Iterable[Tuple[FunctionRecord, Optional[str]]],
    placeholder: str = "??",
    kind: str = "f",
) -> TagSet:
    """
    Deduplicate and sort (FunctionRecord, resolved path) pairs.

    Unresolved paths become *placeholder*.  Records sharing
    (name, path, line) collapse into one; the address plays no part.
    The result is sorted by name, then path, then line.  Python string
    order is code-point order, which matches UTF-8 byte order.
    """
    unique: Dict[Tuple[str, str, int], TagRecord] = {}
    seen = 0
    for func, path in pairs:
        seen += 1
        record = TagRecord(
            name=func.name,
            path=path if path is not None else placeholder,
            line=func.line,
            kind=kind,
        )
        unique[record.key] = record

    records = sorted(unique.values(), key=lambda r: r.key)
    return TagSet(records=records, duplicates=seen - len(records))


def format_tag_line(record: TagRecord) -> str:
    """``<name>\\t<path>\\t<line>;"\\t<kind>``"""
    return f'{record.name}\t{record.path}\t{record.line};"\t{record.kind}'


def render_tags(records: Iterable[TagRecord], header: bool = False) -> str:
    """Full tags file text, every line newline-terminated."""
    lines: List[str] = list(HEADER_LINES) if header else []
    lines.extend(format_tag_line(r) for r in records)
    return "".join(line + "\n" for line in lines)
