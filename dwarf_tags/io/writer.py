"""
Writer — put the tags file and the optional JSON report on disk.

The tags text is produced completely in memory before this module is
called, so a failed run never leaves a partial tags file behind.
"""
import json
from pathlib import Path
from typing import Iterable

from dwarf_tags.core.tag_formatter import TagRecord, render_tags
from dwarf_tags.io.schema import IndexReport


def write_tags(
    records: Iterable[TagRecord],
    output_path: Path,
    header: bool = False,
) -> Path:
    """
    Write *records* to *output_path* as UTF-8 with ``\\n`` line endings.

    Creates the parent directory if it does not exist.
    Returns the output path.
    """
    text = render_tags(records, header=header)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(text.encode("utf-8"))
    return output_path


def write_report(report: IndexReport, report_path: Path) -> Path:
    """Write the run report as sorted, indented JSON."""
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(
        json.dumps(
            report.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n",
        encoding="utf-8",
    )
    return report_path
