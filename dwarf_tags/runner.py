"""
Index runner — top-level orchestration: object file → tags file + report.

This module ties core extraction, policy and IO together into a single
``run_index`` function that can be called from the CLI or from code.
"""
import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from dwarf_tags import __version__
from dwarf_tags.core.dwarf_loader import DwarfLoader
from dwarf_tags.core.elf_reader import ObjectFile
from dwarf_tags.core.errors import DwarfTagsError, UnitDecodeError
from dwarf_tags.core.file_resolver import FileResolver
from dwarf_tags.core.function_index import FunctionRecord, iter_unit_functions
from dwarf_tags.core.tag_formatter import TagSet, build_tag_records
from dwarf_tags.io.schema import IndexCounts, IndexReport, UnitWarning
from dwarf_tags.io.writer import write_report, write_tags
from dwarf_tags.policy.profile import Profile
from dwarf_tags.policy.verdict import (
    classify_unit_error,
    gate_object,
    overall_verdict,
)

logger = logging.getLogger(__name__)


def _unit_warning(err: UnitDecodeError, unit_name: Optional[str]) -> UnitWarning:
    return UnitWarning(
        unit_index=err.unit_index,
        unit_offset=hex(err.unit_offset),
        unit_name=unit_name,
        reason=classify_unit_error(err).value,
        detail=str(err),
    )


def run_index(
    object_path: str,
    profile: Profile | None = None,
    output_path: Path | None = None,
    report_path: Path | None = None,
) -> Tuple[IndexReport, TagSet]:
    """
    Index a single object file.

    Parameters
    ----------
    object_path : str
        Path to the ELF object file (executable, shared object or .o).
    profile : Profile, optional
        Output knobs.  Defaults to Profile.default().
    output_path : Path, optional
        Where to write the tags file.  If None, nothing is written
        (useful for tests and library callers).
    report_path : Path, optional
        Where to write the JSON run report.

    Returns
    -------
    (IndexReport, TagSet)

    Raises
    ------
    FormatError, NoDebugInfo, TruncatedData
        Fatal conditions.  Nothing is written when one is raised.
    """
    if profile is None:
        profile = Profile.default()

    # ── Step 1: load the object and gate on debug sections ───────────
    obj = ObjectFile.load(object_path)
    meta = obj.meta
    gate_object(meta, profile)

    # ── Step 2: walk every unit, resolving files as we go ────────────
    loader = DwarfLoader(obj)
    resolver = FileResolver(loader, absolute_paths=profile.absolute_paths)

    counts = IndexCounts()
    warnings: List[UnitWarning] = []
    failures = []
    pairs: List[Tuple[FunctionRecord, Optional[str]]] = []

    for unit in iter_unit_functions(loader):
        counts.units_total += 1
        handle = unit.handle

        if not unit.ok:
            counts.units_skipped += 1
            failures.append(classify_unit_error(unit.error))
            warnings.append(_unit_warning(unit.error, handle.name))
            continue

        counts.subprograms += unit.subprograms
        for reason, n in unit.skipped.items():
            counts.skipped[reason.value] = counts.skipped.get(reason.value, 0) + n

        if unit.functions:
            try:
                resolver.load(handle)
            except UnitDecodeError as e:
                # Functions survive with placeholder paths.
                logger.warning("%s", e)
                failures.append(classify_unit_error(e))
                warnings.append(_unit_warning(e, handle.name))

        for func in unit.functions:
            path = resolver.resolve(func.unit_index, func.file_index)
            if path is None:
                counts.unresolved_files += 1
            pairs.append((func, path))

    counts.functions = len(pairs)

    # ── Step 3: dedup, sort, render ──────────────────────────────────
    tags = build_tag_records(
        pairs,
        placeholder=profile.placeholder_path,
        kind=profile.kind,
    )
    counts.indexed = len(tags)
    counts.duplicates = tags.duplicates

    # ── Step 4: assemble outputs ─────────────────────────────────────
    if output_path is not None:
        write_tags(tags.records, output_path, header=profile.emit_header)

    report = IndexReport(
        profile_id=profile.profile_id,
        object_path=meta.path,
        object_sha256=meta.file_sha256,
        machine=meta.machine,
        elf_class=meta.elf_class,
        byte_order=meta.byte_order,
        verdict=overall_verdict(failures).value,
        counts=counts,
        warnings=warnings,
        output_path=str(output_path) if output_path is not None else None,
    )

    if report_path is not None:
        write_report(report, report_path)

    logger.info(
        "Indexed %d functions from %d units of %s (%d units skipped)",
        counts.indexed, counts.units_total, object_path, counts.units_skipped,
    )
    return report, tags


# ── CLI ──────────────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dwarf-tags",
        description="dwarf-tags — build a ctags file from the DWARF debug info of an ELF object",
    )
    parser.add_argument(
        "object_file",
        help="Path to the ELF object file to index",
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Tags file to write (default: ./tags)",
    )
    parser.add_argument(
        "--report",
        type=Path,
        default=None,
        help="Also write a JSON run report to this path",
    )
    parser.add_argument(
        "--absolute-paths",
        action="store_true",
        help="Prefix unit-relative paths with the compilation directory",
    )
    parser.add_argument(
        "--header",
        action="store_true",
        help="Emit the !_TAG_FILE_* pseudo-tag lines",
    )
    parser.add_argument(
        "--placeholder",
        default=None,
        help="Path written for functions whose file cannot be resolved (default: ??)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for dwarf-tags.  Returns the process exit code."""
    args = _build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    profile = Profile.default()
    overrides = {}
    if args.absolute_paths:
        overrides["absolute_paths"] = True
    if args.header:
        overrides["emit_header"] = True
    if args.placeholder is not None:
        overrides["placeholder_path"] = args.placeholder
    if overrides:
        profile = dataclasses.replace(profile, **overrides)

    output = args.output if args.output is not None else Path(profile.output_name)

    if not Path(args.object_file).is_file():
        logger.error("File not found: %s", args.object_file)
        return 1

    try:
        report, _ = run_index(
            args.object_file,
            profile=profile,
            output_path=output,
            report_path=args.report,
        )
    except DwarfTagsError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return e.exit_code
    except OSError as e:
        logger.error("I/O error: %s", e)
        return 1

    # Print summary
    c = report.counts
    print(f"Functions indexed: {c.indexed} "
          f"(duplicates={c.duplicates}, unresolved_files={c.unresolved_files})")
    print(f"Units: {c.units_total} (skipped={c.units_skipped})")
    if report.warnings:
        print(f"Warnings: {len(report.warnings)}")
        for w in report.warnings:
            print(f"  unit {w.unit_index} ({w.unit_offset}): {w.reason}")
    print(f"Tags written to: {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
