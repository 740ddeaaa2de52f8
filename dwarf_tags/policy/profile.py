"""
Profile — output and policy knobs for one indexing run.

The profile encapsulates every tunable so that core extraction logic
contains no opinions.  CLI flags produce a modified copy through
``dataclasses.replace``.
"""
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Profile:
    """Describes what the indexer requires and how it writes tags."""

    # Identity
    profile_id: str

    # Sections without which there is nothing to index
    required_sections: Tuple[str, ...] = (".debug_info", ".debug_abbrev")

    # Path written when a file index cannot be resolved
    placeholder_path: str = "??"

    # Prefix unit-relative paths with DW_AT_comp_dir
    absolute_paths: bool = False

    # Emit the !_TAG_FILE_* pseudo-tag header lines
    emit_header: bool = False

    # ctags kind letter for every record
    kind: str = "f"

    output_name: str = "tags"

    @classmethod
    def default(cls) -> "Profile":
        """The default profile: unit-relative paths, no header."""
        return cls(profile_id="ctags-functions-v0")
