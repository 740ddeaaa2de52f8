"""
dwarf_tags — ctags index generator driven by DWARF debug information.

Reads one ELF object file, walks the subprogram entries of every
compilation unit and writes a sorted, deduplicated tags file.
"""

__version__ = "0.1.0"
TOOL_VERSION = "v0.1"
PACKAGE_NAME = "dwarf_tags"
SCHEMA_VERSION = "0.1"
