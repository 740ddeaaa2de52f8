"""
Forms — closed classification of DWARF attribute forms.

Every DW_FORM_* maps to exactly one FormClass, and every FormClass has
exactly one decode rule.  pyelftools has already read the raw bytes (and
followed .debug_str / .debug_line_str / .debug_addr indirections where it
can); this module turns its AttributeValue into a DecodedValue.
"""
from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Callable, Dict, Optional


@unique
class FormClass(str, Enum):
    ADDRESS = "ADDRESS"
    CONSTANT = "CONSTANT"
    STRING = "STRING"
    REFERENCE = "REFERENCE"
    BLOCK = "BLOCK"
    FLAG = "FLAG"
    OFFSET = "OFFSET"
    OTHER = "OTHER"


FORM_CLASSES: Dict[str, FormClass] = {
    # addresses
    "DW_FORM_addr": FormClass.ADDRESS,
    "DW_FORM_addrx": FormClass.ADDRESS,
    "DW_FORM_addrx1": FormClass.ADDRESS,
    "DW_FORM_addrx2": FormClass.ADDRESS,
    "DW_FORM_addrx3": FormClass.ADDRESS,
    "DW_FORM_addrx4": FormClass.ADDRESS,
    "DW_FORM_GNU_addr_index": FormClass.ADDRESS,
    # inline constants
    "DW_FORM_data1": FormClass.CONSTANT,
    "DW_FORM_data2": FormClass.CONSTANT,
    "DW_FORM_data4": FormClass.CONSTANT,
    "DW_FORM_data8": FormClass.CONSTANT,
    "DW_FORM_data16": FormClass.CONSTANT,
    "DW_FORM_sdata": FormClass.CONSTANT,
    "DW_FORM_udata": FormClass.CONSTANT,
    "DW_FORM_implicit_const": FormClass.CONSTANT,
    # strings (inline or via a string table)
    "DW_FORM_string": FormClass.STRING,
    "DW_FORM_strp": FormClass.STRING,
    "DW_FORM_line_strp": FormClass.STRING,
    "DW_FORM_strp_sup": FormClass.STRING,
    "DW_FORM_strx": FormClass.STRING,
    "DW_FORM_strx1": FormClass.STRING,
    "DW_FORM_strx2": FormClass.STRING,
    "DW_FORM_strx3": FormClass.STRING,
    "DW_FORM_strx4": FormClass.STRING,
    "DW_FORM_GNU_str_index": FormClass.STRING,
    "DW_FORM_GNU_strp_alt": FormClass.STRING,
    # references to other entries
    "DW_FORM_ref1": FormClass.REFERENCE,
    "DW_FORM_ref2": FormClass.REFERENCE,
    "DW_FORM_ref4": FormClass.REFERENCE,
    "DW_FORM_ref8": FormClass.REFERENCE,
    "DW_FORM_ref_udata": FormClass.REFERENCE,
    "DW_FORM_ref_addr": FormClass.REFERENCE,
    "DW_FORM_ref_sig8": FormClass.REFERENCE,
    "DW_FORM_ref_sup4": FormClass.REFERENCE,
    "DW_FORM_ref_sup8": FormClass.REFERENCE,
    "DW_FORM_GNU_ref_alt": FormClass.REFERENCE,
    # blocks
    "DW_FORM_block": FormClass.BLOCK,
    "DW_FORM_block1": FormClass.BLOCK,
    "DW_FORM_block2": FormClass.BLOCK,
    "DW_FORM_block4": FormClass.BLOCK,
    "DW_FORM_exprloc": FormClass.BLOCK,
    # flags
    "DW_FORM_flag": FormClass.FLAG,
    "DW_FORM_flag_present": FormClass.FLAG,
    # offsets into other debug sections
    "DW_FORM_sec_offset": FormClass.OFFSET,
    "DW_FORM_loclistx": FormClass.OFFSET,
    "DW_FORM_rnglistx": FormClass.OFFSET,
}


@dataclass(frozen=True)
class DecodedValue:
    """One attribute value after form dispatch."""

    form_class: FormClass
    form: str
    value: Any


def form_class(form) -> FormClass:
    """Classify a form name; unknown or numeric forms are OTHER."""
    return FORM_CLASSES.get(form, FormClass.OTHER) if isinstance(form, str) else FormClass.OTHER


# ── Decode rules ─────────────────────────────────────────────────────────────

def _decode_address(value, byte_order: str) -> Optional[int]:
    return value if isinstance(value, int) else None


def _decode_constant(value, byte_order: str) -> Optional[int]:
    if isinstance(value, int):
        return value
    # DW_FORM_data16 comes back as raw bytes
    if isinstance(value, (bytes, bytearray, list)):
        return int.from_bytes(bytes(value), byte_order)
    return None


def _decode_string(value, byte_order: str) -> Optional[str]:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, str):
        return value
    # An index pyelftools could not follow (e.g. no .debug_str_offsets).
    return None


def _decode_reference(value, byte_order: str) -> Optional[int]:
    return value if isinstance(value, int) else None


def _decode_block(value, byte_order: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes(value or b"")


def _decode_flag(value, byte_order: str) -> bool:
    return bool(value)


def _decode_offset(value, byte_order: str) -> Optional[int]:
    return value if isinstance(value, int) else None


def _decode_other(value, byte_order: str):
    return value


_DECODERS: Dict[FormClass, Callable[[Any, str], Any]] = {
    FormClass.ADDRESS: _decode_address,
    FormClass.CONSTANT: _decode_constant,
    FormClass.STRING: _decode_string,
    FormClass.REFERENCE: _decode_reference,
    FormClass.BLOCK: _decode_block,
    FormClass.FLAG: _decode_flag,
    FormClass.OFFSET: _decode_offset,
    FormClass.OTHER: _decode_other,
}


def decode_attribute(attr, byte_order: str) -> DecodedValue:
    """
    Decode a pyelftools AttributeValue according to its form class.

    *byte_order* is the object's byte order ("little" / "big"); it is only
    consulted for multi-byte constants that arrive as raw bytes.
    """
    cls = form_class(attr.form)
    return DecodedValue(
        form_class=cls,
        form=str(attr.form),
        value=_DECODERS[cls](attr.value, byte_order),
    )
