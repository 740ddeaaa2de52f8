"""
Shared pytest fixtures for dwarf_tags tests.

Two sources of test objects:

  - On-the-fly compilation of minimal C programs with gcc, producing
    real ELF executables and relocatable objects.  Skipped when gcc is
    missing or does not produce ELF (native Windows).
  - Hand-assembled ELF files carrying a tiny DWARF 4 payload
    (.debug_abbrev / .debug_info / .debug_str / .debug_line).  These
    need no toolchain and let tests state exact expected output,
    corrupt a single unit, flip byte order or use 32-bit addresses.
"""
import itertools
import platform
import shutil
import struct
import subprocess
import tempfile
import textwrap
from pathlib import Path

import pytest

# Minimal C source that compiles to a small binary with a few functions.
MINIMAL_C = textwrap.dedent("""\
    #include <stdio.h>

    int add(int a, int b) {
        int result = a + b;
        return result;
    }

    int multiply(int x, int y) {
        return x * y;
    }

    int main(void) {
        int sum = add(3, 4);
        int prod = multiply(sum, 2);
        printf("sum=%d prod=%d\\n", sum, prod);
        return 0;
    }
""")

# Nested scopes: the lexical block inside `scoped` must not hide `after`.
NESTED_C = textwrap.dedent("""\
    static int scoped(int n) {
        int total = 0;
        {
            int i;
            for (i = 0; i < n; i++) {
                total += i;
            }
        }
        return total;
    }

    int after(int n) {
        return scoped(n) + 1;
    }

    int main(void) {
        return after(3);
    }
""")


# ── gcc-built fixtures ───────────────────────────────────────────────────────

def _gcc_available() -> bool:
    """Check if gcc is in PATH."""
    return shutil.which("gcc") is not None


def _gcc_produces_elf() -> bool:
    """Test if gcc produces ELF binaries (Linux/WSL) vs PE executables (Windows)."""
    if not _gcc_available():
        return False

    if platform.system() == "Windows":
        # Could be WSL - test by compiling
        pass

    with tempfile.TemporaryDirectory() as tmpdir:
        test_c = Path(tmpdir) / "test.c"
        test_out = Path(tmpdir) / "test_out"
        test_c.write_text("int main() { return 0; }")

        try:
            subprocess.run(
                ["gcc", str(test_c), "-o", str(test_out)],
                check=True,
                capture_output=True,
                timeout=10,
            )
            if test_out.exists():
                binary = test_out
            elif test_out.with_suffix(".exe").exists():
                binary = test_out.with_suffix(".exe")
            else:
                return False

            # ELF = 0x7F 'E' 'L' 'F', PE = 'M' 'Z'
            return binary.read_bytes()[:4] == b"\x7fELF"

        except (OSError, subprocess.SubprocessError):
            return False


def _compile(
    source: str,
    output: Path,
    opt: str = "O0",
    strip: bool = False,
    object_only: bool = False,
) -> Path:
    """Compile C source with gcc; returns the path of the produced file."""
    src_file = output.with_suffix(".c")
    src_file.write_text(source)
    cmd = [
        "gcc",
        f"-{opt}",
        "-g",
        "-std=c11",
        "-fno-omit-frame-pointer",
    ]
    if object_only:
        cmd.append("-c")
    cmd += [str(src_file), "-o", str(output)]
    subprocess.run(cmd, check=True, capture_output=True, timeout=30)

    if not output.exists() and output.with_suffix(".exe").exists():
        output = output.with_suffix(".exe")

    if strip:
        subprocess.run(["strip", "--strip-all", str(output)], check=True, timeout=10)

    return output


@pytest.fixture(scope="session")
def gcc_ok():
    """Skip tests if gcc is not available or doesn't produce ELF binaries."""
    if not _gcc_available():
        pytest.skip("gcc not available - install gcc to run these tests")

    if not _gcc_produces_elf():
        pytest.skip(
            "gcc does not produce ELF binaries (likely native Windows). "
            "dwarf_tags requires ELF objects with DWARF debug info."
        )


@pytest.fixture(scope="session")
def fixtures_dir(tmp_path_factory, gcc_ok) -> Path:
    """Session-scoped temp directory with compiled test binaries."""
    return tmp_path_factory.mktemp("dwarf_tags_fixtures")


@pytest.fixture(scope="session")
def debug_binary_O0(fixtures_dir) -> Path:
    """Minimal C program linked at -O0 with full debug info."""
    return _compile(MINIMAL_C, fixtures_dir / "minimal_O0", opt="O0")


@pytest.fixture(scope="session")
def debug_object_O0(fixtures_dir) -> Path:
    """Minimal C program compiled (not linked) to a relocatable .o."""
    return _compile(MINIMAL_C, fixtures_dir / "minimal_obj.o", opt="O0", object_only=True)


@pytest.fixture(scope="session")
def stripped_binary(fixtures_dir) -> Path:
    """Minimal C program compiled and stripped (no debug info)."""
    return _compile(MINIMAL_C, fixtures_dir / "minimal_stripped", opt="O0", strip=True)


@pytest.fixture(scope="session")
def nested_binary(fixtures_dir) -> Path:
    """Program with a lexical block nested inside a function."""
    return _compile(NESTED_C, fixtures_dir / "nested_O0", opt="O0")


@pytest.fixture
def not_elf(tmp_path) -> Path:
    """A file that is not an ELF binary."""
    p = tmp_path / "not_an_elf"
    p.write_bytes(b"This is not an ELF file.\x00\x00\x00")
    return p


# ── Hand-assembled ELF/DWARF fixtures ────────────────────────────────────────

DW_TAG_compile_unit = 0x11
DW_TAG_subprogram = 0x2E
DW_TAG_lexical_block = 0x0B

DW_AT_name = 0x03
DW_AT_stmt_list = 0x10
DW_AT_low_pc = 0x11
DW_AT_comp_dir = 0x1B
DW_AT_decl_file = 0x3A
DW_AT_decl_line = 0x3B
DW_AT_declaration = 0x3C

DW_FORM_addr = 0x01
DW_FORM_data2 = 0x05
DW_FORM_string = 0x08
DW_FORM_data1 = 0x0B
DW_FORM_strp = 0x0E
DW_FORM_sec_offset = 0x17
DW_FORM_flag_present = 0x19

ABBREV_CU = 1
ABBREV_FUNC = 2
ABBREV_DECL = 3
ABBREV_PARENT = 4
ABBREV_BLOCK = 5
ABBREV_ANON = 6
ABBREV_NO_LINE = 7
BAD_ABBREV = 0x7F   # never declared

SHT_PROGBITS = 1
SHT_STRTAB = 3

EM_386 = 3
EM_PPC64 = 21
EM_X86_64 = 62


def _uleb(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _abbrev_table() -> bytes:
    def decl(code, tag, children, attrs):
        out = _uleb(code) + _uleb(tag) + bytes([children])
        for at, form in attrs:
            out += _uleb(at) + _uleb(form)
        return out + b"\x00\x00"

    return b"".join([
        decl(ABBREV_CU, DW_TAG_compile_unit, 1, [
            (DW_AT_name, DW_FORM_strp),
            (DW_AT_comp_dir, DW_FORM_strp),
            (DW_AT_stmt_list, DW_FORM_sec_offset),
        ]),
        decl(ABBREV_FUNC, DW_TAG_subprogram, 0, [
            (DW_AT_name, DW_FORM_strp),
            (DW_AT_decl_file, DW_FORM_data1),
            (DW_AT_decl_line, DW_FORM_data2),
            (DW_AT_low_pc, DW_FORM_addr),
        ]),
        decl(ABBREV_DECL, DW_TAG_subprogram, 0, [
            (DW_AT_name, DW_FORM_strp),
            (DW_AT_decl_file, DW_FORM_data1),
            (DW_AT_decl_line, DW_FORM_data2),
            (DW_AT_declaration, DW_FORM_flag_present),
        ]),
        decl(ABBREV_PARENT, DW_TAG_subprogram, 1, [
            (DW_AT_name, DW_FORM_strp),
            (DW_AT_decl_file, DW_FORM_data1),
            (DW_AT_decl_line, DW_FORM_data2),
            (DW_AT_low_pc, DW_FORM_addr),
        ]),
        decl(ABBREV_BLOCK, DW_TAG_lexical_block, 0, [
            (DW_AT_low_pc, DW_FORM_addr),
        ]),
        decl(ABBREV_ANON, DW_TAG_subprogram, 0, [
            (DW_AT_decl_file, DW_FORM_data1),
            (DW_AT_decl_line, DW_FORM_data2),
            (DW_AT_low_pc, DW_FORM_addr),
        ]),
        decl(ABBREV_NO_LINE, DW_TAG_subprogram, 0, [
            (DW_AT_name, DW_FORM_string),
            (DW_AT_decl_file, DW_FORM_data1),
            (DW_AT_low_pc, DW_FORM_addr),
        ]),
    ]) + b"\x00"


class _StringTable:
    def __init__(self):
        self.data = bytearray()
        self._offsets = {}

    def add(self, s: str) -> int:
        if s not in self._offsets:
            self._offsets[s] = len(self.data)
            self.data += s.encode("utf-8") + b"\x00"
        return self._offsets[s]


def _line_program(bo: str, include_dirs, files) -> bytes:
    """A DWARF 4 line program header with an end_sequence-only program."""
    rest = bytearray()
    rest += bytes([1, 1, 1])                     # min_inst_length, max_ops, default_is_stmt
    rest += struct.pack("b", -5)                 # line_base
    rest += bytes([14, 13])                      # line_range, opcode_base
    rest += bytes([0, 1, 1, 1, 1, 0, 0, 0, 1, 0, 0, 1])
    for d in include_dirs:
        rest += d.encode("utf-8") + b"\x00"
    rest += b"\x00"
    for name, dir_index in files:
        rest += name.encode("utf-8") + b"\x00" + _uleb(dir_index) + _uleb(0) + _uleb(0)
    rest += b"\x00"
    program = bytes([0x00, 0x01, 0x01])          # DW_LNE_end_sequence

    body = struct.pack(bo + "H", 4) + struct.pack(bo + "I", len(rest)) + bytes(rest) + program
    return struct.pack(bo + "I", len(body)) + body


def _unit(unit: dict, bo: str, addr_size: int, strtab: _StringTable,
          stmt_list: int, length_slack: int = 0) -> bytes:
    """One DWARF 4 compilation unit (header + DIE stream)."""
    def addr(v):
        return struct.pack(bo + ("Q" if addr_size == 8 else "I"), v)

    def strp(s):
        return struct.pack(bo + "I", strtab.add(s))

    def u8(v):
        return struct.pack("B", v)

    def u16(v):
        return struct.pack(bo + "H", v)

    dies = bytearray()
    dies += _uleb(ABBREV_CU)
    dies += strp(unit["name"])
    dies += strp(unit.get("comp_dir", "/src"))
    dies += struct.pack(bo + "I", unit.get("stmt_list", stmt_list))

    for i, fn in enumerate(unit.get("functions", [])):
        kind = fn.get("kind", "func")
        low_pc = fn.get("low_pc", 0x1000 + 0x40 * i)
        file_index = fn.get("file", 1)
        start = len(dies)
        if kind == "func":
            dies += _uleb(ABBREV_FUNC) + strp(fn["name"]) + u8(file_index) + u16(fn["line"]) + addr(low_pc)
        elif kind == "decl":
            dies += _uleb(ABBREV_DECL) + strp(fn["name"]) + u8(file_index) + u16(fn["line"])
        elif kind == "nested":
            dies += _uleb(ABBREV_PARENT) + strp(fn["name"]) + u8(file_index) + u16(fn["line"]) + addr(low_pc)
            dies += _uleb(ABBREV_BLOCK) + addr(low_pc + 4)
            dies += b"\x00"
        elif kind == "anon":
            dies += _uleb(ABBREV_ANON) + u8(file_index) + u16(fn["line"]) + addr(low_pc)
        elif kind == "no_line":
            dies += _uleb(ABBREV_NO_LINE) + fn["name"].encode("utf-8") + b"\x00" + u8(file_index) + addr(low_pc)
        else:
            raise ValueError(f"unknown fixture function kind {kind!r}")
        if unit.get("corrupt") and i == 0:
            dies[start] = BAD_ABBREV
    dies += b"\x00"

    body = struct.pack(bo + "H", 4) + struct.pack(bo + "I", 0) + u8(addr_size) + bytes(dies)
    return struct.pack(bo + "I", len(body) + length_slack) + body


def _elf(sections, bo: str, elf_class: int, machine: int) -> bytes:
    """Assemble an ET_REL ELF file from (name, data, sh_type) triples."""
    shstrtab = bytearray(b"\x00")
    name_off = {}
    for name, _, _ in sections:
        name_off[name] = len(shstrtab)
        shstrtab += name.encode("ascii") + b"\x00"
    name_off[".shstrtab"] = len(shstrtab)
    shstrtab += b".shstrtab\x00"
    all_secs = list(sections) + [(".shstrtab", bytes(shstrtab), SHT_STRTAB)]

    ehsize = 64 if elf_class == 64 else 52
    shentsize = 64 if elf_class == 64 else 40

    body = bytearray()
    offsets = []
    pos = ehsize
    for _, data, _ in all_secs:
        offsets.append(pos)
        body += data
        pos += len(data)
    pad = (-pos) % 8
    body += b"\x00" * pad
    shoff = pos + pad

    shnum = len(all_secs) + 1
    shstrndx = shnum - 1
    ident = (b"\x7fELF"
             + bytes([2 if elf_class == 64 else 1, 1 if bo == "<" else 2, 1, 0])
             + bytes(8))
    if elf_class == 64:
        ehdr = struct.pack(bo + "16sHHIQQQIHHHHHH", ident, 1, machine, 1, 0, 0,
                           shoff, 0, ehsize, 0, 0, shentsize, shnum, shstrndx)
        shfmt = bo + "IIQQQQIIQQ"
    else:
        ehdr = struct.pack(bo + "16sHHIIIIIHHHHHH", ident, 1, machine, 1, 0, 0,
                           shoff, 0, ehsize, 0, 0, shentsize, shnum, shstrndx)
        shfmt = bo + "IIIIIIIIII"

    shdrs = struct.pack(shfmt, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0)
    for (name, data, sh_type), off in zip(all_secs, offsets):
        shdrs += struct.pack(shfmt, name_off[name], sh_type, 0, 0, off, len(data), 0, 0, 1, 0)

    return ehdr + bytes(body) + shdrs


def build_object(
    units,
    byte_order: str = "little",
    elf_class: int = 64,
    truncate_last: bool = False,
    debug: bool = True,
    omit=(),
) -> bytes:
    """
    Build a relocatable ELF object carrying DWARF 4 for *units*.

    Each unit is a dict::

        {"name": "main.c", "comp_dir": "/src",
         "include_dirs": [], "files": [("main.c", 0)],
         "functions": [{"name": "main", "line": 10}],
         "corrupt": False}

    Function dicts take ``kind`` in func / decl / nested / anon / no_line,
    plus ``name``, ``line``, ``file`` (default 1) and ``low_pc``.
    """
    bo = "<" if byte_order == "little" else ">"
    addr_size = 8 if elf_class == 64 else 4
    if elf_class == 64:
        machine = EM_X86_64 if bo == "<" else EM_PPC64
    else:
        machine = EM_386

    text = (".text", b"\xc3" * 16, SHT_PROGBITS)
    if not debug:
        return _elf([text], bo, elf_class, machine)

    strtab = _StringTable()
    debug_line = bytearray()
    debug_info = bytearray()
    for i, unit in enumerate(units):
        stmt_list = len(debug_line)
        debug_line += _line_program(bo, unit.get("include_dirs", []),
                                    unit.get("files", [("main.c", 0)]))
        slack = 0x1000 if truncate_last and i == len(units) - 1 else 0
        debug_info += _unit(unit, bo, addr_size, strtab, stmt_list, slack)

    sections = [
        text,
        (".debug_abbrev", _abbrev_table(), SHT_PROGBITS),
        (".debug_info", bytes(debug_info), SHT_PROGBITS),
        (".debug_str", bytes(strtab.data), SHT_PROGBITS),
        (".debug_line", bytes(debug_line), SHT_PROGBITS),
    ]
    sections = [s for s in sections if s[0] not in omit]
    return _elf(sections, bo, elf_class, machine)


MAIN_UNIT = {
    "name": "main.c",
    "comp_dir": "/src",
    "files": [("main.c", 0)],
    "functions": [{"name": "main", "line": 10}],
}


@pytest.fixture
def object_bytes():
    """The build_object() assembler, for tests that stay in memory."""
    return build_object


@pytest.fixture
def make_object(tmp_path):
    """Factory: build_object(...) written to a fresh file; returns its path."""
    counter = itertools.count()

    def _make(units, **kwargs) -> Path:
        p = tmp_path / f"synthetic_{next(counter)}.o"
        p.write_bytes(build_object(units, **kwargs))
        return p

    return _make


@pytest.fixture
def main_unit() -> dict:
    """One unit, one function: main at main.c:10."""
    return {**MAIN_UNIT, "functions": [dict(f) for f in MAIN_UNIT["functions"]]}
