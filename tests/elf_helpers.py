"""Synthetic ELF images for inspector tests.

Builds the smallest file pyelftools accepts: ELF header, optional
.dynamic section, .shstrtab, and the section header table.
"""

import struct

SHT_STRTAB = 3
SHT_DYNAMIC = 6

_SHSTRTAB = b"\0.dynamic\0.shstrtab\0"
_NAME_DYNAMIC = 1
_NAME_SHSTRTAB = 10


def _align(n: int, to: int) -> int:
    return (n + to - 1) // to * to


def make_elf(
    entries: list[tuple[int, int]],
    *,
    elfclass: int = 64,
    little_endian: bool = True,
    with_dynamic: bool = True,
    dynamic_size: int | None = None,
    trailing: bytes = b"",
) -> bytes:
    """Build an ELF image whose .dynamic section holds ``entries``.

    Args:
        entries: (tag, value) records
        elfclass: 32 or 64
        little_endian: Byte order
        with_dynamic: Omit the dynamic section when False
        dynamic_size: Override the section's sh_size (e.g. past EOF)
        trailing: Extra bytes appended to the dynamic data (partial record)
    """
    e = "<" if little_endian else ">"
    if elfclass == 64:
        dyn = b"".join(struct.pack(f"{e}qQ", t, v) for t, v in entries) + trailing
        ehsize, phentsize, shentsize, machine, entsize = 64, 56, 64, 62, 16
        sh_fmt = f"{e}IIQQQQIIQQ"
    else:
        dyn = b"".join(struct.pack(f"{e}iI", t, v) for t, v in entries) + trailing
        ehsize, phentsize, shentsize, machine, entsize = 52, 32, 40, 3, 8
        sh_fmt = f"{e}IIIIIIIIII"

    if not with_dynamic:
        dyn = b""
    dyn_off = ehsize
    str_off = dyn_off + len(dyn)
    sh_off = _align(str_off + len(_SHSTRTAB), 8)

    sections = [struct.pack(sh_fmt, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0)]
    shstrndx = 2 if with_dynamic else 1
    if with_dynamic:
        size = len(dyn) if dynamic_size is None else dynamic_size
        sections.append(struct.pack(sh_fmt, _NAME_DYNAMIC, SHT_DYNAMIC, 3, 0, dyn_off, size, shstrndx, 0, 8, entsize))
    sections.append(struct.pack(sh_fmt, _NAME_SHSTRTAB, SHT_STRTAB, 0, 0, str_off, len(_SHSTRTAB), 0, 0, 1, 0))

    ident = b"\x7fELF" + bytes([2 if elfclass == 64 else 1, 1 if little_endian else 2, 1, 0]) + b"\0" * 8
    if elfclass == 64:
        header = struct.pack(
            f"{e}HHIQQQIHHHHHH", 3, machine, 1, 0, 0, sh_off, 0, ehsize, phentsize, 0, shentsize, len(sections), shstrndx
        )
    else:
        header = struct.pack(
            f"{e}HHIIIIIHHHHHH", 3, machine, 1, 0, 0, sh_off, 0, ehsize, phentsize, 0, shentsize, len(sections), shstrndx
        )

    body = ident + header + dyn + _SHSTRTAB
    body += b"\0" * (sh_off - len(body))
    return body + b"".join(sections)
