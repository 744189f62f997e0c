"""ELF dynamic section inspection.

pyelftools parses the ELF and section headers and locates the SHT_DYNAMIC
section. Its raw bytes are decoded here as (tag, value) pairs of machine
words: 4+4 bytes for ELFCLASS32, 8+8 for ELFCLASS64, in the file's byte
order. Records are walked to the end of the section without stopping at
DT_NULL.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile
from elftools.elf.enums import ENUM_D_TAG

from carchive_harness._logging import get_logger
from carchive_harness.constants import ELF32_DYN_ENTRY_SIZE, ELF64_DYN_ENTRY_SIZE
from carchive_harness.exceptions import ElfFormatError, ElfOpenError, ElfReadError

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DynamicTagSet:
    """Entries of one ELF dynamic section, in file order."""

    entries: tuple[tuple[int, int], ...]

    def __contains__(self, tag: object) -> bool:
        return any(t == tag for t, _ in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def values(self, tag: int) -> list[int]:
        """Values of every entry carrying ``tag``."""
        return [v for t, v in self.entries if t == tag]


def resolve_tag(tag: int | str) -> int:
    """Numeric value of a dynamic tag given as a number or ``DT_*`` name."""
    if isinstance(tag, str):
        try:
            return ENUM_D_TAG[tag]
        except KeyError:
            raise ValueError(f"unknown dynamic tag: {tag}") from None
    return tag


def iter_dynamic_entries(data: bytes, elfclass: int, little_endian: bool) -> Iterator[tuple[int, int]]:
    """Decode raw SHT_DYNAMIC bytes into (tag, value) pairs.

    A trailing partial record is ignored.

    Args:
        data: Section contents
        elfclass: 32 or 64
        little_endian: Byte order of the file
    """
    order = "<" if little_endian else ">"
    if elfclass == 64:
        record = struct.Struct(f"{order}qQ")
        size = ELF64_DYN_ENTRY_SIZE
    else:
        record = struct.Struct(f"{order}iI")
        size = ELF32_DYN_ENTRY_SIZE
    usable = len(data) - len(data) % size
    yield from record.iter_unpack(data[:usable])


def _dynamic_section_data(f: BinaryIO, path: Path) -> tuple[bytes, int, bool]:
    try:
        elf = ELFFile(f)
    except ELFError as e:
        raise ElfFormatError(f"{path}: not an ELF file: {e}", context={"path": str(path)}) from e

    section = None
    try:
        for candidate in elf.iter_sections():
            if candidate["sh_type"] == "SHT_DYNAMIC":
                section = candidate
                break
    except (ELFError, struct.error) as e:
        raise ElfFormatError(f"{path}: bad section headers: {e}", context={"path": str(path)}) from e
    if section is None:
        raise ElfFormatError(f"{path}: no SHT_DYNAMIC section", context={"path": str(path)})

    try:
        data = section.data()
    except (ELFError, OSError) as e:
        raise ElfReadError(f"{path}: can't read SHT_DYNAMIC contents: {e}", context={"path": str(path)}) from e
    if len(data) != section["sh_size"]:
        raise ElfReadError(
            f"{path}: can't read SHT_DYNAMIC contents: got {len(data)} of {section['sh_size']} bytes",
            context={"path": str(path), "expected": section["sh_size"], "read": len(data)},
        )
    return data, elf.elfclass, elf.little_endian


def _open(path: Path) -> BinaryIO:
    try:
        return path.open("rb")
    except OSError as e:
        raise ElfOpenError(f"{path}: open failed: {e}", context={"path": str(path)}) from e


def read_dynamic_tags(path: Path | str) -> DynamicTagSet:
    """Read every entry of a file's dynamic section.

    Raises:
        ElfOpenError: File cannot be opened
        ElfFormatError: Not ELF, or no dynamic section
        ElfReadError: Section data unreadable
    """
    path = Path(path)
    with _open(path) as f:
        data, elfclass, little_endian = _dynamic_section_data(f, path)
    return DynamicTagSet(tuple(iter_dynamic_entries(data, elfclass, little_endian)))


def has_dynamic_tag(path: Path | str, tag: int | str) -> bool:
    """Whether ``tag`` appears in the file's dynamic section.

    Stops at the first matching record.

    Args:
        path: ELF file
        tag: Tag number or ``DT_*`` name

    Raises:
        ElfOpenError: File cannot be opened
        ElfFormatError: Not ELF, or no dynamic section
        ElfReadError: Section data unreadable
    """
    path = Path(path)
    wanted = resolve_tag(tag)
    with _open(path) as f:
        data, elfclass, little_endian = _dynamic_section_data(f, path)
    for t, _ in iter_dynamic_entries(data, elfclass, little_endian):
        if t == wanted:
            logger.debug("Dynamic tag present", extra={"path": str(path), "tag": wanted})
            return True
    return False
