"""On-disk layout of the image: constants, record formats and group geometry."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

SECTOR_NUM = 8196
SECTOR_SIZE = 512
SECTORS_PER_BLOCK = 2
POINTER_NUM = 12
NAME_LENGTH = 64

BLOCK_SIZE = SECTOR_SIZE * SECTORS_PER_BLOCK
MAX_GROUP_NUM = SECTOR_NUM // SECTOR_SIZE // SECTORS_PER_BLOCK // 8 // SECTORS_PER_BLOCK + 1

SUPER_BLOCK_SIZE = 1024
GROUP_DESC_SIZE = 32
INODE_BITMAP_SIZE = BLOCK_SIZE
BLOCK_BITMAP_SIZE = BLOCK_SIZE
INODE_SIZE = 128
DIRENTRY_SIZE = 128

POINTER_SIZE = 4

_SUPER_BLOCK_FORMAT = struct.Struct("<8i")
_GROUP_DESC_FORMAT = struct.Struct("<5i")
_INODE_FORMAT = struct.Struct(f"<hhii{POINTER_NUM}iiii")
_DIR_ENTRY_FORMAT = struct.Struct(f"<i{NAME_LENGTH}s")


class FsError(Exception):
    """Raised when an image operation cannot be carried out."""


class FileType(IntEnum):
    """Kind of file an inode describes."""

    UNKNOWN = 0
    REGULAR = 1
    DIRECTORY = 2
    CHARACTER = 3
    BLOCK = 4
    FIFO = 5
    SOCKET = 6
    SYMBOLIC = 7


def _pack(fmt: struct.Struct, size: int, *values: object) -> bytes:
    try:
        body = fmt.pack(*values)
    except struct.error as exc:
        raise FsError(f"value out of range: {exc}") from exc
    return body.ljust(size, b"\x00")


def _unpack(fmt: struct.Struct, size: int, data: bytes, what: str) -> tuple:
    if len(data) < size:
        raise FsError(f"{what} needs {size} bytes, got {len(data)}")
    return fmt.unpack_from(bytes(data[:size]))


@dataclass
class SuperBlock:
    """Filesystem-wide counters stored at the start of every group."""

    sector_num: int = 0
    inode_num: int = 0
    block_num: int = 0
    avail_inode_num: int = 0
    avail_block_num: int = 0
    block_size: int = 0
    inodes_per_group: int = 0
    blocks_per_group: int = 0

    def pack(self) -> bytes:
        return _pack(
            _SUPER_BLOCK_FORMAT,
            SUPER_BLOCK_SIZE,
            self.sector_num,
            self.inode_num,
            self.block_num,
            self.avail_inode_num,
            self.avail_block_num,
            self.block_size,
            self.inodes_per_group,
            self.blocks_per_group,
        )

    @classmethod
    def unpack(cls, data: bytes) -> SuperBlock:
        return cls(*_unpack(_SUPER_BLOCK_FORMAT, SUPER_BLOCK_SIZE, data, "super block"))

    @property
    def sectors_per_block(self) -> int:
        return self.block_size // SECTOR_SIZE


@dataclass
class GroupDesc:
    """Per-group locations (in sectors) and free counters."""

    inode_bitmap: int = 0
    block_bitmap: int = 0
    inode_table: int = 0
    avail_inode_num: int = 0
    avail_block_num: int = 0

    def pack(self) -> bytes:
        return _pack(
            _GROUP_DESC_FORMAT,
            GROUP_DESC_SIZE,
            self.inode_bitmap,
            self.block_bitmap,
            self.inode_table,
            self.avail_inode_num,
            self.avail_block_num,
        )

    @classmethod
    def unpack(cls, data: bytes) -> GroupDesc:
        return cls(*_unpack(_GROUP_DESC_FORMAT, GROUP_DESC_SIZE, data, "group descriptor"))


@dataclass
class Inode:
    """A file's metadata and block pointers (sectors as unit)."""

    file_type: int = FileType.UNKNOWN
    link_count: int = 0
    block_count: int = 0
    size: int = 0
    pointers: list[int] = field(default_factory=lambda: [0] * POINTER_NUM)
    singly_pointer: int = 0
    doubly_pointer: int = 0
    triply_pointer: int = 0

    def pack(self) -> bytes:
        if len(self.pointers) != POINTER_NUM:
            raise FsError(f"inode needs {POINTER_NUM} direct pointers, got {len(self.pointers)}")
        return _pack(
            _INODE_FORMAT,
            INODE_SIZE,
            int(self.file_type),
            self.link_count,
            self.block_count,
            self.size,
            *self.pointers,
            self.singly_pointer,
            self.doubly_pointer,
            self.triply_pointer,
        )

    @classmethod
    def unpack(cls, data: bytes) -> Inode:
        values = _unpack(_INODE_FORMAT, INODE_SIZE, data, "inode")
        file_type, link_count, block_count, size = values[:4]
        pointers = list(values[4 : 4 + POINTER_NUM])
        singly, doubly, triply = values[4 + POINTER_NUM :]
        try:
            file_type = FileType(file_type)
        except ValueError:
            pass
        return cls(file_type, link_count, block_count, size, pointers, singly, doubly, triply)


@dataclass
class DirEntry:
    """A directory slot: the byte offset of an inode and a name."""

    inode: int = 0
    name: str = ""

    def pack(self) -> bytes:
        raw = self.name.encode("utf-8", "surrogateescape")[:NAME_LENGTH]
        return _pack(_DIR_ENTRY_FORMAT, DIRENTRY_SIZE, self.inode, raw)

    @classmethod
    def unpack(cls, data: bytes) -> DirEntry:
        inode, raw = _unpack(_DIR_ENTRY_FORMAT, DIRENTRY_SIZE, data, "directory entry")
        name = raw.split(b"\x00", 1)[0].decode("utf-8", "surrogateescape")
        return cls(inode, name)


_SUPER_BLOCK_SECTORS = SUPER_BLOCK_SIZE // SECTOR_SIZE
_INODE_TABLE_BLOCKS = INODE_SIZE * 8


def _desc_blocks(group_num: int, sectors_per_block: int) -> int:
    block_bytes = SECTOR_SIZE * sectors_per_block
    return (group_num * GROUP_DESC_SIZE + block_bytes - 1) // block_bytes


def _header_sectors(desc_blocks: int, sectors_per_block: int) -> int:
    """Super block, descriptor table and both bitmaps."""
    return _SUPER_BLOCK_SECTORS + (desc_blocks + 2) * sectors_per_block


def _body_sectors(sectors_per_block: int) -> int:
    """Inode table and data blocks of a full group."""
    return (
        _INODE_TABLE_BLOCKS * sectors_per_block
        + SECTOR_SIZE * sectors_per_block * 8 * sectors_per_block
    )


def _geometry(sector_num: int, sectors_per_block: int, group_num: int) -> tuple[int, int, int]:
    header = _header_sectors(_desc_blocks(group_num, sectors_per_block), sectors_per_block)
    body = _body_sectors(sectors_per_block)
    return header, body, sector_num % (header + body)


def group_count(sector_num: int, sectors_per_block: int) -> int:
    """Number of block groups a disk of ``sector_num`` sectors holds (0 if too small)."""
    desc_blocks = 1
    while True:
        header = _header_sectors(desc_blocks, sectors_per_block)
        unit = header + _body_sectors(sectors_per_block)
        quotient, remainder = divmod(sector_num, unit)
        capacity = SECTOR_SIZE // GROUP_DESC_SIZE * desc_blocks * sectors_per_block
        if quotient == 0:
            return 1 if remainder >= header else 0
        if quotient <= capacity and remainder < header:
            return quotient
        if quotient < capacity:
            return quotient + 1
        desc_blocks += 1


def group_size(sector_num: int, sectors_per_block: int, group_num: int, index: int) -> int:
    """Size in sectors of group ``index``; 0 for an index outside the disk."""
    if index < 0 or index >= group_num:
        return 0
    header, body, remainder = _geometry(sector_num, sectors_per_block, group_num)
    if index + 1 == group_num and remainder >= header:
        return remainder
    return header + body


def inodes_in_group(sector_num: int, sectors_per_block: int, group_num: int, index: int) -> int:
    """Number of inodes group ``index`` holds; 0 for an index outside the disk."""
    if index < 0 or index >= group_num:
        return 0
    full = SECTOR_SIZE * sectors_per_block * 8
    header, _, remainder = _geometry(sector_num, sectors_per_block, group_num)
    if index + 1 < group_num or remainder < header:
        return full
    room = remainder - header
    if room >= _INODE_TABLE_BLOCKS * sectors_per_block:
        return full
    return room // sectors_per_block * sectors_per_block * SECTOR_SIZE // INODE_SIZE


def blocks_in_group(sector_num: int, sectors_per_block: int, group_num: int, index: int) -> int:
    """Number of data blocks group ``index`` holds; 0 for an index outside the disk."""
    if index < 0 or index >= group_num:
        return 0
    full = SECTOR_SIZE * sectors_per_block * 8
    header, _, remainder = _geometry(sector_num, sectors_per_block, group_num)
    if index + 1 < group_num or remainder < header:
        return full
    room = remainder - header - _INODE_TABLE_BLOCKS * sectors_per_block
    if room >= 0:
        return room // sectors_per_block
    return 0


def _bounds(block_size: int) -> tuple[int, int, int, int, int, int]:
    """Pointers per block, pointers per doubly block, and the four index bounds."""
    per_block = block_size // POINTER_SIZE
    per_doubly = per_block * per_block
    per_triply = per_doubly * per_block
    bound0 = POINTER_NUM
    bound1 = bound0 + per_block
    bound2 = bound1 + per_doubly
    bound3 = bound2 + per_triply
    return per_block, per_doubly, bound0, bound1, bound2, bound3


def pointer_blocks_needed(block_size: int, block_count: int) -> int:
    """Extra pointer blocks needed to add the ``block_count``-th block of a file."""
    per_block, per_doubly, bound0, bound1, bound2, bound3 = _bounds(block_size)
    if block_count >= bound3:
        raise FsError(f"block index {block_count} exceeds the largest file size")
    if block_count == bound0:
        return 1
    if block_count == bound1:
        return 2
    if block_count < bound2 and (block_count - bound1) % per_block == 0:
        return 1
    if block_count == bound2:
        return 3
    if block_count > bound2 and (block_count - bound2) % per_doubly == 0:
        return 2
    if block_count > bound2 and (block_count - bound2) % per_block == 0:
        return 1
    return 0