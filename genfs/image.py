"""Block and inode allocation on an image file."""

from __future__ import annotations

import struct
from typing import BinaryIO

from .layout import (
    GROUP_DESC_SIZE,
    INODE_SIZE,
    SECTOR_SIZE,
    SUPER_BLOCK_SIZE,
    FileType,
    FsError,
    GroupDesc,
    Inode,
    SuperBlock,
    _bounds,
    blocks_in_group,
    group_count,
    group_size,
    inodes_in_group,
    pointer_blocks_needed,
)

_ZERO_CHUNK = bytes(SECTOR_SIZE * 256)


class Image:
    """An open image file together with its super block and group descriptors."""

    def __init__(self, file: BinaryIO, super_block: SuperBlock, groups: list[GroupDesc]) -> None:
        self.file = file
        self.super_block = super_block
        self.groups = list(groups)

    @classmethod
    def create(cls, file: BinaryIO, sector_num: int, sectors_per_block: int) -> Image:
        """Zero ``sector_num`` sectors of ``file`` and write fresh group headers."""
        if sector_num < 0 or sectors_per_block <= 0:
            raise FsError("sector count and sectors per block must be positive")
        file.seek(0)
        file.truncate()
        remaining = sector_num * SECTOR_SIZE
        while remaining:
            chunk = _ZERO_CHUNK[: min(remaining, len(_ZERO_CHUNK))]
            file.write(chunk)
            remaining -= len(chunk)

        group_num = group_count(sector_num, sectors_per_block)
        if group_num == 0:
            raise FsError("not enough sectors to format")

        block_bytes = SECTOR_SIZE * sectors_per_block
        desc_blocks = (group_num * GROUP_DESC_SIZE + block_bytes - 1) // block_bytes
        base = SUPER_BLOCK_SIZE // SECTOR_SIZE + desc_blocks * sectors_per_block
        stride = group_size(sector_num, sectors_per_block, group_num, 0)

        groups = []
        for index in range(group_num):
            start = index * stride
            groups.append(
                GroupDesc(
                    inode_bitmap=start + base,
                    block_bitmap=start + base + sectors_per_block,
                    inode_table=start + base + 2 * sectors_per_block,
                    avail_inode_num=inodes_in_group(sector_num, sectors_per_block, group_num, index),
                    avail_block_num=blocks_in_group(sector_num, sectors_per_block, group_num, index),
                )
            )
        inode_num = sum(g.avail_inode_num for g in groups)
        block_num = sum(g.avail_block_num for g in groups)
        per_group = block_bytes * 8
        super_block = SuperBlock(
            sector_num=sector_num,
            inode_num=inode_num,
            block_num=block_num,
            avail_inode_num=inode_num,
            avail_block_num=block_num,
            block_size=block_bytes,
            inodes_per_group=per_group,
            blocks_per_group=per_group,
        )
        image = cls(file, super_block, groups)
        image._write_headers()
        return image

    @classmethod
    def load(cls, file: BinaryIO) -> Image:
        """Read the super block and group descriptors at the start of ``file``."""
        file.seek(0)
        super_block = SuperBlock.unpack(file.read(SUPER_BLOCK_SIZE))
        if (
            super_block.sector_num <= 0
            or super_block.block_size <= 0
            or super_block.block_size % SECTOR_SIZE
        ):
            raise FsError("image has no valid super block")
        group_num = group_count(super_block.sector_num, super_block.sectors_per_block)
        if group_num == 0:
            raise FsError("image has no block groups")
        table = file.read(group_num * GROUP_DESC_SIZE)
        if len(table) < group_num * GROUP_DESC_SIZE:
            raise FsError("group descriptor table is truncated")
        groups = [
            GroupDesc.unpack(table[start : start + GROUP_DESC_SIZE])
            for start in range(0, group_num * GROUP_DESC_SIZE, GROUP_DESC_SIZE)
        ]
        return cls(file, super_block, groups)

    @property
    def block_size(self) -> int:
        return self.super_block.block_size

    @property
    def sectors_per_block(self) -> int:
        return self.super_block.sectors_per_block

    @property
    def group_sectors(self) -> int:
        """Size in sectors of a full group (the stride between group starts)."""
        return group_size(
            self.super_block.sector_num, self.sectors_per_block, len(self.groups), 0
        )

    @property
    def root_offset(self) -> int:
        """Byte offset of the root directory's inode."""
        return self.groups[0].inode_table * SECTOR_SIZE

    # raw access

    def _read_at(self, position: int, length: int) -> bytes:
        self.file.seek(position)
        return self.file.read(length).ljust(length, b"\x00")

    def _write_at(self, position: int, data: bytes) -> None:
        self.file.seek(position)
        self.file.write(data)

    def _write_headers(self) -> None:
        packed_super = self.super_block.pack()
        table = b"".join(group.pack() for group in self.groups)
        stride = self.group_sectors
        for index in range(len(self.groups)):
            self._write_at(index * stride * SECTOR_SIZE, packed_super + table)

    def _read_bitmap(self, sector: int) -> bytearray:
        return bytearray(self._read_at(sector * SECTOR_SIZE, self.block_size))

    def _write_bitmap(self, sector: int, bitmap: bytes) -> None:
        self._write_at(sector * SECTOR_SIZE, bytes(bitmap))

    def _read_pointers(self, sector: int) -> list[int]:
        count = self.block_size // 4
        return list(struct.unpack(f"<{count}I", self._read_at(sector * SECTOR_SIZE, self.block_size)))

    def _write_pointers(self, sector: int, pointers: list[int]) -> None:
        count = self.block_size // 4
        padded = list(pointers) + [0] * (count - len(pointers))
        self._write_at(sector * SECTOR_SIZE, struct.pack(f"<{count}I", *padded))

    @staticmethod
    def _first_clear(bitmap: bytes) -> int:
        for j, byte in enumerate(bitmap):
            if byte != 0xFF:
                for k in range(8):
                    if not (byte >> (7 - k)) & 1:
                        return j * 8 + k
        raise FsError("bitmap is full")

    # inodes

    def read_inode(self, offset: int) -> Inode:
        """Read the inode stored at byte ``offset``."""
        self.file.seek(offset)
        return Inode.unpack(self.file.read(INODE_SIZE))

    def write_inode(self, offset: int, inode: Inode) -> None:
        """Write ``inode`` at byte ``offset``."""
        self._write_at(offset, inode.pack())

    def take_inode(self) -> int:
        """Mark a free inode as used and return its byte offset."""
        if self.super_block.avail_inode_num == 0:
            raise FsError("no inode available")
        index = next((i for i, g in enumerate(self.groups) if g.avail_inode_num >= 1), None)
        if index is None:
            raise FsError("no group has a free inode")
        group = self.groups[index]
        bitmap = self._read_bitmap(group.inode_bitmap)
        bit = self._first_clear(bitmap)
        bitmap[bit // 8] |= 1 << (7 - bit % 8)

        self.super_block.avail_inode_num -= 1
        group.avail_inode_num -= 1
        self._write_headers()
        self._write_bitmap(group.inode_bitmap, bitmap)
        return group.inode_table * SECTOR_SIZE + bit * INODE_SIZE

    def release_inode(self, offset: int) -> None:
        """Return the inode at byte ``offset`` to the free pool."""
        index = offset // SECTOR_SIZE // self.group_sectors
        if not 0 <= index < len(self.groups):
            raise FsError(f"inode offset {offset} is outside the image")
        group = self.groups[index]
        relative = offset - group.inode_table * SECTOR_SIZE
        if relative < 0:
            raise FsError(f"inode offset {offset} is outside the inode table")
        j, k = divmod(relative // INODE_SIZE, 8)
        bitmap = self._read_bitmap(group.inode_bitmap)
        if j >= len(bitmap) or not (bitmap[j] >> (7 - k)) & 1:
            raise FsError(f"inode at offset {offset} is not allocated")

        self.super_block.avail_inode_num += 1
        group.avail_inode_num += 1
        bitmap[j] ^= 1 << (7 - k)
        self._write_headers()
        self._write_bitmap(group.inode_bitmap, bitmap)

    def init_root(self) -> int:
        """Allocate the root directory's inode and return its byte offset."""
        if self.super_block.avail_inode_num == 0:
            raise FsError("no inode available for the root directory")
        group = self.groups[0]
        self.super_block.avail_inode_num -= 1
        group.avail_inode_num -= 1
        self._write_headers()
        self._write_at(group.inode_bitmap * SECTOR_SIZE, b"\x80")
        offset = self.root_offset
        self.write_inode(offset, Inode(file_type=FileType.DIRECTORY, link_count=1))
        return offset

    # data blocks

    def _take_block(self) -> int:
        if self.super_block.avail_block_num == 0:
            raise FsError("no data block available")
        index = next((i for i, g in enumerate(self.groups) if g.avail_block_num >= 1), None)
        if index is None:
            raise FsError("no group has a free data block")
        group = self.groups[index]
        bitmap = self._read_bitmap(group.block_bitmap)
        bit = self._first_clear(bitmap)
        bitmap[bit // 8] |= 1 << (7 - bit % 8)

        self.super_block.avail_block_num -= 1
        group.avail_block_num -= 1
        self._write_headers()
        self._write_bitmap(group.block_bitmap, bitmap)
        spb = self.sectors_per_block
        return group.inode_table + INODE_SIZE * 8 * spb + bit * spb

    def _release_block(self, sector: int) -> None:
        spb = self.sectors_per_block
        index = sector // self.group_sectors
        if not 0 <= index < len(self.groups):
            raise FsError(f"block at sector {sector} is outside the image")
        group = self.groups[index]
        relative = sector - group.inode_table - INODE_SIZE * 8 * spb
        if relative < 0:
            raise FsError(f"sector {sector} is not a data block")
        j, k = divmod(relative // spb, 8)
        bitmap = self._read_bitmap(group.block_bitmap)
        if j >= len(bitmap) or not (bitmap[j] >> (7 - k)) & 1:
            raise FsError(f"block at sector {sector} is not allocated")

        self.super_block.avail_block_num += 1
        group.avail_block_num += 1
        bitmap[j] ^= 1 << (7 - k)
        self._write_headers()
        self._write_bitmap(group.block_bitmap, bitmap)

    def _locate(self, inode: Inode, index: int) -> int:
        per_block, per_doubly, bound0, bound1, bound2, bound3 = _bounds(self.block_size)
        if index < 0 or index >= bound3:
            raise FsError(f"block index {index} is out of range")
        if index < bound0:
            return inode.pointers[index]
        if index < bound1:
            return self._read_pointers(inode.singly_pointer)[index - bound0]
        if index < bound2:
            outer, inner = divmod(index - bound1, per_block)
            singly = self._read_pointers(inode.doubly_pointer)[outer]
            return self._read_pointers(singly)[inner]
        outer, rest = divmod(index - bound2, per_doubly)
        doubly = self._read_pointers(inode.triply_pointer)[outer]
        middle, inner = divmod(rest, per_block)
        singly = self._read_pointers(doubly)[middle]
        return self._read_pointers(singly)[inner]

    def read_block(self, inode: Inode, index: int) -> bytes:
        """Return the ``index``-th data block of ``inode``."""
        return self._read_at(self._locate(inode, index) * SECTOR_SIZE, self.block_size)

    def write_block(self, inode: Inode, index: int, data: bytes) -> None:
        """Write ``data`` (zero-padded to a block) as the ``index``-th block of ``inode``."""
        if len(data) > self.block_size:
            raise FsError(f"{len(data)} bytes do not fit in a {self.block_size}-byte block")
        sector = self._locate(inode, index)
        self._write_at(sector * SECTOR_SIZE, bytes(data).ljust(self.block_size, b"\x00"))

    def alloc_block(self, inode: Inode, inode_offset: int) -> int:
        """Append one data block to ``inode`` and return its sector.

        Nothing changes if there is not enough room for the block and the
        pointer blocks it needs.
        """
        needed = pointer_blocks_needed(self.block_size, inode.block_count)
        if self.super_block.avail_block_num < needed + 1:
            raise FsError("not enough free blocks")
        sector = self._take_block()
        self._attach(inode, inode_offset, sector)
        return sector

    def _attach(self, inode: Inode, inode_offset: int, block: int) -> None:
        per_block, per_doubly, bound0, bound1, bound2, bound3 = _bounds(self.block_size)
        read, write = self._read_pointers, self._write_pointers
        count = inode.block_count

        if count < bound0:
            inode.pointers[count] = block
        elif count == bound0:
            singly = self._take_block()
            write(singly, [block])
            inode.singly_pointer = singly
        elif count < bound1:
            table = read(inode.singly_pointer)
            table[count - bound0] = block
            write(inode.singly_pointer, table)
        elif count == bound1:
            singly = self._take_block()
            doubly = self._take_block()
            write(singly, [block])
            write(doubly, [singly])
            inode.doubly_pointer = doubly
        elif count < bound2:
            outer, inner = divmod(count - bound1, per_block)
            doubly_table = read(inode.doubly_pointer)
            if inner == 0:
                singly = self._take_block()
                write(singly, [block])
                doubly_table[outer] = singly
                write(inode.doubly_pointer, doubly_table)
            else:
                singly = doubly_table[outer]
                table = read(singly)
                table[inner] = block
                write(singly, table)
        elif count == bound2:
            singly = self._take_block()
            doubly = self._take_block()
            triply = self._take_block()
            write(singly, [block])
            write(doubly, [singly])
            write(triply, [doubly])
            inode.triply_pointer = triply
        elif count < bound3:
            outer, rest = divmod(count - bound2, per_doubly)
            middle, inner = divmod(rest, per_block)
            if rest == 0:
                singly = self._take_block()
                doubly = self._take_block()
                write(singly, [block])
                write(doubly, [singly])
                triply_table = read(inode.triply_pointer)
                triply_table[outer] = doubly
                write(inode.triply_pointer, triply_table)
            elif inner == 0:
                singly = self._take_block()
                write(singly, [block])
                doubly = read(inode.triply_pointer)[outer]
                doubly_table = read(doubly)
                doubly_table[middle] = singly
                write(doubly, doubly_table)
            else:
                doubly = read(inode.triply_pointer)[outer]
                singly = read(doubly)[middle]
                table = read(singly)
                table[inner] = block
                write(singly, table)
        else:
            raise FsError(f"block index {count} exceeds the largest file size")

        inode.block_count += 1
        self.write_inode(inode_offset, inode)

    def free_last_block(self, inode: Inode, inode_offset: int) -> None:
        """Release the last data block of ``inode`` and any pointer block it leaves empty."""
        per_block, per_doubly, bound0, bound1, bound2, bound3 = _bounds(self.block_size)
        if inode.block_count <= 0:
            raise FsError("inode has no blocks to free")
        count = inode.block_count - 1
        if count >= bound3:
            raise FsError(f"block index {count} exceeds the largest file size")
        read, release = self._read_pointers, self._release_block
        inode.block_count = count

        if count < bound0:
            release(inode.pointers[count])
        elif count < bound1:
            table = read(inode.singly_pointer)
            release(table[count - bound0])
            if count == bound0:
                release(inode.singly_pointer)
        elif count < bound2:
            outer, inner = divmod(count - bound1, per_block)
            doubly_table = read(inode.doubly_pointer)
            release(read(doubly_table[outer])[inner])
            if inner == 0:
                release(doubly_table[outer])
                if count == bound1:
                    release(inode.doubly_pointer)
        else:
            outer, rest = divmod(count - bound2, per_doubly)
            middle, inner = divmod(rest, per_block)
            triply_table = read(inode.triply_pointer)
            doubly_table = read(triply_table[outer])
            release(read(doubly_table[middle])[inner])
            if inner == 0:
                release(doubly_table[middle])
                if rest == 0:
                    release(triply_table[outer])
                    if count == bound2:
                        release(inode.triply_pointer)

        self.write_inode(inode_offset, inode)

    def free_blocks(self, inode: Inode, inode_offset: int) -> None:
        """Release every data block of ``inode``."""
        while inode.block_count != 0:
            self.free_last_block(inode, inode_offset)