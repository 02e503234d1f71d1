import io

import pytest

from genfs.image import Image
from genfs.layout import (
    INODE_SIZE,
    POINTER_NUM,
    SECTOR_SIZE,
    FileType,
    FsError,
    Inode,
    blocks_in_group,
    group_count,
    inodes_in_group,
    pointer_blocks_needed,
)

SECTORS = 2000
SPB = 1


@pytest.fixture
def buffer():
    return io.BytesIO()


@pytest.fixture
def image(buffer):
    img = Image.create(buffer, SECTORS, SPB)
    img.init_root()
    return img


def _new_file(image):
    offset = image.take_inode()
    inode = Inode(file_type=FileType.REGULAR, link_count=1)
    image.write_inode(offset, inode)
    return inode, offset


def test_create_layout_is_contiguous(buffer):
    img = Image.create(buffer, SECTORS, SPB)
    group = img.groups[0]
    assert len(img.groups) == group_count(SECTORS, SPB)
    assert group.block_bitmap == group.inode_bitmap + SPB
    assert group.inode_table == group.block_bitmap + SPB
    assert img.super_block.inode_num == inodes_in_group(SECTORS, SPB, 1, 0)
    assert img.super_block.block_num == blocks_in_group(SECTORS, SPB, 1, 0)
    assert img.super_block.avail_inode_num == img.super_block.inode_num
    assert img.super_block.avail_block_num == img.super_block.block_num
    assert img.block_size == SECTOR_SIZE * SPB


def test_create_fills_whole_disk(buffer):
    Image.create(buffer, SECTORS, SPB)
    assert len(buffer.getvalue()) == SECTORS * SECTOR_SIZE


def test_create_rejects_tiny_disk():
    with pytest.raises(FsError):
        Image.create(io.BytesIO(), 3, 1)


def test_load_round_trip(image, buffer):
    loaded = Image.load(buffer)
    assert loaded.super_block == image.super_block
    assert loaded.groups == image.groups


def test_load_rejects_blank_file():
    with pytest.raises(FsError):
        Image.load(io.BytesIO(bytes(4096)))


def test_init_root(image, buffer):
    root = image.read_inode(image.root_offset)
    assert root.file_type == FileType.DIRECTORY
    assert root.link_count == 1
    assert root.block_count == 0
    assert image.super_block.avail_inode_num == image.super_block.inode_num - 1
    assert image.groups[0].avail_inode_num == image.super_block.avail_inode_num
    assert buffer.getvalue()[image.groups[0].inode_bitmap * SECTOR_SIZE] == 0x80


def test_take_inode_follows_root(image):
    first = image.take_inode()
    second = image.take_inode()
    assert first == image.root_offset + INODE_SIZE
    assert second == first + INODE_SIZE
    assert image.super_block.avail_inode_num == image.super_block.inode_num - 3


def test_release_inode(image):
    before = image.super_block.avail_inode_num
    offset = image.take_inode()
    image.release_inode(offset)
    assert image.super_block.avail_inode_num == before
    with pytest.raises(FsError):
        image.release_inode(offset)
    assert image.take_inode() == offset


def test_block_round_trip(image):
    inode, offset = _new_file(image)
    payloads = [bytes([n]) * image.block_size for n in (1, 2, 3)]
    for index, payload in enumerate(payloads):
        image.alloc_block(inode, offset)
        image.write_block(inode, index, payload)
    assert [image.read_block(inode, i) for i in range(3)] == payloads
    assert image.read_inode(offset).block_count == 3


def test_short_write_is_zero_padded(image):
    inode, offset = _new_file(image)
    image.alloc_block(inode, offset)
    image.write_block(inode, 0, b"abc")
    assert image.read_block(inode, 0) == b"abc".ljust(image.block_size, b"\x00")


def test_write_block_too_long(image):
    inode, offset = _new_file(image)
    image.alloc_block(inode, offset)
    with pytest.raises(FsError):
        image.write_block(inode, 0, bytes(image.block_size + 1))


def test_read_block_negative_index(image):
    inode, offset = _new_file(image)
    image.alloc_block(inode, offset)
    with pytest.raises(FsError):
        image.read_block(inode, -1)


def test_singly_pointer_allocation(image):
    inode, offset = _new_file(image)
    before = image.super_block.avail_block_num
    for index in range(POINTER_NUM + 1):
        image.alloc_block(inode, offset)
        image.write_block(inode, index, bytes([index + 1]) * 8)
    extra = pointer_blocks_needed(image.block_size, POINTER_NUM)
    assert before - image.super_block.avail_block_num == POINTER_NUM + 1 + extra
    assert inode.singly_pointer != 0
    assert image.read_block(inode, POINTER_NUM)[:8] == bytes([POINTER_NUM + 1]) * 8


def test_doubly_pointer_allocation_and_free(image):
    inode, offset = _new_file(image)
    before = image.super_block.avail_block_num
    bound1 = POINTER_NUM + image.block_size // 4
    for index in range(bound1 + 1):
        image.alloc_block(inode, offset)
        image.write_block(inode, index, index.to_bytes(4, "little"))
    for index in (0, POINTER_NUM, bound1 - 1, bound1):
        assert image.read_block(inode, index)[:4] == index.to_bytes(4, "little")
    assert inode.doubly_pointer != 0
    image.free_blocks(inode, offset)
    assert image.super_block.avail_block_num == before
    assert image.groups[0].avail_block_num == before
    assert image.read_inode(offset).block_count == 0


def test_free_without_blocks_raises(image):
    inode, offset = _new_file(image)
    image.alloc_block(inode, offset)
    image.free_blocks(inode, offset)
    with pytest.raises(FsError):
        image.free_last_block(inode, offset)


def test_freed_block_is_reused(image):
    inode, offset = _new_file(image)
    sector = image.alloc_block(inode, offset)
    image.free_last_block(inode, offset)
    assert image.alloc_block(inode, offset) == sector


def test_alloc_fails_when_full():
    sectors = 1032
    img = Image.create(io.BytesIO(), sectors, 1)
    img.init_root()
    assert img.super_block.avail_block_num == blocks_in_group(sectors, 1, 1, 0)
    assert img.super_block.avail_block_num > 0
    inode, offset = _new_file(img)
    total = img.super_block.avail_block_num
    for _ in range(total):
        img.alloc_block(inode, offset)
    with pytest.raises(FsError):
        img.alloc_block(inode, offset)
    assert inode.block_count == total
    assert img.super_block.avail_block_num == 0


def test_data_survives_reload(image, buffer):
    inode, offset = _new_file(image)
    image.alloc_block(inode, offset)
    image.write_block(inode, 0, b"persisted")
    loaded = Image.load(buffer)
    stored = loaded.read_inode(offset)
    assert stored == inode
    assert loaded.read_block(stored, 0).startswith(b"persisted")