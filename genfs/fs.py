"""Path-level operations on an image and the commands built on them."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from functools import partial
from typing import BinaryIO, Iterator

from .image import Image
from .layout import (
    DIRENTRY_SIZE,
    NAME_LENGTH,
    DirEntry,
    FileType,
    FsError,
    Inode,
    SuperBlock,
)


def _split(path: str) -> tuple[str, str]:
    """Split ``path`` into its parent directory (with trailing '/') and last name."""
    head, sep, name = path.rpartition("/")
    if not sep:
        raise FsError(f"incorrect destination file path {path!r}")
    return head + "/", name


def _check_name(name: str) -> None:
    if not name:
        raise FsError("file name is empty")
    if len(name.encode("utf-8", "surrogateescape")) > NAME_LENGTH:
        raise FsError(f"file name {name!r} is longer than {NAME_LENGTH} bytes")


def _put_entry(block: bytes, slot: int, entry: DirEntry) -> bytes:
    buffer = bytearray(block)
    start = slot * DIRENTRY_SIZE
    buffer[start : start + DIRENTRY_SIZE] = entry.pack()
    return bytes(buffer)


class FileSystem:
    """Directory tree operations over an open :class:`Image`."""

    def __init__(self, image: Image) -> None:
        self.image = image

    def _slots(self, inode: Inode) -> Iterator[tuple[int, bytes, int, DirEntry]]:
        """Yield every directory slot of ``inode``, empty ones included."""
        slots_per_block = self.image.block_size // DIRENTRY_SIZE
        for index in range(inode.block_count):
            block = self.image.read_block(inode, index)
            for slot in range(slots_per_block):
                start = slot * DIRENTRY_SIZE
                yield index, block, slot, DirEntry.unpack(block[start : start + DIRENTRY_SIZE])

    def _find(self, directory: Inode, name: str) -> tuple[int, bytes, int, DirEntry] | None:
        for found in self._slots(directory):
            entry = found[3]
            if entry.inode != 0 and entry.name == name:
                return found
        return None

    def entries(self, inode: Inode) -> Iterator[DirEntry]:
        """Yield the used entries of directory ``inode`` in on-disk order."""
        for _, _, _, entry in self._slots(inode):
            if entry.inode != 0:
                yield entry

    def lookup(self, path: str) -> tuple[Inode, int]:
        """Return the inode at absolute ``path`` and its byte offset."""
        if not path or not path.startswith("/"):
            raise FsError(f"incorrect file path {path!r}")
        offset = self.image.root_offset
        inode = self.image.read_inode(offset)
        rest = path[1:]
        while rest:
            name, _, rest = rest.partition("/")
            if not name:
                raise FsError(f"empty component in path {path!r}")
            if inode.file_type != FileType.DIRECTORY:
                raise FsError(f"{path}: a path component is not a directory")
            found = self._find(inode, name)
            if found is None:
                raise FsError(f"{path}: no such file or directory")
            offset = found[3].inode
            inode = self.image.read_inode(offset)
        return inode, offset

    def _parent(self, path: str) -> tuple[str, Inode, int]:
        parent_path, name = _split(path)
        _check_name(name)
        parent, parent_offset = self.lookup(parent_path)
        if parent.file_type != FileType.DIRECTORY:
            raise FsError(f"{parent_path} is not a directory")
        return name, parent, parent_offset

    def create(self, path: str, file_type: int) -> tuple[Inode, int]:
        """Create an empty file of ``file_type`` at ``path``; return its inode and offset."""
        name, parent, parent_offset = self._parent(path)
        if self.image.super_block.avail_inode_num == 0:
            raise FsError("no inode available")

        free_slot = None
        for index, block, slot, entry in self._slots(parent):
            if entry.inode == 0:
                if free_slot is None:
                    free_slot = (index, block, slot)
            elif entry.name == name:
                raise FsError(f"{path}: file exists")
        if free_slot is None:
            self.image.alloc_block(parent, parent_offset)
            parent.size = parent.block_count * self.image.block_size
            free_slot = (parent.block_count - 1, bytes(self.image.block_size), 0)

        index, block, slot = free_slot
        offset = self.image.take_inode()
        self.image.write_block(parent, index, _put_entry(block, slot, DirEntry(offset, name)))
        self.image.write_inode(parent_offset, parent)

        try:
            kind = FileType(file_type)
        except ValueError:
            kind = file_type
        inode = Inode(file_type=kind, link_count=1)
        self.image.write_inode(offset, inode)
        return inode, offset

    def remove(self, path: str, file_type: int) -> Inode:
        """Unlink the file of ``file_type`` at ``path``, freeing it when no link is left."""
        name, parent, _ = self._parent(path)
        found = self._find(parent, name)
        if found is None:
            raise FsError(f"{path}: no such file or directory")
        index, block, slot, entry = found

        offset = entry.inode
        inode = self.image.read_inode(offset)
        if inode.file_type != file_type:
            raise FsError(f"{path}: file type does not match")
        if file_type == FileType.DIRECTORY and next(self.entries(inode), None) is not None:
            raise FsError(f"{path}: directory is not empty")

        inode.link_count -= 1
        if inode.link_count == 0:
            self.image.free_blocks(inode, offset)
            self.image.release_inode(offset)
        else:
            self.image.write_inode(offset, inode)

        self.image.write_block(parent, index, _put_entry(block, slot, DirEntry(0, entry.name)))
        return inode

    def write_data(self, inode: Inode, inode_offset: int, stream: BinaryIO) -> int:
        """Copy ``stream`` into the blocks of ``inode``; return the bytes written."""
        written = 0
        for index, chunk in enumerate(iter(partial(stream.read, self.image.block_size), b"")):
            if index == inode.block_count:
                self.image.alloc_block(inode, inode_offset)
            self.image.write_block(inode, index, chunk)
            inode.size += len(chunk)
            written += len(chunk)
        self.image.write_inode(inode_offset, inode)
        return written

    def _read_file(self, inode: Inode) -> bytes:
        data = b"".join(self.image.read_block(inode, index) for index in range(inode.block_count))
        return data[: inode.size]


def _open(path: str, mode: str) -> BinaryIO:
    try:
        return open(path, mode)
    except OSError as exc:
        raise FsError(f"failed to open {path}: {exc}") from exc


@contextmanager
def _mounted(driver: str, mode: str) -> Iterator[FileSystem]:
    with _open(driver, mode) as file:
        yield FileSystem(Image.load(file))


def _report(label: str, super_block: SuperBlock) -> SuperBlock:
    print(
        f"{label} success.\n{super_block.avail_inode_num} inodes and "
        f"{super_block.avail_block_num} data blocks available."
    )
    return replace(super_block)


def format_image(driver: str, sector_num: int, sectors_per_block: int) -> SuperBlock:
    """Create a fresh image at ``driver`` with an empty root directory."""
    with _open(driver, "w+b") as file:
        image = Image.create(file, sector_num, sectors_per_block)
        image.init_root()
        print(f"format {driver} -s {sector_num} -b {sectors_per_block}")
        return _report("FORMAT", image.super_block)


def mkdir(driver: str, path: str) -> SuperBlock:
    """Create directory ``path``; a trailing '/' is allowed."""
    target = path[:-1] if path.endswith("/") else path
    with _mounted(driver, "r+b") as fs:
        fs.create(target, FileType.DIRECTORY)
        print(f"mkdir {path}")
        return _report("MKDIR", fs.image.super_block)


def rmdir(driver: str, path: str) -> SuperBlock:
    """Remove the empty directory ``path``; a trailing '/' is allowed."""
    target = path[:-1] if path.endswith("/") else path
    with _mounted(driver, "r+b") as fs:
        fs.remove(target, FileType.DIRECTORY)
        print(f"rmdir {target}")
        return _report("RMDIR", fs.image.super_block)


def cp(driver: str, src_path: str, dest_path: str) -> SuperBlock:
    """Copy the host file ``src_path`` into the image as ``dest_path``."""
    with _open(src_path, "rb") as source, _mounted(driver, "r+b") as fs:
        inode, offset = fs.create(dest_path, FileType.REGULAR)
        fs.write_data(inode, offset, source)
        print(f"cp {src_path} {dest_path}")
        return _report("CP", fs.image.super_block)


def rm(driver: str, path: str) -> SuperBlock:
    """Remove the regular file ``path``."""
    with _mounted(driver, "r+b") as fs:
        fs.remove(path, FileType.REGULAR)
        print(f"rm {path}")
        return _report("RM", fs.image.super_block)


def ls(driver: str, path: str) -> list[tuple[str, Inode]]:
    """List ``path``: its entries for a directory, or the file itself otherwise."""
    with _mounted(driver, "rb") as fs:
        inode, _ = fs.lookup(path)
        print(f"ls {path}")
        if inode.file_type == FileType.REGULAR:
            print(
                f"Type: {int(inode.file_type)}, LinkCount: {inode.link_count}, "
                f"BlockCount: {inode.block_count}, Size: {inode.size}."
            )
            return [(path.rpartition("/")[2], inode)]
        listing = [(entry.name, fs.image.read_inode(entry.inode)) for entry in fs.entries(inode)]
        for name, child in listing:
            print(
                f"Name: {name}, Type: {int(child.file_type)}, LinkCount: {child.link_count}, "
                f"BlockCount: {child.block_count}, Size: {child.size}."
            )
        _report("LS", fs.image.super_block)
        return listing


def cat(driver: str, path: str) -> bytes:
    """Return and print the contents of the file at ``path``."""
    with _mounted(driver, "rb") as fs:
        inode, _ = fs.lookup(path)
        if inode.file_type == FileType.DIRECTORY:
            raise FsError(f"cat {path}: is a directory.")
        data = fs._read_file(inode)
        print(f"cat {path}")
        print(data.decode("utf-8", "replace"))
        _report("CAT", fs.image.super_block)
        return data


def touch(driver: str, path: str) -> SuperBlock:
    """Create an empty regular file at ``path``."""
    with _mounted(driver, "r+b") as fs:
        fs.create(path, FileType.REGULAR)
        print(f"touch {path}")
        return _report("TOUCH", fs.image.super_block)