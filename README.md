# genfs

`genfs` creates and edits small ext2-like file system images kept in an
ordinary file. An image is split into block groups. Each group holds a
super block, a table of group descriptors, an inode bitmap, a block bitmap,
an inode table and data blocks. Files use 12 direct block pointers plus
singly, doubly and triply indirect pointers.

## Installing

```
pip install .
```

## Building a boot image

The `genfs` command formats an image of 8196 sectors with 2 sectors per
block and fills it with a fixed tree. The file given as the argument is
copied to `/boot/initrd`:

```
genfs path/to/initrd
genfs path/to/initrd -o disk.img
```

The image is written to `fs.bin` in the current directory unless
`-o`/`--output` names another file. Besides `/boot/initrd` it creates
`/dev/stdin`, `/dev/stdout`, `/usr`, `/data/test.txt`,
`/data/dir1/dir11/test.txt` and `/data/dir2/test.txt`, and after each step
prints how many inodes and data blocks are still free. If a step fails the
command prints the error to standard error and exits with status 1.

## Using the library

The functions in `genfs.fs` each open the image, do one job and close it
again. Each raises `genfs.layout.FsError` when it fails (including when a
file cannot be opened).

```python
from genfs.fs import format_image, mkdir, touch, cp, ls, cat, rm, rmdir

format_image("disk.img", 8196, 2)
mkdir("disk.img", "/docs")
cp("disk.img", "notes.txt", "/docs/notes.txt")
touch("disk.img", "/docs/empty")
listing = ls("disk.img", "/docs")        # [(name, Inode), ...]
data = cat("disk.img", "/docs/notes.txt")  # the file's bytes
rm("disk.img", "/docs/empty")
```

- `format_image`, `mkdir`, `rmdir`, `cp`, `rm` and `touch` print a report
  and return a copy of the `SuperBlock` as it stands afterwards.
- `ls` prints and returns the entries of a directory, or the file itself
  for a regular file.
- `cat` prints the file's contents and returns them; it refuses a
  directory.

Paths must be absolute and must not contain `//`. `mkdir` and `rmdir`
accept a directory with or without a trailing `/`. `rmdir` removes only
empty directories, `rm` only regular files. Names may be at most 64 bytes.

### Lower-level access

- `genfs.fs.FileSystem` works on an open `Image`: `lookup(path)`,
  `entries(inode)`, `create(path, file_type)`, `remove(path, file_type)`
  and `write_data(inode, inode_offset, stream)`.
- `genfs.image.Image` wraps an open binary file: `Image.create` and
  `Image.load`, `read_inode`/`write_inode`, `read_block`/`write_block`,
  `alloc_block`, `free_last_block`, `free_blocks`, `take_inode`,
  `release_inode` and `init_root`.
- `genfs.layout` holds the on-disk record types (`SuperBlock`,
  `GroupDesc`, `Inode`, `DirEntry`, each with `pack`/`unpack`), the
  `FileType` enum, `FsError`, and the arithmetic that lays the groups out
  (`group_count`, `group_size`, `inodes_in_group`, `blocks_in_group`,
  `pointer_blocks_needed`).

## What it does not do

The `genfs` command only builds the fixed boot tree; the other operations
are available from Python, not as commands. There is no way to rename
files, make links, write into an existing file, or copy a file from the
image back to the host other than reading it with `cat`. Images are not
mounted; they are only edited through these functions.

## Running the tests

```
pip install .[test]
pytest
```