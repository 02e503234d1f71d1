"""Command that builds the default boot image."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from .fs import cp, format_image, mkdir, touch
from .layout import SECTOR_NUM, SECTORS_PER_BLOCK, FsError, SuperBlock

DEFAULT_DRIVER = "fs.bin"

_TREE: tuple[tuple[str, str], ...] = (
    ("mkdir", "/dev"),
    ("touch", "/dev/stdin"),
    ("touch", "/dev/stdout"),
    ("mkdir", "/usr"),
    ("mkdir", "/data/"),
    ("touch", "/data/test.txt"),
    ("mkdir", "/data/dir1"),
    ("mkdir", "/data/dir1/dir11"),
    ("touch", "/data/dir1/dir11/test.txt"),
    ("mkdir", "/data/dir2"),
    ("touch", "/data/dir2/test.txt"),
)

_ACTIONS = {"mkdir": mkdir, "touch": touch}


def build_image(driver: str, initrd: str) -> SuperBlock:
    """Format ``driver``, copy ``initrd`` to /boot/initrd and lay out the default tree.

    Returns the super block as it stands after the last step.
    """
    format_image(driver, SECTOR_NUM, SECTORS_PER_BLOCK)
    mkdir(driver, "/boot")
    state = cp(driver, initrd, "/boot/initrd")
    for action, path in _TREE:
        state = _ACTIONS[action](driver, path)
    return state


def main(argv: Sequence[str] | None = None) -> int:
    """Build the image from the command line; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="genfs", description="Build a filesystem image holding an initial ramdisk."
    )
    parser.add_argument("initrd", help="file to store as /boot/initrd")
    parser.add_argument(
        "-o",
        "--output",
        default=DEFAULT_DRIVER,
        help=f"image file to create (default: {DEFAULT_DRIVER})",
    )
    args = parser.parse_args(argv)
    try:
        build_image(args.output, args.initrd)
    except FsError as exc:
        print(f"genfs: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())