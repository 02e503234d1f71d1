import pytest

from genfs.cli import build_image, main
from genfs.fs import FileSystem, cat, format_image, ls
from genfs.image import Image
from genfs.layout import SECTOR_NUM, SECTORS_PER_BLOCK, FileType, FsError


@pytest.fixture
def initrd(tmp_path):
    path = tmp_path / "initrd.bin"
    path.write_bytes(b"kernel payload " * 200)
    return path


def _names(driver, path):
    return [name for name, _ in ls(driver, path)]


def _count_tree(fs, inode):
    total = 0
    for entry in fs.entries(inode):
        total += 1
        child = fs.image.read_inode(entry.inode)
        if child.file_type == FileType.DIRECTORY:
            total += _count_tree(fs, child)
    return total


def test_root_layout(tmp_path, initrd):
    driver = str(tmp_path / "fs.bin")
    build_image(driver, str(initrd))
    assert _names(driver, "/") == ["boot", "dev", "usr", "data"]
    assert _names(driver, "/dev") == ["stdin", "stdout"]
    assert _names(driver, "/data") == ["test.txt", "dir1", "dir2"]
    assert _names(driver, "/data/dir1/dir11") == ["test.txt"]
    assert _names(driver, "/usr") == []


def test_initrd_contents_round_trip(tmp_path, initrd):
    driver = str(tmp_path / "fs.bin")
    build_image(driver, str(initrd))
    assert cat(driver, "/boot/initrd") == initrd.read_bytes()


def test_touched_files_are_empty_regular_files(tmp_path, initrd):
    driver = str(tmp_path / "fs.bin")
    build_image(driver, str(initrd))
    [(name, inode)] = ls(driver, "/data/dir2/test.txt")
    assert name == "test.txt"
    assert inode.file_type == FileType.REGULAR
    assert inode.size == 0
    assert inode.block_count == 0


def test_inode_usage_matches_tree(tmp_path, initrd):
    fresh_driver = str(tmp_path / "fresh.bin")
    fresh = format_image(fresh_driver, SECTOR_NUM, SECTORS_PER_BLOCK)
    driver = str(tmp_path / "fs.bin")
    final = build_image(driver, str(initrd))
    with open(driver, "rb") as file:
        fs = FileSystem(Image.load(file))
        root = fs.image.read_inode(fs.image.root_offset)
        created = _count_tree(fs, root)
    assert fresh.avail_inode_num - final.avail_inode_num == created
    assert final.avail_block_num < fresh.avail_block_num


def test_missing_initrd_raises(tmp_path):
    driver = str(tmp_path / "fs.bin")
    with pytest.raises(FsError):
        build_image(driver, str(tmp_path / "absent"))


def test_main_builds_image(tmp_path, initrd):
    driver = tmp_path / "out.bin"
    assert main([str(initrd), "-o", str(driver)]) == 0
    assert cat(str(driver), "/boot/initrd") == initrd.read_bytes()


def test_main_reports_failure(tmp_path, capsys):
    driver = tmp_path / "out.bin"
    assert main([str(tmp_path / "absent"), "--output", str(driver)]) == 1
    assert "genfs:" in capsys.readouterr().err