"""Create and edit block-group file system images stored in ordinary files."""

__version__ = "0.1.0"
__all__ = ["layout", "image", "fs", "cli"]