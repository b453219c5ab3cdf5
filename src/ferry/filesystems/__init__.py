"""
Storage backends behind one capability surface.

Operation cost per backend:

=========  ===========  ==================================
backend    stat         mkdir_all
=========  ===========  ==================================
local      O(1)         O(1), native
sftp       O(1)         O(depth), verified per level
ftp        O(siblings)  O(depth), advisory (errors ignored)
=========  ===========  ==================================
"""

from ferry.filesystems.base import Capabilities, FileEntry, FileSystem
from ferry.filesystems.factory import BACKEND_KINDS, create_filesystem
from ferry.filesystems.ftp import FTPConfig, FTPFileSystem
from ferry.filesystems.local import LocalFileSystem
from ferry.filesystems.sftp import SFTPConfig, SFTPFileSystem

__all__ = [
    "BACKEND_KINDS",
    "Capabilities",
    "FileEntry",
    "FileSystem",
    "FTPConfig",
    "FTPFileSystem",
    "LocalFileSystem",
    "SFTPConfig",
    "SFTPFileSystem",
    "create_filesystem",
]
