"""Shared utility helpers."""

from nix_selinux.utils.paths import (
    atomic_temp_path,
    copy_file_atomically,
    sha256_file,
    write_json_atomically,
)
from nix_selinux.utils.time_utils import now_utc

__all__ = [
    "atomic_temp_path",
    "copy_file_atomically",
    "sha256_file",
    "write_json_atomically",
    "now_utc",
]
