""" View container metadata without decrypting anything. """

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .container import inspect_header
from .exceptions import IOFailure
from .format import Header
from .metadata import Metadata


@dataclass(frozen=True)
class ContainerInfo:
    header: Header
    metadata: Metadata
    container_size: int

    def describe(self, now: Optional[float] = None) -> str:
        """ Human-readable summary, one field per line. """
        meta = self.metadata
        lines = [
            f"Format: CryptoCrate v{self.header.version}",
            f"Algorithm: {self.header.algorithm_name}",
            f"Original filename: {meta.filename}",
            f"Original size: {format_size(meta.original_size)}",
            f"Encrypted size: {format_size(self.container_size)}",
        ]
        if meta.modified_time:
            lines.append(
                f"Modified: {format_relative_time(meta.modified_time, now)} (Unix: {meta.modified_time})"
            )
        lines.append(f"Compressed: {'yes' if meta.compressed else 'no'}")
        if meta.compressed and meta.original_size:
            ratio = self.container_size / meta.original_size * 100.0
            lines.append(f"Compression ratio: {ratio:.1f}% of original")
        return "\n".join(lines)


def inspect_file(path) -> ContainerInfo:
    path = Path(path)
    try:
        size = path.stat().st_size
        with open(path, "rb") as f:
            header, metadata = inspect_header(f)
    except OSError as e:
        raise IOFailure(f"cannot read {path}: {e.strerror or e}") from e
    return ContainerInfo(header=header, metadata=metadata, container_size=size)


def format_size(num_bytes: int) -> str:
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    if num_bytes >= gb:
        return f"{num_bytes / gb:.2f} GB"
    if num_bytes >= mb:
        return f"{num_bytes / mb:.2f} MB"
    if num_bytes >= kb:
        return f"{num_bytes / kb:.2f} KB"
    return f"{num_bytes} bytes"


def format_relative_time(timestamp: int, now: Optional[float] = None) -> str:
    now = time.time() if now is None else now
    diff = int(abs(now - timestamp))

    minute = 60
    hour = minute * 60
    day = hour * 24
    week = day * 7
    month = day * 30
    year = day * 365

    for unit, name in ((year, "year"), (month, "month"), (week, "week"), (day, "day"), (hour, "hour"), (minute, "minute")):
        if diff >= unit:
            count = diff // unit
            suffix = "ago" if now >= timestamp else "from now"
            return f"{count} {name}{'s' if count != 1 else ''} {suffix}"
    return "just now"
