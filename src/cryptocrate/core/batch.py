"""
Batch helpers: walk inputs, plan output paths, run containers concurrently.

Each container has its own salt, nonce and key, so items are independent and
can run in parallel. The only shared resource is the output directory; the
planners below refuse to send two items to the same output path.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from .container import CONTAINER_EXTENSION, default_encrypted_path, inspect_header, safe_output_name
from .exceptions import CryptoCrateError, FormatError, IOFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_WORKERS = 4


@dataclass(frozen=True)
class FileEntry:
    path: Path
    relative_path: Path
    size: int


def collect_files(path: str | Path) -> List[FileEntry]:
    """
    Return the regular files under ``path`` (or ``path`` itself if it is a file).

    Symbolic links are never followed or returned. Relative paths are taken
    from the parent of ``path`` so a directory keeps its own name.
    """
    path = Path(path)
    base = path.parent
    if path.is_symlink():
        logger.warning("skipping symbolic link %s", path)
        return []
    if path.is_file():
        return [FileEntry(path=path, relative_path=path.relative_to(base), size=path.stat().st_size)]
    if not path.is_dir():
        raise IOFailure(f"{path} does not exist or is not a regular file or directory")

    entries: List[FileEntry] = []
    for root, dirs, files in os.walk(path, followlinks=False):
        dirs.sort()
        for name in sorted(files):
            p = Path(root) / name
            if p.is_symlink() or not p.is_file():
                continue
            entries.append(FileEntry(path=p, relative_path=p.relative_to(base), size=p.stat().st_size))
    return entries


def _check_unique(pairs: Sequence[Tuple[Path, Path]]) -> None:
    seen = {}
    for source, target in pairs:
        key = os.path.normcase(os.path.abspath(target))
        if key in seen:
            raise ValueError(f"{seen[key]} and {source} would both be written to {target}")
        seen[key] = source


def plan_encrypt_outputs(
    entries: Sequence[FileEntry], output_dir: Optional[str | Path] = None
) -> List[Tuple[Path, Path]]:
    """Map each entry to ``<name>.crat``, mirroring the tree under ``output_dir`` if given."""
    pairs = []
    for entry in entries:
        if output_dir is None:
            target = default_encrypted_path(entry.path)
        else:
            target = default_encrypted_path(Path(output_dir) / entry.relative_path)
        pairs.append((entry.path, target))
    _check_unique(pairs)
    return pairs


def plan_decrypt_outputs(
    paths: Sequence[str | Path], output_dir: Optional[str | Path] = None
) -> List[Tuple[Path, Optional[Path]]]:
    """
    Map each container to the path its plaintext will be restored to.

    The target name comes from the container metadata. Containers whose
    header cannot be read get ``None``; decrypting them reports the error.
    """
    pairs: List[Tuple[Path, Optional[Path]]] = []
    for p in paths:
        p = Path(p)
        fallback = p.stem if p.suffix == CONTAINER_EXTENSION else p.name + ".out"
        parent = Path(output_dir) if output_dir is not None else p.parent
        try:
            with open(p, "rb") as f:
                _, metadata = inspect_header(f)
        except (OSError, FormatError) as e:
            logger.debug("cannot plan output for %s: %s", p, e)
            pairs.append((p, None))
            continue
        pairs.append((p, parent / safe_output_name(metadata.filename, fallback)))
    _check_unique([(s, t) for s, t in pairs if t is not None])
    return pairs


@dataclass
class BatchItemResult(Generic[T, R]):
    item: T
    value: Optional[R] = None
    error: Optional[CryptoCrateError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchReport(Generic[T, R]):
    results: List[BatchItemResult[T, R]] = field(default_factory=list)

    @property
    def succeeded(self) -> List[BatchItemResult[T, R]]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[BatchItemResult[T, R]]:
        return [r for r in self.results if not r.ok]

    @property
    def all_ok(self) -> bool:
        return not self.failed


def run_batch(
    items: Sequence[T],
    func: Callable[[T], R],
    workers: int = DEFAULT_WORKERS,
    on_done: Optional[Callable[[BatchItemResult[T, R]], None]] = None,
) -> BatchReport[T, R]:
    """
    Apply ``func`` to every item on a bounded thread pool.

    A CryptoCrateError for one item is recorded and the batch carries on;
    anything else is a bug and propagates. Results keep the input order.
    ``on_done`` is called from the calling thread as each item completes,
    in completion order.
    """
    results: List[Optional[BatchItemResult[T, R]]] = [None] * len(items)
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = {pool.submit(func, item): i for i, item in enumerate(items)}
        for future in as_completed(futures):
            i = futures[future]
            try:
                results[i] = BatchItemResult(item=items[i], value=future.result())
            except CryptoCrateError as e:
                logger.error("%s: %s", items[i], e)
                results[i] = BatchItemResult(item=items[i], error=e)
            if on_done is not None:
                on_done(results[i])
    report = BatchReport(results=[r for r in results if r is not None])
    logger.info("batch finished: %d ok, %d failed", len(report.succeeded), len(report.failed))
    return report
