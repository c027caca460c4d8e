"""
Resolve command line arguments or default globs into a list of candidate files.
"""

import fnmatch
import logging
import pathlib
import typing

from .utils import expand

log = logging.getLogger(__name__)

Paths = typing.Tuple[pathlib.Path, ...]


def resolve(
        targets: typing.Sequence[str],
        default_globs: typing.Sequence[str],
        patterns: typing.Sequence[str],
        root: pathlib.Path) -> Paths:
    """
    Expand targets (or the default globs when there are none) into files.

    The result holds canonical paths with duplicates removed, in the order
    each file was first found.
    """
    if targets:
        log.info(f"Searching specified paths: {', '.join(targets)}")
        found = search_targets(targets, patterns)
    else:
        log.info(f"No paths specified, using default globs: {', '.join(default_globs)}")
        found = search_globs(default_globs, root)
    return unique(found)


def search_targets(
        targets: typing.Sequence[str],
        patterns: typing.Sequence[str]) -> typing.Iterator[pathlib.Path]:
    for target in targets:
        path = expand(target)
        if not path.exists():
            log.warning(f"Specified path does not exist, skipping: {path}")
        elif path.is_dir():
            yield from search_directory(path, patterns)
        elif path.is_file():
            yield path
        else:
            log.warning(f"Specified path is not a regular file, skipping: {path}")


def search_directory(
        directory: pathlib.Path,
        patterns: typing.Sequence[str]) -> Paths:
    """Find files under a directory with a name matching any of the patterns."""
    files = tuple(sorted(
        p for p in directory.glob('**/*')
        if p.is_file() and matches(p.name, patterns)))
    log.debug(f"Found {len(files)} matching files in {directory}")
    return files


def search_globs(
        globs: typing.Sequence[str],
        root: pathlib.Path) -> typing.Iterator[pathlib.Path]:
    for pattern in globs:
        try:
            files = expand_glob(pattern, root)
        except (ValueError, NotImplementedError) as error:
            log.warning(f"Skipping glob pattern {pattern!r}: {error}")
            continue
        log.debug(f"Glob {pattern!r} matched {len(files)} files")
        yield from files


def expand_glob(pattern: str, root: pathlib.Path) -> Paths:
    """Expand a glob relative to the root, or from its anchor if it's absolute."""
    path = expand(pattern)
    if path.is_absolute():
        base = pathlib.Path(path.anchor)
        pattern = path.relative_to(base).as_posix()
    else:
        base = root
    return tuple(sorted(p for p in base.glob(pattern) if p.is_file()))


def matches(name: str, patterns: typing.Sequence[str]) -> bool:
    return any(fnmatch.fnmatch(name, pattern) for pattern in patterns)


def unique(paths: typing.Iterable[pathlib.Path]) -> Paths:
    seen: typing.Dict[pathlib.Path, None] = {}
    for path in paths:
        seen.setdefault(path.resolve(), None)
    return tuple(seen)
