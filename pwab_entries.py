"""Entry point discovery for multi-page builds.

Walks a project tree for page sources (``*.html`` by default) and turns each
one into an alias -> absolute path pair. Aliases are anchored at the
application root segment (``app``) so they stay the same wherever the
repository is checked out:

    <checkout>/app/blog/post/index.html  ->  'blog/post/index'

Both failure modes are fatal for a build and are raised, never logged and
skipped: a path that cannot be reduced to a non-empty leaf name
(PathParseError) and two sources claiming the same alias
(DuplicateAliasError).
"""
from __future__ import annotations
import os
from typing import Dict, Iterable, List

DEFAULT_APP_ROOT = 'app'
DEFAULT_PAGE_EXT = '.html'
DEFAULT_EXCLUDED_DIRS = ('dist', 'node_modules')

__all__ = [
    'EntryError', 'PathParseError', 'DuplicateAliasError',
    'DEFAULT_APP_ROOT', 'DEFAULT_PAGE_EXT', 'DEFAULT_EXCLUDED_DIRS',
    'is_excluded', 'find_page_files', 'entry_alias', 'build_entry_set', 'resolve_entries',
]


class EntryError(Exception):
    """Base class for fatal entry resolution errors."""


class PathParseError(EntryError):
    def __init__(self, path: str, reason: str = 'empty file name'):
        self.path = path
        self.reason = reason
        super().__init__(f"Error parsing path: {path} ({reason})")


class DuplicateAliasError(EntryError):
    def __init__(self, alias: str, existing: str, duplicate: str):
        self.alias = alias
        self.paths = (existing, duplicate)
        super().__init__(f"Duplicate entry alias '{alias}': {existing} and {duplicate}")


def _segments(path: str) -> List[str]:
    norm = os.path.normpath(path).replace('\\', '/')
    return [s for s in norm.split('/') if s not in ('', '.')]


def is_excluded(path: str, excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS) -> bool:
    """True if any directory segment of ``path`` is an excluded name."""
    excluded = set(excluded_dirs or ())
    if not excluded:
        return False
    return any(seg in excluded for seg in _segments(path)[:-1])


def _under(path: str, parents: List[str]) -> bool:
    return any(os.path.commonpath([p, path]) == p for p in parents)


def find_page_files(root: str, page_ext: str = DEFAULT_PAGE_EXT,
                    excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS,
                    excluded_paths: Iterable[str] = ()) -> List[str]:
    """Sorted page sources under ``root``.

    ``excluded_dirs`` are directory names skipped anywhere in the tree,
    ``excluded_paths`` are concrete directories (the build output) skipped
    with everything below them.
    """
    root = os.path.abspath(root)
    excluded = set(excluded_dirs or ())
    skip_paths = [os.path.abspath(p) for p in excluded_paths or ()]
    found = []
    for base, dirs, files in os.walk(root):
        # prune early; is_excluded below still guards paths above the root
        dirs[:] = [d for d in dirs if d not in excluded and not _under(os.path.join(base, d), skip_paths)]
        for fn in files:
            if fn.endswith(page_ext):
                found.append(os.path.join(base, fn))
    rel_ok = []
    for p in found:
        if not is_excluded(os.path.relpath(p, root), excluded):
            rel_ok.append(p)
    return sorted(rel_ok)


def entry_alias(path: str, app_root: str = DEFAULT_APP_ROOT, page_ext: str = DEFAULT_PAGE_EXT) -> str:
    """Return the '/'-joined alias for ``path``.

    Segments up to and including the first ``app_root`` segment are dropped,
    the page extension is stripped from the leaf.
    """
    segs = _segments(path)
    if app_root not in segs:
        raise PathParseError(path, f"no '{app_root}' segment")
    segs = segs[segs.index(app_root) + 1:]
    if not segs or not segs[-1]:
        raise PathParseError(path)
    leaf = segs[-1]
    if page_ext and leaf.endswith(page_ext):
        leaf = leaf[:-len(page_ext)]
    if not leaf:
        raise PathParseError(path, 'empty name after removing extension')
    segs[-1] = leaf
    return '/'.join(segs)


def build_entry_set(paths: Iterable[str], app_root: str = DEFAULT_APP_ROOT,
                    page_ext: str = DEFAULT_PAGE_EXT, anchor_base: str | None = None) -> Dict[str, str]:
    """Map alias -> absolute path, refusing to overwrite an existing alias.

    ``anchor_base`` limits where the app root segment is searched for: aliases
    are computed from the path relative to it (absolute path otherwise).
    """
    entries: Dict[str, str] = {}
    for p in paths:
        abs_p = os.path.abspath(p)
        key_path = os.path.relpath(abs_p, anchor_base) if anchor_base else abs_p
        try:
            alias = entry_alias(key_path, app_root, page_ext)
        except PathParseError as e:
            raise PathParseError(abs_p, e.reason) from None
        if alias in entries:
            raise DuplicateAliasError(alias, entries[alias], abs_p)
        entries[alias] = abs_p
    return entries


def resolve_entries(root: str, app_root: str = DEFAULT_APP_ROOT, page_ext: str = DEFAULT_PAGE_EXT,
                    excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS,
                    excluded_paths: Iterable[str] = ()) -> Dict[str, str]:
    root = os.path.abspath(root)
    files = find_page_files(root, page_ext, excluded_dirs, excluded_paths)
    # search for the anchor from the root's own name downwards
    return build_entry_set(files, app_root, page_ext, anchor_base=os.path.dirname(root))
