"""
Decides which repository paths are in scope for translation.

A path survives when it is a Markdown file, lives outside the translation
output directory and any skipped directory, is not excluded, and (when
include patterns are configured) matches at least one of them.
"""

import logging
import re
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Sequence

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> Pattern:
    """
    Compile a path glob into an anchored regex.

    ``**`` matches across ``/``, ``*`` matches within one segment and every
    other character is literal.
    """
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts))


def match_path(path: str, pattern: str) -> bool:
    """True if the whole path matches the glob pattern."""
    return glob_to_regex(pattern).fullmatch(path) is not None


def is_markdown(path: str) -> bool:
    return path.endswith(tuple(cfg.MARKDOWN_EXTENSIONS))


def in_skipped_directory(
    path: str, skip_directories: Iterable[str] = None
) -> bool:
    """True if any directory component of the path is a skipped directory."""
    skip = cfg.SKIP_DIRECTORIES if skip_directories is None else skip_directories
    directories = path.split("/")[:-1]
    return any(part in skip for part in directories)


def is_translatable(
    path: str,
    include_patterns: Optional[Sequence[str]] = None,
    exclude_patterns: Optional[Sequence[str]] = None,
    output_dir: Optional[str] = None,
    skip_directories: Optional[Iterable[str]] = None,
) -> bool:
    output_dir = cfg.TRANSLATION_OUTPUT_DIR if output_dir is None else output_dir

    if not is_markdown(path):
        return False
    if path.startswith(output_dir.rstrip("/") + "/"):
        return False
    if in_skipped_directory(path, skip_directories):
        return False
    if exclude_patterns and any(match_path(path, p) for p in exclude_patterns):
        return False
    if include_patterns:
        return any(match_path(path, p) for p in include_patterns)
    return True


def filter_paths(
    paths: Iterable[str],
    include_patterns: Optional[Sequence[str]] = None,
    exclude_patterns: Optional[Sequence[str]] = None,
    output_dir: Optional[str] = None,
    skip_directories: Optional[Iterable[str]] = None,
) -> List[str]:
    """Return the translatable paths, in input order and without duplicates."""
    kept: List[str] = []
    for path in dict.fromkeys(paths):
        if is_translatable(
            path, include_patterns, exclude_patterns, output_dir, skip_directories
        ):
            kept.append(path)
        else:
            logger.debug("Path filtered out: %s", path)
    return kept
