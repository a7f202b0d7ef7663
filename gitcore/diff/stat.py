"""Parser for ``git diff --stat`` style summaries."""

from __future__ import annotations

import logging
import re

from gitcore.diff.models import ChangeStatus, DiffResult, FileChange

logger = logging.getLogger(__name__)

# "<path> | <N> <+/- glyphs>"; the summary line and binary entries do not match.
_STAT_LINE_RE = re.compile(r"^\s*(.+?)\s+\|\s+(\d+)\s+([+-]+)\s*$")


def parse_diff_stat(text: str) -> DiffResult:
    """Parse a textual change summary.

    Additions and deletions are the number of ``+`` and ``-`` glyphs on
    each line.  Lines that do not have the expected shape are skipped.
    """
    files: list[FileChange] = []
    for line in text.splitlines():
        match = _STAT_LINE_RE.match(line)
        if match is None:
            if line.strip():
                logger.debug("Skipping diff stat line: %r", line)
            continue
        path, _total, glyphs = match.groups()
        # --stat does not say whether a path was added or removed
        files.append(
            FileChange(
                path=path.strip(),
                additions=glyphs.count("+"),
                deletions=glyphs.count("-"),
                status=ChangeStatus.MODIFIED,
            )
        )
    return DiffResult.from_files(files)
