#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import re
import lorecompact

from typing import List, Tuple, Iterable, Optional

logger = lorecompact.logger

DIFF_START_RE = re.compile(r'^diff --git ')
HUNK_START_RE = re.compile(r'^@@ ')
DIFF_HEADER_RE = re.compile(r'^(diff --git |index |--- a/|\+\+\+ b/)')
NEW_FILE_RE = re.compile(r'^\+\+\+ b/(.+)$')
OLD_FILE_RE = re.compile(r'^--- a/(.+)$')


class DiffStat:
    files: int
    insertions: int
    deletions: int
    # (filename, insertions, deletions), in the order files were first touched
    per_file: Tuple[Tuple[str, int, int], ...]

    def __init__(self, per_file: Iterable[Tuple[str, int, int]] = ()):
        self.per_file = tuple(per_file)
        self.files = len(self.per_file)
        self.insertions = sum(x[1] for x in self.per_file)
        self.deletions = sum(x[2] for x in self.per_file)

    @staticmethod
    def from_entries(entries: Iterable[Tuple[str, int, int]]) -> 'DiffStat':
        """
        Fold (filename, insertions, deletions) entries into a stat, summing
        entries for the same file.
        """
        folded = list()
        index = dict()
        for fname, ins, dels in entries:
            if fname not in index:
                index[fname] = len(folded)
                folded.append((fname, ins, dels))
                continue
            at = index[fname]
            prev = folded[at]
            folded[at] = (fname, prev[1] + ins, prev[2] + dels)
        return DiffStat(folded)

    @staticmethod
    def merge(stats: Iterable[Optional['DiffStat']]) -> 'DiffStat':
        entries = list()
        for stat in stats:
            if stat is None:
                continue
            entries.extend(stat.per_file)
        return DiffStat.from_entries(entries)

    @property
    def size(self) -> int:
        return self.insertions + self.deletions

    def as_dict(self) -> dict:
        return {
            'files': self.files,
            'insertions': self.insertions,
            'deletions': self.deletions,
            'perFile': [{'file': x[0], 'insertions': x[1], 'deletions': x[2]} for x in self.per_file],
        }

    def __eq__(self, other: 'DiffStat') -> bool:
        return self.per_file == other.per_file

    def __repr__(self) -> str:
        out = list()
        out.append('%s files changed, %s insertions(+), %s deletions(-)' % (self.files, self.insertions,
                                                                           self.deletions))
        for fname, ins, dels in self.per_file:
            out.append('  %s | +%s -%s' % (fname, ins, dels))
        return '\n'.join(out)


def extract_diff_blocks(body: str) -> List[str]:
    """Split out every "diff --git" block, each running until the next one"""
    blocks = list()
    current = None
    for line in re.split(r'\r?\n', body):
        if DIFF_START_RE.search(line):
            if current is not None:
                blocks.append('\n'.join(current))
            current = [line]
        elif current is not None:
            current.append(line)

    if current is not None:
        blocks.append('\n'.join(current))
    return blocks


def compute_diffstat(diff: str) -> DiffStat:
    entries = list()
    curfile = None
    for line in re.split(r'\r?\n', diff):
        matches = NEW_FILE_RE.search(line)
        if matches:
            curfile = matches.group(1)
            continue
        matches = OLD_FILE_RE.search(line)
        if matches and not curfile:
            # Deleted files have no +++ b/ line
            curfile = matches.group(1)
            continue
        if line.startswith('Binary files '):
            curfile = None
            continue
        if not curfile:
            continue
        if line.startswith('+') and not line.startswith('+++'):
            entries.append((curfile, 1, 0))
        elif line.startswith('-') and not line.startswith('---'):
            entries.append((curfile, 0, 1))

    return DiffStat.from_entries(entries)


def truncate_by_hunks(diff: str, max_hunks_per_file: int = 3, max_hunk_lines: int = 80) -> str:
    lorecompact.check_limit('max_hunks_per_file', max_hunks_per_file)
    lorecompact.check_limit('max_hunk_lines', max_hunk_lines)
    out = list()
    hunks = 0
    # Lines taken from the current hunk, None until we see the first one
    used = None
    for line in re.split(r'\r?\n', diff):
        if HUNK_START_RE.search(line):
            hunks += 1
            if hunks > max_hunks_per_file:
                break
            out.append(line)
            used = 0
            continue
        if used is not None:
            if used < max_hunk_lines:
                out.append(line)
                used += 1
            continue
        if DIFF_HEADER_RE.search(line):
            out.append(line)

    return '\n'.join(out)


def extract_diffs(body: str, max_files: int = 10, max_hunks_per_file: int = 3,
                  max_hunk_lines: int = 80) -> Tuple[List[str], DiffStat]:
    """
    Returns the largest max_files diff blocks, truncated by hunks, along with
    the stat for all blocks in the body (including the ones we dropped).
    """
    lorecompact.check_limit('max_files', max_files)
    blocks = list()
    for block in extract_diff_blocks(body):
        blocks.append((block, compute_diffstat(block)))
    # sorted() is stable, so same-sized blocks stay in body order
    blocks = sorted(blocks, key=lambda x: x[1].size, reverse=True)
    diffs = list()
    for block, stat in blocks[:max_files]:
        diffs.append(truncate_by_hunks(block, max_hunks_per_file=max_hunks_per_file,
                                       max_hunk_lines=max_hunk_lines))
    if len(blocks) > max_files:
        logger.debug('Showing %s out of %s changed files', max_files, len(blocks))

    return diffs, DiffStat.merge([x[1] for x in blocks])
