#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import re
import lorecompact
import lorecompact.mbox
import lorecompact.diff

from typing import Optional, List, Dict, Tuple

from lorecompact import LoreMessage, LoreSubject, LoreTrailer
from lorecompact.diff import DiffStat

logger = lorecompact.logger

# Quote stripping states
NORMAL = 'normal'
IN_QUOTE = 'in-quote-block'
IN_SIGNATURE = 'in-signature'

QUOTE_INTRO_RE = re.compile(r'^(On .+ wrote:|-----Original Message-----|_{3,})')
OUTLOOK_FROM_RE = re.compile(r'^From:.+@.+')
OUTLOOK_NEXT_RE = re.compile(r'Sent:|To:|Subject:', flags=re.I)
SIG_BEGIN_RE = re.compile(r'^-----BEGIN PGP SIGNATURE-----')
SIG_END_RE = re.compile(r'^-----END PGP SIGNATURE-----')
SIG_SEPARATOR_RE = re.compile(r'^--\s*$')

# (state, line event) -> (next state, keep the line)
QUOTE_TRANSITIONS: Dict[Tuple[str, str], Tuple[str, bool]] = {
    (NORMAL, 'quote-intro'): (IN_QUOTE, False),
    (NORMAL, 'sig-begin'): (IN_SIGNATURE, False),
    (NORMAL, 'sig-end'): (NORMAL, False),
    (NORMAL, 'blank'): (NORMAL, True),
    (NORMAL, 'text'): (NORMAL, True),
    (IN_QUOTE, 'quote-intro'): (IN_QUOTE, False),
    (IN_QUOTE, 'sig-begin'): (IN_SIGNATURE, False),
    (IN_QUOTE, 'sig-end'): (NORMAL, False),
    (IN_QUOTE, 'blank'): (IN_QUOTE, False),
    (IN_QUOTE, 'text'): (NORMAL, True),
    (IN_SIGNATURE, 'quote-intro'): (IN_SIGNATURE, False),
    (IN_SIGNATURE, 'sig-begin'): (IN_SIGNATURE, False),
    (IN_SIGNATURE, 'sig-end'): (NORMAL, False),
    (IN_SIGNATURE, 'blank'): (IN_SIGNATURE, False),
    (IN_SIGNATURE, 'text'): (IN_SIGNATURE, False),
}

PATCH_BRACKET_RE = re.compile(r'\[[^\]]*\bpatch')
COVER_COUNTER_RE = re.compile(r'\[[^\]]*\b0+\s*/\s*\d+\b[^\]]*\]')
REPLY_PREFIX_RE = re.compile(r'^\s*(re|fwd|aw|sv|antw):\s*', flags=re.I)


def _get_line_event(lines: List[str], at: int) -> str:
    line = lines[at]
    if QUOTE_INTRO_RE.search(line):
        return 'quote-intro'
    if OUTLOOK_FROM_RE.search(line) and at + 1 < len(lines) and OUTLOOK_NEXT_RE.search(lines[at + 1]):
        return 'quote-intro'
    if SIG_BEGIN_RE.search(line):
        return 'sig-begin'
    if SIG_END_RE.search(line):
        return 'sig-end'
    if not line.strip():
        return 'blank'
    return 'text'


def strip_quoted(body: str) -> str:
    """
    Drop quoted replies, quote introducers, PGP signatures and anything below
    the "-- " signature separator, leaving what the author actually wrote.
    """
    lines = re.split(r'\r?\n', body)
    out = list()
    state = NORMAL
    for at, line in enumerate(lines):
        if line.startswith('>'):
            continue
        # A signature separator ends the message, unless a patch follows it
        if SIG_SEPARATOR_RE.search(line) and 'diff --git ' not in '\n'.join(lines[at + 1:]):
            break
        state, keep = QUOTE_TRANSITIONS[(state, _get_line_event(lines, at))]
        if keep:
            out.append(line)

    return '\n'.join(out)


def extract_trailers(body: str) -> List[LoreTrailer]:
    return LoreMessage.find_trailers(body)


def parse_patch_subject(subject: Optional[str]) -> LoreSubject:
    return LoreSubject(subject)


def normalize_subject(subject: Optional[str]) -> str:
    if not subject:
        return ''
    # Re: Fwd: Re: ...
    while True:
        stripped = REPLY_PREFIX_RE.sub('', subject, count=1)
        if stripped == subject:
            break
        subject = stripped
    subject = re.sub(r'\[[^\]]+\]\s*', '', subject)
    return re.sub(r'\s+', ' ', subject.strip())


def detect_patch_kind(lmsg: LoreMessage) -> str:
    """Returns one of cover, patch or reply"""
    subject = lmsg.subject.lower()
    if PATCH_BRACKET_RE.search(subject):
        if COVER_COUNTER_RE.search(subject):
            return 'cover'
        return 'patch'
    if lmsg.has_diff:
        return 'patch'
    return 'reply'


def shorten_body(body: str, maxbytes: int) -> str:
    lorecompact.check_limit('maxbytes', maxbytes)
    if len(body) <= maxbytes:
        return body
    return body[:maxbytes] + '\n...[truncated %s bytes]' % (len(body) - maxbytes)


def summarize_thread(msgs: List[LoreMessage], max_messages: int = 50, strip: bool = True,
                     short_body_bytes: int = 1200) -> dict:
    lorecompact.check_limit('max_messages', max_messages)
    lorecompact.check_limit('short_body_bytes', short_body_bytes)
    items = list()
    for lmsg in lorecompact.mbox.dedupe_messages(msgs)[:max_messages]:
        item = {'subject': lmsg.subject}
        fromhdr = lmsg.get_header('from')
        if fromhdr is not None:
            item['from'] = fromhdr
        date = lmsg.get_header('date')
        if date is not None:
            item['date'] = date
        if lmsg.message_id:
            item['messageId'] = lmsg.message_id
        item['kind'] = detect_patch_kind(lmsg)
        if strip:
            body = strip_quoted(lmsg.body)
        else:
            body = lmsg.body
        item['body'] = shorten_body(body, short_body_bytes)
        item['hasDiff'] = lmsg.has_diff
        item['trailers'] = [x.as_dict() for x in extract_trailers(lmsg.body)]
        items.append(item)

    return {'items': items}


def summarize_thread_normalized(msgs: List[LoreMessage], max_messages: Optional[int] = None) -> dict:
    """
    Header-only view of the thread, with subjects and participants pooled so
    that each item only carries indexes into the pools.
    """
    lorecompact.check_limit('max_messages', max_messages)
    msgs = lorecompact.mbox.dedupe_messages(msgs)
    if max_messages is not None:
        msgs = msgs[:max_messages]

    firstsubj = ''
    if msgs:
        firstsubj = msgs[0].subject
    lsubj = LoreSubject(firstsubj)
    patch_series = None
    if lsubj.version or lsubj.total:
        patch_series = {'version': lsubj.version, 'total': lsubj.total}

    subjects = list()
    subject_map = dict()
    author_counts = dict()
    _items = list()
    for at, lmsg in enumerate(msgs):
        nsubj = normalize_subject(lmsg.subject)
        if nsubj not in subject_map:
            subject_map[nsubj] = len(subjects)
            subjects.append(nsubj)
        fromhdr = lmsg.get_header('from') or ''
        author_counts[fromhdr] = author_counts.get(fromhdr, 0) + 1
        _items.append((at, lmsg, fromhdr, nsubj))

    # Most active first, ties stay in the order we first saw them
    ranked = sorted(author_counts.items(), key=lambda x: x[1], reverse=True)
    participants = list()
    author_map = dict()
    for pid, (name, count) in enumerate(ranked):
        author_map[name] = pid
        participants.append({'id': pid, 'name': name, 'messages': count})

    items = list()
    for at, lmsg, fromhdr, nsubj in _items:
        item = {'id': at}
        if lmsg.message_id:
            item['mid'] = lmsg.message_id
        date = lmsg.get_header('date')
        if date:
            item['date'] = date
        item['from'] = author_map[fromhdr]
        item['subject'] = subject_map[nsubj]
        items.append(item)

    return {
        'thread': {
            'subject': firstsubj,
            'subject_base': normalize_subject(firstsubj),
            'total_messages': len(msgs),
            'patch_series': patch_series,
        },
        'participants': participants,
        'subjects': subjects,
        'items': items,
    }


class LorePatch:
    subject: str
    msgid: Optional[str]
    url: Optional[str]
    diffstat: Optional[DiffStat]
    diffs: Optional[List[str]]

    def __init__(self, subject: str, msgid: Optional[str] = None, url: Optional[str] = None,
                 diffstat: Optional[DiffStat] = None, diffs: Optional[List[str]] = None):
        self.subject = subject
        self.msgid = msgid
        self.url = url
        self.diffstat = diffstat
        self.diffs = diffs

    def as_dict(self) -> dict:
        out = {'subject': self.subject}
        if self.msgid:
            out['messageId'] = self.msgid
        if self.url:
            out['url'] = self.url
        if self.diffstat is not None:
            out['diffStat'] = self.diffstat.as_dict()
        if self.diffs is not None:
            out['diffs'] = list(self.diffs)
        return out

    def __repr__(self) -> str:
        out = list()
        out.append('  subject: %s' % self.subject)
        out.append('  msgid: %s' % self.msgid)
        if self.diffstat is not None:
            out.append('  diffstat: %s files, +%s -%s' % (self.diffstat.files, self.diffstat.insertions,
                                                          self.diffstat.deletions))
        if self.diffs is not None:
            out.append('  diffs: %s' % len(self.diffs))
        return '\n'.join(out)


class Patchset:
    subject: str
    version: Optional[str]
    parts: Optional[Dict[str, int]]
    cover_letter: Optional[Dict[str, str]]
    patches: List[LorePatch]
    # Always computed over every patch, regardless of diff truncation
    aggregate: DiffStat

    def __init__(self, subject: str, version: Optional[str] = None, parts: Optional[Dict[str, int]] = None,
                 cover_letter: Optional[Dict[str, str]] = None, patches: Optional[List[LorePatch]] = None,
                 aggregate: Optional[DiffStat] = None):
        self.subject = subject
        self.version = version
        self.parts = parts
        self.cover_letter = cover_letter
        if patches is None:
            patches = list()
        self.patches = patches
        if aggregate is None:
            aggregate = DiffStat.merge([x.diffstat for x in patches])
        self.aggregate = aggregate

    def as_dict(self) -> dict:
        series = {'subject': self.subject}
        if self.version:
            series['version'] = self.version
        series['parts'] = self.parts
        out = {'series': series}
        if self.cover_letter is not None:
            out['coverLetter'] = dict(self.cover_letter)
        out['patches'] = [x.as_dict() for x in self.patches]
        out['aggregate'] = self.aggregate.as_dict()
        return out

    def __repr__(self) -> str:
        out = list()
        out.append('subject: %s' % self.subject)
        out.append('version: %s' % self.version)
        out.append('parts: %s' % self.parts)
        out.append('cover_letter: %s' % self.cover_letter)
        out.append('--- Patches ---')
        for lpatch in self.patches:
            out.append(str(lpatch))
        out.append('--- Aggregate ---')
        out.append(str(self.aggregate))
        return '\n'.join(out)


def _get_cover_info(lmsg: LoreMessage) -> Dict[str, str]:
    cover = {'subject': lmsg.subject}
    if lmsg.message_id:
        cover['messageId'] = lmsg.message_id
    if lmsg.url:
        cover['url'] = lmsg.url
    return cover


def build_patchset(msgs: List[LoreMessage], include_diffs: bool = False, stat_only: bool = False,
                   max_files: int = 10, max_hunks_per_file: int = 3,
                   max_hunk_lines: int = 80) -> Optional[Patchset]:
    """
    Collects the patches in the thread into a series. Returns None when
    there is nothing in the thread that looks like a patch.
    """
    lorecompact.check_limit('max_files', max_files)
    lorecompact.check_limit('max_hunks_per_file', max_hunks_per_file)
    lorecompact.check_limit('max_hunk_lines', max_hunk_lines)
    pmsgs = [x for x in lorecompact.mbox.dedupe_messages(msgs) if detect_patch_kind(x) != 'reply']
    if not pmsgs:
        logger.debug('No patches found in %s messages', len(msgs))
        return None

    lsubjs = [LoreSubject(x.subject) for x in pmsgs]

    # Most common base subject wins, ties go to the one we saw first
    counts = dict()
    for lsubj in lsubjs:
        counts[lsubj.base] = counts.get(lsubj.base, 0) + 1
    subject = lsubjs[0].base
    maxcount = 0
    for base, count in counts.items():
        if count > maxcount:
            subject = base
            maxcount = count

    newest = None
    for lsubj in lsubjs:
        if lsubj.revision is None:
            continue
        if newest is None or lsubj.revision > newest.revision:
            newest = lsubj
    version = None
    if newest is not None:
        version = newest.version

    parts = None
    for lsubj in lsubjs:
        if lsubj.index is not None and lsubj.total is not None:
            parts = {'index': lsubj.index, 'total': lsubj.total or len(pmsgs)}
            break

    cover = None
    patches = list()
    for lmsg, lsubj in zip(pmsgs, lsubjs):
        if lsubj.index == 0:
            if cover is None:
                cover = _get_cover_info(lmsg)
            continue
        diffs = None
        if stat_only:
            blocks = lorecompact.diff.extract_diff_blocks(lmsg.body)
            diffstat = DiffStat.merge([lorecompact.diff.compute_diffstat(x) for x in blocks])
        else:
            _diffs, diffstat = lorecompact.diff.extract_diffs(lmsg.body, max_files=max_files,
                                                              max_hunks_per_file=max_hunks_per_file,
                                                              max_hunk_lines=max_hunk_lines)
            if include_diffs:
                diffs = _diffs
        patches.append(LorePatch(lmsg.subject, msgid=lmsg.message_id, url=lmsg.url, diffstat=diffstat,
                                 diffs=diffs))

    logger.debug('Found %s patches in series "%s" (version=%s, cover=%s)', len(patches), subject, version,
                 cover is not None)
    return Patchset(subject, version=version, parts=parts, cover_letter=cover, patches=patches)
