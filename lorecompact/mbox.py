#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import re
import lorecompact

from typing import List, Optional, Dict

from lorecompact import LoreMessage

logger = lorecompact.logger

BASE64_LINE_RE = re.compile(r'^[A-Za-z0-9+/]+={0,2}$')

# Score adjustments when picking between duplicate deliveries
QUALITY_BASE64_CTE = -60
QUALITY_MBOXRD_ARTIFACT = -40
QUALITY_LIST_HEADERS = -20
QUALITY_BASE64_BODY = -20
QUALITY_PLAIN_CTE = 10


def split_mbox(mbox: str) -> List[str]:
    """
    Split an mbox archive into raw messages. The From_ separator lines
    themselves are dropped.
    """
    rawmsgs = list()
    current = list()
    for line in re.split(r'\r?\n', mbox):
        if line.startswith('From '):
            if current:
                rawmsgs.append('\n'.join(current))
                current = list()
            continue
        current.append(line)

    if current:
        rawmsgs.append('\n'.join(current))

    # Trailing newlines at the end of the archive are not a message
    return [x for x in rawmsgs if x.strip()]


def parse_mbox(mbox: str, url: Optional[str] = None) -> List[LoreMessage]:
    msgs = list()
    for raw in split_mbox(mbox):
        msgs.append(LoreMessage.from_raw(raw, url=url))
    logger.debug('Parsed %s messages from the mbox', len(msgs))
    return msgs


def looks_base64(body: str) -> bool:
    longlines = 0
    for line in re.split(r'\r?\n', body):
        line = line.strip()
        if len(line) < 80:
            continue
        if BASE64_LINE_RE.search(line):
            longlines += 1
        if longlines >= 3:
            return True
    return False


def get_message_quality(lmsg: LoreMessage) -> float:
    cte = (lmsg.get_header('content-transfer-encoding') or '').lower()
    body = lmsg.body
    score = 0.0
    if 'base64' in cte:
        score += QUALITY_BASE64_CTE
    # mboxrd quoting that leaked into the body
    if re.search(r'^from mboxrd@z ', body, flags=re.I | re.M):
        score += QUALITY_MBOXRD_ARTIFACT
    # list software headers that ended up in the body
    if re.search(r'^(list-id|x-mailman-version):', body, flags=re.I | re.M):
        score += QUALITY_LIST_HEADERS
    if looks_base64(body):
        score += QUALITY_BASE64_BODY
    if '8bit' in cte or '7bit' in cte:
        score += QUALITY_PLAIN_CTE
    score += min(len(body), 4000) / 1000
    return score


def get_preferred_duplicate(lmsg1: LoreMessage, lmsg2: LoreMessage) -> LoreMessage:
    if get_message_quality(lmsg2) > get_message_quality(lmsg1):
        logger.debug('Picked better quality duplicate of %s', lmsg2.message_id)
        return lmsg2
    return lmsg1


def dedupe_messages(msgs: List[LoreMessage]) -> List[LoreMessage]:
    """
    Collapse multiple deliveries of the same message, keeping the copy with
    the most readable body. Messages without a message-id are always kept.
    """
    deduped = list()
    seen: Dict[str, int] = dict()
    for lmsg in msgs:
        msgid = LoreMessage.get_clean_msgid(lmsg)
        if not msgid:
            deduped.append(lmsg)
            continue
        if msgid in seen:
            at = seen[msgid]
            deduped[at] = get_preferred_duplicate(deduped[at], lmsg)
            continue
        seen[msgid] = len(deduped)
        deduped.append(lmsg)

    if len(deduped) < len(msgs):
        logger.debug('Removed %s duplicate messages', len(msgs) - len(deduped))
    return deduped
