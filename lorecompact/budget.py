#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
# Soft token budgets for compacted output. There is no tokenizer here, we
# just assume ~4 characters per token.
#
import copy
import math
import numbers
import lorecompact

from lorecompact.compact import Patchset

logger = lorecompact.logger

CHARS_PER_TOKEN = 4
DEFAULT_OVERFLOW = 0.10


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def get_hard_limit(token_budget: float, overflow_allowance: float = DEFAULT_OVERFLOW) -> int:
    if isinstance(token_budget, bool) or not isinstance(token_budget, numbers.Real):
        raise ValueError('Token budget must be a number, not %r' % (token_budget,))
    if token_budget <= 0:
        raise ValueError('Token budget must be positive: %s' % token_budget)
    if isinstance(overflow_allowance, bool) or not isinstance(overflow_allowance, numbers.Real):
        raise ValueError('Overflow allowance must be a number, not %r' % (overflow_allowance,))
    if overflow_allowance < 0:
        raise ValueError('Overflow allowance cannot be negative: %s' % overflow_allowance)
    return math.floor(token_budget * (1 + overflow_allowance))


def _trim_to(text: str, chars: int) -> str:
    return text[:chars] + '\n...[truncated %s bytes]' % (len(text) - chars)


def apply_budget_to_summary(summary: dict, token_budget: float, base_per_item: int = 24,
                            overflow_allowance: float = DEFAULT_OVERFLOW) -> dict:
    """
    Fit a thread summary into the token budget. Items are taken in order;
    the first item whose metadata alone does not fit ends the summary, and
    an item whose body does not fit gets its body trimmed to what is left.
    """
    hardlimit = get_hard_limit(token_budget, overflow_allowance)
    items = list()
    used = 0
    for item in summary.get('items', list()):
        headcost = base_per_item + estimate_tokens(item.get('subject') or '') / 2
        if used + headcost >= hardlimit:
            logger.debug('Token budget exhausted, dropping %s items', len(summary['items']) - len(items))
            break
        body = item.get('body') or ''
        addcost = headcost + estimate_tokens(body)
        if used + addcost > hardlimit:
            chars = int(max(0, hardlimit - used - headcost) * CHARS_PER_TOKEN)
            if chars < len(body):
                body = _trim_to(body, chars)
                addcost = headcost + estimate_tokens(body)
        used += addcost
        item = dict(item)
        item['body'] = body
        items.append(item)

    trimmed = dict(summary)
    trimmed['items'] = items
    return trimmed


def apply_budget_to_patchset(patchset: Patchset, token_budget: float, base_per_patch: int = 40,
                             overflow_allowance: float = DEFAULT_OVERFLOW) -> Patchset:
    """
    Fit the diffs of a patchset into the token budget. Every patch is kept,
    but patches that don't fit lose their diffs. The aggregate stat is left
    alone.
    """
    hardlimit = get_hard_limit(token_budget, overflow_allowance)
    used = 0
    patches = list()
    for lpatch in patchset.patches:
        lpatch = copy.copy(lpatch)
        patches.append(lpatch)
        metacost = base_per_patch + estimate_tokens(lpatch.subject) / 2
        if used + metacost >= hardlimit:
            lpatch.diffs = list()
            continue
        used += metacost
        diffs = list()
        for diff in lpatch.diffs or list():
            cost = estimate_tokens(diff)
            if used + cost <= hardlimit:
                diffs.append(diff)
                used += cost
                continue
            remaining = max(0, hardlimit - used)
            if remaining > 0:
                trimmed = _trim_to(diff, int(remaining * CHARS_PER_TOKEN))
                diffs.append(trimmed)
                used += estimate_tokens(trimmed)
            logger.debug('Token budget reached in %s', lpatch.subject)
            break
        lpatch.diffs = diffs

    return Patchset(patchset.subject, version=patchset.version, parts=patchset.parts,
                    cover_letter=patchset.cover_letter, patches=patches, aggregate=patchset.aggregate)
