#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
# Retrieval of threads and messages from public-inbox archives. None of the
# compaction code depends on this, it only ever sees the parsed messages.
#
import os
import re
import sys
import gzip
import mailbox
import urllib.parse
import lorecompact
import lorecompact.mbox

import requests

from typing import Optional, List

from lorecompact import LoreMessage

logger = lorecompact.logger


def get_msgid(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    msgid = value.strip().strip('<>')
    # Does it look like a public-inbox URL?
    matches = re.search(r'^https?://[^/]+/([^/]+)/([^/]+@[^/]+)', msgid, re.IGNORECASE)
    if matches:
        chunks = matches.groups()
        config = lorecompact.get_main_config()
        myloc = urllib.parse.urlparse(config['midmask'])
        wantloc = urllib.parse.urlparse(msgid)
        if myloc.netloc != wantloc.netloc:
            logger.debug('Overriding midmask with passed url parameters')
            config['midmask'] = f'{wantloc.scheme}://{wantloc.netloc}/{chunks[0]}/%s'
        msgid = urllib.parse.unquote(chunks[1])
    # Handle special case when msgid is prepended by id: or rfc822msgid:
    if msgid.find('id:') >= 0:
        msgid = re.sub(r'^\w*id:', '', msgid)

    return msgid


def get_message_url(msgid: str) -> str:
    config = lorecompact.get_main_config()
    qmsgid = urllib.parse.quote_plus(msgid, safe='@')
    return (config['midmask'] % qmsgid).rstrip('/')


def _get_url(url: str, method: str = 'get', gzipped: bool = False) -> Optional[str]:
    if not lorecompact.can_network:
        raise LookupError('Cannot retrieve %s in offline mode' % url)
    session = lorecompact.get_requests_session()
    try:
        if method == 'post':
            # For the query to retrieve a mbox file, we need to send a POST request
            resp = session.post(url, data='')
        else:
            resp = session.get(url)
    except requests.RequestException as ex:
        raise LookupError('Unable to retrieve %s: %s' % (url, ex))
    if resp.status_code == 404:
        resp.close()
        return None
    if resp.status_code != 200:
        resp.close()
        raise LookupError('Server returned an error for %s: %s' % (url, resp.status_code))
    content = resp.content
    resp.close()
    if gzipped:
        content = gzip.decompress(content)
    return content.decode(errors='replace')


def _get_cached_url(url: str, suffix: str, nocache: bool = False, method: str = 'get',
                    gzipped: bool = False) -> Optional[str]:
    if not nocache:
        cached = lorecompact.get_cache(url, suffix=suffix)
        if cached:
            logger.debug('Using cached copy of %s', url)
            return cached
    contents = _get_url(url, method=method, gzipped=gzipped)
    if contents:
        lorecompact.save_cache(contents, url, suffix=suffix)
    return contents


def get_thread_by_msgid(msgid: str, nocache: bool = False) -> List[LoreMessage]:
    msgurl = get_message_url(msgid)
    t_mbx_url = '%s/t.mbox.gz' % msgurl
    logger.info('Grabbing thread from %s', t_mbx_url.split('://')[-1])
    t_mbox = _get_cached_url(t_mbx_url, 'mbx', nocache=nocache, gzipped=True)
    if t_mbox is None:
        raise LookupError('That message-id is not known: %s' % msgid)
    msgs = lorecompact.mbox.parse_mbox(t_mbox, url=msgurl)
    if not msgs:
        raise LookupError('No messages found in the thread for %s' % msgid)
    return msgs


def get_message_by_msgid(msgid: str, nocache: bool = False) -> LoreMessage:
    msgurl = get_message_url(msgid)
    logger.info('Grabbing message from %s', msgurl.split('://')[-1])
    raw = _get_cached_url('%s/raw' % msgurl, 'raw', nocache=nocache)
    if raw is None:
        raise LookupError('That message-id is not known: %s' % msgid)
    return LoreMessage.from_raw(raw, url=msgurl, msgid=msgid)


def search_messages(query: str, limit: int = 20, nocache: bool = False) -> List[dict]:
    lorecompact.check_limit('limit', limit)
    config = lorecompact.get_main_config()
    searchmask = config.get('searchmask')
    if not searchmask:
        raise LookupError('lorecompact.searchmask is not defined')
    query_url = searchmask % urllib.parse.quote_plus(query)
    loc = urllib.parse.urlparse(query_url)
    logger.info('Grabbing search results from %s', loc.netloc)
    t_mbox = _get_cached_url(query_url, 'msgs', nocache=nocache, method='post', gzipped=True)
    if not t_mbox:
        logger.info('Nothing matching that query.')
        return list()

    results = list()
    for lmsg in lorecompact.mbox.dedupe_messages(lorecompact.mbox.parse_mbox(t_mbox))[:limit]:
        result = {'subject': lmsg.subject}
        fromhdr = lmsg.get_header('from')
        if fromhdr:
            result['from'] = fromhdr
        date = lmsg.get_header('date')
        if date:
            result['date'] = date
        msgid = LoreMessage.clean_msgid(lmsg.message_id)
        if msgid:
            result['messageId'] = msgid
            result['url'] = get_message_url(msgid)
        results.append(result)
    return results


def load_local_mbox(path: str) -> List[LoreMessage]:
    if path == '-':
        logger.debug('Reading mbox from stdin')
        mbox = sys.stdin.read()
    elif os.path.isfile(path):
        with open(path, 'r', encoding='utf-8', errors='replace') as fh:
            mbox = fh.read()
    else:
        raise LookupError('Mailbox %s does not exist' % path)

    msgs = lorecompact.mbox.parse_mbox(mbox)
    if not msgs:
        raise LookupError('No messages found in %s' % path)
    return msgs


def save_maildir(msgs: List[LoreMessage], dest: str, filterdupes: bool = True) -> int:
    dest = os.path.expanduser(dest)
    if not lorecompact.is_maildir(dest):
        logger.debug('Creating maildir %s', dest)
    mdr = mailbox.Maildir(dest, create=True)
    have_msgids = set()
    if filterdupes:
        for emsg in mdr:
            have_msgids.add(LoreMessage.clean_msgid(emsg.get('message-id')))
    added = 0
    for lmsg in msgs:
        msgid = LoreMessage.get_clean_msgid(lmsg)
        if msgid and msgid in have_msgids:
            continue
        mdr.add(lmsg.as_bytes())
        have_msgids.add(msgid)
        added += 1
    logger.info('Added %s messages to maildir %s', added, dest)
    return added
