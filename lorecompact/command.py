#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import argparse
import logging
import json
import sys
import lorecompact

from typing import List, Optional, Tuple

from lorecompact import LoreMessage

logger = lorecompact.logger


class ConfigOption(argparse.Action):
    """Action class for storing key=value arguments in a dict."""
    def __call__(self, parser, namespace, keyval, option_string=None):
        config = getattr(namespace, self.dest, None)

        if config is None:
            config = dict()
            setattr(namespace, self.dest, config)

        if '=' in keyval:
            key, value = keyval.split('=', maxsplit=1)
        else:
            # mimic git -c option
            key, value = keyval, 'true'

        config[key] = value


def cmd_retrieval_common_opts(sp):
    sp.add_argument('msgid', nargs='?',
                    help='Message ID or public-inbox URL to process')
    sp.add_argument('-m', '--use-local-mbox', dest='localmbox', default=None,
                    help='Instead of grabbing a thread from lore, process this mbox file (or - for stdin)')
    sp.add_argument('-C', '--no-cache', dest='nocache', action='store_true', default=False,
                    help='Do not use local cache')
    sp.add_argument('-M', '--save-as-maildir', dest='maildir', default=None,
                    help='Also save retrieved messages into this maildir')


def cmd_budget_opts(sp):
    sp.add_argument('--token-budget', dest='tokenbudget', type=int, default=None,
                    help='Approximate token cap; output is trimmed to fit')


def retrieve_messages(cmdargs: argparse.Namespace) -> Tuple[Optional[str], List[LoreMessage]]:
    import lorecompact.lore
    msgid = lorecompact.lore.get_msgid(cmdargs.msgid)
    if cmdargs.localmbox:
        msgs = lorecompact.lore.load_local_mbox(cmdargs.localmbox)
    else:
        if not msgid:
            raise LookupError('Pass a msgid or a public-inbox URL as parameter')
        if cmdargs.subcmd == 'message':
            msgs = [lorecompact.lore.get_message_by_msgid(msgid, nocache=cmdargs.nocache)]
        else:
            msgs = lorecompact.lore.get_thread_by_msgid(msgid, nocache=cmdargs.nocache)

    config = lorecompact.get_main_config()
    maildir = cmdargs.maildir
    if not maildir and config.get('save-maildirs', 'no') == 'yes':
        maildir = config.get('maildir')
    if maildir:
        lorecompact.lore.save_maildir(msgs, maildir)

    return msgid, msgs


def output_json(data) -> None:
    sys.stdout.write(json.dumps(data, indent=2, ensure_ascii=False) + '\n')


def cmd_message(cmdargs):
    msgid, msgs = retrieve_messages(cmdargs)
    lmsg = msgs[0]
    if cmdargs.localmbox and msgid:
        for _lmsg in msgs:
            if LoreMessage.get_clean_msgid(_lmsg) == msgid.lower():
                lmsg = _lmsg
                break
    output_json(lmsg.as_dict())


def cmd_thread(cmdargs):
    import lorecompact.compact
    lorecompact.check_limit('--max-messages', cmdargs.maxmessages)
    lorecompact.check_limit('--max-body-bytes', cmdargs.maxbodybytes)
    msgid, msgs = retrieve_messages(cmdargs)
    if cmdargs.maxmessages is not None:
        msgs = msgs[:cmdargs.maxmessages]
    logger.info('%s messages in the thread', len(msgs))
    out = list()
    for lmsg in msgs:
        data = lmsg.as_dict()
        if cmdargs.maxbodybytes is not None:
            data['body'] = lorecompact.compact.shorten_body(data['body'], cmdargs.maxbodybytes)
        out.append(data)
    output_json(out)


def cmd_summary(cmdargs):
    import lorecompact.compact
    import lorecompact.budget
    msgid, msgs = retrieve_messages(cmdargs)
    maxmsgs = cmdargs.maxmessages
    if cmdargs.normalized:
        summary = lorecompact.compact.summarize_thread_normalized(msgs, max_messages=maxmsgs)
        output_json(summary)
        return

    if maxmsgs is None:
        maxmsgs = lorecompact.get_config_int('summary-max-messages')
    shortbytes = cmdargs.shortbodybytes
    if shortbytes is None:
        shortbytes = lorecompact.get_config_int('summary-short-body-bytes')
    summary = lorecompact.compact.summarize_thread(msgs, max_messages=maxmsgs, strip=cmdargs.stripquoted,
                                                   short_body_bytes=shortbytes)
    if cmdargs.tokenbudget:
        overflow = lorecompact.get_config_float('budget-overflow')
        summary = lorecompact.budget.apply_budget_to_summary(summary, cmdargs.tokenbudget,
                                                             overflow_allowance=overflow)
    output_json(summary)


def cmd_patchset(cmdargs):
    import lorecompact.compact
    import lorecompact.budget
    msgid, msgs = retrieve_messages(cmdargs)
    opts = dict()
    for key, cfgkey in (('maxfiles', 'diff-max-files'), ('maxhunks', 'diff-max-hunks-per-file'),
                        ('maxhunklines', 'diff-max-hunk-lines')):
        val = getattr(cmdargs, key)
        if val is None:
            val = lorecompact.get_config_int(cfgkey)
        opts[key] = val
    patchset = lorecompact.compact.build_patchset(msgs, include_diffs=cmdargs.includediffs,
                                                  stat_only=cmdargs.statonly, max_files=opts['maxfiles'],
                                                  max_hunks_per_file=opts['maxhunks'],
                                                  max_hunk_lines=opts['maxhunklines'])
    if patchset is None:
        logger.info('No patches found in %s messages', len(msgs))
        output_json(None)
        return
    if cmdargs.tokenbudget:
        overflow = lorecompact.get_config_float('budget-overflow')
        patchset = lorecompact.budget.apply_budget_to_patchset(patchset, cmdargs.tokenbudget,
                                                               overflow_allowance=overflow)
    output_json(patchset.as_dict())


def cmd_search(cmdargs):
    import lorecompact.lore
    results = lorecompact.lore.search_messages(cmdargs.query, limit=cmdargs.limit, nocache=cmdargs.nocache)
    output_json(results)


def setup_parser() -> argparse.ArgumentParser:
    # noinspection PyTypeChecker
    parser = argparse.ArgumentParser(
        prog='lore-compact',
        description='Retrieve public-inbox threads and compact them to fit a token budget',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=lorecompact.__VERSION__)
    parser.add_argument('-d', '--debug', action='store_true', default=False,
                        help='Add more debugging info to the output')
    parser.add_argument('-q', '--quiet', action='store_true', default=False,
                        help='Output critical information only')
    parser.add_argument('--offline-mode', action='store_true', default=False,
                        help='Do not perform any network queries')
    parser.add_argument('-c', '--config', metavar='NAME=VALUE', action=ConfigOption,
                        help='Set config option NAME to VALUE, e.g. lorecompact.diff-max-files=5')

    subparsers = parser.add_subparsers(help='sub-command help', dest='subcmd')

    # lore-compact message
    sp_msg = subparsers.add_parser('message', help='Show a single message as headers and body')
    cmd_retrieval_common_opts(sp_msg)
    sp_msg.set_defaults(func=cmd_message)

    # lore-compact thread
    sp_thr = subparsers.add_parser('thread', help='Show all messages in a thread')
    cmd_retrieval_common_opts(sp_thr)
    sp_thr.add_argument('--max-messages', dest='maxmessages', type=int, default=None,
                        help='Only show this many messages')
    sp_thr.add_argument('--max-body-bytes', dest='maxbodybytes', type=int, default=None,
                        help='Truncate message bodies to this many characters')
    sp_thr.set_defaults(func=cmd_thread)

    # lore-compact summary
    sp_sum = subparsers.add_parser('summary', help='Compact thread view with short non-quoted bodies and trailers')
    cmd_retrieval_common_opts(sp_sum)
    cmd_budget_opts(sp_sum)
    sp_sum.add_argument('--max-messages', dest='maxmessages', type=int, default=None,
                        help='Only summarize this many messages (default: lorecompact.summary-max-messages)')
    sp_sum.add_argument('--no-strip-quoted', dest='stripquoted', action='store_false', default=True,
                        help='Do not strip quoted text and signatures from bodies')
    sp_sum.add_argument('--short-body-bytes', dest='shortbodybytes', type=int, default=None,
                        help='Truncate bodies to this many characters '
                             '(default: lorecompact.summary-short-body-bytes)')
    sp_sum.add_argument('--normalized', action='store_true', default=False,
                        help='Header-only summary with pooled subjects and participants')
    sp_sum.set_defaults(func=cmd_summary)

    # lore-compact patchset
    sp_ps = subparsers.add_parser('patchset', help='Show series info, diff stats and truncated diffs')
    cmd_retrieval_common_opts(sp_ps)
    cmd_budget_opts(sp_ps)
    sp_ps.add_argument('--stat-only', dest='statonly', action='store_true', default=False,
                       help='Only compute diff stats, do not truncate or include diffs')
    sp_ps.add_argument('--include-diffs', dest='includediffs', action='store_true', default=False,
                       help='Include truncated diffs for every patch')
    sp_ps.add_argument('--max-files', dest='maxfiles', type=int, default=None,
                       help='Include this many of the largest files per patch')
    sp_ps.add_argument('--max-hunks-per-file', dest='maxhunks', type=int, default=None,
                       help='Include this many hunks per file')
    sp_ps.add_argument('--max-hunk-lines', dest='maxhunklines', type=int, default=None,
                       help='Include this many lines per hunk')
    sp_ps.set_defaults(func=cmd_patchset)

    # lore-compact search
    sp_srch = subparsers.add_parser('search', help='Search the archive and list matching messages')
    sp_srch.add_argument('query', help='public-inbox query, e.g. "s:subject l:linux-kernel"')
    sp_srch.add_argument('-n', '--limit', type=int, default=20,
                         help='Return at most this many results')
    sp_srch.add_argument('-C', '--no-cache', dest='nocache', action='store_true', default=False,
                         help='Do not use local cache')
    sp_srch.set_defaults(func=cmd_search)

    return parser


def cmd():
    parser = setup_parser()
    cmdargs = parser.parse_args()
    logger.setLevel(logging.DEBUG)

    ch = logging.StreamHandler()
    formatter = logging.Formatter('%(message)s')
    ch.setFormatter(formatter)

    if cmdargs.quiet:
        ch.setLevel(logging.CRITICAL)
    elif cmdargs.debug:
        ch.setLevel(logging.DEBUG)
    else:
        ch.setLevel(logging.INFO)

    logger.addHandler(ch)

    if 'func' not in cmdargs:
        parser.print_help()
        sys.exit(1)

    if cmdargs.offline_mode:
        logger.info('Running in OFFLINE mode')
        lorecompact.can_network = False

    lorecompact.setup_config(cmdargs)
    try:
        cmdargs.func(cmdargs)
    except LookupError as ex:
        logger.critical('CRITICAL: %s', ex)
        sys.exit(1)
    except ValueError as ex:
        logger.critical('ERROR: %s', ex)
        sys.exit(1)


if __name__ == '__main__':
    cmd()
