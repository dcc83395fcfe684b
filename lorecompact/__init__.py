# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
import subprocess
import logging
import hashlib
import re
import os
import argparse
import copy
import time
import shutil
import pathlib

import requests

from typing import Optional, Tuple, List, Dict, Union

__VERSION__ = '0.3.0'

logger = logging.getLogger('lorecompact')

# global setting allowing us to turn off networking
can_network = True

LOREADDR = 'https://lore.kernel.org'

DIFF_RE = re.compile(r'^diff --git ', flags=re.M)
TRAILER_RE = re.compile(r'^([A-Za-z-]+):\s*(.+)$')
PATCH_TAG_RE = re.compile(r'\[\s*(?:[A-Za-z-]+\s+)*patch[^\]]*\]', flags=re.I)
PATCH_COUNTERS_RE = re.compile(r'\[\s*(?:[A-Za-z-]+\s+)*patch\s*(v\d+)?\s*(\d+)/(\d+)\s*\]', flags=re.I)
PATCH_VERSION_RE = re.compile(r'\[\s*(?:[A-Za-z-]+\s+)*patch\s*(v\d+)?\s*\]', flags=re.I)

DEFAULT_CONFIG = {
    'midmask': LOREADDR + '/all/%s',
    'searchmask': LOREADDR + '/all/?x=m&q=%s',
    # How long to keep things in cache before expiring (minutes)?
    'cache-expire': '1440',
    # Write everything we retrieve into a maildir as well
    'save-maildirs': 'no',
    'maildir': './maildir',
    # Defaults for the thread summary
    'summary-max-messages': '50',
    'summary-short-body-bytes': '1200',
    # Defaults for diff extraction in patchsets
    'diff-max-files': '10',
    'diff-max-hunks-per-file': '3',
    'diff-max-hunk-lines': '80',
    # How far over the requested token budget we are willing to go
    'budget-overflow': '0.10',
}

# This is where we store actual config
MAIN_CONFIG: Dict[str, Optional[Union[str, List[str]]]] = dict()

# Used for storing our requests session
REQSESSION = None
# Indicates that we've cleaned cache already
_CACHE_CLEANED = False


class LoreTrailer:
    key: str
    lkey: str
    value: str
    raw_line: str

    # The only trailers we care about when compacting
    _known: Tuple[str, ...] = ('Fixes', 'Reported-by', 'Suggested-by', 'Reviewed-by', 'Acked-by',
                               'Tested-by', 'Cc', 'Link', 'Signed-off-by')

    def __init__(self, key: str, value: str, raw_line: Optional[str] = None):
        self.key = key
        self.lkey = key.lower()
        self.value = value
        if raw_line is None:
            raw_line = f'{key}: {value}'
        self.raw_line = raw_line

    @staticmethod
    def is_known(key: str) -> bool:
        return key.lower() in {x.lower() for x in LoreTrailer._known}

    def as_dict(self) -> dict:
        return {'key': self.key, 'value': self.value, 'line': self.raw_line}

    def __repr__(self) -> str:
        out = list()
        out.append('  key: %s' % self.key)
        out.append('  value: %s' % self.value)
        out.append('  line: %s' % self.raw_line)
        return '\n'.join(out)


class LoreSubject:
    """
    The [PATCH vN i/total] tag of a subject, if it has one.

    The base subject is what remains after the whole tag is removed. When no
    tag is recognized, the full subject is the base and all other fields
    are left as None.
    """
    full_subject: str
    base: str
    version: Optional[str]
    index: Optional[int]
    total: Optional[int]

    def __init__(self, subject: Optional[str]):
        if subject is None:
            subject = ''
        self.full_subject = subject
        self.base = subject
        self.version = None
        self.index = None
        self.total = None

        matches = PATCH_COUNTERS_RE.search(subject)
        if matches:
            self.version = matches.group(1)
            self.index = int(matches.group(2))
            self.total = int(matches.group(3))
            self.base = PATCH_TAG_RE.sub('', subject, count=1).strip()
            return

        # Series that don't number their parts, e.g. [PATCH v4] foo
        matches = PATCH_VERSION_RE.search(subject)
        if matches:
            self.version = matches.group(1)
            self.base = PATCH_TAG_RE.sub('', subject, count=1).strip()

    @property
    def revision(self) -> Optional[int]:
        if self.version is None:
            return None
        return int(self.version[1:])

    def as_dict(self) -> dict:
        out = {'base': self.base}
        if self.version is not None:
            out['version'] = self.version
        if self.index is not None:
            out['index'] = self.index
        if self.total is not None:
            out['total'] = self.total
        return out

    def __repr__(self) -> str:
        out = list()
        out.append('  full_subject: %s' % self.full_subject)
        out.append('  base: %s' % self.base)
        out.append('  version: %s' % self.version)
        out.append('  index: %s' % self.index)
        out.append('  total: %s' % self.total)
        return '\n'.join(out)


class LoreMessage:
    # lower-cased header name -> all values, in the order we saw them
    headers: Dict[str, List[str]]
    body: str
    url: Optional[str]
    msgid: Optional[str]

    def __init__(self, headers: Optional[Dict[str, List[str]]] = None, body: str = '',
                 url: Optional[str] = None, msgid: Optional[str] = None):
        if headers is None:
            headers = dict()
        self.headers = headers
        self.body = body
        self.url = url
        self.msgid = msgid

    def get_header(self, name: str) -> Optional[str]:
        vals = self.headers.get(name.lower())
        if not vals:
            return None
        return vals[0]

    def get_all(self, name: str) -> List[str]:
        return list(self.headers.get(name.lower(), list()))

    @property
    def subject(self) -> str:
        return self.get_header('subject') or ''

    @property
    def message_id(self) -> Optional[str]:
        """Message-Id header as it was sent, falling back to the msgid we were given"""
        return self.get_header('message-id') or self.msgid

    @property
    def has_diff(self) -> bool:
        return DIFF_RE.search(self.body) is not None

    @staticmethod
    def parse_headers(headertext: str) -> Dict[str, List[str]]:
        headers = dict()
        current = None
        for line in re.split(r'\r?\n', headertext):
            if re.match(r'\s', line):
                if current:
                    # Folded header, tack it onto the last value we saw
                    headers[current][-1] = '%s %s' % (headers[current][-1], line.strip())
                continue
            idx = line.find(':')
            if idx <= 0:
                # Not a header, so nothing can fold into it
                current = None
                continue
            hname = line[:idx].lower()
            if hname not in headers:
                headers[hname] = list()
            headers[hname].append(line[idx + 1:].strip())
            current = hname

        return headers

    @staticmethod
    def from_raw(raw: str, url: Optional[str] = None, msgid: Optional[str] = None) -> 'LoreMessage':
        matches = re.search(r'\r?\n\r?\n', raw)
        if not matches:
            return LoreMessage(body=raw, url=url, msgid=msgid)
        headers = LoreMessage.parse_headers(raw[:matches.start()])
        return LoreMessage(headers=headers, body=raw[matches.end():], url=url, msgid=msgid)

    @staticmethod
    def clean_msgid(raw: Optional[str]) -> Optional[str]:
        if not raw:
            return None
        msgid = re.sub(r'^<|>$', '', raw.strip()).lower()
        if not msgid:
            return None
        return msgid

    @staticmethod
    def get_clean_msgid(lmsg: 'LoreMessage') -> Optional[str]:
        return LoreMessage.clean_msgid(lmsg.message_id)

    @staticmethod
    def find_trailers(body: str) -> List[LoreTrailer]:
        trailers = list()
        for line in re.split(r'\r?\n', body):
            matches = TRAILER_RE.search(line)
            if not matches:
                continue
            key, value = matches.groups()
            if not LoreTrailer.is_known(key):
                continue
            trailers.append(LoreTrailer(key, value.strip(), raw_line=line))
        return trailers

    def as_bytes(self) -> bytes:
        out = list()
        for hname, hvals in self.headers.items():
            for hval in hvals:
                out.append(f'{hname}: {hval}')
        out.append('')
        out.append(self.body)
        return '\n'.join(out).encode(errors='replace')

    def as_dict(self) -> dict:
        headers = dict()
        for hname, hvals in self.headers.items():
            # single-valued headers are plain strings on the wire
            if len(hvals) == 1:
                headers[hname] = hvals[0]
            else:
                headers[hname] = list(hvals)
        out = {'headers': headers, 'body': self.body}
        if self.url:
            out['url'] = self.url
        if self.msgid:
            out['messageId'] = self.msgid
        return out

    def __repr__(self) -> str:
        out = list()
        out.append('msgid: %s' % self.message_id)
        out.append('subject: %s' % self.subject)
        out.append('url: %s' % self.url)
        out.append('headers: %s' % ', '.join(self.headers.keys()))
        out.append('body: %s bytes' % len(self.body))
        return '\n'.join(out)


def _run_command(cmdargs: List[str]) -> Tuple[int, bytes, bytes]:
    logger.debug('Running %s' % ' '.join(cmdargs))
    sp = subprocess.Popen(cmdargs, stdout=subprocess.PIPE, stdin=subprocess.PIPE, stderr=subprocess.PIPE)
    (output, error) = sp.communicate()

    return sp.returncode, output, error


def git_run_command(args: List[str]) -> Tuple[int, str]:
    cmdargs = ['git', '--no-pager'] + args

    try:
        ecode, out, err = _run_command(cmdargs)
    except FileNotFoundError:
        logger.debug('git is not installed, cannot run %s', ' '.join(args))
        return 127, ''

    return ecode, out.decode(errors='replace')


def get_config_from_git(regexp: str, defaults: Optional[dict] = None) -> dict:
    ecode, out = git_run_command(['config', '-z', '--get-regexp', regexp])
    gitconfig = defaults
    if not gitconfig:
        gitconfig = dict()
    if not out:
        return gitconfig

    for line in out.split('\x00'):
        if not line:
            continue
        if '\n' in line:
            key, value = line.split('\n', 1)
        else:
            key, value = line, 'true'
        chunks = key.split('.')
        gitconfig[chunks[-1].lower()] = value

    return gitconfig


def _cmdline_config_override(cmdargs: argparse.Namespace, config: dict, section: str):
    """Use cmdline.config to set and override config values for section."""
    if 'config' not in cmdargs or not cmdargs.config:
        return

    section += '.'

    config_override = {
        key[len(section):]: val
        for key, val in cmdargs.config.items()
        if key.startswith(section)
    }

    config.update(config_override)


def _setup_main_config(cmdargs: Optional[argparse.Namespace] = None) -> None:
    global MAIN_CONFIG

    defcfg = copy.deepcopy(DEFAULT_CONFIG)
    config = get_config_from_git(r'lorecompact\..*', defaults=defcfg)

    if cmdargs:
        _cmdline_config_override(cmdargs, config, 'lorecompact')

    MAIN_CONFIG = config


def setup_config(cmdargs: argparse.Namespace):
    """Setup configuration options. Needs to be called before accessing any of
    the config options."""
    _setup_main_config(cmdargs)


def get_main_config() -> Dict[str, Optional[Union[str, List[str]]]]:
    if not MAIN_CONFIG:
        # Library use without setup_config(), stick with defaults
        MAIN_CONFIG.update(DEFAULT_CONFIG)
    return MAIN_CONFIG


def get_config_int(key: str) -> int:
    config = get_main_config()
    try:
        return int(config.get(key, DEFAULT_CONFIG.get(key)))
    except (TypeError, ValueError):
        raise ValueError('lorecompact.%s must be an integer: %s' % (key, config.get(key)))


def get_config_float(key: str) -> float:
    config = get_main_config()
    try:
        return float(config.get(key, DEFAULT_CONFIG.get(key)))
    except (TypeError, ValueError):
        raise ValueError('lorecompact.%s must be a number: %s' % (key, config.get(key)))


def check_limit(name: str, value: Optional[int]) -> None:
    """Counts and sizes we slice by cannot go below zero"""
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError('%s must be an integer, not %r' % (name, value))
    if value < 0:
        raise ValueError('%s cannot be negative: %s' % (name, value))


def get_cache_dir(appname: str = 'lore-compact') -> str:
    global _CACHE_CLEANED
    if 'XDG_CACHE_HOME' in os.environ:
        cachehome = os.environ['XDG_CACHE_HOME']
    else:
        cachehome = os.path.join(str(pathlib.Path.home()), '.cache')
    cachedir = os.path.join(cachehome, appname)
    pathlib.Path(cachedir).mkdir(parents=True, exist_ok=True)
    if _CACHE_CLEANED:
        return cachedir

    # Delete all .mbx and .raw files older than cache-expire
    try:
        expmin = get_config_int('cache-expire') * 60
    except ValueError as ex:
        logger.critical('ERROR: %s', ex)
        expmin = 600
    expage = time.time() - expmin
    # Expire anything else that is older than 30 days
    expall = time.time() - 2592000
    for entry in os.listdir(cachedir):
        suffix = entry.split('.')[-1]
        if suffix in {'mbx', 'raw', 'msgs'}:
            explim = expage
        else:
            explim = expall
        fullpath = os.path.join(cachedir, entry)
        st = os.stat(fullpath)
        if st.st_mtime < explim:
            logger.debug('Cleaning up cache: %s', entry)
            if os.path.isdir(fullpath):
                shutil.rmtree(fullpath)
            else:
                os.unlink(fullpath)
    _CACHE_CLEANED = True
    return cachedir


def get_cache_file(identifier: str, suffix: Optional[str] = None) -> str:
    cachedir = get_cache_dir()
    cachefile = hashlib.sha1(identifier.encode()).hexdigest()
    if suffix:
        cachefile = f'{cachefile}.{suffix}'
    return os.path.join(cachedir, cachefile)


def get_cache(identifier: str, suffix: Optional[str] = None) -> Optional[str]:
    fullpath = get_cache_file(identifier, suffix=suffix)
    cachedata = None
    try:
        with open(fullpath) as fh:
            logger.debug('Using cache %s for %s', fullpath, identifier)
            cachedata = fh.read()
    except FileNotFoundError:
        logger.debug('Cache miss for %s', identifier)

    return cachedata


def save_cache(contents: str, identifier: str, suffix: Optional[str] = None) -> None:
    fullpath = get_cache_file(identifier, suffix=suffix)
    try:
        with open(fullpath, 'w') as fh:
            fh.write(contents)
            logger.debug('Saved cache %s for %s', fullpath, identifier)
    except FileNotFoundError:
        logger.debug('Could not write cache %s for %s', fullpath, identifier)


def get_requests_session() -> requests.Session:
    global REQSESSION
    if REQSESSION is None:
        REQSESSION = requests.session()
        REQSESSION.headers.update({'User-Agent': 'lore-compact/%s' % __VERSION__})
    return REQSESSION


def is_maildir(dest: str) -> bool:
    return (os.path.isdir(os.path.join(dest, 'new'))
            and os.path.isdir(os.path.join(dest, 'cur'))
            and os.path.isdir(os.path.join(dest, 'tmp')))
