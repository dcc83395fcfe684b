import pytest  # noqa
import os
import lorecompact.mbox
import lorecompact.compact

from lorecompact import LoreMessage


def _get_sample_msgs(sampledir: str, name: str) -> list:
    with open(os.path.join(sampledir, name), 'r') as fh:
        return lorecompact.mbox.parse_mbox(fh.read())


def _make_msg(subject: str, body: str = '', msgid: str = None, fromhdr: str = None) -> LoreMessage:
    headers = {'subject': [subject]}
    if msgid:
        headers['message-id'] = [msgid]
    if fromhdr:
        headers['from'] = [fromhdr]
    return LoreMessage(headers=headers, body=body)


@pytest.mark.parametrize('body,expected', [
    ('On Mon, Jan 01, 2024, Dev One wrote:\n> quoted\n\nMy reply\n', 'My reply\n'),
    ('Top\n-----Original Message-----\n\nold stuff\n', 'Top\nold stuff\n'),
    ('Top\n___________\nFrom: Someone <s@example.org>\n', 'Top\nFrom: Someone <s@example.org>\n'),
    ('Signed text\n-----BEGIN PGP SIGNATURE-----\n\niQEzBAEB\n-----END PGP SIGNATURE-----\nafter\n',
     'Signed text\nafter\n'),
    ('Thanks!\n\n-- \nSomeone\nSomewhere\n', 'Thanks!\n'),
    ('Intro\n--\nmore text\ndiff --git a/x b/x\n', 'Intro\n--\nmore text\ndiff --git a/x b/x\n'),
    ('> only quotes\n> here\n', ''),
    ('no quotes at all', 'no quotes at all'),
])
def test_strip_quoted(body: str, expected: str) -> None:
    assert lorecompact.compact.strip_quoted(body) == expected


def test_strip_quoted_outlook() -> None:
    body = 'Reply text\n\nFrom: Someone <s@example.org>\nSent: Monday\n'
    stripped = lorecompact.compact.strip_quoted(body)
    assert stripped.startswith('Reply text\n\n')
    assert 'From: Someone' not in stripped


@pytest.mark.parametrize('subject,body,expected', [
    ('[PATCH v2 0/3] Add frobs', '', 'cover'),
    ('[PATCH 00/12] Add frobs', '', 'cover'),
    ('[RFC PATCH 0/2] Add frobs', '', 'cover'),
    ('[PATCHv2 0/2] Add frobs', '', 'cover'),
    ('[PATCHv2 1/2] frob: core', '', 'patch'),
    ('[RFC PATCHv3 2/2] frob: core', '', 'patch'),
    ('[PATCH v2 1/3] frob: core', '', 'patch'),
    ('[patch] frob: core', '', 'patch'),
    ('Re: [PATCH v2 1/3] frob: core', 'Looks good\n', 'patch'),
    ('[RFC] frob idea', 'Idea\n---\ndiff --git a/x b/x\n', 'patch'),
    ('[RFC 0/2] frob idea', 'Just an idea\n', 'reply'),
    ('[GIT PULL] frob fixes', 'Please pull\n', 'reply'),
    ('[dispatcher] frob fixes', 'Please pull\n', 'reply'),
    ('Re: question', 'No diff --git here\n', 'reply'),
    ('', '', 'reply'),
])
def test_detect_patch_kind(subject: str, body: str, expected: str) -> None:
    assert lorecompact.compact.detect_patch_kind(_make_msg(subject, body)) == expected


@pytest.mark.parametrize('subject,expected', [
    ('Re: Fwd: RE: [PATCH v2 1/3] frob:   add  helpers', 'frob: add helpers'),
    ('AW: SV: Antw: hello', 'hello'),
    ('Re:[PATCH] [RFC] frob', 'frob'),
    ('Reply needed: frob', 'Reply needed: frob'),
    ('  plain  ', 'plain'),
    ('', ''),
    (None, ''),
])
def test_normalize_subject(subject: str, expected: str) -> None:
    assert lorecompact.compact.normalize_subject(subject) == expected


def test_parse_patch_subject() -> None:
    lsubj = lorecompact.compact.parse_patch_subject('[PATCH v3 2/7] foo')
    assert lsubj.as_dict() == {'base': 'foo', 'version': 'v3', 'index': 2, 'total': 7}


@pytest.mark.parametrize('body,maxbytes,expected', [
    ('abcdef', 10, 'abcdef'),
    ('abcdef', 6, 'abcdef'),
    ('abcdef', 3, 'abc\n...[truncated 3 bytes]'),
    ('abcdef', 0, '\n...[truncated 6 bytes]'),
])
def test_shorten_body(body: str, maxbytes: int, expected: str) -> None:
    assert lorecompact.compact.shorten_body(body, maxbytes) == expected


def test_shorten_body_negative() -> None:
    with pytest.raises(ValueError, match='maxbytes'):
        lorecompact.compact.shorten_body('abcdef', -2)


def test_summarize_thread(sampledir) -> None:
    msgs = _get_sample_msgs(sampledir, 'thread-review.mbox')
    summary = lorecompact.compact.summarize_thread(msgs)
    items = summary['items']
    assert len(items) == 3
    assert items[0]['subject'] == '[PATCH] net: fix frob leak'
    assert items[0]['from'] == 'Dev One <dev1@example.org>'
    assert items[0]['date'] == 'Tue, 02 Jan 2024 09:00:00 +0000'
    assert items[0]['messageId'] == '<20240102-leak-1@example.org>'
    assert items[0]['kind'] == 'patch'
    assert items[0]['hasDiff'] is True
    assert items[0]['body'] == msgs[0].body
    assert [x['key'] for x in items[0]['trailers']] == ['Fixes', 'Signed-off-by']

    assert items[1]['body'] == 'Good catch, thanks.\n\nReviewed-by: Reviewer <rev@example.org>\n'
    assert items[1]['hasDiff'] is False
    assert items[1]['trailers'] == [{
        'key': 'Reviewed-by',
        'value': 'Reviewer <rev@example.org>',
        'line': 'Reviewed-by: Reviewer <rev@example.org>',
    }]
    assert items[2]['body'] == 'Applied, thanks!\n\n'


def test_summarize_thread_options(sampledir) -> None:
    msgs = _get_sample_msgs(sampledir, 'thread-review.mbox')
    summary = lorecompact.compact.summarize_thread(msgs + msgs, max_messages=2, strip=False, short_body_bytes=40)
    items = summary['items']
    assert len(items) == 2
    assert items[1]['body'].startswith(msgs[1].body[:40])
    assert items[1]['body'].endswith('bytes]')
    for item in items:
        assert len(item['body']) <= 40 + len('\n...[truncated 9999 bytes]')


def test_summarize_thread_missing_headers() -> None:
    summary = lorecompact.compact.summarize_thread([LoreMessage(body='hello')])
    assert summary == {'items': [{
        'subject': '',
        'kind': 'reply',
        'body': 'hello',
        'hasDiff': False,
        'trailers': [],
    }]}


@pytest.mark.parametrize('opts,match', [
    ({'max_messages': -1}, 'max_messages'),
    ({'short_body_bytes': -200}, 'short_body_bytes'),
])
def test_summarize_thread_negative_limits(sampledir, opts: dict, match: str) -> None:
    msgs = _get_sample_msgs(sampledir, 'thread-review.mbox')
    with pytest.raises(ValueError, match=match):
        lorecompact.compact.summarize_thread(msgs, **opts)
    with pytest.raises(ValueError, match='max_messages'):
        lorecompact.compact.summarize_thread_normalized(msgs, max_messages=-1)


def test_summarize_thread_normalized(sampledir) -> None:
    msgs = _get_sample_msgs(sampledir, 'patchset-v2.mbox')
    summary = lorecompact.compact.summarize_thread_normalized(msgs)
    assert summary['thread'] == {
        'subject': '[PATCH v2 0/2] Add frobnication support',
        'subject_base': 'Add frobnication support',
        'total_messages': 3,
        'patch_series': {'version': 'v2', 'total': 2},
    }
    assert summary['participants'] == [{'id': 0, 'name': 'Dev One <dev1@example.org>', 'messages': 3}]
    assert summary['subjects'] == ['Add frobnication support', 'frob: add core helpers', 'frob: document helpers']
    assert summary['items'][1] == {
        'id': 1,
        'mid': '<20240101-frob-v2-1@example.org>',
        'date': 'Mon, 01 Jan 2024 10:00:01 +0000',
        'from': 0,
        'subject': 1,
    }


def test_summarize_thread_normalized_participants() -> None:
    msgs = [
        _make_msg('Question about frobs', msgid='<1@x>', fromhdr='Alice <a@x>'),
        _make_msg('Re: Question about frobs', msgid='<2@x>', fromhdr='Bob <b@x>'),
        _make_msg('Re: Re: Question about frobs', msgid='<3@x>', fromhdr='Bob <b@x>'),
        _make_msg('Re: Question about frobs', msgid='<4@x>', fromhdr='Carol <c@x>'),
        _make_msg('Re: Question about frobs', msgid='<5@x>'),
    ]
    summary = lorecompact.compact.summarize_thread_normalized(msgs, max_messages=4)
    assert summary['thread']['patch_series'] is None
    assert summary['thread']['total_messages'] == 4
    assert summary['subjects'] == ['Question about frobs']
    assert [x['name'] for x in summary['participants']] == ['Bob <b@x>', 'Alice <a@x>', 'Carol <c@x>']
    assert [x['from'] for x in summary['items']] == [1, 0, 0, 2]
    assert all(x['subject'] == 0 for x in summary['items'])


def test_summarize_thread_normalized_empty() -> None:
    summary = lorecompact.compact.summarize_thread_normalized(list())
    assert summary == {
        'thread': {'subject': '', 'subject_base': '', 'total_messages': 0, 'patch_series': None},
        'participants': [],
        'subjects': [],
        'items': [],
    }


def test_build_patchset(sampledir) -> None:
    msgs = _get_sample_msgs(sampledir, 'patchset-v2.mbox')
    patchset = lorecompact.compact.build_patchset(msgs)
    assert patchset.subject == 'Add frobnication support'
    assert patchset.version == 'v2'
    assert patchset.parts == {'index': 0, 'total': 2}
    assert patchset.cover_letter == {
        'subject': '[PATCH v2 0/2] Add frobnication support',
        'messageId': '<20240101-frob-v2-0@example.org>',
    }
    # the base64 copy of 1/2 lost out to the readable one
    assert len(patchset.patches) == 2
    assert patchset.patches[0].diffstat.per_file == (('lib/frob.c', 3, 1),)
    assert patchset.patches[1].diffstat.per_file == (('Documentation/frob.rst', 2, 0),)
    assert patchset.patches[0].diffs is None
    assert patchset.aggregate.as_dict() == {
        'files': 2,
        'insertions': 5,
        'deletions': 1,
        'perFile': [
            {'file': 'lib/frob.c', 'insertions': 3, 'deletions': 1},
            {'file': 'Documentation/frob.rst', 'insertions': 2, 'deletions': 0},
        ],
    }
    out = patchset.as_dict()
    assert out['series'] == {'subject': 'Add frobnication support', 'version': 'v2',
                             'parts': {'index': 0, 'total': 2}}
    assert 'diffs' not in out['patches'][0]
    assert out['patches'][1]['messageId'] == '<20240101-frob-v2-2@example.org>'


def test_build_patchset_diffs(sampledir) -> None:
    msgs = _get_sample_msgs(sampledir, 'patchset-v2.mbox')
    patchset = lorecompact.compact.build_patchset(msgs, include_diffs=True, max_hunk_lines=2)
    diffs = patchset.patches[0].diffs
    assert len(diffs) == 1
    assert diffs[0].split('\n') == [
        'diff --git a/lib/frob.c b/lib/frob.c',
        'index 1111111..2222222 100644',
        '--- a/lib/frob.c',
        '+++ b/lib/frob.c',
        '@@ -1,3 +1,5 @@',
        ' #include <frob.h>',
        '+',
    ]
    # truncation does not touch the stats
    assert patchset.aggregate.insertions == 5

    stat_only = lorecompact.compact.build_patchset(msgs, include_diffs=True, stat_only=True)
    assert all(x.diffs is None for x in stat_only.patches)
    assert stat_only.aggregate == patchset.aggregate


def test_build_patchset_series() -> None:
    msgs = [
        _make_msg('[PATCH v2 0/2] frob things', 'Cover letter\n', msgid='<c@x>'),
        _make_msg('Re: thanks for the frobs', 'reply\n', msgid='<r@x>'),
        _make_msg('[PATCH v2 1/2] frob: one', 'one\n', msgid='<1@x>'),
        _make_msg('[PATCH v2 2/2] frob: two', 'two\n', msgid='<2@x>'),
    ]
    patchset = lorecompact.compact.build_patchset(msgs)
    assert patchset.version == 'v2'
    assert len(patchset.patches) == 2
    assert [x.subject for x in patchset.patches] == ['[PATCH v2 1/2] frob: one', '[PATCH v2 2/2] frob: two']
    assert patchset.cover_letter['messageId'] == '<c@x>'
    assert patchset.aggregate.files == 0


def test_build_patchset_picks_common_base_and_highest_version() -> None:
    msgs = [
        _make_msg('[PATCH] frob: fix leak', msgid='<1@x>'),
        _make_msg('[PATCH v3] frob: fix leak', msgid='<2@x>'),
        _make_msg('[PATCH v12] frob: fix leak', msgid='<3@x>'),
        _make_msg('[PATCH v4] frob: something else', msgid='<4@x>'),
    ]
    patchset = lorecompact.compact.build_patchset(msgs)
    assert patchset.subject == 'frob: fix leak'
    assert patchset.version == 'v12'
    assert patchset.parts is None
    assert patchset.cover_letter is None
    assert len(patchset.patches) == 4


def test_build_patchset_nothing_found() -> None:
    msgs = [_make_msg('Question', 'Why?\n'), _make_msg('Re: Question', 'Because.\n')]
    assert lorecompact.compact.build_patchset(msgs) is None
    assert lorecompact.compact.build_patchset(list()) is None


def test_build_patchset_unspaced_version() -> None:
    msgs = [
        _make_msg('[PATCHv2 0/2] frob things', 'Cover letter\n', msgid='<c@x>'),
        _make_msg('[PATCHv2 1/2] frob: one', 'one\n', msgid='<1@x>'),
        _make_msg('[PATCHv2 2/2] frob: two', 'two\n', msgid='<2@x>'),
    ]
    patchset = lorecompact.compact.build_patchset(msgs)
    assert patchset.subject == 'frob things'
    assert patchset.version == 'v2'
    assert patchset.parts == {'index': 0, 'total': 2}
    assert patchset.cover_letter['messageId'] == '<c@x>'
    assert [x.msgid for x in patchset.patches] == ['<1@x>', '<2@x>']


@pytest.mark.parametrize('opts,match', [
    ({'max_files': -1}, 'max_files'),
    ({'max_hunks_per_file': -3}, 'max_hunks_per_file'),
    ({'max_hunk_lines': -80}, 'max_hunk_lines'),
])
def test_build_patchset_negative_limits(sampledir, opts: dict, match: str) -> None:
    msgs = _get_sample_msgs(sampledir, 'patchset-v2.mbox')
    with pytest.raises(ValueError, match=match):
        lorecompact.compact.build_patchset(msgs, include_diffs=True, **opts)


def test_build_patchset_version_by_revision() -> None:
    msgs = [
        _make_msg('[PATCH v9] frob: fix leak', msgid='<1@x>'),
        _make_msg('[PATCHv10] frob: fix leak', msgid='<2@x>'),
        _make_msg('[PATCH v2] frob: fix leak', msgid='<3@x>'),
    ]
    patchset = lorecompact.compact.build_patchset(msgs)
    assert patchset.version == 'v10'
    assert patchset.subject == 'frob: fix leak'
