from __future__ import annotations

import pytest
import yaml

from issuemarker.errors import MetadataCorruptError, MetadataDecodeError
from issuemarker.metadata import (
    BEGIN_SENTINEL,
    END_SENTINEL,
    HistoryEntry,
    MetadataRecord,
    decode,
    encode,
    render_block,
    serialize,
    strip_metadata,
)

SHA_A = 'a' * 40
SHA_B = 'b' * 40


def _record(**overrides) -> MetadataRecord:
    values = {
        'repository': 'acme/widgets',
        'version': 'v2025.1-beta.1',
        'commit': SHA_B,
        'history': (
            HistoryEntry('v2025.1-beta.1', SHA_B),
            HistoryEntry('v2025.1-alpha.2', SHA_A),
        ),
    }
    values.update(overrides)
    return MetadataRecord(**values)


def test_serialize_single_quotes_every_value():
    text = serialize(_record())
    assert text.splitlines()[:4] == [
        "application: 'issue-marker'",
        "repository: 'acme/widgets'",
        "version: 'v2025.1-beta.1'",
        f"commit: '{SHA_B}'",
    ]
    assert "- version: 'v2025.1-alpha.2'" in text
    assert f"  commit: '{SHA_A}'" in text


def test_encode_appends_block_and_decode_reads_it_back():
    body = 'Crash when saving.\n\n- [ ] beta\n'
    record = _record()
    encoded = encode(body, record)

    assert encoded.startswith('Crash when saving.\n\n- [ ] beta\n\n' + BEGIN_SENTINEL)
    assert encoded.endswith(END_SENTINEL + '\n\n')
    assert decode(encoded) == record
    assert strip_metadata(encoded) == body.strip()


def test_encode_is_idempotent():
    record = _record()
    once = encode('Some description', record)
    assert encode(once, record) == once


def test_encode_replaces_existing_block_and_keeps_surrounding_text():
    old = _record(version='v2025.1-alpha.2', commit=SHA_A, history=(HistoryEntry('v2025.1-alpha.2', SHA_A),))
    body = 'Intro text\n\n' + render_block(old) + '\n\n\nA later comment by a human\n'
    new = _record()

    encoded = encode(body, new)

    assert encoded.count('<details data-id="issue-marker">') == 1
    assert decode(encoded) == new
    assert strip_metadata(encoded) == 'Intro text\n\nA later comment by a human'


def test_encode_empty_body():
    encoded = encode(None, _record())
    assert encoded.startswith(BEGIN_SENTINEL)
    assert decode(encoded) == _record()


def test_decode_without_block_returns_none():
    assert decode('Just a description with a <details><summary>x</summary></details>') is None
    assert decode('') is None
    assert decode(None) is None


def test_decode_tolerates_missing_sentinels_and_case():
    block = render_block(_record())
    body = 'text\n' + block.replace(BEGIN_SENTINEL + '\n', '').replace('\n' + END_SENTINEL, '')
    body = body.replace('<details data-id="issue-marker">', '<DETAILS data-id="issue-marker">')
    assert decode(body) == _record()


def test_two_blocks_are_corrupt():
    block = render_block(_record())
    with pytest.raises(MetadataCorruptError):
        decode(f'{block}\n\n{block}')
    with pytest.raises(MetadataDecodeError):
        encode(f'{block}\n\n{block}', _record())


def test_unterminated_block_is_a_decode_error():
    body = 'text\n<details data-id="issue-marker">\n```yaml\napplication: x\n```\n'
    with pytest.raises(MetadataDecodeError, match='details'):
        decode(body)


def test_block_without_fence_is_a_decode_error():
    body = '<details data-id="issue-marker">\n<summary>Release metadata</summary>\n</details>'
    with pytest.raises(MetadataDecodeError, match='fenced'):
        decode(body)


def test_malformed_yaml_is_a_decode_error():
    body = '<details data-id="issue-marker">\n```yaml\napplication: [unclosed\n```\n</details>'
    with pytest.raises(MetadataDecodeError, match='Invalid metadata YAML'):
        decode(body)


def test_foreign_application_is_rejected():
    payload = yaml.safe_dump(
        {'application': 'other-tool', 'repository': 'a/b', 'version': 'v2025.1', 'commit': SHA_A}
    )
    body = f'<details data-id="issue-marker">\n```yaml\n{payload}```\n</details>'
    with pytest.raises(MetadataDecodeError, match='other-tool'):
        decode(body)


@pytest.mark.parametrize(
    'payload',
    [
        "- just\n- a list\n",
        "application: 'issue-marker'\nrepository: 'a/b'\nversion: 'v2025.1'\n",
        "application: 'issue-marker'\nrepository: 'a/b'\nversion: 'v2025.1'\ncommit: 'c'\nhistory: 'nope'\n",
        "application: 'issue-marker'\nrepository: 'a/b'\nversion: 'v2025.1'\ncommit: 'c'\nhistory:\n- version: 'v2025.1'\n",
    ],
)
def test_structurally_invalid_payloads(payload: str):
    body = f'<details data-id="issue-marker">\n```yaml\n{payload}```\n</details>'
    with pytest.raises(MetadataDecodeError):
        decode(body)


def test_history_may_be_absent():
    payload = "application: 'issue-marker'\nrepository: 'a/b'\nversion: 'v2025.1'\ncommit: 'c'\n"
    body = f'<details data-id="issue-marker">\n```yaml\n{payload}```\n</details>'
    record = decode(body)
    assert record is not None
    assert record.history == ()


def test_crlf_bodies_decode_and_reencode():
    record = _record()
    crlf = encode('Crash when saving.', record).replace('\n', '\r\n')
    assert decode(crlf) == record

    edited = crlf + 'Reproduced on 2.3 as well.\r\n'
    newer = _record(version='v2025.1', commit=SHA_A)
    encoded = encode(edited, newer)

    assert '\r' not in encoded
    assert encoded.count(BEGIN_SENTINEL) == 1
    assert encoded.count(END_SENTINEL) == 1
    assert decode(encoded) == newer
    assert strip_metadata(encoded) == 'Crash when saving.\n\nReproduced on 2.3 as well.'
