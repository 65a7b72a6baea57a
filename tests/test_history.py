from __future__ import annotations

import pytest

from issuemarker.errors import ConfigurationError, MissingMetadataError
from issuemarker.history import AlphaTransition, PromotionTransition, build_transition, merge
from issuemarker.metadata import HistoryEntry, MetadataRecord
from issuemarker.stages import Stage


def test_alpha_merge_without_existing_record():
    transition = build_transition(Stage.ALPHA, 'v2025.1-alpha.1', 'c1', repository='acme/widgets')
    assert isinstance(transition, AlphaTransition)

    record = merge(transition, None)

    assert record == MetadataRecord(
        repository='acme/widgets',
        version='v2025.1-alpha.1',
        commit='c1',
        history=(HistoryEntry('v2025.1-alpha.1', 'c1'),),
    )


def test_alpha_requires_repository():
    with pytest.raises(ConfigurationError):
        build_transition(Stage.ALPHA, 'v2025.1-alpha.1', 'c1')


def test_promotion_variant_cannot_be_alpha():
    with pytest.raises(ConfigurationError):
        PromotionTransition(stage=Stage.ALPHA, version='v2025.1-alpha.1', commit='c1')


def test_promotion_keeps_repository_from_alpha_time():
    existing = merge(
        build_transition(Stage.ALPHA, 'v2025.1-alpha.2', 'c1', repository='acme/widgets'), None
    )
    promoted = merge(build_transition(Stage.BETA, 'v2025.1-beta.1', 'c2', repository='other/repo'), existing)

    assert promoted.repository == 'acme/widgets'
    assert promoted.version == 'v2025.1-beta.1'
    assert promoted.commit == 'c2'
    assert promoted.history == (
        HistoryEntry('v2025.1-beta.1', 'c2'),
        HistoryEntry('v2025.1-alpha.2', 'c1'),
    )


def test_promotion_without_record_is_missing_metadata():
    transition = build_transition(Stage.PRODUCTION, 'v2025.1', 'c9')
    with pytest.raises(MissingMetadataError) as exc:
        merge(transition, None, issue='acme/widgets#42')
    assert exc.value.issue == 'acme/widgets#42'
    assert 'production' in str(exc.value)


def test_history_grows_by_one_per_transition():
    steps = [
        (Stage.ALPHA, 'v2025.1-alpha.1', 'c1'),
        (Stage.ALPHA, 'v2025.1-alpha.2', 'c2'),
        (Stage.BETA, 'v2025.1-beta.1', 'c3'),
        (Stage.BETA, 'v2025.1-beta.2', 'c4'),
        (Stage.PRODUCTION, 'v2025.1', 'c5'),
    ]
    record = None
    for count, (stage, version, commit) in enumerate(steps, start=1):
        previous = record
        record = merge(build_transition(stage, version, commit, repository='acme/widgets'), record)
        assert len(record.history) == count
        assert record.history[0] == HistoryEntry(version, commit)
        assert (record.version, record.commit) == (version, commit)
        if previous is not None:
            assert record.history[1:] == previous.history
    assert record is not None
    assert [entry.version for entry in record.history] == [s[1] for s in reversed(steps)]
