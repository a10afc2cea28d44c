import itertools
import logging
from datetime import date

import pytest

from timeline import (
    InconsistentTimelineError,
    Timeline,
    TimeInterval,
    Timestamp,
)


def span(sy, sm, sd, ey, em, ed):
    return TimeInterval.for_date_range(date(sy, sm, sd), date(ey, em, ed))


def since(y, m, d):
    return TimeInterval.from_start_date(date(y, m, d))


def at(text):
    return Timestamp.from_utc(text)


def existing():
    return Timeline(
        span(2000, 1, 1, 2001, 1, 1),
        span(2004, 1, 1, 2005, 1, 1),
        since(2010, 1, 1),
    )


ADD_CASES = [
    pytest.param(
        Timeline(), [since(2000, 1, 1)],
        [since(2000, 1, 1)], True,
        id='empty timeline/single new entry',
    ),
    pytest.param(
        Timeline(), [span(1998, 1, 1, 1999, 1, 1), since(2000, 1, 1)],
        [span(1998, 1, 1, 1999, 1, 1), since(2000, 1, 1)], True,
        id='empty timeline/non-contiguous new entries',
    ),
    pytest.param(
        Timeline(), [span(1998, 1, 1, 2000, 1, 1), since(2000, 1, 1)],
        [since(1998, 1, 1)], True,
        id='empty timeline/contiguous new entries',
    ),
    pytest.param(
        Timeline(), [span(1998, 1, 1, 2001, 1, 1), since(2000, 1, 1)],
        [since(1998, 1, 1)], True,
        id='empty timeline/overlapping/new after existing',
    ),
    pytest.param(
        Timeline(), [since(2000, 1, 1), span(1998, 1, 1, 2001, 1, 1)],
        [since(1998, 1, 1)], True,
        id='empty timeline/overlapping/new before existing',
    ),
    pytest.param(
        Timeline(), [span(1998, 1, 1, 2001, 1, 1), since(1997, 1, 1)],
        [since(1997, 1, 1)], True,
        id='empty timeline/overlapping/new covers existing',
    ),
    pytest.param(
        Timeline(), [since(1997, 1, 1), span(1998, 1, 1, 2001, 1, 1)],
        [since(1997, 1, 1)], True,
        id='empty timeline/overlapping/new within existing',
    ),
    pytest.param(
        existing(), [span(2002, 1, 1, 2003, 1, 1)],
        [
            span(2000, 1, 1, 2001, 1, 1),
            span(2002, 1, 1, 2003, 1, 1),
            span(2004, 1, 1, 2005, 1, 1),
            since(2010, 1, 1),
        ], True,
        id='existing timeline/non-overlapping new entry',
    ),
    pytest.param(
        existing(), [span(2004, 1, 1, 2005, 1, 1)],
        [span(2000, 1, 1, 2001, 1, 1), span(2004, 1, 1, 2005, 1, 1), since(2010, 1, 1)], False,
        id='existing timeline/new entry matches existing',
    ),
    pytest.param(
        existing(), [span(2001, 1, 1, 2002, 1, 1)],
        [span(2000, 1, 1, 2002, 1, 1), span(2004, 1, 1, 2005, 1, 1), since(2010, 1, 1)], True,
        id='existing timeline/contiguous/extend end of existing',
    ),
    pytest.param(
        existing(), [span(2002, 1, 1, 2004, 1, 1)],
        [span(2000, 1, 1, 2001, 1, 1), span(2002, 1, 1, 2005, 1, 1), since(2010, 1, 1)], True,
        id='existing timeline/contiguous/extend start of existing backwards',
    ),
    pytest.param(
        existing(), [span(2002, 1, 1, 2004, 6, 1)],
        [span(2000, 1, 1, 2001, 1, 1), span(2002, 1, 1, 2005, 1, 1), since(2010, 1, 1)], True,
        id='existing timeline/overlapping/extend start of existing backwards',
    ),
    pytest.param(
        existing(), [span(2004, 6, 1, 2006, 1, 1)],
        [span(2000, 1, 1, 2001, 1, 1), span(2004, 1, 1, 2006, 1, 1), since(2010, 1, 1)], True,
        id='existing timeline/overlapping/extend end of existing',
    ),
    pytest.param(
        existing(), [span(2003, 1, 1, 2006, 1, 1)],
        [span(2000, 1, 1, 2001, 1, 1), span(2003, 1, 1, 2006, 1, 1), since(2010, 1, 1)], True,
        id='existing timeline/overlapping/cover existing',
    ),
    pytest.param(
        existing(), [span(2004, 1, 2, 2004, 12, 31)],
        [span(2000, 1, 1, 2001, 1, 1), span(2004, 1, 1, 2005, 1, 1), since(2010, 1, 1)], False,
        id='existing timeline/overlapping/within existing',
    ),
    pytest.param(
        existing(), [span(2000, 6, 1, 2004, 6, 1)],
        [span(2000, 1, 1, 2005, 1, 1), since(2010, 1, 1)], True,
        id='existing timeline/overlapping/merge multiple existing',
    ),
    pytest.param(
        existing(), [span(2000, 6, 1, 2010, 6, 1)],
        [since(2000, 1, 1)], True,
        id='existing timeline/overlapping/merge all existing',
    ),
    pytest.param(
        Timeline(span(2000, 1, 1, 2001, 1, 1), span(2004, 1, 1, 2005, 1, 1), span(2010, 1, 1, 2011, 1, 1)),
        [since(2000, 6, 1)],
        [since(2000, 1, 1)], True,
        id='existing timeline/overlapping/end past all existing',
    ),
    pytest.param(
        Timeline(span(2000, 1, 1, 2001, 1, 1), span(2002, 1, 1, 2003, 1, 1)),
        [span(2001, 1, 1, 2002, 6, 1)],
        [span(2000, 1, 1, 2003, 1, 1)], True,
        id='existing timeline/trailing adjacent entry reaches the next one',
    ),
    pytest.param(
        Timeline(span(2000, 1, 1, 2001, 1, 1), span(2002, 1, 1, 2003, 1, 1)),
        [span(2001, 1, 1, 2002, 1, 1)],
        [span(2000, 1, 1, 2003, 1, 1)], True,
        id='existing timeline/new entry fills the gap exactly',
    ),
    pytest.param(
        existing(), [span(2011, 1, 1, 2012, 1, 1), span(2000, 1, 1, 2000, 6, 1)],
        [span(2000, 1, 1, 2001, 1, 1), span(2004, 1, 1, 2005, 1, 1), since(2010, 1, 1)], False,
        id='existing timeline/several covered entries',
    ),
]


@pytest.mark.parametrize('value, new_entries, expected, should_change', ADD_CASES)
def test_add(value, new_entries, expected, should_change):
    changed = value.add(*new_entries)

    assert changed is should_change
    assert value.intervals == tuple(expected), str(value)
    assert value.is_normalized


def test_add_reports_change_when_any_candidate_changes():
    timeline = existing()

    assert timeline.add(span(2004, 2, 1, 2004, 3, 1), span(2006, 1, 1, 2007, 1, 1))
    assert len(timeline) == 4


def test_add_covered_interval_is_idempotent():
    timeline = existing()
    before = timeline.intervals

    assert not timeline.add(span(2000, 3, 1, 2000, 4, 1))
    assert not timeline.add(since(2015, 1, 1))
    assert timeline.intervals == before


def test_invariant_holds_after_every_add():
    timeline = Timeline()
    candidates = [
        span(2005, 1, 1, 2006, 1, 1),
        span(2001, 1, 1, 2002, 1, 1),
        span(2003, 1, 1, 2004, 1, 1),
        span(2002, 1, 1, 2003, 1, 1),
        since(2008, 1, 1),
        span(2004, 6, 1, 2005, 6, 1),
        span(2007, 1, 1, 2008, 1, 1),
        span(1999, 1, 1, 2001, 6, 1),
    ]

    for candidate in candidates:
        timeline.add(candidate)
        assert timeline.is_normalized, str(timeline)

    assert timeline.intervals == (
        span(1999, 1, 1, 2004, 1, 1),
        span(2004, 6, 1, 2006, 1, 1),
        since(2007, 1, 1),
    )


def test_scenario_non_contiguous_entries():
    timeline = Timeline()
    timeline.add(span(1998, 1, 1, 1999, 1, 1))
    timeline.add(since(2000, 1, 1))

    assert timeline.intervals == (span(1998, 1, 1, 1999, 1, 1), since(2000, 1, 1))
    assert timeline[1].is_open


def test_normalize_restores_order_and_merges():
    timeline = Timeline.from_raw([
        since(2010, 1, 1),
        span(2004, 1, 1, 2005, 1, 1),
        span(2000, 1, 1, 2001, 1, 1),
        span(2000, 6, 1, 2002, 1, 1),
        span(2011, 1, 1, 2012, 1, 1),
    ])

    assert not timeline.is_normalized

    timeline.normalize()

    assert timeline.is_normalized
    assert timeline.intervals == (
        span(2000, 1, 1, 2002, 1, 1),
        span(2004, 1, 1, 2005, 1, 1),
        since(2010, 1, 1),
    )


def test_normalize_is_order_independent():
    intervals = [
        span(2000, 1, 1, 2001, 1, 1),
        span(2001, 1, 1, 2002, 1, 1),
        span(2003, 1, 1, 2005, 1, 1),
        span(2004, 1, 1, 2006, 1, 1),
        since(2010, 1, 1),
        span(2011, 1, 1, 2012, 1, 1),
    ]
    expected = (
        span(2000, 1, 1, 2002, 1, 1),
        span(2003, 1, 1, 2006, 1, 1),
        since(2010, 1, 1),
    )

    for permutation in itertools.permutations(intervals):
        timeline = Timeline.from_raw(permutation)
        timeline.normalize()
        assert timeline.intervals == expected, str(timeline)


def test_normalize_empty_timeline():
    timeline = Timeline()
    timeline.normalize()

    assert not timeline
    assert str(timeline) == '∅'


def test_inconsistent_timeline_raises_and_is_left_untouched(caplog):
    corrupt = [span(2000, 1, 1, 2001, 1, 1), span(2000, 1, 1, 2001, 1, 1)]
    timeline = Timeline.from_raw(corrupt)

    with caplog.at_level(logging.CRITICAL, logger='timeline'):
        with pytest.raises(InconsistentTimelineError):
            timeline.add(span(2000, 6, 1, 2002, 1, 1))

    assert 'Unexpected intersection' in caplog.text
    assert timeline.intervals == tuple(corrupt)

    timeline.normalize()
    assert timeline.intervals == (span(2000, 1, 1, 2001, 1, 1),)

    assert timeline.add(span(2000, 6, 1, 2002, 1, 1))
    assert timeline.intervals == (span(2000, 1, 1, 2002, 1, 1),)


@pytest.mark.parametrize('moment, expected', [
    ('2000-06-01T00:00:00Z', (True, '2000-01-01T00:00:00Z', '2001-01-01T00:00:00Z')),
    ('2000-01-01T00:00:00Z', (True, '2000-01-01T00:00:00Z', '2001-01-01T00:00:00Z')),
    ('2001-01-01T00:00:00Z', (True, '2000-01-01T00:00:00Z', '2001-01-01T00:00:00Z')),
    ('2004-12-31T23:59:59Z', (True, '2004-01-01T00:00:00Z', '2005-01-01T00:00:00Z')),
    ('2050-01-01T00:00:00Z', (True, '2010-01-01T00:00:00Z', None)),
    ('2002-01-01T00:00:00Z', (False, None, None)),
    ('1999-01-01T00:00:00Z', (False, None, None)),
], ids=['inside', 'at start', 'at end', 'late in second', 'open ended', 'in gap', 'before all'])
def test_contains(moment, expected):
    found, start, end = existing().contains(at(moment))
    expected_found, expected_start, expected_end = expected

    assert found is expected_found
    if not found:
        assert start is None and end is None
        return

    assert start == at(expected_start)
    if expected_end is None:
        assert end == existing()[2].end_time[0]
    else:
        assert end == at(expected_end)


def test_contains_in_gap_between_entries():
    timeline = Timeline(span(1998, 1, 1, 1999, 1, 1), since(2000, 1, 1))

    assert timeline.contains(at('1999-06-01T00:00:00Z')) == (False, None, None)
    assert at('1999-06-01T00:00:00Z') not in timeline
    assert at('2000-06-01T00:00:00Z') in timeline


def test_contains_unset_moment():
    assert existing().contains(None) == (False, None, None)
    assert None not in existing()


def test_contains_now():
    assert Timeline(since(2000, 1, 1)).contains_now()
    assert not Timeline(span(2000, 1, 1, 2001, 1, 1)).contains_now()
    assert not Timeline().contains_now()


def test_timeline_rendering():
    timeline = Timeline(span(1998, 1, 1, 1999, 1, 1), since(2000, 1, 1))

    assert str(timeline) == (
        '[1998-01-01T00:00:00+00:00 .. 1999-01-01T00:00:00+00:00] ⊔\n'
        '[2000-01-01T00:00:00+00:00 .. -)'
    )


def test_timeline_equality_and_iteration():
    assert existing() == existing()
    assert existing() != Timeline(since(2000, 1, 1))
    assert list(existing()) == list(existing().intervals)
