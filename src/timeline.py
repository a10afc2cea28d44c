from __future__ import annotations
from dataclasses import dataclass, field
from functools import total_ordering
from typing import Iterable, Iterator, overload
from enum import Enum, unique
import datetime
import logging
import threading
import zoneinfo
import tzlocal
import sys


logger = logging.getLogger(__name__)



class TimelineError(ValueError):
    '''Base class for invalid timeline input.'''


class InvalidStartError(TimelineError):

    def __init__(self) -> None:
        super().__init__('The start time must be specified for a timeline entry.')


class InvalidOrderError(TimelineError):

    def __init__(self) -> None:
        super().__init__('The start time must be before the end time for a timeline entry.')


class InvalidIntersectionTypeError(TimelineError):

    def __init__(self, text: object) -> None:
        super().__init__(
            f'The provided string could not be parsed into an intersection type: {text!r}.'
        )


class InconsistentTimelineError(AssertionError):
    '''The stored entries of a timeline were not sorted and disjoint
    before a merge. Raised instead of producing overlapping entries.'''



@dataclass(frozen=True)
@total_ordering
class Timestamp:
    '''Date and time along with the time zone.

    Contains an aware datetime timestamp with a 'ZoneInfo' time zone.
    Comparisons and arithmetic are done on the absolute (UTC) instant.

    Requirements:
    - 'tzinfo' must be 'zoneinfo.ZoneInfo'.

    Notes:
    - Dependency: 'tzlocal' (for detecting local IANA zone name).'''


    _UTC = zoneinfo.ZoneInfo('Etc/UTC')    # UTC time zone.


    _dt: datetime.datetime


    @staticmethod
    def _is_valid_dt(dt: datetime.datetime) -> bool:
        '''Checks that the 'datetime' variable contains a valid
        'ZoneInfo' time zone.'''

        if not isinstance(dt, datetime.datetime) or dt.tzinfo is None:
            return False
        return isinstance(dt.tzinfo, zoneinfo.ZoneInfo) and dt.utcoffset() is not None


    @staticmethod
    def _local_zone() -> zoneinfo.ZoneInfo:
        try:
            return zoneinfo.ZoneInfo(tzlocal.get_localzone_name())
        except Exception as e:
            raise RuntimeError('Failed to determine local time zone.') from e


    def __post_init__(self) -> None:
        if not Timestamp._is_valid_dt(self._dt):
            raise ValueError('The time zone has been set incorrectly.')


    def __str__(self) -> str:
        return self.datetime_iso


    def __eq__(self, other: object) -> bool:
        '''Compares two timestamps in UTC.'''

        if not isinstance(other, Timestamp):
            return NotImplemented

        return self._utc() == other._utc()


    def __hash__(self) -> int:
        return hash(self._utc())


    def __lt__(self, other: object) -> bool:
        '''Less-than comparison based on absolute (UTC) time.'''

        if not isinstance(other, Timestamp):
            return NotImplemented

        return self._utc() < other._utc()


    def __add__(self, other: datetime.timedelta) -> Timestamp:
        '''Time shift by a specified interval.'''

        if not isinstance(other, datetime.timedelta):
            return NotImplemented

        return Timestamp((self._utc() + other).astimezone(self._dt.tzinfo))


    @overload
    def __sub__(self, other: datetime.timedelta) -> Timestamp: ...


    @overload
    def __sub__(self, other: Timestamp) -> datetime.timedelta: ...


    def __sub__(self, other: datetime.timedelta | Timestamp) -> Timestamp | datetime.timedelta:
        '''The offset of a timestamp by a specified interval,
        or the difference between two timestamps.'''

        if isinstance(other, datetime.timedelta):
            return self + (-other)

        if isinstance(other, Timestamp):
            return self._utc() - other._utc()

        return NotImplemented


    def _utc(self) -> datetime.datetime:
        return self._dt.astimezone(Timestamp._UTC)


    @classmethod
    def from_utc(cls, dt_iso: str) -> Timestamp:
        '''Parse an ISO 8601 string and return a 'Timestamp' in UTC.

        Any strings containing timestamps with a non-zero offset are rejected.

        Accepted examples:
         - '2026-01-20T10:36'         (assumed UTC),
         - '2026-01-20T10:36Z'        (UTC),
         - '2026-01-20T10:36+00:00'   (zero offset).'''

        dt = cls._parse(dt_iso)

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=Timestamp._UTC)
        else:
            if dt.utcoffset() != datetime.timedelta(0):
                raise ValueError(f"The timestamp '{dt_iso}' is not in UTC.")
            dt = dt.astimezone(Timestamp._UTC)

        return cls(dt)


    @classmethod
    def from_iso(cls, dt_iso: str, timezone_iana: str | None = None) -> Timestamp:
        '''Parse an ISO 8601 string in the given time zone.

        Naive strings are read in 'timezone_iana', or in the local time
        zone when it is not given. Strings with an offset keep their
        instant and are converted to that zone.'''

        return cls.from_datetime(cls._parse(dt_iso), timezone_iana)


    @classmethod
    def from_datetime(
        cls, dt: datetime.datetime, timezone_iana: str | None = None
    ) -> Timestamp:
        '''Creates a timestamp from a 'datetime', reading naive values
        in 'timezone_iana' or, failing that, the local time zone.'''

        if timezone_iana is None:
            tz = cls._local_zone()
        else:
            try:
                tz = zoneinfo.ZoneInfo(timezone_iana)
            except Exception as e:
                raise ValueError(f'Invalid IANA time zone: {timezone_iana}') from e

        if dt.tzinfo is None:
            return cls(dt.replace(tzinfo=tz))
        return cls(dt.astimezone(tz))


    @classmethod
    def from_date(cls, day: datetime.date) -> Timestamp:
        '''Midnight UTC on the given day.'''

        return cls(datetime.datetime(day.year, day.month, day.day, tzinfo=Timestamp._UTC))


    @staticmethod
    def _parse(dt_iso: str) -> datetime.datetime:
        # 'fromisoformat' only accepts the 'Z' suffix from Python 3.11.
        if sys.version_info < (3, 11) and dt_iso.endswith('Z'):
            dt_iso = dt_iso[:-1] + '+00:00'

        try:
            return datetime.datetime.fromisoformat(dt_iso)
        except ValueError as e:
            raise ValueError(f'Invalid ISO 8601 datetime string: {dt_iso}') from e


    @classmethod
    def now(cls) -> Timestamp:
        '''Creates a new timestamp with the current local time.'''

        return cls(datetime.datetime.now(cls._local_zone()))


    @classmethod
    def now_utc(cls) -> Timestamp:
        '''Creates a new timestamp with the current time in UTC.'''

        return cls(datetime.datetime.now(Timestamp._UTC))


    @property
    def datetime(self) -> datetime.datetime:
        return self._dt


    @property
    def datetime_iso(self) -> str:
        '''Returns the timestamp in ISO 8601 format in the time zone
        in which it was recorded.'''

        return self._dt.isoformat()


    @property
    def timezone_iana(self) -> str:
        '''Returns the time zone of this timestamp in IANA format.'''

        if not isinstance(self._dt.tzinfo, zoneinfo.ZoneInfo):
            raise ValueError('The time zone has been set incorrectly.')

        return self._dt.tzinfo.key


    def to_timezone(self, timezone_iana: str) -> Timestamp:
        '''Creates a new timestamp by converting the given one to
        the specified time zone.'''

        try:
            tz = zoneinfo.ZoneInfo(timezone_iana)
        except Exception as e:
            raise ValueError(f'Invalid IANA time zone: {timezone_iana}') from e

        return Timestamp(self._dt.astimezone(tz))


    def to_utc(self) -> Timestamp:
        return Timestamp(self._utc())


    @property
    def utc_iso(self) -> str:
        '''Returns an ISO 8601 string in UTC.'''

        return self._utc().replace(tzinfo=None).isoformat() + 'Z'



# Latest instant a 'datetime' can hold in UTC.
DEFAULT_END_OF_TIME = Timestamp(datetime.datetime.max.replace(tzinfo=Timestamp._UTC))

_end_of_time_lock = threading.Lock()
_end_of_time = DEFAULT_END_OF_TIME


def end_of_time() -> Timestamp:
    '''Returns the process-wide sentinel that marks an interval
    without an end.'''

    with _end_of_time_lock:
        return _end_of_time


def set_end_of_time(moment: Timestamp) -> None:
    '''Replaces the process-wide open-end sentinel.

    Meant to be called once during startup. Values built earlier keep
    the sentinel they were built with.'''

    global _end_of_time

    if not isinstance(moment, Timestamp):
        raise TypeError('The end of time must be a \'Timestamp\'.')

    with _end_of_time_lock:
        _end_of_time = moment

    logger.info('End of time set to %s', moment.utc_iso)



@dataclass(frozen=True)
class TimelineSettings:
    '''Configuration shared by intervals and timelines.'''

    end_of_time: Timestamp = field(default_factory=end_of_time)


    @classmethod
    def current(cls) -> TimelineSettings:
        '''Snapshot of the process-wide configuration.'''

        return cls(end_of_time=end_of_time())



@dataclass(frozen=True)
class TimeInterval:
    '''A span of time with a start and, optionally, an end.

    An interval without an end stores the sentinel of its settings
    as its end. Only that exact instant reads as "no end": any other
    far-future end is a concrete end.

    Use the 'create' family of constructors rather than the dataclass
    constructor directly.'''


    _start: Timestamp
    _end: Timestamp
    _settings: TimelineSettings = field(
        default_factory=TimelineSettings.current, compare=False, repr=False
    )


    def __post_init__(self) -> None:
        if self._start is None:
            raise InvalidStartError()
        if not self._start < self._end:
            raise InvalidOrderError()


    def __str__(self) -> str:
        '''Range notation; '[start .. -)' when there is no end.'''

        end, has_end = self.end_time
        if has_end:
            return f'[{self._start} .. {end}]'
        return f'[{self._start} .. -)'


    @classmethod
    def create(
        cls,
        start: Timestamp | None,
        end: Timestamp | None = None,
        settings: TimelineSettings | None = None
    ) -> TimeInterval:
        '''Creates an interval. Without an end, the interval is open.

        An explicit end must not lie past the sentinel of 'settings'.'''

        if settings is None:
            settings = TimelineSettings.current()

        if start is None:
            raise InvalidStartError()

        if end is None:
            end = settings.end_of_time
            if not start < end:
                # A start at or after the sentinel cannot be open-ended.
                raise InvalidOrderError()
        elif not start < end or settings.end_of_time < end:
            # An explicit end may reach the sentinel but not pass it.
            raise InvalidOrderError()

        return cls(_start=start, _end=end, _settings=settings)


    @classmethod
    def from_start_date(
        cls, day: datetime.date, settings: TimelineSettings | None = None
    ) -> TimeInterval:
        '''An open interval starting at midnight UTC on the given day.'''

        return cls.create(Timestamp.from_date(day), settings=settings)


    @classmethod
    def for_date_range(
        cls,
        start_day: datetime.date,
        end_day: datetime.date,
        settings: TimelineSettings | None = None
    ) -> TimeInterval:
        '''An interval from midnight UTC on 'start_day' to midnight UTC
        on 'end_day'.'''

        return cls.create(
            Timestamp.from_date(start_day),
            Timestamp.from_date(end_day),
            settings=settings
        )


    @property
    def start(self) -> Timestamp:
        return self._start


    @property
    def end_time(self) -> tuple[Timestamp, bool]:
        '''Returns the end along with whether the interval has one.

        For an open interval the returned end is the sentinel.'''

        return self._end, self._end != self._settings.end_of_time


    @property
    def end(self) -> Timestamp | None:
        '''Returns the end, or 'None' if the interval is open.'''

        end, has_end = self.end_time
        return end if has_end else None


    @property
    def is_open(self) -> bool:
        return not self.end_time[1]


    @property
    def settings(self) -> TimelineSettings:
        return self._settings


    @property
    def duration(self) -> datetime.timedelta:
        '''The time between start and end. An open interval lasts until
        the sentinel.'''

        return self._end - self._start


    def rebased(self, settings: TimelineSettings) -> TimeInterval:
        '''Returns the same span anchored on other settings. An open
        interval stays open under the new sentinel.'''

        if settings == self._settings:
            return self

        return TimeInterval.create(self._start, self.end, settings=settings)


@unique
class Intersection(Enum):
    '''How a candidate interval relates to a reference interval.

    The value of each member is its serialized text form.'''

    NONE = 'none'
    SAME = 'same'
    # The candidate starts earlier and ends later.
    COVER = 'cover'
    # The candidate lies inside the reference.
    WITHIN = 'within'
    # The candidate ends where the reference starts, or starts where
    # it ends.
    ADJACENT = 'adjacent'
    # The candidate starts earlier and ends inside the reference.
    START_OVERLAP = 'start'
    # The candidate starts inside the reference and ends later.
    END_OVERLAP = 'end'


    def __str__(self) -> str:
        return self.value


    @classmethod
    def parse(cls, text: str) -> Intersection:
        '''Case-insensitive parse of the text form.'''

        if not isinstance(text, str):
            raise InvalidIntersectionTypeError(text)

        try:
            return cls(text.lower())
        except ValueError as e:
            raise InvalidIntersectionTypeError(text) from e


    @classmethod
    def parse_lossy(cls, text: str) -> Intersection:
        '''Like 'parse', but unrecognized text yields 'NONE'.'''

        try:
            return cls.parse(text)
        except InvalidIntersectionTypeError:
            return cls.NONE



def intersect(reference: TimeInterval, candidate: TimeInterval) -> Intersection:
    '''Classifies how 'candidate' relates to 'reference'.

    The relation is directional: 'intersect(a, b)' and 'intersect(b, a)'
    generally differ. Open ends take part as their sentinel.'''

    # The stored end of an open interval already is its sentinel.
    rs, re = reference.start, reference.end_time[0]
    cs, ce = candidate.start, candidate.end_time[0]

    if cs < rs:
        if ce < rs:
            return Intersection.NONE
        if ce == rs:
            return Intersection.ADJACENT
        if ce > re:
            return Intersection.COVER
        return Intersection.START_OVERLAP

    if cs > rs:
        if cs > re:
            return Intersection.NONE
        if cs == re:
            return Intersection.ADJACENT
        if ce <= re:
            return Intersection.WITHIN
        return Intersection.END_OVERLAP

    if ce < re:
        return Intersection.WITHIN
    if ce > re:
        return Intersection.END_OVERLAP
    return Intersection.SAME



class Timeline:
    '''Chronologically ordered intervals, none of which intersect
    or touch.

    'add' merges new intervals into the existing ones so that this
    holds after every call. A single instance must not be mutated from
    several threads at once.'''


    def __init__(self, *intervals: TimeInterval, settings: TimelineSettings | None = None):
        self._settings = settings if settings is not None else TimelineSettings.current()
        self._intervals: list[TimeInterval] = []
        self.add(*intervals)


    @classmethod
    def from_raw(
        cls, intervals: Iterable[TimeInterval], settings: TimelineSettings | None = None
    ) -> Timeline:
        '''Wraps intervals as given, without merging them.

        Use 'normalize' to restore ordering and disjointness
        afterwards.'''

        timeline = cls(settings=settings)
        timeline._intervals = [i.rebased(timeline._settings) for i in intervals]
        return timeline


    def __str__(self) -> str:
        if not self._intervals:
            # Returns the empty set symbol.
            return '\u2205'
        return ' \u2294\n'.join(map(str, self._intervals))


    def __repr__(self) -> str:
        return f'Timeline({", ".join(map(str, self._intervals))})'


    def __len__(self) -> int:
        return len(self._intervals)


    def __bool__(self) -> bool:
        return bool(self._intervals)


    def __iter__(self) -> Iterator[TimeInterval]:
        return iter(tuple(self._intervals))


    def __getitem__(self, index: int) -> TimeInterval:
        return self._intervals[index]


    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Timeline):
            return NotImplemented
        return self._intervals == other._intervals


    def __contains__(self, moment: object) -> bool:
        if not isinstance(moment, Timestamp):
            return False
        return self.contains(moment)[0]


    @property
    def settings(self) -> TimelineSettings:
        return self._settings


    @property
    def intervals(self) -> tuple[TimeInterval, ...]:
        return tuple(self._intervals)


    @property
    def is_normalized(self) -> bool:
        '''Checks that every interval ends strictly before the next
        one starts.'''

        for l, r in zip(self._intervals, self._intervals[1:]):
            if not l.end_time[0] < r.start:
                return False
        return True


    def add(self, *intervals: TimeInterval) -> bool:
        '''Merges the intervals into the timeline, one after another
        in the given order.

        Returns whether the timeline changed.'''

        changed = False
        for interval in intervals:
            if self._add_interval(interval.rebased(self._settings)):
                changed = True
        return changed


    def normalize(self) -> None:
        '''Restores ordering and disjointness by replaying every stored
        interval into a fresh timeline.

        Quadratic in the worst case; meant for ingesting externally
        built interval lists.'''

        if not self._intervals:
            return

        rebuilt = Timeline(settings=self._settings)
        for interval in self._intervals:
            rebuilt._add_interval(interval)

        logger.debug('Normalized %d intervals into %d', len(self._intervals), len(rebuilt))
        self._intervals = rebuilt._intervals


    def contains(self, moment: Timestamp | None) -> tuple[bool, Timestamp | None, Timestamp | None]:
        '''Finds the interval that contains 'moment'.

        Returns whether one was found along with its start and end. The
        end of an open interval is the sentinel. Both ends are
        inclusive.'''

        if moment is None:
            return False, None, None

        for interval in self._intervals:
            start = interval.start
            end, has_end = interval.end_time
            if start > moment:
                continue
            if start == moment or not has_end or moment <= end:
                return True, start, end

        return False, None, None


    def contains_now(self) -> bool:
        return self.contains(Timestamp.now_utc())[0]


    def _span(self, start: Timestamp, end: Timestamp) -> TimeInterval:
        # 'end' may be the sentinel, which keeps the span open.
        return TimeInterval.create(start, end, settings=self._settings)


    def _add_interval(self, interval: TimeInterval) -> bool:
        if not self._intervals:
            self._intervals.append(interval)
            logger.debug('Started timeline with %s', interval)
            return True

        for i, reference in enumerate(self._intervals):
            relation = intersect(reference, interval)

            match relation:
                case Intersection.SAME | Intersection.WITHIN:
                    logger.debug('%s is already covered by %s', interval, reference)
                    return False

                case Intersection.NONE:
                    if interval.start < reference.start:
                        self._intervals.insert(i, interval)
                        logger.debug('Inserted %s at %d', interval, i)
                        return True

                case Intersection.START_OVERLAP:
                    self._intervals[i] = self._span(interval.start, reference.end_time[0])
                    logger.debug('Extended %s back to %s', reference, interval.start)
                    return True

                case Intersection.ADJACENT:
                    start = min(reference.start, interval.start)
                    end = max(reference.end_time[0], interval.end_time[0])
                    if interval.start < reference.start:
                        # Touches the entry from the left; nothing after it
                        # can be reached.
                        self._intervals[i] = self._span(start, end)
                        logger.debug('Joined %s onto the start of %s', interval, reference)
                    else:
                        self._sweep(i, start, end)
                    return True

                case Intersection.COVER | Intersection.END_OVERLAP:
                    start = min(reference.start, interval.start)
                    self._sweep(i, start, interval.end_time[0])
                    return True

        self._intervals.append(interval)
        logger.debug('Appended %s', interval)
        return True


    def _sweep(self, index: int, start: Timestamp, end: Timestamp) -> None:
        '''Replaces the entry at 'index' with the span 'start'..'end',
        absorbing every later entry the span covers or touches.'''

        merged = self._span(start, end)
        tail = self._intervals[index + 1:]

        absorbed = 0
        for following in tail:
            relation = intersect(following, merged)

            if relation is Intersection.NONE:
                break

            if relation is Intersection.COVER:
                pass
            elif relation in (Intersection.START_OVERLAP, Intersection.ADJACENT):
                end = max(end, following.end_time[0])
            else:
                position = index + 1 + absorbed
                logger.critical(
                    'Unexpected intersection %s of %s at index %d while merging %s',
                    relation, following, position, merged
                )
                raise InconsistentTimelineError(
                    f'Unexpected intersection type {relation} at index {position} ({following}).'
                )

            absorbed += 1

        if end != merged.end_time[0]:
            merged = self._span(start, end)

        self._intervals = self._intervals[:index] + [merged] + tail[absorbed:]
        logger.debug('Merged %d following intervals into %s', absorbed, merged)
