from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
import datetime
import logging
import networkx as nx
import yaml

from timeline import Timeline, TimelineSettings, TimeInterval, Timestamp


logger = logging.getLogger(__name__)



@dataclass
class Schedule:
    '''A named set of time intervals.'''

    _slug: str
    title: str
    description: str = field(default_factory=str)
    intervals: list[TimeInterval] = field(default_factory=list)


    def __hash__(self):
        return hash(self._slug)


    def __eq__(self, other):

        if not isinstance(other, Schedule):
            return NotImplemented

        return self.slug == other.slug


    @property
    def slug(self):
        '''Returns a unique string identifier of the schedule.'''

        return self._slug


    @classmethod
    def from_dict(
        cls,
        slug: str,
        data: dict,
        settings: TimelineSettings,
        timezone_iana: str | None = None
    ) -> Schedule:
        intervals_data = data.get('intervals', [])

        if intervals_data is None:
            intervals_data = []

        if not isinstance(intervals_data, list):
            raise ValueError(f'\'intervals\' of \'{slug}\' must be a list.')

        intervals = []
        for item in intervals_data:
            if not isinstance(item, dict):
                raise ValueError(f'Each interval of \'{slug}\' must be a mapping.')

            start = _read_moment(item.get('start'), timezone_iana)
            end = _read_moment(item.get('end'), timezone_iana)
            intervals.append(TimeInterval.create(start, end, settings=settings))

        return cls(
            _slug=slug,
            title=data.get('title', slug),
            description=data.get('description', ''),
            intervals=intervals
        )



def _read_moment(value: object, timezone_iana: str | None) -> Timestamp | None:
    '''Converts a YAML scalar into a timestamp.

    PyYAML turns unquoted ISO values into 'date' or 'datetime' objects;
    quoted values stay strings. Naive values are read in
    'timezone_iana', or in the local time zone.'''

    if value is None:
        return None

    if isinstance(value, datetime.datetime):
        return Timestamp.from_datetime(value, timezone_iana)

    if isinstance(value, datetime.date):
        midnight = datetime.datetime(value.year, value.month, value.day)
        return Timestamp.from_datetime(midnight, timezone_iana)

    if isinstance(value, str):
        return Timestamp.from_iso(value, timezone_iana)

    raise ValueError(f'Cannot read a moment in time from {value!r}.')



@dataclass
class Schedules:
    '''All schedules. A schedule inherits the intervals of its
    parents.'''

    schedules_graph: nx.DiGraph = field(default_factory=nx.DiGraph)
    slug_to_schedule: dict[str, Schedule] = field(default_factory=dict)
    settings: TimelineSettings = field(default_factory=TimelineSettings.current)


    def validate(self) -> None:

        if not nx.is_directed_acyclic_graph(self.schedules_graph):
            cycle = nx.find_cycle(self.schedules_graph)
            raise ValueError(f'Cycle detected: {cycle}.')


    def clear(self) -> None:
        '''Clears all schedules data and resets the settings to the
        process-wide ones.'''

        self.schedules_graph.clear()
        self.slug_to_schedule.clear()
        self.settings = TimelineSettings.current()


    def load_from_yaml(self, filename: str) -> None:
        '''Load schedules from YAML file.'''

        path = Path(filename)

        with path.open('r', encoding='utf-8') as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError('YAML root must be a mapping.')

        settings_data = data.get('settings') or {}
        if not isinstance(settings_data, dict):
            raise ValueError('\'settings\' must be a mapping.')

        schedules_data = data.get('schedules')
        if not isinstance(schedules_data, dict):
            raise ValueError('\'schedules\' must be a mapping.')

        timezone_iana = settings_data.get('timezone')

        # Clear old data.
        self.clear()

        if 'end_of_time' in settings_data:
            end = _read_moment(settings_data['end_of_time'], 'Etc/UTC')
            if end is None:
                raise ValueError('\'end_of_time\' must not be empty.')
            self.settings = TimelineSettings(end_of_time=end)

        # Create schedules.
        for slug, item in schedules_data.items():
            if not isinstance(item, dict):
                raise ValueError('Each schedule must be a mapping.')

            schedule = Schedule.from_dict(slug, item, self.settings, timezone_iana)

            self.slug_to_schedule[schedule.slug] = schedule
            self.schedules_graph.add_node(schedule)

        # Create connections.
        for slug, item in schedules_data.items():
            parents = item.get('parents', [])

            if parents is None:
                parents = []

            if not isinstance(parents, list):
                raise ValueError(
                    f'\'parents\' of \'{slug}\' must be a list.'
                )

            child = self.slug_to_schedule[slug]

            for parent_slug in parents:
                if parent_slug not in self.slug_to_schedule:
                    raise ValueError(
                        f'Unknown parent \'{parent_slug}\' for schedule \'{slug}\'.'
                    )

                parent = self.slug_to_schedule[parent_slug]
                self.schedules_graph.add_edge(parent, child)

        self.validate()

        logger.info('Loaded %d schedules from %s', len(self.slug_to_schedule), path)


    def timeline(self, slug: str) -> Timeline:
        '''Builds the timeline of a schedule from its own intervals
        and those of all its ancestors.'''

        if slug not in self.slug_to_schedule:
            raise ValueError(f'Unknown schedule: {slug}.')

        schedule = self.slug_to_schedule[slug]
        ancestors = nx.ancestors(self.schedules_graph, schedule)

        # Ancestors first, in a stable topological order.
        members = [
            s for s in nx.lexicographical_topological_sort(
                self.schedules_graph, key=lambda s: s.slug
            )
            if s in ancestors
        ]
        members.append(schedule)

        result = Timeline(settings=self.settings)
        for member in members:
            result.add(*member.intervals)

        logger.debug('Built timeline for %s from %d schedules', slug, len(members))
        return result
