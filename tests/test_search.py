from datetime import datetime, timedelta, timezone

import pytest

from aggregate.search import (
    BugzillaAssigneesSearch,
    BugzillaComponentSearch,
    BugzillaWhiteboardSearch,
    GithubRepoSearch,
    SearchDescriptor,
    SearchFilters,
    as_descriptors,
    parse_change_time,
    resolve_change_time,
)
from errors import InvalidSearchError, UnsupportedSearchError


def test_descriptor_from_dict_component():
    d = SearchDescriptor.from_dict({
        'search': {'type': 'bugzillaComponent', 'product': 'P', 'component': 'C'},
        'filters': {'priority': 1, 'open': True},
    })
    assert d.search == BugzillaComponentSearch(product='P', component='C')
    assert d.filters.priority == 1
    assert d.filters.open is True
    assert d.type == 'bugzillaComponent'


def test_descriptor_without_filters():
    d = SearchDescriptor.from_dict({'search': {'type': 'githubRepo', 'user': 'mozilla', 'project': 'glean'}})
    assert d.search == GithubRepoSearch(user='mozilla', project='glean')
    assert d.filters == SearchFilters()


def test_list_fields_become_tuples():
    d = SearchDescriptor.from_dict({'search': {'type': 'bugzillaAssignees', 'assignees': ['a', 'b']}, 'filters': {'assignees': ['a']}})
    assert d.search == BugzillaAssigneesSearch(assignees=('a', 'b'))
    assert d.filters.assignees == ('a',)


def test_whiteboard_search():
    d = SearchDescriptor.from_dict({'search': {'type': 'bugzillaWhiteboard', 'whiteboardContent': '[tag]'}})
    assert d.search == BugzillaWhiteboardSearch(whiteboard_content='[tag]')


@pytest.mark.parametrize('search', [{'type': 'jira'}, {}, None, {'type': None}])
def test_unsupported_search_type(search):
    with pytest.raises(UnsupportedSearchError):
        SearchDescriptor.from_dict({'search': search})


def test_missing_search_field_is_value_error():
    with pytest.raises(ValueError, match='component'):
        SearchDescriptor.from_dict({'search': {'type': 'bugzillaComponent', 'product': 'P'}})


def test_as_descriptors_fails_on_any_unsupported_entry():
    good = {'search': {'type': 'githubRepo', 'user': 'u', 'project': 'p'}}
    with pytest.raises(UnsupportedSearchError):
        as_descriptors([good, {'search': {'type': 'nope'}}])


def test_filters_ignore_unknown_and_nested_keys():
    filters = SearchFilters.from_dict({'open': False, 'prority': 1, 'filters': {'customFilter': 'x'}})
    assert filters == SearchFilters(open=False)


def test_filters_accept_camel_and_snake_case():
    camel = SearchFilters.from_dict({'isAssigned': True, 'notWhiteboard': 'x', 'isPullRequest': False})
    snake = SearchFilters.from_dict({'is_assigned': True, 'not_whiteboard': 'x', 'is_pull_request': False})
    assert camel == snake


def test_filters_round_trip_to_dict():
    raw = {'open': True, 'priority': 2, 'isAssigned': False, 'whiteboard': '[a]'}
    assert SearchFilters.from_dict(raw).to_dict() == raw


def test_parse_change_time_variants():
    assert parse_change_time(None) is None
    assert parse_change_time('2024-01-02T03:04:05Z') == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_change_time(datetime(2024, 1, 2)).tzinfo == timezone.utc
    assert parse_change_time('-14d') == timedelta(days=14)
    assert parse_change_time('-6h') == timedelta(hours=6)
    assert parse_change_time(timedelta(days=1)) == timedelta(days=1)


def test_resolve_change_time():
    now = datetime(2024, 5, 15, tzinfo=timezone.utc)
    assert resolve_change_time(timedelta(days=14), now=now) == datetime(2024, 5, 1, tzinfo=timezone.utc)
    assert resolve_change_time(datetime(2024, 1, 1, tzinfo=timezone.utc), now=now) == datetime(2024, 1, 1, tzinfo=timezone.utc)
    recent = resolve_change_time(timedelta(days=1))
    assert abs((recent - (datetime.now(timezone.utc) - timedelta(days=1))).total_seconds()) < 5


def test_relative_change_time_keeps_its_form_in_to_dict():
    filters = SearchFilters.from_dict({'lastChangeTime': '-14d'})
    assert filters.to_dict() == {'lastChangeTime': '-14d'}
    assert SearchFilters.from_dict(filters.to_dict()) == filters


@pytest.mark.parametrize('value', ['last week', '14d', 42, ['2024-01-01']])
def test_malformed_change_time_is_invalid_search(value):
    with pytest.raises(InvalidSearchError, match='lastChangeTime'):
        SearchFilters.from_dict({'lastChangeTime': value})


def test_unprioritized_false_is_kept_as_set():
    assert SearchFilters.from_dict({'unprioritized': False}).unprioritized is False
    assert SearchFilters.from_dict({}).unprioritized is None
    assert SearchFilters.from_dict({'unprioritized': False}).to_dict() == {'unprioritized': False}


@pytest.mark.parametrize('filters', [['open'], 'open', 3])
def test_filters_must_be_an_object(filters):
    with pytest.raises(InvalidSearchError, match='filters must be an object'):
        SearchDescriptor.from_dict({'search': {'type': 'githubRepo', 'user': 'u', 'project': 'p'}, 'filters': filters})


def test_string_email_lists_are_rejected():
    with pytest.raises(InvalidSearchError, match='assignees'):
        SearchDescriptor.from_dict({'search': {'type': 'bugzillaAssignees', 'assignees': 'a@x.com'}})
    with pytest.raises(InvalidSearchError, match='mentors'):
        SearchDescriptor.from_dict({'search': {'type': 'bugzillaMentors', 'mentors': 'm@x.com'}})
    with pytest.raises(InvalidSearchError, match='assignees'):
        SearchFilters.from_dict({'assignees': 'a@x.com'})


def test_descriptor_to_dict():
    d = SearchDescriptor.from_dict({'search': {'type': 'bugzillaMentors', 'mentors': ['m']}, 'filters': {'open': True}})
    assert d.to_dict() == {'search': {'type': 'bugzillaMentors', 'mentors': ['m']}, 'filters': {'open': True}}
