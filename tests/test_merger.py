import unittest
import time

from aggregate.merger import BugAggregator, descriptor_cache_key, merge_bug_lists
from aggregate.search import SearchDescriptor
from errors import BugzillaError, InvalidSearchError, UnsupportedSearchError
from ingest.bugzilla import BugzillaLoader
from ingest.github import GitHubLoader
from normalize.models import Bug, BugSource


def _bug(n, title='t'):
    return Bug(id=f'bz:{n}', source=BugSource.BUGZILLA, title=title, url='u')


def _raw(n, priority='P1', assigned_to='dev@x.com'):
    return {
        'id': n,
        'summary': f'bug {n}',
        'whiteboard': '',
        'product': 'P',
        'component': 'C',
        'assigned_to': assigned_to,
        'cf_fx_points': '---',
        'priority': priority,
        'mentors': [],
        'resolution': '',
        'severity': 'S3',
        'type': 'defect',
        'flags': [],
    }


class CountingBugzilla:
    """Stub Bugzilla answering from a table keyed by component; records every search."""

    def __init__(self, bugs_by_component=None, default=None, error=None):
        self.bugs_by_component = bugs_by_component or {}
        self.default = default or []
        self.error = error
        self.calls = []

    def show_bug_url(self):
        return 'https://bz.example.com/show_bug.cgi?id={id}'

    def search_bugs(self, params, callback):
        self.calls.append(params)
        if self.error is not None:
            callback(self.error, None)
            return
        callback(None, self.bugs_by_component.get(params.get('component'), self.default))


class CountingGitHub:
    def __init__(self, items=None):
        self.items = items or []
        self.calls = []

    def list_issues(self, user, project, state='open'):
        self.calls.append((user, project, state))
        return list(self.items)


def component(name, **filters):
    raw = {'search': {'type': 'bugzillaComponent', 'product': 'P', 'component': name}}
    if filters:
        raw['filters'] = filters
    return raw


class TestMergeBugLists(unittest.TestCase):
    def test_dedup_keeps_first_position(self):
        merged = merge_bug_lists([[_bug(1), _bug(100)], [_bug(2), _bug(100), _bug(3)]])
        self.assertEqual([b.id for b in merged], ['bz:1', 'bz:100', 'bz:2', 'bz:3'])
        self.assertEqual(sum(1 for b in merged if b.id == 'bz:100'), 1)

    def test_last_writer_wins(self):
        merged = merge_bug_lists([[_bug(100, 'old'), _bug(1)], [_bug(100, 'new')]])
        self.assertEqual(merged[0].id, 'bz:100')
        self.assertEqual(merged[0].title, 'new')

    def test_empty(self):
        self.assertEqual(merge_bug_lists([]), [])
        self.assertEqual(merge_bug_lists([[], []]), [])


class TestBugAggregator(unittest.TestCase):
    def test_end_to_end_component_priority(self):
        stub = CountingBugzilla(default=[_raw(1, 'P1'), _raw(2, 'P2'), _raw(3, 'P1')])
        aggregator = BugAggregator([BugzillaLoader(stub)])
        bugs = aggregator.find_bugs([component('C', priority=1, open=True)])
        self.assertEqual([b.id for b in bugs], ['bz:1', 'bz:3'])
        self.assertEqual(stub.calls[0]['priority'], 'P1')
        self.assertEqual(stub.calls[0]['resolution'], '---')

    def test_repeated_calls_do_not_refetch(self):
        stub = CountingBugzilla(default=[_raw(1)])
        aggregator = BugAggregator([BugzillaLoader(stub)])
        descriptors = [component('C', open=True)]
        aggregator.find_bugs(descriptors)
        aggregator.find_bugs(descriptors)
        self.assertEqual(len(stub.calls), 1)

    def test_relative_change_time_does_not_refetch_later(self):
        stub = CountingBugzilla(default=[_raw(1)])
        aggregator = BugAggregator([BugzillaLoader(stub)])
        descriptors = [component('C', open=True, lastChangeTime='-14d')]
        aggregator.find_bugs(descriptors)
        # cross a second boundary so a resolved timestamp would differ
        time.sleep(1.1)
        self.assertEqual([b.id for b in aggregator.find_bugs(descriptors)], ['bz:1'])
        self.assertEqual(len(stub.calls), 1)
        self.assertEqual(len(aggregator.cache), 1)
        self.assertRegex(stub.calls[0]['last_change_time'], r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$')

    def test_same_search_in_one_call_fetches_once(self):
        stub = CountingBugzilla(default=[_raw(1), _raw(2, assigned_to='other@x.com')])
        aggregator = BugAggregator([BugzillaLoader(stub)])
        bugs = aggregator.find_bugs([
            component('C', open=True, assignees=['dev@x.com']),
            component('C', open=True, assignees=['other@x.com']),
        ])
        self.assertEqual(len(stub.calls), 1)
        self.assertEqual([b.id for b in bugs], ['bz:1', 'bz:2'])

    def test_shared_bug_across_searches_appears_once(self):
        stub = CountingBugzilla(bugs_by_component={'A': [_raw(1), _raw(100)], 'B': [_raw(100), _raw(2)]})
        aggregator = BugAggregator([BugzillaLoader(stub)])
        bugs = aggregator.find_bugs([component('A'), component('B')])
        self.assertEqual([b.id for b in bugs], ['bz:1', 'bz:100', 'bz:2'])

    def test_descriptor_key_mode_gives_same_output_with_more_fetches(self):
        descriptors = [
            component('A', open=True, priority=1),
            component('A', open=True, unprioritized=True),
            component('B', open=True),
            component('A', open=True, priority=1, assignees=['dev@x.com']),
        ]
        table = {'A': [_raw(1, 'P1'), _raw(2, '--'), _raw(3, 'P2')], 'B': [_raw(3, 'P2'), _raw(4, 'P1')]}

        query_stub = CountingBugzilla(bugs_by_component=table)
        descriptor_stub = CountingBugzilla(bugs_by_component=table)
        by_query = BugAggregator([BugzillaLoader(query_stub)], key_mode='query').find_bugs(descriptors)
        by_descriptor = BugAggregator([BugzillaLoader(descriptor_stub)], key_mode='descriptor').find_bugs(descriptors)

        self.assertEqual(by_query, by_descriptor)
        self.assertEqual([b.id for b in by_query], ['bz:1', 'bz:2', 'bz:3', 'bz:4'])
        self.assertLess(len(query_stub.calls), len(descriptor_stub.calls))

    def test_descriptor_key_includes_filters(self):
        a = SearchDescriptor.from_dict(component('A', priority=1))
        b = SearchDescriptor.from_dict(component('A', priority=2))
        self.assertNotEqual(descriptor_cache_key(a), descriptor_cache_key(b))

    def test_invalid_key_mode(self):
        with self.assertRaises(ValueError):
            BugAggregator([], key_mode='bogus')

    def test_unsupported_search_aborts_before_fetching(self):
        stub = CountingBugzilla(default=[_raw(1)])
        aggregator = BugAggregator([BugzillaLoader(stub)])
        with self.assertRaises(UnsupportedSearchError):
            aggregator.find_bugs([component('C'), {'search': {'type': 'trello'}}])
        self.assertEqual(stub.calls, [])

    def test_search_without_registered_loader_is_unsupported(self):
        aggregator = BugAggregator([BugzillaLoader(CountingBugzilla())])
        with self.assertRaises(UnsupportedSearchError):
            aggregator.find_bugs([{'search': {'type': 'githubRepo', 'user': 'u', 'project': 'p'}}])

    def test_bugzilla_failure_fails_the_merge(self):
        aggregator = BugAggregator([BugzillaLoader(CountingBugzilla(error=BugzillaError('down', status=500)))])
        with self.assertRaises(BugzillaError):
            aggregator.find_bugs([component('C')])

    def test_bugzilla_failure_is_retried_by_a_new_call(self):
        stub = CountingBugzilla(error=BugzillaError('down', status=500))
        aggregator = BugAggregator([BugzillaLoader(stub)])
        with self.assertRaises(BugzillaError):
            aggregator.find_bugs([component('C')])
        stub.error = None
        stub.default = [_raw(5)]
        self.assertEqual([b.id for b in aggregator.find_bugs([component('C')])], ['bz:5'])
        self.assertEqual(len(stub.calls), 2)

    def test_mixed_trackers(self):
        issue = {'id': 9, 'title': 'gh', 'html_url': 'h', 'labels': [], 'assignee': None, 'user': {'login': 'x'}, 'pull_request': {}}
        gh = CountingGitHub(items=[issue])
        bz = CountingBugzilla(default=[_raw(1)])
        aggregator = BugAggregator([GitHubLoader(gh), BugzillaLoader(bz)])
        bugs = aggregator.find_bugs([
            component('C', open=True),
            {'search': {'type': 'githubRepo', 'user': 'mozilla', 'project': 'glean'}, 'filters': {'open': True, 'isPullRequest': True}},
        ])
        self.assertEqual([b.id for b in bugs], ['bz:1', 'gh:9'])
        self.assertEqual(gh.calls, [('mozilla', 'glean', 'open')])

    def test_accepts_typed_descriptors(self):
        stub = CountingBugzilla(default=[_raw(1)])
        aggregator = BugAggregator([BugzillaLoader(stub)])
        bugs = aggregator.find_bugs([SearchDescriptor.from_dict(component('C'))])
        self.assertEqual(len(bugs), 1)


class TestFindBugLists(unittest.TestCase):
    def test_results_in_input_order_with_tagged_errors(self):
        stub = CountingBugzilla(bugs_by_component={'A': [_raw(1)], 'B': [_raw(2)]})
        aggregator = BugAggregator([BugzillaLoader(stub)])
        results = aggregator.find_bug_lists({
            'p1': [component('A')],
            'broken': [{'search': {'type': 'unknown'}}],
            'p2': [component('B'), component('A')],
        })
        self.assertEqual([r.name for r in results], ['p1', 'broken', 'p2'])
        self.assertTrue(results[0].ok)
        self.assertEqual([b.id for b in results[0].bugs], ['bz:1'])
        self.assertFalse(results[1].ok)
        self.assertIsInstance(results[1].error, UnsupportedSearchError)
        self.assertEqual([b.id for b in results[2].bugs], ['bz:2', 'bz:1'])
        # component A is fetched once even though two lists use it
        self.assertEqual(len(stub.calls), 2)

    def test_incomplete_search_is_reported_per_list(self):
        aggregator = BugAggregator([BugzillaLoader(CountingBugzilla())])
        results = aggregator.find_bug_lists({'bad': [{'search': {'type': 'bugzillaComponent', 'product': 'P'}}]})
        self.assertIsInstance(results[0].error, InvalidSearchError)
        self.assertIn('component', str(results[0].error))

    def test_malformed_change_time_is_reported_per_list(self):
        stub = CountingBugzilla(default=[_raw(1)])
        aggregator = BugAggregator([BugzillaLoader(stub)])
        results = aggregator.find_bug_lists({
            'good': [component('C')],
            'bad': [component('C', lastChangeTime='last week')],
        })
        self.assertTrue(results[0].ok)
        self.assertEqual([b.id for b in results[0].bugs], ['bz:1'])
        self.assertIsInstance(results[1].error, InvalidSearchError)
        self.assertIn('last week', str(results[1].error))

    def test_empty(self):
        self.assertEqual(BugAggregator([]).find_bug_lists({}), [])


if __name__ == '__main__':
    unittest.main()
