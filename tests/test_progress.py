import threading
import unittest

from progress import RefreshProgress
from taxonomy import Account


class RefreshProgressTest(unittest.TestCase):

    def test_listener_sees_every_change(self):
        seen = []
        progress = RefreshProgress(listener=lambda total, remaining: seen.append((total, remaining)))

        progress.add_to_number_of_tasks_and_remaining(2)
        progress.complete_task()
        progress.complete_task()

        self.assertEqual(seen, [(2, 2), (2, 1), (0, 0)])
        self.assertTrue(progress.is_complete)

    def test_extra_completions_do_not_go_negative(self):
        progress = RefreshProgress()
        progress.complete_task()
        self.assertEqual(progress.number_remaining, 0)

    def test_concurrent_completions(self):
        progress = RefreshProgress()
        progress.add_to_number_of_tasks_and_remaining(100)
        threads = [threading.Thread(target=progress.complete_task) for _ in range(100)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertTrue(progress.is_complete)


class AccountSnapshotTest(unittest.TestCase):

    def test_snapshot_is_detached(self):
        account = Account('reader')
        tech = account.ensure_folder('Tech')
        account.add_feed(account.create_feed('1', 'One', 'https://one/feed'), tech)

        copy = account.snapshot()
        tech.remove_feed(account.existing_feed('1'))

        self.assertEqual(copy.layout(), ({'Tech': {'1'}}, set()))
        self.assertEqual(account.layout(), ({'Tech': set()}, set()))
