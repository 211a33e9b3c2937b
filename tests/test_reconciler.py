import threading
import unittest

from models import ROOT_FOLDER_NAME, FolderRelationship, RemoteFeed, TaxonomySnapshot
from reconciler import reconcile, sync_feed_folder_relationship, sync_feeds, sync_folders
from taxonomy import Account


def remote(feed_id, folders=None, name=None):
    return RemoteFeed(feed_id=feed_id,
                      name=name or 'Feed %s' % feed_id,
                      url='https://example.com/%s.xml' % feed_id,
                      home_page_url='https://example.com/%s' % feed_id,
                      favicon_url='https://example.com/%s.ico' % feed_id,
                      folders=list(folders or []))


def account_with(folders=None, root=()):
    """folders: {name: [feed ids]}, root: [feed ids]"""
    account = Account('reader')
    feeds = {}

    def feed(feed_id):
        if feed_id not in feeds:
            feeds[feed_id] = account.create_feed(feed_id, 'Feed %s' % feed_id, 'https://example.com/%s.xml' % feed_id,
                                                 'https://example.com/%s' % feed_id,
                                                 'https://example.com/%s.ico' % feed_id)
        return feeds[feed_id]

    for name, feed_ids in (folders or {}).items():
        folder = account.ensure_folder(name)
        for feed_id in feed_ids:
            f = feed(feed_id)
            f.folder_relationship[name] = name
            account.add_feed(f, folder)
    for feed_id in root:
        account.add_feed(feed(feed_id))
    return account


class ReconcileScenarioTest(unittest.TestCase):

    def test_empty_account_gets_remote_taxonomy(self):
        account = Account('reader')
        snapshot = TaxonomySnapshot(folders=['Tech', 'News'], feeds=[remote('1', ['Tech']), remote('2')])

        reconcile(account, snapshot)

        folders, root = account.layout()
        self.assertEqual(folders, {'Tech': {'1'}, 'News': set()})
        self.assertEqual(root, {'2'})
        self.assertEqual(account.existing_feed('1').folder_relationship, {'Tech': 'Tech'})

    def test_folder_dropped_remotely_moves_feeds_to_root(self):
        account = account_with({'Tech': ['1']})
        snapshot = TaxonomySnapshot(folders=[ROOT_FOLDER_NAME], feeds=[remote('1')])

        reconcile(account, snapshot)

        folders, root = account.layout()
        self.assertEqual(folders, {})
        self.assertEqual(root, {'1'})
        self.assertNotIn('Tech', account.existing_feed('1').folder_relationship)

    def test_second_application_is_a_no_op(self):
        account = Account('reader')
        snapshot = TaxonomySnapshot(folders=[ROOT_FOLDER_NAME, 'Tech', 'News'],
                                    feeds=[remote('1', ['Tech', 'News']), remote('2'), remote('3', ['News'])])

        self.assertGreater(reconcile(account, snapshot), 0)
        before = account.layout()
        self.assertEqual(reconcile(account, snapshot), 0)
        self.assertEqual(account.layout(), before)


class SyncFoldersTest(unittest.TestCase):

    def test_removed_folder_feeds_keep_no_relationship(self):
        account = account_with({'Tech': ['1', '2'], 'News': ['2']})

        changes = sync_folders(account, ['News'])

        self.assertEqual(changes, 1)
        self.assertNotIn('Tech', account.folders)
        self.assertEqual(set(account.top_level_feeds), {'1', '2'})
        for feed_id in ('1', '2'):
            self.assertNotIn('Tech', account.existing_feed(feed_id).folder_relationship)
        self.assertEqual(account.existing_feed('2').folder_relationship, {'News': 'News'})

    def test_sentinel_and_blank_names_are_never_folders(self):
        account = Account('reader')
        sync_folders(account, [ROOT_FOLDER_NAME, '', 'Tech'])
        self.assertEqual(set(account.folders), {'Tech'})


class SyncFeedsTest(unittest.TestCase):

    def test_unsubscribed_feed_is_removed_everywhere(self):
        account = account_with({'Tech': ['1'], 'News': ['1']}, root=['1', '2'])

        sync_feeds(account, [remote('2')])

        self.assertIsNone(account.existing_feed('1'))
        self.assertIsNotNone(account.existing_feed('2'))

    def test_remote_name_replaces_local_edit(self):
        account = account_with(root=['1'])
        feed = account.existing_feed('1')
        feed.edited_name = 'My name'

        sync_feeds(account, [remote('1', name='Server name')])

        self.assertEqual(feed.name, 'Server name')
        self.assertIsNone(feed.edited_name)
        self.assertEqual(feed.name_for_display, 'Server name')

    def test_new_feeds_are_added_to_root(self):
        account = Account('reader')

        changes = sync_feeds(account, [remote('1'), remote('2', ['Tech'])])

        self.assertEqual(changes, 2)
        self.assertEqual(set(account.top_level_feeds), {'1', '2'})
        self.assertEqual(account.existing_feed('2').favicon_url, 'https://example.com/2.ico')


class SyncRelationshipTest(unittest.TestCase):

    def test_feed_moves_between_folders(self):
        account = account_with({'Tech': ['1'], 'News': []})
        edges = [FolderRelationship('News', '1', 'News')]

        sync_feed_folder_relationship(account, edges)

        folders, root = account.layout()
        self.assertEqual(folders, {'Tech': set(), 'News': {'1'}})
        self.assertEqual(root, set())
        self.assertEqual(account.existing_feed('1').folder_relationship, {'News': 'News'})

    def test_feed_in_several_folders(self):
        account = account_with({'Tech': [], 'News': []}, root=['1'])
        edges = [FolderRelationship('Tech', '1', 'Tech'), FolderRelationship('News', '1', 'News')]

        sync_feed_folder_relationship(account, edges)

        folders, root = account.layout()
        self.assertEqual(folders, {'Tech': {'1'}, 'News': {'1'}})
        self.assertEqual(root, set())

    def test_missing_root_group_clears_root(self):
        account = account_with({'Tech': ['1']}, root=['1', '2'])

        sync_feed_folder_relationship(account, [FolderRelationship('Tech', '1', 'Tech')])

        self.assertEqual(account.top_level_feeds, {})

    def test_root_group_keeps_listed_feeds(self):
        account = account_with(root=['1', '2'])

        sync_feed_folder_relationship(account, [FolderRelationship(ROOT_FOLDER_NAME, '2', ROOT_FOLDER_NAME)])

        self.assertEqual(set(account.top_level_feeds), {'2'})

    def test_edges_for_unknown_feeds_are_ignored(self):
        account = account_with({'Tech': []})

        changes = sync_feed_folder_relationship(account, [FolderRelationship('Tech', '9', 'Tech')])

        self.assertEqual(changes, 0)


class OwnerThreadTest(unittest.TestCase):

    def test_reconcile_refuses_other_threads(self):
        account = Account('reader')
        errors = []

        def worker():
            try:
                reconcile(account, TaxonomySnapshot(folders=['Tech'], feeds=[]))
            except AssertionError as e:
                errors.append(e)

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        self.assertEqual(len(errors), 1)
        self.assertEqual(account.folders, {})
