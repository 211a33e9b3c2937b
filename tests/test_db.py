import unittest

from db import READ, STARRED, SyncStatus, sync_db
from errors import InvalidParameter
from models import Article
from taxonomy import Account
from tests.fakes import TempDatabaseMixin


class LedgerTest(TempDatabaseMixin, unittest.TestCase):

    def test_select_for_processing_marks_rows_in_flight(self):
        self.database.insertStatuses([SyncStatus('a1', READ, True), SyncStatus('a2', STARRED, True)])

        selected = self.database.selectForProcessing()

        self.assertEqual(selected, [SyncStatus('a1', READ, True), SyncStatus('a2', STARRED, True)])
        self.assertEqual(self.database.selectForProcessing(), [])
        self.assertEqual(self.database.selectPendingCount(), 2)

    def test_delete_and_reset(self):
        self.database.insertStatuses([SyncStatus('a1', READ, True), SyncStatus('a2', READ, True)])
        self.database.selectForProcessing()

        self.database.deleteSelectedForProcessing(['a1'], READ)
        self.database.resetSelectedForProcessing(['a2'], READ)

        self.assertEqual(self.database.getPendingStatuses(), [('a2', READ, True, False)])
        self.assertEqual(self.database.selectForProcessing(), [SyncStatus('a2', READ, True)])

    def test_toggle_during_push_survives_acknowledgement(self):
        self.database.insertStatuses([SyncStatus('a1', READ, True)])
        self.database.selectForProcessing()

        # the user flips it back while the push is still in flight
        self.database.insertStatuses([SyncStatus('a1', READ, False)])
        self.database.deleteSelectedForProcessing(['a1'], READ)

        self.assertEqual(self.database.getPendingStatuses(), [('a1', READ, False, False)])

    def test_keys_are_settled_independently(self):
        self.database.insertStatuses([SyncStatus('a1', READ, True), SyncStatus('a1', STARRED, True)])
        self.database.selectForProcessing()

        self.database.deleteSelectedForProcessing(['a1'], READ)

        self.assertEqual(self.database.selectPendingReadArticleIDs(), set())
        self.assertEqual(self.database.selectPendingStarredArticleIDs(), {'a1'})

    def test_reset_all_selected(self):
        self.database.insertStatuses([SyncStatus('a1', READ, True)])
        self.database.selectForProcessing()
        self.database.resetAllSelectedForProcessing()
        self.assertEqual(self.database.selectForProcessing(), [SyncStatus('a1', READ, True)])


class ArticleStoreTest(TempDatabaseMixin, unittest.TestCase):

    def article(self, article_id, feed_id='1'):
        return Article(article_id=article_id, feed_id=feed_id, unique_id='guid-' + article_id,
                       title='Title ' + article_id, content_html='<p>x</p>', content_text='x',
                       authors=[{'name': 'Author'}])

    def test_new_articles_default_to_read(self):
        new_ids = self.database.insertArticles([self.article('a1')])

        self.assertEqual(new_ids, {'a1'})
        art = self.database.getArticleByID('a1')
        self.assertTrue(art.status.read)
        self.assertFalse(art.status.starred)
        self.assertEqual(art.authors, [{'name': 'Author'}])

    def test_reinsert_keeps_status(self):
        self.database.insertArticles([self.article('a1')])
        self.database.markArticleIDs(['a1'], READ, False)

        new_ids = self.database.insertArticles([self.article('a1')])

        self.assertEqual(new_ids, set())
        self.assertFalse(self.database.getStatus('a1').read)

    def test_mark_returns_only_changes(self):
        self.database.insertArticles([self.article('a1'), self.article('a2')])
        self.database.markArticleIDs(['a1'], READ, False)

        changed = self.database.markArticleIDs(['a1', 'a2'], READ, False)

        self.assertEqual(changed, {'a2'})
        self.assertEqual(self.database.getUnreadArticleIDs(), {'a1', 'a2'})

    def test_mark_rejects_unknown_key(self):
        with self.assertRaises(InvalidParameter):
            self.database.markArticleIDs(['a1'], 'pinned', True)

    def test_remove_articles_by_feed(self):
        self.database.insertArticles([self.article('a1', '1'), self.article('a2', '2')])

        self.database.removeArticlesByFeed('1')

        self.assertEqual(self.database.getArticleIDs(), {'a2'})
        self.assertIsNone(self.database.getStatus('a1'))


class AccountStoreTest(TempDatabaseMixin, unittest.TestCase):

    def test_taxonomy_round_trip(self):
        account = Account('reader')
        tech = account.ensure_folder('Tech')
        one = account.create_feed('1', 'One', 'https://one/feed')
        one.folder_relationship['Tech'] = 'Tech'
        one.edited_name = 'Mine'
        two = account.create_feed('2', 'Two', 'https://two/feed')
        account.add_feed(one, tech)
        account.add_feed(one)
        account.add_feed(two)
        self.database.saveAccount(account)

        loaded = sync_db({'Database': {'DB': self.db_path}}).loadAccount('reader')

        self.assertEqual(loaded.layout(), ({'Tech': {'1'}}, {'1', '2'}))
        self.assertEqual(loaded.existing_feed('1').folder_relationship, {'Tech': 'Tech'})
        self.assertEqual(loaded.existing_feed('1').edited_name, 'Mine')

    def test_meta(self):
        self.assertIsNone(self.database.getMeta('x'))
        self.database.setMeta('x', '1')
        self.assertEqual(self.database.getMeta('x'), '1')

    def test_missing_database_setting(self):
        with self.assertRaises(InvalidParameter):
            sync_db({'Database': {}})
