import logging
import socket

from config import validate
from connector import connector
from db import READ, STARRED, SyncStatus, sync_db
from errors import InvalidParameter, PropagationPartialFailure, SyncError
from fetcher import StoryFetcher
from newsblur import NewsBlurCaller
from progress import RefreshProgress
from propagator import StatusPropagator
from reconciler import clear_folder_relationship, reconcile, save_folder_relationship
from zone import AllRecords, ArticlesZone, NewRecords, StatusOnly

logger = logging.getLogger(__name__)


def getlock(username):
    """Takes the per-account process lock. Must happen before a syncer touches the database."""
    try:
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        ## Create an abstract socket, by prefixing it with null.
        s.bind('\0newsblur_syncer_lock_%s' % username)
        return s
    except socket.error:
        logger.error('Process already running!')
        return None


class syncer:
    """Runs refresh cycles for one NewsBlur account.

    Everything that touches the account tree or the local statuses runs on the
    thread that built this object; only remote calls fan out to workers.
    """

    def __init__(self, config, caller=None, database=None, store=None, progress=None):
        self.config = validate(config)
        self.headers = {'User-Agent': self.config['Headers']['headers']}
        self.username = self.config['Main']['Username']

        self.database = database or sync_db(config)
        self.caller = caller or NewsBlurCaller(self.config['Main']['Url'], self.username,
                                               self.config['Main']['Password'], headers=self.headers,
                                               timeout=self.config['Sync'].getint('Timeout', fallback=60))
        self.progress = progress or RefreshProgress()
        self.account = self.database.loadAccount(self.username)

        self.fetcher = StoryFetcher(self.caller, self.database, self.progress,
                                    cutoff_months=self.config['Sync'].getint('CutoffMonths', fallback=3),
                                    on_new_articles=self.mirror_new_articles)
        self.propagator = StatusPropagator(self.database, workers=self.config['Sync'].getint('Workers', fallback=4))

        if store is None and self.config['Connector'].getboolean('Enabled', fallback=False):
            store = connector(self.config)
        self.zone = ArticlesZone(store, feed_lookup=self.account.existing_feed) if store is not None else None
        self.zone_error = None
        self.throttle = False

        # Rows left in flight by a previous process go back in the queue
        self.database.resetAllSelectedForProcessing()

    def run(self):
        self.caller.login()
        self.refresh_all()

    def refresh_all(self):
        logger.info('Refreshing account %s', self.username)
        self.progress.add_to_number_of_tasks_and_remaining(3)
        try:
            self.refresh_feeds()
            self.progress.complete_task()
            self.refresh_articles()
            self.progress.complete_task()
            self.send_article_statuses()
            self.progress.complete_task()
        finally:
            self.progress.clear()
        logger.info('Finished refreshing account %s', self.username)

    def refresh_feeds(self):
        logger.debug('Refreshing feeds...')
        snapshot = self.caller.retrieve_feeds()
        before = self.account.flattened_feeds()
        changes = reconcile(self.account, snapshot)
        if changes:
            for feed_id, feed in before.items():
                if self.account.existing_feed(feed_id) is None:
                    self.forget_feed(feed)
            self.database.saveAccount(self.account)
        return changes

    def refresh_articles(self):
        for feed in list(self.account.flattened_feeds().values()):
            if not self.fetcher.has_sync_history(feed):
                logger.info('Downloading initial stories for %s', feed.name_for_display)
                self.fetcher.download_feed(feed)
        self.refresh_article_status()

    def refresh_article_status(self):
        unread = self.caller.retrieve_unread_story_hashes()
        starred = self.caller.retrieve_starred_story_hashes()
        self.fetcher.refresh_missing_stories(unread, starred)
        self.sync_story_read_state(unread)
        self.sync_story_starred_state(starred)

    def send_article_statuses(self):
        try:
            self.propagator.send_article_statuses(self.caller, throttle=self.throttle)
        except PropagationPartialFailure as e:
            self.throttle = e.rate_limited
            raise
        self.throttle = False

    def sync_story_read_state(self, hashes):
        pending = self.database.selectPendingReadArticleIDs()
        known = self.database.getArticleIDs()
        remote_unread = set(h.hash for h in hashes) - pending
        current_unread = self.database.getUnreadArticleIDs()

        unread = self.database.markArticleIDs((remote_unread - current_unread) & known, READ, False)
        read = self.database.markArticleIDs(current_unread - remote_unread - pending, READ, True)
        self.mirror_status_changes(unread, READ, False)
        self.mirror_status_changes(read, READ, True)
        return unread | read

    def sync_story_starred_state(self, hashes):
        pending = self.database.selectPendingStarredArticleIDs()
        known = self.database.getArticleIDs()
        remote_starred = set(h.hash for h in hashes) - pending
        current_starred = self.database.getStarredArticleIDs()

        starred = self.database.markArticleIDs((remote_starred - current_starred) & known, STARRED, True)
        unstarred = self.database.markArticleIDs(current_starred - remote_starred - pending, STARRED, False)
        self.mirror_status_changes(starred, STARRED, True)
        self.mirror_status_changes(unstarred, STARRED, False)
        return starred | unstarred

    def mark_articles(self, article_ids, key, flag):
        """Local read/starred toggle: update the status, queue it for the server, mirror it."""
        changed = self.database.markArticleIDs(article_ids, key, flag)
        if changed:
            self.database.insertStatuses([SyncStatus(article_id, key, flag) for article_id in sorted(changed)])
            self.mirror_status_changes(changed, key, flag)
        return changed

    def create_feed(self, url, name=None, folder_name=None):
        remote_feed = self.caller.add_url(url, folder_name)
        feed = self.account.create_feed(remote_feed.feed_id, remote_feed.name, remote_feed.url,
                                        remote_feed.home_page_url, remote_feed.favicon_url)
        folder = None
        if folder_name:
            folder = self.account.ensure_folder(folder_name)
            save_folder_relationship(feed, folder_name, folder_name)
        self.account.add_feed(feed, folder)

        if name:
            self.caller.rename_feed(feed.feed_id, name)
            feed.edited_name = name
        self.database.saveAccount(self.account)

        self.fetcher.download_feed(feed)
        self.refresh_article_status()
        return feed

    def delete_feed(self, feed, folder_name=None):
        if not feed.external_id:
            raise InvalidParameter('Feed %s has no external ID' % feed.feed_id)

        self.caller.delete_feed(feed.external_id, folder_name)
        if folder_name is None:
            self.account.remove_feed(feed)
        else:
            folder = self.account.folders.get(folder_name)
            if folder is not None:
                folder.remove_feed(feed)
            clear_folder_relationship(feed, folder_name)

        if self.account.existing_feed(feed.feed_id) is None:
            self.forget_feed(feed)
        self.database.saveAccount(self.account)

    def forget_feed(self, feed):
        """Drops what is stored for a feed no longer subscribed anywhere, so a resubscribe starts cold."""
        logger.info('Removing stored articles for %s', feed.name_for_display)
        self.database.removeArticlesByFeed(feed.feed_id)
        self.fetcher.clear_sync_history(feed.feed_id)
        if self.zone is not None:
            self._mirror(self.zone.delete_articles, feed.external_id)

    # Secondary store mirroring. Failures here are logged and kept, never raised into a refresh.

    def mirror_new_articles(self, articles):
        if self.zone is not None:
            self._mirror(self.zone.save_new_articles, articles)

    def mirror_status_changes(self, article_ids, key, flag):
        """Mirrors articles whose `key` just flipped to `flag`."""
        if self.zone is None or not article_ids:
            return
        updates = []
        for art in self.database.getArticles(sorted(article_ids)):
            read, starred = art.status.read, art.status.starred
            was_read = (not flag) if key == READ else read
            was_starred = (not flag) if key == STARRED else starred
            if read and not starred:
                updates.append(StatusOnly(art.article_id, read, starred, self.zone.feed_external_id(art.feed_id)))
            elif was_read and not was_starred:
                # Nothing was mirrored for it before, but another client may have written it already
                updates.append(NewRecords(art))
            else:
                updates.append(AllRecords(art))
        self._mirror(self.zone.modify_articles, updates)

    def _mirror(self, operation, *args):
        if self.zone is None:
            return
        try:
            operation(*args)
            self.zone_error = None
        except SyncError as e:
            logger.error('Zone update failed: %s', e)
            self.zone_error = e
