#!/usr/bin/python3
import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from errors import InvalidParameter
from models import ROOT_FOLDER_NAME, Article, ArticleStatus
from taxonomy import Account

READ = 'read'
STARRED = 'starred'


@dataclass(frozen=True)
class SyncStatus:
    """A local status flip waiting for the server to acknowledge it."""
    article_id: str
    key: str
    flag: bool


class sync_db:

    def __init__(self, config):
        try:
            self.db = config['Database']['DB']
        except KeyError as e:
            raise InvalidParameter('Missing database setting %s' % e)
        self.lock = threading.RLock()

        self.execute('''CREATE TABLE IF NOT EXISTS sync_status
                        (article_id TEXT NOT NULL,
                        key TEXT NOT NULL,
                        flag INTEGER NOT NULL,
                        selected INTEGER NOT NULL DEFAULT 0,
                        PRIMARY KEY (article_id, key));''')
        self.execute('''CREATE TABLE IF NOT EXISTS articles
                        (article_id TEXT PRIMARY KEY,
                        feed_id TEXT NOT NULL,
                        unique_id TEXT NOT NULL,
                        title TEXT,
                        content_html TEXT,
                        content_text TEXT,
                        url TEXT,
                        external_url TEXT,
                        summary TEXT,
                        image_url TEXT,
                        date_published TEXT,
                        date_modified TEXT,
                        authors TEXT);''')
        self.execute('''CREATE TABLE IF NOT EXISTS statuses
                        (article_id TEXT PRIMARY KEY,
                        read INTEGER NOT NULL DEFAULT 0,
                        starred INTEGER NOT NULL DEFAULT 0);''')
        self.execute('''CREATE TABLE IF NOT EXISTS folders
                        (name TEXT PRIMARY KEY);''')
        self.execute('''CREATE TABLE IF NOT EXISTS feeds
                        (feed_id TEXT PRIMARY KEY,
                        external_id TEXT,
                        name TEXT,
                        edited_name TEXT,
                        url TEXT,
                        home_page_url TEXT,
                        favicon_url TEXT);''')
        self.execute('''CREATE TABLE IF NOT EXISTS feed_folders
                        (feed_id TEXT NOT NULL,
                        folder TEXT NOT NULL,
                        handle TEXT,
                        PRIMARY KEY (feed_id, folder));''')
        self.execute('''CREATE TABLE IF NOT EXISTS meta
                        (key TEXT PRIMARY KEY,
                        value TEXT NOT NULL);''')

    @contextmanager
    def transaction(self):
        """One BEGIN IMMEDIATE ... COMMIT; everything inside sees a consistent ledger."""
        with self.lock:
            conn = sqlite3.connect(self.db, timeout=30, isolation_level=None)
            try:
                cur = conn.cursor()
                cur.execute('BEGIN IMMEDIATE')
                try:
                    yield cur
                except BaseException:
                    cur.execute('ROLLBACK')
                    raise
                cur.execute('COMMIT')
            finally:
                conn.close()

    def execute(self, command):
        with self.transaction() as cur:
            cur.execute(command)
            return cur.fetchall()

    def executevar(self, command, operands):
        with self.transaction() as cur:
            cur.execute(command, operands)
            return cur.fetchall()

    # Pending operation ledger

    def insertStatuses(self, statuses):
        with self.transaction() as cur:
            cur.executemany('INSERT OR REPLACE INTO sync_status (article_id, key, flag, selected) VALUES (?,?,?,0)',
                            [(s.article_id, s.key, int(s.flag)) for s in statuses])

    def selectForProcessing(self):
        """Marks every idle row as in flight and returns them, atomically."""
        with self.transaction() as cur:
            cur.execute('SELECT article_id, key, flag FROM sync_status WHERE selected = 0 ORDER BY article_id, key')
            rows = cur.fetchall()
            cur.execute('UPDATE sync_status SET selected = 1 WHERE selected = 0')
        return [SyncStatus(row[0], row[1], bool(row[2])) for row in rows]

    def selectPendingCount(self):
        return self.execute('SELECT COUNT(*) FROM sync_status')[0][0]

    def selectPendingReadArticleIDs(self):
        return self._pendingIDs(READ)

    def selectPendingStarredArticleIDs(self):
        return self._pendingIDs(STARRED)

    def _pendingIDs(self, key):
        rows = self.executevar('SELECT article_id FROM sync_status WHERE key = ?', (key,))
        return set(row[0] for row in rows)

    def resetAllSelectedForProcessing(self):
        self.execute('UPDATE sync_status SET selected = 0')

    def resetSelectedForProcessing(self, article_ids, key):
        with self.transaction() as cur:
            cur.executemany('UPDATE sync_status SET selected = 0 WHERE article_id = ? AND key = ?',
                            [(article_id, key) for article_id in article_ids])

    def deleteSelectedForProcessing(self, article_ids, key):
        # Rows re-toggled while the push was in flight were reset to selected = 0 and survive.
        with self.transaction() as cur:
            cur.executemany('DELETE FROM sync_status WHERE article_id = ? AND key = ? AND selected = 1',
                            [(article_id, key) for article_id in article_ids])

    def getPendingStatuses(self):
        rows = self.execute('SELECT article_id, key, flag, selected FROM sync_status ORDER BY article_id, key')
        return [(row[0], row[1], bool(row[2]), bool(row[3])) for row in rows]

    # Articles and statuses

    def insertArticles(self, articles, default_read=True):
        """Upserts article content. Existing statuses are kept; new ones start at `default_read`."""
        new_ids = set()
        with self.transaction() as cur:
            for art in articles:
                cur.execute('SELECT 1 FROM statuses WHERE article_id = ?', (art.article_id,))
                if cur.fetchone() is None:
                    cur.execute('INSERT INTO statuses (article_id, read, starred) VALUES (?,?,0)',
                                (art.article_id, int(default_read)))
                cur.execute('SELECT 1 FROM articles WHERE article_id = ?', (art.article_id,))
                if cur.fetchone() is None:
                    new_ids.add(art.article_id)
                cur.execute('INSERT OR REPLACE INTO articles VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?)',
                            (art.article_id, art.feed_id, art.unique_id, art.title, art.content_html,
                             art.content_text, art.url, art.external_url, art.summary, art.image_url,
                             _date(art.date_published), _date(art.date_modified), json.dumps(art.authors)))
        return new_ids

    def getArticles(self, article_ids):
        result = []
        for article_id in article_ids:
            art = self.getArticleByID(article_id)
            if art is not None:
                result.append(art)
        return result

    def getArticleByID(self, article_id):
        rows = self.executevar('''SELECT a.article_id, a.feed_id, a.unique_id, a.title, a.content_html,
                                  a.content_text, a.url, a.external_url, a.summary, a.image_url,
                                  a.date_published, a.date_modified, a.authors, s.read, s.starred
                                  FROM articles a LEFT JOIN statuses s ON s.article_id = a.article_id
                                  WHERE a.article_id = ?''', (article_id,))
        if not rows:
            return None
        row = rows[0]
        return Article(article_id=row[0], feed_id=row[1], unique_id=row[2], title=row[3],
                       content_html=row[4], content_text=row[5], url=row[6], external_url=row[7],
                       summary=row[8], image_url=row[9], date_published=_parse_date(row[10]),
                       date_modified=_parse_date(row[11]), authors=json.loads(row[12] or '[]'),
                       status=ArticleStatus(read=bool(row[13]), starred=bool(row[14])))

    def getArticleIDs(self):
        return set(row[0] for row in self.execute('SELECT article_id FROM articles'))

    def getArticleIDsByFeed(self, feed_id):
        rows = self.executevar('SELECT article_id FROM articles WHERE feed_id = ?', (feed_id,))
        return set(row[0] for row in rows)

    def getUnreadArticleIDs(self):
        return set(row[0] for row in self.execute('SELECT article_id FROM statuses WHERE read = 0'))

    def getStarredArticleIDs(self):
        return set(row[0] for row in self.execute('SELECT article_id FROM statuses WHERE starred = 1'))

    def getStatus(self, article_id):
        rows = self.executevar('SELECT read, starred FROM statuses WHERE article_id = ?', (article_id,))
        if not rows:
            return None
        return ArticleStatus(read=bool(rows[0][0]), starred=bool(rows[0][1]))

    def markArticleIDs(self, article_ids, key, flag):
        """Sets `key` to `flag`; returns the IDs whose status actually changed."""
        if key not in (READ, STARRED):
            raise InvalidParameter('Unknown status key %s' % key)
        changed = set()
        with self.transaction() as cur:
            for article_id in article_ids:
                cur.execute('SELECT %s FROM statuses WHERE article_id = ?' % key, (article_id,))
                row = cur.fetchone()
                if row is None:
                    cur.execute('INSERT INTO statuses (article_id, read, starred) VALUES (?,0,0)', (article_id,))
                    row = (0,)
                if bool(row[0]) != flag:
                    cur.execute('UPDATE statuses SET %s = ? WHERE article_id = ?' % key, (int(flag), article_id))
                    changed.add(article_id)
        return changed

    def removeArticlesByFeed(self, feed_id):
        with self.transaction() as cur:
            cur.execute('DELETE FROM statuses WHERE article_id IN (SELECT article_id FROM articles WHERE feed_id = ?)',
                        (feed_id,))
            cur.execute('DELETE FROM articles WHERE feed_id = ?', (feed_id,))

    # Taxonomy

    def saveAccount(self, account):
        with self.transaction() as cur:
            cur.execute('DELETE FROM folders')
            cur.execute('DELETE FROM feeds')
            cur.execute('DELETE FROM feed_folders')
            cur.executemany('INSERT INTO folders VALUES(?)', [(name,) for name in account.folders])
            for feed in account.flattened_feeds().values():
                cur.execute('INSERT INTO feeds VALUES(?,?,?,?,?,?,?)',
                            (feed.feed_id, feed.external_id, feed.name, feed.edited_name, feed.url,
                             feed.home_page_url, feed.favicon_url))
                if feed.feed_id in account.top_level_feeds:
                    cur.execute('INSERT INTO feed_folders VALUES(?,?,NULL)', (feed.feed_id, ROOT_FOLDER_NAME))
            for folder in account.folders.values():
                for feed in folder.top_level_feeds.values():
                    cur.execute('INSERT INTO feed_folders VALUES(?,?,?)',
                                (feed.feed_id, folder.name, feed.folder_relationship.get(folder.name)))

    def loadAccount(self, account_id):
        account = Account(account_id)
        for (name,) in self.execute('SELECT name FROM folders ORDER BY name'):
            account.ensure_folder(name)
        feeds = {}
        for row in self.execute('SELECT feed_id, external_id, name, edited_name, url, home_page_url, favicon_url FROM feeds'):
            feed = account.create_feed(row[0], row[2], row[4], row[5], row[6])
            feed.external_id = row[1]
            feed.edited_name = row[3]
            feeds[feed.feed_id] = feed
        for feed_id, folder_name, handle in self.execute('SELECT feed_id, folder, handle FROM feed_folders'):
            feed = feeds.get(feed_id)
            if feed is None:
                continue
            if folder_name == ROOT_FOLDER_NAME:
                account.add_feed(feed)
            elif folder_name in account.folders:
                if handle is not None:
                    feed.folder_relationship[folder_name] = handle
                account.add_feed(feed, account.folders[folder_name])
        return account

    # Metadata

    def getMeta(self, key):
        rows = self.executevar('SELECT value FROM meta WHERE key = ?', (key,))
        return rows[0][0] if rows else None

    def setMeta(self, key, value):
        self.executevar('INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)', (key, value))

    def deleteMeta(self, key):
        self.executevar('DELETE FROM meta WHERE key = ?', (key,))


def _date(value):
    return value.isoformat() if value is not None else None


def _parse_date(value):
    return datetime.fromisoformat(value) if value else None
