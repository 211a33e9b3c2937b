"""In-memory folder/feed tree owned by one Account."""

import copy
import threading

from errors import InvalidParameter
from models import ROOT_FOLDER_NAME


class Feed:
    def __init__(self, feed_id, name, url, home_page_url=None, favicon_url=None):
        self.feed_id = feed_id
        self.external_id = feed_id
        self.name = name
        self.edited_name = None
        self.url = url
        self.home_page_url = home_page_url
        self.favicon_url = favicon_url
        self.folder_relationship = {}

    @property
    def name_for_display(self):
        return self.edited_name or self.name or self.url

    def __repr__(self):
        return 'Feed(%r, %r)' % (self.feed_id, self.name)


class Folder:
    def __init__(self, name):
        self.name = name
        self.top_level_feeds = {}

    def add_feed(self, feed):
        self.top_level_feeds[feed.feed_id] = feed

    def remove_feed(self, feed):
        self.top_level_feeds.pop(feed.feed_id, None)

    def has_feed(self, feed_id):
        return feed_id in self.top_level_feeds

    def __repr__(self):
        return 'Folder(%r)' % self.name


class Account:
    """Owns the taxonomy. Only the thread that created it may mutate it."""

    def __init__(self, account_id):
        self.account_id = account_id
        self.folders = {}
        self.top_level_feeds = {}
        self.owner = threading.get_ident()

    def assert_owner(self):
        assert threading.get_ident() == self.owner, 'taxonomy mutated off its owner thread'

    def existing_feed(self, feed_id):
        if feed_id in self.top_level_feeds:
            return self.top_level_feeds[feed_id]
        for folder in self.folders.values():
            if feed_id in folder.top_level_feeds:
                return folder.top_level_feeds[feed_id]
        return None

    def flattened_feeds(self):
        feeds = dict(self.top_level_feeds)
        for folder in self.folders.values():
            feeds.update(folder.top_level_feeds)
        return feeds

    def create_feed(self, feed_id, name, url, home_page_url=None, favicon_url=None):
        if not feed_id:
            raise InvalidParameter('feed needs an external ID')
        return Feed(feed_id, name, url, home_page_url, favicon_url)

    def add_feed(self, feed, folder=None):
        self.assert_owner()
        if folder is None:
            self.top_level_feeds[feed.feed_id] = feed
        else:
            folder.add_feed(feed)

    def remove_feed(self, feed):
        self.assert_owner()
        self.top_level_feeds.pop(feed.feed_id, None)

    def ensure_folder(self, name):
        self.assert_owner()
        if name == ROOT_FOLDER_NAME or not name.strip():
            raise InvalidParameter('the account root is not a folder')
        if name not in self.folders:
            self.folders[name] = Folder(name)
        return self.folders[name]

    def remove_folder(self, folder):
        self.assert_owner()
        self.folders.pop(folder.name, None)

    def snapshot(self):
        """Detached copy for readers on other threads."""
        return copy.deepcopy(self)

    def layout(self):
        """Plain description of the tree: ({folder: {feed ids}}, {root feed ids})."""
        folders = {name: set(folder.top_level_feeds) for name, folder in self.folders.items()}
        return folders, set(self.top_level_feeds)
