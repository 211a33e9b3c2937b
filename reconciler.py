"""Three-pass reconciliation of the remote folder/feed taxonomy into an Account.

All three passes read the same TaxonomySnapshot. Remote state wins every
conflict: names, URLs and folder membership. Each pass returns how many
mutations it made so callers (and tests) can tell a no-op from a change.
"""

import logging
from collections import OrderedDict

from models import ROOT_FOLDER_NAME

logger = logging.getLogger(__name__)


def reconcile(account, snapshot):
    changes = sync_folders(account, snapshot.folders)
    changes += sync_feeds(account, snapshot.feeds)
    changes += sync_feed_folder_relationship(account, snapshot.relationships)
    logger.debug('Reconciled taxonomy with %d changes', changes)
    return changes


def sync_folders(account, folder_names):
    account.assert_owner()
    logger.debug('Syncing folders with %d folders.', len(folder_names))

    changes = 0
    remote_names = set(folder_names)

    # Delete any folders not on the server, keeping their feeds at the root
    for folder in list(account.folders.values()):
        if folder.name not in remote_names:
            for feed in list(folder.top_level_feeds.values()):
                account.add_feed(feed)
                clear_folder_relationship(feed, folder.name)
            account.remove_folder(folder)
            changes += 1

    # Make any folders the server has but we don't, ignoring the root
    for name in folder_names:
        if name not in account.folders and name != ROOT_FOLDER_NAME and name.strip():
            account.ensure_folder(name)
            changes += 1

    return changes


def sync_feeds(account, remote_feeds):
    account.assert_owner()
    logger.debug('Syncing feeds with %d feeds.', len(remote_feeds))

    changes = 0
    remote_ids = set(remote_feed.feed_id for remote_feed in remote_feeds)

    # Remove any feeds that are no longer subscribed
    for folder in account.folders.values():
        for feed in list(folder.top_level_feeds.values()):
            if feed.feed_id not in remote_ids:
                folder.remove_feed(feed)
                changes += 1
    for feed in list(account.top_level_feeds.values()):
        if feed.feed_id not in remote_ids:
            account.remove_feed(feed)
            changes += 1

    # Update the feeds we have and stage the ones we don't
    feeds_to_add = OrderedDict()
    for remote_feed in remote_feeds:
        feed = account.existing_feed(remote_feed.feed_id)
        if feed is None:
            feeds_to_add[remote_feed.feed_id] = remote_feed
            continue
        if update_feed(feed, remote_feed):
            changes += 1

    # Add them all in one go at the end
    for remote_feed in feeds_to_add.values():
        feed = account.create_feed(remote_feed.feed_id, remote_feed.name, remote_feed.url,
                                   remote_feed.home_page_url, remote_feed.favicon_url)
        account.add_feed(feed)
        changes += 1

    return changes


def update_feed(feed, remote_feed):
    before = (feed.name, feed.edited_name, feed.home_page_url, feed.favicon_url, feed.external_id)
    feed.name = remote_feed.name
    # A name from the server replaces whatever the user typed locally
    feed.edited_name = None
    feed.home_page_url = remote_feed.home_page_url
    feed.favicon_url = remote_feed.favicon_url
    feed.external_id = remote_feed.feed_id
    return before != (feed.name, feed.edited_name, feed.home_page_url, feed.favicon_url, feed.external_id)


def sync_feed_folder_relationship(account, relationships):
    account.assert_owner()

    changes = 0
    groups = group_by_folder(relationships)
    logger.debug('Syncing relationships for %d folders.', len(groups))

    # Folders without any remote edge are emptied too
    for folder_name, folder in list(account.folders.items()):
        folder_relationships = groups.get(folder_name, [])
        remote_feed_ids = set(r.feed_id for r in folder_relationships)

        # Move any feeds not in the folder to the account
        for feed in list(folder.top_level_feeds.values()):
            if feed.feed_id not in remote_feed_ids:
                folder.remove_feed(feed)
                clear_folder_relationship(feed, folder.name)
                account.add_feed(feed)
                changes += 1

        # Add any feeds not in the folder
        for relationship in folder_relationships:
            if folder.has_feed(relationship.feed_id):
                continue
            feed = account.existing_feed(relationship.feed_id)
            if feed is None:
                continue
            save_folder_relationship(feed, folder_name, relationship.handle)
            account.add_feed(feed, folder)
            changes += 1

    # No root group at all means everything lives in folders; an empty one means the same.
    root_feed_ids = set(r.feed_id for r in groups.get(ROOT_FOLDER_NAME, []))
    for feed in list(account.top_level_feeds.values()):
        if feed.feed_id not in root_feed_ids:
            account.remove_feed(feed)
            changes += 1

    return changes


def group_by_folder(relationships):
    groups = OrderedDict()
    for relationship in relationships:
        groups.setdefault(relationship.folder_name, []).append(relationship)
    return groups


def clear_folder_relationship(feed, folder_name):
    feed.folder_relationship.pop(folder_name, None)


def save_folder_relationship(feed, folder_name, handle):
    feed.folder_relationship[folder_name] = handle
