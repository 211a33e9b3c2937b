"""Pushes pending read/starred flips to NewsBlur in small concurrent batches."""

import logging
import sqlite3
from multiprocessing.pool import ThreadPool

from db import READ, STARRED
from errors import PropagationPartialFailure, RemoteUnavailable

logger = logging.getLogger(__name__)

# NewsBlur accepts at most this many story hashes per status call
CHUNK_SIZE = 5
THROTTLED_CHUNK_SIZE = 1


def chunked(items, size):
    return [items[i:i + size] for i in range(0, len(items), size)]


def _push(job):
    api_call, group = job
    try:
        api_call(group)
    except Exception as e:
        return group, e
    return group, None


class StatusPropagator:

    def __init__(self, database, workers=4):
        self.database = database
        self.workers = workers

    def send_article_statuses(self, caller, throttle=False):
        """Drains the ledger: one batch per (key, flag) pairing."""
        statuses = self.database.selectForProcessing()
        if not statuses:
            return
        logger.debug('Sending %d story statuses.', len(statuses))

        batches = [
            (READ, True, caller.mark_as_read),
            (READ, False, caller.mark_as_unread),
            (STARRED, True, caller.star),
            (STARRED, False, caller.unstar),
        ]
        failed = []
        rate_limited = False
        for key, flag, api_call in batches:
            selected = [s for s in statuses if s.key == key and s.flag == flag]
            try:
                self.send_story_statuses(selected, throttle, api_call, key)
            except PropagationPartialFailure as e:
                failed.extend(e.failed_ids)
                rate_limited = rate_limited or e.rate_limited

        if failed:
            raise PropagationPartialFailure(failed, rate_limited)

    def send_story_statuses(self, statuses, throttle, api_call, key):
        if not statuses:
            return

        story_hashes = []
        for status in statuses:
            if status.article_id not in story_hashes:
                story_hashes.append(status.article_id)
        groups = chunked(story_hashes, THROTTLED_CHUNK_SIZE if throttle else CHUNK_SIZE)

        failed = []
        rate_limited = False
        pool = ThreadPool(max(1, min(self.workers, len(groups))))
        try:
            # Workers only talk to the server; the ledger is settled here as each chunk lands.
            for group, error in pool.imap_unordered(_push, [(api_call, group) for group in groups]):
                if error is None:
                    try:
                        self.database.deleteSelectedForProcessing(group, key)
                        continue
                    except sqlite3.Error as e:
                        error = e
                logger.error('Story status sync call failed: %s', error)
                self.database.resetSelectedForProcessing(group, key)
                failed.extend(group)
                if isinstance(error, RemoteUnavailable) and error.rate_limited:
                    rate_limited = True
        finally:
            pool.close()
            pool.join()

        if failed:
            raise PropagationPartialFailure(failed, rate_limited)
