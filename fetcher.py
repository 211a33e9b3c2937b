"""Story download: page-by-page for new feeds, hash lookups for known ones."""

import calendar
import logging
from datetime import datetime, timezone

from models import Article
from newsblur import MAX_HASHES_PER_CALL
from progress import RefreshProgress

logger = logging.getLogger(__name__)

LAST_FETCH_START = 'last_article_fetch_start'
LAST_FETCH_END = 'last_article_fetch_end'


def months_ago(when, months):
    month = when.month - months
    year = when.year
    while month < 1:
        month += 12
        year -= 1
    day = min(when.day, calendar.monthrange(year, month)[1])
    return when.replace(year=year, month=month, day=day)


def synced_key(feed_id):
    return 'feed_synced:%s' % feed_id


class StoryFetcher:

    def __init__(self, caller, database, progress=None, cutoff_months=3, on_new_articles=None, clock=None):
        self.caller = caller
        self.database = database
        self.progress = progress or RefreshProgress()
        self.cutoff_months = cutoff_months
        self.on_new_articles = on_new_articles
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def cutoff(self):
        return months_ago(self.clock(), self.cutoff_months)

    def has_sync_history(self, feed):
        return self.database.getMeta(synced_key(feed.feed_id)) is not None

    def clear_sync_history(self, feed_id):
        self.database.deleteMeta(synced_key(feed_id))

    def process_stories(self, stories, since=None):
        """Stores the stories newer than `since`; returns the articles applied."""
        if since is not None:
            stories = [s for s in stories if s.date_published is None or s.date_published >= since]
        articles = [Article.from_story(story) for story in stories]
        if not articles:
            return []

        new_ids = self.database.insertArticles(articles, default_read=True)
        if new_ids and self.on_new_articles is not None:
            self.on_new_articles(self.database.getArticles(sorted(new_ids)))
        return articles

    def download_feed(self, feed, page=1):
        """Pages through a feed until it runs dry or falls behind the cutoff."""
        since = self.cutoff()
        applied = 0
        while True:
            self.progress.add_to_number_of_tasks_and_remaining(1)
            try:
                stories = self.caller.retrieve_stories_by_page(feed.feed_id, page)
                if not stories:
                    logger.debug('Feed %s has no more stories after page %d', feed.feed_id, page - 1)
                    break
                articles = self.process_stories(stories, since=since)
                applied += len(articles)
                if not articles:
                    logger.debug('Feed %s page %d is older than %s', feed.feed_id, page, since)
                    break
            finally:
                self.progress.complete_task()
            page += 1

        self.database.setMeta(synced_key(feed.feed_id), self.clock().isoformat())
        return applied

    def refresh_stories(self, hashes, update_fetch_date=None):
        """Resolves story hashes in API-sized chunks, recording the last good server date."""
        remaining = list(hashes)
        watermark = update_fetch_date
        try:
            while remaining:
                chunk, remaining = remaining[:MAX_HASHES_PER_CALL], remaining[MAX_HASHES_PER_CALL:]
                self.progress.add_to_number_of_tasks_and_remaining(1)
                try:
                    stories, date = self.caller.retrieve_stories_by_hashes(chunk)
                    self.process_stories(stories)
                finally:
                    self.progress.complete_task()
                watermark = date or watermark
        finally:
            if watermark is not None:
                self.database.setMeta(LAST_FETCH_START, watermark.isoformat())
                self.database.setMeta(LAST_FETCH_END, self.clock().isoformat())
        logger.debug('Done refreshing stories.')
        return watermark

    def refresh_missing_stories(self, unread_hashes, starred_hashes):
        known = self.database.getArticleIDs()
        seen = set()
        missing = []
        for story_hash in list(unread_hashes) + list(starred_hashes):
            if story_hash.hash in known or story_hash.hash in seen:
                continue
            seen.add(story_hash.hash)
            missing.append(story_hash)
        logger.debug('Refreshing %d missing stories.', len(missing))
        return self.refresh_stories(missing)
