"""Mirror of article content and status into the secondary (WebDAV) store.

Each mirrored article is two records: an ArticleStatus record named
``s|<articleID>`` and an Article record named ``a|<articleID>`` that
references it, so removing the status removes the article too. Bodies are
zlib-compressed into ``contentHTMLData``/``contentTextData`` when possible.
"""

import enum
import logging
import zlib
from dataclasses import dataclass
from typing import Optional

from connector import Record
from errors import ZoneRevoked
from models import Article, date_to_timestamp

logger = logging.getLogger(__name__)

ARTICLE_RECORD_TYPE = 'Article'
STATUS_RECORD_TYPE = 'ArticleStatus'

# Field names shared with other clients of the zone
ARTICLE_STATUS = 'articleStatus'
FEED_URL = 'webFeedURL'
UNIQUE_ID = 'uniqueID'
TITLE = 'title'
CONTENT_HTML = 'contentHTML'
CONTENT_HTML_DATA = 'contentHTMLData'
CONTENT_TEXT = 'contentText'
CONTENT_TEXT_DATA = 'contentTextData'
URL = 'url'
EXTERNAL_URL = 'externalURL'
SUMMARY = 'summary'
IMAGE_URL = 'imageURL'
DATE_PUBLISHED = 'datePublished'
DATE_MODIFIED = 'dateModified'
PARSED_AUTHORS = 'parsedAuthors'

FEED_EXTERNAL_ID = 'webFeedExternalID'
READ = 'read'
STARRED = 'starred'

COMPRESSED_FIELDS = ((CONTENT_HTML, CONTENT_HTML_DATA), (CONTENT_TEXT, CONTENT_TEXT_DATA))


class ZoneState(enum.Enum):
    ABSENT = 'absent'
    ACTIVE = 'active'
    RECREATING = 'recreating'


# Status update intents. Each carries only what its records need.

@dataclass(frozen=True)
class AllRecords:
    """Rewrite both the status record and the article record."""
    article: Article


@dataclass(frozen=True)
class NewRecords:
    """Write both records unless another client already created them."""
    article: Article


@dataclass(frozen=True)
class DeleteRecords:
    article_id: str


@dataclass(frozen=True)
class StatusOnly:
    """Keep the status record, drop the article body."""
    article_id: str
    is_read: bool
    is_starred: bool
    feed_external_id: Optional[str] = None


def status_record_name(article_id):
    return 's|%s' % article_id


def article_record_name(article_id):
    return 'a|%s' % article_id


def compress(text):
    return zlib.compress(text.encode('utf-8'))


def decompress(data):
    return zlib.decompress(data).decode('utf-8')


def compress_article_records(records, compressor=compress):
    for record in records:
        if record.record_type != ARTICLE_RECORD_TYPE:
            continue
        for inline, blob in COMPRESSED_FIELDS:
            text = record.fields.get(inline)
            if not text:
                continue
            try:
                record.fields[blob] = compressor(text)
            except (zlib.error, ValueError, UnicodeError) as e:
                logger.debug('Leaving %s of %s uncompressed: %s', inline, record.record_name, e)
                continue
            record.fields[inline] = None
    return records


class ArticlesZone:

    def __init__(self, store, feed_lookup=None, compressor=compress):
        self.store = store
        # article.feed_id -> Feed, resolved through the owning account
        self.feed_lookup = feed_lookup or (lambda feed_id: None)
        self.compressor = compressor
        self.state = ZoneState.ABSENT

    def ensure_zone(self):
        if self.state is ZoneState.ACTIVE:
            return
        if not self.store.zone_exists():
            self.store.create_zone()
        self.state = ZoneState.ACTIVE

    def save_new_articles(self, articles):
        saved = [a for a in articles if not a.status.read or a.status.starred]
        if not saved:
            return
        records = []
        for art in saved:
            records.append(self.make_status_record(art.article_id, art.status.read, art.status.starred,
                                                   self.feed_external_id(art.feed_id)))
            records.append(self.make_article_record(art))
        records = compress_article_records(records, self.compressor)
        self._recovering(self.store.modify, records, [])

    def delete_articles(self, feed_external_id):
        return self._recovering(self.store.delete_matching, STATUS_RECORD_TYPE, FEED_EXTERNAL_ID, feed_external_id)

    def modify_articles(self, status_updates):
        if not status_updates:
            return
        self._recovering(self._modify, status_updates)

    def _recovering(self, operation, *args):
        """Runs `operation` against the zone, recreating it and retrying once if it was deleted."""
        self.ensure_zone()
        try:
            return operation(*args)
        except ZoneRevoked:
            logger.warning('Zone was deleted out from under us, recreating it')
            self.state = ZoneState.RECREATING
            self.store.create_zone()
            self.state = ZoneState.ACTIVE
            return operation(*args)

    def _modify(self, status_updates):
        modify_records = []
        new_records = []
        delete_record_ids = []

        for update in status_updates:
            if isinstance(update, AllRecords):
                modify_records.extend(self.make_records(update.article))
            elif isinstance(update, NewRecords):
                new_records.extend(self.make_records(update.article))
            elif isinstance(update, DeleteRecords):
                delete_record_ids.append(status_record_name(update.article_id))
            elif isinstance(update, StatusOnly):
                modify_records.append(self.make_status_record(update.article_id, update.is_read,
                                                              update.is_starred, update.feed_external_id))
                delete_record_ids.append(article_record_name(update.article_id))
            else:
                raise TypeError('Unknown status update %r' % (update,))

        self.store.modify(compress_article_records(modify_records, self.compressor), delete_record_ids)
        if new_records:
            self.store.save_if_new(compress_article_records(new_records, self.compressor))

    def feed_external_id(self, feed_id):
        feed = self.feed_lookup(feed_id)
        return feed.external_id if feed is not None else None

    def make_records(self, art):
        return [self.make_status_record(art.article_id, art.status.read, art.status.starred,
                                        self.feed_external_id(art.feed_id)),
                self.make_article_record(art)]

    def make_status_record(self, article_id, is_read, is_starred, feed_external_id=None):
        fields = {READ: '1' if is_read else '0',
                  STARRED: '1' if is_starred else '0'}
        if feed_external_id:
            fields[FEED_EXTERNAL_ID] = feed_external_id
        return Record(status_record_name(article_id), STATUS_RECORD_TYPE, fields)

    def make_article_record(self, art):
        feed = self.feed_lookup(art.feed_id)
        fields = {
            ARTICLE_STATUS: status_record_name(art.article_id),
            FEED_URL: feed.url if feed is not None else None,
            UNIQUE_ID: art.unique_id,
            TITLE: art.title,
            CONTENT_HTML: art.content_html,
            CONTENT_TEXT: art.content_text,
            URL: art.url,
            EXTERNAL_URL: art.external_url,
            SUMMARY: art.summary,
            IMAGE_URL: art.image_url,
            DATE_PUBLISHED: date_to_timestamp(art.date_published),
            DATE_MODIFIED: date_to_timestamp(art.date_modified),
        }
        if art.authors:
            fields[PARSED_AUTHORS] = art.authors_json()
        return Record(article_record_name(art.article_id), ARTICLE_RECORD_TYPE, fields,
                      reference=status_record_name(art.article_id))
