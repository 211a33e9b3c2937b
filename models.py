"""Data types exchanged between the remote service, the local store and the zone."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from bs4 import BeautifulSoup

# Folder name NewsBlur uses for feeds that live at the top level of the account.
ROOT_FOLDER_NAME = " "


@dataclass(frozen=True)
class FolderRelationship:
    """One membership edge: feed `feed_id` sits in `folder_name` under `handle`."""
    folder_name: str
    feed_id: str
    handle: str


@dataclass
class RemoteFeed:
    feed_id: str
    name: str
    url: str
    home_page_url: Optional[str] = None
    favicon_url: Optional[str] = None
    folders: List[str] = field(default_factory=list)  # empty means account root

    def relationships(self):
        names = self.folders or [ROOT_FOLDER_NAME]
        return [FolderRelationship(name, self.feed_id, name) for name in names]


@dataclass
class TaxonomySnapshot:
    """Folder names and feeds from a single fetch of the remote taxonomy."""
    folders: List[str]
    feeds: List[RemoteFeed]

    @property
    def relationships(self):
        edges = []
        for feed in self.feeds:
            edges.extend(feed.relationships())
        return edges


@dataclass(frozen=True)
class StoryHash:
    hash: str
    timestamp: Optional[datetime] = None


@dataclass
class Story:
    story_hash: str
    feed_id: str
    story_id: str
    title: Optional[str] = None
    content_html: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    date_published: Optional[datetime] = None
    author_name: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class ArticleStatus:
    read: bool = False
    starred: bool = False


@dataclass
class Article:
    article_id: str
    feed_id: str
    unique_id: str
    title: Optional[str] = None
    content_html: Optional[str] = None
    content_text: Optional[str] = None
    url: Optional[str] = None
    external_url: Optional[str] = None
    summary: Optional[str] = None
    image_url: Optional[str] = None
    date_published: Optional[datetime] = None
    date_modified: Optional[datetime] = None
    authors: List[dict] = field(default_factory=list)
    status: ArticleStatus = field(default_factory=ArticleStatus)

    @classmethod
    def from_story(cls, story, status=None):
        authors = []
        if story.author_name:
            authors.append({'name': story.author_name})
        return cls(article_id=story.story_hash,
                   feed_id=story.feed_id,
                   unique_id=story.story_id,
                   title=story.title,
                   content_html=story.content_html,
                   content_text=html_to_text(story.content_html),
                   url=story.url,
                   image_url=story.image_url,
                   date_published=story.date_published,
                   authors=authors,
                   status=status or ArticleStatus())

    def authors_json(self):
        return [json.dumps(author, sort_keys=True) for author in self.authors]


def html_to_text(html):
    if not html:
        return None
    text = BeautifulSoup(html, 'html.parser').get_text(' ', strip=True)
    return text or None


def timestamp_to_date(value):
    if value in (None, ''):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def date_to_timestamp(value):
    if value is None:
        return None
    return int(value.timestamp())
