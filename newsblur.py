"""HTTP caller for the NewsBlur API.

Translates JSON payloads into models.py types and every transport problem
into errors.py types. Nothing above this module imports requests.
"""

import logging
from email.utils import parsedate_to_datetime
from urllib.parse import urljoin

import requests

from errors import InvalidParameter, RemoteUnavailable
from models import ROOT_FOLDER_NAME, RemoteFeed, Story, StoryHash, TaxonomySnapshot, timestamp_to_date

logger = logging.getLogger(__name__)

# Stories per call the server accepts for hash lookups
MAX_HASHES_PER_CALL = 100


class NewsBlurCaller:

    def __init__(self, url, username, password, headers=None, timeout=60, session=None):
        self.base = url.rstrip('/') + '/'
        self.username = username
        self.password = password
        self.timeout = timeout
        self.session = session or requests.Session()
        if headers:
            self.session.headers.update(headers)

    def login(self):
        data = self._request('POST', 'api/login', data={'username': self.username, 'password': self.password})
        if not data.get('authenticated'):
            raise InvalidParameter('NewsBlur rejected the credentials for %s' % self.username)
        return True

    # Taxonomy

    def retrieve_feeds(self):
        data = self._request('GET', 'reader/feeds', params={'flat': 'true', 'update_counts': 'false'})
        return parse_taxonomy(data)

    def add_url(self, url, folder=None):
        params = {'url': url}
        if folder:
            params['folder'] = folder
        data = self._request('POST', 'reader/add_url', data=params)
        feed = data.get('feed')
        if not feed:
            raise InvalidParameter('NewsBlur could not subscribe to %s' % url)
        return parse_feed(feed, [folder] if folder else [])

    def rename_feed(self, feed_id, name):
        self._request('POST', 'reader/rename_feed', data={'feed_id': feed_id, 'feed_title': name})

    def delete_feed(self, feed_id, folder=None):
        self._request('POST', 'reader/delete_feed', data={'feed_id': feed_id, 'in_folder': folder or ''})

    # Stories

    def retrieve_stories_by_page(self, feed_id, page):
        data = self._request('GET', 'reader/feed/%s' % feed_id, params={'page': page})
        return [parse_story(story) for story in data.get('stories') or []]

    def retrieve_stories_by_hashes(self, hashes):
        if len(hashes) > MAX_HASHES_PER_CALL:
            raise InvalidParameter('At most %d hashes per call' % MAX_HASHES_PER_CALL)
        response = self._send('GET', 'reader/river_stories', params={'h': [h.hash for h in hashes]})
        stories = [parse_story(story) for story in _json(response).get('stories') or []]
        return stories, server_date(response)

    def retrieve_unread_story_hashes(self):
        data = self._request('GET', 'reader/unread_story_hashes', params={'include_timestamps': 'true'})
        hashes = []
        for feed_hashes in (data.get('unread_feed_story_hashes') or {}).values():
            hashes.extend(parse_hash(item) for item in feed_hashes)
        return hashes

    def retrieve_starred_story_hashes(self):
        data = self._request('GET', 'reader/starred_story_hashes', params={'include_timestamps': 'true'})
        return [parse_hash(item) for item in data.get('starred_story_hashes') or []]

    # Status pushes

    def mark_as_read(self, hashes):
        self._request('POST', 'reader/mark_story_hashes_as_read', data={'story_hash': list(hashes)})

    def mark_as_unread(self, hashes):
        self._request('POST', 'reader/mark_story_hash_as_unread', data={'story_hash': list(hashes)})

    def star(self, hashes):
        self._request('POST', 'reader/mark_story_hash_as_starred', data={'story_hash': list(hashes)})

    def unstar(self, hashes):
        self._request('POST', 'reader/mark_story_hash_as_unstarred', data={'story_hash': list(hashes)})

    def _request(self, method, path, params=None, data=None):
        return _json(self._send(method, path, params=params, data=data))

    def _send(self, method, path, params=None, data=None):
        url = urljoin(self.base, path)
        try:
            response = self.session.request(method, url, params=params, data=data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise RemoteUnavailable('%s %s failed: %s' % (method, path, e)) from e

        if response.status_code == 429:
            raise RemoteUnavailable('NewsBlur is rate limiting %s' % path, rate_limited=True)
        if response.status_code == 400:
            raise InvalidParameter('NewsBlur rejected %s %s' % (method, path))
        if response.status_code >= 300:
            raise RemoteUnavailable('%s %s returned %d' % (method, path, response.status_code))
        return response


def _json(response):
    try:
        return response.json()
    except ValueError as e:
        raise RemoteUnavailable('Malformed response from %s' % response.url) from e


def server_date(response):
    value = response.headers.get('Date')
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug('Unparseable Date header %r', value)
        return None


def parse_taxonomy(data):
    folder_names = []
    memberships = {}
    for folder_name, feed_ids in (data.get('flat_folders') or {}).items():
        if folder_name.strip() == '':
            folder_name = ROOT_FOLDER_NAME
        folder_names.append(folder_name)
        for feed_id in feed_ids:
            memberships.setdefault(str(feed_id), []).append(folder_name)

    feeds = []
    for feed_id, feed in (data.get('feeds') or {}).items():
        folders = [name for name in memberships.get(str(feed_id), []) if name != ROOT_FOLDER_NAME]
        # A feed both at the root and in folders keeps its root edge explicitly
        if folders and ROOT_FOLDER_NAME in memberships.get(str(feed_id), []):
            folders.append(ROOT_FOLDER_NAME)
        feeds.append(parse_feed(feed, folders))
    return TaxonomySnapshot(folders=folder_names, feeds=feeds)


def parse_feed(feed, folders):
    return RemoteFeed(feed_id=str(feed['id']),
                      name=feed.get('feed_title') or '',
                      url=feed.get('feed_address') or '',
                      home_page_url=feed.get('feed_link'),
                      favicon_url=feed.get('favicon_url'),
                      folders=folders)


def parse_story(story):
    image_urls = story.get('image_urls') or []
    return Story(story_hash=story['story_hash'],
                 feed_id=str(story['story_feed_id']),
                 story_id=str(story.get('id') or story['story_hash']),
                 title=story.get('story_title'),
                 content_html=story.get('story_content'),
                 url=story.get('story_permalink'),
                 image_url=image_urls[0] if image_urls else None,
                 date_published=timestamp_to_date(story.get('story_timestamp')),
                 author_name=story.get('story_authors') or None,
                 tags=list(story.get('story_tags') or []))


def parse_hash(item):
    if isinstance(item, (list, tuple)):
        return StoryHash(item[0], timestamp_to_date(item[1]) if len(item) > 1 else None)
    return StoryHash(item)
