import base64
import functools
import io
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from webdav3.client import Client
from webdav3.exceptions import (ConnectionException, NoConnection, RemoteParentNotFound,
                                RemoteResourceNotFound, WebDavException)

from errors import RemoteUnavailable, ZoneRevoked

logger = logging.getLogger(__name__)


@dataclass
class Record:
   """One record in a zone. `reference` names the record whose deletion takes this one with it."""
   record_name: str
   record_type: str
   fields: dict = field(default_factory=dict)
   reference: Optional[str] = None


def _encode_name(name):
   return base64.urlsafe_b64encode(name.encode('utf-8')).decode('ascii').rstrip('=')


def _decode_name(encoded):
   padding = '=' * (-len(encoded) % 4)
   return base64.urlsafe_b64decode(encoded + padding).decode('utf-8')


def filename(record):
   if record.reference:
      return '%s.%s.json' % (_encode_name(record.record_name), _encode_name(record.reference))
   return '%s.json' % _encode_name(record.record_name)


def parse_filename(name):
   """Returns (record_name, reference) for a zone entry, or None for anything else."""
   name = name.rstrip('/').split('/')[-1]
   if not name.endswith('.json'):
      return None
   parts = name[:-len('.json')].split('.')
   record_name = _decode_name(parts[0])
   reference = _decode_name(parts[1]) if len(parts) > 1 else None
   return record_name, reference


def _to_json(value):
   if isinstance(value, bytes):
      return {'$data': base64.b64encode(value).decode('ascii')}
   return value


def _from_json(value):
   if isinstance(value, dict) and '$data' in value:
      return base64.b64decode(value['$data'])
   return value


def serialize(record):
   payload = {'recordName': record.record_name,
              'recordType': record.record_type,
              'reference': record.reference,
              'fields': {k: _to_json(v) for k, v in record.fields.items() if v is not None}}
   return json.dumps(payload, sort_keys=True).encode('utf-8')


def deserialize(data):
   payload = json.loads(data.decode('utf-8'))
   return Record(record_name=payload['recordName'],
                 record_type=payload['recordType'],
                 fields={k: _from_json(v) for k, v in payload.get('fields', {}).items()},
                 reference=payload.get('reference'))


def translate_errors(method):
   @functools.wraps(method)
   def wrapper(self, *args, **kwargs):
      try:
         return method(self, *args, **kwargs)
      except RemoteParentNotFound as e:
         raise ZoneRevoked('Zone %s is gone' % self.zone) from e
      except (NoConnection, ConnectionException) as e:
         raise RemoteUnavailable('WebDAV server unreachable: %s' % e) from e
      except WebDavException as e:
         raise RemoteUnavailable('WebDAV request failed: %s' % e) from e
   return wrapper


class connector:
   """Zone-organized record store on a WebDAV share: one directory per zone, one JSON file per record."""

   def __init__(self, config, client=None):
      self.config = config
      options = {
        'webdav_hostname': config['Connector']['Host'],
        'webdav_login':    config['Connector']['Username'],
        'webdav_password': config['Connector']['Password']
       }
      self.client = client or Client(options)
      self.client.verify = config['Connector'].getboolean('Verify', fallback=True)

      self.base = config['Connector']['Base'].rstrip('/')
      self.zone = config['Connector'].get('Zone', fallback='Articles')

   @property
   def zone_path(self):
      return self.base + '/' + self.zone

   def path(self, name):
      return self.zone_path + '/' + name

   @translate_errors
   def zone_exists(self):
      return self.client.check(self.zone_path)

   @translate_errors
   def create_zone(self):
      if self.base and not self.client.check(self.base):
         self.client.mkdir(self.base)
      if not self.client.check(self.zone_path):
         self.client.mkdir(self.zone_path)
      logger.info('Created zone %s', self.zone_path)

   def _require_zone(self):
      if not self.client.check(self.zone_path):
         raise ZoneRevoked('Zone %s is gone' % self.zone)

   def _listdir(self):
      try:
         entries = self.client.list(self.zone_path)
      except RemoteResourceNotFound as e:
         raise ZoneRevoked('Zone %s is gone' % self.zone) from e
      result = {}
      for entry in entries:
         parsed = parse_filename(entry)
         if parsed is not None:
            result[entry.rstrip('/').split('/')[-1]] = parsed
      return result

   def _upload(self, record):
      self.client.upload_to(serialize(record), self.path(filename(record)))

   def _remove(self, name):
      try:
         self.client.clean(self.path(name))
      except RemoteResourceNotFound:
         logger.debug('%s already removed', name)

   def _download(self, name):
      buff = io.BytesIO()
      self.client.download_from(buff, self.path(name))
      return deserialize(buff.getvalue())

   def _delete(self, record_names, listing):
      doomed = set(record_names)
      removed = 0
      for name, (record_name, reference) in listing.items():
         if record_name in doomed or reference in doomed:
            self._remove(name)
            removed += 1
      return removed

   @translate_errors
   def modify(self, records_to_save, record_names_to_delete):
      """Saves and deletes in one pass. Saving replaces any record with the same name."""
      self._require_zone()
      listing = self._listdir()
      by_record = {record_name: name for name, (record_name, _) in listing.items()}
      for record in records_to_save:
         stale = by_record.get(record.record_name)
         if stale is not None and stale != filename(record):
            self._remove(stale)
         self._upload(record)
      self._delete(record_names_to_delete, listing)

   @translate_errors
   def save_if_new(self, records):
      """Saves only the records whose name is not in the zone yet; returns how many were written."""
      self._require_zone()
      existing = set(record_name for record_name, _ in self._listdir().values())
      saved = 0
      for record in records:
         if record.record_name in existing:
            continue
         self._upload(record)
         saved += 1
      return saved

   @translate_errors
   def delete(self, record_names):
      self._require_zone()
      return self._delete(record_names, self._listdir())

   @translate_errors
   def delete_matching(self, record_type, field_name, value):
      """Deletes every `record_type` record whose `field_name` equals `value`, plus what references it."""
      self._require_zone()
      listing = self._listdir()
      matches = []
      for name in listing:
         record = self._download(name)
         if record.record_type == record_type and record.fields.get(field_name) == value:
            matches.append(record.record_name)
      return self._delete(matches, listing)

   @translate_errors
   def fetch(self, record_name):
      self._require_zone()
      for name, (candidate, _) in self._listdir().items():
         if candidate == record_name:
            return self._download(name)
      return None

   @translate_errors
   def listdir(self):
      self._require_zone()
      return sorted(record_name for record_name, _ in self._listdir().values())
