import configparser

from errors import InvalidParameter

DEFAULTS = {
    'Main': {'Interval': '120'},
    'Database': {'DB': 'newsblur_sync.db'},
    'Connector': {'Enabled': 'false', 'Base': '/newsblur', 'Zone': 'Articles', 'Verify': 'true'},
    'Headers': {'headers': 'newsblur-syncer'},
    'Sync': {'CutoffMonths': '3', 'Timeout': '60', 'Workers': '4'},
}

REQUIRED = {
    'Main': ('Url', 'Username', 'Password'),
}

CONNECTOR_REQUIRED = ('Host', 'Username', 'Password')


def load_config(path='rss.conf'):
    config = configparser.ConfigParser()
    config.optionxform = str
    config.read_dict(DEFAULTS)
    if not config.read(path):
        raise InvalidParameter('Could not read config file %s' % path)
    validate(config)
    return config


def validate(config):
    missing = []
    for section, keys in REQUIRED.items():
        for key in keys:
            if not config.get(section, key, fallback=''):
                missing.append('%s.%s' % (section, key))
    if config.getboolean('Connector', 'Enabled', fallback=False):
        for key in CONNECTOR_REQUIRED:
            if not config.get('Connector', key, fallback=''):
                missing.append('Connector.%s' % key)
    if missing:
        raise InvalidParameter('Missing required settings: %s' % ', '.join(missing))
    return config
