import logging
import os
import sys
import time

from config import load_config
from errors import SyncError
from syncer import getlock, syncer

logger = logging.getLogger(__name__)


def main():
    logging.basicConfig(
        level=getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    config = load_config(os.getenv('RSS_CONF', 'rss.conf'))
    delay = config['Main'].getint('Interval', fallback=120)

    # A second instance must not reach the database: building a syncer resets in-flight ledger rows
    lock = getlock(config['Main']['Username'])
    if lock is None:
        sys.exit(1)
    s = syncer(config)
    while(True):
        try:
            s.run()
        except SyncError as e:
            # the ledger keeps whatever did not make it; next cycle retries
            logger.error('Refresh failed: %s', e)
        except Exception:
            logger.exception('Unexpected error during refresh')
        time.sleep(delay)


if __name__ == "__main__":
    main()
