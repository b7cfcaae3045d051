import os
import logging
from multiprocessing import cpu_count

import dotenv

log = logging.getLogger(__name__)

# Settings can be overridden from the environment or a local .env file
dotenv.load_dotenv()


usage = 'usage: coefficients S_MIN S_MAX (where 2 <= S_MIN <= S_MAX)'


def parse_workers(value):
    '''
    0 or unset means one worker per CPU.  A value that isn't a number is
    ignored with a warning instead of stopping the program at import time.
    '''
    try:
        count = int(value)
    except (TypeError, ValueError):
        log.warning(f'Ignoring TURAN_WORKERS={value!r}, expected an integer')
        count = 0

    return count or cpu_count()


# Number of worker threads
workers = parse_workers(os.getenv('TURAN_WORKERS', '0'))

# Which Pochhammer cache policy the workers use (see cache.PROVIDERS).
# 'local' gives every worker a private cache
cache_provider = os.getenv('TURAN_CACHE', 'local')

# 'factored' reuses shorter factorials, 'direct' sums the series term by term
formula = os.getenv('TURAN_FORMULA', 'factored')

log_level = os.getenv('TURAN_LOG_LEVEL', 'WARNING')
