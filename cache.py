import logging

from gmpy2 import mpq

log = logging.getLogger(__name__)

ONE = mpq(1)


class PochhammerCache():
    '''
    Memoizes rising factorials (Pochhammer symbols) over the rationals.

    One instance belongs to exactly one worker.  Entries are added lazily and
    never evicted, so a key always maps to the same value for the lifetime of
    the cache.
    '''

    def __init__(self):
        self._cache = {}

    def __len__(self):
        return len(self._cache)

    def __contains__(self, key):
        return key in self._cache

    def key(self, base, length):
        return (base, length)

    def rising(self, base, length):
        '''
        Returns base * (base+1) * ... * (base+length-1)

        A miss stores every (base+i, length-i) along the way, the same keys
        the recursion base * rising(base+1, length-1) would have filled.
        '''
        # Walk down until we hit the cache or the base case
        pending = []
        while length > 0:
            value = self._cache.get(self.key(base, length))
            if value is not None:
                break
            pending.append((base, length))
            base += 1
            length -= 1
        else:
            value = ONE

        # Build back up, storing each product
        for base, length in reversed(pending):
            value = base * value
            self._cache[self.key(base, length)] = value

        return value

    def falling(self, base, length):
        '''
        Returns base * (base-1) * ... * (base-length+1) as (-1)^length (-base)_length
        '''
        value = self.rising(-base, length)
        return value if length % 2 == 0 else -value


class LocalCacheProvider():
    '''
    Hands every worker its own cache.  Nothing is shared, so the arithmetic
    never takes a lock.
    '''
    name = 'local'

    def acquire(self, worker):
        log.debug(f'New Pochhammer cache for worker {worker}')
        return PochhammerCache()


# Cache policies selectable by name from the configuration
PROVIDERS = {
    LocalCacheProvider.name: LocalCacheProvider,
}


def get_provider(name):
    if name not in PROVIDERS:
        raise ValueError(f'Unknown cache provider: {name}. Expected one of {", ".join(sorted(PROVIDERS))}')

    return PROVIDERS[name]()
