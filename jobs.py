import logging
import threading
import concurrent.futures
from collections import namedtuple
from datetime import datetime

import algorithms

# Set up a logger
log = logging.getLogger(__name__)


WorkerResult = namedtuple('WorkerResult', ['worker', 'fail', 'lines'])


class Report(namedtuple('Report', ['fail', 'lines'])):

    @property
    def verdict(self):
        if self.fail:
            return 'one or more coefficients negative'
        return 'all coefficients nonnegative'


class OutputSink():
    '''
    A text stream shared by every worker.  Writes only happen while holding
    the lock.
    '''

    def __init__(self, stream):
        self.stream = stream
        self.lock = threading.Lock()

    def _write(self, lines):
        self.stream.write(''.join(line + '\n' for line in lines))
        self.stream.flush()

    def try_flush(self, lines):
        '''
        Writes the lines if nobody else is writing.  Returns False without
        waiting if the lock is taken.
        '''
        if not self.lock.acquire(blocking=False):
            return False
        try:
            self._write(lines)
        finally:
            self.lock.release()
        return True

    def flush(self, lines):
        with self.lock:
            self._write(lines)


def partition(s_min, s_max, workers):
    '''
    Deals the S values out to the workers like cards: worker i gets
    s_min+i, s_min+i+workers, ...  The cost per S grows with S, so striding
    spreads the expensive values over every worker.
    '''
    if workers < 1:
        raise ValueError(f'Expected at least one worker, got {workers}')

    return [range(s_min + i, s_max + 1, workers) for i in range(workers)]


def task(worker, span, cache, formula=algorithms.factored, sink=None, verify=False):
    '''
    Computes every coefficient for every S in span and every 2 <= m < S.

    Arguments:
        worker  - index of this worker, only used for logging
        span    - the S values assigned to this worker
        cache   - PochhammerCache owned by this worker
        formula - algorithms.factored or algorithms.direct
        sink    - optional OutputSink.  If given, the buffer is published at
                  every S boundary when the sink is free, and always at the end
        verify  - cross-check both formulas for every coefficient

    Returns:
        WorkerResult.  lines is empty when a sink was given.
    '''
    start = datetime.now()
    log.debug(f'Worker {worker} starting on {len(span)} values of S')

    fail = False
    lines = []

    for S in span:
        for m in range(2, S):  # m = S is trivially zero

            if verify:
                coeffs = algorithms.verify(S, m, cache)
                negative = any(coeff < 0 for coeff in coeffs)
            else:
                coeffs, negative = algorithms.check(S, m, cache, formula)

            if negative:
                if not fail:
                    log.info(f'Worker {worker} found a negative coefficient at S={S} m={m}')
                fail = True

            lines.append(algorithms.format_line(S, m, coeffs))

        # Try to publish what we have, but never wait for it
        if sink is not None and lines and sink.try_flush(lines):
            lines = []

    # Publish the remainder, waiting if we have to
    if sink is not None:
        sink.flush(lines)
        lines = []

    log.debug(f'Worker {worker} finished in {(datetime.now() - start).total_seconds()} sec. cache size: {len(cache)}')

    return WorkerResult(worker, fail, lines)


def aggregate(results):
    '''
    Merges worker results once every worker is done.  The report fails if any
    worker failed, and its lines are the workers' lines in worker order.
    '''
    results = sorted(results, key=lambda result: result.worker)

    fail = any(result.fail for result in results)
    lines = [line for result in results for line in result.lines]

    return Report(fail, lines)


def run(s_min, s_max, workers, provider, formula=algorithms.factored, sink=None, verify=False):
    '''
    Splits [s_min, s_max] over a fixed pool of worker threads, waits for all
    of them and returns the aggregated Report.

    Any exception raised inside a worker is re-raised here after the join.
    '''
    start = datetime.now()
    log.info(f'[run] S={s_min}..{s_max} workers:{workers} formula:{formula.formula} provider:{provider.name} verify:{verify} stream:{sink is not None}')

    spans = partition(s_min, s_max, workers)

    results = []

    def work(worker):
        # every worker builds its own cache
        return task(worker, spans[worker], provider.acquire(worker), formula, sink, verify)

    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(work, worker) for worker in range(workers)]

        # join every worker before looking at any result
        concurrent.futures.wait(futures)
        for future in futures:
            results.append(future.result())

    report = aggregate(results)

    log.info(f'Run complete in {datetime.now() - start}. {report.verdict}')

    return report
