import io
import os
import importlib
import threading
import unittest
from unittest import mock
from multiprocessing import cpu_count

import mpmath
from click.testing import CliRunner
from gmpy2 import mpq

import algorithms
import cache
import commands
import config
import jobs
from cache import PochhammerCache


def reference_series(S, m):
    '''
    Coefficients 0..2m-2 of the hypergeometric expression, built straight
    from the 2F1 series with mpmath.
    '''
    def series(a, b, c, n):
        def rf(x, j):
            return mpmath.fprod(mpmath.mpf(x + i) for i in range(j))

        return [rf(a, j) * rf(b, j) / (rf(c, j) * mpmath.factorial(j)) * (-1) ** j
                for j in range(n + 1)]

    def product(p, q):
        res = [mpmath.mpf(0)] * (len(p) + len(q) - 1)
        for i, x in enumerate(p):
            for j, y in enumerate(q):
                res[i + j] += x * y
        return res

    n = 2*m - 2
    f = series(2, 1-m, S-m+2, n)
    g = series(1, -m, S-m+1, n)
    h = series(3, 2-m, S-m+3, n)

    return [x - y for x, y in zip(product(f, f), product(g, h))][:n + 1]


def to_mpf(value):
    return mpmath.mpf(int(value.numerator)) / int(value.denominator)


class TestPochhammerCache(unittest.TestCase):

    def setUp(self):
        self.c = PochhammerCache()

    def test_empty_product(self):
        for m in range(-10, 11):
            self.assertEqual(self.c.rising(m, 0), 1)
            self.assertEqual(self.c.falling(m, 0), 1)

    def test_known_values(self):
        # 3 * 4 * 5 * 6
        self.assertEqual(self.c.rising(3, 4), 360)
        # -3 * -2
        self.assertEqual(self.c.rising(-3, 2), 6)
        # -3 * -2 * -1 * 0
        self.assertEqual(self.c.rising(-3, 4), 0)
        # 5 * 4 * 3
        self.assertEqual(self.c.falling(5, 3), 60)
        # 1 * 0
        self.assertEqual(self.c.falling(1, 2), 0)

    def test_recurrence(self):
        for m in range(-8, 9):
            for n in range(1, 9):
                self.assertEqual(self.c.rising(m, n), m * self.c.rising(m + 1, n - 1))

    def test_falling_is_signed_rising(self):
        for m in range(-8, 9):
            for n in range(0, 9):
                self.assertEqual(self.c.falling(m, n), (-1) ** n * self.c.rising(-m, n))

    def test_matches_mpmath(self):
        for m in range(1, 9):
            for n in range(0, m + 1):
                self.assertEqual(self.c.rising(m, n), int(mpmath.rf(m, n)))
                self.assertEqual(self.c.falling(m, n), int(mpmath.ff(m, n)))

    def test_returns_rationals(self):
        self.assertIsInstance(self.c.rising(2, 3), type(mpq(1)))
        self.assertIsInstance(self.c.falling(2, 3), type(mpq(1)))

    def test_memoized(self):
        first = self.c.rising(7, 5)
        size = len(self.c)
        second = self.c.rising(7, 5)

        self.assertIs(first, second)
        self.assertEqual(len(self.c), size)

    def test_miss_fills_the_whole_chain(self):
        self.c.rising(3, 4)

        for key in [(3, 4), (4, 3), (5, 2), (6, 1)]:
            self.assertIn(key, self.c)
        self.assertEqual(len(self.c), 4)

        # (3, 4) is already there so only (2, 5) is new
        self.assertEqual(self.c.rising(2, 5), 720)
        self.assertEqual(len(self.c), 5)

    def test_grows_monotonically(self):
        sizes = []
        for n in range(1, 6):
            self.c.rising(-2, n)
            sizes.append(len(self.c))
        self.assertEqual(sizes, sorted(sizes))


class TestCacheProvider(unittest.TestCase):

    def test_local_provider(self):
        provider = cache.get_provider('local')
        self.assertIsInstance(provider, cache.LocalCacheProvider)

        a = provider.acquire(0)
        b = provider.acquire(1)
        self.assertIsInstance(a, PochhammerCache)
        self.assertIsNot(a, b)

        a.rising(3, 3)
        self.assertEqual(len(b), 0)

    def test_unknown_provider(self):
        with self.assertRaises(ValueError):
            cache.get_provider('shared')


class TestAlgorithms(unittest.TestCase):

    def setUp(self):
        self.c = PochhammerCache()

    def test_s3_m2(self):
        # 2F1(2,-1;3;-x)^2 - 2F1(1,-2;2;-x) = x/3 + x^2/9
        self.assertEqual(algorithms.coefficients(3, 2, self.c), [mpq(1, 3), mpq(1, 9)])

    def test_s4_m2(self):
        self.assertEqual(algorithms.coefficients(4, 2, self.c), [mpq(1, 3), mpq(1, 12)])

    def test_s4_m3(self):
        # (1 + 4x/3 + x^2/2)^2 - (1 + 3x/2 + x^2 + x^3/4)(1 + 3x/4)
        res = algorithms.coefficients(4, 3, self.c)
        self.assertEqual(res, [mpq(5, 12), mpq(47, 72), mpq(1, 3), mpq(1, 16)])

    def test_direct_matches_factored(self):
        for S in range(3, 11):
            for m in range(2, S):
                for d in range(1, 2*m - 1):
                    self.assertEqual(
                        algorithms.direct(S, m, d, self.c),
                        algorithms.factored(S, m, d, self.c),
                        f'S={S} m={m} d={d}')

    def test_formulas_agree_on_fresh_caches(self):
        for S in range(3, 9):
            for m in range(2, S):
                self.assertEqual(
                    algorithms.coefficients(S, m, PochhammerCache(), algorithms.direct),
                    algorithms.coefficients(S, m, PochhammerCache(), algorithms.factored))

    def test_matches_hypergeometric_series(self):
        with mpmath.workdps(50):
            for S in range(3, 9):
                for m in range(2, S):
                    ref = reference_series(S, m)
                    self.assertTrue(mpmath.almosteq(ref[0], 0, abs_eps=mpmath.mpf(10) ** -40))

                    for d, coeff in enumerate(algorithms.coefficients(S, m, self.c), start=1):
                        self.assertTrue(mpmath.almosteq(to_mpf(coeff), ref[d], rel_eps=mpmath.mpf(10) ** -40),
                            f'S={S} m={m} d={d}: {coeff} vs {ref[d]}')

    def test_matches_hyp2f1(self):
        S, m = 6, 4
        coeffs = algorithms.coefficients(S, m, self.c)

        def f(x):
            return mpmath.hyp2f1(2, 1-m, S-m+2, -x) ** 2 \
                - mpmath.hyp2f1(1, -m, S-m+1, -x) * mpmath.hyp2f1(3, 2-m, S-m+3, -x)

        with mpmath.workdps(50):
            for x in [mpmath.mpf('0.25'), mpmath.mpf('0.5'), mpmath.mpf('0.9')]:
                series = sum(to_mpf(coeff) * x ** d for d, coeff in enumerate(coeffs, start=1))
                self.assertTrue(mpmath.almosteq(f(x), series, rel_eps=mpmath.mpf(10) ** -30))

    def test_check(self):
        coeffs, negative = algorithms.check(4, 3, self.c)
        self.assertEqual(len(coeffs), 4)
        self.assertFalse(negative)

    def test_verify(self):
        self.assertEqual(algorithms.verify(4, 3, self.c), algorithms.coefficients(4, 3, self.c))

    def test_verify_reports_mismatch(self):
        with mock.patch.object(algorithms, 'direct', return_value=mpq(-1)):
            with self.assertRaises(algorithms.FormulaMismatch):
                algorithms.verify(4, 3, self.c)

    def test_domain(self):
        self.assertTrue(algorithms.validate(3, 2))
        self.assertFalse(algorithms.validate(3, 3))
        self.assertFalse(algorithms.validate(5, 1))

        with self.assertRaises(ValueError):
            algorithms.factored(3, 3, 1, self.c)
        with self.assertRaises(ValueError):
            algorithms.direct(5, 2, 3, self.c)
        with self.assertRaises(ValueError):
            algorithms.direct(5, 2, 0, self.c)

    def test_formulas_by_name(self):
        self.assertIs(algorithms.get_formula('direct'), algorithms.direct)
        self.assertIs(algorithms.get_formula('factored'), algorithms.factored)
        self.assertEqual(sorted(algorithms.FORMULAS), ['direct', 'factored'])
        with self.assertRaises(ValueError):
            algorithms.get_formula('fast')

    def test_format_line(self):
        line = algorithms.format_line(4, 3, algorithms.coefficients(4, 3, self.c))
        self.assertEqual(line, 'S=4 m=3 5/12 47/72 1/3 1/16')
        self.assertEqual(algorithms.format_line(7, 2, [mpq(2), mpq(-1, 3)]), 'S=7 m=2 2 -1/3')


def negative_at_five(S, m, d, c):
    return mpq(-1) if S == 5 else mpq(1)

negative_at_five.formula = 'negative_at_five'


def broken(S, m, d, c):
    raise RuntimeError('boom')

broken.formula = 'broken'


class TestJobs(unittest.TestCase):

    def setUp(self):
        self.provider = cache.get_provider('local')

    def test_partition_covers_range(self):
        for workers in range(1, 10):
            for s_min, s_max in [(2, 2), (2, 3), (3, 20), (7, 40), (10, 12)]:
                spans = jobs.partition(s_min, s_max, workers)
                self.assertEqual(len(spans), workers)

                values = [S for span in spans for S in span]
                self.assertEqual(len(values), len(set(values)))
                self.assertEqual(sorted(values), list(range(s_min, s_max + 1)))

    def test_partition_strides(self):
        spans = jobs.partition(2, 11, 3)
        self.assertEqual([list(span) for span in spans], [[2, 5, 8, 11], [3, 6, 9], [4, 7, 10]])

    def test_partition_needs_a_worker(self):
        with self.assertRaises(ValueError):
            jobs.partition(2, 5, 0)

    def test_task_lines_in_order(self):
        result = jobs.task(0, range(3, 6), PochhammerCache())

        self.assertEqual(result.worker, 0)
        self.assertFalse(result.fail)
        self.assertEqual([line.split(' ')[:2] for line in result.lines], [
            ['S=3', 'm=2'],
            ['S=4', 'm=2'], ['S=4', 'm=3'],
            ['S=5', 'm=2'], ['S=5', 'm=3'], ['S=5', 'm=4'],
        ])
        self.assertEqual(result.lines[0], 'S=3 m=2 1/3 1/9')
        # one coefficient per d
        self.assertEqual(len(result.lines[-1].split(' ')), 2 + 6)

    def test_task_flags_negative(self):
        result = jobs.task(1, [4, 5, 6], PochhammerCache(), negative_at_five)
        self.assertTrue(result.fail)
        self.assertEqual(len(result.lines), 2 + 3 + 4)

        result = jobs.task(1, [4, 6], PochhammerCache(), negative_at_five)
        self.assertFalse(result.fail)

    def test_aggregate(self):
        results = [
            jobs.WorkerResult(2, False, ['c']),
            jobs.WorkerResult(0, False, ['a1', 'a2']),
            jobs.WorkerResult(1, False, ['b']),
        ]
        report = jobs.aggregate(results)
        self.assertFalse(report.fail)
        self.assertEqual(report.lines, ['a1', 'a2', 'b', 'c'])
        self.assertEqual(report.verdict, 'all coefficients nonnegative')

    def test_aggregate_one_failing_worker(self):
        for failing in range(4):
            results = [jobs.WorkerResult(i, i == failing, []) for i in range(4)]
            report = jobs.aggregate(results)
            self.assertTrue(report.fail)
            self.assertEqual(report.verdict, 'one or more coefficients negative')

    def test_run_matches_workers_in_order(self):
        report = jobs.run(3, 8, 2, self.provider)

        expected = []
        for span in jobs.partition(3, 8, 2):
            expected += jobs.task(0, span, PochhammerCache()).lines

        self.assertEqual(report.lines, expected)
        self.assertEqual(report.lines[0], 'S=3 m=2 1/3 1/9')

    def test_run_does_not_depend_on_worker_count(self):
        single = jobs.run(3, 9, 1, self.provider)
        for workers in [2, 3, 8]:
            report = jobs.run(3, 9, workers, self.provider)
            self.assertEqual(report.fail, single.fail)
            self.assertEqual(sorted(report.lines), sorted(single.lines))

    def test_run_with_one_failing_worker(self):
        # S=5 only lands on worker 1
        report = jobs.run(4, 7, 3, self.provider, formula=negative_at_five)
        self.assertTrue(report.fail)

        report = jobs.run(6, 9, 3, self.provider, formula=negative_at_five)
        self.assertFalse(report.fail)

    def test_run_with_direct_formula_and_verify(self):
        factored = jobs.run(3, 7, 2, self.provider)
        direct = jobs.run(3, 7, 2, self.provider, formula=algorithms.direct)
        verified = jobs.run(3, 7, 2, self.provider, verify=True)

        self.assertEqual(factored, direct)
        self.assertEqual(factored, verified)

    def test_run_propagates_worker_errors(self):
        with self.assertRaises(RuntimeError):
            jobs.run(3, 6, 2, self.provider, formula=broken)

    def test_each_worker_gets_its_own_cache(self):
        provider = mock.Mock(wraps=self.provider)
        provider.name = 'local'

        jobs.run(3, 6, 3, provider)

        self.assertEqual(sorted(call.args[0] for call in provider.acquire.call_args_list), [0, 1, 2])

    def test_streaming(self):
        stream = io.StringIO()
        report = jobs.run(3, 9, 3, self.provider, sink=jobs.OutputSink(stream))
        buffered = jobs.run(3, 9, 3, self.provider)

        self.assertEqual(report.lines, [])
        self.assertEqual(report.fail, buffered.fail)

        lines = stream.getvalue().splitlines()
        self.assertEqual(len(lines), len(set(lines)))
        self.assertEqual(sorted(lines), sorted(buffered.lines))

    def test_try_flush_never_waits(self):
        stream = io.StringIO()
        sink = jobs.OutputSink(stream)

        sink.lock.acquire()
        try:
            self.assertFalse(sink.try_flush(['S=3 m=2 1/3 1/9']))
        finally:
            sink.lock.release()
        self.assertEqual(stream.getvalue(), '')

        self.assertTrue(sink.try_flush(['S=3 m=2 1/3 1/9']))
        sink.flush(['S=4 m=2 1/3 1/12'])
        self.assertEqual(stream.getvalue(), 'S=3 m=2 1/3 1/9\nS=4 m=2 1/3 1/12\n')

    def test_task_keeps_buffer_while_sink_is_busy(self):
        stream = io.StringIO()
        sink = jobs.OutputSink(stream)
        done = threading.Event()
        results = []

        def worker():
            results.append(jobs.task(0, range(3, 6), PochhammerCache(), sink=sink))
            done.set()

        # hold the lock so every boundary flush is skipped, then let the final flush through
        sink.lock.acquire()
        thread = threading.Thread(target=worker)
        thread.start()
        self.assertFalse(done.wait(0.5))
        self.assertEqual(stream.getvalue(), '')
        sink.lock.release()
        thread.join()

        self.assertEqual(results[0].lines, [])
        self.assertEqual(len(stream.getvalue().splitlines()), 1 + 2 + 3)


class TestConfig(unittest.TestCase):

    def test_parse_workers(self):
        self.assertEqual(config.parse_workers('3'), 3)
        self.assertEqual(config.parse_workers('0'), cpu_count())
        self.assertEqual(config.parse_workers(None), cpu_count())

    def test_bad_worker_count_is_ignored(self):
        with self.assertLogs('config', level='WARNING'):
            self.assertEqual(config.parse_workers('lots'), cpu_count())

    def test_reload_with_bad_worker_count(self):
        try:
            with mock.patch.dict(os.environ, {'TURAN_WORKERS': 'lots'}):
                importlib.reload(config)
                self.assertEqual(config.workers, cpu_count())
        finally:
            importlib.reload(config)


class TestCommands(unittest.TestCase):

    def setUp(self):
        self.runner = CliRunner()

    def invoke(self, args):
        return self.runner.invoke(commands.coefficients, args)

    def test_report(self):
        result = self.invoke(['3', '4', '-w', '2'])

        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.output,
            'all coefficients nonnegative\n'
            '\n'
            'S=3 m=2 1/3 1/9\n'
            'S=4 m=2 1/3 1/12\n'
            'S=4 m=3 5/12 47/72 1/3 1/16\n')

    def test_empty_range(self):
        # m = S = 2 is skipped
        result = self.invoke(['2', '2'])
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.output, 'all coefficients nonnegative\n\n')

    def test_negative_verdict_still_exits_zero(self):
        with mock.patch.object(algorithms, 'get_formula', return_value=negative_at_five):
            result = self.invoke(['4', '6'])

        self.assertEqual(result.exit_code, 0)
        self.assertTrue(result.output.startswith('one or more coefficients negative\n\n'))

    def test_stream(self):
        result = self.invoke(['3', '4', '--stream', '-w', '2'])

        self.assertEqual(result.exit_code, 0)
        lines = result.output.splitlines()
        self.assertEqual(lines[-2:], ['', 'all coefficients nonnegative'])
        self.assertEqual(sorted(lines[:-2]), [
            'S=3 m=2 1/3 1/9',
            'S=4 m=2 1/3 1/12',
            'S=4 m=3 5/12 47/72 1/3 1/16',
        ])

    def test_options(self):
        expected = self.invoke(['3', '6', '-w', '1']).output

        for args in [['--formula', 'direct'], ['--verify'], ['-w', '4'], ['--log-level', 'ERROR']]:
            result = self.invoke(['3', '6'] + args)
            self.assertEqual(result.exit_code, 0, args)
            self.assertEqual(sorted(result.output.splitlines()), sorted(expected.splitlines()), args)

    def test_usage(self):
        for args in [[], ['3'], ['2', '3', '4'], ['1', '5'], ['5', '3'], ['a', 'b'], ['3', '4.5'], ['-3', '5'], ['3', '5', '-w', '0']]:
            with mock.patch.object(jobs, 'run') as run:
                result = self.invoke(args)

            self.assertEqual(result.exit_code, 1, args)
            self.assertIn('usage: coefficients S_MIN S_MAX', result.output, args)
            self.assertNotIn('coefficients nonnegative', result.output, args)
            run.assert_not_called()

    def test_parse_bounds(self):
        self.assertEqual(commands.parse_bounds(('2', '10')), (2, 10))
        self.assertEqual(commands.parse_bounds(('7', '7')), (7, 7))
        for bounds in [('1', '3'), ('4', '3'), ('x', '3'), ('3',)]:
            with self.assertRaises(ValueError):
                commands.parse_bounds(bounds)


if __name__ == '__main__':
    unittest.main()
