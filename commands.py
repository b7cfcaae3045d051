import sys
import logging
from datetime import datetime

import click

import algorithms
import cache
import config
import jobs
import utils

log = logging.getLogger(__name__)


def parse_bounds(bounds):
    '''
    Turns the two positional arguments into (S_MIN, S_MAX).  Raises ValueError
    unless there are exactly two integers with 2 <= S_MIN <= S_MAX.
    '''
    if len(bounds) != 2:
        raise ValueError(f'Expected 2 arguments, got {len(bounds)}')

    s_min, s_max = int(bounds[0]), int(bounds[1])

    if s_min < 2 or s_max < s_min:
        raise ValueError(f'Expected 2 <= S_MIN <= S_MAX, got {s_min} {s_max}')

    return s_min, s_max


# Unknown options are passed through as arguments so that something like
# "-3" ends up in the bounds check instead of click's own error handling
@click.argument('bounds', nargs=-1)
@click.option('--workers', '-w', type=int, default=config.workers, show_default=True, help='Number of worker threads')
@click.option('--formula', type=click.Choice(sorted(algorithms.FORMULAS)), default=config.formula, show_default=True, help='How each coefficient is summed')
@click.option('--verify', is_flag=True, default=False, help='Evaluate both formulas and stop if they ever disagree')
@click.option('--stream', is_flag=True, default=False, help='Print lines as workers finish them; the verdict comes last')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']), default=config.log_level, show_default=True)
@click.command(context_settings=dict(ignore_unknown_options=True))
@click.pass_context
def coefficients(ctx, bounds, workers, formula, verify, stream, log_level):
    '''
    Checks that every power series coefficient of

        2F1(2,1-m;S-m+2;-x)^2 - 2F1(1,-m;S-m+1;-x) 2F1(3,2-m;S-m+3;-x)

    is nonnegative for S_MIN <= S <= S_MAX and 2 <= m < S.
    '''
    try:
        s_min, s_max = parse_bounds(bounds)
        if workers < 1:
            raise ValueError(f'Expected at least one worker, got {workers}')
    except ValueError as err:
        click.echo(config.usage, err=True)
        log.debug(err)
        ctx.exit(1)

    utils.configure_logging(log_level)

    start = datetime.now()
    log.info(f'[coefficients] S_MIN:{s_min} S_MAX:{s_max} started at {start}')

    provider = cache.get_provider(config.cache_provider)
    sink = jobs.OutputSink(sys.stdout) if stream else None

    report = jobs.run(s_min, s_max, workers, provider,
        formula=algorithms.get_formula(formula),
        sink=sink,
        verify=verify)

    if stream:
        # the log is already out, the verdict follows it
        click.echo('')
        click.echo(report.verdict)
    else:
        click.echo(report.verdict)
        click.echo('')
        if report.lines:
            click.echo('\n'.join(report.lines))

    log.info(f'Finished in {datetime.now() - start}')
