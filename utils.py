import sys
import logging


class bcolors:
    HEADER = '\033[95m'
    OKBLUE = '\033[94m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'
    UNDERLINE = '\033[4m'


class CustomConsoleFormatter(logging.Formatter):
    """
    Modify the way DEBUG messages are displayed.

    """
    def __init__(self, fmt="[%(module)s.%(funcName)s] %(asctime)s: %(message)s"):
        logging.Formatter.__init__(self, fmt=fmt)

    def format(self, record):

        if record.levelno == logging.DEBUG:
            color = bcolors.OKGREEN
        elif record.levelno == logging.INFO:
            color = bcolors.OKBLUE
        elif record.levelno == logging.WARNING:
            color = bcolors.WARNING
        elif record.levelno >= logging.ERROR:
            color = bcolors.FAIL
        else:
            color = ''

        # Call the original formatter to do the grunt work
        result = logging.Formatter.format(self, record)

        return f'{color}{result}{bcolors.ENDC}' if color else result


def configure_logging(level):
    '''
    Sends log records to stderr (stdout carries the report) through the
    coloured formatter.  Calling it again replaces the previous handler.
    '''
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(CustomConsoleFormatter())

    logging.basicConfig(level=level, handlers=[console_handler], force=True)


def get_funcs(module, attribute):
    '''
    Collects the functions in module tagged with the given attribute, keyed by
    the attribute's value.
    '''
    result = {}
    funcs = [fn for fn in vars(module).values() if callable(fn) and hasattr(fn, attribute)]
    for fn in funcs:
        key = getattr(fn, attribute)
        if key in result:
            raise Exception(f'Duplicate {attribute} {key} in {module.__name__}')
        result[key] = fn

    return result


if __name__ == '__main__':

    # Set up a logger
    my_logger = logging.getLogger("my_custom_logger")
    configure_logging(logging.DEBUG)

    my_logger.debug("This is a DEBUG-level message")
    my_logger.info("This is an INFO-level message")
    my_logger.warning("this is also a warning")
    my_logger.error("this is an error")
