import logging
import logging.handlers
import os
from pathlib import Path

from termcolor import colored


class ColoredFormatter(logging.Formatter):
    """
    Formatter that colors and bolds the entire log record (level, module, message),
    while leaving the timestamp in default color.
    """
    MODULE_COLORS = {
        'main':           {'color': 'light_grey', 'attrs': ['bold']},
        'lifecycle':      {'color': 'light_green', 'attrs': ['bold']},
        'mount_detector': {'color': 'cyan', 'attrs': ['bold']},
        'storage':        {'color': 'blue', 'attrs': ['bold']},
        'symlinks':       {'color': 'light_blue', 'attrs': ['bold']},
        'bookmarks':      {'color': 'light_yellow', 'attrs': ['bold']},
        'state_store':    {'color': 'white', 'attrs': ['bold']},
        'device_name':    {'color': 'light_cyan', 'attrs': ['bold']},
        'notifier':       {'color': 'green', 'attrs': ['bold']},
    }

    LEVEL_COLORS = {
        'INFO': 'green',
        'WARNING': 'yellow',
        'ERROR': 'red',
        'CRITICAL': 'red',
    }
    # warnings and errors keep their level colour whatever module they come from
    LEVEL_OVERRIDES = ('WARNING', 'ERROR', 'CRITICAL')
    MAX_MODULE_LENGTH = 15

    def format(self, record):
        asctime = self.formatTime(record, self.datefmt)
        timestamp = f"{asctime}.{int(record.msecs):03d}"

        level = record.levelname
        module_name = record.module.strip()
        padded_module = module_name.ljust(self.MAX_MODULE_LENGTH)

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        module_info = self.MODULE_COLORS.get(module_name)
        if module_info and level not in self.LEVEL_OVERRIDES:
            color = module_info['color']
            attrs = module_info['attrs']
        else:
            color = self.LEVEL_COLORS.get(level, 'dark_grey')
            attrs = ['bold']

        record_text = f"{level}: {padded_module} {message}"
        colored_record = colored(record_text, color, attrs=attrs)

        return f"{timestamp}: {colored_record}"


LOG_FORMAT = '%(asctime)s.%(msecs)03d: %(levelname)s: %(module)s %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def configure_logging(level=logging.INFO, log_file=None,
                      max_bytes: int = 1024 * 1024, backup_count: int = 5):
    """
    Reset the root logger to a colored console handler plus, when
    *log_file* is given, a size-rotated plain text file.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger()
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        try:
            os.makedirs(log_file.parent, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        except OSError as e:
            logging.warning("Cannot open log file %s: %s – console only", log_file, e)
        else:
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
            logger.addHandler(file_handler)

    return logger
