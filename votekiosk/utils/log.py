"""日志配置"""

import logging
import os

from contextlib import contextmanager
from typing import Optional

logging.basicConfig(level=logging.INFO)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name):
    """获取日志记录器"""
    logger = logging.getLogger(name)
    return logger


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Reset the root handlers for a CLI run (console, plus an optional audit file)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(console)

    if log_file:
        parent = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(parent, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(fh)


@contextmanager
def suppress_fds():
    """Redirect FD 1 and 2 to /dev/null while a native model loads.

    onnxruntime/insightface print from C code, bypassing sys.stdout/sys.stderr.
    """
    devnull = os.open(os.devnull, os.O_RDWR)
    old_stdout = os.dup(1)
    old_stderr = os.dup(2)
    try:
        os.dup2(devnull, 1)
        os.dup2(devnull, 2)
        yield
    finally:
        os.dup2(old_stdout, 1)
        os.dup2(old_stderr, 2)
        os.close(devnull)
        os.close(old_stdout)
        os.close(old_stderr)
