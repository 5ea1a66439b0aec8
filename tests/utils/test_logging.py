# -*- coding: utf-8 -*-
"""Tests for utils/logging.py."""

import logging as std_logging

from utils.logging import LessThanFilter, create_logger


def _record(level):
    return std_logging.LogRecord("warden", level, __file__, 1, "msg", None, None)


def test_less_than_filter():
    flt = LessThanFilter(std_logging.WARNING)
    assert flt.filter(_record(std_logging.INFO))
    assert not flt.filter(_record(std_logging.WARNING))


def test_create_logger_splits_streams():
    logger = create_logger("DEBUG", "warden.test.split")

    handlers = {handler.get_name(): handler for handler in logger.handlers}
    assert set(handlers) == {"stdout", "stderr"}
    assert handlers["stderr"].level == std_logging.WARNING
    assert logger.level == std_logging.DEBUG


def test_create_logger_twice_does_not_duplicate_handlers():
    create_logger("INFO", "warden.test.twice")
    logger = create_logger("WARNING", "warden.test.twice")

    assert len(logger.handlers) == 2
    assert logger.level == std_logging.WARNING
