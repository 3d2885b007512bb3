from __future__ import annotations

import logging
import sys

import pytest

from common.logging_setup import HANDLER_NAME, setup_logging


@pytest.fixture()
def clean_root():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    root.handlers = saved_handlers
    root.setLevel(saved_level)


def _ours(root: logging.Logger):
    return [h for h in root.handlers if h.get_name() == HANDLER_NAME]


def test_setup_logging_is_idempotent_and_quiets_httpx(clean_root: logging.Logger):
    setup_logging("debug")
    setup_logging("INFO")

    ours = _ours(clean_root)
    assert len(ours) == 1
    assert ours[0].stream is sys.stdout
    assert clean_root.level == logging.INFO
    assert logging.getLogger("httpx").level == logging.WARNING


def test_foreign_handlers_do_not_block_stdout(clean_root: logging.Logger):
    other = logging.NullHandler()
    clean_root.addHandler(other)

    setup_logging()

    assert other in clean_root.handlers
    assert len(_ours(clean_root)) == 1


def test_unknown_level_falls_back_to_info(clean_root: logging.Logger):
    setup_logging("chatty")
    assert clean_root.level == logging.INFO
