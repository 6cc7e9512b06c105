"""Settings and logging setup — pure, no DB."""

import logging

import pytest

from biblio.core.config import Settings
from biblio.core.errors import Forbidden, LibraryError, StoreFailure, Unauthorized
from biblio.core.logging import setup_logging


def test_cors_origins_deduplicated_in_order():
    s = Settings(
        FRONTEND_URL="http://localhost:3000",
        EXTRA_CORS_ORIGINS=" https://staging.example.com , ,http://localhost:5173",
    )
    origins = s.cors_origins
    assert origins[0] == "http://localhost:3000"
    assert origins.count("http://localhost:5173") == 1
    assert origins[-1] == "https://staging.example.com"
    assert "" not in origins


def test_cors_regex_disabled_when_blank():
    assert Settings(CORS_ORIGIN_REGEX="  ").cors_origin_regex is None


@pytest.mark.parametrize(
    "env, override, expected",
    [
        ("development", "", "DEBUG"),
        ("production", "", "INFO"),
        ("production", "warning", "WARNING"),
    ],
)
def test_log_level(env, override, expected):
    assert Settings(APP_ENV=env, LOG_LEVEL=override).log_level == expected


def test_setup_logging_quiets_chatty_loggers():
    setup_logging("INFO")
    assert logging.getLogger().level == logging.INFO
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_error_defaults():
    err = StoreFailure()
    assert (err.status_code, err.code) == (500, "store_failure")
    assert err.detail == StoreFailure.default_detail
    assert isinstance(Forbidden(), Unauthorized)
    assert isinstance(Forbidden(), LibraryError)
    assert Forbidden("nope").detail == "nope"
