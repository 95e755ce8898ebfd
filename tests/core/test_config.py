"""Tests for settings parsing and derived values."""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from orderdesk.core.config import Settings


def test_defaults():
    s = Settings(_env_file=None)
    assert s.default_html_price == Decimal("7")
    assert s.default_react_price == Decimal("9")
    assert s.default_vip_extra_price == Decimal("2")
    assert s.actor_header == "X-Actor-Id"


def test_text_extensions_are_normalised():
    s = Settings(_env_file=None, artifact_text_extensions=" .HTML, .css ,,.JS ")
    assert s.artifact_text_extensions_set == {".html", ".css", ".js"}


def test_artifact_max_bytes():
    assert Settings(_env_file=None, artifact_max_size_mb=2).artifact_max_bytes == 2 * 1024 * 1024


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DEFAULT_HTML_PRICE", "12.5")
    monkeypatch.setenv("BULK_MAX_WORKERS", "8")
    s = Settings(_env_file=None)
    assert s.default_html_price == Decimal("12.5")
    assert s.bulk_max_workers == 8


@pytest.mark.parametrize("field", ["bulk_max_workers", "ledger_max_retries"])
def test_positive_counts(field):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: 0})
