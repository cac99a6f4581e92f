"""UTC helpers used by escalation timing"""
from datetime import datetime

from expenseflow.domain.models import EscalationSettings
from expenseflow.config.settings import settings
from expenseflow.utils.time import format_iso, hours_since, parse_iso

from tests.conftest import T0, hours_after_t0


def test_parse_iso_accepts_z_suffix_and_naive_values():
    assert parse_iso("2026-03-02T09:00:00Z") == T0
    assert parse_iso("2026-03-02T09:00:00") == T0
    assert parse_iso("2026-03-02T11:00:00+02:00") == T0


def test_format_iso_uses_z_suffix():
    assert format_iso(T0) == "2026-03-02T09:00:00Z"
    assert format_iso(datetime(2026, 3, 2, 9)) == "2026-03-02T09:00:00Z"


def test_hours_since():
    assert hours_since(T0, now=hours_after_t0(49)) == 49
    assert hours_since(hours_after_t0(2), now=T0) == -2
    assert hours_since(T0.replace(tzinfo=None), now=hours_after_t0(1.5)) == 1.5


def test_escalation_window_defaults_to_setting():
    assert EscalationSettings().escalation_time_hours == settings.default_escalation_hours
    assert EscalationSettings(escalation_time_hours=4).escalation_time_hours == 4
