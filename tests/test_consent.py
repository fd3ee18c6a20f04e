import pytest

from conftest import FlakyStore
from factsync.adapters import InMemoryStore
from factsync.consent import ConsentGate
from factsync.errors import ConsentDisabled


@pytest.mark.parametrize(
    "stored, default, expected",
    [
        ({}, True, True),
        ({}, False, False),
        ({"shareAnalytics": True}, False, True),
        ({"shareAnalytics": False}, True, False),
    ],
)
def test_is_enabled(stored, default, expected):
    gate = ConsentGate(InMemoryStore(stored), default=default)

    assert gate.is_enabled() is expected


def test_flag_is_read_on_every_check():
    settings = InMemoryStore({"shareAnalytics": True})
    gate = ConsentGate(settings)
    assert gate.is_enabled()

    settings.set({"shareAnalytics": False})

    assert not gate.is_enabled()
    with pytest.raises(ConsentDisabled):
        gate.require()


def test_unreadable_settings_keep_gate_closed():
    settings = FlakyStore()
    settings.fail_get = True

    assert ConsentGate(settings).is_enabled() is False
