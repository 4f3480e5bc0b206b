from dataclasses import replace
from datetime import timedelta

from tronrelay.config import TronTxmConfig


def test_defaults_are_unset():
    config = TronTxmConfig()
    assert config.broadcast_chan_size == 0
    assert config.energy_multiplier == 0.0
    assert config.retention_period == timedelta(0)


def test_values_are_kept():
    config = TronTxmConfig(
        broadcast_chan_size=100,
        confirm_poll_secs=2,
        energy_multiplier=1.5,
        fixed_energy_value=5000,
        retention_period=timedelta(seconds=10),
        reap_interval=timedelta(seconds=1),
    )
    assert config.broadcast_chan_size == 100
    assert config.confirm_poll_secs == 2
    assert config.energy_multiplier == 1.5
    assert config.fixed_energy_value == 5000
    assert config.retention_period == timedelta(seconds=10)
    assert config.reap_interval == timedelta(seconds=1)


def test_equality_follows_fields():
    first = TronTxmConfig(broadcast_chan_size=10, confirm_poll_secs=1)
    second = TronTxmConfig(broadcast_chan_size=10, confirm_poll_secs=1)
    assert first == second
    changed = replace(first, energy_multiplier=2.0)
    assert (changed == first) is False
    assert changed.broadcast_chan_size == first.broadcast_chan_size


def test_config_is_mutable():
    config = TronTxmConfig()
    config.energy_multiplier = 1.5
    assert config.energy_multiplier == 1.5