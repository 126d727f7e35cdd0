import json

import pytest

from tamperguard.config import (
    ClassifierConfig, PipelineConfig, PowerConfig, ResponseConfig, TimingConfig
)
from tamperguard.core import ConfigError, ResponseLevel, ThreatLevel


def test_defaults_are_valid() -> None:
    config = PipelineConfig()
    assert config.classifier.critical_threshold == 200
    assert config.response.level_map[ThreatLevel.HIGH] == ResponseLevel.ISOLATE
    assert config.forensic.slots == 16


@pytest.mark.parametrize(
    "factory",
    [
        lambda: PowerConfig(shift=9),
        lambda: PowerConfig(warmup_samples=0),
        lambda: TimingConfig(sync_stages=1),
        lambda: TimingConfig(glitch_threshold=1, drift_threshold=1),
        lambda: ClassifierConfig(low_threshold=40, medium_threshold=30),
        lambda: ClassifierConfig(weights={'unknown_flag': 3}),
        lambda: ResponseConfig(isolation_mask=0x100),
        lambda: ResponseConfig(level_map={'NONE': 'LOG'}),
        lambda: ResponseConfig(level_map={'NONE': 'IDLE', 'LOW': 'HOLD', 'MEDIUM': 'ALERT',
                                          'HIGH': 'ISOLATE', 'CRITICAL': 'LOCKDOWN'}),
    ],
)
def test_invalid_values_raise_config_error(factory) -> None:
    with pytest.raises(ConfigError):
        factory()


def test_config_error_is_a_value_error() -> None:
    assert issubclass(ConfigError, ValueError)


def test_round_trip_through_dict() -> None:
    config = PipelineConfig.from_dict({
        'power': {'glitch_threshold': 300},
        'classifier': {'hysteresis_window': 8},
        'response': {'level_map': {'NONE': 'IDLE', 'LOW': 'LOG', 'MEDIUM': 'THROTTLE',
                                   'HIGH': 'ISOLATE', 'CRITICAL': 'LOCKDOWN'}},
    })
    assert config.power.glitch_threshold == 300
    assert config.response.level_map[ThreatLevel.MEDIUM] == ResponseLevel.THROTTLE

    again = PipelineConfig.from_dict(json.loads(json.dumps(config.to_dict())))
    assert again == config


def test_unknown_section_or_key_raises() -> None:
    with pytest.raises(ConfigError):
        PipelineConfig.from_dict({'radio': {}})
    with pytest.raises(ConfigError):
        PipelineConfig.from_dict({'power': {'gain': 2}})
    with pytest.raises(ConfigError):
        PipelineConfig.from_dict({'power': 5})


def test_module_counts_must_match() -> None:
    with pytest.raises(ConfigError):
        PipelineConfig.from_dict({'recovery': {'module_count': 4}})


def test_save_and_load(tmp_path) -> None:
    path = tmp_path / 'nested' / 'config.json'
    config = PipelineConfig.from_dict({'fusion': {'corr_window': 16}})
    config.save(path)
    assert PipelineConfig.load(path).fusion.corr_window == 16


def test_load_rejects_bad_json(tmp_path) -> None:
    path = tmp_path / 'config.json'
    path.write_text('{not json')
    with pytest.raises(ConfigError):
        PipelineConfig.load(path)

    path.write_text('[1, 2]')
    with pytest.raises(ConfigError):
        PipelineConfig.load(path)
