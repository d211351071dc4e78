#!/usr/bin/env python3
"""
Test suite for tsrename/config.py: YAML loading and per-file override folding
"""

import pytest
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from tsrename.config import RunConfig, DuplicateMode, load_config

CONFIG_YAML = """
dir: "${title}"
file: "${title} #${count2}"
error_dir: "_error"
duplicate_mode: strict
check_time: true
duration_offset: -5
replace:
  - {find: "アニメ ", replace: ""}
services:
  - name: "ＴＯＫＹＯ　ＭＸ"
    channel_id: 19
    channel_name: "MX"
    check_drop: true
  - name: "NHK"
    channel_id: 1
keywords:
  - name: "劇場版"
    check_time: false
    check_duplication: false
  - name: "TVアニメ"
    replace: ""
"""


@pytest.fixture
def config_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / 'config.yaml'
        path.write_text(CONFIG_YAML, encoding='utf-8')
        yield path


class TestLoadConfig:
    """YAML file to RunConfig"""

    def test_values(self, config_file):
        config = load_config(config_file)
        assert config.file == '${title} #${count2}'
        assert config.duplicate_mode is DuplicateMode.STRICT
        assert config.check_time is True
        assert config.duration_offset == -5
        assert config.replace == (('アニメ ', ''),)
        assert config.has_error_output

    def test_rules(self, config_file):
        config = load_config(config_file)
        assert config.services[0].channel_id == 19
        assert config.services[0].overrides == {'check_drop': True}
        assert config.keywords[1].replace == ''
        assert config.keywords[0].overrides == {'check_time': False, 'check_duplication': False}

    def test_defaults_without_file(self):
        config = load_config(None)
        assert config == RunConfig()
        assert config.packet_size == 188
        assert config.duplicate_mode is DuplicateMode.DISAMBIGUATE
        assert not config.has_error_output

    def test_empty_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / 'config.yaml'
            path.write_text('', encoding='utf-8')
            assert load_config(path) == RunConfig()

    def test_legacy_check_duplication_flag(self):
        assert RunConfig.from_dict({'check_duplication': True}).duplicate_mode is DuplicateMode.STRICT


class TestValidation:
    """Invalid values are rejected at load time"""

    def test_bad_packet_size(self):
        with pytest.raises(ValueError):
            RunConfig.from_dict({'packet_size': 200})

    def test_bad_duplicate_mode(self):
        with pytest.raises(ValueError):
            RunConfig.from_dict({'duplicate_mode': 'overwrite'})

    def test_zero_retry_attempts(self):
        with pytest.raises(ValueError):
            RunConfig.from_dict({'retry_attempts': 0})

    @pytest.mark.parametrize('key', ['check_time', 'check_drop', 'dry_run', 'check_duplication'])
    def test_quoted_boolean_rejected(self, key):
        with pytest.raises(ValueError, match=key):
            RunConfig.from_dict({key: 'false'})

    def test_quoted_boolean_in_rule_rejected(self):
        with pytest.raises(ValueError, match='check_time'):
            RunConfig.from_dict({'keywords': [{'name': '劇場版', 'check_time': 'false'}]})

    def test_quoted_boolean_from_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('check_time: "false"\n', encoding='utf-8')
        with pytest.raises(ValueError):
            load_config(path)

    def test_window_end_must_follow_start(self):
        with pytest.raises(ValueError):
            RunConfig(info_start_ratio=0.05, info_window_ratio=0.02)


class TestOverrides:
    """Service and keyword rules fold into a copy"""

    def test_find_service_half_width(self, config_file):
        config = load_config(config_file)
        assert config.find_service('ＴＯＫＹＯ　ＭＸ１').channel_id == 19
        assert config.find_service('TOKYO MX2').channel_name == 'MX'

    def test_unknown_service(self, config_file):
        assert load_config(config_file).find_service('BS11') is None

    def test_overrides_do_not_mutate_base(self, config_file):
        base = load_config(config_file)
        folded = base.with_overrides(base.keywords[0].overrides)
        assert folded.check_time is False
        assert folded.duplicate_mode is DuplicateMode.DISAMBIGUATE
        assert base.check_time is True
        assert base.duplicate_mode is DuplicateMode.STRICT

    def test_empty_overrides_return_same(self):
        config = RunConfig()
        assert config.with_overrides({}) is config

    def test_match_keywords(self, config_file):
        config = load_config(config_file)
        assert [k.name for k in config.match_keywords('劇場版 TVアニメ 探偵')] == ['劇場版', 'TVアニメ']
        assert config.match_keywords('探偵物語') == []
