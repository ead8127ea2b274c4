"""
Tests for configuration loading and timing helpers.
"""

import logging

import pytest
from omegaconf import OmegaConf

from common_utils.time_tracking import Stopwatch, timeit
from controller.control_utils.config import DEFAULT_CONFIG_PATH, SECTIONS, load_config, read_yaml


class TestConfigLoading:

    def test_defaults_hold_every_section(self):
        cfg = load_config()
        for section in SECTIONS:
            assert section in cfg
        assert cfg["time"]["N"] == 10
        assert cfg["time"]["dt"] == pytest.approx(0.1)
        assert cfg["roadmap"]["malformed_policy"] == "abort"
        assert cfg["solver"]["backend"] == "ipopt"

    def test_overrides_merge_per_key(self):
        cfg = load_config(overrides={"constraints": {"a_min": -3.0}})
        assert cfg["constraints"]["a_min"] == -3.0
        # sibling keys survive
        assert cfg["constraints"]["a_max"] == 1.0

    def test_user_file_on_top_of_defaults(self, tmp_path):
        path = tmp_path / "mpc.yaml"
        OmegaConf.save(OmegaConf.create({"time": {"N": 20}, "reference": {"v_ref": 8.0}}), path)

        cfg = load_config(path, overrides={"time": {"N": 15}})
        assert cfg["time"]["N"] == 15
        assert cfg["time"]["dt"] == pytest.approx(0.1)
        assert cfg["reference"]["v_ref"] == 8.0

    def test_defaults_are_not_mutated(self):
        load_config(overrides={"time": {"N": 3}})
        assert read_yaml(DEFAULT_CONFIG_PATH)["time"]["N"] == 10

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            read_yaml(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")


class TestTimeTracking:

    def test_timeit_keeps_result_and_logs(self, caplog):
        @timeit
        def add(a, b):
            return a + b

        with caplog.at_level(logging.DEBUG, logger="common_utils.time_tracking"):
            assert add(1, 2) == 3
        assert add.__name__ == "add"
        assert any("[TIMEIT]" in record.message for record in caplog.records)

    def test_stopwatch(self):
        with Stopwatch() as watch:
            sum(range(1000))
        assert watch.elapsed >= 0.0
