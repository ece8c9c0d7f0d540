import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from hpi_installer.config import Config, ConfigError, apply_env, config_path, load_config, save_config


class TestConfigFile(unittest.TestCase):
    def test_missing_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = load_config(Path(td) / "config.json")
        self.assertEqual(cfg, Config())
        self.assertEqual(cfg.download_base, "https://updates.jenkins.io/download")
        self.assertEqual((cfg.timeout_s, cfg.retries, cfg.retry_delay_s, cfg.retry_max_time_s), (20.0, 3, 0.0, 60.0))

    def test_save_then_load(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "nested" / "config.json"
            save_config(Config(update_center_url="https://uc.example.com", retries=5), path)
            cfg = load_config(path)
        self.assertEqual(cfg.update_center_url, "https://uc.example.com")
        self.assertEqual(cfg.retries, 5)

    def test_unknown_keys_are_ignored_and_numbers_coerced(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps({"timeout_s": "12", "something_else": 1}), encoding="utf-8")
            cfg = load_config(path)
        self.assertEqual(cfg.timeout_s, 12.0)

    def test_env_var_selects_config_path(self) -> None:
        with patch.dict("os.environ", {"HPI_INSTALLER_CONFIG_PATH": "/tmp/hpi/config.json"}):
            self.assertEqual(config_path(), Path("/tmp/hpi/config.json"))


class TestApplyEnv(unittest.TestCase):
    def test_classic_environment_names(self) -> None:
        cfg = apply_env(
            Config(),
            {
                "REF": "/var/jenkins_home/ref",
                "JENKINS_UC": "https://uc.example.com",
                "JENKINS_UC_EXPERIMENTAL": "",
                "CURL_RETRY": "5",
                "CURL_CONNECTION_TIMEOUT": "7.5",
            },
        )
        self.assertEqual(cfg.plugins_dir, "/var/jenkins_home/ref/plugins")
        self.assertEqual(cfg.update_center_url, "https://uc.example.com")
        self.assertEqual(cfg.download_base, "https://uc.example.com/download")
        self.assertEqual(cfg.experimental_url, "")
        self.assertEqual(cfg.retries, 5)
        self.assertEqual(cfg.timeout_s, 7.5)

    def test_invalid_number_is_a_config_error(self) -> None:
        with self.assertRaises(ConfigError):
            apply_env(Config(), {"CURL_RETRY": "many"})
        with self.assertRaises(ConfigError):
            apply_env(Config(), {"CURL_RETRY_DELAY": "-1"})


if __name__ == "__main__":
    unittest.main()
