import pytest

from stackrecon import config


class TestEnvironmentParsing:
    @pytest.mark.parametrize(
        "value,expected", [("1", True), ("true", True), ("0", False), ("", None)]
    )
    def test_parse_boolean_env(self, monkeypatch, value, expected):
        monkeypatch.setenv("SR_TEST_FLAG", value)
        assert config.parse_boolean_env("SR_TEST_FLAG") is expected

    def test_is_env_true(self, monkeypatch):
        monkeypatch.setenv("SR_TEST_FLAG", "True")
        assert config.is_env_true("SR_TEST_FLAG")
        monkeypatch.setenv("SR_TEST_FLAG", "yes")
        assert not config.is_env_true("SR_TEST_FLAG")

    def test_is_env_not_false(self, monkeypatch):
        monkeypatch.delenv("SR_TEST_FLAG", raising=False)
        assert config.is_env_not_false("SR_TEST_FLAG")
        monkeypatch.setenv("SR_TEST_FLAG", "0")
        assert not config.is_env_not_false("SR_TEST_FLAG")

    def test_parse_number_env(self, monkeypatch):
        monkeypatch.delenv("SR_TEST_NUMBER", raising=False)
        assert config.parse_number_env("SR_TEST_NUMBER", 2.5) == 2.5
        monkeypatch.setenv("SR_TEST_NUMBER", "10")
        assert config.parse_number_env("SR_TEST_NUMBER", 2.5) == 10.0
        assert config.parse_number_env("SR_TEST_NUMBER", 2, cast=int) == 10
        monkeypatch.setenv("SR_TEST_NUMBER", "ten")
        assert config.parse_number_env("SR_TEST_NUMBER", 2.5) == 2.5

    def test_eval_log_type(self, monkeypatch):
        monkeypatch.setenv("SR_LOG", "DEBUG")
        assert config.eval_log_type("SR_LOG") == "debug"
        monkeypatch.setenv("SR_LOG", "verbose")
        assert config.eval_log_type("SR_LOG") is False


class TestProfiles:
    @pytest.fixture
    def profile_dir(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "CONFIG_DIR", str(tmp_path))
        (tmp_path / "default.env").write_text("SR_TEST_REGION=eu-west-1\n")
        (tmp_path / "ci.env").write_text("SR_TEST_REGION=eu-central-1\nSR_TEST_WORKERS=2\n")
        return tmp_path

    def test_default_profile(self, profile_dir):
        env = {}
        assert config.load_environment(env=env) == ["default"]
        assert env == {"SR_TEST_REGION": "eu-west-1"}

    def test_multiple_profiles(self, profile_dir):
        env = {}
        assert config.load_environment("default, ci", env=env) == ["default", "ci"]
        assert env == {"SR_TEST_REGION": "eu-central-1", "SR_TEST_WORKERS": "2"}

    def test_environment_takes_precedence(self, profile_dir):
        env = {"SR_TEST_REGION": "us-west-2"}
        config.load_environment("ci", env=env)
        assert env == {"SR_TEST_REGION": "us-west-2", "SR_TEST_WORKERS": "2"}

    def test_missing_profile(self, profile_dir):
        env = {}
        config.load_environment("unknown", env=env)
        assert env == {}
