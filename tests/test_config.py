"""
Tests for configuration normalization
"""

from pathlib import Path

import pytest

from forgeserve.core.config import (
    DEFAULT_HMR_PATH,
    DEFAULT_HMR_PORT,
    DEFAULT_PORT,
    HmrOptions,
    UserServerConfig,
    disk_base_path,
    load_user_config,
    normalize_dev_server_options,
    normalize_public_dir,
    runtime_public_path,
)
from forgeserve.exceptions import ConfigurationError


class TestNormalizeDevServerOptions:
    """Test server option defaults and validation"""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("FORGESERVE_PORT", "FORGESERVE_HOST", "FORGESERVE_HMR_PORT", "FORGESERVE_PROFILE"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        config = normalize_dev_server_options()

        assert config.port == DEFAULT_PORT
        assert config.host == "localhost"
        assert config.protocol == "http"
        assert config.hostname == "localhost"
        assert config.strict_port is False
        assert config.hmr_enabled
        assert config.hmr.port == DEFAULT_HMR_PORT
        assert config.hmr.path == DEFAULT_HMR_PATH
        assert config.profile is False

    def test_wildcard_host_is_browsable(self):
        config = normalize_dev_server_options({"host": "0.0.0.0", "port": 3000})

        assert config.host == "0.0.0.0"
        assert config.hostname == "localhost"
        assert config.url() == "http://localhost:3000/"

    def test_https_protocol(self):
        config = normalize_dev_server_options(UserServerConfig(
            https=True, port=8443, ssl_certfile="cert.pem", ssl_keyfile="key.pem"
        ))

        assert config.protocol == "https"
        assert config.url("/app/") == "https://localhost:8443/app/"

    def test_https_without_certificates_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_dev_server_options({"https": True})

        assert exc_info.value.config_key == "https"

    def test_certificates_without_https_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_dev_server_options({"sslCertfile": "cert.pem", "sslKeyfile": "key.pem"})

        assert exc_info.value.config_key == "ssl_certfile"

    @pytest.mark.parametrize("name", ["FORGESERVE_PORT", "FORGESERVE_HMR_PORT"])
    def test_non_numeric_env_port_rejected(self, monkeypatch, name):
        monkeypatch.setenv(name, "abc")

        with pytest.raises(ConfigurationError) as exc_info:
            normalize_dev_server_options()

        assert exc_info.value.config_key == name

    def test_negative_port_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_dev_server_options({"port": -1})

        assert exc_info.value.config_key == "port"

    def test_unknown_option_rejected(self):
        with pytest.raises(ConfigurationError):
            normalize_dev_server_options({"notAnOption": True})

    def test_camel_case_keys(self):
        config = normalize_dev_server_options({"strictPort": True, "writeToDisk": True})

        assert config.strict_port is True
        assert config.write_to_disk is True

    def test_hmr_disabled(self):
        config = normalize_dev_server_options({"hmr": False})

        assert config.hmr is False
        assert not config.hmr_enabled

    def test_partial_hmr_options_get_defaults(self):
        config = normalize_dev_server_options({"hmr": {"port": 9900}})

        assert isinstance(config.hmr, HmrOptions)
        assert config.hmr.port == 9900
        assert config.hmr.path == DEFAULT_HMR_PATH
        assert config.hmr.host == "localhost"

    def test_hmr_host_follows_server_host(self):
        config = normalize_dev_server_options({"host": "127.0.0.1", "hmr": {"port": 9900}})
        explicit = normalize_dev_server_options({"host": "127.0.0.1", "hmr": {"host": "0.0.0.0"}})

        assert config.hmr.host == "127.0.0.1"
        assert explicit.hmr.host == "0.0.0.0"

    def test_env_fallbacks(self, monkeypatch):
        monkeypatch.setenv("FORGESERVE_PORT", "7000")
        monkeypatch.setenv("FORGESERVE_HMR_PORT", "7001")
        monkeypatch.setenv("FORGESERVE_PROFILE", "1")

        config = normalize_dev_server_options()

        assert config.port == 7000
        assert config.hmr.port == 7001
        assert config.profile is True

    def test_explicit_values_beat_env(self, monkeypatch):
        monkeypatch.setenv("FORGESERVE_PORT", "7000")

        assert normalize_dev_server_options({"port": 3000}).port == 3000

    def test_proxy_rules_longest_prefix_first(self):
        config = normalize_dev_server_options({
            "proxy": {
                "/api": "http://localhost:8080/",
                "/api/v2": {"target": "http://localhost:8081", "rewrite": "/v2"},
            }
        })

        assert [rule.prefix for rule in config.proxy] == ["/api/v2", "/api"]
        assert config.proxy[1].target == "http://localhost:8080"
        assert config.proxy[0].rewrite == "/v2"

    def test_proxy_prefix_must_be_absolute(self):
        with pytest.raises(ConfigurationError):
            normalize_dev_server_options({"proxy": {"api": "http://localhost:8080"}})

    def test_to_dict_excludes_plugins(self):
        data = normalize_dev_server_options().to_dict()

        assert "plugins" not in data
        assert data["port"] == DEFAULT_PORT


class TestPublicPaths:
    """Test public path derivation"""

    @pytest.mark.parametrize("public_path, expected", [
        (None, "/"),
        ("/", "/"),
        ("assets", "/assets"),
        ("/assets", "/assets"),
        ("https://cdn.example.com/assets", "/"),
        ("//cdn.example.com/assets", "/"),
    ])
    def test_runtime_public_path(self, public_path, expected):
        assert runtime_public_path(public_path) == expected

    def test_disk_base_path_for_absolute_url(self):
        assert disk_base_path("https://cdn.example.com/assets") == ""
        assert disk_base_path("/assets") == "/assets"
        assert disk_base_path(None) == "/"

    def test_public_dir_defaults_to_root_public(self, tmp_path):
        assert normalize_public_dir(tmp_path) == tmp_path.resolve() / "public"
        assert normalize_public_dir(tmp_path, "static") == tmp_path.resolve() / "static"


class TestLoadUserConfig:
    """Test YAML config loading"""

    def test_load_camel_case_yaml(self, tmp_path):
        config_file = tmp_path / "forgeserve.yaml"
        config_file.write_text(
            "root: site\n"
            "compilation:\n"
            "  output:\n"
            "    publicPath: /assets\n"
            "server:\n"
            "  port: 3000\n"
            "  strictPort: true\n"
            "  hmr:\n"
            "    port: 3001\n"
        )

        config = load_user_config(config_file)

        assert config.root == str((tmp_path / "site").resolve())
        assert config.compilation.output.public_path == "/assets"
        assert config.server.port == 3000
        assert config.server.strict_port is True
        assert config.server.hmr.port == 3001

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_user_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "broken.yaml"
        config_file.write_text("server: [unclosed\n")

        with pytest.raises(ConfigurationError):
            load_user_config(config_file)

    def test_non_mapping_yaml(self, tmp_path):
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- 1\n- 2\n")

        with pytest.raises(ConfigurationError):
            load_user_config(config_file)

    def test_invalid_option(self, tmp_path):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("server:\n  port: not-a-port\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_user_config(config_file)

        assert exc_info.value.config_key == "server.port"
