"""Tests for server inventory management."""
import pytest
import tempfile
import os
from mcp_app_server.config.inventory import ServerInventory
from mcp_app_server.management import HttpManagementClient


class TestServerInventory:
    """Tests for ServerInventory class."""

    @pytest.fixture
    def temp_config(self):
        """Create a temporary config file for testing."""
        config_content = """
defaults:
  type: http
  password_env: "TEST_PASSWORD"
  timeout: 30
  retries: 2

servers:
  local:
    name: "Local standalone"
    host: 127.0.0.1
    username: admin

  domain-dc:
    type: wildfly
    host: dc.example.com
    protocol: https
    port: 9993
    timeout: 120
"""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write(config_content)
            f.flush()
            yield f.name
        os.unlink(f.name)

    def test_load_config(self, temp_config):
        """Inventory loads config file correctly."""
        inv = ServerInventory(temp_config)
        server_ids = inv.get_server_ids()
        assert server_ids == ["local", "domain-dc"]

    def test_get_server_config(self, temp_config):
        """Can get raw server config."""
        inv = ServerInventory(temp_config)
        config = inv.get_server_config("local")
        assert config["type"] == "http"
        assert config["host"] == "127.0.0.1"
        assert config["username"] == "admin"
        # Defaults should be merged
        assert config["timeout"] == 30
        assert config["retries"] == 2

    def test_name_defaults_to_id(self, temp_config):
        """Server name falls back to its id."""
        inv = ServerInventory(temp_config)
        assert inv.get_server_config("local")["name"] == "Local standalone"
        assert inv.get_server_config("domain-dc")["name"] == "domain-dc"

    def test_server_specific_overrides_defaults(self, temp_config):
        """Server-specific values override defaults."""
        inv = ServerInventory(temp_config)
        config = inv.get_server_config("domain-dc")
        assert config["type"] == "wildfly"
        assert config["timeout"] == 120
        assert config["password_env"] == "TEST_PASSWORD"

    def test_get_server_unknown(self, temp_config):
        """Unknown server raises KeyError."""
        inv = ServerInventory(temp_config)
        with pytest.raises(KeyError) as exc_info:
            inv.get_server_config("nonexistent")
        assert "Unknown server" in str(exc_info.value)

    def test_get_client(self, temp_config, monkeypatch):
        """Can create client instances."""
        monkeypatch.setenv("TEST_PASSWORD", "secret")
        inv = ServerInventory(temp_config)
        client = inv.get_client("domain-dc")
        assert isinstance(client, HttpManagementClient)
        assert client.server_id == "domain-dc"
        assert client.config.url == "https://dc.example.com:9993/management"
        assert client.config.get_password() == "secret"
        assert not client.is_connected

    def test_get_client_not_cached(self, temp_config):
        """Each request gets its own client."""
        inv = ServerInventory(temp_config)
        assert inv.get_client("local") is not inv.get_client("local")

    def test_get_servers_by_type(self, temp_config):
        """Can filter servers by type."""
        inv = ServerInventory(temp_config)
        assert inv.get_servers_by_type("wildfly") == ["domain-dc"]
        assert inv.get_servers_by_type("http") == ["local"]

    def test_default_server_ambiguous(self, temp_config):
        """Several servers without a default is an error."""
        inv = ServerInventory(temp_config)
        with pytest.raises(KeyError, match="No server given"):
            inv.default_server_id()


class TestDefaultServer:
    """Tests for default server selection."""

    def test_single_server(self, tmp_path):
        """A single server is the default."""
        config = tmp_path / "servers.yaml"
        config.write_text("servers:\n  only:\n    type: http\n    host: h\n")
        assert ServerInventory(str(config)).default_server_id() == "only"

    def test_server_named_default(self, tmp_path):
        """A server named 'default' is the default."""
        config = tmp_path / "servers.yaml"
        config.write_text(
            "servers:\n"
            "  default:\n    type: http\n    host: a\n"
            "  other:\n    type: http\n    host: b\n"
        )
        assert ServerInventory(str(config)).default_server_id() == "default"

    def test_empty_config(self, tmp_path):
        """An empty file is an empty inventory."""
        config = tmp_path / "servers.yaml"
        config.write_text("")
        inv = ServerInventory(str(config))
        assert inv.get_server_ids() == []
        with pytest.raises(KeyError):
            inv.default_server_id()


class TestServerInventoryNoConfig:
    """Tests for ServerInventory config discovery."""

    def test_env_var(self, tmp_path, monkeypatch):
        """MGMTCRAFT_SERVERS points at the config file."""
        config = tmp_path / "custom.yaml"
        config.write_text("servers:\n  env-server:\n    type: http\n    host: h\n")
        monkeypatch.setenv("MGMTCRAFT_SERVERS", str(config))

        inv = ServerInventory()
        assert inv.config_path == str(config)
        assert inv.get_server_ids() == ["env-server"]

    def test_search_paths(self, tmp_path, monkeypatch):
        """./configs/servers.yaml is found from the working directory."""
        (tmp_path / "configs").mkdir()
        (tmp_path / "configs" / "servers.yaml").write_text(
            "servers:\n  found:\n    type: http\n    host: h\n"
        )
        monkeypatch.delenv("MGMTCRAFT_SERVERS", raising=False)
        monkeypatch.chdir(tmp_path)

        assert ServerInventory().get_server_ids() == ["found"]

    def test_find_config_not_found(self, tmp_path, monkeypatch):
        """FileNotFoundError raised when no config file found."""
        monkeypatch.delenv("MGMTCRAFT_SERVERS", raising=False)
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        with pytest.raises(FileNotFoundError, match="servers.yaml"):
            ServerInventory()

    def test_missing_explicit_path(self):
        """An explicit missing path raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            ServerInventory("/nonexistent/path/servers.yaml")
