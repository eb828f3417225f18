# ==============================================================================
# CONFIGURATION TESTS
# ==============================================================================
# Tests for file + environment resolution, validation and quick configs
# ==============================================================================

import json

import pytest
from pydantic import ValidationError

from polystore.core.config import (
    BackendKind,
    CacheDescriptor,
    Config,
    DatabaseDescriptor,
    MongoDescriptor,
    ServerDescriptor,
    env_overrides,
    load_config_file,
    quick_config,
    resolve_config,
    validate_config,
    validate_database,
    validate_mongodb,
    validate_server,
)
from polystore.core.exceptions import ConfigError, ConfigErrorKind


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "database:\n"
        "  type: postgresql\n"
        "  host: file-host\n"
        "  port: 5432\n"
        "  name: app\n"
        "  max_pool_size: 20\n"
        "server:\n"
        "  port: 9090\n"
        "logger:\n"
        "  level: warn\n",
        encoding="utf-8",
    )
    return path


class TestResolveConfig:
    """Tests for merging file and environment sources."""

    def test_file_values_are_loaded(self, config_file):
        """Test values from a YAML file reach the Config."""
        config = resolve_config(config_file, env={})

        assert config.database.type == BackendKind.POSTGRES
        assert config.database.host == "file-host"
        assert config.database.max_pool_size == 20
        assert config.server.port == 9090
        assert config.logger.level == "warn"

    def test_environment_overrides_file(self, config_file):
        """Test a key present in both sources takes the environment value."""
        env = {"DATABASE_HOST": "env-host", "SERVER_PORT": "7000", "LOG_LEVEL": "ERROR"}

        config = resolve_config(config_file, env=env)

        assert config.database.host == "env-host"
        assert config.server.port == 7000
        assert config.logger.level == "error"
        # Untouched file values survive
        assert config.database.name == "app"

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        """Test a missing file is not an error."""
        config = resolve_config(tmp_path / "absent.yaml", env={})

        assert config == Config()
        assert config.database.host == "localhost"
        assert config.server.address() == ":8080"

    def test_environment_only(self):
        """Test resolution with no file at all."""
        config = resolve_config(env={"DATABASE_URL": "postgresql://u:p@db/app"})

        assert config.database.url == "postgresql://u:p@db/app"

    def test_json_file(self, tmp_path):
        """Test JSON files are read with the json loader."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"redis": {"url": "redis://cache:6379/1"}}), encoding="utf-8")

        config = resolve_config(path, env={})

        assert config.redis.url == "redis://cache:6379/1"
        assert config.redis.declared

    def test_mapping_source(self):
        """Test an already-loaded mapping is accepted as the file source."""
        config = resolve_config({"database": {"type": "sqlite", "url": "sqlite:///x.db"}}, env={})

        assert config.database.type == BackendKind.SQLITE

    def test_first_non_empty_alias_wins(self):
        """Test MONGO_URI falls through to MONGODB_URI when empty."""
        env = {"MONGO_URI": "", "MONGODB_URI": "mongodb://second:27017"}

        config = resolve_config(env=env)

        assert config.mongodb.uri == "mongodb://second:27017"

    def test_primary_alias_preferred(self):
        env = {"LOGGER_LEVEL": "debug", "LOG_LEVEL": "error"}

        assert env_overrides(env) == {"logger": {"level": "debug"}}

    def test_server_tls_from_environment(self):
        env = {"SERVER_TLS": "true", "SERVER_CERT_FILE": "c.pem", "SERVER_KEY_FILE": "k.pem"}

        config = resolve_config(env=env)

        assert config.server.tls is True

    def test_invalid_port_is_invalid_value(self):
        """Test a non-numeric port surfaces as ConfigError(INVALID_VALUE)."""
        with pytest.raises(ConfigError) as exc_info:
            resolve_config(env={"DATABASE_PORT": "not-a-port"})

        assert exc_info.value.kind == ConfigErrorKind.INVALID_VALUE
        assert exc_info.value.field == "database.port"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ConfigError) as exc_info:
            resolve_config(env={"LOG_LEVEL": "chatty"})

        assert exc_info.value.kind == ConfigErrorKind.INVALID_VALUE

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("database: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigError) as exc_info:
            load_config_file(path)

        assert exc_info.value.kind == ConfigErrorKind.INVALID_VALUE

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_config_file(path)

    def test_empty_section(self, tmp_path):
        """Test a section written with no keys falls back to defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("database:\nserver:\n  port: 9000\n", encoding="utf-8")

        config = resolve_config(path, env={})

        assert config.database == DatabaseDescriptor()
        assert config.server.port == 9000

    def test_empty_section_with_environment(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("database:\n", encoding="utf-8")

        config = resolve_config(path, env={"DATABASE_HOST": "db.local"})

        assert config.database.host == "db.local"

    def test_validation_can_be_skipped(self):
        """Test validate=False returns a Config that would fail validation."""
        env = {"SERVER_TLS": "true"}

        config = resolve_config(env=env, validate=False)

        assert config.server.tls is True
        with pytest.raises(ConfigError):
            validate_config(config)

    def test_config_is_frozen(self):
        config = resolve_config(env={})

        with pytest.raises(ValidationError):
            config.database.host = "elsewhere"

    def test_source_mapping_not_mutated(self):
        source = {"mongodb": {"uri": "mongodb://m:27017/app"}}

        resolve_config(source, env={})

        assert source == {"mongodb": {"uri": "mongodb://m:27017/app"}}


class TestBackfill:
    """Tests for backfilling the relational descriptor from a document store."""

    def test_document_store_only(self):
        """Test the relational URL and kind come from the document store URI."""
        config = resolve_config(env={"MONGO_URI": "mongodb://m:27017/app"})

        assert config.database.type == BackendKind.MONGODB
        assert config.database.url == "mongodb://m:27017/app"

    def test_explicit_relational_not_overwritten(self):
        """Test an explicitly set relational descriptor is left alone."""
        env = {
            "MONGO_URI": "mongodb://m:27017/app",
            "DATABASE_URL": "postgresql://u:p@db/app",
        }

        config = resolve_config(env=env)

        assert config.database.type == BackendKind.POSTGRES
        assert config.database.url == "postgresql://u:p@db/app"

    def test_relational_parts_not_overwritten(self):
        """Test host-less relational parts still block the backfill."""
        env = {
            "DATABASE_NAME": "app",
            "DATABASE_USER": "u",
            "DATABASE_PORT": "5433",
            "MONGO_URI": "mongodb://m:27017/docs",
        }

        config = resolve_config(env=env)

        assert config.database.type == BackendKind.POSTGRES
        assert config.database.url == ""
        assert config.database.name == "app"
        assert config.database.port == 5433
        kinds = [kind for kind, _ in config.declared_backends()]
        assert kinds == [BackendKind.POSTGRES, BackendKind.MONGODB]

    def test_pool_tuning_does_not_block_backfill(self):
        env = {"DATABASE_MAX_POOL_SIZE": "20", "MONGO_URI": "mongodb://m:27017/docs"}

        config = resolve_config(env=env)

        assert config.database.type == BackendKind.MONGODB
        assert config.database.max_pool_size == 20

    def test_explicit_type_not_overwritten(self):
        config = resolve_config(
            {"database": {"type": "sqlite", "url": "sqlite:///x.db"}},
            env={"MONGODB_URI": "mongodb://m:27017"},
        )

        assert config.database.type == BackendKind.SQLITE

    def test_declared_backends(self):
        env = {
            "DATABASE_URL": "postgresql://u:p@db/app",
            "MONGO_URI": "mongodb://m:27017/app",
            "REDIS_URL": "redis://cache:6379/0",
        }

        kinds = [kind for kind, _ in resolve_config(env=env).declared_backends()]

        assert kinds == [BackendKind.POSTGRES, BackendKind.MONGODB, BackendKind.REDIS]

    def test_backfilled_mongo_declared_once(self):
        config = resolve_config(env={"MONGO_URI": "mongodb://m:27017/app"})

        kinds = [kind for kind, _ in config.declared_backends()]

        assert kinds == [BackendKind.MONGODB]


class TestValidate:
    """Tests for descriptor invariants."""

    @pytest.mark.parametrize(
        "descriptor, valid",
        [
            (DatabaseDescriptor(), True),
            (DatabaseDescriptor(host="", url=""), False),
            (DatabaseDescriptor(host="", port=0, name="", url="postgresql://db/app"), True),
            (DatabaseDescriptor(host="db", port=5432, name=""), False),
            (DatabaseDescriptor(host="db", port=0, name="app"), False),
            (DatabaseDescriptor(host="db", port=5433, name="app"), True),
        ],
    )
    def test_database(self, descriptor, valid):
        """Test relational descriptors need a URL or host, port and name."""
        if valid:
            validate_database(descriptor)
        else:
            with pytest.raises(ConfigError) as exc_info:
                validate_database(descriptor)
            assert exc_info.value.kind == ConfigErrorKind.MISSING_REQUIRED

    @pytest.mark.parametrize(
        "uri, valid",
        [
            ("", True),
            ("mongodb://localhost:27017", True),
            ("mongodb+srv://cluster.example.net/app", True),
            ("http://localhost:27017", False),
            ("localhost:27017", False),
        ],
    )
    def test_mongodb_scheme(self, uri, valid):
        """Test document store URIs must start with a known scheme."""
        descriptor = MongoDescriptor(uri=uri)
        if valid:
            validate_mongodb(descriptor)
        else:
            with pytest.raises(ConfigError) as exc_info:
                validate_mongodb(descriptor)
            assert exc_info.value.kind == ConfigErrorKind.INVALID_VALUE

    def test_mongodb_database_name_optional(self):
        validate_mongodb(MongoDescriptor(uri="mongodb://localhost:27017", database=""))

    @pytest.mark.parametrize(
        "tls, cert, key, valid",
        [
            (False, "", "", True),
            (True, "cert.pem", "key.pem", True),
            (True, "", "key.pem", False),
            (True, "cert.pem", "", False),
            (True, "", "", False),
        ],
    )
    def test_server_tls(self, tls, cert, key, valid):
        """Test TLS needs both certificate and key paths."""
        descriptor = ServerDescriptor(tls=tls, cert_file=cert, key_file=key)
        if valid:
            validate_server(descriptor)
        else:
            with pytest.raises(ConfigError):
                validate_server(descriptor)

    def test_cache_url_scheme(self):
        config = Config(redis=CacheDescriptor(url="http://cache"))

        with pytest.raises(ConfigError) as exc_info:
            validate_config(config)

        assert exc_info.value.field == "redis.url"

    def test_validate_has_no_side_effects(self):
        config = Config()

        validate_config(config)

        assert config == Config()


class TestServerAddress:
    """Tests for listen address resolution."""

    def test_default(self):
        assert ServerDescriptor().address() == ":8080"

    def test_host_and_port(self):
        assert ServerDescriptor(host="db.local", port=5433).address() == "db.local:5433"

    def test_explicit_addr_wins(self):
        descriptor = ServerDescriptor(addr="custom:9000", host="ignored", port=1)

        assert descriptor.address() == "custom:9000"

    def test_zero_port_falls_back(self):
        assert ServerDescriptor(host="0.0.0.0", port=0).address() == "0.0.0.0:8080"

    def test_addr_from_environment(self):
        config = resolve_config(env={"SERVER_ADDR": "127.0.0.1:3000"})

        assert config.server.address() == "127.0.0.1:3000"


class TestQuickConfig:
    """Tests for single-backend configs from one environment variable."""

    def test_redis(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")

        config = quick_config("redis")

        assert config.redis.url == "redis://cache:6379/0"

    def test_relational(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/app")

        config = quick_config(BackendKind.POSTGRES)

        assert config.database.type == BackendKind.POSTGRES
        assert config.database.url == "postgresql://u:p@db/app"

    @pytest.mark.parametrize("kind", ["postgresql", " Postgres ", "POSTGRES"])
    def test_kind_is_normalized(self, monkeypatch, kind):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/app")

        config = quick_config(kind)

        assert config.database.type == BackendKind.POSTGRES

    def test_unknown_kind(self):
        """Test an unsupported kind raises ConfigError(INVALID_VALUE)."""
        with pytest.raises(ConfigError) as exc_info:
            quick_config("oracle")

        assert exc_info.value.kind == ConfigErrorKind.INVALID_VALUE
        assert exc_info.value.field == "kind"

    def test_mongodb_second_alias(self, monkeypatch):
        monkeypatch.delenv("MONGO_URI", raising=False)
        monkeypatch.setenv("MONGODB_URI", "mongodb://m:27017/app")
        monkeypatch.setenv("MONGODB_DATABASE", "app")

        config = quick_config("mongodb")

        assert config.mongodb.uri == "mongodb://m:27017/app"
        assert config.mongodb.database == "app"
        assert config.database.type == BackendKind.MONGODB

    @pytest.mark.parametrize(
        "kind, variables",
        [
            ("redis", ["REDIS_URL"]),
            ("sqlite", ["DATABASE_URL"]),
            ("mongodb", ["MONGO_URI", "MONGODB_URI"]),
        ],
    )
    def test_missing_variable(self, monkeypatch, kind, variables):
        """Test an unset variable raises ConfigError(MISSING_REQUIRED)."""
        for name in variables:
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(ConfigError) as exc_info:
            quick_config(kind)

        assert exc_info.value.kind == ConfigErrorKind.MISSING_REQUIRED

    def test_empty_variable_counts_as_missing(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "")

        with pytest.raises(ConfigError):
            quick_config("redis")
