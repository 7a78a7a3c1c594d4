"""
Tests for configuration loading.
"""

from pathlib import Path

import pytest

from local_backend.config import (
    ComputedEnv,
    DevServerContext,
    FunctionCall,
    OrchestratorConfig,
    StaticEnv,
    as_env_source,
    load_config,
)


class TestDefaults:
    def test_defaults(self, tmp_path):
        config = OrchestratorConfig(project_dir=tmp_path)

        assert config.instance_name == "convex-local"
        assert config.deploy_command == ["bun", "convex", "deploy"]
        assert config.health_check_timeout == 10.0
        assert config.state_root == tmp_path.resolve() / ".state"
        assert config.env_vars is None
        assert config.on_ready == []
        assert config.binary.cache_dir == tmp_path / "cache"

    def test_watch_defaults_follow_functions_dir(self, tmp_path):
        config = OrchestratorConfig(project_dir=tmp_path, functions_dir="backend")
        assert config.watch_patterns == ["backend/*.ts", "backend/**/*.ts"]
        assert config.ignore_patterns == ["backend/_generated/**", "backend/_generated/*.ts"]

    def test_validation(self, tmp_path):
        with pytest.raises(ValueError):
            OrchestratorConfig(project_dir=tmp_path, health_check_timeout=0)
        with pytest.raises(ValueError):
            OrchestratorConfig(project_dir=tmp_path, deploy_command=[])


class TestFromDict:
    def test_nested_sections(self, tmp_path):
        config = OrchestratorConfig.from_dict({
            "project_dir": str(tmp_path),
            "port": "4100",
            "reset": "true",
            "binary": {"version": "precompiled-2025-01-01-abc", "cache_ttl": 0},
            "watch": {"debounce": 0.1, "patterns": ["convex/**/*.ts"]},
            "env_vars": {"SITE_URL": "http://localhost:5173"},
            "on_ready": ["seed:default", {"name": "seed:users", "args": {"n": 2}}],
            "not_a_field": 1,
        })

        assert config.port == 4100
        assert config.reset is True
        assert config.binary.version == "precompiled-2025-01-01-abc"
        assert config.binary.cache_ttl == 0
        assert config.watch.debounce == 0.1
        assert config.watch_patterns == ["convex/**/*.ts"]
        assert isinstance(config.env_vars, StaticEnv)
        assert config.on_ready == [
            FunctionCall("seed:default"),
            FunctionCall("seed:users", {"n": 2}),
        ]

    def test_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("APP_NAME", "my-app")
        monkeypatch.delenv("CLIENT_PREFIX", raising=False)
        config = OrchestratorConfig.from_dict({
            "project_dir": str(tmp_path),
            "instance_name": "${APP_NAME}",
            "client_env_prefix": "${CLIENT_PREFIX:-PUBLIC_}",
            "env_vars": {"NAME": "${APP_NAME}"},
        })

        assert config.instance_name == "my-app"
        assert config.client_env_prefix == "PUBLIC_"
        assert config.env_vars.values == {"NAME": "my-app"}

    def test_missing_required_variable(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MISSING_SECRET", raising=False)
        with pytest.raises(ValueError, match="MISSING_SECRET"):
            OrchestratorConfig.from_dict({"instance_secret": "${MISSING_SECRET}"})

    def test_to_dict(self, tmp_path):
        config = OrchestratorConfig(project_dir=tmp_path, on_ready=["seed:default"])
        data = config.to_dict()
        assert data["project_dir"] == str(tmp_path.resolve())
        assert data["on_ready"] == [{"name": "seed:default", "args": {}}]
        assert data["binary"]["cache_dir"] == str(tmp_path / "cache")


class TestLoadConfig:
    def test_from_yaml(self, tmp_path):
        path = tmp_path / "local-backend.yaml"
        path.write_text(
            "project_dir: {dir}\n"
            "instance_name: yaml-app\n"
            "deploy_timeout: 30\n"
            "watch:\n"
            "  debounce: 0.25\n"
            "on_ready:\n"
            "  - seed:default\n".format(dir=tmp_path)
        )

        config = load_config(path)

        assert config.instance_name == "yaml-app"
        assert config.deploy_timeout == 30.0
        assert config.watch.debounce == 0.25
        assert config.on_ready == [FunctionCall("seed:default")]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOCAL_BACKEND_PROJECT_DIR", str(tmp_path))
        monkeypatch.setenv("LOCAL_BACKEND_INSTANCE_NAME", "env-app")
        monkeypatch.setenv("LOCAL_BACKEND_DEPLOY_COMMAND", "npx,convex,deploy")
        monkeypatch.setenv("LOCAL_BACKEND_BINARY_VERSION", "precompiled-2025-01-01-abc")
        monkeypatch.setenv("LOCAL_BACKEND_WATCH_DEBOUNCE", "0.2")

        config = load_config()

        assert config.project_dir == tmp_path.resolve()
        assert config.instance_name == "env-app"
        assert config.deploy_command == ["npx", "convex", "deploy"]
        assert config.binary.version == "precompiled-2025-01-01-abc"
        assert config.binary.cache_dir == tmp_path / "cache"
        assert config.watch.debounce == 0.2

    def test_overrides(self, tmp_path):
        config = load_config(project_dir=tmp_path, port=4100, instance_name=None, reset=True)

        assert config.project_dir == Path(tmp_path).resolve()
        assert config.port == 4100
        assert config.instance_name == "convex-local"
        assert config.reset is True

    def test_unknown_override(self):
        with pytest.raises(ValueError):
            load_config(no_such_option=1)

    def test_each_call_returns_fresh_config(self):
        assert load_config() is not load_config()


class TestEnvSources:
    @pytest.mark.asyncio
    async def test_static(self):
        source = as_env_source({"PORT": 5173})
        assert isinstance(source, StaticEnv)
        assert await source.evaluate(DevServerContext()) == {"PORT": "5173"}

    @pytest.mark.asyncio
    async def test_computed_from_context(self):
        source = as_env_source(lambda ctx: {"SITE_URL": ctx.local_url})
        assert isinstance(source, ComputedEnv)
        assert await source.evaluate(DevServerContext(port=3000)) == {
            "SITE_URL": "http://localhost:3000"
        }

    @pytest.mark.asyncio
    async def test_async_compute(self):
        async def compute(ctx):
            return {"FIRST_URL": ctx.local_url}

        context = DevServerContext(urls=["http://127.0.0.1:4000/"])
        assert await ComputedEnv(compute).evaluate(context) == {
            "FIRST_URL": "http://127.0.0.1:4000/"
        }

    def test_rejects_other_values(self):
        with pytest.raises(TypeError):
            as_env_source(42)
