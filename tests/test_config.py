"""Tests for configuration loading, store selection and bypass parsing."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from quotagate.adapters.bucket_store.factory import create_bucket_store
from quotagate.adapters.bucket_store.in_memory import InMemoryBucketStore
from quotagate.adapters.bucket_store.redis_store import RedisBucketStore
from quotagate.core.config import AppSettings, RedisSettings, settings
from quotagate.core.errors import ConfigurationAppError
from quotagate.core import rate_limit
from quotagate.core.rate_limit import get_admission_engine, get_quota_config
from quotagate.services.admission import Allow
from quotagate.services.bypass import StaticBypassPolicy, parse_identity_list


class TestSettings:
    def test_defaults_from_environment(self) -> None:
        assert settings.store.backend == "memory"
        assert settings.app.rate_limit_requests == 100
        assert settings.app.rate_limit_window_seconds == 60

    def test_env_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("APP_RATE_LIMIT_REQUESTS", "5")
        monkeypatch.setenv("APP_RATE_LIMIT_BYPASS_KEYS", "svc-a,svc-b")

        app_settings = AppSettings()

        assert app_settings.rate_limit_requests == 5
        assert app_settings.rate_limit_bypass_keys == "svc-a,svc-b"

    @pytest.mark.parametrize(
        "name, value",
        [("APP_RATE_LIMIT_REQUESTS", "0"), ("APP_RATE_LIMIT_WINDOW_SECONDS", "-1")],
    )
    def test_non_positive_quota_fails_at_load(self, monkeypatch, name: str, value: str) -> None:
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            AppSettings()

    def test_redis_timeout_must_be_positive(self, monkeypatch) -> None:
        monkeypatch.setenv("REDIS_SOCKET_TIMEOUT_SECONDS", "0")

        with pytest.raises(ValidationError):
            RedisSettings()

    def test_quota_config_built_from_settings(self, monkeypatch) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_requests", 7)
        monkeypatch.setattr(settings.app, "rate_limit_window_seconds", 30)

        quota = get_quota_config()

        assert (quota.limit, quota.window_seconds) == (7, 30)

    def test_invalid_quota_assigned_at_runtime_is_fatal(self, monkeypatch) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_requests", 0)

        with pytest.raises(ConfigurationAppError):
            get_quota_config()


class TestStoreFactory:
    def test_memory_backend(self, monkeypatch) -> None:
        monkeypatch.setattr(settings.store, "backend", "memory")

        assert isinstance(create_bucket_store(), InMemoryBucketStore)

    def test_redis_backend(self, monkeypatch) -> None:
        monkeypatch.setattr(settings.store, "backend", "Redis")
        monkeypatch.setattr(settings.redis, "url", "redis://cache:6379/1")

        with patch("quotagate.adapters.bucket_store.redis_store.redis.Redis.from_url") as from_url:
            store = create_bucket_store()

        assert isinstance(store, RedisBucketStore)
        assert from_url.call_args.args == ("redis://cache:6379/1",)
        assert from_url.call_args.kwargs["socket_timeout"] == settings.redis.socket_timeout_seconds

    def test_unknown_backend(self, monkeypatch) -> None:
        monkeypatch.setattr(settings.store, "backend", "memcached")

        with pytest.raises(ConfigurationAppError) as exc_info:
            create_bucket_store()

        assert exc_info.value.code == "store_unknown_backend"


class TestEngineCache:
    def test_engine_is_reused(self) -> None:
        assert get_admission_engine() is get_admission_engine()

    def test_engine_rebuilt_when_config_changes(self, monkeypatch) -> None:
        first = get_admission_engine()
        monkeypatch.setattr(settings.app, "rate_limit_bypass_keys", "svc-internal")

        second = get_admission_engine()

        assert second is not first

    def test_concurrent_first_requests_share_one_engine(self, monkeypatch, fake_time) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_requests", 5)
        monkeypatch.setattr(settings.app, "rate_limit_window_seconds", 3600)
        stores_built = []

        def slow_store():
            # Stands in for connection pool setup latency
            time.sleep(0.05)
            store = InMemoryBucketStore(clock=fake_time.time)
            stores_built.append(store)
            return store

        monkeypatch.setattr(rate_limit, "create_bucket_store", slow_store)
        barrier = threading.Barrier(10)

        def first_request(_):
            barrier.wait()
            engine = get_admission_engine()
            return engine, engine.evaluate("k1", get_quota_config())

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(first_request, range(10)))

        assert len(stores_built) == 1
        assert len({id(engine) for engine, _ in results}) == 1
        assert sum(isinstance(decision, Allow) for _, decision in results) == 5


class TestBypassPolicy:
    def test_parse_identity_list(self) -> None:
        assert parse_identity_list("svc-a, svc-b ,,svc-a") == frozenset({"svc-a", "svc-b"})
        assert parse_identity_list("") == frozenset()
        assert parse_identity_list(None) == frozenset()

    def test_static_policy(self) -> None:
        policy = StaticBypassPolicy({"svc-internal"})

        assert policy.is_exempt("svc-internal") is True
        assert policy.is_exempt("k1") is False

    def test_empty_policy_exempts_nobody(self) -> None:
        assert StaticBypassPolicy().is_exempt("anyone") is False
