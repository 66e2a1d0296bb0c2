"""Tests for tier1_runtime modules."""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest
from pydantic import BaseModel

from cloudbase_manager.tier0_core.config import ManagerConfig
from cloudbase_manager.tier0_core.credentials import CloudBaseContext
from cloudbase_manager.tier0_core.errors import (
    ConfigurationError,
    RemoteServiceError,
    ResponseParseError,
    TransportError,
    ValidationError,
)
from cloudbase_manager.tier1_runtime.clock import Clock, get_clock, set_clock, unix_seconds
from cloudbase_manager.tier1_runtime.cloud_api import CloudService, base_url_for
from cloudbase_manager.tier1_runtime.parallel import DEFAULT_MAX_PARALLEL, ParallelTaskRunner
from cloudbase_manager.tier1_runtime.retry import call_with_retry, fixed_retry
from cloudbase_manager.tier1_runtime.validate import validate_input

FIXED = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


# ── clock ──────────────────────────────────────────────────────────────────

class TestClock:
    def test_now_returns_utc_datetime(self):
        assert Clock().now().tzinfo is not None

    def test_frozen_clock_set_global(self):
        set_clock(Clock().freeze(FIXED))
        assert get_clock().now() == FIXED
        assert unix_seconds() == 1700000000


# ── parallel ───────────────────────────────────────────────────────────────

class TestParallelTaskRunner:
    @pytest.mark.asyncio
    async def test_results_are_positional(self):
        async def delayed(value: int, delay: float) -> int:
            await asyncio.sleep(delay)
            return value

        runner = ParallelTaskRunner(3)
        runner.load_tasks([
            lambda: delayed(0, 0.03),
            lambda: delayed(1, 0.0),
            lambda: delayed(2, 0.01),
        ])
        assert await runner.run() == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self):
        async def ok(value: int) -> int:
            return value

        async def boom() -> int:
            raise RuntimeError("boom")

        runner = ParallelTaskRunner(2)
        runner.load_tasks([lambda: ok(1), boom, lambda: ok(3)])
        results = await runner.run()

        assert results[0] == 1
        assert isinstance(results[1], RuntimeError)
        assert results[2] == 3

    @pytest.mark.asyncio
    async def test_never_exceeds_max_parallel(self):
        in_flight = 0
        peak = 0

        async def task() -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        runner = ParallelTaskRunner(2)
        runner.load_tasks([task] * 5)
        await runner.run()
        assert peak == 2

    @pytest.mark.asyncio
    async def test_empty_run(self):
        assert await ParallelTaskRunner().run() == []

    @pytest.mark.asyncio
    async def test_push_and_reset_after_run(self):
        async def one() -> int:
            return 1

        runner = ParallelTaskRunner()
        runner.push(one)
        runner.push(one)
        assert runner.pending == 2
        assert await runner.run() == [1, 1]
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_load_tasks_appends_to_pending(self):
        async def value(v: int) -> int:
            return v

        runner = ParallelTaskRunner(2)
        runner.push(lambda: value(0))
        runner.load_tasks([lambda: value(1), lambda: value(2)])
        runner.load_tasks([lambda: value(3)])
        assert runner.pending == 4
        assert await runner.run() == [0, 1, 2, 3]

    def test_non_positive_limit_uses_default(self):
        assert ParallelTaskRunner(0).max_parallel == DEFAULT_MAX_PARALLEL
        assert ParallelTaskRunner(-3).max_parallel == DEFAULT_MAX_PARALLEL
        assert ParallelTaskRunner(None).max_parallel == DEFAULT_MAX_PARALLEL


# ── retry ──────────────────────────────────────────────────────────────────

class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        attempts = 0

        async def flaky() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise RemoteServiceError("busy", code="ResourceInUse")
            return "ok"

        assert await call_with_retry(flaky, delay=0) == "ok"
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        attempts = 0

        async def always() -> None:
            nonlocal attempts
            attempts += 1
            raise RemoteServiceError(f"attempt {attempts}", code="X")

        with pytest.raises(RemoteServiceError, match="attempt 4"):
            await call_with_retry(always, max_retries=3, delay=0)
        assert attempts == 4

    @pytest.mark.asyncio
    async def test_configuration_errors_not_retried(self):
        attempts = 0

        async def misconfigured() -> None:
            nonlocal attempts
            attempts += 1
            raise ConfigurationError("no credentials")

        with pytest.raises(ConfigurationError):
            await call_with_retry(misconfigured, delay=0)
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_decorator_form(self, no_retry_delay):
        attempts = 0

        @fixed_retry(max_retries=1)
        async def flaky(value: int) -> int:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RemoteServiceError("busy")
            return value

        assert await flaky(7) == 7
        assert attempts == 2


# ── cloud_api ──────────────────────────────────────────────────────────────

def _service(handler, service: str = "tcb", **kwargs) -> CloudService:
    config = ManagerConfig(_env_file=None, session_token=None)
    return CloudService(
        CloudBaseContext.create("AKIDtest", "secret", kwargs.pop("token", None)),
        service,
        "2018-06-08",
        kwargs.pop("base_params", None),
        transport=httpx.MockTransport(handler),
        config=config,
    )


class TestCloudService:
    @pytest.mark.asyncio
    async def test_post_request_shape(self):
        set_clock(Clock().freeze(FIXED))
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Response": {"EnvList": [], "RequestId": "r1"}})

        res = await _service(handler).request("DescribeEnvs", {"EnvId": "e", "Skip": None})

        assert res == {"EnvList": [], "RequestId": "r1"}
        request = seen[0]
        assert request.method == "POST"
        assert request.url.host == "tcb.tencentcloudapi.com"
        assert json.loads(request.content) == {"EnvId": "e"}
        assert request.headers["X-TC-Action"] == "DescribeEnvs"
        assert request.headers["X-TC-Version"] == "2018-06-08"
        assert request.headers["X-TC-Timestamp"] == "1700000000"
        assert request.headers["X-TC-Region"] == "ap-shanghai"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Authorization"].startswith(
            "TC3-HMAC-SHA256 Credential=AKIDtest/2023-11-14/tcb/tc3_request"
        )
        assert "X-TC-Token" not in request.headers

    @pytest.mark.asyncio
    async def test_session_token_header(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Response": {}})

        await _service(handler, token="sts-token").request("DescribeEnvs")
        assert seen[0].headers["X-TC-Token"] == "sts-token"

    @pytest.mark.asyncio
    async def test_rotated_environment_credentials_used_on_next_request(self, monkeypatch):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Response": {}})

        service = CloudService(
            CloudBaseContext(), "tcb", "2018-06-08", transport=httpx.MockTransport(handler)
        )
        monkeypatch.setenv("TENCENTCLOUD_SECRETID", "AKIDfirst")
        monkeypatch.setenv("TENCENTCLOUD_SECRETKEY", "key1")
        monkeypatch.setenv("TENCENTCLOUD_SESSIONTOKEN", "tok1")
        await service.request("DescribeEnvs")

        monkeypatch.setenv("TENCENTCLOUD_SECRETID", "AKIDsecond")
        monkeypatch.setenv("TENCENTCLOUD_SECRETKEY", "key2")
        monkeypatch.setenv("TENCENTCLOUD_SESSIONTOKEN", "tok2")
        await service.request("DescribeEnvs")

        assert "Credential=AKIDfirst/" in seen[0].headers["Authorization"]
        assert seen[0].headers["X-TC-Token"] == "tok1"
        assert "Credential=AKIDsecond/" in seen[1].headers["Authorization"]
        assert seen[1].headers["X-TC-Token"] == "tok2"

    @pytest.mark.asyncio
    async def test_get_sends_sorted_query(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Response": {}})

        await _service(handler).request("ListX", {"b": "2", "a": "1"}, method="GET")
        assert seen[0].method == "GET"
        assert seen[0].url.query == b"a=1&b=2"
        assert seen[0].headers["Content-Type"] == "application/x-www-form-urlencoded"

    @pytest.mark.asyncio
    async def test_base_params_win(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Response": {}})

        service = _service(handler, base_params={"Namespace": "ns"})
        await service.request("ListFunctions", {"Namespace": "other", "Limit": 20})
        assert json.loads(seen[0].content) == {"Namespace": "ns", "Limit": 20}

    @pytest.mark.asyncio
    async def test_remote_error_envelope(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"Response": {
                "Error": {"Code": "ResourceNotFound.Env", "Message": "env missing"},
                "RequestId": "req-42",
            }})

        with pytest.raises(RemoteServiceError) as info:
            await _service(handler).request("DescribeEnvs")
        assert info.value.code == "ResourceNotFound.Env"
        assert info.value.request_id == "req-42"
        assert str(info.value) == "[DescribeEnvs] env missing"

    @pytest.mark.asyncio
    async def test_non_json_body_carries_action(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>gateway</html>")

        with pytest.raises(ResponseParseError) as info:
            await _service(handler).request("CreateEnv")
        assert info.value.action == "CreateEnv"
        assert "gateway" in info.value.raw_message

    @pytest.mark.asyncio
    async def test_missing_response_key(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        with pytest.raises(ResponseParseError):
            await _service(handler).request("CreateEnv")

    @pytest.mark.asyncio
    async def test_transport_error_carries_action(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError) as info:
            await _service(handler).request("InitTcb")
        assert info.value.action == "InitTcb"
        assert info.value.code == "ReadTimeout"

    def test_base_urls(self):
        config = ManagerConfig(_env_file=None, tcb_base_url=None)
        assert base_url_for("tcb", config) == "https://tcb.tencentcloudapi.com"
        assert base_url_for("scf", config) == "https://scf.tencentcloudapi.com"
        assert base_url_for("flexdb", config).startswith("https://flexdb.")
        custom = ManagerConfig(_env_file=None, tcb_base_url="https://tcb.internal")
        assert base_url_for("tcb", custom) == "https://tcb.internal"


# ── validate ───────────────────────────────────────────────────────────────

class TestValidate:
    def test_valid_input_returns_model(self):
        class UserInput(BaseModel):
            name: str
            age: int

        result = validate_input(UserInput, {"name": "Alice", "age": 30})
        assert result.name == "Alice"
        assert result.age == 30

    def test_invalid_input_raises_validation_error(self):
        class UserInput(BaseModel):
            name: str
            age: int

        with pytest.raises(ValidationError) as info:
            validate_input(UserInput, {"name": "Alice", "age": "not-a-number"})
        assert "age" in info.value.fields

    def test_model_instance_passes_through(self):
        class UserInput(BaseModel):
            name: str

        item = UserInput(name="x")
        assert validate_input(UserInput, item) is item
