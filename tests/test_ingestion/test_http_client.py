"""Tests for the upstream HTTP transport."""

from contextlib import asynccontextmanager

import httpx
import pytest
import respx

from forumwatch.ingestion.http_client import (
    HTTPClient,
    RetryPolicy,
    TokenRotator,
    UpstreamHTTPError,
    parse_retry_after,
)

FAST = RetryPolicy(max_retries=2, base_delay=0.0, jitter=0.0)
LATEST = "https://gov.example.org/latest.json"


class TestTokenRotator:
    """Tests for TokenRotator."""

    def test_round_robin(self):
        tokens = TokenRotator(["a", "b"])

        seen = [tokens.auth_headers()["Authorization"] for _ in range(3)]

        assert seen == ["Bearer a", "Bearer b", "Bearer a"]

    def test_from_csv_strips_blanks(self):
        tokens = TokenRotator.from_csv(" ghp_1 , ,ghp_2 ")

        assert tokens is not None
        assert len(tokens) == 2

    def test_from_csv_empty(self):
        assert TokenRotator.from_csv(None) is None
        assert TokenRotator.from_csv(" , ") is None

    def test_custom_header_without_scheme(self):
        tokens = TokenRotator(["k"], header="x-api-key", scheme=None)

        assert tokens.auth_headers() == {"x-api-key": "k"}

    def test_requires_a_token(self):
        with pytest.raises(ValueError):
            TokenRotator([""])


class TestRetryPolicy:
    """Tests for RetryPolicy.delay."""

    def test_exponential(self):
        policy = RetryPolicy(base_delay=1.0, jitter=0.0)

        assert [policy.delay(n) for n in range(3)] == [1.0, 2.0, 4.0]

    def test_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=3.0, jitter=0.0)

        assert policy.delay(5) == 3.0

    def test_throttled_waits_longer(self):
        policy = RetryPolicy(base_delay=1.0, jitter=0.0, rate_limit_multiplier=5.0)

        assert policy.delay(0, status_code=429) == 5.0

    def test_retry_after_is_a_floor(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=60.0, jitter=0.0)

        assert policy.delay(0, status_code=429, retry_after=20.0) == 20.0
        assert policy.delay(0, status_code=429, retry_after=600.0) == 60.0

    def test_jitter_bounds(self):
        policy = RetryPolicy(base_delay=1.0, jitter=0.1)

        for _ in range(20):
            assert 1.0 <= policy.delay(0) <= 1.1

    def test_max_attempts(self):
        assert RetryPolicy(max_retries=0).max_attempts == 1


class TestParseRetryAfter:
    """Tests for parse_retry_after."""

    def test_seconds(self):
        assert parse_retry_after("17") == 17.0

    def test_missing_or_unparseable(self):
        """HTTP-date values are ignored rather than guessed at."""
        assert parse_retry_after(None) is None
        assert parse_retry_after("Wed, 21 Oct 2026 07:28:00 GMT") is None

    def test_negative_clamped(self):
        assert parse_retry_after("-3") == 0.0


class TestHTTPClient:
    """Tests for HTTPClient.request."""

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        with pytest.raises(RuntimeError):
            await HTTPClient().request("GET", LATEST)

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_success(self):
        respx.get(LATEST).mock(return_value=httpx.Response(200, json={"topic_list": {}}))

        async with HTTPClient() as client:
            response = await client.request("GET", LATEST)

        assert response.json() == {"topic_list": {}}

    @pytest.mark.asyncio
    @respx.mock
    async def test_post_json_and_token(self):
        route = respx.post("https://api.github.com/graphql").mock(
            return_value=httpx.Response(200, json={"data": {}})
        )

        async with HTTPClient(user_agent="forumwatch-test/1.0") as client:
            await client.request(
                "POST",
                "https://api.github.com/graphql",
                json={"query": "{ viewer { login } }"},
                tokens=TokenRotator(["ghp_test"]),
            )

        sent = route.calls.last.request
        assert sent.headers["Authorization"] == "Bearer ghp_test"
        assert sent.headers["User-Agent"] == "forumwatch-test/1.0"
        assert b"viewer" in sent.content

    @pytest.mark.asyncio
    @respx.mock
    async def test_redirect_returned_untouched(self):
        route = respx.get(LATEST).mock(
            return_value=httpx.Response(301, headers={"Location": "https://new.example.org/"})
        )

        async with HTTPClient() as client:
            response = await client.request("GET", LATEST)

        assert response.status_code == 301
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_server_error_then_succeeds(self):
        route = respx.get(LATEST).mock(
            side_effect=[httpx.Response(503), httpx.Response(200, json={})]
        )

        async with HTTPClient(FAST) as client:
            response = await client.request("GET", LATEST)

        assert response.status_code == 200
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_throttled_exhausted(self):
        route = respx.get(LATEST).mock(return_value=httpx.Response(429))

        async with HTTPClient(FAST) as client:
            with pytest.raises(UpstreamHTTPError) as exc_info:
                await client.request("GET", LATEST)

        assert exc_info.value.status_code == 429
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_not_retried(self):
        route = respx.get(LATEST).mock(
            return_value=httpx.Response(403, headers={"x-ratelimit-remaining": "0"}, text="no")
        )

        async with HTTPClient(FAST) as client:
            with pytest.raises(UpstreamHTTPError) as exc_info:
                await client.request("GET", LATEST)

        assert exc_info.value.status_code == 403
        assert exc_info.value.headers["x-ratelimit-remaining"] == "0"
        assert exc_info.value.body == "no"
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_exhausted_has_no_status(self):
        route = respx.get(LATEST).mock(side_effect=httpx.ReadTimeout("slow"))

        async with HTTPClient(FAST) as client:
            with pytest.raises(UpstreamHTTPError) as exc_info:
                await client.request("GET", LATEST)

        assert exc_info.value.status_code is None
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_admit_wraps_every_try(self):
        respx.get(LATEST).mock(
            side_effect=[httpx.Response(502), httpx.Response(502), httpx.Response(200)]
        )
        attempts = []

        @asynccontextmanager
        async def gate(attempt):
            attempts.append(attempt)
            yield

        async with HTTPClient(FAST) as client:
            await client.request("GET", LATEST, admit=gate)

        assert attempts == [0, 1, 2]

    @pytest.mark.asyncio
    @respx.mock
    async def test_admit_error_aborts(self):
        route = respx.get(LATEST).mock(return_value=httpx.Response(200))

        @asynccontextmanager
        async def gate(attempt):
            raise LookupError("denied")
            yield

        async with HTTPClient(FAST) as client:
            with pytest.raises(LookupError):
                await client.request("GET", LATEST, admit=gate)

        assert route.call_count == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_backoff_runs_outside_the_gate(self):
        """A slot held by the gate is released before the retry delay."""
        respx.get(LATEST).mock(
            side_effect=[httpx.Response(503), httpx.ConnectError("refused"), httpx.Response(200)]
        )
        held = False
        held_during_backoff = []

        @asynccontextmanager
        async def gate(attempt):
            nonlocal held
            held = True
            try:
                yield
            finally:
                held = False

        async with HTTPClient(FAST) as client:
            back_off = client._back_off

            async def recording_back_off(*args, **kwargs):
                held_during_backoff.append(held)
                await back_off(*args, **kwargs)

            client._back_off = recording_back_off
            response = await client.request("GET", LATEST, admit=gate)

        assert response.status_code == 200
        assert held_during_backoff == [False, False]

    @pytest.mark.asyncio
    @respx.mock
    async def test_tokens_rotate_across_retries(self):
        route = respx.get(LATEST).mock(
            side_effect=[httpx.Response(500), httpx.Response(200)]
        )

        async with HTTPClient(FAST) as client:
            await client.request("GET", LATEST, tokens=TokenRotator(["a", "b"]))

        sent = [call.request.headers["Authorization"] for call in route.calls]
        assert sent == ["Bearer a", "Bearer b"]
