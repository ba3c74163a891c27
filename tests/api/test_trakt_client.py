"""Tests for the paced Trakt client."""

import threading

import pytest

from letterboxd_trakt.api.base import (
    APIError,
    AuthenticationError,
    NotAuthenticatedError,
    ThrottledError,
)
from letterboxd_trakt.api.trakt import RateLimiter
from tests.fakes import FakeClock, FakeResponse, make_client, search_result


def ok_handler(call):
    return FakeResponse(200, [])


def test_consecutive_calls_are_spaced_three_seconds_apart():
    """N calls take at least (N-1) * 3s when issued back to back."""
    client, transport, clock = make_client(ok_handler)
    start = clock()

    for _ in range(5):
        client.call("/sync/history/movies/1")

    starts = [c.at for c in transport.calls]
    assert [b - a for a, b in zip(starts, starts[1:])] == [3.0] * 4
    assert clock() - start == pytest.approx(4 * 3.0)


def test_batch_cooldown_after_every_ten_calls():
    """The 11th call waits for the spacing interval plus the batch cooldown."""
    client, transport, clock = make_client(ok_handler)
    start = clock()

    for _ in range(11):
        client.call("/sync/history/movies/1")

    assert clock() - start >= 10 * 3.0 + 10.0
    assert transport.calls[10].at - transport.calls[9].at == pytest.approx(13.0)
    assert clock.sleeps.count(10.0) == 1
    assert client.rate_limiter.call_count == 1


def test_twenty_one_calls_get_two_cooldowns():
    client, _, clock = make_client(ok_handler)
    start = clock()

    for _ in range(21):
        client.call("/sync/history/movies/1")

    assert clock() - start == pytest.approx(20 * 3.0 + 2 * 10.0)


def test_spacing_counts_from_end_of_previous_call():
    """The interval starts when the previous call completes, not when it began."""
    clock = FakeClock()

    def slow_handler(call):
        clock.now += 2.0
        return FakeResponse(200, [])

    client, transport, _ = make_client(slow_handler, clock=clock)
    client.call("/a")
    client.call("/b")

    assert clock.sleeps == [3.0]
    assert transport.calls[1].at - transport.calls[0].at == pytest.approx(5.0)


def test_throttled_three_times_then_succeeds():
    """Backoff waits 4s, 8s and 16s and returns the successful body."""
    responses = [
        FakeResponse(429, {"error": "Rate Limit Exceeded"}),
        FakeResponse(429, {"error": "Rate Limit Exceeded"}),
        FakeResponse(429, {"error": "Rate Limit Exceeded"}),
        FakeResponse(200, [search_result(1, "Movie", 2023)]),
    ]
    client, transport, clock = make_client(lambda call: responses.pop(0))

    matches = client.search_movie("Movie", "2023")

    assert [m.trakt_id for m in matches] == [1]
    assert clock.sleeps == [4.0, 8.0, 16.0]
    assert len(transport.calls) == 4


def test_throttled_four_times_propagates():
    client, transport, clock = make_client(
        lambda call: FakeResponse(429, {"error": "Rate Limit Exceeded"})
    )

    with pytest.raises(ThrottledError) as excinfo:
        client.call("/search/movie", params={"query": "Movie"})

    assert excinfo.value.status_code == 429
    assert "Rate Limit Exceeded" in str(excinfo.value)
    assert len(transport.calls) == 4
    assert clock.sleeps == [4.0, 8.0, 16.0]


def test_other_errors_are_not_retried():
    client, transport, clock = make_client(
        lambda call: FakeResponse(500, {"error": "server_error"})
    )

    with pytest.raises(APIError) as excinfo:
        client.call("/sync/history", {"movies": []}, method="POST")

    assert excinfo.value.status_code == 500
    assert not isinstance(excinfo.value, ThrottledError)
    assert len(transport.calls) == 1
    assert clock.sleeps == []


def test_expired_token_raises_authentication_error():
    client, _, _ = make_client(lambda call: FakeResponse(401, None, reason="Unauthorized"))

    with pytest.raises(AuthenticationError) as excinfo:
        client.call("/users/settings")

    assert excinfo.value.message == "Access token invalid or expired"


def test_missing_credential_fails_without_network_call():
    client, transport, _ = make_client(ok_handler, access_token=None)

    with pytest.raises(NotAuthenticatedError, match="not initialized"):
        client.call("/search/movie")

    assert transport.calls == []


def test_bearer_header_attached_to_every_call():
    client, transport, _ = make_client(ok_handler, access_token="abc")
    client.call("/a")
    client.initialize("def")
    client.call("/b")

    assert [c.headers["Authorization"] for c in transport.calls] == ["Bearer abc", "Bearer def"]
    assert client.session.headers["trakt-api-key"] == "client-id"
    assert client.session.headers["trakt-api-version"] == "2"


def test_search_movie_sends_integer_year_and_parses_matches():
    results = [search_result(10, "Movie", 2023), search_result(11, "Movie II", 2023)]
    client, transport, _ = make_client(lambda call: FakeResponse(200, results))

    matches = client.search_movie("Movie", "2023")

    assert transport.calls[0].params == {"query": "Movie", "year": 2023}
    assert [(m.trakt_id, m.title, m.year, m.slug) for m in matches] == [
        (10, "Movie", 2023, "movie"),
        (11, "Movie II", 2023, "movie-ii"),
    ]


def test_search_movie_omits_non_numeric_year():
    client, transport, _ = make_client(ok_handler)
    client.search_movie("Movie", "")
    assert transport.calls[0].params == {"query": "Movie"}


def test_history_and_write_endpoints():
    def handler(call):
        if call.method == "GET":
            return FakeResponse(200, [
                {"id": 7, "watched_at": "2023-01-01T10:00:00.000Z", "action": "watch"},
            ])
        return FakeResponse(201, {
            "added": {"movies": 0},
            "not_found": {"movies": [{"ids": {"trakt": 5}}]},
        })

    client, transport, _ = make_client(handler)

    history = client.get_movie_history(5)
    response = client.add_to_history([{"ids": {"trakt": 5}, "watched_at": "2023-01-01T00:00:00.000Z"}])

    assert history[0].watched_at == "2023-01-01T10:00:00.000Z"
    assert history[0].history_id == 7
    assert response.added == 0
    assert response.not_found == [{"ids": {"trakt": 5}}]
    assert transport.paths() == ["GET /sync/history/movies/5", "POST /sync/history"]
    assert transport.calls[1].body == {
        "movies": [{"ids": {"trakt": 5}, "watched_at": "2023-01-01T00:00:00.000Z"}]
    }


def test_test_connection():
    client, _, _ = make_client(lambda call: FakeResponse(200, {"user": {"username": "me"}}))
    assert client.test_connection() is True

    failing, _, _ = make_client(lambda call: FakeResponse(401, None))
    assert failing.test_connection() is False


def test_rate_limiter_serialises_concurrent_callers():
    """Callers on different threads never overlap inside a slot."""
    limiter = RateLimiter(min_interval=0, batch_size=0, batch_cooldown=0)
    active = []
    overlaps = []

    def worker():
        for _ in range(50):
            with limiter.slot():
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                active.pop()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []
