"""Tests for the platform searchers, token provider and fingerprint oracle.

All HTTP is answered by httpx.MockTransport handlers; nothing leaves the process.
"""

from __future__ import annotations

import asyncio
import base64

import httpx
import pytest

from pulsefind.config import ACRCloudConfig, SpotifyConfig, YouTubeConfig
from pulsefind.errors import RateLimitExceeded, SearchFailure
from pulsefind.matching.models import MatchCandidate, MetadataHint, Source
from pulsefind.matching.oracle import ACRCloudOracle, sign_request
from pulsefind.matching.spotify import SpotifySearcher, rank_confidence
from pulsefind.matching.spotify import build_query as spotify_query
from pulsefind.matching.stubs import SoundCloudSearcher, TikTokSearcher
from pulsefind.matching.tokens import ClientCredentialsTokenProvider
from pulsefind.matching.youtube import YouTubeSearcher, clean_title, match_confidence

from .helpers import mock_client

HINT = MetadataHint(title="Song", artist="Artist")


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _token_response(request: httpx.Request, token: str = "tok") -> httpx.Response:
    assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"id:secret").decode()
    assert request.content == b"grant_type=client_credentials"
    return httpx.Response(200, json={"access_token": token, "expires_in": 3600})


# ---------------------------------------------------------------------------
# Token provider
# ---------------------------------------------------------------------------


class TestClientCredentialsTokenProvider:
    def _provider(self, client: httpx.AsyncClient, clock: FakeClock) -> ClientCredentialsTokenProvider:
        return ClientCredentialsTokenProvider(
            source="spotify",
            token_url="https://auth.example.com/token",
            client_id="id",
            client_secret="secret",
            client=client,
            clock=clock,
        )

    def test_token_is_cached(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return _token_response(request)

        async def _run() -> None:
            async with mock_client(handler) as client:
                provider = self._provider(client, FakeClock())
                assert await provider.get_token() == "tok"
                assert await provider.get_token() == "tok"

        asyncio.run(_run())
        assert len(calls) == 1

    def test_token_is_refreshed_inside_expiry_margin(self) -> None:
        tokens = iter(["first", "second"])

        def handler(request: httpx.Request) -> httpx.Response:
            return _token_response(request, next(tokens))

        async def _run() -> None:
            clock = FakeClock()
            async with mock_client(handler) as client:
                provider = self._provider(client, clock)
                assert await provider.get_token() == "first"

                clock.now += 3600 - 61
                assert await provider.get_token() == "first"

                clock.now += 2  # now within the 60s margin
                assert await provider.get_token() == "second"

        asyncio.run(_run())

    def test_concurrent_callers_share_one_refresh(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return _token_response(request)

        async def _run() -> list[str]:
            async with mock_client(handler) as client:
                provider = self._provider(client, FakeClock())
                return await asyncio.gather(*(provider.get_token() for _ in range(5)))

        assert asyncio.run(_run()) == ["tok"] * 5
        assert len(calls) == 1

    def test_rate_limited_token_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "12"})

        async def _run() -> None:
            async with mock_client(handler) as client:
                await self._provider(client, FakeClock()).get_token()

        with pytest.raises(RateLimitExceeded) as exc_info:
            asyncio.run(_run())
        assert exc_info.value.retry_after == 12.0

    def test_rejected_credentials(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "invalid_client"})

        async def _run() -> None:
            async with mock_client(handler) as client:
                await self._provider(client, FakeClock()).get_token()

        with pytest.raises(SearchFailure, match="invalid_client"):
            asyncio.run(_run())


# ---------------------------------------------------------------------------
# YouTube
# ---------------------------------------------------------------------------


YOUTUBE_ITEMS = [
    {
        "id": {"videoId": "v1"},
        "snippet": {
            "title": "Artist - Song (Official Audio)",
            "channelTitle": "ArtistVEVO",
            "thumbnails": {"high": {"url": "https://img.example.com/v1.jpg"}},
        },
    },
    {"id": {"videoId": "v2"}, "snippet": {"title": "Something Else Entirely", "channelTitle": "x"}},
    {"id": {"videoId": "v3"}, "snippet": {"title": "Song cover", "channelTitle": "y"}},
    {"id": {"channelId": "c1"}, "snippet": {"title": "Artist Song", "channelTitle": "z"}},
]


class TestYouTubeSearcher:
    def test_scores_and_filters(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            params = request.url.params
            assert params["q"] == "Artist Song official audio"
            assert params["videoCategoryId"] == "10"
            assert params["key"] == "yt-key"
            return httpx.Response(200, json={"items": YOUTUBE_ITEMS})

        async def _run() -> list[MatchCandidate]:
            async with mock_client(handler) as client:
                searcher = YouTubeSearcher(YouTubeConfig(api_key="yt-key"), client)
                return await searcher.search(HINT)

        results = asyncio.run(_run())

        assert [r.youtube_id for r in results] == ["v1", "v3"]
        assert [r.confidence for r in results] == [100, 50]
        first = results[0]
        assert first.title == "Artist - Song"
        assert first.artist == "ArtistVEVO"
        assert first.source is Source.YOUTUBE
        assert first.youtube_url == "https://www.youtube.com/watch?v=v1"
        assert first.album_cover_url == "https://img.example.com/v1.jpg"

    def test_disabled_without_key(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async def _run() -> list[MatchCandidate]:
            async with mock_client(handler) as client:
                searcher = YouTubeSearcher(None, client)
                assert not searcher.enabled
                return await searcher.search(HINT)

        assert asyncio.run(_run()) == []

    def test_quota_exhausted(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "30"})

        async def _run() -> None:
            async with mock_client(handler) as client:
                await YouTubeSearcher(YouTubeConfig(api_key="k"), client).search(HINT)

        with pytest.raises(RateLimitExceeded) as exc_info:
            asyncio.run(_run())
        assert exc_info.value.source == "youtube"
        assert exc_info.value.retry_after == 30.0

    def test_api_error_message_is_kept(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"error": {"message": "API key not valid"}})

        async def _run() -> None:
            async with mock_client(handler) as client:
                await YouTubeSearcher(YouTubeConfig(api_key="k"), client).search(HINT)

        with pytest.raises(SearchFailure, match="API key not valid"):
            asyncio.run(_run())

    def test_connection_error_becomes_search_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def _run() -> None:
            async with mock_client(handler) as client:
                await YouTubeSearcher(YouTubeConfig(api_key="k"), client).search(HINT)

        with pytest.raises(SearchFailure, match="search request failed"):
            asyncio.run(_run())

    def test_match_confidence(self) -> None:
        assert match_confidence("Drake Hotline Bling", "Drake - Hotline Bling") == 100
        assert match_confidence("hotline bling", "Hotline Bling (Remix)") == 100
        assert match_confidence("Drake Hotline Bling", "Bling bling") == 33
        assert match_confidence("ab cd", "anything") == 0

    def test_clean_title(self) -> None:
        assert clean_title("Song [Official Video]") == "Song"
        assert clean_title("Song - Official Music Video") == "Song"
        assert clean_title("Song (Remix)") == "Song (Remix)"


# ---------------------------------------------------------------------------
# Spotify
# ---------------------------------------------------------------------------


def _spotify_track(index: int, popularity: int) -> dict[str, object]:
    return {
        "id": f"t{index}",
        "name": f"Song {index}",
        "artists": [{"name": "Artist"}, {"name": "Guest"}],
        "album": {
            "id": f"a{index}",
            "name": "Album",
            "release_date": "2020-01-01",
            "images": [{"url": f"https://img.example.com/{index}.jpg"}],
        },
        "popularity": popularity,
        "external_ids": {"isrc": f"ISRC{index}"},
        "external_urls": {"spotify": f"https://open.spotify.com/track/t{index}"},
        "preview_url": f"https://p.scdn.co/{index}.mp3",
    }


class TestSpotifySearcher:
    def test_search(self) -> None:
        token_calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "accounts.spotify.com":
                token_calls.append(request)
                return _token_response(request)
            assert request.headers["Authorization"] == "Bearer tok"
            assert request.url.params["q"] == "track:Song artist:Artist"
            assert request.url.params["type"] == "track"
            items = [_spotify_track(0, 80), _spotify_track(1, 11), _spotify_track(2, 0)]
            return httpx.Response(200, json={"tracks": {"items": items}})

        async def _run() -> list[MatchCandidate]:
            async with mock_client(handler) as client:
                searcher = SpotifySearcher(SpotifyConfig(client_id="id", client_secret="secret"), client)
                assert searcher.enabled
                await searcher.search(HINT)
                return await searcher.search(HINT)

        results = asyncio.run(_run())

        assert len(token_calls) == 1
        assert [r.confidence for r in results] == [90, 53]
        first = results[0]
        assert first.title == "Song 0"
        assert first.artist == "Artist, Guest"
        assert first.album == "Album"
        assert first.isrc == "ISRC0"
        assert first.spotify_id == "t0"
        assert first.spotify_album_id == "a0"
        assert first.spotify_url == "https://open.spotify.com/track/t0"
        assert first.preview_url == "https://p.scdn.co/0.mp3"
        assert first.popularity == 80

    def test_no_results(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "accounts.spotify.com":
                return _token_response(request)
            return httpx.Response(200, json={"tracks": {"items": []}})

        async def _run() -> list[MatchCandidate]:
            async with mock_client(handler) as client:
                config = SpotifyConfig(client_id="id", client_secret="secret")
                return await SpotifySearcher(config, client).search(HINT)

        assert asyncio.run(_run()) == []

    def test_disabled_without_credentials(self) -> None:
        async def _run() -> list[MatchCandidate]:
            async with mock_client(lambda request: httpx.Response(500)) as client:
                searcher = SpotifySearcher(None, client)
                assert not searcher.enabled
                return await searcher.search(HINT)

        assert asyncio.run(_run()) == []

    def test_blank_credentials_disable_search(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async def _run() -> list[MatchCandidate]:
            async with mock_client(handler) as client:
                config = SpotifyConfig(client_id="", client_secret="")
                searcher = SpotifySearcher(config, client)
                assert not searcher.enabled
                return await searcher.search(HINT)

        assert asyncio.run(_run()) == []

    def test_query_and_rank(self) -> None:
        assert spotify_query(MetadataHint(title="Song")) == "track:Song"
        assert rank_confidence(0, 100) == 100
        assert rank_confidence(30, 50) == 25


def test_stub_searchers_are_disabled() -> None:
    for searcher in (TikTokSearcher(), SoundCloudSearcher()):
        assert not searcher.enabled
        assert asyncio.run(searcher.search(HINT)) == []


# ---------------------------------------------------------------------------
# Fingerprint oracle
# ---------------------------------------------------------------------------


ACR_CONFIG = ACRCloudConfig(host="identify.example.com", access_key="key1", access_secret="secret1")
TIMESTAMP = 1_700_000_000


class TestACRCloudOracle:
    def test_identify(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url == "https://identify.example.com/v1/identify"
            assert request.headers["content-type"].startswith("multipart/form-data")
            body = request.content
            assert b"key1" in body
            assert sign_request("key1", "secret1", TIMESTAMP).encode() in body
            assert str(TIMESTAMP).encode() in body
            assert b"RIFFdata" in body
            return httpx.Response(
                200,
                json={
                    "status": {"code": 0, "msg": "Success"},
                    "metadata": {
                        "music": [
                            {
                                "title": "Song",
                                "artists": [{"name": "A"}, {"name": "B"}],
                                "album": {"name": "Album"},
                                "score": 92,
                                "release_date": "2019-05-01",
                                "external_ids": {"isrc": "US1"},
                                "external_metadata": {
                                    "spotify": {"track": {"id": "sp1"}, "album": {"id": "al1"}},
                                    "youtube": {"vid": "yt1"},
                                },
                            },
                            {"artists": [{"name": "Untitled"}], "score": 80},
                        ]
                    },
                },
            )

        async def _run() -> list[MatchCandidate]:
            async with mock_client(handler) as client:
                oracle = ACRCloudOracle(ACR_CONFIG, client, clock=lambda: float(TIMESTAMP))
                return await oracle.identify(b"RIFFdata", "PEAK DROP (highest energy)")

        results = asyncio.run(_run())

        assert len(results) == 1
        match = results[0]
        assert (match.title, match.artist, match.album) == ("Song", "A, B", "Album")
        assert match.confidence == 92
        assert match.source is Source.ORACLE
        assert match.isrc == "US1"
        assert match.spotify_id == "sp1"
        assert match.spotify_album_id == "al1"
        assert match.youtube_url == "https://www.youtube.com/watch?v=yt1"
        assert match.segment_name == "PEAK DROP (highest energy)"

    def test_no_result_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": {"code": 1001, "msg": "No result"}})

        async def _run() -> list[MatchCandidate]:
            async with mock_client(handler) as client:
                return await ACRCloudOracle(ACR_CONFIG, client).identify(b"RIFF", "FULL")

        assert asyncio.run(_run()) == []

    def test_disabled_without_config(self) -> None:
        async def _run() -> list[MatchCandidate]:
            async with mock_client(lambda request: httpx.Response(500)) as client:
                oracle = ACRCloudOracle(None, client)
                assert not oracle.enabled
                return await oracle.identify(b"RIFF", "FULL")

        assert asyncio.run(_run()) == []

    def test_blank_credentials_disable_identify(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async def _run() -> list[MatchCandidate]:
            async with mock_client(handler) as client:
                config = ACRCloudConfig(access_key="", access_secret="")
                oracle = ACRCloudOracle(config, client)
                assert not oracle.enabled
                return await oracle.identify(b"RIFF", "FULL")

        assert asyncio.run(_run()) == []

    def test_read_timeout_becomes_search_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async def _run() -> None:
            async with mock_client(handler) as client:
                await ACRCloudOracle(ACR_CONFIG, client).identify(b"RIFF", "FULL")

        with pytest.raises(SearchFailure, match="identify request failed"):
            asyncio.run(_run())

    def test_signature_shape(self) -> None:
        signature = sign_request("key1", "secret1", TIMESTAMP)
        assert len(base64.b64decode(signature)) == 20  # SHA-1 digest
        assert signature != sign_request("key1", "secret1", TIMESTAMP + 1)
