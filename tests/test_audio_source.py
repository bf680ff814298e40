import pytest
import yt_dlp

from quaver import audio_source
from quaver.audio_source import AudioResolver, Track, _classify_download_error, _track_from_entry
from quaver.errors import ResolutionFailed

from conftest import make_track, run


def _resolver(monkeypatch, result=None, error=None):
    resolver = AudioResolver()
    seen = []

    async def fake_extract(query, **overrides):
        seen.append(query)
        if error is not None:
            raise error
        return result

    monkeypatch.setattr(resolver, "_extract", fake_extract)
    return resolver, seen


class TestErrorClassification:
    @pytest.mark.parametrize("message, reason", [
        ("HTTP Error 429: Too Many Requests", ResolutionFailed.RATE_LIMITED),
        ("Sign in to confirm you're not a bot, rate limit exceeded", ResolutionFailed.RATE_LIMITED),
        ("Video unavailable", ResolutionFailed.NOT_FOUND),
        ("Private video. Sign in if you've been granted access", ResolutionFailed.NOT_FOUND),
        ("HTTP Error 404: Not Found", ResolutionFailed.NOT_FOUND),
        ("Connection reset by peer", ResolutionFailed.NETWORK_ERROR),
    ])
    def test_reasons(self, message, reason):
        assert _classify_download_error(Exception(message)) == reason


class TestTrackFromEntry:
    def test_full_entry(self):
        track = _track_from_entry({
            "title": "Song",
            "webpage_url": "https://www.youtube.com/watch?v=x",
            "url": "https://stream.example/x",
            "duration": 212.0,
            "thumbnail": "https://i.ytimg.com/x.jpg",
        }, requester="ada")
        assert track == Track("Song", "https://www.youtube.com/watch?v=x", 212,
                              "https://i.ytimg.com/x.jpg", "ada")

    def test_live_entry_has_no_duration(self):
        """Should leave duration unset for live streams and pick the first thumbnail."""
        track = _track_from_entry({
            "url": "https://www.youtube.com/watch?v=live",
            "duration": None,
            "thumbnails": [{"url": "a.jpg"}, {"url": "b.jpg"}],
        })
        assert track.title == "Unknown"
        assert track.duration is None
        assert track.thumbnail == "a.jpg"


class TestSearch:
    def test_plain_query_uses_single_search(self, monkeypatch):
        resolver, seen = _resolver(monkeypatch, {"entries": [
            {"title": "Hit", "webpage_url": "https://www.youtube.com/watch?v=h", "duration": 60},
        ]})
        track = run(resolver.search("some song", requester="bob"))
        assert seen == ["ytsearch1:some song"]
        assert track.title == "Hit"
        assert track.requester == "bob"

    def test_link_is_looked_up_directly(self, monkeypatch):
        url = "https://youtu.be/abc"
        resolver, seen = _resolver(monkeypatch, {"title": "Linked", "webpage_url": url})
        track = run(resolver.search(url))
        assert seen == [url]
        assert track.url == url

    def test_no_results(self, monkeypatch):
        resolver, _ = _resolver(monkeypatch, {"entries": []})
        assert run(resolver.search("nothing")) is None

    def test_download_error_returns_none(self, monkeypatch):
        """Should report a failed search as no result instead of raising."""
        error = yt_dlp.utils.DownloadError("HTTP Error 429: Too Many Requests")
        resolver, _ = _resolver(monkeypatch, error=error)
        assert run(resolver.search("anything")) is None


class TestResolve:
    def test_download_error_is_classified(self, monkeypatch):
        error = yt_dlp.utils.DownloadError("Video unavailable")
        resolver, _ = _resolver(monkeypatch, error=error)
        with pytest.raises(ResolutionFailed) as info:
            run(resolver.resolve(make_track("gone")))
        assert info.value.reason == ResolutionFailed.NOT_FOUND

    def test_os_error_is_network_error(self, monkeypatch):
        resolver, _ = _resolver(monkeypatch, error=ConnectionResetError("reset"))
        with pytest.raises(ResolutionFailed) as info:
            run(resolver.resolve(make_track("a")))
        assert info.value.reason == ResolutionFailed.NETWORK_ERROR

    def test_missing_stream_url(self, monkeypatch):
        resolver, _ = _resolver(monkeypatch, {"title": "No stream"})
        with pytest.raises(ResolutionFailed) as info:
            run(resolver.resolve(make_track("a")))
        assert info.value.reason == ResolutionFailed.NOT_FOUND

    def test_builds_source_from_stream_url(self, monkeypatch):
        built = []

        def fake_from_stream_url(stream_url, *, track, codec, volume):
            built.append((stream_url, track, codec, volume))
            return "source"

        monkeypatch.setattr(audio_source.YTDLSource, "from_stream_url", fake_from_stream_url)
        resolver, _ = _resolver(monkeypatch, {"url": "https://stream.example/a", "acodec": "opus"})
        track = make_track("a")
        assert run(resolver.resolve(track)) == "source"
        assert built == [("https://stream.example/a", track, "opus", 0.5)]
