import pytest

from quaver.url_parser import InputType, classify


class TestClassify:
    @pytest.mark.parametrize("query", [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "http://m.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://music.youtube.com/watch?v=dQw4w9WgXcQ",
        "youtube.com/watch?v=dQw4w9WgXcQ",
    ])
    def test_youtube_links(self, query):
        """Should pass YouTube links through unchanged."""
        assert classify(query) == (InputType.YOUTUBE_URL, query)

    @pytest.mark.parametrize("query", [
        "never gonna give you up",
        "https://open.spotify.com/track/abc",
        "youtube",
    ])
    def test_search_queries(self, query):
        assert classify(query) == (InputType.SEARCH_QUERY, query)

    def test_strips_whitespace(self):
        assert classify("  lofi beats \n") == (InputType.SEARCH_QUERY, "lofi beats")
