"""Tests for URL classification and identifier extraction"""

import pytest

from tracker.core.classifier import EntityKind, IdentifierKind, Platform, classify
from tracker.core.errors import UnresolvableIdentifier, UnsupportedPlatform


class TestSoundClassification:
    """Sound URLs across platforms"""

    def test_tiktok_music_slug_is_direct(self):
        result = classify("https://www.tiktok.com/music/Example-1234567890123456789")

        assert result.ok
        assert result.platform == Platform.TIKTOK
        assert result.identifier_kind == IdentifierKind.DIRECT
        assert result.raw_identifier == "1234567890123456789"

    def test_tiktok_bare_music_id(self):
        result = classify("tiktok.com/music/7212345678901234567?lang=en")

        assert result.ok
        assert result.raw_identifier == "7212345678901234567"
        assert result.url.startswith("https://")

    def test_tiktok_video_is_indirect(self):
        result = classify("https://www.tiktok.com/@someone/video/7300000000000000001")

        assert result.ok
        assert result.identifier_kind == IdentifierKind.INDIRECT
        assert result.raw_identifier == "7300000000000000001"
        assert result.owner_handle == "someone"

    def test_instagram_audio_page_is_direct(self):
        result = classify("https://www.instagram.com/reels/audio/998877665544/")

        assert result.ok
        assert result.platform == Platform.INSTAGRAM
        assert result.identifier_kind == IdentifierKind.DIRECT
        assert result.raw_identifier == "998877665544"

    def test_instagram_reel_is_indirect(self):
        result = classify("https://www.instagram.com/reel/CxYz123_abc/")

        assert result.ok
        assert result.identifier_kind == IdentifierKind.INDIRECT
        assert result.raw_identifier == "CxYz123_abc"

    @pytest.mark.parametrize("url", [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://twitter.com/someone/status/1700000000000000000",
        "https://www.facebook.com/page/posts/123456",
    ])
    def test_platforms_without_sound_support(self, url):
        result = classify(url, EntityKind.SOUND)

        assert not result.ok
        assert result.error is UnsupportedPlatform
        assert result.platform is not None

    def test_music_page_without_id(self):
        result = classify("https://www.tiktok.com/music/")

        assert not result.ok
        assert result.error is UnresolvableIdentifier


class TestPostClassification:
    """Post URLs across platforms"""

    @pytest.mark.parametrize("url,platform,identifier", [
        ("https://www.tiktok.com/@user/video/7300000000000000001", Platform.TIKTOK, "7300000000000000001"),
        ("https://www.instagram.com/p/CxYz123/", Platform.INSTAGRAM, "CxYz123"),
        ("https://www.instagram.com/someone/reel/CxYz123/", Platform.INSTAGRAM, "CxYz123"),
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=10", Platform.YOUTUBE, "dQw4w9WgXcQ"),
        ("https://youtu.be/dQw4w9WgXcQ", Platform.YOUTUBE, "dQw4w9WgXcQ"),
        ("https://www.youtube.com/shorts/dQw4w9WgXcQ", Platform.YOUTUBE, "dQw4w9WgXcQ"),
        ("https://x.com/someone/status/1700000000000000000", Platform.TWITTER, "1700000000000000000"),
        ("https://www.facebook.com/page/posts/pfbid0abc", Platform.FACEBOOK, "pfbid0abc"),
        ("https://www.facebook.com/photo.php?fbid=123456789", Platform.FACEBOOK, "123456789"),
    ])
    def test_direct_post_identifiers(self, url, platform, identifier):
        result = classify(url, EntityKind.POST)

        assert result.ok
        assert result.platform == platform
        assert result.raw_identifier == identifier
        assert result.identifier_kind == IdentifierKind.DIRECT

    def test_tiktok_short_link_is_indirect(self):
        result = classify("https://vm.tiktok.com/ZMabc123/", EntityKind.POST)

        assert result.ok
        assert result.identifier_kind == IdentifierKind.INDIRECT
        assert result.rule == "short_link"

    def test_instagram_profile_link_gets_specific_message(self):
        result = classify("https://www.instagram.com/someone/", EntityKind.POST)

        assert not result.ok
        assert result.error is UnresolvableIdentifier
        assert "profile link" in result.message

    def test_twitter_owner_handle(self):
        result = classify("https://twitter.com/SomeOne/status/1700000000000000000", EntityKind.POST)

        assert result.owner_handle == "someone"


class TestClassifierInputHandling:
    """The classifier is total: bad input yields an error value"""

    @pytest.mark.parametrize("raw", ["", "   ", None, 12345])
    def test_empty_or_non_string_input(self, raw):
        result = classify(raw)

        assert not result.ok
        assert result.error is UnsupportedPlatform

    def test_unknown_host(self):
        result = classify("https://example.com/music/123456789")

        assert not result.ok
        assert result.error is UnsupportedPlatform
        assert result.platform is None

    def test_quoted_url_without_scheme(self):
        result = classify('"www.tiktok.com/music/Example-1234567890123456789"')

        assert result.ok
        assert result.url == "https://www.tiktok.com/music/Example-1234567890123456789"

    def test_lookalike_domain_is_rejected(self):
        result = classify("https://nottiktok.com/music/Example-1234567890123456789")

        assert not result.ok
        assert result.error is UnsupportedPlatform

    def test_error_converts_to_exception(self):
        result = classify("https://www.youtube.com/watch?v=dQw4w9WgXcQ")

        exc = result.to_exception()
        assert isinstance(exc, UnsupportedPlatform)
        assert exc.details["platform"] == "youtube"
        assert exc.retryable is False
