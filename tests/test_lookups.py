import base64

import pytest
import requests
import responses

import spotify_widget
from spotify_widget import DEFAULT_CONFIG, Track

AUTH_URL = DEFAULT_CONFIG.auth_url
CURRENT_URL = DEFAULT_CONFIG.current_url
RECENT_URL = DEFAULT_CONFIG.recent_url
PROFILE_URL = DEFAULT_CONFIG.profile_url

SAMPLE_ITEM = {
    "name": "YYZ",
    "artists": [{"name": "Rush"}, {"name": "Someone Else"}],
    "album": {
        "name": "Moving Pictures",
        "images": [
            {"url": "https://i.scdn.co/image/large", "width": 640, "height": 640},
            {"url": "https://i.scdn.co/image/medium", "width": 300, "height": 300},
        ],
    },
    "external_urls": {"spotify": "https://open.spotify.com/track/1RKbVxcm267VdsIzqY7msi"},
}

RECENT_ITEM = {
    "name": "Limelight",
    "artists": [{"name": "Rush"}],
    "album": {"name": "Moving Pictures", "images": []},
    "external_urls": {"spotify": "https://open.spotify.com/track/limelight"},
}


def calls_to(url):
    return [c for c in responses.calls if c.request.url == url]


# access token

@responses.activate
def test_access_token_exchange_sends_basic_auth_and_form_body():
    responses.add(responses.POST, AUTH_URL, json={"access_token": "acc-123", "token_type": "Bearer"})

    token = spotify_widget.get_access_token("cid", "secret", "refresh-xyz")

    assert token == "acc-123"
    assert len(responses.calls) == 1
    req = responses.calls[0].request
    expected = base64.b64encode(b"cid:secret").decode()
    assert req.headers["Authorization"] == f"Basic {expected}"
    assert req.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert req.body == "grant_type=refresh_token&refresh_token=refresh-xyz"


@responses.activate
def test_access_token_non_2xx_returns_none():
    responses.add(responses.POST, AUTH_URL, status=400, json={"error": "invalid_grant"})

    assert spotify_widget.get_access_token("cid", "secret", "bad") is None


@responses.activate
def test_access_token_missing_field_returns_none():
    responses.add(responses.POST, AUTH_URL, json={"token_type": "Bearer"})

    assert spotify_widget.get_access_token("cid", "secret", "rt") is None


@responses.activate
def test_access_token_malformed_body_returns_none():
    responses.add(responses.POST, AUTH_URL, body="<html>oops</html>", content_type="text/html")

    assert spotify_widget.get_access_token("cid", "secret", "rt") is None


@responses.activate
def test_access_token_network_error_returns_none():
    responses.add(responses.POST, AUTH_URL, body=requests.exceptions.ConnectionError("down"))

    assert spotify_widget.get_access_token("cid", "secret", "rt") is None


# currently playing

@pytest.mark.parametrize("is_playing", [True, False])
@responses.activate
def test_current_track_follows_playback_flag(is_playing):
    responses.add(responses.GET, CURRENT_URL, json={"is_playing": is_playing, "item": SAMPLE_ITEM})

    track = spotify_widget.get_current_track("acc")

    assert track == Track(
        name="YYZ",
        artist="Rush",
        album="Moving Pictures",
        url="https://open.spotify.com/track/1RKbVxcm267VdsIzqY7msi",
        is_playing=is_playing,
        image="https://i.scdn.co/image/large",
    )
    assert responses.calls[0].request.headers["Authorization"] == "Bearer acc"


@responses.activate
def test_current_track_no_content_is_not_an_error():
    responses.add(responses.GET, CURRENT_URL, status=204)

    assert spotify_widget.get_current_track("acc") is None


@responses.activate
def test_current_track_empty_body_is_nothing_playing():
    responses.add(responses.GET, CURRENT_URL, status=200, body="")

    assert spotify_widget.get_current_track("acc") is None


@responses.activate
def test_current_track_without_item():
    responses.add(responses.GET, CURRENT_URL, json={"is_playing": True, "item": None, "currently_playing_type": "ad"})

    assert spotify_widget.get_current_track("acc") is None


@responses.activate
def test_current_track_http_error_degrades_to_none():
    responses.add(responses.GET, CURRENT_URL, status=401, json={"error": {"status": 401}})

    assert spotify_widget.get_current_track("acc") is None


@responses.activate
def test_current_track_malformed_item_degrades_to_none():
    item = dict(SAMPLE_ITEM, artists=[])
    responses.add(responses.GET, CURRENT_URL, json={"is_playing": True, "item": item})

    assert spotify_widget.get_current_track("acc") is None


# recently played

@responses.activate
def test_recent_track_is_never_playing():
    responses.add(
        responses.GET,
        RECENT_URL,
        json={"items": [{"track": RECENT_ITEM, "played_at": "2026-10-18T10:00:00.000Z"}]},
    )

    track = spotify_widget.get_recent_track("acc")

    assert track is not None
    assert track.name == "Limelight"
    assert track.is_playing is False
    assert track.image is None


@responses.activate
def test_recent_track_empty_history():
    responses.add(responses.GET, RECENT_URL, json={"items": []})

    assert spotify_widget.get_recent_track("acc") is None


@responses.activate
def test_recent_track_timeout_degrades_to_none():
    responses.add(responses.GET, RECENT_URL, body=requests.exceptions.Timeout("slow"))

    assert spotify_widget.get_recent_track("acc") is None


# resolution chain

@responses.activate
def test_resolve_prefers_current_and_skips_fallback():
    responses.add(responses.GET, CURRENT_URL, json={"is_playing": True, "item": SAMPLE_ITEM})
    responses.add(responses.GET, RECENT_URL, json={"items": [{"track": RECENT_ITEM}]})

    track = spotify_widget.resolve_track("acc")

    assert track.name == "YYZ"
    assert track.is_playing is True
    assert calls_to(RECENT_URL) == []


@responses.activate
def test_resolve_falls_back_once_on_no_content():
    responses.add(responses.GET, CURRENT_URL, status=204)
    responses.add(responses.GET, RECENT_URL, json={"items": [{"track": RECENT_ITEM}]})

    track = spotify_widget.resolve_track("acc")

    assert track.name == "Limelight"
    assert track.is_playing is False
    assert len(calls_to(CURRENT_URL)) == 1
    assert len(calls_to(RECENT_URL)) == 1


@responses.activate
def test_resolve_both_empty():
    responses.add(responses.GET, CURRENT_URL, status=204)
    responses.add(responses.GET, RECENT_URL, json={"items": []})

    assert spotify_widget.resolve_track("acc") is None


def test_resolve_stops_at_first_hit():
    seen = []
    hit = Track(name="a", artist="b", album="c", url="", is_playing=False)

    def empty(token, session=None, config=None):
        seen.append("empty")
        return None

    def found(token, session=None, config=None):
        seen.append("found")
        return hit

    def never(token, session=None, config=None):
        seen.append("never")
        return None

    assert spotify_widget.resolve_track("acc", lookups=(empty, found, never)) is hit
    assert seen == ["empty", "found"]


# profile

@responses.activate
def test_check_profile_failure_is_ignored():
    responses.add(responses.GET, PROFILE_URL, status=403, json={"error": "forbidden"})

    assert spotify_widget.check_profile("acc") is None


@responses.activate
def test_check_profile_returns_payload():
    profile = {"display_name": "felipe", "country": "CL", "product": "premium", "followers": {"total": 3}}
    responses.add(responses.GET, PROFILE_URL, json=profile)

    assert spotify_widget.check_profile("acc") == profile
