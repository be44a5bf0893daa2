#!/usr/bin/env python3
import base64
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional

import requests

log = logging.getLogger("spotify_widget")

CREDENTIAL_VARS = ("SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET", "SPOTIFY_REFRESH_TOKEN")

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


# -----------------------------
# Configuration
# -----------------------------
@dataclass(frozen=True)
class FontSizes:
    title: str = "16px"
    artist: str = "14px"
    album: str = "12px"


@dataclass(frozen=True)
class WidgetConfig:
    auth_url: str = "https://accounts.spotify.com/api/token"
    current_url: str = "https://api.spotify.com/v1/me/player/currently-playing"
    recent_url: str = "https://api.spotify.com/v1/me/player/recently-played?limit=1"
    profile_url: str = "https://api.spotify.com/v1/me"
    out_path: str = "assets/spotify-widget.svg"

    api_timeout: int = 25
    cover_timeout: int = 10

    width: int = 400
    height: int = 120
    background_color: str = "#1a1a1a"
    text_color: str = "#ffffff"
    accent_color: str = "#1db954"
    muted_color: str = "#888888"
    font_family: str = "Segoe UI, Arial, sans-serif"
    font_size: FontSizes = field(default_factory=FontSizes)

    max_name: int = 25
    max_artist: int = 25
    max_album: int = 30
    ellipsis: str = "..."


DEFAULT_CONFIG = WidgetConfig()


class ConfigError(RuntimeError):
    """Raised when required Spotify configuration is missing."""


def env_str(name: str, default: str, environ: Optional[Mapping[str, str]] = None) -> str:
    environ = os.environ if environ is None else environ
    v = (environ.get(name) or "").strip()
    return v or default


def env_bool(name: str, default: bool = True, environ: Optional[Mapping[str, str]] = None) -> bool:
    environ = os.environ if environ is None else environ
    v = (environ.get(name) or "").strip()
    if v == "":
        return default
    return v not in ("0", "false", "False", "no", "NO")


def load_credentials(environ: Optional[Mapping[str, str]] = None) -> tuple[str, str, str]:
    environ = os.environ if environ is None else environ
    values = [(environ.get(name) or "").strip() for name in CREDENTIAL_VARS]
    missing = [name for name, v in zip(CREDENTIAL_VARS, values) if not v]
    if missing:
        raise ConfigError("Missing Spotify secrets: " + " / ".join(missing))
    client_id, client_secret, refresh_token = values
    return client_id, client_secret, refresh_token


def mask(secret: str) -> str:
    return f"{secret[:8]}..." if secret else "<unset>"


# -----------------------------
# Data model
# -----------------------------
@dataclass(frozen=True)
class Track:
    name: str
    artist: str
    album: str
    url: str
    is_playing: bool
    image: Optional[str] = None

    @classmethod
    def from_item(cls, item: dict, is_playing: bool) -> "Track":
        album = item["album"]
        images = album.get("images") or []
        return cls(
            name=item["name"],
            artist=item["artists"][0]["name"],
            album=album["name"],
            url=(item.get("external_urls") or {}).get("spotify", ""),
            is_playing=bool(is_playing),
            image=(images[0].get("url") or None) if images else None,
        )

    @property
    def status(self) -> str:
        return "Now Playing" if self.is_playing else "Recently Played"


# -----------------------------
# HTTP helpers
# -----------------------------
def http_json(session, url: str, headers=None, data=None, timeout: int = 25):
    http = session or requests
    if data is None:
        r = http.get(url, headers=headers or {}, timeout=timeout)
    else:
        r = http.post(url, headers=headers or {}, data=data, timeout=timeout)
    txt = r.text.strip()
    return r.status_code, (r.json() if txt else None)


def bearer(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}


def is_ok(code: int) -> bool:
    return 200 <= code < 300


# -----------------------------
# Access token
# -----------------------------
def get_access_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    session: Optional[requests.Session] = None,
    config: WidgetConfig = DEFAULT_CONFIG,
) -> Optional[str]:
    log.info("Requesting access token (client id %s, refresh token %s)", mask(client_id), mask(refresh_token))
    auth = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()
    try:
        code, payload = http_json(
            session,
            config.auth_url,
            headers={
                "Authorization": f"Basic {auth}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            timeout=config.api_timeout,
        )
    except (requests.RequestException, ValueError) as e:
        log.error("Token request failed: %s", e)
        return None

    if not is_ok(code) or not isinstance(payload, dict):
        log.error("Token endpoint error (HTTP %s): %s", code, payload)
        return None

    token = payload.get("access_token")
    if not token:
        log.error("No access_token in token response: %s", payload)
        return None

    log.info("Access token acquired")
    return token


# -----------------------------
# Track lookups
# -----------------------------
def get_current_track(
    access_token: str,
    session: Optional[requests.Session] = None,
    config: WidgetConfig = DEFAULT_CONFIG,
) -> Optional[Track]:
    log.info("Checking currently playing track")
    try:
        code, payload = http_json(session, config.current_url, headers=bearer(access_token), timeout=config.api_timeout)
    except (requests.RequestException, ValueError) as e:
        log.error("currently-playing request failed: %s", e)
        return None

    log.debug("currently-playing HTTP %s", code)
    if code == 204:
        log.info("Nothing playing right now (204 No Content)")
        return None
    if not is_ok(code):
        log.error("currently-playing returned HTTP %s: %s", code, payload)
        return None
    if not isinstance(payload, dict) or not payload.get("item"):
        # ads and podcast episodes come back without a track item
        log.info("currently-playing returned no track item")
        return None

    try:
        track = Track.from_item(payload["item"], payload.get("is_playing", False))
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        log.error("Malformed currently-playing item: %r", e)
        return None

    log.info("Found current track: %s - %s (%s)", track.artist, track.name, "playing" if track.is_playing else "paused")
    return track


def get_recent_track(
    access_token: str,
    session: Optional[requests.Session] = None,
    config: WidgetConfig = DEFAULT_CONFIG,
) -> Optional[Track]:
    log.info("Checking recently played track")
    try:
        code, payload = http_json(session, config.recent_url, headers=bearer(access_token), timeout=config.api_timeout)
    except (requests.RequestException, ValueError) as e:
        log.error("recently-played request failed: %s", e)
        return None

    log.debug("recently-played HTTP %s", code)
    if not is_ok(code) or not isinstance(payload, dict):
        log.error("recently-played returned HTTP %s: %s", code, payload)
        return None

    items = payload.get("items") or []
    if not items:
        log.info("No recently played tracks")
        return None

    try:
        track = Track.from_item(items[0]["track"], False)
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        log.error("Malformed recently-played item: %r", e)
        return None

    log.info("Found recent track: %s - %s (played at %s)", track.artist, track.name, items[0].get("played_at", "N/A"))
    return track


def resolve_track(
    access_token: str,
    session: Optional[requests.Session] = None,
    config: WidgetConfig = DEFAULT_CONFIG,
    lookups: Optional[Iterable[Callable[..., Optional[Track]]]] = None,
) -> Optional[Track]:
    """
    Runs the lookups in order and returns the first track found.
    Default order: currently-playing, then recently-played.
    """
    if lookups is None:
        lookups = (get_current_track, get_recent_track)
    for lookup in lookups:
        track = lookup(access_token, session=session, config=config)
        if track is not None:
            return track
    return None


def check_profile(
    access_token: str,
    session: Optional[requests.Session] = None,
    config: WidgetConfig = DEFAULT_CONFIG,
) -> Optional[dict]:
    try:
        code, payload = http_json(session, config.profile_url, headers=bearer(access_token), timeout=config.api_timeout)
    except (requests.RequestException, ValueError) as e:
        log.warning("Profile request failed: %s", e)
        return None
    if not is_ok(code) or not isinstance(payload, dict):
        log.warning("Profile endpoint returned HTTP %s: %s", code, payload)
        return None

    followers = (payload.get("followers") or {}).get("total", "N/A")
    log.info(
        "Profile: %s (country %s, product %s, followers %s)",
        payload.get("display_name"), payload.get("country"), payload.get("product"), followers,
    )
    return payload


# -----------------------------
# Cover art
# -----------------------------
def fetch_cover(
    url: Optional[str],
    session: Optional[requests.Session] = None,
    config: WidgetConfig = DEFAULT_CONFIG,
) -> Optional[str]:
    """
    Downloads the cover image and returns it as a data URI,
    or None when there is nothing usable to embed.
    """
    if not url:
        return None

    http = session or requests
    try:
        r = http.get(url, timeout=config.cover_timeout)
        r.raise_for_status()
    except requests.RequestException as e:
        log.warning("Cover fetch failed, using placeholder art: %s", e)
        return None

    mime = (r.headers.get("Content-Type") or "image/jpeg").split(";")[0].strip().lower()
    if not mime.startswith("image/"):
        log.warning("Cover is not an image (Content-Type=%s), using placeholder art", mime)
        return None
    if not r.content:
        log.warning("Cover response was empty, using placeholder art")
        return None

    return f"data:{mime};base64,{base64.b64encode(r.content).decode()}"


# -----------------------------
# SVG rendering
# -----------------------------
def esc_xml(s: str) -> str:
    return (
        (s or "")
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#39;")
    )


def truncate(s: str, length: int, marker: str = "...") -> str:
    s = s or ""
    return s[:length] + marker if len(s) > length else s


def placeholder_svg(config: WidgetConfig = DEFAULT_CONFIG) -> str:
    w, h = config.width, config.height
    return f'''<svg xmlns="http://www.w3.org/2000/svg" width="{w}" height="{h}" viewBox="0 0 {w} {h}">
  <rect width="100%" height="100%" fill="{config.background_color}" rx="8"/>
  <text x="{w // 2}" y="{h // 2}" text-anchor="middle" dominant-baseline="middle" font-family="{esc_xml(config.font_family)}"
        font-size="{config.font_size.title}" fill="{config.text_color}">🎵 Not playing anything</text>
</svg>
'''


def generate_svg(track: Optional[Track], cover: Optional[str] = None, config: WidgetConfig = DEFAULT_CONFIG) -> str:
    if track is None:
        return placeholder_svg(config)

    w, h = config.width, config.height
    font = esc_xml(config.font_family)
    fs = config.font_size
    x0, y0, size = 15, 15, 90
    x_text = x0 + size + 15

    status_color = config.accent_color if track.is_playing else config.muted_color
    name = esc_xml(truncate(track.name, config.max_name, config.ellipsis))
    artist = esc_xml(truncate(track.artist, config.max_artist, config.ellipsis))
    album = esc_xml(truncate(track.album, config.max_album, config.ellipsis))

    if cover:
        clip_def = (
            f'<clipPath id="cover-clip"><rect x="{x0}" y="{y0}" width="{size}" height="{size}" rx="4"/></clipPath>'
        )
        cover_block = (
            f'<image href="{esc_xml(cover)}" x="{x0}" y="{y0}" width="{size}" height="{size}" '
            f'preserveAspectRatio="xMidYMid slice" clip-path="url(#cover-clip)"/>'
        )
    else:
        clip_def = ""
        cover_block = (
            f'<rect x="{x0}" y="{y0}" width="{size}" height="{size}" fill="#333333" rx="4"/>\n'
            f'  <text x="{x0 + size // 2}" y="{y0 + size // 2 + 10}" text-anchor="middle" font-family="{font}" '
            f'font-size="30px" fill="#666666">🎵</text>'
        )

    pulse = ""
    if track.is_playing:
        pulse = (
            f'\n  <circle class="pulse" cx="{w - 30}" cy="25" r="4" fill="{config.accent_color}">\n'
            f'    <animate attributeName="opacity" values="1;0.5;1" dur="1.5s" repeatCount="indefinite"/>\n'
            f'  </circle>'
        )

    return f'''<svg xmlns="http://www.w3.org/2000/svg" width="{w}" height="{h}" viewBox="0 0 {w} {h}">
  <defs>
    <style>
      .bg {{ fill: {config.background_color}; }}
      .title {{ font-family: {font}; font-size: {fs.title}; fill: {config.text_color}; font-weight: bold; }}
      .artist {{ font-family: {font}; font-size: {fs.artist}; fill: #cccccc; }}
      .album {{ font-family: {font}; font-size: {fs.album}; fill: {config.muted_color}; }}
      .status {{ font-family: {font}; font-size: 12px; fill: {status_color}; }}
    </style>{clip_def}
  </defs>
  <rect width="100%" height="100%" class="bg" rx="8"/>
  {cover_block}

  <text x="{x_text}" y="25" class="status">🎵 {track.status}</text>
  <text x="{x_text}" y="45" class="title">{name}</text>
  <text x="{x_text}" y="65" class="artist">by {artist}</text>
  <text x="{x_text}" y="85" class="album">{album}</text>{pulse}
</svg>
'''


def write_svg(svg: str, path: str):
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(svg)


# -----------------------------
# Main
# -----------------------------
def log_summary(track: Optional[Track]):
    if track is not None:
        log.info("Track resolved: %s - %s (%s)", track.artist, track.name, track.status)
        return
    log.warning(
        "No track information available. Possible causes: nothing played on this account yet, "
        "private session, or missing scopes (user-read-currently-playing / user-read-recently-played)"
    )


def main(environ: Optional[Mapping[str, str]] = None) -> int:
    environ = os.environ if environ is None else environ
    logging.basicConfig(
        level=getattr(logging, env_str("SPOTIFY_LOG_LEVEL", "INFO", environ).upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    log.info("Spotify widget update started")

    try:
        client_id, client_secret, refresh_token = load_credentials(environ)
    except ConfigError as e:
        log.error("%s", e)
        return 1

    out_path = env_str("SPOTIFY_WIDGET_OUT", DEFAULT_CONFIG.out_path, environ)

    with requests.Session() as session:
        token = get_access_token(client_id, client_secret, refresh_token, session=session)
        if not token:
            log.error("Could not obtain an access token, aborting")
            return 1

        if env_bool("SPOTIFY_CHECK_PROFILE", False, environ):
            check_profile(token, session=session)

        track = resolve_track(token, session=session)
        log_summary(track)

        cover = None
        if track is not None and env_bool("SPOTIFY_EMBED_COVER", True, environ):
            cover = fetch_cover(track.image, session=session)

    svg = generate_svg(track, cover)
    write_svg(svg, out_path)
    log.info("Widget written to %s", out_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
