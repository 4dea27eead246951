"""Spotify playback: Web API track search, AppleScript play, search-URI fallback."""

import asyncio
import time
from dataclasses import dataclass
from urllib.parse import quote, urlencode

import requests

from screenmate.api.errors import ScreenmateError
from screenmate.api.services import applescripts
from screenmate.api.services.automation import (
    AutomationProvider,
    FallbackOutcome,
    attempt_in_order,
)
from screenmate.logger import get_logger

logger = get_logger("spotify")

API_URL = "https://api.spotify.com/v1"
ACCOUNTS_URL = "https://accounts.spotify.com"
SCOPES = (
    "user-read-private",
    "user-read-email",
    "user-modify-playback-state",
    "user-read-playback-state",
    "streaming",
)
HTTP_OK = 200
HTTP_UNAUTHORIZED = 401


class SpotifyAuthRequired(ScreenmateError):
    status_code = 401

    def __init__(self, message: str = "Please authenticate with Spotify first") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class Track:
    name: str
    artist: str
    uri: str


@dataclass
class SpotifyTokens:
    access_token: str
    refresh_token: str | None = None
    expires_at: float = 0.0


class SpotifyService:
    """Spotifyの再生制御.

    Web APIでトラックを検索してAppleScriptで再生する。認証が無い・曲が
    見つからない場合は ``spotify:search:`` URIを開くフォールバックに切り替える。
    """

    def __init__(
        self,
        automation: AutomationProvider,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str = "http://127.0.0.1:3000/callback",
        launch_delay: float = 2.0,
        timeout: float = 10.0,
    ) -> None:
        self.automation = automation
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.launch_delay = launch_delay
        self.timeout = timeout
        self.tokens: SpotifyTokens | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def auth_url(self, state: str = "state") -> str:
        """認可画面のURLを返す."""
        if not self.client_id:
            msg = "Spotify client ID is not configured. Set SPOTIFY_CLIENT_ID in .env.local."
            raise ScreenmateError(msg, status_code=503)
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(SCOPES),
            "state": state,
        }
        return f"{ACCOUNTS_URL}/authorize?{urlencode(params)}"

    def _token_request(self, data: dict[str, str]) -> dict:
        if not self.is_configured:
            raise SpotifyAuthRequired("Spotify credentials are not configured")
        response = requests.post(
            f"{ACCOUNTS_URL}/api/token",
            data=data,
            auth=(self.client_id or "", self.client_secret or ""),
            timeout=self.timeout,
        )
        if response.status_code != HTTP_OK:
            msg = f"Spotify token request failed with {response.status_code}"
            raise SpotifyAuthRequired(msg)
        return response.json()

    def handle_callback(self, code: str) -> SpotifyTokens:
        """認可コードをアクセストークンに交換して保持する."""
        body = self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            }
        )
        self.tokens = SpotifyTokens(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_at=time.time() + float(body.get("expires_in", 3600)),
        )
        logger.info("Spotify authorization completed")
        return self.tokens

    def refresh_access_token(self) -> str:
        if self.tokens is None or not self.tokens.refresh_token:
            raise SpotifyAuthRequired()
        body = self._token_request(
            {"grant_type": "refresh_token", "refresh_token": self.tokens.refresh_token}
        )
        self.tokens.access_token = body["access_token"]
        self.tokens.expires_at = time.time() + float(body.get("expires_in", 3600))
        return self.tokens.access_token

    def search_track(self, song: str, artist: str | None = None) -> Track | None:
        """曲を検索する. 401なら一度だけトークンを更新して再試行."""
        if self.tokens is None:
            raise SpotifyAuthRequired()
        query = f"{song} artist:{artist}" if artist else song

        for attempt in range(2):
            response = requests.get(
                f"{API_URL}/search",
                params={"q": query, "type": "track", "limit": 1},
                headers={"Authorization": f"Bearer {self.tokens.access_token}"},
                timeout=self.timeout,
            )
            if response.status_code == HTTP_UNAUTHORIZED and attempt == 0:
                self.refresh_access_token()
                continue
            if response.status_code == HTTP_UNAUTHORIZED:
                raise SpotifyAuthRequired()
            response.raise_for_status()
            items = response.json().get("tracks", {}).get("items", [])
            if not items:
                return None
            item = items[0]
            artists = item.get("artists") or [{}]
            return Track(
                name=item["name"], artist=artists[0].get("name", artist or ""), uri=item["uri"]
            )
        return None

    async def _ensure_running(self) -> None:
        if self.automation.is_app_running("Spotify"):
            return
        (await self.automation.open_application("Spotify")).check("Opening Spotify")
        await asyncio.sleep(self.launch_delay)

    async def _play_via_api(self, song: str, artist: str | None) -> str:
        if self.tokens is None:
            raise SpotifyAuthRequired()
        track = await asyncio.to_thread(self.search_track, song, artist)
        if track is None:
            raise LookupError("Song not found")
        await self._ensure_running()
        outcome = await self.automation.run_script(applescripts.spotify_play_track(track.uri))
        outcome.check("Playing track")
        return f'Now playing "{track.name}" by {track.artist}'

    async def _open_search(self, song: str, artist: str | None) -> str:
        terms = f"{song} {artist}" if artist else song
        outcome = await self.automation.open_url(f"spotify:search:{quote(terms)}")
        outcome.check("Opening Spotify search")
        by = f" by {artist}" if artist else ""
        return f'Opened Spotify and searched for "{song}"{by}.'

    async def play(self, song: str, artist: str | None = None) -> FallbackOutcome[str]:
        """曲を再生する. 全て失敗した場合はAutomationFailureを送出."""
        return await attempt_in_order(
            [
                ("web_api", lambda: self._play_via_api(song, artist)),
                ("search_uri", lambda: self._open_search(song, artist)),
            ]
        )
