import logging
from dataclasses import dataclass
from datetime import timedelta
from urllib.parse import urlencode
import httpx
from app.core.config import settings
from app.core.security import create_access_token, decode_access_token

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
STATE_PURPOSE = "google_oauth_state"


class OAuthError(Exception):
    """Provider refused the login or returned something unusable"""


@dataclass(frozen=True)
class GoogleIdentity:
    google_id: str
    email: str
    name: str


class GoogleOAuthClient:
    def __init__(self, client_id: str | None, client_secret: str | None, redirect_uri: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    @property
    def enabled(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @staticmethod
    def create_state() -> str:
        # Signed and short-lived, so no server-side state store is needed
        return create_access_token({"purpose": STATE_PURPOSE}, expires_delta=timedelta(minutes=10))

    @staticmethod
    def validate_state(state: str | None) -> bool:
        payload = decode_access_token(state) if state else None
        return bool(payload and payload.get("purpose") == STATE_PURPOSE)

    def authorization_url(self) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": self.create_state(),
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def fetch_identity(self, code: str) -> GoogleIdentity:
        """Exchange the authorization code and read the user's profile"""
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                token_response = await client.post(GOOGLE_TOKEN_URL, data={
                    "code": code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                })
                token_response.raise_for_status()
                access_token = token_response.json().get("access_token")
                if not access_token:
                    raise OAuthError("Token response carried no access_token")

                userinfo_response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                userinfo_response.raise_for_status()
                profile = userinfo_response.json()
        except httpx.HTTPError as exc:
            raise OAuthError(f"Google request failed: {exc}") from exc

        if not profile.get("sub") or not profile.get("email"):
            raise OAuthError("Google profile is missing sub or email")
        if profile.get("email_verified") is False:
            raise OAuthError("Google email is not verified")

        return GoogleIdentity(
            google_id=str(profile["sub"]),
            email=profile["email"],
            name=profile.get("name") or "",
        )


google_oauth = GoogleOAuthClient(
    settings.GOOGLE_CLIENT_ID,
    settings.GOOGLE_CLIENT_SECRET,
    settings.GOOGLE_REDIRECT_URI,
)
