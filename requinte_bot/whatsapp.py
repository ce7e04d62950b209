"""
WhatsApp session backed by Evolution API
========================================

Evolution API runs the Baileys multi-device client and exposes it over
REST. This module owns the HTTP client for it: sending text messages,
creating/connecting the instance, and rendering the pairing QR code on the
operator console. The encrypted transport itself lives in Evolution.

USAGE:
    whatsapp = WhatsAppSession.from_settings(get_settings())
    await whatsapp.start()
    await whatsapp.send_text("5511999999999@s.whatsapp.net", "Olá!")
    await whatsapp.aclose()
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional, TextIO

import httpx
import qrcode

from requinte_bot.errors import TransportError

logger = logging.getLogger(__name__)


class WhatsAppSession:
    """
    One Evolution API instance, explicitly owned by the application.

    The per-instance token returned when the instance is created is kept in
    AUTH_DIR/<instance>.json so later runs reuse it instead of recreating the
    instance. The directory is created on demand.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        instance: str,
        auth_dir: str = "./auth",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.instance = instance
        self.connection_state: Optional[str] = None
        self._api_key = api_key
        self._instance_token: Optional[str] = None
        self._auth_dir = Path(auth_dir)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "WhatsAppSession":
        return cls(
            base_url=settings.EVOLUTION_API_URL,
            api_key=settings.EVOLUTION_API_KEY,
            instance=settings.EVOLUTION_INSTANCE,
            auth_dir=settings.AUTH_DIR,
            timeout=settings.EVOLUTION_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def is_connected(self) -> bool:
        return self.connection_state == "open"

    # =========================================================================
    # Credential persistence
    # =========================================================================

    @property
    def credentials_path(self) -> Path:
        return self._auth_dir / f"{self.instance}.json"

    def load_credentials(self) -> Optional[dict]:
        """Stored instance credentials, or None if there are none yet."""
        path = self.credentials_path
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable credentials at {path}: {e}")
            return None

    def save_credentials(self, credentials: dict) -> None:
        self._auth_dir.mkdir(parents=True, exist_ok=True)
        self.credentials_path.write_text(json.dumps(credentials, indent=2), encoding="utf-8")
        logger.info(f"Saved instance credentials to {self.credentials_path}")

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = {"apikey": self._instance_token or self._api_key}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{method} {path} failed with status {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def send_text(self, jid: str, text: str) -> dict:
        """
        Send one text message and wait for the transport to accept it.

        Raises:
            TransportError: on network errors or a non-2xx response
        """
        logger.debug(f"Sending message to {jid}")
        return await self._request(
            "POST",
            f"/message/sendText/{self.instance}",
            json={"number": jid, "text": text},
        )

    # =========================================================================
    # Instance lifecycle and pairing
    # =========================================================================

    async def ensure_instance(self) -> dict:
        """Reuse stored credentials or create the instance and store its token."""
        credentials = self.load_credentials()
        if credentials and credentials.get("token"):
            self._instance_token = credentials["token"]
            logger.debug(f"Using stored credentials for instance {self.instance}")
            return credentials

        data = await self._request(
            "POST",
            "/instance/create",
            json={
                "instanceName": self.instance,
                "qrcode": True,
                "integration": "WHATSAPP-BAILEYS",
            },
        )
        token = data.get("hash")
        # Older Evolution releases nest the token: {"hash": {"apikey": "..."}}
        if isinstance(token, dict):
            token = token.get("apikey")

        credentials = {"instance": self.instance, "token": token}
        self._instance_token = token
        self.save_credentials(credentials)
        logger.info(f"Created WhatsApp instance {self.instance}")
        return credentials

    async def connect(self) -> Optional[str]:
        """
        Ask the transport to connect; render the pairing QR if one is needed.

        Returns:
            The pairing code, or None when the session is already paired
        """
        data = await self._request("GET", f"/instance/connect/{self.instance}")
        code = data.get("code")
        if code:
            self.show_pairing_code(code, data.get("pairingCode"))
        else:
            logger.info(f"Instance {self.instance} needs no pairing")
        return code

    async def start(self) -> None:
        """Startup routine: credentials, then connection. Never raises TransportError or OSError."""
        try:
            await self.ensure_instance()
        except TransportError as e:
            logger.warning(f"Could not create instance {self.instance}, using global API key: {e}")
        except OSError as e:
            logger.error(f"Could not store credentials in {self.credentials_path}: {e}")
        try:
            await self.connect()
        except TransportError as e:
            logger.error(f"Could not connect instance {self.instance}: {e}")

    def show_pairing_code(self, code: str, pairing_code: Optional[str] = None, out: Optional[TextIO] = None) -> None:
        """Render a pairing code as a terminal QR code."""
        out = out or sys.stdout
        logger.info("📲 Escaneie o QR abaixo para conectar")
        qr = qrcode.QRCode(border=1)
        qr.add_data(code)
        qr.make(fit=True)
        qr.print_ascii(out=out, invert=True)
        out.flush()
        if pairing_code:
            logger.info(f"Código de pareamento: {pairing_code}")

    def handle_connection_update(self, state: Optional[str], status_reason: Optional[int] = None) -> None:
        self.connection_state = state
        if state == "open":
            logger.info("✅ Bot conectado ao WhatsApp")
        elif state == "close":
            logger.warning(f"WhatsApp connection closed (reason={status_reason})")
        else:
            logger.info(f"WhatsApp connection state: {state}")

    async def aclose(self) -> None:
        await self._client.aclose()
