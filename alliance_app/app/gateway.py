"""Chat-platform gateway.

``Gateway`` is the narrow surface the rest of the bot talks to; ``DiscordGateway``
implements it over the Discord REST API with ``requests``. Creation calls return
the new object's id or raise ``GatewayError``. Deletes never raise: they report a
``DeleteOutcome`` so teardown can tell "already gone" apart from "try later".
"""
from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import requests

from .errors import GatewayError

# Discord permission bits
VIEW_CHANNEL = 1 << 10
CONNECT = 1 << 20

CHANNEL_TYPE_VOICE = 2
CHANNEL_TYPE_CATEGORY = 4

OVERWRITE_ROLE = 0
OVERWRITE_MEMBER = 1


class DeleteOutcome(Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


@dataclass
class Overwrite:
    target_id: int
    allow: int = 0
    deny: int = 0
    type: int = OVERWRITE_ROLE

    def to_payload(self) -> dict:
        return {"id": str(self.target_id), "type": self.type, "allow": str(self.allow), "deny": str(self.deny)}


class Gateway(ABC):
    @abstractmethod
    def create_role(self, guild_id: int, name: str, color: int = 0, hoist: bool = False,
                    mentionable: bool = False) -> int: ...

    @abstractmethod
    def create_category(self, guild_id: int, name: str, position: Optional[int] = None) -> int: ...

    @abstractmethod
    def create_voice_channel(self, guild_id: int, name: str, parent_id: Optional[int] = None,
                             overwrites: Optional[list[Overwrite]] = None,
                             position: Optional[int] = None) -> int: ...

    @abstractmethod
    def delete_role(self, guild_id: int, role_id: int) -> DeleteOutcome: ...

    @abstractmethod
    def delete_channel(self, channel_id: int) -> DeleteOutcome: ...

    @abstractmethod
    def grant_role(self, guild_id: int, user_id: int, role_id: int) -> None: ...

    @abstractmethod
    def revoke_role(self, guild_id: int, user_id: int, role_id: int) -> None: ...

    @abstractmethod
    def create_forum_thread(self, forum_id: int, title: str, content: str) -> int: ...

    @abstractmethod
    def send_message(self, channel_id: int, content: str = "", embeds: Optional[list[dict]] = None,
                     allowed_mentions: Optional[dict] = None) -> int: ...

    @abstractmethod
    def edit_message(self, channel_id: int, message_id: int, content: Optional[str] = None,
                     embeds: Optional[list[dict]] = None) -> None: ...

    @abstractmethod
    def get_channel_name(self, channel_id: int) -> str: ...

    @abstractmethod
    def rename_channel(self, channel_id: int, name: str) -> None: ...


class DiscordGateway(Gateway):
    def __init__(self, token: str, api_base: str = "https://discord.com/api/v10", timeout: int = 10,
                 logger: logging.Logger | None = None):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.logger = logger or logging.getLogger("gateway")
        self.http = requests.Session()
        self.http.headers.update({
            "Authorization": f"Bot {token}",
            "Content-Type": "application/json",
            "User-Agent": "DiscordBot (alliance-coordinator, 1.0)",
        })

    def _request(self, method: str, path: str, json: Any = None, reason: str | None = None) -> requests.Response:
        headers = {}
        if reason:
            headers["X-Audit-Log-Reason"] = reason
        return self.http.request(method, f"{self.api_base}{path}", json=json, headers=headers, timeout=self.timeout)

    def _call(self, method: str, path: str, json: Any = None) -> Any:
        try:
            resp = self._request(method, path, json=json)
        except requests.RequestException as exc:
            self.logger.error("Discord %s %s failed: %s", method, path, exc)
            raise GatewayError(0, str(exc)) from exc
        if resp.status_code >= 300:
            self.logger.error("Discord %s %s returned %s %s", method, path, resp.status_code, resp.text)
            raise GatewayError(resp.status_code, resp.text)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    def _delete(self, path: str) -> DeleteOutcome:
        try:
            resp = self._request("DELETE", path, reason="Alliance terminée")
        except requests.RequestException as exc:
            self.logger.error("Discord DELETE %s failed: %s", path, exc)
            return DeleteOutcome.ERROR
        if resp.status_code in (200, 204):
            return DeleteOutcome.OK
        if resp.status_code == 404:
            return DeleteOutcome.NOT_FOUND
        if resp.status_code == 429:
            return DeleteOutcome.RATE_LIMITED
        self.logger.error("Discord DELETE %s returned %s %s", path, resp.status_code, resp.text)
        return DeleteOutcome.ERROR

    def create_role(self, guild_id, name, color=0, hoist=False, mentionable=False):
        data = self._call("POST", f"/guilds/{guild_id}/roles",
                          {"name": name, "color": color, "hoist": hoist, "mentionable": mentionable})
        return int(data["id"])

    def create_category(self, guild_id, name, position=None):
        payload: dict[str, Any] = {"name": name, "type": CHANNEL_TYPE_CATEGORY}
        if position is not None:
            payload["position"] = position
        data = self._call("POST", f"/guilds/{guild_id}/channels", payload)
        return int(data["id"])

    def create_voice_channel(self, guild_id, name, parent_id=None, overwrites=None, position=None):
        payload: dict[str, Any] = {"name": name, "type": CHANNEL_TYPE_VOICE}
        if parent_id:
            payload["parent_id"] = str(parent_id)
        if overwrites:
            payload["permission_overwrites"] = [o.to_payload() for o in overwrites]
        if position is not None:
            payload["position"] = position
        data = self._call("POST", f"/guilds/{guild_id}/channels", payload)
        return int(data["id"])

    def delete_role(self, guild_id, role_id):
        return self._delete(f"/guilds/{guild_id}/roles/{role_id}")

    def delete_channel(self, channel_id):
        return self._delete(f"/channels/{channel_id}")

    def grant_role(self, guild_id, user_id, role_id):
        self._call("PUT", f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}")

    def revoke_role(self, guild_id, user_id, role_id):
        self._call("DELETE", f"/guilds/{guild_id}/members/{user_id}/roles/{role_id}")

    def create_forum_thread(self, forum_id, title, content):
        data = self._call("POST", f"/channels/{forum_id}/threads",
                          {"name": title[:100], "message": {"content": content}})
        return int(data["id"])

    def send_message(self, channel_id, content="", embeds=None, allowed_mentions=None):
        payload: dict[str, Any] = {"content": content}
        if embeds:
            payload["embeds"] = embeds
        if allowed_mentions is not None:
            payload["allowed_mentions"] = allowed_mentions
        data = self._call("POST", f"/channels/{channel_id}/messages", payload)
        return int(data["id"])

    def edit_message(self, channel_id, message_id, content=None, embeds=None):
        payload: dict[str, Any] = {}
        if content is not None:
            payload["content"] = content
        if embeds is not None:
            payload["embeds"] = embeds
        self._call("PATCH", f"/channels/{channel_id}/messages/{message_id}", payload)

    def get_channel_name(self, channel_id):
        data = self._call("GET", f"/channels/{channel_id}")
        return data.get("name", "")

    def rename_channel(self, channel_id, name):
        self._call("PATCH", f"/channels/{channel_id}", {"name": name[:100]})

    def register_commands(self, application_id: str, commands: list[dict], guild_id: int | None = None) -> list[dict]:
        """Bulk-overwrite the application's slash commands (globally or for one guild)."""
        if guild_id:
            path = f"/applications/{application_id}/guilds/{guild_id}/commands"
        else:
            path = f"/applications/{application_id}/commands"
        return self._call("PUT", path, commands) or []
