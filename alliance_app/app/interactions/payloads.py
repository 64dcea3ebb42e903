"""Discord interaction payloads: parsing what comes in and building what goes out."""
from __future__ import annotations
from typing import Any, Optional

from ..errors import UserError
from ..models import HullType

# interaction types
PING = 1
APPLICATION_COMMAND = 2
MESSAGE_COMPONENT = 3
MODAL_SUBMIT = 5

# response types
PONG = 1
CHANNEL_MESSAGE = 4
UPDATE_MESSAGE = 7
MODAL = 9

EPHEMERAL = 1 << 6
ADMINISTRATOR = 1 << 3

# component types
ACTION_ROW = 1
BUTTON = 2
STRING_SELECT = 3
TEXT_INPUT = 4
USER_SELECT = 5
ROLE_SELECT = 6
CHANNEL_SELECT = 8

BUTTON_PRIMARY = 1
BUTTON_SECONDARY = 2
BUTTON_SUCCESS = 3
BUTTON_DANGER = 4

CHANNEL_TEXT = 0
CHANNEL_FORUM = 15


class Interaction:
    def __init__(self, payload: dict):
        self.raw = payload
        self.type: int = payload.get("type", 0)
        self.data: dict = payload.get("data") or {}

    @property
    def guild_id(self) -> int:
        return int(self.raw.get("guild_id") or 0)

    @property
    def channel_id(self) -> int:
        return int(self.raw.get("channel_id") or (self.raw.get("channel") or {}).get("id") or 0)

    @property
    def user(self) -> dict:
        member = self.raw.get("member") or {}
        return member.get("user") or self.raw.get("user") or {}

    @property
    def user_id(self) -> int:
        return int(self.user.get("id") or 0)

    @property
    def user_name(self) -> str:
        return self.user.get("global_name") or self.user.get("username") or ""

    @property
    def permissions(self) -> int:
        return int((self.raw.get("member") or {}).get("permissions") or 0)

    @property
    def is_admin(self) -> bool:
        return bool(self.permissions & ADMINISTRATOR)

    @property
    def is_command(self) -> bool:
        return self.type == APPLICATION_COMMAND

    @property
    def subcommand(self) -> Optional[dict]:
        for opt in self.data.get("options") or []:
            if opt.get("type") == 1:
                return opt
        return None

    @property
    def custom_id(self) -> str:
        return self.data.get("custom_id", "")

    @property
    def root(self) -> str:
        """Dispatch token: the subcommand name, or the custom_id prefix."""
        if self.is_command:
            sub = self.subcommand
            return sub.get("name", "") if sub else ""
        return self.custom_id.split(":", 1)[0]

    @property
    def action(self) -> str:
        parts = self.custom_id.split(":")
        return parts[1] if len(parts) > 1 else ""

    @property
    def args(self) -> list[str]:
        return self.custom_id.split(":")[2:]

    @property
    def values(self) -> list[str]:
        return list(self.data.get("values") or [])

    def first_value(self) -> str:
        """First selected value; an empty selection is the caller's mistake."""
        values = self.values
        if not values:
            raise UserError("❌ Sélection invalide.")
        return values[0]

    def int_value(self) -> int:
        try:
            return int(self.first_value())
        except ValueError:
            raise UserError("❌ Sélection invalide.")

    def hull_value(self) -> HullType:
        try:
            return HullType(self.int_value())
        except ValueError:
            raise UserError("❌ Type de coque invalide.")

    def option(self, name: str, default: Any = None) -> Any:
        sub = self.subcommand or {}
        for opt in sub.get("options") or []:
            if opt.get("name") == name:
                return opt.get("value", default)
        return default

    def modal_values(self) -> dict[str, str]:
        out = {}
        for row in self.data.get("components") or []:
            for comp in row.get("components") or []:
                if comp.get("custom_id"):
                    out[comp["custom_id"]] = comp.get("value") or ""
        return out


def reply(content: str, components: list | None = None, ephemeral: bool = True,
          embeds: list | None = None) -> dict:
    data: dict[str, Any] = {"content": content, "components": components or []}
    if embeds:
        data["embeds"] = embeds
    if ephemeral:
        data["flags"] = EPHEMERAL
    return {"type": CHANNEL_MESSAGE, "data": data}


def update(content: str, components: list | None = None) -> dict:
    return {"type": UPDATE_MESSAGE, "data": {"content": content, "components": components or []}}


def text_input(custom_id: str, label: str, value: str = "", placeholder: str = "",
               required: bool = False, max_length: int = 100) -> dict:
    comp = {
        "type": TEXT_INPUT,
        "custom_id": custom_id,
        "label": label,
        "style": 1,
        "required": required,
        "max_length": max_length,
    }
    if value:
        comp["value"] = value
    if placeholder:
        comp["placeholder"] = placeholder
    return comp


def modal(custom_id: str, title: str, inputs: list[dict]) -> dict:
    return {
        "type": MODAL,
        "data": {
            "custom_id": custom_id,
            "title": title[:45],
            "components": [row(i) for i in inputs],
        },
    }


def row(*components: dict) -> dict:
    return {"type": ACTION_ROW, "components": list(components)}


def button(custom_id: str, label: str, style: int = BUTTON_PRIMARY, disabled: bool = False) -> dict:
    return {"type": BUTTON, "custom_id": custom_id, "label": label, "style": style, "disabled": disabled}


def option(label: str, value: str, description: str = "", default: bool = False) -> dict:
    opt = {"label": label[:100], "value": value, "default": default}
    if description:
        opt["description"] = description[:100]
    return opt


def string_select(custom_id: str, options: list[dict], placeholder: str = "") -> dict:
    return {"type": STRING_SELECT, "custom_id": custom_id, "options": options, "placeholder": placeholder,
            "min_values": 1, "max_values": 1}


def user_select(custom_id: str, placeholder: str = "") -> dict:
    return {"type": USER_SELECT, "custom_id": custom_id, "placeholder": placeholder,
            "min_values": 1, "max_values": 1}


def role_select(custom_id: str, placeholder: str = "") -> dict:
    return {"type": ROLE_SELECT, "custom_id": custom_id, "placeholder": placeholder,
            "min_values": 1, "max_values": 1}


def channel_select(custom_id: str, channel_types: list[int], placeholder: str = "") -> dict:
    return {"type": CHANNEL_SELECT, "custom_id": custom_id, "channel_types": channel_types,
            "placeholder": placeholder, "min_values": 1, "max_values": 1}
