"""Chat markup for rolls and resource-change summaries (Jinja2)."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

_env = Environment(
    loader=FileSystemLoader(Path(__file__).resolve().parent.parent / "templates"),
    autoescape=select_autoescape(["html", "xml"]),
)

DICE_ASSET_ROOT = "assets/dice"


def die_image_path(value: int, kind: str = "grey") -> str:
    return f"{DICE_ASSET_ROOT}/{kind}/d6-{value}.png"


def die_kind(value: int, threshold: int) -> str:
    if value >= threshold:
        return "green"
    if value == 1:
        return "red"
    return "grey"


@dataclass
class DieMarkup:
    value: int
    delta: int
    image: str
    faded: bool = False


@dataclass
class BuffButton:
    disabled: bool = False
    icon: str = ""
    icon_alt: str = ""
    slashed: bool = False


@dataclass
class BurnButton:
    die_icon: str
    disabled: bool = False
    icon: str = ""
    icon_alt: str = "health"


@dataclass
class ConfirmButton:
    icon: str
    threshold: int


@dataclass
class ButtonsMarkup:
    buff: BuffButton | None = None
    confirm: ConfirmButton | None = None
    burn: BurnButton | None = None

    def __bool__(self) -> bool:
        return any((self.buff, self.confirm, self.burn))


def render_roll(
    message_id: str,
    dice: list[DieMarkup],
    confirmations: list[DieMarkup],
    buttons: ButtonsMarkup | None,
) -> str:
    template = _env.get_template("chat_roll.html")
    return template.render(
        message_id=message_id,
        dice=dice,
        confirmations=confirmations,
        buttons=buttons if buttons else None,
    ).strip()


def render_resource_change(actor_id: str, rows: list[dict]) -> str:
    template = _env.get_template("resource_change.html")
    return template.render(actor_id=actor_id, rows=rows).strip()
