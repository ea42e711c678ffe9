"""Interactive console helpers used while pairing a new session."""

from __future__ import annotations

import re

from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.shortcuts import PromptSession

from nazuna.errors import BootstrapInputError
from nazuna.util.logger import get_logger

logger = get_logger("console")

PHONE_NUMBER_PATTERN = re.compile(r"^\d{10,15}$")

# Box drawing helpers for aligned console output
BOX_WIDTH = 45


def box_title(title: str) -> list[str]:
    inner_width = BOX_WIDTH - 2
    pad_left = (inner_width - len(title)) // 2
    pad_right = inner_width - len(title) - pad_left
    return [
        f"╔{'═' * inner_width}╗",
        f"║{' ' * pad_left}{title}{' ' * pad_right}║",
        f"╚{'═' * inner_width}╝"
    ]


def console_print(message: str, style: str = "") -> None:
    """Render text via prompt_toolkit without breaking an active prompt."""
    formatted: FormattedText | str
    if style:
        formatted = FormattedText([(style, message)])
    else:
        formatted = message
    print_formatted_text(formatted)


def normalize_phone_number(raw: str) -> str:
    """
    Strip everything but digits and validate the length.

    Raises:
        BootstrapInputError: If fewer than 10 or more than 15 digits remain.
    """
    digits = re.sub(r"\D", "", raw or "")
    if not PHONE_NUMBER_PATTERN.match(digits):
        raise BootstrapInputError("Invalid phone number: enter 10 to 15 digits including the area code.")
    return digits


async def ask_phone_number(session: PromptSession | None = None) -> str:
    """Prompt the operator for the number to pair and return it normalized."""
    session = session or PromptSession()
    answer = await session.prompt_async(
        "📱 Phone number to pair (with area code, digits only): "
    )
    return normalize_phone_number(answer.strip())


def show_pairing_code(code: str) -> None:
    for line in box_title("PAIRING CODE"):
        console_print(line, "bold")
    console_print(f"🔑 Pairing code: {code}", "bold ansigreen")
    console_print("📲 Enter this code in the app under Linked devices to authenticate the bot.")


def show_qr_token(role: str, token: str) -> None:
    """Surface the scannable pairing token emitted by the protocol library."""
    for line in box_title(f"SCAN TO PAIR ({role.upper()})"):
        console_print(line, "bold")
    console_print(token)
