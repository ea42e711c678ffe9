"""Welcome/leave banner rendering.

The policy engine only depends on the :class:`BannerRenderer` protocol; the
default implementation downloads the member's avatar with ``requests`` in a
worker thread and composes a PNG card with Pillow.
"""

from __future__ import annotations

import asyncio
from io import BytesIO
from typing import Protocol

import requests
from PIL import Image, ImageDraw, ImageFont, ImageOps

from nazuna.util.logger import get_logger

logger = get_logger("banner")

BANNER_SIZE = (1024, 450)
AVATAR_SIZE = 220
BACKGROUND_COLOR = (32, 34, 48)
ACCENT_COLOR = (236, 72, 153)
TEXT_COLOR = (245, 245, 245)
SUBTEXT_COLOR = (190, 190, 205)


class BannerRenderer(Protocol):
    async def render_welcome_banner(self, avatar_url: str, title: str, message: str) -> bytes: ...


def download_avatar(url: str, timeout: float) -> Image.Image | None:
    """
    Download an avatar and return it as a square RGBA image.

    This function blocks the calling thread; call it through
    ``asyncio.to_thread``. Failures are logged and reported as ``None``.
    """
    try:
        logger.debug("[BANNER] Downloading avatar from %s", url)
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        img = Image.open(BytesIO(response.content)).convert("RGBA")
    except requests.RequestException as exc:
        logger.warning("[BANNER] Avatar request failed for %s: %s", url, exc)
        return None
    except Exception as exc:
        logger.warning("[BANNER] Could not decode avatar from %s: %s", url, exc)
        return None
    return ImageOps.fit(img, (AVATAR_SIZE, AVATAR_SIZE))


def _load_font(size: int) -> ImageFont.ImageFont:
    try:
        return ImageFont.truetype("DejaVuSans-Bold.ttf", size)
    except OSError:
        return ImageFont.load_default()


def _draw_centered(draw: ImageDraw.ImageDraw, center_y: int, text: str, font: ImageFont.ImageFont, fill) -> None:
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (BANNER_SIZE[0] - (right - left)) // 2 - left
    y = center_y - (bottom - top) // 2 - top
    draw.text((x, y), text, font=font, fill=fill)


def compose_banner(avatar: Image.Image | None, title: str, message: str) -> bytes:
    """Draw the banner card and return it encoded as PNG."""
    canvas = Image.new("RGBA", BANNER_SIZE, BACKGROUND_COLOR)
    draw = ImageDraw.Draw(canvas)
    draw.rectangle((0, BANNER_SIZE[1] - 16, BANNER_SIZE[0], BANNER_SIZE[1]), fill=ACCENT_COLOR)

    avatar_x = (BANNER_SIZE[0] - AVATAR_SIZE) // 2
    avatar_y = 40
    mask = Image.new("L", (AVATAR_SIZE, AVATAR_SIZE), 0)
    ImageDraw.Draw(mask).ellipse((0, 0, AVATAR_SIZE, AVATAR_SIZE), fill=255)
    if avatar is None:
        avatar = Image.new("RGBA", (AVATAR_SIZE, AVATAR_SIZE), SUBTEXT_COLOR)
    canvas.paste(avatar, (avatar_x, avatar_y), mask)
    draw.ellipse(
        (avatar_x - 4, avatar_y - 4, avatar_x + AVATAR_SIZE + 4, avatar_y + AVATAR_SIZE + 4),
        outline=ACCENT_COLOR,
        width=6,
    )

    title_font = _load_font(48)
    message_font = _load_font(26)
    _draw_centered(draw, avatar_y + AVATAR_SIZE + 50, title, title_font, TEXT_COLOR)
    _draw_centered(draw, avatar_y + AVATAR_SIZE + 110, message, message_font, SUBTEXT_COLOR)

    buffer = BytesIO()
    canvas.convert("RGB").save(buffer, format="PNG")
    return buffer.getvalue()


class PillowBannerRenderer:
    """Default banner renderer backed by Pillow."""

    def __init__(self, download_timeout: float = 10.0) -> None:
        self.download_timeout = download_timeout

    async def render_welcome_banner(self, avatar_url: str, title: str, message: str) -> bytes:
        avatar = await asyncio.to_thread(download_avatar, avatar_url, self.download_timeout)
        return await asyncio.to_thread(compose_banner, avatar, title, message)
