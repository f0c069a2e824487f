from __future__ import annotations

from functools import lru_cache
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from votekiosk.config import FONT_LIST

GREEN = (72, 167, 40)
RED = (53, 53, 220)
AMBER = (7, 193, 255)
WHITE = (255, 255, 255)


@lru_cache(maxsize=128)
def _load_font(font_path: str, font_size: int) -> ImageFont.FreeTypeFont:
    return ImageFont.truetype(font_path, font_size)


@lru_cache(maxsize=64)
def _get_best_font(font_size: int) -> ImageFont.ImageFont:
    """Return a font instance (cached) that can render voter names on this OS."""
    for p in FONT_LIST:
        try:
            return _load_font(p, int(font_size))
        except Exception:
            continue
    return ImageFont.load_default()


def draw_texts(
    img: np.ndarray,
    items: Sequence[Tuple[str, Tuple[int, int], int, Tuple[int, int, int]]],
) -> None:
    """Draw multiple unicode texts onto one frame with a single PIL conversion.

    Args:
        img: OpenCV BGR image, modified in-place.
        items: sequence of (text, (x, y), font_size_px, bgr_color)
    """
    if img is None or len(items) == 0:
        return

    try:
        pil_img = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
        draw = ImageDraw.Draw(pil_img)
        for text, org, font_size, bgr in items:
            font = _get_best_font(int(font_size))
            draw.text(tuple(org), str(text), font=font, fill=(int(bgr[2]), int(bgr[1]), int(bgr[0])))
        img[:] = cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)
    except Exception:
        # 回退：OpenCV 逐条绘制（非 ASCII 可能显示为问号）
        for text, org, font_size, bgr in items:
            cv2.putText(
                img,
                str(text),
                tuple(org),
                cv2.FONT_HERSHEY_SIMPLEX,
                max(0.3, int(font_size) / 24.0),
                (int(bgr[0]), int(bgr[1]), int(bgr[2])),
                1,
                cv2.LINE_AA,
            )


def draw_kiosk_overlay(
    img: np.ndarray,
    *,
    face_detected: bool,
    warning: Optional[str],
    disabled_reason: Optional[str],
    form_lines: Sequence[str] = (),
    toast: Optional[Tuple[str, str]] = None,
) -> None:
    """Status frame + banners for the preview window, in-place."""
    h, w = img.shape[:2]
    border = GREEN if face_detected and not disabled_reason else (AMBER if face_detected else RED)
    cv2.rectangle(img, (2, 2), (w - 3, h - 3), border, 3)

    items = []
    y = 10
    for line in form_lines:
        items.append((line, (12, y), 18, WHITE))
        y += 24
    if warning:
        items.append((warning, (12, h - 78), 18, AMBER))
    if disabled_reason:
        items.append((disabled_reason, (12, h - 52), 18, RED))
    if toast:
        title, desc = toast
        items.append((f"{title}: {desc}", (12, h - 28), 18, WHITE))

    if items:
        # 半透明底条，保证文字在亮背景上可读
        overlay = img.copy()
        cv2.rectangle(overlay, (0, h - 86), (w, h), (0, 0, 0), -1)
        cv2.addWeighted(overlay, 0.45, img, 0.55, 0, dst=img)
    draw_texts(img, items)
