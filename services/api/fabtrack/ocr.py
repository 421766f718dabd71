"""Region OCR for machine-display screenshots.

A region is a percentage rectangle of the source image. Each region is cropped,
preprocessed according to its hint, written to a transient PNG, and read with
Tesseract. Failures never escape :func:`extract_region`; they come back as
empty text with zero confidence so sibling regions keep going.
"""
from __future__ import annotations

import os
import re
import tempfile
from contextlib import suppress
from dataclasses import dataclass
from statistics import mean
from typing import Optional, Protocol, Tuple

import pytesseract
from pytesseract import Output
from PIL import Image, ImageEnhance, ImageOps

from .config import settings
from .logger import log_event

CONTRAST_BOOST = 1.3
_TIME_RE = re.compile(r"(\d{1,2}):(\d{2})|(\d+)")


@dataclass(frozen=True)
class PercentBox:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class RegionResult:
    text: str
    confidence: float


class RegionReader(Protocol):
    def read(self, path: str) -> Tuple[str, float]:
        ...


class TesseractReader:
    """Read a single image file with pytesseract.

    Confidence is the mean word confidence on Tesseract's 0-100 scale. The
    call is bounded by ``timeout`` seconds; pytesseract raises RuntimeError
    when it kills the engine.
    """

    def __init__(self, lang: Optional[str] = None, timeout: Optional[float] = None, psm: int = 6) -> None:
        self.lang = lang or settings.OCR_LANG
        self.timeout = settings.OCR_TIMEOUT_SEC if timeout is None else timeout
        self.config = f"--oem 3 --psm {psm}"

    def read(self, path: str) -> Tuple[str, float]:
        data = pytesseract.image_to_data(
            path,
            lang=self.lang,
            config=self.config,
            output_type=Output.DICT,
            timeout=self.timeout,
        )
        words = []
        confidences = []
        for text, conf in zip(data.get("text", []), data.get("conf", [])):
            if not text or not str(text).strip():
                continue
            try:
                value = float(conf)
            except (TypeError, ValueError):
                continue
            if value < 0:
                continue
            words.append(str(text).strip())
            confidences.append(value)
        return " ".join(words), (mean(confidences) if confidences else 0.0)


def to_pixel_box(box: PercentBox, size: Tuple[int, int]) -> Tuple[int, int, int, int]:
    """Percent box -> (left, top, right, bottom) in pixels of an image of ``size``."""
    img_w, img_h = size
    left = round(box.x / 100 * img_w)
    top = round(box.y / 100 * img_h)
    width = round(box.width / 100 * img_w)
    height = round(box.height / 100 * img_h)
    return left, top, left + width, top + height


def preprocess(crop: Image.Image, hint: str) -> Image.Image:
    if crop.mode not in ("RGB", "L"):
        crop = crop.convert("RGB")
    if hint in ("number", "time"):
        crop = ImageEnhance.Contrast(crop).enhance(CONTRAST_BOOST)
    crop = ImageOps.autocontrast(crop)
    return ImageOps.grayscale(crop)


def clean_text(raw: str, hint: str) -> str:
    text = (raw or "").strip()
    if hint == "number":
        text = re.sub(r"[^\d.]", "", text)
        head, dot, tail = text.partition(".")
        return head + dot + tail.replace(".", "")
    if hint == "time":
        m = _TIME_RE.search(text)
        return m.group(0) if m else text
    return text


def extract_region(image: Image.Image, box: PercentBox, hint: str = "text",
                   reader: Optional[RegionReader] = None) -> RegionResult:
    reader = reader or TesseractReader()
    tmp_path = None
    try:
        left, top, right, bottom = to_pixel_box(box, image.size)
        if right <= left or bottom <= top:
            raise ValueError(f"empty region {box!r} for image size {image.size}")
        crop = preprocess(image.crop((left, top, right, bottom)), hint)

        fd, tmp_path = tempfile.mkstemp(prefix="region_", suffix=".png")
        os.close(fd)
        crop.save(tmp_path, format="PNG")

        raw, confidence = reader.read(tmp_path)
        return RegionResult(text=clean_text(raw, hint), confidence=float(confidence))
    except Exception as exc:
        log_event("extraction.region_failed", level="warning", hint=hint, box=box.__dict__, error=str(exc))
        return RegionResult(text="", confidence=0.0)
    finally:
        if tmp_path is not None:
            with suppress(OSError):
                os.remove(tmp_path)
