"""
Text recognition for page screenshots.

Wraps Tesseract (via pytesseract) behind the RecognitionClient protocol.
Tesseract reports no usable page-level confidence, so confidence is
estimated from the shape of the extracted text.
"""

import asyncio
import io
import math
import re
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Protocol

import pytesseract
from PIL import Image, ImageOps

from pagelens.utils.config import get_settings
from pagelens.utils.logging import get_logger

logger = get_logger(__name__)

# Glyphs Tesseract commonly emits for noise and mis-segmented characters
_ERROR_GLYPHS = re.compile(r"[?#~|{}\[\]]")


class RecognitionError(Exception):
    """Raised when the OCR engine cannot process an image."""


@dataclass
class RecognitionResult:
    """Outcome of recognising one screenshot."""

    text: str = ""
    confidence: int = 0
    language: str | None = None
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, error: str, language: str | None = None) -> "RecognitionResult":
        """Empty, zero-confidence result tagged with an error."""
        return cls(text="", confidence=0, language=language, error=error)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def calculate_confidence(text: str) -> int:
    """Estimate recognition quality of extracted text on a 0-100 scale.

    - Base: min(100, 40 + 30 * log10(token_count)).
    - Bonus: up to 20 points for longer average token length.
    - Penalty: 50 * fraction of characters that are error glyphs.

    Args:
        text: Recognised text.

    Returns:
        Integer confidence in [0, 100]; 0 for empty text.
    """
    if not text or not text.strip():
        return 0

    words = text.split()
    word_count = len(words)
    avg_word_length = sum(len(w) for w in words) / max(1, word_count)
    error_ratio = len(_ERROR_GLYPHS.findall(text)) / len(text)

    confidence = min(100.0, 40 + 30 * math.log10(max(1, word_count)))
    confidence += min(20.0, avg_word_length * 2)
    confidence -= error_ratio * 50

    # Round half up
    return max(0, min(100, math.floor(confidence + 0.5)))


class RecognitionClient(Protocol):
    """OCR capability consumed by the pipeline."""

    async def recognize(self, image_ref: str, language: str = "eng") -> RecognitionResult:
        """Recognise text in a stored screenshot.

        Raises:
            RecognitionError: If the image cannot be processed.
        """
        ...


class TesseractRecognitionClient:
    """RecognitionClient backed by the local Tesseract binary."""

    def __init__(
        self,
        tesseract_config: str | None = None,
        timeout: float | None = None,
        grayscale: bool | None = None,
    ):
        settings = get_settings().ocr
        self._config = tesseract_config if tesseract_config is not None else settings.tesseract_config
        self._timeout = timeout if timeout is not None else settings.timeout_seconds
        self._grayscale = grayscale if grayscale is not None else settings.grayscale

    async def recognize(self, image_ref: str, language: str = "eng") -> RecognitionResult:
        start = time.perf_counter()
        try:
            image_bytes = await asyncio.to_thread(Path(image_ref).read_bytes)
            text = await asyncio.wait_for(
                asyncio.to_thread(self._run_tesseract, image_bytes, language),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            raise RecognitionError(f"OCR timed out after {self._timeout}s") from e
        except (OSError, pytesseract.TesseractError) as e:
            raise RecognitionError(str(e)) from e

        text = text.strip()
        result = RecognitionResult(
            text=text,
            confidence=calculate_confidence(text),
            language=language,
            duration_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        logger.debug(
            "OCR completed",
            image=image_ref,
            chars=len(text),
            confidence=result.confidence,
            duration_ms=result.duration_ms,
        )
        return result

    def _run_tesseract(self, image_bytes: bytes, language: str) -> str:
        image = Image.open(io.BytesIO(image_bytes))
        if self._grayscale:
            image = ImageOps.grayscale(image)
        return pytesseract.image_to_string(image, lang=language, config=self._config)
