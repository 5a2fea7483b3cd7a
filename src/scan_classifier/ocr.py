"""
Text Extraction
===============

Text is extracted by running `ocrmypdf`_ on the scan and reading back the
plain-text sidecar it writes next to the searchable PDF. Image scans are
wrapped into a single- or multi-page PDF with Pillow first, because
``ocrmypdf`` expects a PDF input without extra DPI hints.

.. _ocrmypdf: https://ocrmypdf.readthedocs.io/
"""

from __future__ import annotations

import subprocess
from pathlib import Path

import structlog
from PIL import Image, ImageSequence, UnidentifiedImageError

from .config import Settings

log = structlog.get_logger(__name__)

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".tif", ".tiff"}


class ExtractionError(Exception):
    """OCR failed or produced no text artifact."""


class TextExtractor:
    """Runs ``ocrmypdf`` against local files."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def extract(self, path: Path, language: str | None = None) -> str:
        """
        OCR ``path`` and return the recognised text.

        Output artifacts are written next to the input, so callers should pass
        a file inside a scratch directory they own.
        """
        language = language or self.settings.OCR_LANGUAGE
        source = Path(path)
        if source.suffix.lower() in IMAGE_SUFFIXES:
            source = self._image_to_pdf(source)

        output_pdf = source.with_name(f"{source.stem}.ocr.pdf")
        sidecar = source.with_name(f"{source.stem}.ocr.txt")
        command = [
            self.settings.OCR_BINARY,
            str(source),
            str(output_pdf),
            "--redo-ocr",
            "-l",
            language,
            "--sidecar",
            str(sidecar),
        ]
        log.info("Running OCR", file=str(path), language=language)
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.settings.OCR_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ExtractionError(f"Unable to run {self.settings.OCR_BINARY}: {e}") from e

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            log.error(
                "OCR failed",
                file=str(path),
                returncode=result.returncode,
                output=output[-2000:],
            )
            raise ExtractionError(
                f"{self.settings.OCR_BINARY} exited with code {result.returncode}: {output[-500:]}"
            )

        try:
            text = sidecar.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ExtractionError(f"OCR sidecar file is missing: {e}") from e

        log.debug("OCR finished", file=str(path), characters=len(text))
        return text

    def _image_to_pdf(self, path: Path) -> Path:
        """Convert an image (all frames of a multi-page TIFF) into a PDF."""
        target = path.with_suffix(".pdf")
        try:
            with Image.open(path) as img:
                frames = [frame.convert("RGB") for frame in ImageSequence.Iterator(img)]
        except (UnidentifiedImageError, OSError) as e:
            raise ExtractionError(f"Unable to open image: {e}") from e
        first, rest = frames[0], frames[1:]
        first.save(target, "PDF", save_all=True, append_images=rest, resolution=300.0)
        return target
