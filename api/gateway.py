"""
Boundary to the external conversion tools.

Documents go to Gotenberg's LibreOffice route for PDF rendering; PDFs are
rasterized with poppler's `pdftoppm`. Nothing past this module sees raw
HTTP responses or subprocess results: the engine call comes back as a
`Converted` / `ConversionFailed` value and everything else raises
`ConversionError`.
"""
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Union

import requests

logger = logging.getLogger(__name__)


class ConversionError(Exception):
    """Single failure type for engine and rasterizer problems."""

    def __init__(self, kind: str, detail: str, *, stage: str = "PDF"):
        self.kind = kind
        self.detail = detail
        self.stage = stage
        super().__init__(f"{stage} conversion failed: {detail}")


@dataclass(frozen=True)
class Converted:
    data: bytes


@dataclass(frozen=True)
class ConversionFailed:
    kind: str      # timeout | transport | upstream_status | empty
    detail: str

    def to_error(self) -> ConversionError:
        return ConversionError(self.kind, self.detail)


ConversionOutcome = Union[Converted, ConversionFailed]


class ConversionGateway:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: int = 300,
        health_timeout: int = 5,
        rasterize_timeout: int | None = 300,
        pdftoppm_bin: str = "pdftoppm",
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.health_timeout = health_timeout
        self.rasterize_timeout = rasterize_timeout
        self.pdftoppm_bin = pdftoppm_bin
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls) -> "ConversionGateway":
        from django.conf import settings

        return cls(
            settings.GOTENBERG_URL,
            timeout=settings.CONVERSION_TIMEOUT_SEC,
            health_timeout=settings.HEALTH_TIMEOUT_SEC,
            rasterize_timeout=settings.RASTERIZE_TIMEOUT_SEC,
            pdftoppm_bin=settings.PDFTOPPM_BIN,
        )

    def close(self) -> None:
        self._session.close()

    def health_check(self) -> bool:
        try:
            resp = self._session.get(f"{self.base_url}/health", timeout=self.health_timeout)
            return resp.status_code == 200
        except requests.RequestException as e:
            logger.error("Gotenberg health check failed: %s", e)
            return False

    def convert(self, source: Union[str, Path, bytes, BinaryIO], original_name: str) -> ConversionOutcome:
        """
        Render `source` (a path, raw bytes or a binary file object) to PDF.
        `original_name` is sent as the multipart filename; Gotenberg picks the
        LibreOffice import filter from its extension.
        """
        url = f"{self.base_url}/forms/libreoffice/convert"
        handle = None
        try:
            if isinstance(source, (str, Path)):
                handle = open(source, "rb")
                body = handle
            else:
                body = source
            resp = self._session.post(
                url,
                files={"files": (original_name, body)},
                timeout=self.timeout,
            )
        except requests.Timeout:
            return ConversionFailed("timeout", f"engine did not answer within {self.timeout}s")
        except requests.RequestException as e:
            return ConversionFailed("transport", str(e))
        finally:
            if handle is not None:
                handle.close()

        if not resp.ok:
            detail = resp.text[:500] if resp.content else ""
            logger.error("Gotenberg returned %s for %s: %s", resp.status_code, original_name, detail)
            return ConversionFailed(
                "upstream_status",
                f"engine returned status {resp.status_code}" + (f": {detail}" if detail else ""),
            )
        if not resp.content:
            return ConversionFailed("empty", "engine returned an empty document")
        return Converted(resp.content)

    def to_pdf(self, source: Union[str, Path, bytes, BinaryIO], original_name: str) -> bytes:
        outcome = self.convert(source, original_name)
        if isinstance(outcome, ConversionFailed):
            logger.error("Error converting %s to PDF: %s", original_name, outcome.detail)
            raise outcome.to_error()
        return outcome.data

    def rasterize(self, pdf_path: Union[str, Path], output_prefix: Union[str, Path], dpi: int) -> list[Path]:
        """
        Rasterize every page of `pdf_path` to `<output_prefix>-<n>.png`.

        pdftoppm pads page numbers to the width of the page count
        (page-01.png .. page-12.png), so lexicographic order is page order.
        """
        pdf_path = Path(pdf_path)
        prefix = Path(output_prefix)
        out_dir = prefix.parent
        cmd = [self.pdftoppm_bin, "-png", "-r", str(int(dpi)), str(pdf_path), str(prefix)]
        logger.info("Executing: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.rasterize_timeout,
            )
        except subprocess.CalledProcessError as e:
            err = e.stderr.decode("utf-8", errors="ignore").strip() if e.stderr else str(e)
            raise ConversionError("rasterizer", err[:4000] or f"exit code {e.returncode}", stage="PNG")
        except subprocess.TimeoutExpired:
            raise ConversionError("timeout", f"rasterizer exceeded {self.rasterize_timeout}s", stage="PNG")
        except FileNotFoundError:
            raise ConversionError("rasterizer", f"{self.pdftoppm_bin} not found", stage="PNG")

        if proc.stderr:
            logger.warning("pdftoppm stderr: %s", proc.stderr.decode("utf-8", errors="ignore").strip())

        pages = sorted(
            p for p in out_dir.iterdir()
            if p.is_file() and p.name.startswith(prefix.name) and p.suffix == ".png"
        )
        if not pages:
            raise ConversionError("empty", "no output produced", stage="PNG")
        logger.info("Generated %d PNG files from %s", len(pages), pdf_path.name)
        return pages
