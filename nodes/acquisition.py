"""
Text Acquisition Node - Turning Uploaded Documents into Plain Text

Given the bytes and name of an uploaded offer document, picks the extraction
strategies that apply to its type and runs them in a fixed order until one
returns non-blank text:

- Word documents: Docling conversion
- PDFs: pdfplumber text layer (in-memory buffer, then a temp file path)
- Images: OCR on every frame
- Anything else we accept: plain UTF-8 decode
- Raw bytes with a %PDF signature: render each page and OCR it

A failing strategy is recorded on the result and the cascade moves on.
Only two outcomes reach the caller besides success: the file type is
unsupported (nothing was attempted) or every strategy came back empty.
"""

import io
import os
import logging
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, ContextManager, Dict, Iterator, List, NamedTuple, Optional, Tuple

import pdfplumber
import pytesseract
from PIL import Image, ImageSequence

from errors import UnsupportedDocumentTypeError
from state import OfferState, TEXT_PREVIEW_CHARS

logger = logging.getLogger(__name__)

# Conditional import for Docling (heavy, installed through the docling extra)
try:
    from docling.document_converter import DocumentConverter as _DocumentConverter
    from docling.datamodel.base_models import DocumentStream as _DocumentStream
    DOCLING_AVAILABLE = True
    DocumentConverter: Any = _DocumentConverter
    DocumentStream: Any = _DocumentStream
except ImportError:
    DOCLING_AVAILABLE = False
    DocumentConverter = None
    DocumentStream = None


PDF_SIGNATURE = b"%PDF"


# ============================================================================
# Types
# ============================================================================

class DocumentCategory(Enum):
    """Document families, decided by file extension."""
    WORD = "word"
    PDF = "pdf"
    IMAGE = "image"
    TEXT = "text"
    GENERIC = "generic"  # No extension, content is sniffed
    UNKNOWN = "unknown"  # Extension we do not handle


class OcrEngine(Enum):
    """Available OCR engines for images and scanned PDFs."""
    EASYOCR = "easyocr"      # EasyOCR - good accuracy, GPU support
    TESSERACT = "tesseract"  # Tesseract via pytesseract
    AUTO = "auto"            # Auto-detect best available


class AcquisitionStatus(Enum):
    """Terminal status of a text acquisition run."""
    SUCCESS = "success"
    EXHAUSTED = "exhausted"                # Every strategy failed or was blank
    UNSUPPORTED_TYPE = "unsupported_type"  # Nothing was attempted


# Strategy names
WORD_TEXT = "word_text"
PDF_TEXT_LAYER_BYTES = "pdf_text_layer_bytes"
PDF_TEXT_LAYER_PATH = "pdf_text_layer_path"
IMAGE_OCR = "image_ocr"
PLAIN_TEXT = "plain_text"
RENDERED_PDF_OCR = "rendered_pdf_ocr"


@dataclass
class StrategyOutcome:
    """Result of a single acquisition strategy: text on success, a reason on failure."""
    strategy: str
    success: bool
    text: str = ""
    reason: Optional[str] = None

    @staticmethod
    def from_text(strategy: str, text: Optional[str]) -> "StrategyOutcome":
        """Successful only when the text has something besides whitespace."""
        if text and text.strip():
            return StrategyOutcome(strategy=strategy, success=True, text=text)
        return StrategyOutcome(strategy=strategy, success=False, reason="no text extracted")

    @staticmethod
    def failed(strategy: str, reason: str) -> "StrategyOutcome":
        return StrategyOutcome(strategy=strategy, success=False, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "success": self.success,
            "text_length": len(self.text),
            "reason": self.reason,
        }


@dataclass
class AcquisitionResult:
    """
    Outcome of acquiring text for one uploaded document.

    An EXHAUSTED result carries empty text and is not an error: the caller
    should fall back to manual entry. UNSUPPORTED_TYPE carries a
    user-visible message.
    """
    status: AcquisitionStatus
    file_name: str
    category: DocumentCategory
    message: str
    text: str = ""
    strategy: Optional[str] = None
    attempts: List[StrategyOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == AcquisitionStatus.SUCCESS

    def preview(self, length: int = TEXT_PREVIEW_CHARS) -> str:
        """Leading slice of the text, for diagnostics."""
        return self.text[:length]

    def raise_for_status(self) -> None:
        """Raise UnsupportedDocumentTypeError for unsupported uploads."""
        if self.status == AcquisitionStatus.UNSUPPORTED_TYPE:
            raise UnsupportedDocumentTypeError(self.file_name, self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization (text reduced to a preview)."""
        return {
            "status": self.status.value,
            "success": self.success,
            "file_name": self.file_name,
            "category": self.category.value,
            "message": self.message,
            "strategy": self.strategy,
            "text_length": len(self.text),
            "text_preview": self.preview(),
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }

    @staticmethod
    def success_result(
        file_name: str,
        category: DocumentCategory,
        outcome: StrategyOutcome,
        attempts: List[StrategyOutcome],
    ) -> "AcquisitionResult":
        return AcquisitionResult(
            status=AcquisitionStatus.SUCCESS,
            file_name=file_name,
            category=category,
            message=f"Extracted {len(outcome.text)} characters using {outcome.strategy}",
            text=outcome.text,
            strategy=outcome.strategy,
            attempts=attempts,
        )

    @staticmethod
    def exhausted(
        file_name: str,
        category: DocumentCategory,
        attempts: List[StrategyOutcome],
    ) -> "AcquisitionResult":
        tried = ", ".join(attempt.strategy for attempt in attempts) or "none"
        return AcquisitionResult(
            status=AcquisitionStatus.EXHAUSTED,
            file_name=file_name,
            category=category,
            message=f"No text could be extracted from {file_name} (tried: {tried})",
            attempts=attempts,
        )

    @staticmethod
    def unsupported(file_name: str, config: "AcquisitionConfig") -> "AcquisitionResult":
        suffix = Path(file_name).suffix.lower()
        supported = ", ".join(
            ext.lstrip(".").upper() for ext in config.supported_extensions()
        )
        return AcquisitionResult(
            status=AcquisitionStatus.UNSUPPORTED_TYPE,
            file_name=file_name,
            category=DocumentCategory.UNKNOWN,
            message=f"Unsupported file type '{suffix}'. Supported: {supported}",
        )


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class OcrConfig:
    """Configuration for OCR of images and scanned PDFs."""

    # OCR engine to use
    engine: OcrEngine = field(default=OcrEngine.AUTO)

    # Tesseract language codes; mapped to two-letter codes for EasyOCR
    languages: List[str] = field(default_factory=lambda: ["eng"])

    # Path to the Tesseract binary if it is not on PATH
    tesseract_cmd: Optional[str] = None

    # Tesseract PSM (Page Segmentation Mode)
    # 3 = Fully automatic page segmentation (default)
    # 6 = Assume uniform block of text
    tesseract_psm: Optional[int] = None

    # EasyOCR only
    use_gpu: bool = False


@dataclass
class AcquisitionConfig:
    """Which extensions map to which document category, plus rendering options."""

    word_extensions: Tuple[str, ...] = (".docx", ".doc")
    pdf_extensions: Tuple[str, ...] = (".pdf",)
    image_extensions: Tuple[str, ...] = (
        ".jpg", ".jpeg", ".png", ".tif", ".tiff", ".bmp", ".gif", ".webp",
    )
    text_extensions: Tuple[str, ...] = (".txt", ".text", ".md", ".csv")

    # DPI used when rendering scanned PDF pages for OCR
    render_resolution: int = 200

    ocr: OcrConfig = field(default_factory=OcrConfig)

    def supported_extensions(self) -> Tuple[str, ...]:
        return (
            self.pdf_extensions
            + self.word_extensions
            + self.image_extensions
            + self.text_extensions
        )

    @classmethod
    def from_env(cls) -> "AcquisitionConfig":
        """Build configuration from OFFER_INTEL_* environment variables."""
        engine_name = os.getenv("OFFER_INTEL_OCR_ENGINE", "auto").strip().lower()
        try:
            engine = OcrEngine(engine_name)
        except ValueError:
            logger.warning(f"Unknown OCR engine '{engine_name}', using auto-detection")
            engine = OcrEngine.AUTO

        psm = os.getenv("OFFER_INTEL_TESSERACT_PSM", "").strip()
        ocr = OcrConfig(
            engine=engine,
            languages=[
                lang.strip()
                for lang in os.getenv("OFFER_INTEL_OCR_LANGUAGES", "eng").split(",")
                if lang.strip()
            ] or ["eng"],
            tesseract_cmd=os.getenv("TESSERACT_CMD") or None,
            tesseract_psm=int(psm) if psm.isdigit() else None,
            use_gpu=os.getenv("OFFER_INTEL_OCR_GPU", "false").lower() == "true",
        )

        dpi = os.getenv("OFFER_INTEL_RENDER_DPI", "").strip()
        dpi_valid = dpi.isdigit() and int(dpi) > 0
        if dpi and not dpi_valid:
            logger.warning(f"Invalid render DPI '{dpi}', using {cls.render_resolution}")
        config = cls(
            render_resolution=int(dpi) if dpi_valid else cls.render_resolution,
            ocr=ocr,
        )
        text_extensions = os.getenv("OFFER_INTEL_TEXT_EXTENSIONS")
        if text_extensions is not None:
            config.text_extensions = _parse_extensions(text_extensions)
        return config


def _parse_extensions(value: str) -> Tuple[str, ...]:
    """Parse 'txt, .md' into ('.txt', '.md')."""
    extensions = []
    for item in value.split(","):
        item = item.strip().lower()
        if item:
            extensions.append(item if item.startswith(".") else f".{item}")
    return tuple(extensions)


def classify_document(file_name: str, config: AcquisitionConfig) -> DocumentCategory:
    """Decide the document category from the file extension."""
    suffix = Path(file_name or "").suffix.lower()
    if not suffix:
        return DocumentCategory.GENERIC
    if suffix in config.word_extensions:
        return DocumentCategory.WORD
    if suffix in config.pdf_extensions:
        return DocumentCategory.PDF
    if suffix in config.image_extensions:
        return DocumentCategory.IMAGE
    if suffix in config.text_extensions:
        return DocumentCategory.TEXT
    return DocumentCategory.UNKNOWN


def has_pdf_signature(data: bytes) -> bool:
    """True when the bytes start (after whitespace) with the %PDF marker."""
    return data.lstrip()[:len(PDF_SIGNATURE)] == PDF_SIGNATURE


# ============================================================================
# Extraction Capabilities (Docling / pdfplumber / OCR)
# ============================================================================

def detect_available_ocr_engine() -> OcrEngine:
    """
    Detect the best available OCR engine on the system.

    Returns:
        OcrEngine: The recommended OCR engine to use
    """
    # Try EasyOCR first (best accuracy, GPU support)
    try:
        import easyocr  # noqa: F401
        return OcrEngine.EASYOCR
    except ImportError:
        pass

    return OcrEngine.TESSERACT


def _easyocr_languages(languages: List[str]) -> List[str]:
    codes = {"eng": "en", "spa": "es", "fra": "fr", "deu": "de", "ita": "it", "por": "pt"}
    return [codes.get(lang, lang) for lang in languages]


@contextmanager
def open_ocr_session(config: OcrConfig) -> Iterator[Callable[[Any], str]]:
    """
    Start an OCR engine for one document and yield a recognize(image) callable.

    The engine is created once and dropped when the block exits, so a
    multi-page document does not pay the start-up cost per page.
    """
    engine = config.engine
    if engine == OcrEngine.AUTO:
        engine = detect_available_ocr_engine()

    if engine == OcrEngine.EASYOCR:
        import easyocr
        import numpy

        reader = easyocr.Reader(_easyocr_languages(config.languages), gpu=config.use_gpu)

        def recognize_easyocr(image: Any) -> str:
            lines = reader.readtext(numpy.asarray(image.convert("RGB")), detail=0, paragraph=True)
            return "\n".join(lines)

        logger.debug("Started EasyOCR session")
        try:
            yield recognize_easyocr
        finally:
            logger.debug("Closed EasyOCR session")
        return

    if config.tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = config.tesseract_cmd
    options = f"--psm {config.tesseract_psm}" if config.tesseract_psm is not None else ""
    lang = "+".join(config.languages)

    def recognize_tesseract(image: Any) -> str:
        return pytesseract.image_to_string(image, lang=lang, config=options)

    logger.debug("Started Tesseract session")
    yield recognize_tesseract


def docling_word_to_text(data: bytes, file_name: str) -> str:
    """Convert a word-processor document to text with Docling."""
    if not DOCLING_AVAILABLE:
        raise RuntimeError("Docling is not available")

    converter: Any = DocumentConverter()
    result = converter.convert(DocumentStream(name=file_name, stream=io.BytesIO(data)))
    return result.document.export_to_text()


def _join_page_text(pdf: Any) -> str:
    return "\n".join(page.extract_text() or "" for page in pdf.pages)


def pdfplumber_text_from_bytes(data: bytes) -> str:
    """Read the PDF text layer from an in-memory buffer."""
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        return _join_page_text(pdf)


def pdfplumber_text_from_path(path: str) -> str:
    """Read the PDF text layer from a file on disk."""
    with pdfplumber.open(path) as pdf:
        return _join_page_text(pdf)


@contextmanager
def pdfplumber_render_pages(data: bytes, resolution: int = 200) -> Iterator[Iterator[Any]]:
    """
    Yield an iterator of page images (PIL) for a PDF.

    The PDF handle stays open until the block exits; callers close each
    image once they are done with it.
    """
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        yield (page.to_image(resolution=resolution).original for page in pdf.pages)


@dataclass
class ExtractionCapabilities:
    """
    The external text-extraction collaborators, as plain callables.

    Swap any of them out (tests, alternative engines) without touching the
    strategy cascade.
    """
    word_to_text: Callable[[bytes, str], str]
    pdf_text_from_bytes: Callable[[bytes], str]
    pdf_text_from_path: Callable[[str], str]
    ocr_session: Callable[[], ContextManager[Callable[[Any], str]]]
    render_pdf_pages: Callable[[bytes], ContextManager[Iterator[Any]]]


def default_capabilities(config: AcquisitionConfig) -> ExtractionCapabilities:
    """Docling for word documents, pdfplumber for PDFs, pytesseract/EasyOCR for OCR."""
    return ExtractionCapabilities(
        word_to_text=docling_word_to_text,
        pdf_text_from_bytes=pdfplumber_text_from_bytes,
        pdf_text_from_path=pdfplumber_text_from_path,
        ocr_session=lambda: open_ocr_session(config.ocr),
        render_pdf_pages=lambda data: pdfplumber_render_pages(data, config.render_resolution),
    )


# ============================================================================
# Acquisition Strategies
# ============================================================================

def _word_text(data: bytes, file_name: str, capabilities: ExtractionCapabilities) -> StrategyOutcome:
    return StrategyOutcome.from_text(WORD_TEXT, capabilities.word_to_text(data, file_name))


def _pdf_text_layer_bytes(data: bytes, file_name: str, capabilities: ExtractionCapabilities) -> StrategyOutcome:
    return StrategyOutcome.from_text(PDF_TEXT_LAYER_BYTES, capabilities.pdf_text_from_bytes(data))


def _pdf_text_layer_path(data: bytes, file_name: str, capabilities: ExtractionCapabilities) -> StrategyOutcome:
    # Some PDFs only open cleanly from a real file handle
    fd, path = tempfile.mkstemp(suffix=".pdf")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        text = capabilities.pdf_text_from_path(path)
    finally:
        os.unlink(path)
    return StrategyOutcome.from_text(PDF_TEXT_LAYER_PATH, text)


def _image_ocr(data: bytes, file_name: str, capabilities: ExtractionCapabilities) -> StrategyOutcome:
    with Image.open(io.BytesIO(data)) as image, capabilities.ocr_session() as recognize:
        # Multi-page TIFF scans carry one frame per page
        frames = [recognize(frame) or "" for frame in ImageSequence.Iterator(image)]
    return StrategyOutcome.from_text(IMAGE_OCR, "\n".join(frames))


def _plain_text(data: bytes, file_name: str, capabilities: ExtractionCapabilities) -> StrategyOutcome:
    if has_pdf_signature(data):
        return StrategyOutcome.failed(PLAIN_TEXT, "bytes carry a PDF signature, not plain text")
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        return StrategyOutcome.failed(PLAIN_TEXT, f"not UTF-8 text ({e.reason})")
    return StrategyOutcome.from_text(PLAIN_TEXT, text)


def _rendered_pdf_ocr(data: bytes, file_name: str, capabilities: ExtractionCapabilities) -> StrategyOutcome:
    if not has_pdf_signature(data):
        return StrategyOutcome.failed(RENDERED_PDF_OCR, "no PDF signature")

    page_texts: List[str] = []
    with capabilities.render_pdf_pages(data) as pages, capabilities.ocr_session() as recognize:
        for page_image in pages:
            try:
                page_texts.append(recognize(page_image) or "")
            finally:
                page_image.close()
    logger.debug(f"OCR'd {len(page_texts)} rendered page(s) of {file_name}")
    return StrategyOutcome.from_text(RENDERED_PDF_OCR, "\n".join(page_texts))


class AcquisitionStrategy(NamedTuple):
    name: str
    run: Callable[[bytes, str, ExtractionCapabilities], StrategyOutcome]


STRATEGIES: Dict[str, AcquisitionStrategy] = {
    WORD_TEXT: AcquisitionStrategy(WORD_TEXT, _word_text),
    PDF_TEXT_LAYER_BYTES: AcquisitionStrategy(PDF_TEXT_LAYER_BYTES, _pdf_text_layer_bytes),
    PDF_TEXT_LAYER_PATH: AcquisitionStrategy(PDF_TEXT_LAYER_PATH, _pdf_text_layer_path),
    IMAGE_OCR: AcquisitionStrategy(IMAGE_OCR, _image_ocr),
    PLAIN_TEXT: AcquisitionStrategy(PLAIN_TEXT, _plain_text),
    RENDERED_PDF_OCR: AcquisitionStrategy(RENDERED_PDF_OCR, _rendered_pdf_ocr),
}

# Order matters: the first strategy returning non-blank text wins
STRATEGY_PLANS: Dict[DocumentCategory, Tuple[str, ...]] = {
    DocumentCategory.WORD: (WORD_TEXT, PLAIN_TEXT, RENDERED_PDF_OCR),
    DocumentCategory.PDF: (PDF_TEXT_LAYER_BYTES, PDF_TEXT_LAYER_PATH, PLAIN_TEXT, RENDERED_PDF_OCR),
    DocumentCategory.IMAGE: (IMAGE_OCR, PLAIN_TEXT, RENDERED_PDF_OCR),
    DocumentCategory.TEXT: (PLAIN_TEXT, RENDERED_PDF_OCR),
    DocumentCategory.GENERIC: (PLAIN_TEXT, RENDERED_PDF_OCR),
}


def _run_strategy(
    strategy: AcquisitionStrategy,
    data: bytes,
    file_name: str,
    capabilities: ExtractionCapabilities,
) -> StrategyOutcome:
    """Run one strategy; an exception from a collaborator becomes a failed outcome."""
    try:
        outcome = strategy.run(data, file_name, capabilities)
    except Exception as e:
        logger.warning(f"{strategy.name} failed for {file_name}: {type(e).__name__}: {e}")
        return StrategyOutcome.failed(strategy.name, f"{type(e).__name__}: {e}")

    if not outcome.success:
        logger.debug(f"{strategy.name} produced nothing for {file_name}: {outcome.reason}")
    return outcome


def acquire_text(
    data: Optional[bytes],
    file_name: str,
    config: Optional[AcquisitionConfig] = None,
    capabilities: Optional[ExtractionCapabilities] = None,
) -> AcquisitionResult:
    """
    Extract plain text from an uploaded document.

    Args:
        data: Raw file bytes
        file_name: Original upload name (used for the extension)
        config: Extension mapping and OCR options (defaults from environment)
        capabilities: Extraction collaborators (defaults to Docling/pdfplumber/OCR)

    Returns:
        AcquisitionResult - never raises for a failing strategy or unknown type
    """
    config = config or AcquisitionConfig.from_env()
    file_name = file_name or ""
    category = classify_document(file_name, config)

    if category == DocumentCategory.UNKNOWN:
        result = AcquisitionResult.unsupported(file_name, config)
        logger.warning(result.message)
        return result

    data = data or b""
    attempts: List[StrategyOutcome] = []
    if not data:
        logger.info(f"{file_name} is empty, skipping extraction")
        return AcquisitionResult.exhausted(file_name, category, attempts)

    if capabilities is None:
        capabilities = default_capabilities(config)

    for name in STRATEGY_PLANS[category]:
        outcome = _run_strategy(STRATEGIES[name], data, file_name, capabilities)
        attempts.append(outcome)
        if outcome.success:
            result = AcquisitionResult.success_result(file_name, category, outcome, attempts)
            logger.info(result.message)
            return result

    result = AcquisitionResult.exhausted(file_name, category, attempts)
    logger.info(result.message)
    return result


# ============================================================================
# Main Node Function
# ============================================================================

def text_acquisition_node(
    state: OfferState,
    config: Optional[AcquisitionConfig] = None,
    capabilities: Optional[ExtractionCapabilities] = None,
) -> dict:
    """
    Node A: Text Acquisition

    Turns the uploaded bytes into text. Unsupported uploads stop the
    pipeline; an empty extraction continues so the operator still gets a
    record to correct by hand.
    """
    print("--- NODE: Text Acquisition ---")

    file_name = state.get("file_name", "")
    result = acquire_text(state.get("file_bytes"), file_name, config, capabilities)

    errors = list(state.get("errors") or [])
    if result.status == AcquisitionStatus.UNSUPPORTED_TYPE:
        status = "Unsupported"
        errors.append(result.message)
    else:
        status = "Processing"
        if not result.success:
            errors.append(result.message)

    print(f"   {result.message}")

    return {
        "acquisition": result.to_dict(),
        "extracted_text": result.text,
        "status": status,
        "errors": errors,
    }
