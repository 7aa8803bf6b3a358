"""
Сервисы OCR пайплайна.

Модули:
    - format_inspector: формат изображения и количество страниц
    - preprocessor: grayscale + бинаризация
    - validation: проверка языковых ресурсов
    - engine: вызов Tesseract (процесс или pytesseract)
    - output_parser: разбор текста и hOCR
    - workspace: временные файлы запуска
    - events: события использования и реестр документов
    - pipeline: координация пайплайна
"""

from ocr_pipeline.services.engine import (
    EngineBackend,
    TesseractExecutableBackend,
    TesseractLibraryBackend,
    create_engine_backend,
)
from ocr_pipeline.services.events import SeenDocumentsRegistry
from ocr_pipeline.services.format_inspector import inspect_image
from ocr_pipeline.services.output_parser import parse_output
from ocr_pipeline.services.pipeline import run_pipeline, run_pipeline_as_plain_text
from ocr_pipeline.services.preprocessor import preprocess_image, preprocess_page
from ocr_pipeline.services.validation import validate_languages

__all__ = [
    "EngineBackend",
    "TesseractExecutableBackend",
    "TesseractLibraryBackend",
    "create_engine_backend",
    "SeenDocumentsRegistry",
    "inspect_image",
    "parse_output",
    "run_pipeline",
    "run_pipeline_as_plain_text",
    "preprocess_image",
    "preprocess_page",
    "validate_languages",
]
