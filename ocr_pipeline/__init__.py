"""
OCR Pipeline — распознавание текста и координат на растровых изображениях.

Распознавание выполняет внешний движок Tesseract, пакет отвечает за всё вокруг:
    - Определение формата и количества страниц (многостраничный TIFF)
    - Препроцессинг страницы (grayscale + бинаризация Otsu)
    - Вызов движка с таймаутом (процесс или pytesseract)
    - Разбор текста / hOCR в слова и строки с bounding box
    - Сборку результата по страницам и очистку временных файлов
"""

from ocr_pipeline.config import settings
from ocr_pipeline.schemas import (
    AggregatedResult,
    BBox,
    OutputFormat,
    PipelineConfig,
    RecognizedUnit,
    RunContext,
    TextGranularity,
)
from ocr_pipeline.services.pipeline import run_pipeline, run_pipeline_as_plain_text

__all__ = [
    "settings",
    "AggregatedResult",
    "BBox",
    "OutputFormat",
    "PipelineConfig",
    "RecognizedUnit",
    "RunContext",
    "TextGranularity",
    "run_pipeline",
    "run_pipeline_as_plain_text",
]
