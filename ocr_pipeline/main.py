"""
OCR Pipeline — FastAPI приложение.

Эндпоинты:
    POST /ocr/execute — загрузка изображения и распознавание (страницы + координаты)
    POST /ocr/text    — загрузка изображения, ответ одним текстом
    GET  /health      — проверка работоспособности (Tesseract + конфиг)
    GET  /documents/stats — статистика реестра документов (события)

Запуск:
    uvicorn ocr_pipeline.main:app --host 0.0.0.0 --port 8000
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from ocr_pipeline.config import settings
from ocr_pipeline.errors import (
    EngineUnavailable,
    MissingLanguageResource,
    OcrPipelineError,
    PipelineAborted,
    UnreadableImage,
    UnsupportedImageFormat,
)
from ocr_pipeline.schemas import (
    AggregatedResult,
    OCRRequestConfig,
    OCRResponse,
    OutputFormat,
    PageResponse,
    PipelineConfig,
    RunContext,
    UnitResponse,
)
from ocr_pipeline.services.events import SeenDocumentsRegistry
from ocr_pipeline.services.pipeline import run_pipeline

# Настройка логгера
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [OCR-Pipeline] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


class UnicodeJSONResponse(JSONResponse):
    """JSON ответ с нормальным отображением кириллицы (без \\uXXXX экранирования)."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


# FastAPI приложение
app = FastAPI(
    title="OCR Pipeline",
    description="Распознавание текста и координат на изображениях (Tesseract OCR)",
    version="1.0.0",
    default_response_class=UnicodeJSONResponse,
)

# Документы, для которых событие использования уже отправлено (общий для всех запросов)
document_registry = SeenDocumentsRegistry()


@app.get("/health")
async def health_check() -> dict:
    """
    Проверка работоспособности сервиса.

    Returns:
        dict: статус, версия Tesseract и текущая конфигурация
    """
    tesseract_ok = False
    tesseract_version = "unknown"
    try:
        import pytesseract

        pytesseract.pytesseract.tesseract_cmd = settings.tesseract_cmd
        tesseract_version = str(pytesseract.get_tesseract_version())
        tesseract_ok = True
    except Exception as e:
        tesseract_version = f"error: {e}"

    return {
        "status": "ok" if tesseract_ok else "degraded",
        "service": "ocr-pipeline",
        "version": "1.0.0",
        "cpu_count": os.cpu_count(),
        "tesseract": {
            "available": tesseract_ok,
            "version": tesseract_version,
        },
        "config": {
            "engine_backend": settings.engine_backend,
            "tessdata_dir": str(settings.tessdata_dir),
            "default_language": settings.default_language,
            "engine_timeout_seconds": settings.engine_timeout_seconds,
            "max_file_size_mb": settings.max_file_size_mb,
        },
    }


@app.post("/ocr/execute", response_model=OCRResponse)
async def execute_ocr(
    file: UploadFile = File(..., description="Изображение: PNG, JPEG, BMP, TIFF"),
    config: Optional[str] = Form(
        default=None,
        description='JSON конфигурация: {"languages": ["eng"], "granularity": "line"}',
    ),
) -> OCRResponse:
    """
    Распознаёт текст на изображении.

    Прерванный на странице запуск возвращает success=False,
    complete=False и уже обработанные страницы.

    Raises:
        HTTPException: при ошибках валидации или обработки
    """
    start_time = time.time()

    request_config = _parse_config(config)
    logger.info(f"Получен файл: {file.filename}, конфиг: {request_config.model_dump()}")

    file_bytes = await _validate_and_read_file(file)

    error: Optional[str] = None
    try:
        result = await _run_on_upload(file_bytes, file.filename, request_config)
    except PipelineAborted as e:
        result = e.partial_result
        error = str(e)

    processing_time_ms = int((time.time() - start_time) * 1000)
    logger.info(f"OCR завершён: {len(result.pages)} страниц за {processing_time_ms}ms")

    return OCRResponse(
        success=error is None,
        complete=result.complete,
        total_pages=result.page_count,
        processing_time_ms=processing_time_ms,
        pages=_pages_to_response(result),
        config_used=request_config,
        error=error,
    )


@app.post("/ocr/text")
async def execute_ocr_text(
    file: UploadFile = File(..., description="Изображение: PNG, JPEG, BMP, TIFF"),
    config: Optional[str] = Form(default=None),
) -> dict:
    """
    Распознаёт изображение и возвращает текст одной строкой.

    Частичный результат здесь не возвращается: прерванный запуск — ошибка 500.
    """
    request_config = _parse_config(config)
    file_bytes = await _validate_and_read_file(file)

    try:
        result = await _run_on_upload(file_bytes, file.filename, request_config)
    except PipelineAborted as e:
        logger.exception(f"Ошибка обработки изображения: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": "processing_error", "message": str(e)},
        )

    return {"text": result.to_text(), "total_pages": result.page_count}


@app.get("/documents/stats")
async def get_documents_stats() -> dict:
    """
    Статистика реестра документов.

    Документ попадает в реестр при первом событии использования.

    Returns:
        dict: количество документов, самый старый/новый
    """
    return document_registry.get_stats()


async def _run_on_upload(
    file_bytes: bytes,
    filename: Optional[str],
    request_config: OCRRequestConfig,
) -> AggregatedResult:
    """
    Сохраняет загрузку во временный файл и запускает пайплайн в threadpool.

    Ошибки до начала обработки страниц переводятся в HTTPException,
    PipelineAborted пробрасывается вызывающему эндпоинту.
    """
    values = request_config.model_dump(exclude=set(OCRRequestConfig.CONTEXT_FIELDS))
    if values["page_segmentation_mode"] is None:
        values["page_segmentation_mode"] = settings.default_psm

    pipeline_config = PipelineConfig(
        resource_directory=settings.tessdata_dir,
        default_language=settings.default_language,
        engine_timeout=settings.engine_timeout_seconds,
        **values,
    )
    context = RunContext(
        document_id=request_config.document_id,
        document_kind=request_config.document_kind,
        event_registry=document_registry,
    )

    suffix = Path(filename or "upload").suffix
    with tempfile.NamedTemporaryFile(
        prefix="ocr-upload-", suffix=suffix, dir=settings.temp_dir, delete=False
    ) as tmp:
        tmp.write(file_bytes)
        upload_path = Path(tmp.name)

    try:
        return await run_in_threadpool(run_pipeline, upload_path, pipeline_config, context)
    except MissingLanguageResource as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "missing_language", "message": str(e)},
        )
    except UnsupportedImageFormat as e:
        raise HTTPException(
            status_code=415,
            detail={"error": "unsupported_image", "message": str(e)},
        )
    except UnreadableImage as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "unreadable_image", "message": str(e)},
        )
    except PipelineAborted as e:
        if isinstance(e.error, EngineUnavailable):
            raise HTTPException(
                status_code=503,
                detail={"error": "engine_unavailable", "message": str(e)},
            )
        raise
    except OcrPipelineError as e:
        logger.exception(f"Ошибка обработки изображения: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": "processing_error", "message": str(e)},
        )
    finally:
        upload_path.unlink(missing_ok=True)


def _pages_to_response(result: AggregatedResult) -> list[PageResponse]:
    """Преобразует AggregatedResult в список PageResponse."""
    pages = []
    for page_number, units in result.pages.items():
        if result.output_format == OutputFormat.PLAIN_TEXT:
            text = "".join(unit.text for unit in units)
            unit_responses = [UnitResponse(text=unit.text) for unit in units]
        else:
            text = "\n".join(unit.text for unit in units)
            unit_responses = [
                UnitResponse(
                    text=unit.text,
                    bbox=[unit.bbox.x1, unit.bbox.y1, unit.bbox.x2, unit.bbox.y2],
                )
                for unit in units
            ]
        pages.append(
            PageResponse(page_number=page_number, text=text, units=unit_responses)
        )
    return pages


def _parse_config(config_json: Optional[str]) -> OCRRequestConfig:
    """
    Парсит JSON конфигурацию из строки.

    Args:
        config_json: JSON строка или None

    Returns:
        OCRRequestConfig: конфигурация с дефолтными значениями если не указано
    """
    if not config_json:
        return OCRRequestConfig()

    try:
        config_dict = json.loads(config_json)
        return OCRRequestConfig(**config_dict)
    except json.JSONDecodeError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_config",
                "message": f"Некорректный JSON в config: {str(e)}",
            },
        )
    except Exception as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_config",
                "message": f"Ошибка парсинга config: {str(e)}",
            },
        )


async def _validate_and_read_file(file: UploadFile) -> bytes:
    """
    Читает загруженный файл и проверяет размер.

    Формат проверяется позже по содержимому (format_inspector).

    Raises:
        HTTPException: пустой или слишком большой файл
    """
    file_bytes = await file.read()

    if not file_bytes:
        raise HTTPException(
            status_code=400,
            detail={"error": "empty_file", "message": "Загружен пустой файл"},
        )

    max_size = settings.max_file_size_mb * 1024 * 1024
    if len(file_bytes) > max_size:
        raise HTTPException(
            status_code=413,
            detail={
                "error": "file_too_large",
                "message": f"Файл слишком большой: {len(file_bytes)} байт, "
                f"максимум: {settings.max_file_size_mb} МБ",
            },
        )

    return file_bytes


if __name__ == "__main__":
    import uvicorn

    port = settings.port
    logger.info(f"Запуск OCR Pipeline на порту {port}")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
    )
