"""
Оркестратор OCR пайплайна.

Координирует запуск для одного изображения:
    1. Validating: проверка traineddata для языков
    2. CountingPages: формат и количество страниц
    3. ProcessingPage(n): препроцессинг (опционально) + вызов движка
    4. Parsing(n): разбор вывода движка
    5. Aggregating: страница -> список фрагментов
    6. CleaningUp: удаление всех временных файлов (всегда)

Страницы обрабатываются по возрастанию, по одному вызову движка за раз.
Ошибка на странице прерывает запуск: вызывающий код получает
PipelineAborted с частичным результатом.
"""

import logging
import time
from pathlib import Path
from typing import Optional, Union

from ocr_pipeline.config import settings
from ocr_pipeline.errors import (
    EngineExecutionFailed,
    OcrPipelineError,
    PipelineAborted,
    PipelineCancelled,
)
from ocr_pipeline.schemas import (
    AggregatedResult,
    EngineRequest,
    PipelineConfig,
    PipelineStage,
    RecognizedUnit,
    RunContext,
)
from ocr_pipeline.services.engine import EngineBackend, create_engine_backend
from ocr_pipeline.services.events import emit_usage_event
from ocr_pipeline.services.format_inspector import ImageInfo, inspect_image
from ocr_pipeline.services.output_parser import parse_output
from ocr_pipeline.services.preprocessor import preprocess_page
from ocr_pipeline.services.validation import validate_languages
from ocr_pipeline.services.workspace import RunWorkspace

logger = logging.getLogger(__name__)

# Tesseract может создать любой из этих файлов по stem
OUTPUT_EXTENSIONS = (".txt", ".hocr")


def run_pipeline(
    image: Union[str, Path],
    config: PipelineConfig,
    context: Optional[RunContext] = None,
    backend: Optional[EngineBackend] = None,
    temp_dir: Optional[Path] = None,
) -> AggregatedResult:
    """
    Распознаёт текст на изображении (все страницы).

    Args:
        image: путь к изображению (BMP, PNG, TIFF, JPEG)
        config: конфигурация запуска (только чтение)
        context: явный контекст (события, отмена)
        backend: движок; по умолчанию выбирается из settings
        temp_dir: корень для временных файлов; по умолчанию settings.temp_dir

    Returns:
        AggregatedResult: страницы 1..N, complete=True

    Raises:
        MissingLanguageResource: нет traineddata (движок не вызывался)
        UnreadableImage, UnsupportedImageFormat: изображение не подходит
        PipelineAborted: ошибка на странице; содержит частичный результат
    """
    total_start = time.perf_counter()
    image_path = Path(image)

    if backend is None:
        backend = create_engine_backend(settings.engine_backend, settings.tesseract_cmd)

    logger.info("=" * 60)
    logger.info("НОВЫЙ ЗАПРОС OCR")
    logger.info(f"   Файл: {image_path.name}")
    logger.info(f"   Языки: {config.language_string}")
    logger.info(
        f"   Формат: {config.output_format.value}, "
        f"гранулярность: {config.granularity.value}, "
        f"препроцессинг: {config.preprocess}, бэкенд: {backend.name}"
    )
    logger.info("=" * 60)

    # 1. Validating
    validate_languages(config.languages, config.resource_directory, config.default_language)

    # 2. CountingPages
    info = inspect_image(image_path)

    result = AggregatedResult(
        page_count=info.page_count,
        output_format=config.output_format,
    )

    workspace = RunWorkspace(temp_dir if temp_dir is not None else settings.temp_dir)
    page: Optional[int] = None
    ocr_start = time.perf_counter()

    try:
        lexicon_path = config.custom_lexicon_path
        if config.user_words:
            lexicon_path = workspace.stage_lexicon(config.user_words)

        for page in range(1, info.page_count + 1):
            if context is not None and context.cancelled:
                raise PipelineCancelled(
                    "Запуск отменён", stage=PipelineStage.PROCESSING_PAGE
                )

            units = _process_page(
                image_path, page, info, config, backend, workspace, lexicon_path, context
            )

            # 5. Aggregating
            result.pages[page] = units
            logger.info(
                f"        стр.{page}: {len(units)} фрагм., "
                f"{sum(len(u.text) for u in units)} симв."
            )

        result.complete = True

    except Exception as exc:
        error = exc
        if not isinstance(error, OcrPipelineError):
            error = OcrPipelineError(
                f"Непредвиденная ошибка {type(exc).__name__}: {exc}",
                stage=PipelineStage.PROCESSING_PAGE,
            )
            error.__cause__ = exc
        if error.page is None:
            error.page = page
        if page is not None:
            result.pages.setdefault(page, [])
        logger.error(f"   Запуск прерван: {error}")
        raise PipelineAborted(error, result) from error

    finally:
        # 6. CleaningUp
        cleanup_errors = workspace.cleanup()
        if cleanup_errors:
            logger.warning(f"   Не удалено временных файлов: {len(cleanup_errors)}")

    ocr_duration = int((time.perf_counter() - ocr_start) * 1000)
    total_duration = int((time.perf_counter() - total_start) * 1000)
    total_units = sum(len(units) for units in result.pages.values())

    logger.info("=" * 60)
    logger.info("ОБРАБОТКА ЗАВЕРШЕНА")
    logger.info(f"   Файл: {image_path.name}")
    logger.info(f"   Страниц: {len(result.pages)}")
    logger.info(f"   Фрагментов: {total_units}")
    logger.info(f"   OCR:    {ocr_duration}ms")
    logger.info(f"   ИТОГО:  {total_duration}ms")
    logger.info("=" * 60)

    return result


def run_pipeline_as_plain_text(
    image: Union[str, Path],
    config: PipelineConfig,
    context: Optional[RunContext] = None,
    backend: Optional[EngineBackend] = None,
    temp_dir: Optional[Path] = None,
) -> str:
    """
    Распознаёт изображение и возвращает текст всех страниц одной строкой.

    Ошибки не подавляются: прерванный запуск выбрасывает PipelineAborted.
    """
    result = run_pipeline(image, config, context=context, backend=backend, temp_dir=temp_dir)
    return result.to_text()


def _process_page(
    image_path: Path,
    page: int,
    info: ImageInfo,
    config: PipelineConfig,
    backend: EngineBackend,
    workspace: RunWorkspace,
    lexicon_path: Optional[Path],
    context: Optional[RunContext],
) -> list[RecognizedUnit]:
    """
    Обрабатывает одну страницу: препроцессинг, движок, разбор.

    Без препроцессинга многостраничный TIFF передаётся движку целиком,
    страница выбирается через tessedit_page_number.
    """
    # 3. ProcessingPage(n)
    page_index: Optional[int] = None
    if config.preprocess:
        input_path = preprocess_page(image_path, page, workspace)
    else:
        input_path = image_path
        if info.is_multi_page:
            page_index = page - 1

    output_stem = workspace.new_output_stem(f"page-{page}", OUTPUT_EXTENSIONS)

    request = EngineRequest(
        image_path=input_path,
        output_stem=output_stem,
        languages=tuple(config.languages),
        resource_directory=config.resource_directory,
        output_format=config.output_format,
        page_segmentation_mode=config.page_segmentation_mode,
        lexicon_path=lexicon_path,
        page_index=page_index,
        timeout_seconds=config.engine_timeout.total_seconds(),
        default_language=config.default_language,
        cancel_event=context.cancel_event if context is not None else None,
    )

    emit_usage_event(context)
    try:
        outputs = backend.invoke(request)
    except OcrPipelineError:
        raise
    except Exception as e:
        # Сбой бэкенда вне его таксономии ошибок
        raise EngineExecutionFailed(
            None,
            f"{type(e).__name__}: {e}",
            stage=PipelineStage.PROCESSING_PAGE,
        ) from e

    # 4. Parsing(n)
    parsed = parse_output(outputs, config.output_format, config.granularity)
    units = parsed.units()

    # Вывод страницы больше не нужен
    released = list(outputs)
    if input_path != image_path:
        released.append(input_path)
    workspace.release(released)

    return units
