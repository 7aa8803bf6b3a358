"""
Ошибки OCR Pipeline.

Иерархия:
    OcrPipelineError
        UnreadableImage, UnsupportedImageFormat      — проверка изображения
        MissingLanguageResource                      — проверка языков
        EngineUnavailable, EngineTimeout,
        EngineExecutionFailed                        — вызов движка
        MalformedOutput                              — разбор вывода
        TemporaryResourceCleanupFailed               — только логируется
        PipelineCancelled                            — отмена запуска
        PipelineAborted                              — запуск прерван, есть частичный результат
"""

from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ocr_pipeline.schemas import PipelineStage

if TYPE_CHECKING:
    from ocr_pipeline.schemas import AggregatedResult


class OcrPipelineError(Exception):
    """
    Базовая ошибка пайплайна.

    Attributes:
        stage: этап, на котором произошла ошибка
        page: номер страницы (если применимо)
    """

    def __init__(
        self,
        message: str,
        stage: Optional[PipelineStage] = None,
        page: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.page = page

    def __str__(self) -> str:
        location = []
        if self.stage is not None:
            location.append(f"этап={self.stage.value}")
        if self.page is not None:
            location.append(f"стр.{self.page}")
        if location:
            return f"{self.message} ({', '.join(location)})"
        return self.message


class UnreadableImage(OcrPipelineError):
    """Контейнер изображения не читается (обрезан, повреждён, отсутствует)."""


class UnsupportedImageFormat(OcrPipelineError):
    """Изображение читается, но формат не поддерживается."""

    def __init__(self, image_format: Optional[str], **kwargs):
        super().__init__(
            f"Неподдерживаемый формат изображения: {image_format}", **kwargs
        )
        self.image_format = image_format


class MissingLanguageResource(OcrPipelineError):
    """Нет файла <язык>.traineddata в каталоге ресурсов."""

    def __init__(self, language: str, directory: Path, **kwargs):
        super().__init__(
            f"Не найден языковой файл {language}.traineddata в {directory}",
            **kwargs,
        )
        self.language = language
        self.directory = directory


class EngineUnavailable(OcrPipelineError):
    """Исполняемый файл / библиотека Tesseract не найдены."""


class EngineTimeout(OcrPipelineError):
    """Вызов движка не завершился за отведённое время."""

    def __init__(self, timeout_seconds: float, **kwargs):
        super().__init__(
            f"Tesseract не завершился за {timeout_seconds:g} сек", **kwargs
        )
        self.timeout_seconds = timeout_seconds


class EngineExecutionFailed(OcrPipelineError):
    """Движок завершился с ошибкой. diagnostics — его stderr."""

    def __init__(
        self,
        returncode: Optional[int],
        diagnostics: str,
        **kwargs,
    ):
        super().__init__(
            f"Tesseract завершился с кодом {returncode}: {diagnostics.strip()}",
            **kwargs,
        )
        self.returncode = returncode
        self.diagnostics = diagnostics


class MalformedOutput(OcrPipelineError):
    """Вывод движка не удалось разобрать."""


class TemporaryResourceCleanupFailed(OcrPipelineError):
    """Временный файл не удалось удалить. Никогда не выбрасывается из очистки."""

    def __init__(self, path: Path, reason: str, **kwargs):
        super().__init__(f"Не удалось удалить {path}: {reason}", **kwargs)
        self.path = path


class PipelineCancelled(OcrPipelineError):
    """Запуск отменён вызывающим кодом."""


class PipelineAborted(OcrPipelineError):
    """
    Запуск прерван на одной из страниц.

    Attributes:
        error: исходная ошибка (также доступна как __cause__)
        partial_result: страницы, обработанные до ошибки, плюс страница
            с ошибкой с пустым списком; partial_result.complete == False
    """

    def __init__(self, error: OcrPipelineError, partial_result: "AggregatedResult"):
        super().__init__(
            f"Обработка прервана: {error}",
            stage=error.stage,
            page=error.page,
        )
        self.error = error
        self.partial_result = partial_result

    def __str__(self) -> str:
        return self.message
