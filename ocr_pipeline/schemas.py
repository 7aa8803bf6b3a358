"""
Единые схемы данных OCR Pipeline.

Включает:
    - Pydantic модель конфигурации запуска (PipelineConfig)
    - Перечисления формата вывода, гранулярности и этапов пайплайна
    - Внутренние dataclass'ы результата: bbox, распознанный фрагмент,
      агрегированный результат по страницам
    - Контекст запуска и запрос к движку
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from ocr_pipeline.services.events import SeenDocumentsRegistry


# =============================================================================
# Перечисления
# =============================================================================


class OutputFormat(str, Enum):
    """Формат вывода движка: обычный текст или hOCR с координатами."""

    PLAIN_TEXT = "plain_text"
    POSITIONAL = "positional"


class TextGranularity(str, Enum):
    """Единица результата: отдельное слово или целая строка."""

    WORD = "word"
    LINE = "line"


class PipelineStage(str, Enum):
    """Состояния пайплайна (используются в логах и в ошибках)."""

    VALIDATING = "validating"
    COUNTING_PAGES = "counting_pages"
    PROCESSING_PAGE = "processing_page"
    PARSING = "parsing"
    AGGREGATING = "aggregating"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    ABORTED = "aborted"


class DocumentKind(str, Enum):
    """Тип итогового документа, для которого выполняется OCR (для событий)."""

    IMAGE = "image"
    PDF = "pdf"
    PDFA = "pdfa"


# =============================================================================
# Pydantic модель конфигурации
# =============================================================================


class PipelineConfig(BaseModel):
    """
    Конфигурация одного запуска OCR.

    Модель неизменяема: пайплайн только читает её.

    Attributes:
        languages: языки в порядке приоритета (дубликаты удаляются)
        resource_directory: каталог с *.traineddata
        granularity: слова или строки
        output_format: обычный текст или hOCR
        preprocess: выполнять ли grayscale + бинаризацию перед OCR
        page_segmentation_mode: --psm для Tesseract
        custom_lexicon_path: готовый файл user-words (не удаляется)
        user_words: слова, которые будут записаны во временный файл user-words
        default_language: язык, если languages пуст
        engine_timeout: лимит времени на один вызов движка
    """

    model_config = ConfigDict(frozen=True)

    languages: list[str] = Field(
        default_factory=list,
        description="Языки для OCR: ['eng'], ['rus', 'eng']",
    )
    resource_directory: Path = Field(
        description="Каталог с файлами <язык>.traineddata",
    )
    granularity: TextGranularity = TextGranularity.WORD
    output_format: OutputFormat = OutputFormat.POSITIONAL
    preprocess: bool = True
    page_segmentation_mode: Optional[int] = Field(default=None, ge=0, le=13)
    custom_lexicon_path: Optional[Path] = None
    user_words: Optional[list[str]] = None
    default_language: str = "eng"
    engine_timeout: timedelta = timedelta(hours=3)

    @field_validator("languages")
    @classmethod
    def _unique_languages(cls, value: list[str]) -> list[str]:
        # Упорядоченное множество: первое вхождение побеждает
        seen: list[str] = []
        for lang in value:
            lang = lang.strip()
            if lang and lang not in seen:
                seen.append(lang)
        return seen

    @field_validator("engine_timeout")
    @classmethod
    def _positive_timeout(cls, value: timedelta) -> timedelta:
        if value.total_seconds() <= 0:
            raise ValueError("engine_timeout должен быть положительным")
        return value

    @property
    def language_string(self) -> str:
        """Языки в формате Tesseract ("rus+eng") или язык по умолчанию."""
        if self.languages:
            return "+".join(self.languages)
        return self.default_language


# =============================================================================
# Результат распознавания
# =============================================================================


@dataclass(frozen=True)
class BBox:
    """
    Bounding box в пикселях исходного изображения.

    (x1, y1) — левый верхний угол, (x2, y2) — правый нижний.
    """

    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def is_empty(self) -> bool:
        return self == EMPTY_BBOX


# Для обычного текста координат нет
EMPTY_BBOX = BBox(0, 0, 0, 0)


@dataclass(frozen=True)
class RecognizedUnit:
    """
    Распознанный фрагмент: слово или строка.

    Attributes:
        text: распознанный текст
        bbox: координаты (EMPTY_BBOX для обычного текста)
    """

    text: str
    bbox: BBox = EMPTY_BBOX


@dataclass(frozen=True)
class ParsedOutput:
    """
    Результат разбора вывода движка для одной страницы.

    Tagged variant вместо двух несвязанных классов:
        - kind=PLAIN_TEXT -> payload: str
        - kind=POSITIONAL -> payload: list[RecognizedUnit]
    """

    kind: OutputFormat
    payload: Union[str, list[RecognizedUnit]]

    def units(self) -> list[RecognizedUnit]:
        """Приводит оба варианта к списку RecognizedUnit."""
        if self.kind == OutputFormat.PLAIN_TEXT:
            return [RecognizedUnit(text=self.payload)] if self.payload else []
        return list(self.payload)


@dataclass
class AggregatedResult:
    """
    Результат запуска: страница -> список распознанных фрагментов.

    Страницы вставляются по возрастанию номера. Пустая страница
    присутствует с пустым списком.

    Attributes:
        page_count: количество страниц, определённое в начале запуска
        output_format: формат, в котором работал движок
        pages: {номер_страницы: [RecognizedUnit, ...]}
        complete: False, если запуск прерван и результат частичный
    """

    page_count: int
    output_format: OutputFormat
    pages: dict[int, list[RecognizedUnit]] = field(default_factory=dict)
    complete: bool = False

    def to_text(self) -> str:
        """
        Собирает текст всех страниц.

        Для обычного текста содержимое страниц склеивается как есть.
        Для hOCR каждый фрагмент идёт с новой строки, страницы
        разделены пустой строкой.
        """
        if self.output_format == OutputFormat.PLAIN_TEXT:
            return "".join(
                unit.text for units in self.pages.values() for unit in units
            )

        parts = []
        for units in self.pages.values():
            page_text = "".join(f"{unit.text}\n" for unit in units)
            parts.append(page_text + "\n")
        return "".join(parts)


# =============================================================================
# Контекст запуска и запрос к движку
# =============================================================================


@dataclass
class RunContext:
    """
    Явный контекст запуска (вместо thread-local метаданных).

    Attributes:
        document_id: идентификатор итогового документа (для дедупликации событий)
        document_kind: тип документа, определяет тип события
        event_registry: внешний потокобезопасный реестр mark_seen(id)
        event_sink: получатель событий (по умолчанию — лог)
        cancel_event: выставляется вызывающим кодом для отмены запуска
    """

    document_id: Optional[uuid.UUID] = None
    document_kind: DocumentKind = DocumentKind.IMAGE
    event_registry: Optional["SeenDocumentsRegistry"] = None
    event_sink: Optional[Callable[[str, "RunContext"], None]] = None
    cancel_event: Optional[threading.Event] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass(frozen=True)
class EngineRequest:
    """
    Запрос к движку распознавания.

    Attributes:
        image_path: изображение (после препроцессинга или исходное)
        output_stem: путь без расширения, движок допишет .txt / .hocr
        languages: языки (пустой список -> язык движка по умолчанию)
        resource_directory: каталог с traineddata
        output_format: обычный текст или hOCR
        page_segmentation_mode: --psm
        lexicon_path: файл user-words
        page_index: номер кадра (с 0) для многостраничного TIFF без препроцессинга
        timeout_seconds: лимит времени вызова
        default_language: язык для бэкендов, которым он нужен явно
        cancel_event: событие отмены запуска
    """

    image_path: Path
    output_stem: Path
    languages: tuple[str, ...]
    resource_directory: Path
    output_format: OutputFormat
    page_segmentation_mode: Optional[int] = None
    lexicon_path: Optional[Path] = None
    page_index: Optional[int] = None
    timeout_seconds: float = 3 * 60 * 60
    default_language: str = "eng"
    cancel_event: Optional[threading.Event] = None

    @property
    def output_extension(self) -> str:
        return ".hocr" if self.output_format == OutputFormat.POSITIONAL else ".txt"

    @property
    def output_path(self) -> Path:
        """Файл, который движок создаст по output_stem."""
        return self.output_stem.with_name(self.output_stem.name + self.output_extension)


# =============================================================================
# Pydantic модели для API
# =============================================================================


class OCRRequestConfig(BaseModel):
    """
    Конфигурация OCR от пользователя API.

    Каталог ресурсов и таймаут берутся из настроек сервиса.

    Attributes:
        languages: список языков (пустой — язык по умолчанию)
        granularity: слова или строки
        output_format: обычный текст или hOCR
        preprocess: препроцессинг страниц
        page_segmentation_mode: --psm
        user_words: дополнительный словарь
        document_id: итоговый документ (событие отправляется один раз на документ)
        document_kind: тип итогового документа
    """

    languages: list[str] = Field(
        default_factory=list,
        description="Языки для OCR: ['eng'], ['rus', 'eng']",
    )
    granularity: TextGranularity = TextGranularity.WORD
    output_format: OutputFormat = OutputFormat.POSITIONAL
    preprocess: bool = True
    page_segmentation_mode: Optional[int] = Field(default=None, ge=0, le=13)
    user_words: Optional[list[str]] = None
    document_id: Optional[uuid.UUID] = None
    document_kind: DocumentKind = DocumentKind.IMAGE

    # Поля контекста запуска, не PipelineConfig
    CONTEXT_FIELDS: ClassVar[frozenset[str]] = frozenset({"document_id", "document_kind"})


class UnitResponse(BaseModel):
    """Распознанный фрагмент: текст и bbox [x1, y1, x2, y2]."""

    text: str
    bbox: Optional[list[int]] = None


class PageResponse(BaseModel):
    """
    Результат OCR для одной страницы.

    Attributes:
        page_number: номер страницы (начинается с 1)
        text: текст страницы
        units: фрагменты с координатами
    """

    page_number: int
    text: str
    units: list[UnitResponse] = []


class OCRResponse(BaseModel):
    """
    Ответ API с результатами OCR.

    Attributes:
        success: запуск завершён без ошибок
        complete: результат полный (False — частичный после ошибки)
        total_pages: количество страниц в изображении
        processing_time_ms: общее время обработки в мс
        pages: результаты по страницам
        config_used: конфигурация, которая была использована
        error: сообщение об ошибке (если success=False)
    """

    success: bool
    complete: bool
    total_pages: int
    processing_time_ms: int
    pages: list[PageResponse] = []
    config_used: OCRRequestConfig
    error: Optional[str] = None
