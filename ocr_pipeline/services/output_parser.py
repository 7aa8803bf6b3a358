"""
Разбор вывода Tesseract.

Содержит:
    - Чтение обычного текста (.txt): содержимое файлов склеивается как есть
    - Разбор hOCR (.hocr): слова ocrx_word с bbox внутри строк ocr_line

Для Line-гранулярности слова одной строки склеиваются через пробел,
bbox строки — минимальный прямоугольник, охватывающий bbox всех слов.

Разбор детерминирован: порядок фрагментов — порядок элементов в hOCR.
"""

import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional

from ocr_pipeline.errors import MalformedOutput
from ocr_pipeline.schemas import (
    BBox,
    OutputFormat,
    ParsedOutput,
    PipelineStage,
    RecognizedUnit,
    TextGranularity,
)

logger = logging.getLogger(__name__)

# Классы hOCR, которые Tesseract использует для строк
LINE_CLASSES = frozenset({"ocr_line", "ocr_caption", "ocr_textfloat", "ocr_header"})
WORD_CLASS = "ocrx_word"
PAGE_CLASS = "ocr_page"

_BBOX_RE = re.compile(r"\bbbox\s+(-?\d+)\s+(-?\d+)\s+(-?\d+)\s+(-?\d+)")


def parse_output(
    paths: list[Path],
    output_format: OutputFormat,
    granularity: TextGranularity,
) -> ParsedOutput:
    """
    Разбирает вывод движка для одной страницы.

    Args:
        paths: файлы, созданные движком
        output_format: формат вывода
        granularity: слова или строки (только для hOCR)

    Returns:
        ParsedOutput: текст или список RecognizedUnit

    Raises:
        MalformedOutput: hOCR отсутствует или не разбирается
    """
    if output_format == OutputFormat.PLAIN_TEXT:
        return ParsedOutput(kind=OutputFormat.PLAIN_TEXT, payload=read_plain_text(paths))

    units: list[RecognizedUnit] = []
    for page_units in parse_hocr_files(paths, granularity).values():
        units.extend(page_units)
    return ParsedOutput(kind=OutputFormat.POSITIONAL, payload=units)


def read_plain_text(paths: list[Path]) -> str:
    """Склеивает содержимое текстовых файлов. Отсутствующие файлы пропускаются."""
    parts = []
    for path in paths:
        if path.exists():
            parts.append(path.read_text(encoding="utf-8"))
        else:
            logger.warning(f"Файл вывода не найден: {path}")
    return "".join(parts)


def parse_hocr_files(
    paths: list[Path],
    granularity: TextGranularity,
) -> dict[int, list[RecognizedUnit]]:
    """
    Разбирает один или несколько hOCR файлов.

    Страницы нумеруются с 1 подряд по всем файлам.

    Returns:
        dict: {номер_страницы: [RecognizedUnit, ...]}
    """
    pages: dict[int, list[RecognizedUnit]] = {}

    for path in paths:
        try:
            content = path.read_bytes()
        except OSError as e:
            raise MalformedOutput(
                f"Не удалось прочитать hOCR {path}: {e}",
                stage=PipelineStage.PARSING,
            ) from e

        for page_units in parse_hocr(content, granularity):
            pages[len(pages) + 1] = page_units

    return pages


def parse_hocr(
    content: bytes,
    granularity: TextGranularity,
) -> list[list[RecognizedUnit]]:
    """
    Разбирает hOCR документ.

    Args:
        content: байты hOCR (XHTML)
        granularity: слова или строки

    Returns:
        list: фрагменты по каждому ocr_page в порядке документа

    Raises:
        MalformedOutput: документ не является корректным XML
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise MalformedOutput(
            f"Некорректный hOCR: {e}", stage=PipelineStage.PARSING
        ) from e

    page_nodes = [node for node in root.iter() if PAGE_CLASS in _classes(node)]
    if not page_nodes:
        return []

    return [_collect_units(page, granularity) for page in page_nodes]


def _collect_units(
    page: ET.Element,
    granularity: TextGranularity,
) -> list[RecognizedUnit]:
    """Собирает фрагменты одной страницы в порядке документа."""
    units: list[RecognizedUnit] = []
    _walk(page, granularity, units)
    return units


def _walk(
    node: ET.Element,
    granularity: TextGranularity,
    units: list[RecognizedUnit],
) -> None:
    for child in node:
        classes = _classes(child)

        if WORD_CLASS in classes:
            # Слово вне строки: отдельный фрагмент при любой гранулярности
            word = _word_unit(child)
            if word is not None:
                units.append(word)
        elif classes & LINE_CLASSES:
            words = [
                word
                for word in (_word_unit(el) for el in child.iter() if WORD_CLASS in _classes(el))
                if word is not None
            ]
            if granularity == TextGranularity.WORD:
                units.extend(words)
            elif words:
                units.append(_merge_line(words))
        else:
            _walk(child, granularity, units)


def _word_unit(node: ET.Element) -> Optional[RecognizedUnit]:
    """Создаёт фрагмент из ocrx_word. Пустые слова пропускаются."""
    text = "".join(node.itertext()).strip()
    if not text:
        return None

    return RecognizedUnit(text=text, bbox=_parse_bbox(node))


def _merge_line(words: list[RecognizedUnit]) -> RecognizedUnit:
    """Склеивает слова строки через пробел, bbox — охватывающий."""
    return RecognizedUnit(
        text=" ".join(word.text for word in words),
        bbox=_compute_bbox([word.bbox for word in words]),
    )


def _compute_bbox(bboxes: list[BBox]) -> BBox:
    """
    Вычисляет bounding box, охватывающий все переданные.

    Args:
        bboxes: непустой список bbox

    Returns:
        BBox: минимальный охватывающий прямоугольник
    """
    return BBox(
        x1=min(b.x1 for b in bboxes),
        y1=min(b.y1 for b in bboxes),
        x2=max(b.x2 for b in bboxes),
        y2=max(b.y2 for b in bboxes),
    )


def _parse_bbox(node: ET.Element) -> BBox:
    """Читает "bbox x1 y1 x2 y2" из атрибута title."""
    title = node.get("title", "")
    match = _BBOX_RE.search(title)
    if match is None:
        raise MalformedOutput(
            f"У слова нет bbox в title: {title!r}", stage=PipelineStage.PARSING
        )

    x1, y1, x2, y2 = (int(v) for v in match.groups())
    return BBox(x1=x1, y1=y1, x2=x2, y2=y2)


def _classes(node: ET.Element) -> set[str]:
    return set(node.get("class", "").split())
