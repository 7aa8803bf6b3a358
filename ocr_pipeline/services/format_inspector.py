"""
Определение формата изображения и количества страниц.

Pillow открывает файл лениво: Image.open читает только заголовок,
а n_frames у TIFF перебирает IFD без декодирования пикселей.
Многостраничным считается только TIFF.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from ocr_pipeline.errors import UnreadableImage, UnsupportedImageFormat
from ocr_pipeline.schemas import PipelineStage

logger = logging.getLogger(__name__)

# Форматы Pillow, которые принимает Tesseract
SUPPORTED_FORMATS = frozenset({"BMP", "PNG", "TIFF", "JPEG"})
MULTI_PAGE_FORMATS = frozenset({"TIFF"})


@dataclass(frozen=True)
class ImageInfo:
    """
    Результат инспекции изображения.

    Attributes:
        image_format: формат по данным Pillow ("PNG", "TIFF", ...)
        page_count: количество страниц (1 для всего, кроме TIFF)
        width: ширина первой страницы
        height: высота первой страницы
        mode: режим пикселей первой страницы ("RGB", "L", ...)
    """

    image_format: str
    page_count: int
    width: int
    height: int
    mode: str

    @property
    def is_multi_page(self) -> bool:
        return self.page_count > 1


def inspect_image(image_path: Path) -> ImageInfo:
    """
    Определяет формат контейнера и количество страниц.

    Формат определяется по содержимому, а не по расширению.

    Args:
        image_path: путь к изображению

    Returns:
        ImageInfo: формат, количество страниц, размеры

    Raises:
        UnreadableImage: файл отсутствует или заголовок повреждён
        UnsupportedImageFormat: формат не из SUPPORTED_FORMATS
    """
    try:
        with Image.open(image_path) as img:
            image_format = img.format
            width, height = img.size
            mode = img.mode

            if image_format not in SUPPORTED_FORMATS:
                raise UnsupportedImageFormat(
                    image_format, stage=PipelineStage.COUNTING_PAGES
                )

            if image_format in MULTI_PAGE_FORMATS:
                page_count = getattr(img, "n_frames", 1)
            else:
                page_count = 1
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        # Pillow сообщает об обрезанных заголовках разными исключениями
        raise UnreadableImage(
            f"Не удалось прочитать изображение {image_path}: {e}",
            stage=PipelineStage.COUNTING_PAGES,
        ) from e

    logger.info(
        f"Изображение {Path(image_path).name}: формат={image_format}, "
        f"страниц={page_count}, {width}x{height}, mode={mode}"
    )

    return ImageInfo(
        image_format=image_format,
        page_count=page_count,
        width=width,
        height=height,
        mode=mode,
    )


def load_page(image_path: Path, page_number: int) -> Image.Image:
    """
    Загружает пиксели одной страницы (кадра) изображения.

    Args:
        image_path: путь к изображению
        page_number: номер страницы, начиная с 1

    Returns:
        Image.Image: полностью загруженная копия кадра

    Raises:
        UnreadableImage: кадр не существует или не декодируется
    """
    try:
        with Image.open(image_path) as img:
            img.seek(page_number - 1)
            img.load()
            return img.copy()
    except EOFError as e:
        raise UnreadableImage(
            f"В {image_path} нет страницы {page_number}",
            stage=PipelineStage.PROCESSING_PAGE,
            page=page_number,
        ) from e
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise UnreadableImage(
            f"Не удалось декодировать страницу {page_number} из {image_path}: {e}",
            stage=PipelineStage.PROCESSING_PAGE,
            page=page_number,
        ) from e
