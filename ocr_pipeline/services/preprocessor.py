"""
Препроцессинг страницы перед OCR.

Порядок фиксирован:
    1. Цветное изображение -> grayscale (ITU-R 601-2 luma, Pillow convert("L"))
    2. 8-битный grayscale -> бинаризация по Otsu

Компонент никогда не падает: неподдерживаемый режим пикселей или
вырожденный результат бинаризации означают, что дальше идёт лучший
буфер, полученный на предыдущем шаге.
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
from PIL import Image

from ocr_pipeline.services.format_inspector import load_page
from ocr_pipeline.services.workspace import RunWorkspace

logger = logging.getLogger(__name__)

# Режимы Pillow, которые читаются как 32-битный цветной Pix в Leptonica
# (CMYK и YCbCr JPEG декодируются в RGB)
COLOR_MODES = frozenset({"RGB", "RGBA", "RGBX", "CMYK", "YCbCr"})
# Бинаризация поддерживается только для 8 бит на канал, один канал
BINARIZABLE_MODE = "L"
# Режимы, которые Pillow умеет записать в PNG
PNG_MODES = frozenset({"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"})


def convert_to_grayscale(image: Image.Image) -> Image.Image:
    """
    Переводит цветное изображение в grayscale.

    Альфа-канал отбрасывается. Для остальных режимов преобразование
    пропускается (это не ошибка).

    Args:
        image: исходное изображение

    Returns:
        Image.Image: grayscale или исходное изображение
    """
    if image.mode in COLOR_MODES:
        return image.convert("L")

    if image.mode != BINARIZABLE_MODE:
        logger.warning(
            f"Перевод в grayscale пропущен: режим {image.mode} не является цветным"
        )
    return image


def otsu_threshold(pixels: np.ndarray) -> int:
    """
    Вычисляет порог Otsu для 8-битного массива.

    Порог максимизирует межклассовую дисперсию. При равенстве
    выбирается наименьший порог, поэтому результат детерминирован.

    Args:
        pixels: массив uint8

    Returns:
        int: порог 0..255 (пиксели > порога становятся белыми)
    """
    hist = np.bincount(pixels.ravel(), minlength=256).astype(np.float64)
    total = hist.sum()

    omega = np.cumsum(hist) / total
    mu = np.cumsum(hist * np.arange(256)) / total
    mu_total = mu[-1]

    with np.errstate(divide="ignore", invalid="ignore"):
        sigma_between = (mu_total * omega - mu) ** 2 / (omega * (1.0 - omega))
    sigma_between = np.nan_to_num(sigma_between, nan=0.0, posinf=0.0, neginf=0.0)

    return int(np.argmax(sigma_between))


def binarize(image: Image.Image) -> Image.Image:
    """
    Бинаризация по Otsu для 8-битного grayscale.

    Для других режимов и при вырожденном результате возвращает
    исходный буфер без изменений.

    Args:
        image: изображение (ожидается режим "L")

    Returns:
        Image.Image: изображение 0/255 в режиме "L" или исходное
    """
    if image.mode != BINARIZABLE_MODE:
        logger.warning(f"Бинаризация пропущена: режим {image.mode} не поддерживается")
        return image

    result = _otsu_binarize(image)
    if result is None or result.width <= 0 or result.height <= 0:
        logger.warning("Бинаризация дала вырожденный результат, используем grayscale")
        return image

    return result


def _otsu_binarize(image: Image.Image) -> Optional[Image.Image]:
    """Применяет порог Otsu. None, если изображение пустое."""
    pixels = np.asarray(image, dtype=np.uint8)
    if pixels.size == 0:
        return None

    threshold = otsu_threshold(pixels)
    binary = np.where(pixels > threshold, 255, 0).astype(np.uint8)

    return Image.fromarray(binary)


def preprocess_image(image: Image.Image) -> Image.Image:
    """
    Выполняет препроцессинг: grayscale -> бинаризация.

    Args:
        image: пиксели страницы

    Returns:
        Image.Image: лучший полученный буфер
    """
    image = convert_to_grayscale(image)
    image = binarize(image)
    return image


def to_png_writable(image: Image.Image) -> Image.Image:
    """
    Приводит буфер к режиму, который можно сохранить в PNG.

    Режимы вроде "F" (float TIFF) PNG не поддерживает, такой буфер
    переводится в 8-битный grayscale.
    """
    if image.mode in PNG_MODES:
        return image

    logger.warning(f"Режим {image.mode} не записывается в PNG, переводим в L")
    try:
        return image.convert("L")
    except ValueError:
        # Прямого преобразования нет (например, HSV)
        return image.convert("RGB").convert("L")


def preprocess_page(
    image_path: Path,
    page_number: int,
    workspace: RunWorkspace,
) -> Path:
    """
    Препроцессинг одной страницы с сохранением во временный PNG.

    Файл регистрируется в workspace, удаляет его оркестратор.

    Args:
        image_path: исходное изображение
        page_number: номер страницы (с 1)
        workspace: пространство временных файлов запуска

    Returns:
        Path: путь к подготовленному изображению

    Raises:
        UnreadableImage: страница не декодируется
    """
    page = load_page(image_path, page_number)
    processed = to_png_writable(preprocess_image(page))

    output_path = workspace.new_artifact(f"page-{page_number}-prep", ".png")
    processed.save(output_path, format="PNG")

    logger.info(
        f"   Препроцессинг стр.{page_number}: {page.mode} -> {processed.mode}, "
        f"{processed.width}x{processed.height}"
    )

    return output_path
