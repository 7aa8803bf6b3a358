"""
Общие фикстуры тестов OCR Pipeline.

Содержит:
    - каталог traineddata с пустыми файлами языков
    - генераторы изображений (PNG, JPEG, многостраничный TIFF)
    - генератор hOCR в формате Tesseract
    - фейковый движок, пишущий заранее заданный вывод
"""

import stat
from pathlib import Path
from typing import Optional

import pytest
from PIL import Image

from ocr_pipeline.schemas import EngineRequest, OutputFormat
from ocr_pipeline.services.engine import EngineBackend

HOCR_HEAD = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Transitional//EN"
    "http://www.w3.org/TR/xhtml1/DTD/xhtml1-transitional.dtd">
<html xmlns="http://www.w3.org/1999/xhtml" xml:lang="en" lang="en">
 <head>
  <title></title>
  <meta http-equiv="Content-Type" content="text/html;charset=utf-8"/>
  <meta name='ocr-system' content='tesseract 5.3.0' />
 </head>
 <body>
"""
HOCR_TAIL = """ </body>
</html>
"""


def build_hocr(pages: list[list[list[tuple[str, tuple[int, int, int, int]]]]]) -> str:
    """
    Строит hOCR как у Tesseract.

    Args:
        pages: страницы -> строки -> слова (текст, bbox)
    """
    body = []
    word_id = 0
    for page_num, lines in enumerate(pages, start=1):
        body.append(
            f"  <div class='ocr_page' id='page_{page_num}' "
            f"title='image \"x.png\"; bbox 0 0 1000 1000; ppageno {page_num - 1}'>\n"
        )
        body.append(f"   <div class='ocr_carea' id='block_{page_num}_1' title='bbox 0 0 1000 1000'>\n")
        body.append(f"    <p class='ocr_par' id='par_{page_num}_1' lang='eng' title='bbox 0 0 1000 1000'>\n")
        for line_num, words in enumerate(lines, start=1):
            body.append(
                f"     <span class='ocr_line' id='line_{page_num}_{line_num}' "
                f"title='bbox 0 0 1000 1000; baseline 0 0; x_size 30'>\n"
            )
            for text, (x1, y1, x2, y2) in words:
                word_id += 1
                body.append(
                    f"      <span class='ocrx_word' id='word_{page_num}_{word_id}' "
                    f"title='bbox {x1} {y1} {x2} {y2}; x_wconf 95'>{text}</span>\n"
                )
            body.append("     </span>\n")
        body.append("    </p>\n   </div>\n  </div>\n")
    return HOCR_HEAD + "".join(body) + HOCR_TAIL


class FakeBackend(EngineBackend):
    """
    Фейковый движок: пишет заданный вывод по output_stem.

    Attributes:
        outputs: вывод для каждого вызова по порядку (hOCR или текст)
        failures: {номер_вызова: исключение}
        requests: все полученные запросы
        seen_inputs: существовал ли входной файл в момент вызова
    """

    name = "fake"

    def __init__(self, outputs: list[str], failures: Optional[dict[int, Exception]] = None):
        self.outputs = outputs
        self.failures = failures or {}
        self.requests: list[EngineRequest] = []
        self.seen_inputs: list[bool] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def invoke(self, request: EngineRequest) -> list[Path]:
        self.requests.append(request)
        self.seen_inputs.append(request.image_path.exists())
        call = len(self.requests)

        if call in self.failures:
            raise self.failures[call]

        content = self.outputs[(call - 1) % len(self.outputs)]
        request.output_path.write_text(content, encoding="utf-8")
        return [request.output_path]


@pytest.fixture
def tessdata_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "tessdata"
    directory.mkdir()
    for lang in ("eng", "rus"):
        (directory / f"{lang}.traineddata").write_bytes(b"")
    return directory


@pytest.fixture
def run_dir(tmp_path: Path) -> Path:
    """Корень для временных каталогов запусков (проверяем, что он пуст)."""
    directory = tmp_path / "runs"
    directory.mkdir()
    return directory


@pytest.fixture
def rgb_png(tmp_path: Path) -> Path:
    path = tmp_path / "page.png"
    Image.new("RGB", (120, 60), (200, 30, 30)).save(path, format="PNG")
    return path


@pytest.fixture
def gray_png(tmp_path: Path) -> Path:
    path = tmp_path / "gray.png"
    Image.new("L", (120, 60), 180).save(path, format="PNG")
    return path


@pytest.fixture
def jpeg_without_extension(tmp_path: Path) -> Path:
    path = tmp_path / "numbers_01"
    Image.new("RGB", (80, 40), (255, 255, 255)).save(path, format="JPEG")
    return path


@pytest.fixture
def multi_page_tiff(tmp_path: Path) -> Path:
    path = tmp_path / "pages.tiff"
    frames = [Image.new("L", (100, 50), shade) for shade in (40, 120, 220)]
    frames[0].save(path, format="TIFF", save_all=True, append_images=frames[1:])
    return path


@pytest.fixture
def make_script(tmp_path: Path):
    """Создаёт исполняемый shell-скрипт, заменяющий tesseract."""

    def _make(name: str, body: str) -> Path:
        path = tmp_path / name
        path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def hocr():
    """Генератор hOCR: hocr(pages) -> str."""
    return build_hocr


@pytest.fixture
def fake_backend():
    """Класс фейкового движка: fake_backend(outputs, failures=None)."""
    return FakeBackend


@pytest.fixture
def engine_request(tmp_path: Path):
    """Фабрика EngineRequest с разумными значениями по умолчанию."""

    def _make(**overrides) -> EngineRequest:
        values = dict(
            image_path=tmp_path / "in put.png",
            output_stem=tmp_path / "out" / "page-1",
            languages=("eng",),
            resource_directory=tmp_path / "tess data",
            output_format=OutputFormat.POSITIONAL,
        )
        values.update(overrides)
        return EngineRequest(**values)

    return _make
