"""
Вызов движка распознавания Tesseract.

Единый интерфейс EngineBackend.invoke(request) -> [пути к выводу]
и два варианта, выбираемых при конфигурации:
    - TesseractExecutableBackend: запуск tesseract через subprocess
    - TesseractLibraryBackend: вызов через pytesseract

Оркестратор и парсер не знают, какой вариант активен.

Порядок аргументов командной строки важен:
    исполняемый файл -> --tessdata-dir -> вход -> stem вывода -> --psm
    -> --user-words/--oem 0 -> -l -> номер страницы -> hocr
"""

import logging
import os
import shlex
import subprocess
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import pytesseract

from ocr_pipeline.errors import (
    EngineExecutionFailed,
    EngineTimeout,
    EngineUnavailable,
    PipelineCancelled,
)
from ocr_pipeline.schemas import EngineRequest, OutputFormat, PipelineStage

logger = logging.getLogger(__name__)

# Как часто проверяем отмену, пока ждём процесс
POLL_INTERVAL_SECONDS = 0.2
# Сколько stderr сохраняем в ошибке
MAX_DIAGNOSTICS_CHARS = 4000


def is_windows() -> bool:
    return os.name == "nt"


class EngineBackend(ABC):
    """Движок распознавания: пишет вывод по request.output_stem."""

    name: str = "abstract"

    @abstractmethod
    def invoke(self, request: EngineRequest) -> list[Path]:
        """
        Выполняет распознавание одного изображения (одной страницы).

        Returns:
            list[Path]: файлы, созданные движком

        Raises:
            EngineUnavailable, EngineTimeout, EngineExecutionFailed,
            PipelineCancelled
        """
        raise NotImplementedError


# =============================================================================
# Исполняемый файл
# =============================================================================


def _quote(value: str, windows: bool) -> str:
    """Оборачивает путь в кавычки для командной строки Windows."""
    if windows:
        return f'"{value}"'
    return value


def build_command(
    executable: str,
    request: EngineRequest,
    windows: bool = False,
) -> list[str]:
    """
    Собирает аргументы командной строки tesseract.

    Args:
        executable: путь к tesseract
        request: запрос
        windows: квотировать пути для Windows

    Returns:
        list[str]: аргументы в порядке, который ожидает tesseract

    Raises:
        EngineUnavailable: путь к исполняемому файлу не задан
    """
    if not executable:
        raise EngineUnavailable(
            "Не задан путь к исполняемому файлу tesseract",
            stage=PipelineStage.PROCESSING_PAGE,
        )

    command = [_quote(executable, windows)]

    # Каталог с traineddata
    command += ["--tessdata-dir", _quote(str(request.resource_directory), windows)]

    # Вход и stem вывода (tesseract сам допишет расширение)
    command.append(_quote(str(request.image_path), windows))
    command.append(_quote(str(request.output_stem), windows))

    if request.page_segmentation_mode is not None:
        command += ["--psm", str(request.page_segmentation_mode)]

    # user-words работают только в режиме legacy движка
    if request.lexicon_path is not None:
        command += ["--user-words", _quote(str(request.lexicon_path), windows)]
        command += ["--oem", "0"]

    # Без -l tesseract использует свой язык по умолчанию
    if request.languages:
        command += ["-l", "+".join(request.languages)]

    # Нативная адресация кадра многостраничного TIFF
    if request.page_index is not None:
        command += ["-c", f"tessedit_page_number={request.page_index}"]

    if request.output_format == OutputFormat.POSITIONAL:
        command += ["-c", "tessedit_create_hocr=1"]

    return command


class TesseractExecutableBackend(EngineBackend):
    """
    Запуск tesseract как отдельного процесса.

    Процесс ждём с ограничением по времени; по таймауту или отмене
    процесс убивается до того, как оркестратор удалит временные файлы.
    """

    name = "executable"

    def __init__(self, tesseract_cmd: str = "tesseract", windows: Optional[bool] = None):
        self.tesseract_cmd = tesseract_cmd
        self.windows = is_windows() if windows is None else windows

    def invoke(self, request: EngineRequest) -> list[Path]:
        command = build_command(self.tesseract_cmd, request, windows=self.windows)
        # На Windows передаём одну строку, пути уже в кавычках
        args = " ".join(command) if self.windows else command

        logger.info(f"   Tesseract: {' '.join(command)}")

        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            # ENOENT, EACCES, ENOEXEC: запустить tesseract невозможно
            raise EngineUnavailable(
                f"Не удалось запустить {self.tesseract_cmd}: {e}",
                stage=PipelineStage.PROCESSING_PAGE,
            ) from e

        stdout, stderr = self._wait(process, request)

        if stdout:
            logger.debug(stdout)
        if stderr:
            logger.debug(stderr)

        if process.returncode != 0:
            raise EngineExecutionFailed(
                process.returncode,
                (stderr or "")[-MAX_DIAGNOSTICS_CHARS:],
                stage=PipelineStage.PROCESSING_PAGE,
            )

        return [request.output_path]

    def _wait(
        self,
        process: subprocess.Popen,
        request: EngineRequest,
    ) -> tuple[str, str]:
        """Ждёт завершения процесса, проверяя таймаут и отмену."""
        deadline = time.monotonic() + request.timeout_seconds

        while True:
            if request.cancel_event is not None and request.cancel_event.is_set():
                self._kill(process)
                raise PipelineCancelled(
                    "Запуск отменён во время работы tesseract",
                    stage=PipelineStage.PROCESSING_PAGE,
                )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._kill(process)
                raise EngineTimeout(
                    request.timeout_seconds, stage=PipelineStage.PROCESSING_PAGE
                )

            try:
                return process.communicate(timeout=min(POLL_INTERVAL_SECONDS, remaining))
            except subprocess.TimeoutExpired:
                continue

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        process.kill()
        # Дожидаемся выхода, чтобы файлы процесса были освобождены
        process.communicate()
        logger.warning(f"   Процесс tesseract (pid={process.pid}) остановлен")


# =============================================================================
# pytesseract
# =============================================================================


def _quote_config_path(value: str, windows: bool) -> str:
    """pytesseract разбирает config через shlex, пути квотируем под платформу."""
    if windows:
        return f'"{value}"'
    return shlex.quote(value)


def build_config(request: EngineRequest, windows: bool = False) -> str:
    """
    Собирает строку config для pytesseract.

    Язык и формат вывода pytesseract передаёт сам, остальное — здесь
    в том же порядке, что и для исполняемого файла.
    """
    parts = ["--tessdata-dir", _quote_config_path(str(request.resource_directory), windows)]

    if request.page_segmentation_mode is not None:
        parts += ["--psm", str(request.page_segmentation_mode)]

    if request.lexicon_path is not None:
        parts += ["--user-words", _quote_config_path(str(request.lexicon_path), windows)]
        parts += ["--oem", "0"]

    if request.page_index is not None:
        parts += ["-c", f"tessedit_page_number={request.page_index}"]

    return " ".join(parts)


class TesseractLibraryBackend(EngineBackend):
    """
    Вызов через pytesseract.

    Результат (текст или hOCR) записывается в request.output_path,
    чтобы парсер работал одинаково для обоих вариантов.
    """

    name = "library"

    def __init__(self, tesseract_cmd: str = "tesseract", windows: Optional[bool] = None):
        self.windows = is_windows() if windows is None else windows
        # pytesseract хранит путь в модуле, задаём один раз при конфигурации
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def invoke(self, request: EngineRequest) -> list[Path]:
        if request.cancel_event is not None and request.cancel_event.is_set():
            raise PipelineCancelled(
                "Запуск отменён до вызова tesseract",
                stage=PipelineStage.PROCESSING_PAGE,
            )

        lang = "+".join(request.languages) or request.default_language
        config = build_config(request, windows=self.windows)
        output_path = request.output_path

        logger.info(f"   pytesseract: lang={lang}, config={config}")

        try:
            if request.output_format == OutputFormat.POSITIONAL:
                data = pytesseract.image_to_pdf_or_hocr(
                    str(request.image_path),
                    lang=lang,
                    config=config,
                    extension="hocr",
                    timeout=request.timeout_seconds,
                )
                output_path.write_bytes(data)
            else:
                text = pytesseract.image_to_string(
                    str(request.image_path),
                    lang=lang,
                    config=config,
                    timeout=request.timeout_seconds,
                )
                output_path.write_text(text, encoding="utf-8")
        except pytesseract.TesseractNotFoundError as e:
            raise EngineUnavailable(
                f"pytesseract не нашёл tesseract: {e}",
                stage=PipelineStage.PROCESSING_PAGE,
            ) from e
        except pytesseract.TesseractError as e:
            raise EngineExecutionFailed(
                e.status,
                str(e.message)[-MAX_DIAGNOSTICS_CHARS:],
                stage=PipelineStage.PROCESSING_PAGE,
            ) from e
        except RuntimeError as e:
            # pytesseract сообщает о таймауте через RuntimeError
            if "timeout" in str(e).lower():
                raise EngineTimeout(
                    request.timeout_seconds, stage=PipelineStage.PROCESSING_PAGE
                ) from e
            raise

        return [output_path]


def create_engine_backend(kind: str, tesseract_cmd: str) -> EngineBackend:
    """
    Создаёт бэкенд по имени из настроек.

    Args:
        kind: "executable" или "library"
        tesseract_cmd: путь к tesseract

    Returns:
        EngineBackend: выбранный вариант
    """
    if kind == TesseractExecutableBackend.name:
        return TesseractExecutableBackend(tesseract_cmd)
    if kind == TesseractLibraryBackend.name:
        return TesseractLibraryBackend(tesseract_cmd)
    raise ValueError(f"Неизвестный бэкенд OCR: {kind}")
