"""
Пространство временных файлов одного запуска.

Каждый запуск получает собственный каталог (tempfile.mkdtemp) и
уникальные имена файлов (uuid4), поэтому параллельные запуски не
пересекаются. Очистка идемпотентна и не выбрасывает исключений:
ошибки удаления логируются как TemporaryResourceCleanupFailed.
"""

import logging
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Optional

from ocr_pipeline.errors import TemporaryResourceCleanupFailed
from ocr_pipeline.schemas import PipelineStage

logger = logging.getLogger(__name__)


class RunWorkspace:
    """
    Временные артефакты запуска: препроцессинг, вывод движка, user-words.

    Attributes:
        root: каталог запуска
        run_id: уникальный идентификатор запуска
        cleanup_errors: ошибки, накопленные при удалении
    """

    def __init__(self, base_dir: Optional[Path] = None):
        self.run_id = uuid.uuid4().hex
        if base_dir is not None:
            Path(base_dir).mkdir(parents=True, exist_ok=True)
        self.root = Path(
            tempfile.mkdtemp(prefix=f"ocr-run-{self.run_id[:8]}-", dir=base_dir)
        )
        self._artifacts: list[Path] = []
        self.cleanup_errors: list[TemporaryResourceCleanupFailed] = []
        self._closed = False

    def new_artifact(self, label: str, suffix: str) -> Path:
        """Регистрирует новый файл с уникальным именем и возвращает путь."""
        path = self.root / f"{label}-{uuid.uuid4().hex}{suffix}"
        self._artifacts.append(path)
        return path

    def new_output_stem(self, label: str, extensions: tuple[str, ...]) -> Path:
        """
        Регистрирует путь без расширения для вывода движка.

        Tesseract сам дописывает расширение к stem, поэтому
        регистрируются все возможные варианты stem + ext.
        """
        stem = self.root / f"{label}-{uuid.uuid4().hex}"
        for ext in extensions:
            self._artifacts.append(stem.with_name(stem.name + ext))
        return stem

    def stage_lexicon(self, words: list[str]) -> Path:
        """Записывает user-words во временный файл (одно слово на строку)."""
        path = self.new_artifact("lexicon", ".user-words")
        path.write_text("".join(f"{word}\n" for word in words), encoding="utf-8")
        return path

    def release(self, paths: list[Path]) -> None:
        """Удаляет артефакты досрочно (например, после разбора страницы)."""
        for path in paths:
            self._remove(path)

    def cleanup(self) -> list[TemporaryResourceCleanupFailed]:
        """
        Удаляет все артефакты и каталог запуска.

        Идемпотентна: повторный вызов ничего не делает.

        Returns:
            list: ошибки удаления (уже залогированы)
        """
        if self._closed:
            return self.cleanup_errors

        for path in self._artifacts:
            self._remove(path)

        # Всё, что движок мог создать помимо ожидаемых файлов
        if self.root.exists():
            try:
                shutil.rmtree(self.root)
            except OSError as e:
                self._record_failure(self.root, e)

        self._closed = True
        return self.cleanup_errors

    def _remove(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            self._record_failure(path, e)

    def _record_failure(self, path: Path, error: OSError) -> None:
        failure = TemporaryResourceCleanupFailed(
            path, str(error), stage=PipelineStage.CLEANING_UP
        )
        self.cleanup_errors.append(failure)
        logger.warning(str(failure))

    def __enter__(self) -> "RunWorkspace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
