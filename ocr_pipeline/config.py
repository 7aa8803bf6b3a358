"""
Конфигурация OCR Pipeline.

Все значения читаются из .env файла (или переменных окружения).
Параметры конкретного запуска передаются отдельно через PipelineConfig,
здесь только окружение: где лежит Tesseract, какой бэкенд использовать,
куда складывать временные файлы.

Единый префикс: OCR_
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки OCR Pipeline.

    Читает переменные с префиксом OCR_ из .env файла.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    port: int = 8000

    # --- Tesseract ---
    # Путь к исполняемому файлу (по умолчанию ищется в PATH)
    tesseract_cmd: str = "tesseract"
    # Каталог с *.traineddata
    tessdata_dir: Path = Path("/usr/share/tesseract-ocr/5/tessdata")
    # Язык, если в запросе не указан ни один
    default_language: str = "eng"
    # executable: запуск процесса напрямую, library: через pytesseract
    engine_backend: Literal["executable", "library"] = "executable"
    # Лимит на один вызов движка (3 часа)
    engine_timeout_seconds: float = 3 * 60 * 60
    # --psm по умолчанию, если в запросе не указан
    default_psm: Optional[int] = None

    # --- Временные файлы ---
    # None -> системный каталог tempfile
    temp_dir: Optional[Path] = None

    # --- API: лимиты ---
    max_file_size_mb: int = 50


# Глобальный экземпляр настроек
settings = Settings()
