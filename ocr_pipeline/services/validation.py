"""
Проверка языковых ресурсов перед запуском движка.

Для каждого запрошенного языка (или для языка по умолчанию, если
список пуст) в каталоге ресурсов должен лежать <язык>.traineddata.
"""

import logging
from pathlib import Path

from ocr_pipeline.errors import MissingLanguageResource
from ocr_pipeline.schemas import PipelineStage

logger = logging.getLogger(__name__)

RESOURCE_SUFFIX = ".traineddata"


def validate_languages(
    languages: list[str],
    resource_directory: Path,
    default_language: str,
) -> None:
    """
    Проверяет наличие traineddata для всех языков.

    Args:
        languages: запрошенные языки
        resource_directory: каталог с traineddata
        default_language: язык, проверяемый при пустом списке

    Raises:
        MissingLanguageResource: первый язык, для которого нет файла
    """
    required = languages or [default_language]

    for lang in required:
        resource = Path(resource_directory) / f"{lang}{RESOURCE_SUFFIX}"
        if not resource.is_file():
            raise MissingLanguageResource(
                lang, Path(resource_directory), stage=PipelineStage.VALIDATING
            )

    logger.info(f"   Языки проверены: {'+'.join(required)} в {resource_directory}")
