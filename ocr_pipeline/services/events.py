"""
События использования OCR.

Реестр обработанных документов живёт у вызывающего кода и
передаётся в пайплайн через RunContext. Внутри пайплайна
глобального состояния нет.

Особенности:
    - mark_seen(id) возвращает True только при первом вызове для id
    - потокобезопасен (threading.Lock)
    - хранение в памяти, без персистентности
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Optional

from ocr_pipeline.schemas import DocumentKind, RunContext

logger = logging.getLogger(__name__)

EVENT_IMAGE_OCR = "image_ocr"
EVENT_IMAGE_TO_PDF = "image_to_pdf"
EVENT_IMAGE_TO_PDFA = "image_to_pdfa"


class SeenDocumentsRegistry:
    """
    Потокобезопасный реестр документов, для которых событие уже отправлено.

    Пример:
        registry = SeenDocumentsRegistry()
        registry.mark_seen(doc_id)  # True
        registry.mark_seen(doc_id)  # False
    """

    def __init__(self):
        self._lock = threading.Lock()
        # {document_id: время первой отметки}
        self._seen: dict[uuid.UUID, datetime] = {}

    def mark_seen(self, document_id: uuid.UUID) -> bool:
        """
        Отмечает документ.

        Returns:
            bool: True, если документ отмечен впервые
        """
        with self._lock:
            if document_id in self._seen:
                return False
            self._seen[document_id] = datetime.now()
            return True

    def get_stats(self) -> dict:
        """
        Возвращает статистику реестра.

        Returns:
            dict: {documents_count, oldest_doc, newest_doc}
        """
        with self._lock:
            items = sorted(self._seen.items(), key=lambda item: item[1])

        if not items:
            return {"documents_count": 0, "oldest_doc": None, "newest_doc": None}

        return {
            "documents_count": len(items),
            "oldest_doc": {
                "doc_id": str(items[0][0]),
                "seen_at": items[0][1].isoformat(),
            },
            "newest_doc": {
                "doc_id": str(items[-1][0]),
                "seen_at": items[-1][1].isoformat(),
            },
        }


def _event_name(context: RunContext) -> str:
    if context.document_kind == DocumentKind.PDFA:
        return EVENT_IMAGE_TO_PDFA
    if context.document_kind == DocumentKind.PDF:
        return EVENT_IMAGE_TO_PDF
    return EVENT_IMAGE_OCR


def _log_event(event: str, context: RunContext) -> None:
    logger.info(f"Событие OCR: {event}, doc_id={context.document_id}")


def emit_usage_event(context: Optional[RunContext]) -> Optional[str]:
    """
    Отправляет событие использования движка.

    Без document_id событие отправляется при каждом вызове движка.
    С document_id и реестром — только один раз на документ.

    Args:
        context: контекст запуска

    Returns:
        str | None: имя отправленного события или None, если пропущено
    """
    if context is None:
        return None

    if context.document_id is None:
        # Отдельное изображение без итогового документа
        event = EVENT_IMAGE_OCR
    elif context.event_registry is not None and not context.event_registry.mark_seen(
        context.document_id
    ):
        return None
    else:
        event = _event_name(context)

    sink = context.event_sink or _log_event
    sink(event, context)
    return event
