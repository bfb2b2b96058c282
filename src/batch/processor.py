"""
Strategy interface plugged into the batch controller.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from database import AttachmentFilter, AttachmentRecord, DatabaseManager

from .models import ItemResult


class ItemProcessor(ABC):
    """Supplies the item source and per-item work for one sweep kind.

    The controller owns pagination, counters and state; a processor only
    decides which attachments belong to the sweep and what to do with each.
    """

    def __init__(self, db: DatabaseManager, logger: Optional[logging.Logger] = None) -> None:
        self.db = db
        self.logger = logger or logging.getLogger("media_offload")

    def default_options(self) -> dict[str, Any]:
        return {}

    def item_filter(self, options: dict[str, Any]) -> AttachmentFilter:
        return AttachmentFilter.ALL

    def count(self, options: dict[str, Any]) -> int:
        return self.db.count_attachments(self.item_filter(options))

    def fetch(self, options: dict[str, Any], after_id: int, limit: int) -> list[AttachmentRecord]:
        return self.db.page_attachments(self.item_filter(options), after_id, limit)

    def get_item(self, item_id: int) -> Optional[AttachmentRecord]:
        return self.db.get_attachment(item_id)

    def on_start(self, options: dict[str, Any]) -> None:
        """Called once when a fresh sweep starts."""

    def before_batch(self, options: dict[str, Any]) -> None:
        """Called before each batch; errors raised here abort the batch untouched."""

    def on_stop(self) -> None:
        """Called when the sweep is stopped; drop any per-run caches."""

    @abstractmethod
    def process(self, item: AttachmentRecord, options: dict[str, Any]) -> ItemResult:
        """Handle one item. Raise ItemProcessingError or return ItemResult.fail on failure."""
