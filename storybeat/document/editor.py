"""The single mutation entry point for a document."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from storybeat.document import schema
from storybeat.document.model import Document, Transaction

logger = logging.getLogger(__name__)

TransactionListener = Callable[[Transaction, "Editor"], None]


class StaleTransactionError(Exception):
    """A transaction was built against a document that is no longer current."""


class Editor:
    """Holds the current document and applies transactions to it.

    Listeners run synchronously after every dispatch, in registration order,
    and see the transaction (with its position maps) and the new state.
    """

    def __init__(self, doc: Optional[Document] = None):
        self.doc = doc or Document()
        self._listeners: list[TransactionListener] = []

    @classmethod
    def from_html(cls, markup: Optional[str]) -> Editor:
        return cls(schema.from_html(markup))

    def to_html(self) -> str:
        return schema.to_html(self.doc)

    def transaction(self, origin: str = "user") -> Transaction:
        return Transaction(self.doc, origin)

    def dispatch(self, tr: Transaction) -> None:
        if tr.before is not self.doc:
            raise StaleTransactionError("Transaction was built against an older document")
        self.doc = tr.doc
        for listener in list(self._listeners):
            listener(tr, self)

    def load(self, doc: Document, origin: str = "load") -> None:
        """Replace the whole document, as one transaction."""
        tr = self.transaction(origin)
        tr.delete_blocks(0, tr.doc.content_size)
        # delete_blocks leaves a placeholder paragraph; swap in the new blocks
        tr.insert_blocks(0, [b.copy() for b in doc.blocks])
        tr.delete_blocks(tr.doc.content_size - 2, tr.doc.content_size)
        self.dispatch(tr)

    def add_listener(self, listener: TransactionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TransactionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
