"""Document composer hook.

The batch pipeline and the single-invoice endpoint both go through
``get_composer``.  Tests and alternative profiles install their own
implementation with ``configure_composer``.
"""
from __future__ import annotations

from typing import Protocol

from facturx_batch.core.schema import InvoiceMetadataRecord

from .facturx import FacturXComposer


class DocumentComposer(Protocol):
    """Contract for turning invoice fields and a source PDF into a Factur-X PDF."""

    def compose(self, record: InvoiceMetadataRecord, pdf_bytes: bytes) -> bytes:
        """Return the composed PDF, raising ``CompositionError`` on bad input."""


_composer: DocumentComposer = FacturXComposer()


def configure_composer(composer: DocumentComposer) -> None:
    """Install the composer used by the pipeline."""

    global _composer
    _composer = composer


def get_composer() -> DocumentComposer:
    return _composer


def reset_composer() -> None:
    configure_composer(FacturXComposer())
