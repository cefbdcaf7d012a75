"""Factur-X MINIMUM profile composer.

Builds the Cross Industry Invoice XML for one invoice and embeds it in the
source PDF as ``factur-x.xml``, flagged as the document's associated data
file (``/AF`` in the catalog, ``/AFRelationship /Data`` on the file spec).
Full PDF/A-3 conformance depends on the source PDF and is not checked here.
"""
from __future__ import annotations

import io
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterator
from xml.etree import ElementTree as ET

from pypdf import PdfReader, PdfWriter
from pypdf.generic import ArrayObject, DictionaryObject, NameObject, PdfObject

from facturx_batch.core.errors import CompositionError
from facturx_batch.core.schema import InvoiceMetadataRecord

logger = logging.getLogger(__name__)

ATTACHMENT_NAME = "factur-x.xml"
GUIDELINE_MINIMUM = "urn:factur-x.eu:1p0:minimum"
BUSINESS_PROCESS = "A1"
INVOICE_TYPE_CODE = "380"

NAMESPACES = {
    "rsm": "urn:un:unece:uncefact:data:standard:CrossIndustryInvoice:100",
    "ram": "urn:un:unece:uncefact:data:standard:ReusableAggregateBusinessInformationEntity:100",
    "udt": "urn:un:unece:uncefact:data:standard:UnqualifiedDataType:100",
    "qdt": "urn:un:unece:uncefact:data:standard:QualifiedDataType:100",
}

for _prefix, _uri in NAMESPACES.items():
    ET.register_namespace(_prefix, _uri)

REQUIRED_FIELDS = (
    "invoice_number",
    "invoice_date",
    "seller_name",
    "seller_siret",
    "buyer_name",
    "total_ht",
    "total_tva",
    "total_ttc",
)

# Accepted input layouts for dates; the XML always carries format 102.
DATE_FORMATS = ("%Y-%m-%d", "%Y%m%d", "%d/%m/%Y")

_CENTS = Decimal("0.01")


def _tag(qualified: str) -> str:
    prefix, local = qualified.split(":", 1)
    return f"{{{NAMESPACES[prefix]}}}{local}"


def _sub(parent: ET.Element, qualified: str, text: str | None = None, **attrib: str) -> ET.Element:
    element = ET.SubElement(parent, _tag(qualified), attrib)
    if text is not None:
        element.text = text
    return element


def format_date(value: str, field: str) -> str:
    """Return ``value`` as ``YYYYMMDD``."""

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).strftime("%Y%m%d")
        except ValueError:
            continue
    raise CompositionError(f"Invalid date for {field}: {value!r}")


def format_amount(value: str, field: str) -> str:
    """Return ``value`` with exactly two decimals; a decimal comma is accepted."""

    try:
        amount = Decimal(value.strip().replace(" ", "").replace(",", "."))
    except InvalidOperation:
        raise CompositionError(f"Invalid amount for {field}: {value!r}") from None
    if not amount.is_finite():
        raise CompositionError(f"Invalid amount for {field}: {value!r}")
    return str(amount.quantize(_CENTS, rounding=ROUND_HALF_UP))


def missing_fields(record: InvoiceMetadataRecord) -> list[str]:
    return [name for name in REQUIRED_FIELDS if not getattr(record, name)]


def _append_party(
    agreement: ET.Element,
    qualified: str,
    *,
    name: str,
    siret: str | None,
    vat_number: str | None,
    street: str | None,
    zip_code: str | None,
    city: str | None,
    country_code: str,
) -> None:
    party = _sub(agreement, qualified)
    _sub(party, "ram:Name", name)
    if siret:
        legal = _sub(party, "ram:SpecifiedLegalOrganization")
        _sub(legal, "ram:ID", siret, schemeID="0002")

    address = _sub(party, "ram:PostalTradeAddress")
    if zip_code:
        _sub(address, "ram:PostcodeCode", zip_code)
    if street:
        _sub(address, "ram:LineOne", street)
    if city:
        _sub(address, "ram:CityName", city)
    _sub(address, "ram:CountryID", (country_code or "FR").upper())

    if vat_number:
        registration = _sub(party, "ram:SpecifiedTaxRegistration")
        _sub(registration, "ram:ID", vat_number, schemeID="VA")


def build_cii_xml(record: InvoiceMetadataRecord) -> bytes:
    """Render the MINIMUM profile CII document for ``record``."""

    missing = missing_fields(record)
    if missing:
        raise CompositionError(f"Missing required field(s): {', '.join(missing)}")

    issue_date = format_date(record.invoice_date, "invoice_date")
    total_ht = format_amount(record.total_ht, "total_ht")
    total_tva = format_amount(record.total_tva, "total_tva")
    total_ttc = format_amount(record.total_ttc, "total_ttc")
    currency = (record.currency_code or "EUR").upper()

    root = ET.Element(_tag("rsm:CrossIndustryInvoice"))

    context = _sub(root, "rsm:ExchangedDocumentContext")
    process = _sub(context, "ram:BusinessProcessSpecifiedDocumentContextParameter")
    _sub(process, "ram:ID", BUSINESS_PROCESS)
    guideline = _sub(context, "ram:GuidelineSpecifiedDocumentContextParameter")
    _sub(guideline, "ram:ID", GUIDELINE_MINIMUM)

    document = _sub(root, "rsm:ExchangedDocument")
    _sub(document, "ram:ID", record.invoice_number)
    _sub(document, "ram:TypeCode", INVOICE_TYPE_CODE)
    issued = _sub(document, "ram:IssueDateTime")
    _sub(issued, "udt:DateTimeString", issue_date, format="102")

    transaction = _sub(root, "rsm:SupplyChainTradeTransaction")
    agreement = _sub(transaction, "ram:ApplicableHeaderTradeAgreement")
    _append_party(
        agreement,
        "ram:SellerTradeParty",
        name=record.seller_name,
        siret=record.seller_siret,
        vat_number=record.seller_vat_number,
        street=record.seller_street,
        zip_code=record.seller_zip_code,
        city=record.seller_city,
        country_code=record.seller_country_code,
    )
    _append_party(
        agreement,
        "ram:BuyerTradeParty",
        name=record.buyer_name,
        siret=record.buyer_siret,
        vat_number=record.buyer_vat_number,
        street=record.buyer_street,
        zip_code=record.buyer_zip_code,
        city=record.buyer_city,
        country_code=record.buyer_country_code,
    )

    # Mandatory even when empty.
    _sub(transaction, "ram:ApplicableHeaderTradeDelivery")

    settlement = _sub(transaction, "ram:ApplicableHeaderTradeSettlement")
    _sub(settlement, "ram:InvoiceCurrencyCode", currency)
    if record.payment_terms or record.payment_due_date:
        terms = _sub(settlement, "ram:SpecifiedTradePaymentTerms")
        if record.payment_terms:
            _sub(terms, "ram:Description", record.payment_terms)
        if record.payment_due_date:
            due = _sub(terms, "ram:DueDateDateTime")
            _sub(
                due,
                "udt:DateTimeString",
                format_date(record.payment_due_date, "payment_due_date"),
                format="102",
            )

    totals = _sub(settlement, "ram:SpecifiedTradeSettlementHeaderMonetarySummation")
    _sub(totals, "ram:TaxBasisTotalAmount", total_ht)
    _sub(totals, "ram:TaxTotalAmount", total_tva, currencyID=currency)
    _sub(totals, "ram:GrandTotalAmount", total_ttc)
    _sub(totals, "ram:DuePayableAmount", total_ttc)

    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


# ----------------------------------------------------------------------
# PDF embedding
# ----------------------------------------------------------------------
def _iter_name_tree(node: DictionaryObject) -> Iterator[tuple[str, PdfObject]]:
    """Yield ``(name, raw value)`` pairs of a PDF name tree."""

    names = node.get("/Names")
    if names is not None:
        names = names.get_object()
        for index in range(0, len(names) - 1, 2):
            yield str(names[index].get_object()), names[index + 1]
    kids = node.get("/Kids")
    if kids is not None:
        for kid in kids.get_object():
            yield from _iter_name_tree(kid.get_object())


def _flag_associated_file(writer: PdfWriter) -> bool:
    catalog = writer.root_object
    names = catalog.get("/Names")
    if names is None:
        return False
    embedded = names.get_object().get("/EmbeddedFiles")
    if embedded is None:
        return False

    for name, raw_spec in _iter_name_tree(embedded.get_object()):
        if name != ATTACHMENT_NAME:
            continue
        file_spec = raw_spec.get_object()
        file_spec[NameObject("/AFRelationship")] = NameObject("/Data")
        catalog[NameObject("/AF")] = ArrayObject([raw_spec])
        return True
    return False


def embed_xml(pdf_bytes: bytes, xml: bytes) -> bytes:
    """Return a copy of ``pdf_bytes`` carrying ``xml`` as its Factur-X attachment."""

    try:
        writer = PdfWriter(clone_from=PdfReader(io.BytesIO(pdf_bytes)))
    except Exception as exc:  # pypdf raises assorted errors on malformed input
        raise CompositionError(f"Unreadable PDF: {exc}") from exc

    writer.add_attachment(ATTACHMENT_NAME, xml)
    if not _flag_associated_file(writer):
        raise CompositionError("Embedded Factur-X attachment could not be located")

    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def extract_facturx_xml(pdf_bytes: bytes) -> bytes | None:
    """Return the embedded ``factur-x.xml`` payload, if any."""

    reader = PdfReader(io.BytesIO(pdf_bytes))
    payloads = reader.attachments.get(ATTACHMENT_NAME)
    if not payloads:
        return None
    return payloads[0]


class FacturXComposer:
    """Default composer: MINIMUM profile XML attached to the source PDF."""

    def compose(self, record: InvoiceMetadataRecord, pdf_bytes: bytes) -> bytes:
        xml = build_cii_xml(record)
        result = embed_xml(pdf_bytes, xml)
        logger.debug("Composed Factur-X document for invoice %s", record.invoice_number)
        return result
