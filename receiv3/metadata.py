"""
ERC-721 metadata document for an invoice token (what tokenURI points at).

Built from the on-chain Invoice so the document never disagrees with the
contract. Amounts stay in contract base units.
"""

from typing import Any

from receiv3.models import Invoice


def _attr(trait: str, value: Any, display_type: str = "") -> dict:
    attr = {"trait_type": trait, "value": value}
    if display_type:
        attr["display_type"] = display_type
    return attr


def build_invoice_metadata(invoice: Invoice, token_id: int, buyer_name: str = "", currency: str = "USD") -> dict:
    buyer = buyer_name or invoice.buyer_country or "buyer"
    issued = invoice.issue_datetime
    due = invoice.due_datetime

    attributes = [
        _attr("Invoice Number", invoice.invoice_number),
        _attr("Amount", invoice.amount, "number"),
        _attr("Currency", currency),
        _attr("Issue Date", issued.strftime("%Y-%m-%d") if issued else "", "date"),
        _attr("Due Date", due.strftime("%Y-%m-%d") if due else "", "date"),
    ]
    if buyer_name:
        attributes.append(_attr("Buyer", buyer_name))
    attributes += [
        _attr("Buyer Country", invoice.buyer_country),
        _attr("Interest Rate", invoice.interest_rate / 100, "number"),
        _attr("Advance Amount", invoice.advance_amount, "number"),
        _attr("Shipment Verified", "Yes" if invoice.shipment_verified else "No"),
        _attr("Status", invoice.status_name),
    ]

    return {
        "name": f"Invoice #{invoice.invoice_number}",
        "description": f"NFT representing invoice {invoice.invoice_number} from exporter to {buyer}",
        "attributes": attributes,
        "properties": {
            "token_id": token_id,
            "exporter": invoice.exporter,
            "document_hash": invoice.document_hash,
        },
    }
