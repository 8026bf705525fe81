import asyncio
import io

import pandas as pd
import pytest

from core.exceptions import BadRequestError, BulkImportError, ValidationError
from models.order import Order
from services.bulk_service import BulkOrderService, EXPORT_HEADERS, row_to_payload


@pytest.fixture
def bulk(db, hub):
    return BulkOrderService(db, hub)


def sheet_bytes(rows):
    buffer = io.BytesIO()
    pd.DataFrame(rows).to_excel(buffer, index=False)
    return buffer.getvalue()


def import_row(**overrides):
    row = {
        "Customer Name": "Sunrise Academy",
        "Contact Person Name": "A. Verma",
        "Customer Email": "office@sunrise.example",
        "City": "Lucknow",
        "Pin Code": 226001,
        "Order Type": "B2B",
        "Payment Terms": "Credit",
        "Dispatch From": "Lucknow",
        "Product Type": "IFPD",
        "Quantity": 2,
        "Unit Price": 1000,
        "GST": 18,
        "Model Nos": "PM-65",
        "Brand": "Promark",
        "Freight Charges": 100,
        "Same Address": "Yes",
    }
    row.update(overrides)
    return row


def exported_frame(bulk, actor):
    _, content = bulk.export_orders(actor)
    return pd.read_excel(io.BytesIO(content), sheet_name="Orders", dtype=object)


class TestImport:
    def test_row_maps_to_single_product(self):
        payload = row_to_payload(import_row())
        assert payload["company"] == "Promark"
        assert payload["sameAddress"] is True
        assert payload["pinCode"] == "226001"
        [product] = payload["products"]
        assert product["size"] == "N/A"
        assert product["modelNos"] == ["PM-65"]

    def test_imports_and_announces(self, bulk, db, hub, users):
        content = sheet_bytes([import_row(), import_row(**{"Customer Name": "Hill School"})])
        orders = asyncio.run(bulk.import_orders(content, "orders.xlsx", users["member"]))

        assert len(orders) == 2
        assert orders[0]["total"] == 2460.0
        assert orders[0]["products"][0]["warranty"] == "3 Years"
        assert orders[0]["orderId"] != orders[1]["orderId"]
        assert len(hub.events("newOrder")) == 2
        assert db.query(Order).count() == 2

    def test_one_bad_row_rejects_the_file(self, bulk, db, users):
        content = sheet_bytes([import_row(), import_row(**{"Quantity": 0})])
        with pytest.raises(BulkImportError) as exc:
            asyncio.run(bulk.import_orders(content, "orders.xlsx", users["member"]))

        [detail] = exc.value.errors
        assert detail.details["row_number"] == 3
        assert detail.details["row"]["Customer Name"] == "Sunrise Academy"
        assert db.query(Order).count() == 0

    def test_missing_payment_terms_rejected(self, bulk, users):
        content = sheet_bytes([import_row(**{"Payment Terms": None})])
        with pytest.raises(BulkImportError):
            asyncio.run(bulk.import_orders(content, "orders.xlsx", users["member"]))

    def test_duplicate_order_ids_reject_the_batch(self, bulk, db, hub, users, make_order, monkeypatch):
        taken = make_order(users["member"]).order_id
        monkeypatch.setattr(bulk.order_repo, "next_order_ids", lambda count=1: [taken] * count)

        with pytest.raises(ValidationError) as exc:
            asyncio.run(bulk.import_orders(sheet_bytes([import_row()]), "orders.xlsx", users["member"]))

        assert exc.value.status_code == 400
        assert exc.value.field == "orderId"
        assert db.query(Order).count() == 1
        assert hub.events("newOrder") == []

    def test_csv_is_accepted(self, bulk, users):
        content = pd.DataFrame([import_row()]).to_csv(index=False).encode()
        orders = asyncio.run(bulk.import_orders(content, "orders.csv", users["member"]))
        assert orders[0]["customername"] == "Sunrise Academy"

    def test_unsupported_extension(self, bulk, users):
        with pytest.raises(BadRequestError):
            asyncio.run(bulk.import_orders(b"data", "orders.pdf", users["member"]))


class TestExport:
    def test_first_row_only_fields(self, bulk, users, make_order):
        products = [
            {"productType": "IFPD", "qty": 1, "unitPrice": 100, "gst": "18", "brand": "Promark",
             "modelNos": ["PM-65"], "serialNos": ["S1", "S2"]},
            {"productType": "Stand", "qty": 1, "unitPrice": 10, "gst": "18"},
        ]
        make_order(users["member"], products=products, total=129.8, remarks="urgent")

        frame = exported_frame(bulk, users["member"])
        assert list(frame.columns) == EXPORT_HEADERS
        assert len(frame) == 2

        first, second = frame.iloc[0], frame.iloc[1]
        assert first["Customer Name"] == second["Customer Name"] == "Acme Schools"
        assert first["Serial Nos"] == "S1, S2"
        assert first["Remarks"] == "urgent"
        assert first["SO Status"] == "Pending for Approval"
        assert pd.isna(second["Remarks"])
        assert pd.isna(second["Total"])
        assert second["Product Type"] == "Stand"

    def test_order_without_products_gets_placeholder(self, bulk, users, make_order):
        make_order(users["member"], products=[])
        frame = exported_frame(bulk, users["member"])
        assert frame.iloc[0]["Product Type"] == "Not Found"

    def test_export_is_scoped(self, bulk, users, make_order):
        make_order(users["outsider"])
        frame = exported_frame(bulk, users["member"])
        assert len(frame) == 0
        assert list(frame.columns) == EXPORT_HEADERS

    def test_round_trip(self, bulk, db, users):
        content = sheet_bytes([import_row()])
        [original] = asyncio.run(bulk.import_orders(content, "orders.xlsx", users["member"]))

        _, exported = bulk.export_orders(users["member"])
        [copy] = asyncio.run(bulk.import_orders(exported, "orders_export.xlsx", users["member"]))

        for key in ("customername", "name", "customerEmail", "city", "pinCode", "orderType",
                    "paymentTerms", "dispatchFrom", "total", "paymentDue", "freightcs", "sameAddress", "company"):
            assert copy[key] == original[key], key
        assert copy["products"][0]["modelNos"] == original["products"][0]["modelNos"]
        assert copy["soDate"][:10] == original["soDate"][:10]
