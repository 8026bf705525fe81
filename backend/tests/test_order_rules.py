from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from core.exceptions import InvalidProductError, MissingFieldError, ProductParseError, ValidationError
from services.order_rules import (
    collect_updates, compute_payment_due, compute_total, default_fulfilling_status, derive_warranty,
    normalize_product, parse_products, plan_edit, products_equal, validate_dispatch_from,
    validate_order_requirements,
)

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


def current_order(**fields):
    values = {
        "order_type": "B2C",
        "products": [],
        "sostatus": "Pending for Approval",
        "dispatch_from": "Patna",
        "dispatch_status": "Not Dispatched",
        "fulfilling_status": "Fulfilled",
        "fulfillment_date": None,
        "dispatch_date": None,
        "receipt_date": None,
    }
    values.update(fields)
    return SimpleNamespace(**values)


class TestProducts:
    def test_total_includes_gst_freight_and_installation(self):
        products = [{"qty": 2, "unitPrice": 100, "gst": "18"}]
        assert compute_total(products, 50, 20) == 306.0

    def test_mixed_gst_products_with_freight(self):
        products = [
            {"qty": 2, "unitPrice": 100, "gst": "18"},
            {"qty": 1, "unitPrice": 50, "gst": "including"},
        ]
        assert compute_total(products, 20, 0) == 306.0

    def test_including_gst_adds_nothing(self):
        assert compute_total([{"qty": 3, "unitPrice": 100, "gst": "including"}]) == 300.0

    def test_payment_due(self):
        assert compute_payment_due(306.0, "100") == 206.0

    @pytest.mark.parametrize("qty", [0, -1, 1.5, "abc", None])
    def test_rejects_bad_quantity(self, qty):
        with pytest.raises(InvalidProductError):
            normalize_product({"productType": "Panel", "qty": qty, "unitPrice": 10, "gst": "18"}, 0, "B2C")

    def test_rejects_negative_price(self):
        with pytest.raises(InvalidProductError):
            normalize_product({"productType": "Panel", "qty": 1, "unitPrice": -5, "gst": "18"}, 0, "B2C")

    def test_ifpd_requires_model_and_brand(self):
        with pytest.raises(InvalidProductError) as exc:
            normalize_product({"productType": "IFPD", "qty": 1, "unitPrice": 10, "gst": "18"}, 0, "B2C")
        assert "Model Numbers and Brand" in exc.value.detail

    def test_normalizes_lists_and_warranty(self):
        product = normalize_product(
            {"productType": "IFPD", "qty": "2", "unitPrice": "10", "gst": 18,
             "brand": "Promark", "modelNos": "PM-65, PM-75"},
            0, "B2B",
        )
        assert product["qty"] == 2
        assert product["gst"] == "18"
        assert product["modelNos"] == ["PM-65", "PM-75"]
        assert product["serialNos"] == []
        assert product["warranty"] == "3 Years"

    def test_warranty_defaults(self):
        assert derive_warranty("B2G", "IFPD", "Promark") == "As Per Tender"
        assert derive_warranty("B2C", "IFPD", "Promark") == "3 Years"
        assert derive_warranty("B2C", "IFPD", "Other") == "1 Year"
        assert derive_warranty("B2C", "Panel", "Promark") == "1 Year"

    def test_parse_products_accepts_json_string(self):
        assert parse_products('[{"productType": "Panel"}]') == [{"productType": "Panel"}]

    def test_parse_products_rejects_garbage(self):
        with pytest.raises(ProductParseError):
            parse_products("not json")

    def test_products_equal_ignores_representation(self):
        a = [{"productType": "Panel", "qty": 2, "unitPrice": 10, "gst": "18", "serialNos": ["A", "B"]}]
        b = [{"productType": "Panel", "qty": "2", "unitPrice": 10.0, "gst": 18, "serialNos": "A, B"}]
        assert products_equal(a, b)
        assert not products_equal(a, [])


class TestOrderRequirements:
    def test_b2g_requires_gem_number(self):
        with pytest.raises(MissingFieldError) as exc:
            validate_order_requirements("B2G", None, None, "Credit")
        assert exc.value.detail == "Missing GEM Order Number"

    def test_demo_requires_demo_date(self):
        with pytest.raises(MissingFieldError) as exc:
            validate_order_requirements("Demo", None, None, None)
        assert exc.value.detail == "Missing Demo Date"

    def test_non_demo_requires_payment_terms(self):
        with pytest.raises(MissingFieldError):
            validate_order_requirements("B2C", None, None, None)

    def test_demo_without_payment_terms_is_fine(self):
        validate_order_requirements("Demo", None, NOW, None)

    def test_unknown_dispatch_location(self):
        with pytest.raises(ValidationError):
            validate_dispatch_from("Mumbai")

    def test_default_fulfilling_status(self):
        assert default_fulfilling_status("B2C", "Morinda") == "Not Fulfilled"
        assert default_fulfilling_status("Demo", "Morinda") == "Fulfilled"
        assert default_fulfilling_status("B2C", "Delhi") == "Fulfilled"
        assert default_fulfilling_status("B2C", None) == "Fulfilled"


class TestPlanEdit:
    def test_switch_to_morinda_resets_fulfillment(self):
        plan = plan_edit({"dispatchFrom": "Morinda", "fulfillingStatus": "Fulfilled"}, current_order(), NOW)
        assert plan.updates["fulfilling_status"] == "Pending"
        assert plan.updates["completion_status"] == "In Progress"
        assert "fulfillment_date" not in plan.updates

    def test_switch_away_from_morinda_fulfills(self):
        plan = plan_edit({"dispatchFrom": "Delhi"}, current_order(dispatch_from="Morinda"), NOW)
        assert plan.updates["fulfilling_status"] == "Fulfilled"
        assert plan.updates["completion_status"] == "Complete"
        assert plan.updates["fulfillment_date"] == NOW

    def test_same_dispatch_from_is_not_a_change(self):
        plan = plan_edit({"dispatchFrom": "Patna"}, current_order(fulfilling_status="Pending"), NOW)
        assert "fulfilling_status" not in plan.updates

    def test_manual_fulfilled_keeps_existing_fulfillment_date(self):
        earlier = datetime(2026, 1, 1, tzinfo=timezone.utc)
        plan = plan_edit({"fulfillingStatus": "Fulfilled"}, current_order(fulfillment_date=earlier), NOW)
        assert plan.updates["completion_status"] == "Complete"
        assert "fulfillment_date" not in plan.updates

    def test_approval_timestamp_only_on_transition(self):
        plan = plan_edit({"sostatus": "Approved"}, current_order(), NOW)
        assert plan.approved
        assert plan.updates["approval_timestamp"] == NOW

        again = plan_edit({"sostatus": "Approved"}, current_order(sostatus="Approved"), NOW)
        assert not again.approved
        assert "approval_timestamp" not in again.updates

    def test_delivered_sets_dispatch_and_receipt_dates(self):
        plan = plan_edit({"dispatchStatus": "Delivered"}, current_order(), NOW)
        assert plan.dispatch_status_changed
        assert plan.updates["dispatch_date"] == NOW
        assert plan.updates["receipt_date"] == NOW

    def test_explicit_dispatch_date_wins(self):
        plan = plan_edit({"dispatchStatus": "Dispatched", "dispatchDate": "2026-10-01"}, current_order(), NOW)
        assert plan.updates["dispatch_date"].date().isoformat() == "2026-10-01"

    def test_invalid_dates_are_skipped(self):
        updates, _ = collect_updates({"dispatchDate": "not a date", "remarks": "ok"}, current_order())
        assert updates == {"remarks": "ok"}

    def test_unknown_keys_and_nulls_are_ignored(self):
        updates, _ = collect_updates({"createdBy": 99, "orderId": "X", "remarks": None}, current_order())
        assert updates == {}

    def test_products_must_be_a_list(self):
        with pytest.raises(ProductParseError):
            collect_updates({"products": {"productType": "Panel"}}, current_order())

    @pytest.mark.parametrize("products", [[1], [None], ["Panel"], [{"productType": "Panel", "qty": 1, "unitPrice": 5}, 7]])
    def test_product_entries_must_be_objects(self, products):
        with pytest.raises(ProductParseError):
            collect_updates({"products": products}, current_order())

    def test_unchanged_products_set_no_timestamp(self):
        products = [{"productType": "Panel", "qty": 1, "unitPrice": 10, "gst": "18", "brand": "",
                     "warranty": "1 Year", "modelNos": [], "serialNos": []}]
        plan = plan_edit({"products": products}, current_order(products=products), NOW)
        assert not plan.products_edited
        assert "products_edit_timestamp" not in plan.updates

    def test_changed_products_are_stamped(self):
        plan = plan_edit(
            {"products": [{"productType": "Panel", "qty": 3, "unitPrice": 10}]}, current_order(), NOW
        )
        assert plan.products_edited
        assert plan.updates["products"][0]["gst"] == "18"
        assert plan.updates["products_edit_timestamp"] == NOW

    def test_invalid_status_is_rejected(self):
        with pytest.raises(ValidationError):
            plan_edit({"sostatus": "Shipped"}, current_order(), NOW)
