"""
HTTP API tests: sales template, document and connection endpoints plus health.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from api.services import get_order_source, set_order_source, set_sender
from conftest import FakeSender, make_order
from connectors import ErpConnection, save_connection
from connectors.ecount import ECountAuthenticationError, ECountClient
from core.models.orders import InMemoryOrderSource, OrderStatus


CREDENTIALS = {"company_code": "123456", "user_id": "API_USER", "api_cert_key": "secret-cert-key"}
TENANT = {"tenant_id": "tenant-1"}
GENERATE = {"tenant_id": "tenant-1", "erp_connection_id": "conn-1"}


@pytest.fixture
def sender():
    return FakeSender(fail_ids={"ORD-FAIL"})


@pytest.fixture
def client(sender):
    previous = get_order_source()
    set_order_source(InMemoryOrderSource([
        make_order("ORD-1"),
        make_order("ORD-2"),
        make_order("ORD-FAIL"),
        make_order("ORD-NEW", status=OrderStatus.DELIVERED),
    ]))
    set_sender(sender)
    with TestClient(create_app()) as test_client:
        yield test_client
    set_sender(None)
    set_order_source(previous)


@pytest.fixture
def template(client):
    response = client.put(
        "/erp-config/conn-1/sales-template",
        params={"preset": "SIMPLE_SALE"},
        json={"tenant_id": "tenant-1", "default_header": {"CUST": "C-CP", "CUST_DES": "쿠팡"}},
    )
    assert response.status_code == 200
    return response.json()["template"]


def generate(client, *order_ids):
    response = client.post("/erp/documents/generate-batch", params=GENERATE, json={"order_ids": list(order_ids)})
    assert response.status_code == 200
    return [item["document_id"] for item in response.json()["results"]]


# =============================================================================
# Templates
# =============================================================================

class TestTemplateEndpoints:
    def test_presets(self, client):
        response = client.get("/erp-config/presets")
        assert response.status_code == 200
        assert [p["preset"] for p in response.json()] == [
            "SIMPLE_SALE", "WITH_COMMISSION", "FULL_SETTLEMENT", "CUSTOM",
        ]

    def test_put_and_get(self, client, template):
        assert template["erp_connection_id"] == "conn-1"

        response = client.get("/erp-config/conn-1/sales-template")
        assert response.status_code == 200
        body = response.json()
        assert body["preset"] == "SIMPLE_SALE"
        assert body["template"]["default_header"]["CUST"] == "C-CP"

    def test_get_missing(self, client):
        assert client.get("/erp-config/nope/sales-template").status_code == 404

    def test_put_invalid_mapping(self, client):
        response = client.put(
            "/erp-config/conn-1/sales-template",
            json={
                "tenant_id": "tenant-1",
                "global_field_mappings": [
                    {"fieldName": "USER_PRICE_VAT", "valueSource": "BUYER_NAME", "lineTypes": ["ALL"]},
                ],
            },
        )
        assert response.status_code == 422
        assert "cannot fill a number field" in response.json()["detail"]["errors"][0]
        assert client.get("/erp-config/conn-1/sales-template").status_code == 404

    def test_put_malformed_body(self, client):
        response = client.put("/erp-config/conn-1/sales-template", json={"product_sale": {"quantity_source": "NOPE"}})
        assert response.status_code == 422

    def test_preview_stored_template(self, client, template):
        response = client.post("/erp-config/conn-1/sales-template/preview")
        assert response.status_code == 200
        preview = response.json()
        assert preview["customer_code"] == "C-CP"
        assert preview["total_amount"] == "52900"
        assert len(preview["lines"]) == 3

    def test_preview_unsaved_template(self, client):
        response = client.post(
            "/erp-config/conn-9/sales-template/preview",
            params={"marketplace": "NAVER"},
            json={"tenant_id": "tenant-1", "sales_commission": {"price_source": "COMMISSION_AMOUNT", "negate_amount": True}},
        )
        assert response.status_code == 200
        preview = response.json()
        assert preview["marketplace_type"] == "NAVER"
        assert preview["lines"][-1]["line_type"] == "SALES_COMMISSION"
        assert preview["lines"][-1]["total_amount"] == "-2470"

    def test_delete(self, client, template):
        assert client.delete("/erp-config/conn-1/sales-template").status_code == 204
        assert client.delete("/erp-config/conn-1/sales-template").status_code == 404


# =============================================================================
# Documents
# =============================================================================

class TestDocumentEndpoints:
    def test_generate_batch(self, client, template):
        response = client.post(
            "/erp/documents/generate-batch",
            params=GENERATE,
            json={"order_ids": ["ORD-1", "NOPE"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success_count"] == 1
        assert body["fail_count"] == 1
        assert body["results"][1]["success"] is False

    def test_get_and_list(self, client, template):
        document_id, = generate(client, "ORD-1")

        response = client.get(f"/erp/documents/{document_id}", params=TENANT)
        assert response.status_code == 200
        document = response.json()
        assert document["status"] == "PENDING"
        assert document["customer_code"] == "C-CP"
        assert document["document_date"] == "2024-03-15"
        assert len(document["lines"]) == 3

        listed = client.get("/erp/documents", params={**TENANT, "status": "PENDING"}).json()
        assert [d["id"] for d in listed] == [document_id]

        assert client.get("/erp/documents/missing", params=TENANT).status_code == 404
        assert client.get(f"/erp/documents/{document_id}", params={"tenant_id": "other"}).status_code == 404

    def test_send(self, client, template, sender):
        document_id, = generate(client, "ORD-1")

        response = client.post(f"/erp/documents/{document_id}/send", params=TENANT)
        assert response.status_code == 200
        assert response.json()["status"] == "SENT"
        assert response.json()["erp_document_id"] == "SLIP-1"

        assert client.post(f"/erp/documents/{document_id}/send", params=TENANT).status_code == 409

    def test_send_failure(self, client, template):
        document_id, = generate(client, "ORD-FAIL")

        response = client.post(f"/erp/documents/{document_id}/send", params=TENANT)
        assert response.status_code == 502
        assert "ERP rejected the document" in response.json()["detail"]

        document = client.get(f"/erp/documents/{document_id}", params=TENANT).json()
        assert document["status"] == "FAILED"

    def test_cancel_delete_regenerate(self, client, template):
        first, second = generate(client, "ORD-1", "ORD-2")

        assert client.post("/erp/documents/regenerate/ORD-1", params=GENERATE).status_code == 409

        response = client.post(f"/erp/documents/{first}/cancel", params=TENANT)
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"
        assert client.delete(f"/erp/documents/{first}", params=TENANT).status_code == 409

        response = client.post("/erp/documents/regenerate/ORD-1", params=GENERATE)
        assert response.status_code == 200
        assert response.json()["id"] != first
        assert len(client.get("/erp/documents", params={**TENANT, "order_id": "ORD-1"}).json()) == 2

        assert client.delete(f"/erp/documents/{second}", params=TENANT).status_code == 204
        assert client.get(f"/erp/documents/{second}", params=TENANT).status_code == 404

    def test_send_selected_and_all_pending(self, client, template, sender):
        ids = generate(client, "ORD-1", "ORD-2", "ORD-FAIL")

        response = client.post("/erp/documents/send-selected", params=TENANT, json={"document_ids": ids[:1]})
        assert response.json()["success_count"] == 1

        response = client.post("/erp/documents/send-all-pending", params=TENANT)
        body = response.json()
        assert body["total_count"] == 2
        assert body["success_count"] == 1
        assert body["fail_count"] == 1

    def test_send_all_pending_for_one_connection(self, client, template, sender):
        response = client.put(
            "/erp-config/conn-2/sales-template",
            params={"preset": "SIMPLE_SALE"},
            json={"tenant_id": "tenant-1", "default_header": {"CUST": "C-CP", "CUST_DES": "쿠팡"}},
        )
        assert response.status_code == 200
        first, = generate(client, "ORD-1")
        response = client.post(
            "/erp/documents/generate-batch",
            params={"tenant_id": "tenant-1", "erp_connection_id": "conn-2"},
            json={"order_ids": ["ORD-2"]},
        )
        second = response.json()["results"][0]["document_id"]

        response = client.post("/erp/documents/send-all-pending", params={**TENANT, "erp_connection_id": "conn-1"})
        body = response.json()
        assert body["total_count"] == 1
        assert body["results"][0]["id"] == first
        assert sender.sent == [first]
        assert client.get(f"/erp/documents/{second}", params=TENANT).json()["status"] == "PENDING"

    def test_counts(self, client, template):
        ids = generate(client, "ORD-1", "ORD-2")
        client.post(f"/erp/documents/{ids[0]}/send", params=TENANT)

        counts = client.get("/erp/documents/counts", params=TENANT).json()
        assert counts["SENT"] == 1
        assert counts["PENDING"] == 1
        assert counts["NEED_DOCUMENT"] == 2

    def test_generate_without_template(self, client):
        response = client.post("/erp/documents/regenerate/ORD-1", params=GENERATE)
        assert response.status_code == 404


# =============================================================================
# Connections
# =============================================================================

class TestConnectionEndpoints:
    def test_connection_success(self, client):
        save_connection(ErpConnection(id="conn-1", tenant_id="tenant-1"), CREDENTIALS)

        with patch.object(ECountClient, "connect", AsyncMock(return_value=True)), \
             patch.object(ECountClient, "disconnect", AsyncMock()) as disconnect:
            response = client.post("/erp-config/conn-1/test-connection")

        assert response.status_code == 200
        body = response.json()
        assert body["erp_connection_id"] == "conn-1"
        assert body["success"] is True
        assert body["details"]["connector_type"] == "ecount"
        assert body["latency_ms"] >= 0
        disconnect.assert_awaited_once()

    def test_connection_rejected(self, client):
        save_connection(ErpConnection(id="conn-1", tenant_id="tenant-1"), CREDENTIALS)

        with patch.object(ECountClient, "connect", AsyncMock(side_effect=ECountAuthenticationError("bad key"))), \
             patch.object(ECountClient, "disconnect", AsyncMock()):
            response = client.post("/erp-config/conn-1/test-connection")

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["message"] == "ERP rejected the stored credentials"

    def test_unknown_connection(self, client):
        assert client.post("/erp-config/nope/test-connection").status_code == 404

    def test_connection_without_credentials(self, client):
        save_connection(ErpConnection(id="conn-1", tenant_id="tenant-1"))
        assert client.post("/erp-config/conn-1/test-connection").status_code == 422


# =============================================================================
# Health
# =============================================================================

class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["storage"] == "up"
        assert "ecount" in body["connectors"]

    def test_metrics(self, client, template):
        generate(client, "ORD-1")
        summary = client.get("/metrics").json()
        assert summary["documents"]["generated"] == 1
        assert summary["batches"]["by_kind"]["generate"] == 1
