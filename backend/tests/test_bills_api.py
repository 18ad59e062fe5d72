"""
API Tests — Scanned bill reconciliation.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
class TestBillsAPI:
    async def test_reconcile_bill(self, client: AsyncClient, seeded_db):
        milk_id = str(seeded_db["healthy"].product_id)
        payload = {
            "billNumber": "INV-5001",
            "supplierGuess": "Test Distributor",
            "billDate": "2026-10-01",
            "lines": [
                {"productId": milk_id, "rawName": "WH MILK 1L", "quantity": 24, "unitPrice": 0.8, "confidence": 0.55},
                {"rawName": "Salted Butter", "quantity": 40, "unitPrice": 1.9, "confidence": 0.97},
                {"rawName": "Unknown Item", "quantity": 3, "unitPrice": 5, "confidence": 0.3},
            ],
        }

        resp = await client.post("/api/v1/bills/reconcile", json=payload)

        assert resp.status_code == 201
        data = resp.json()
        assert data["billNumber"] == "INV-5001"
        assert [(d["lineIndex"], d["quantity"]) for d in data["applied"]] == [(0, 24), (1, 40)]
        assert data["applied"][0]["resultingStock"] == 124
        assert [u["rawName"] for u in data["unmapped"]] == ["Unknown Item"]
        assert data["unmapped"][0]["confidence"] == 0.3

        bill = (await client.get(f"/api/v1/bills/{data['reconciliationId']}")).json()
        assert [line["mappingMethod"] for line in bill["lines"]] == ["explicit", "name_match", "unmapped"]
        assert bill["billDate"] == "2026-10-01"

        listed = (await client.get("/api/v1/bills")).json()["data"]
        assert [b["billNumber"] for b in listed] == ["INV-5001"]

    async def test_adjustments_apply(self, client: AsyncClient, seeded_db):
        yogurt_id = str(seeded_db["low"].product_id)
        payload = {
            "billNumber": "INV-5002",
            "lines": [{"rawName": "Yoghurt grk", "quantity": 10, "unitPrice": 1, "confidence": 0.4}],
            "adjustments": [{"index": 0, "productId": yogurt_id, "quantity": 12}],
        }

        resp = await client.post("/api/v1/bills/reconcile", json=payload)

        assert resp.status_code == 201
        applied = resp.json()["applied"]
        assert applied[0]["productId"] == yogurt_id
        assert applied[0]["quantity"] == 12

        product = (await client.get(f"/api/v1/products/{yogurt_id}")).json()
        assert product["current_stock"] == 27

    async def test_partial_apply_rejected(self, client: AsyncClient, seeded_db):
        milk, yogurt, butter = (str(seeded_db[k].product_id) for k in ("healthy", "low", "empty"))
        await client.delete(f"/api/v1/products/{yogurt}")
        payload = {
            "billNumber": "INV-5003",
            "lines": [
                {"productId": milk, "rawName": "Milk", "quantity": 5, "unitPrice": 1, "confidence": 0.9},
                {"productId": yogurt, "rawName": "Yogurt", "quantity": 5, "unitPrice": 1, "confidence": 0.9},
                {"productId": butter, "rawName": "Butter", "quantity": 5, "unitPrice": 1, "confidence": 0.9},
            ],
        }

        resp = await client.post("/api/v1/bills/reconcile", json=payload)

        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "partial_apply_rejected"
        assert error["details"]["line_index"] == 1
        assert (await client.get(f"/api/v1/products/{milk}")).json()["current_stock"] == 100
        assert (await client.get(f"/api/v1/products/{butter}")).json()["current_stock"] == 0

    async def test_duplicate_bill_conflicts(self, client: AsyncClient, seeded_db):
        milk = str(seeded_db["healthy"].product_id)
        payload = {
            "billNumber": "INV-5004",
            "lines": [{"productId": milk, "rawName": "Milk", "quantity": 1, "unitPrice": 1, "confidence": 1}],
        }
        assert (await client.post("/api/v1/bills/reconcile", json=payload)).status_code == 201

        resp = await client.post("/api/v1/bills/reconcile", json=payload)

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "bill_already_reconciled"

    async def test_confidence_out_of_range(self, client: AsyncClient):
        payload = {
            "billNumber": "INV-5005",
            "lines": [{"rawName": "Milk", "quantity": 1, "unitPrice": 1, "confidence": 1.5}],
        }
        resp = await client.post("/api/v1/bills/reconcile", json=payload)
        assert resp.status_code == 422
