import pytest
from datetime import date, timedelta
from decimal import Decimal

from app.domain.models import Invoice, LineItem
from app.ingestion.parser_registry import ParsedDocument

BASE = date.today() - timedelta(days=30)


def _payload(number, trading_date, side, quantity, price):
    return {
        "invoice_number": number,
        "trading_date": trading_date.isoformat(),
        "brokerage": "Clear",
        "user_id": "user-1",
        "items": [
            {
                "sequence_number": 1,
                "asset_code": "XYZ11",
                "operation_type": side,
                "quantity": quantity,
                "unit_price": price,
                "total_value": str(Decimal(price) * quantity),
            }
        ],
    }


async def _create_xyz11(client):
    ids = []
    for payload in (
        _payload("NF-1", BASE, "C", 300, "1.03"),
        _payload("NF-2", BASE + timedelta(days=2), "V", 75, "1.73"),
        _payload("NF-3", BASE + timedelta(days=4), "V", 225, "0.46"),
    ):
        response = await client.post("/api/v1/invoices", json=payload)
        assert response.status_code == 201, response.text
        ids.append(response.json()["id"])
    return ids


@pytest.mark.asyncio
@pytest.mark.integration
async def test_health(client):
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "connected"
    assert data["session_store"] == "InMemorySessionStore"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_and_get_invoice(client):
    response = await client.post("/api/v1/invoices", json=_payload("NF-1", BASE, "C", 300, "1.03"))

    assert response.status_code == 201
    created = response.json()
    assert created["processing_status"] == "PENDING"
    assert created["processing_attempts"] == 0
    assert created["items"][0]["total_value"] == 309.0

    fetched = await client.get(f"/api/v1/invoices/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["items"][0]["mapped_operation_id"] is None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_invoice_errors(client):
    payload = _payload("NF-1", BASE, "C", 300, "1.03")
    payload["items"].append(dict(payload["items"][0]))

    assert (await client.post("/api/v1/invoices", json=payload)).status_code == 400
    assert (await client.get("/api/v1/invoices/999")).status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_duplicate_invoice_number_conflicts(client):
    payload = _payload("NF-1", BASE, "C", 300, "1.03")

    assert (await client.post("/api/v1/invoices", json=payload)).status_code == 201
    assert (await client.post("/api/v1/invoices", json=payload)).status_code == 409


@pytest.mark.asyncio
@pytest.mark.integration
async def test_import_without_parser_is_unprocessable(client):
    response = await client.post(
        "/api/v1/invoices/import",
        json={"user_id": "user-1", "text": "??", "filename": "note.pdf"},
    )

    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_import_with_registered_parser(client, parser_registry):
    def parse(text, filename, user_id):
        return ParsedDocument(
            invoice=Invoice(
                invoice_number=text.strip(),
                trading_date=BASE,
                brokerage="Clear",
                user_id=user_id,
            ),
            items=(LineItem(1, "XYZ11", "C", 100, Decimal("10.00"), Decimal("1000.00")),),
        )

    parser_registry.register("plain", lambda text, filename: filename.endswith(".txt"), parse)

    response = await client.post(
        "/api/v1/invoices/import",
        json={"user_id": "user-1", "text": "NF-77", "filename": "note.txt"},
    )

    assert response.status_code == 201
    assert response.json()["invoice_number"] == "NF-77"
    assert len(response.json()["items"]) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_batch_processing_flow(client):
    invoice_ids = await _create_xyz11(client)

    response = await client.post(
        "/api/v1/processing/batch",
        json={"user_id": "user-1", "invoice_ids": invoice_ids},
    )

    assert response.status_code == 200
    batch = response.json()
    assert batch["success"], batch["message"]
    assert batch["progress"] == 100
    assert batch["created_operations"] == 3
    assert batch["success_rate"] == 100.0
    assert batch["errors"] == []

    session = await client.get(f"/api/v1/processing/sessions/{batch['session_id']}")
    assert session.status_code == 200
    assert session.json()["status"] == "SUCCESS"
    assert session.json()["invoice_ids"] == invoice_ids

    positions = (await client.get("/api/v1/positions", params={"user_id": "user-1"})).json()
    assert len(positions) == 1
    assert positions[0]["status"] == "CLOSED"
    assert positions[0]["remaining_quantity"] == 0

    summary = (await client.get("/api/v1/positions/summary", params={"user_id": "user-1"})).json()
    assert summary["closed_positions"] == 1
    assert summary["open_positions"] == 0

    operations = (await client.get("/api/v1/operations", params={"user_id": "user-1"})).json()
    loser = [op for op in operations if op["status"] == "LOSER"]
    assert len(loser) == 1
    assert loser[0]["profit_loss"] == -75.75
    assert loser[0]["profit_loss_percentage"] == -24.51

    everything = (await client.get(
        "/api/v1/operations", params={"user_id": "user-1", "include_hidden": True}
    )).json()
    assert len(everything) == len(operations) + 1

    invoice = (await client.get(f"/api/v1/invoices/{invoice_ids[0]}")).json()
    assert invoice["processing_status"] == "SUCCESS"
    assert invoice["items"][0]["mapped_operation_id"] is not None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_single_invoice_processing(client):
    created = await client.post("/api/v1/invoices", json=_payload("NF-1", BASE, "C", 100, "10.00"))
    invoice_id = created.json()["id"]

    response = await client.post(
        f"/api/v1/processing/invoices/{invoice_id}", params={"user_id": "user-1"}
    )

    assert response.status_code == 200
    assert response.json()["success"]
    assert response.json()["created_operations"] == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_batch_rejects_empty_invoice_list(client):
    response = await client.post(
        "/api/v1/processing/batch", json={"user_id": "user-1", "invoice_ids": []}
    )

    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_session(client):
    assert (await client.get("/api/v1/processing/sessions/nope")).status_code == 404
    assert (await client.post("/api/v1/processing/sessions/nope/cancel")).status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cancel_known_session(client, session_store):
    session = await session_store.create("user-1", [1, 2])

    response = await client.post(f"/api/v1/processing/sessions/{session.id}/cancel")

    assert response.status_code == 200
    assert response.json()["cancelled"]
