from __future__ import annotations

from httpx import AsyncClient


async def _create_list(client: AsyncClient, name: str) -> dict:
    response = await client.post("/lists", json={"name": name})
    assert response.status_code == 201
    return response.json()


async def _create_tube(client: AsyncClient, list_id: int, **fields) -> dict:
    payload = {"list_id": list_id, "name": "Vis", "quantity": 1, **fields}
    response = await client.post("/tubes", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "environment": "test"}


async def test_list_crud(client: AsyncClient) -> None:
    created = await _create_list(client, "Atelier")

    fetched = await client.get(f"/lists/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "Atelier"

    renamed = await client.put(f"/lists/{created['id']}", json={"name": "Garage"})
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Garage"

    listing = await client.get("/lists")
    assert [item["name"] for item in listing.json()] == ["Garage"]

    deleted = await client.delete(f"/lists/{created['id']}")
    assert deleted.status_code == 204
    missing = await client.get(f"/lists/{created['id']}")
    assert missing.status_code == 404


async def test_blank_list_name_is_rejected(client: AsyncClient) -> None:
    response = await client.post("/lists", json={"name": "  "})
    assert response.status_code == 422


async def test_tube_crud(client: AsyncClient) -> None:
    tube_list = await _create_list(client, "Atelier")
    tube = await _create_tube(
        client, tube_list["id"], name="Tape", esp="Cinta", usage="", quantity="2", stock_mini=5
    )
    assert tube["esp"] == "Cinta"
    assert tube["usage"] is None
    assert tube["quantity"] == 2

    updated = await client.put(
        f"/tubes/{tube['id']}",
        json={"name": "Tape", "esp": "", "quantity": 7, "stock_mini": None},
    )
    assert updated.status_code == 200
    body = updated.json()
    assert (body["esp"], body["quantity"], body["stock_mini"]) == (None, 7, None)

    filtered = await client.get("/tubes", params={"list_id": tube_list["id"]})
    assert [item["id"] for item in filtered.json()] == [tube["id"]]

    deleted = await client.delete(f"/tubes/{tube['id']}")
    assert deleted.status_code == 204
    assert (await client.get(f"/tubes/{tube['id']}")).status_code == 404


async def test_tube_validation(client: AsyncClient) -> None:
    tube_list = await _create_list(client, "Atelier")

    for payload in (
        {"list_id": tube_list["id"], "name": "", "quantity": 1},
        {"list_id": tube_list["id"], "name": "Vis", "quantity": -1},
        {"list_id": tube_list["id"], "name": "Vis", "quantity": "abc"},
    ):
        response = await client.post("/tubes", json=payload)
        assert response.status_code == 422

    unknown = await client.post("/tubes", json={"list_id": 999, "name": "Vis", "quantity": 1})
    assert unknown.status_code == 404


async def test_deleting_list_removes_its_tubes(client: AsyncClient) -> None:
    tube_list = await _create_list(client, "Atelier")
    await _create_tube(client, tube_list["id"], name="Vis")
    await _create_tube(client, tube_list["id"], name="Colle")

    await client.delete(f"/lists/{tube_list['id']}")

    assert (await client.get("/tubes")).json() == []


async def test_order_mail_endpoint(client: AsyncClient) -> None:
    tube_list = await _create_list(client, "Just Espagne")
    await _create_tube(client, tube_list["id"], name="Tape", esp="Cinta", quantity=2, stock_mini=5)
    await _create_tube(client, tube_list["id"], name="Vis", quantity=8, stock_mini=5)

    response = await client.get(f"/lists/{tube_list['id']}/order")

    assert response.status_code == 200
    mail = response.json()
    assert mail["subject"] == "Commande Just Espagne"
    assert mail["lines"] == [{"tube_id": mail["lines"][0]["tube_id"], "name": "Cinta", "quantity": 2, "shortfall": 3}]
    assert mail["body"].endswith("(2)     3  Cinta")
    assert mail["url"].startswith("mailto:?subject=Commande%20Just%20Espagne&body=")


async def test_order_mail_endpoint_without_shortfall(client: AsyncClient) -> None:
    tube_list = await _create_list(client, "Atelier")
    await _create_tube(client, tube_list["id"], quantity=3, stock_mini=1)

    response = await client.get(f"/lists/{tube_list['id']}/order")
    assert response.status_code == 204

    missing = await client.get("/lists/999/order")
    assert missing.status_code == 404


async def test_rest_mutations_notify_subscribers(app, client: AsyncClient) -> None:
    received = []
    app.state.change_feed.subscribe("*", received.append)

    tube_list = await _create_list(client, "Atelier")
    await client.put(f"/lists/{tube_list['id']}", json={"name": "Garage"})

    assert [(change.table, change.event) for change in received] == [
        ("lists", "INSERT"),
        ("lists", "UPDATE"),
    ]
