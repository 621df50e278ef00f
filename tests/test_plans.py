import pytest
from httpx import AsyncClient

from tests.helpers import create_plan, join_and_activate, signup


@pytest.mark.asyncio
async def test_create_plan_stores_exact_cents(test_client: AsyncClient, gateway):
    headers = await signup(test_client, "owner")

    plan_id = await create_plan(test_client, headers, per_cycle_cost="19.99", cycle_frequency="yearly")
    response = await test_client.get(f"/plans/{plan_id}", headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["plan_id"] == plan_id
    assert data["per_cycle_cost"] == "19.99"
    assert data["cycle_frequency"] == "YEARLY"
    assert data["owner"]["username"] == "owner"
    assert data["owner"]["quantity"] == 0
    assert data["active_members"] == []
    assert gateway.calls_to("create_product") == [("create_product", "Streaming")]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"per_cycle_cost": "19.999"},
        {"per_cycle_cost": "0"},
        {"per_cycle_cost": "-5"},
        {"cycle_frequency": "daily"},
        {"name": ""},
        {"start_date": "not-a-date"},
    ],
)
async def test_create_plan_rejects_bad_input(test_client: AsyncClient, gateway, overrides):
    headers = await signup(test_client, "owner")
    body = {
        "name": "Streaming",
        "cycle_frequency": "monthly",
        "per_cycle_cost": "10.00",
        "start_date": "2026-01-15",
        **overrides,
    }

    response = await test_client.post("/plans", json=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_USER_INPUT"
    assert gateway.calls_to("create_product") == []


@pytest.mark.asyncio
async def test_create_plan_surfaces_stripe_failure_as_internal_error(test_client: AsyncClient, gateway):
    headers = await signup(test_client, "owner")
    gateway.fail_on["create_product"] = True

    response = await test_client.post(
        "/plans",
        json={"name": "X", "cycle_frequency": "weekly", "per_cycle_cost": "3.00", "start_date": "2026-01-01"},
        headers=headers,
    )

    assert response.status_code == 500
    assert response.json()["error"] == {
        "code": "INTERNAL_SERVER_ERROR",
        "message": "Unable to create new plan",
    }


@pytest.mark.asyncio
async def test_view_unknown_plan(test_client: AsyncClient):
    headers = await signup(test_client, "viewer")
    response = await test_client.get("/plans/prod_missing", headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "No plan matched search"


@pytest.mark.asyncio
async def test_plan_detail_lists_active_members_except_requester(test_client: AsyncClient, gateway):
    owner = await signup(test_client, "owner")
    alice = await signup(test_client, "alice")
    bob = await signup(test_client, "bob")
    plan_id = await create_plan(test_client, owner)
    await join_and_activate(test_client, gateway, alice, plan_id, 2)
    await join_and_activate(test_client, gateway, bob, plan_id, 3)

    as_owner = (await test_client.get(f"/plans/{plan_id}", headers=owner)).json()
    as_alice = (await test_client.get(f"/plans/{plan_id}", headers=alice)).json()

    assert [(m["username"], m["quantity"]) for m in as_owner["active_members"]] == [("alice", 2), ("bob", 3)]
    assert [m["username"] for m in as_alice["active_members"]] == ["bob"]
    assert as_owner["unit_cost"] == "2.00"
    assert "stripe_customer_id" not in as_owner["active_members"][0]


@pytest.mark.asyncio
async def test_list_plans_shows_every_membership(test_client: AsyncClient, gateway):
    owner = await signup(test_client, "owner")
    member = await signup(test_client, "member")
    first = await create_plan(test_client, owner, name="First")
    second = await create_plan(test_client, member, name="Second")
    await join_and_activate(test_client, gateway, member, first, 1)

    listed = (await test_client.get("/plans", headers=member)).json()

    by_id = {p["plan_id"]: p for p in listed}
    assert set(by_id) == {first, second}
    assert by_id[first]["owner"] == "owner"
    assert by_id[first]["is_owner"] is False
    assert by_id[first]["status"] == "active"
    assert by_id[first]["quantity"] == 1
    assert by_id[second]["is_owner"] is True
    assert by_id[second]["status"] == "not_joined"


@pytest.mark.asyncio
async def test_only_owner_can_delete_and_not_while_members_remain(test_client: AsyncClient, gateway):
    owner = await signup(test_client, "owner")
    member = await signup(test_client, "member")
    plan_id = await create_plan(test_client, owner)
    joined = await join_and_activate(test_client, gateway, member, plan_id, 1)

    forbidden = await test_client.delete(f"/plans/{plan_id}", headers=member)
    busy = await test_client.delete(f"/plans/{plan_id}", headers=owner)
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "FORBIDDEN"
    assert busy.status_code == 400
    assert busy.json()["error"]["message"] == "This plan still has members"

    await test_client.delete(f"/subscriptions/{joined['subscription_id']}", headers=member)
    deleted = await test_client.delete(f"/plans/{plan_id}", headers=owner)

    assert deleted.status_code == 200
    assert deleted.json() == {"plan_id": plan_id, "status": "DELETED"}
    gone = await test_client.get(f"/plans/{plan_id}", headers=owner)
    assert gone.status_code == 400
    assert all(not p["active"] for p in gateway.prices.values())


@pytest.mark.asyncio
async def test_transfer_ownership(test_client: AsyncClient, gateway):
    owner = await signup(test_client, "owner")
    heir = await signup(test_client, "heir")
    outsider = await signup(test_client, "outsider")
    plan_id = await create_plan(test_client, owner)
    await join_and_activate(test_client, gateway, heir, plan_id, 1)

    not_member = await test_client.post(f"/plans/{plan_id}/transfer", json={"new_owner": "outsider"}, headers=owner)
    not_owner = await test_client.post(f"/plans/{plan_id}/transfer", json={"new_owner": "heir"}, headers=outsider)
    assert not_member.status_code == 400
    assert not_owner.status_code == 403

    moved = await test_client.post(f"/plans/{plan_id}/transfer", json={"new_owner": "heir"}, headers=owner)

    assert moved.status_code == 200
    assert moved.json()["status"] == "UPDATED"
    detail = (await test_client.get(f"/plans/{plan_id}", headers=owner)).json()
    assert detail["owner"]["username"] == "heir"
    again = await test_client.post(f"/plans/{plan_id}/transfer", json={"new_owner": "heir"}, headers=owner)
    assert again.status_code == 403
