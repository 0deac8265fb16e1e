"""Admin API (candidates, links, stats, auth) against SQLite, with /resolve on the SQL store."""

import uuid

import pytest


async def _candidate(client, headers, name, capacity, occupancy=0, ref=None):
    response = await client.post("/v1/candidates", headers=headers, json={
        "external_ref": ref or name.upper(),
        "display_name": name,
        "capacity": capacity,
        "occupancy": occupancy,
    })
    assert response.status_code == 201, response.text
    return response.json()


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_key(self, db_client):
        response = await db_client.get("/v1/links")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_bad_key(self, db_client, organization):
        response = await db_client.get("/v1/links", headers={"X-API-Key": "sl_sec_nope"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_key_in_query_string_not_accepted(self, db_client, organization):
        _, raw_key = organization
        response = await db_client.get("/v1/links", params={"key": raw_key})
        assert response.status_code == 401


class TestCandidates:
    @pytest.mark.asyncio
    async def test_create_and_list(self, admin):
        client, headers = admin
        created = await _candidate(client, headers, "Group 1", capacity=500, occupancy=245)
        assert created["available_slots"] == 255

        listed = (await client.get("/v1/candidates", headers=headers)).json()
        assert [c["id"] for c in listed] == [created["id"]]

    @pytest.mark.asyncio
    async def test_occupancy_sync_allows_overshoot(self, admin):
        client, headers = admin
        created = await _candidate(client, headers, "Group 1", capacity=10)

        response = await client.patch(f"/v1/candidates/{created['id']}", headers=headers, json={"occupancy": 12})

        assert response.status_code == 200
        assert response.json()["occupancy"] == 12
        assert response.json()["available_slots"] == 0

    @pytest.mark.asyncio
    async def test_negative_values_rejected(self, admin):
        client, headers = admin
        created = await _candidate(client, headers, "Group 1", capacity=10)
        response = await client.patch(f"/v1/candidates/{created['id']}", headers=headers, json={"capacity": -1})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_candidate(self, admin):
        client, headers = admin
        response = await client.patch(f"/v1/candidates/{uuid.uuid4()}", headers=headers, json={"occupancy": 1})
        assert response.status_code == 404


class TestLinks:
    @pytest.mark.asyncio
    async def test_create_sorts_by_priority_once(self, admin):
        client, headers = admin
        a = await _candidate(client, headers, "A", 10)
        b = await _candidate(client, headers, "B", 10)
        c = await _candidate(client, headers, "C", 10)

        response = await client.post("/v1/links", headers=headers, json={
            "slug": "meu-grupo",
            "candidates": [
                {"candidate_id": a["id"], "priority": 3},
                {"candidate_id": b["id"], "priority": 1},
                {"candidate_id": c["id"], "priority": 3},
            ],
        })

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["wrapper_url"].endswith("/r/meu-grupo")
        assert [x["display_name"] for x in body["candidates"]] == ["B", "A", "C"]

    @pytest.mark.asyncio
    async def test_default_priority_is_list_position(self, admin):
        client, headers = admin
        a = await _candidate(client, headers, "A", 10)
        b = await _candidate(client, headers, "B", 10)

        body = (await client.post("/v1/links", headers=headers, json={
            "slug": "promo",
            "candidates": [{"candidate_id": b["id"]}, {"candidate_id": a["id"]}],
        })).json()

        assert [(x["display_name"], x["priority"]) for x in body["candidates"]] == [("B", 1), ("A", 2)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("slug", ["Promo", "promo_1", "-promo", "promo-", "pro mo"])
    async def test_invalid_slug(self, admin, slug):
        client, headers = admin
        response = await client.post("/v1/links", headers=headers, json={"slug": slug, "candidates": []})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_duplicate_slug(self, admin):
        client, headers = admin
        await client.post("/v1/links", headers=headers, json={"slug": "promo"})
        response = await client.post("/v1/links", headers=headers, json={"slug": "promo"})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_or_repeated_candidate(self, admin):
        client, headers = admin
        a = await _candidate(client, headers, "A", 10)

        unknown = await client.post("/v1/links", headers=headers, json={
            "slug": "x", "candidates": [{"candidate_id": str(uuid.uuid4())}],
        })
        repeated = await client.post("/v1/links", headers=headers, json={
            "slug": "y", "candidates": [{"candidate_id": a["id"]}, {"candidate_id": a["id"]}],
        })

        assert unknown.status_code == 400
        assert repeated.status_code == 400


class TestResolveOnDatabase:
    @pytest.mark.asyncio
    async def test_full_flow(self, admin):
        client, headers = admin
        g1 = await _candidate(client, headers, "Grupo 1", capacity=5, occupancy=5, ref="INV1")
        g2 = await _candidate(client, headers, "Grupo 2", capacity=10, occupancy=2, ref="INV2")
        link = (await client.post("/v1/links", headers=headers, json={
            "slug": "promo",
            "candidates": [{"candidate_id": g1["id"]}, {"candidate_id": g2["id"]}],
        })).json()

        first = await client.get("/resolve", params={"slug": "promo"})
        assert first.status_code == 200
        assert first.json() == {
            "destination": "https://chat.whatsapp.com/INV2",
            "candidateId": g2["id"],
            "displayName": "Grupo 2",
            "availableSlots": 8,
        }

        # group 2 fills up on the messaging side
        await client.patch(f"/v1/candidates/{g2['id']}", headers=headers, json={"occupancy": 10})
        second = await client.get("/resolve", params={"slug": "promo"})
        assert second.status_code == 503

        stats = (await client.get(f"/v1/links/{link['id']}/stats", headers=headers)).json()
        assert stats["total_clicks"] == 1
        assert stats["allocated"] == 1
        assert stats["exhausted"] == 1
        assert stats["candidates"] == [{"candidate_id": g2["id"], "display_name": "Grupo 2", "allocations": 1}]

    @pytest.mark.asyncio
    async def test_pause_and_activate(self, admin):
        client, headers = admin
        g1 = await _candidate(client, headers, "Grupo 1", capacity=5, ref="INV1")
        link = (await client.post("/v1/links", headers=headers, json={
            "slug": "promo", "candidates": [{"candidate_id": g1["id"]}],
        })).json()

        await client.patch(f"/v1/links/{link['id']}/pause", headers=headers)
        assert (await client.get("/resolve", params={"slug": "promo"})).status_code == 404

        await client.patch(f"/v1/links/{link['id']}/activate", headers=headers)
        assert (await client.get("/resolve", params={"slug": "promo"})).status_code == 200

    @pytest.mark.asyncio
    async def test_reorder_candidates(self, admin):
        client, headers = admin
        g1 = await _candidate(client, headers, "Grupo 1", capacity=5, ref="INV1")
        g2 = await _candidate(client, headers, "Grupo 2", capacity=5, ref="INV2")
        link = (await client.post("/v1/links", headers=headers, json={
            "slug": "promo", "candidates": [{"candidate_id": g1["id"]}, {"candidate_id": g2["id"]}],
        })).json()

        response = await client.put(f"/v1/links/{link['id']}/candidates", headers=headers, json={
            "candidates": [{"candidate_id": g2["id"]}, {"candidate_id": g1["id"]}],
        })
        assert response.status_code == 200

        resolved = (await client.get("/resolve", params={"slug": "promo"})).json()
        assert resolved["candidateId"] == g2["id"]

    @pytest.mark.asyncio
    async def test_links_list_shows_clicks(self, admin):
        client, headers = admin
        g1 = await _candidate(client, headers, "Grupo 1", capacity=5, ref="INV1")
        await client.post("/v1/links", headers=headers, json={
            "slug": "promo", "candidates": [{"candidate_id": g1["id"]}],
        })
        await client.get("/r/promo", follow_redirects=False)
        await client.get("/r/promo", follow_redirects=False)

        links = (await client.get("/v1/links", headers=headers)).json()
        assert links[0]["total_clicks"] == 2


class TestBootstrap:
    @pytest.mark.asyncio
    async def test_bootstrap_issues_key_once(self, db_client):
        first = await db_client.post("/admin/bootstrap", json={"org_name": "New Org", "setup_key": "test-setup-key"})
        assert first.status_code == 200
        key = first.json()["secret_key"]
        assert key.startswith("sl_sec_")

        second = await db_client.post("/admin/bootstrap", json={"org_name": "New Org", "setup_key": "test-setup-key"})
        assert "secret_key" not in second.json()

        assert (await db_client.get("/v1/links", headers={"X-API-Key": key})).status_code == 200

    @pytest.mark.asyncio
    async def test_bootstrap_wrong_setup_key(self, db_client):
        response = await db_client.post("/admin/bootstrap", json={"org_name": "X", "setup_key": "wrong"})
        assert response.status_code == 403
