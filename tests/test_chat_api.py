# tests/test_chat_api.py
from httpx import AsyncClient

QUESTION = "Which shots and booster vaccination does my pet need?"


async def test_owner_and_vet_exchange_messages(client: AsyncClient, register_owner, register_primary_vet, approved_pet):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)

    sent = await client.post("/api/chat/send", json={"petId": pet["id"], "content": " Is he eating enough? "}, headers=owner["headers"])
    assert sent.status_code == 201
    assert sent.json()["chat"]["senderType"] == "Owner"
    assert sent.json()["chat"]["content"] == "Is he eating enough?"

    reply = await client.post("/api/chat/send", json={"petId": pet["id"], "content": "Yes, looks fine."}, headers=vet["headers"])
    assert reply.json()["chat"]["senderType"] == "Vet"
    assert reply.json()["chat"]["senderId"] == vet["id"]

    history = await client.get(f"/api/chat/history/{pet['id']}", headers=owner["headers"])
    assert history.json()["pagination"]["total"] == 2
    assert [m["senderType"] for m in history.json()["messages"]] == ["Owner", "Vet"]

    latest = await client.get(f"/api/chat/latest/{pet['id']}", headers=vet["headers"])
    assert latest.json()["chat"]["content"] == "Yes, looks fine."


async def test_history_before_counts_only_older_messages(client: AsyncClient, register_owner, register_primary_vet, approved_pet):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    for content in ("one", "two", "three"):
        await client.post("/api/chat/send", json={"petId": pet["id"], "content": content}, headers=owner["headers"])

    url = f"/api/chat/history/{pet['id']}"
    latest = (await client.get(url, headers=owner["headers"])).json()["messages"][-1]
    assert latest["content"] == "three"

    older = await client.get(url, params={"before": latest["timestamp"]}, headers=owner["headers"])
    messages = older.json()["messages"]
    assert "three" not in [m["content"] for m in messages]
    assert older.json()["pagination"]["total"] == len(messages)
    assert len(messages) < 3


async def test_user_chats_lists_latest_per_pet(client: AsyncClient, register_owner, register_primary_vet, approved_pet):
    owner = await register_owner()
    vet = await register_primary_vet()
    pet = await approved_pet(owner, vet)
    await client.post("/api/chat/send", json={"petId": pet["id"], "content": "first"}, headers=owner["headers"])
    await client.post("/api/chat/send", json={"petId": pet["id"], "content": "second"}, headers=owner["headers"])

    for account in (owner, vet):
        response = await client.get("/api/chat/user-chats", headers=account["headers"])
        chats = response.json()["chats"]
        assert len(chats) == 1
        assert chats[0]["petId"] == pet["id"]
        assert chats[0]["petName"] == pet["name"]


async def test_user_chats_follow_clinic_membership(client: AsyncClient, register_owner, register_primary_vet, add_clinic_vet, approved_pet):
    owner = await register_owner()
    primary = await register_primary_vet()
    normal = await add_clinic_vet(primary)
    pet = await approved_pet(owner, primary)

    sent = await client.post("/api/chat/send", json={"petId": pet["id"], "content": "Checking in"}, headers=normal["headers"])
    assert sent.status_code == 201

    deleted = await client.delete(f"/api/clinics/{primary['clinic_id']}", headers=primary["headers"])
    assert deleted.status_code == 200
    follow_up = await client.post("/api/chat/send", json={"petId": pet["id"], "content": "private follow-up"}, headers=owner["headers"])
    assert follow_up.status_code == 201

    assert (await client.get(f"/api/chat/history/{pet['id']}", headers=normal["headers"])).status_code == 403
    chats = await client.get("/api/chat/user-chats", headers=normal["headers"])
    assert chats.json()["chats"] == []


async def test_foreign_accounts_cannot_chat(client: AsyncClient, register_owner, register_primary_vet, approved_pet):
    owner = await register_owner()
    stranger = await register_owner()
    vet = await register_primary_vet()
    outsider = await register_primary_vet()
    pet = await approved_pet(owner, vet)

    for account in (stranger, outsider):
        assert (await client.post("/api/chat/send", json={"petId": pet["id"], "content": "hi"}, headers=account["headers"])).status_code == 403
        assert (await client.get(f"/api/chat/history/{pet['id']}", headers=account["headers"])).status_code == 403

    outsider_chats = await client.get("/api/chat/user-chats", headers=outsider["headers"])
    assert outsider_chats.json()["chats"] == []


async def test_deleted_pet_conversation_is_closed(client: AsyncClient, register_owner, create_pet):
    owner = await register_owner()
    pet = await create_pet(owner)
    await client.delete(f"/api/pets/{pet['id']}", headers=owner["headers"])

    response = await client.post("/api/chat/send", json={"petId": pet["id"], "content": "hello"}, headers=owner["headers"])
    assert response.status_code == 403


async def test_assistant_uses_pet_species(client: AsyncClient, register_owner, create_pet):
    owner = await register_owner()
    cat = await create_pet(owner, name="Milo", species="Cat")

    generic = await client.post("/api/chat/assistant", json={"question": QUESTION}, headers=owner["headers"])
    assert generic.status_code == 200
    assert generic.json()["answer"]["matchedTopic"] == "Puppy vaccination schedule"

    tailored = await client.post("/api/chat/assistant", json={"question": QUESTION, "petId": cat["id"]}, headers=owner["headers"])
    assert tailored.json()["answer"]["matchedTopic"] == "Kitten vaccination schedule"


async def test_assistant_falls_back_when_unsure(client: AsyncClient, register_owner):
    owner = await register_owner()
    response = await client.post("/api/chat/assistant", json={"question": "zzzz qqqq"}, headers=owner["headers"])
    answer = response.json()["answer"]
    assert answer["matchedTopic"] is None
    assert "veterinarian" in answer["answer"]


async def test_reload_is_primary_only(client: AsyncClient, register_owner, register_primary_vet, add_clinic_vet):
    owner = await register_owner()
    primary = await register_primary_vet()
    normal = await add_clinic_vet(primary)

    assert (await client.post("/api/chat/assistant/reload", headers=owner["headers"])).status_code == 403
    assert (await client.post("/api/chat/assistant/reload", headers=normal["headers"])).status_code == 403

    response = await client.post("/api/chat/assistant/reload", headers=primary["headers"])
    assert response.status_code == 200
    assert response.json()["entries"] > 0
    assert response.json()["version"] == "2024.1"
