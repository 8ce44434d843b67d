from fastapi.testclient import TestClient

from marketplace.core.chat_responder import LLMResponder, RuleBasedResponder
from marketplace.core.verification import LLMVerifier, RuleBasedVerifier
from marketplace.main import create_app
from marketplace.schemas import MessageCreate
from marketplace.session_store import SessionStore
from marketplace.storage import MemoryStore

from conftest import VALID_DESCRIPTION, StubLLMClient

PRODUCT = {
    "name": "Shelf Vision",
    "description": VALID_DESCRIPTION,
    "price": 250,
    "category": "computer-vision",
    "tags": ["vision", "retail"],
}


def _create_product(client, **overrides):
    response = client.post("/api/products", json={**PRODUCT, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


# ---------- HEALTH & AUTH ----------


def test_health_check_reports_backends(make_client):
    body = make_client().get("/").json()
    assert body["status"] == "running"
    assert body["verifier"] == "rules"
    assert body["chat"] == "rules"


def test_register_login_logout_cycle(register, make_client):
    client, user = register("alice")
    assert "password" not in user
    assert client.get("/api/user").json()["username"] == "alice"

    assert client.post("/api/logout").status_code == 204
    assert client.get("/api/user").status_code == 401

    other = make_client()
    assert other.post("/api/login", json={"username": "alice", "password": "wrong"}).status_code == 401
    response = other.post("/api/login", json={"username": "alice", "password": "s3cret-pass"})
    assert response.status_code == 200
    assert other.get("/api/user").json()["id"] == user["id"]


def test_duplicate_username_is_rejected(register, make_client):
    register("alice")
    response = make_client().post("/api/register", json={
        "username": "alice", "password": "x", "email": "new@aimarket.io",
    })
    assert response.status_code == 400
    assert "Username already exists" in response.json()["message"]


def test_protected_routes_require_a_session(make_client):
    client = make_client()
    assert client.post("/api/products", json=PRODUCT).status_code == 401
    assert client.get("/api/messages").status_code == 401
    assert client.get("/api/messages/conversations").status_code == 401
    assert client.get("/api/user").json() == {"message": "Authentication required"}


def test_update_profile_and_batch_lookup(register, make_client):
    alice, alice_user = register("alice")
    _, bob_user = register("bob")

    response = alice.patch("/api/user", json={"bio": "Builds vision models"})
    assert response.json()["bio"] == "Builds vision models"

    batch = make_client().get(f"/api/users/batch?ids={alice_user['id']},{bob_user['id']},99").json()
    assert [u["username"] for u in batch] == ["alice", "bob"]
    assert make_client().get("/api/users/batch?ids=a,b").status_code == 400
    assert make_client().get("/api/users/99").status_code == 404


def test_profile_update_rejects_null_email(register):
    alice, _ = register("alice")

    response = alice.patch("/api/user", json={"email": None})
    assert response.status_code == 400
    assert "email" in response.json()["message"]

    me = alice.get("/api/user")
    assert me.status_code == 200
    assert me.json()["email"] == "alice@aimarket.io"

    assert alice.patch("/api/user", json={"bio": None}).json()["bio"] is None


# ---------- WAITLIST ----------


def test_waitlist_rejects_duplicate_email_without_mutation(make_client, store):
    client = make_client()
    first = client.post("/api/waitlist", json={"email": "early@aimarket.io", "interest": "selling"})
    assert first.status_code == 201

    second = client.post("/api/waitlist", json={"email": "early@aimarket.io", "name": "Again"})
    assert second.status_code == 400
    assert "already registered" in second.json()["message"]

    third = client.post("/api/waitlist", json={"email": "late@aimarket.io"})
    assert third.json()["id"] == first.json()["id"] + 1


def test_invalid_body_is_a_400_with_field_message(make_client):
    response = make_client().post("/api/waitlist", json={"email": "not-an-email"})
    assert response.status_code == 400
    assert "email" in response.json()["message"]


# ---------- PRODUCTS ----------


def test_create_product_injects_seller_and_starts_pending(register, make_client):
    client, user = register("seller")

    product = _create_product(client, sellerId=999)

    assert product["sellerId"] == user["id"]
    assert product["verificationStatus"] == "pending"
    assert make_client().get(f"/api/products/{product['id']}").json()["name"] == "Shelf Vision"
    assert make_client().get("/api/products/999").status_code == 404


def test_product_listing_routes(register, make_client):
    client, user = register("seller")
    _create_product(client, featured=True)
    _create_product(client, category="nlp")

    public = make_client()
    assert len(public.get("/api/products").json()) == 2
    assert len(public.get("/api/products/featured").json()) == 1
    assert len(public.get("/api/products/category/nlp").json()) == 1
    assert len(public.get(f"/api/products/seller/{user['id']}").json()) == 2


def test_missing_required_product_field_is_400(register):
    client, _ = register("seller")
    response = client.post("/api/products", json={"name": "No price", "description": VALID_DESCRIPTION})
    assert response.status_code == 400


def test_only_owner_can_edit_or_delete_product(register):
    seller, _ = register("seller")
    other, _ = register("other")
    product = _create_product(seller)

    assert other.put(f"/api/products/{product['id']}", json={"price": 1}).status_code == 403
    assert other.delete(f"/api/products/{product['id']}").status_code == 403

    updated = seller.put(f"/api/products/{product['id']}", json={"price": 300})
    assert updated.json()["price"] == 300
    assert updated.json()["createdAt"] == product["createdAt"]

    assert seller.delete(f"/api/products/{product['id']}").status_code == 204
    assert seller.get(f"/api/products/{product['id']}").status_code == 404


def test_product_update_rejects_null_required_fields(register):
    seller, _ = register("seller")
    product = _create_product(seller)
    url = f"/api/products/{product['id']}"

    response = seller.put(url, json={"price": None, "name": None})
    assert response.status_code == 400

    stored = seller.get(url).json()
    assert (stored["name"], stored["price"]) == (product["name"], product["price"])

    verified = seller.post(f"{url}/verify", json={"automated": True})
    assert verified.status_code == 200
    assert verified.json()["verificationStatus"] == "approved"


# ---------- VERIFICATION ----------


def test_automated_verification_approves_valid_product(register):
    seller, _ = register("seller")
    product = _create_product(seller)

    response = seller.post(f"/api/products/{product['id']}/verify", json={"automated": True})

    assert response.status_code == 200
    body = response.json()
    assert body["verificationStatus"] == "approved"
    assert body["riskScore"] == 0
    assert body["verificationNotes"] == "Product meets all requirements for listing."


def test_automated_verification_rejects_bad_product(register):
    seller, _ = register("seller")
    product = _create_product(seller, price=0, description="Free money, guaranteed success!")

    body = seller.post(f"/api/products/{product['id']}/verify", json={"automated": True}).json()

    assert body["verificationStatus"] == "rejected"
    assert body["riskScore"] >= 30
    assert "free money" in body["verificationNotes"]


def test_strangers_cannot_verify_and_users_cannot_override(register):
    seller, _ = register("seller")
    other, _ = register("other")
    product = _create_product(seller)
    url = f"/api/products/{product['id']}/verify"

    assert other.post(url, json={"automated": True}).status_code == 403
    assert seller.post(url, json={"automated": False, "verificationStatus": "approved"}).status_code == 403


def test_admin_override_and_history(register, admin):
    seller, _ = register("seller")
    admin_client, admin_user = admin
    product = _create_product(seller)
    url = f"/api/products/{product['id']}/verify"

    seller.post(url, json={"automated": True})
    assert admin_client.post(url, json={"automated": False}).status_code == 400

    response = admin_client.post(url, json={
        "automated": False, "verificationStatus": "rejected", "verificationNotes": "Duplicate listing",
    })
    assert response.status_code == 200
    assert response.json()["verificationStatus"] == "rejected"
    assert response.json()["riskScore"] is None

    history = seller.get(f"/api/products/{product['id']}/verification-history").json()
    assert [(e["previousStatus"], e["status"], e["automated"]) for e in history] == [
        ("pending", "approved", True),
        ("approved", "rejected", False),
    ]
    assert history[1]["actorId"] == admin_user["id"]


def test_auto_verify_on_create(store):
    app = create_app(store=store, sessions=SessionStore(), verifier=RuleBasedVerifier(),
                     responder=RuleBasedResponder(), auto_verify=True)
    client = TestClient(app)
    client.post("/api/register", json={"username": "s", "password": "p", "email": "s@aimarket.io"})

    product = _create_product(client, price=-5)

    assert product["verificationStatus"] == "rejected"


def test_auto_verify_failure_keeps_product_pending(store, llm_unavailable):
    app = create_app(store=store, sessions=SessionStore(), verifier=LLMVerifier(llm_unavailable),
                     responder=RuleBasedResponder(), auto_verify=True)
    client = TestClient(app)
    client.post("/api/register", json={"username": "s", "password": "p", "email": "s@aimarket.io"})

    response = client.post("/api/products", json=PRODUCT)

    assert response.status_code == 201
    assert response.json()["verificationStatus"] == "pending"
    assert [p.id for p in store.get_products()] == [response.json()["id"]]
    assert store.get_verification_events(response.json()["id"]) == []


def test_llm_verification_failure_is_500_without_state_change(store, llm_unavailable):
    app = create_app(store=store, sessions=SessionStore(), verifier=LLMVerifier(llm_unavailable),
                     responder=RuleBasedResponder(), auto_verify=False)
    client = TestClient(app)
    client.post("/api/register", json={"username": "s", "password": "p", "email": "s@aimarket.io"})
    product = _create_product(client)

    response = client.post(f"/api/products/{product['id']}/verify", json={"automated": True})

    assert response.status_code == 500
    assert response.json() == {"message": "Language model service timed out"}
    assert store.get_product(product["id"]).verificationStatus == "pending"


# ---------- PROJECTS ----------


def test_project_lifecycle(register, make_client):
    owner, user = register("buyer")
    other, _ = register("other")

    response = owner.post("/api/projects", json={
        "title": "Invoice parser", "description": "Extract totals from PDFs",
        "requirements": "Python, 95% field accuracy", "minBudget": 500, "maxBudget": 1500,
    })
    assert response.status_code == 201
    project = response.json()
    assert project["status"] == "open"
    assert project["userId"] == user["id"]

    assert [p["id"] for p in owner.get("/api/projects/user").json()] == [project["id"]]
    assert make_client().get(f"/api/projects/{project['id']}").status_code == 200

    url = f"/api/projects/{project['id']}"
    assert other.put(url, json={"status": "cancelled"}).status_code == 403
    assert owner.put(url, json={"minBudget": 2000}).status_code == 400
    assert owner.put(url, json={"status": "in-progress"}).json()["status"] == "in-progress"


def test_project_budget_range_is_validated(register):
    owner, _ = register("buyer")
    response = owner.post("/api/projects", json={
        "title": "t", "description": "d", "requirements": "r", "minBudget": 10, "maxBudget": 5,
    })
    assert response.status_code == 400


def test_project_update_rejects_null_required_fields(register):
    owner, _ = register("buyer")
    project = owner.post("/api/projects", json={
        "title": "Invoice parser", "description": "Extract totals", "requirements": "Python",
        "maxBudget": 800,
    }).json()
    url = f"/api/projects/{project['id']}"

    assert owner.put(url, json={"title": None}).status_code == 400
    assert owner.put(url, json={"status": None}).status_code == 400
    assert owner.get(url).json()["title"] == "Invoice parser"

    assert owner.put(url, json={"maxBudget": None}).json()["maxBudget"] is None


# ---------- MESSAGES ----------


def test_messaging_flow(register):
    alice, alice_user = register("alice")
    bob, bob_user = register("bob")
    carol, carol_user = register("carol")

    for text in ("Hi Bob", "Is the model still available?"):
        assert alice.post("/api/messages", json={"content": text, "receiverId": bob_user["id"]}).status_code == 201
    bob.post("/api/messages", json={"content": "Yes it is", "receiverId": alice_user["id"]})
    carol.post("/api/messages", json={"content": "Hello from Carol", "receiverId": bob_user["id"]})

    inbox = bob.get("/api/messages").json()
    assert [m["content"] for m in inbox][0] == "Hello from Carol"

    summaries = bob.get("/api/messages/conversations").json()
    assert [s["counterpartId"] for s in summaries] == [carol_user["id"], alice_user["id"]]
    assert summaries[0]["counterpart"]["username"] == "carol"
    assert summaries[1]["unreadCount"] == 2
    assert summaries[1]["lastMessage"]["content"] == "Yes it is"

    thread = bob.get(f"/api/messages/conversation/{alice_user['id']}").json()
    assert [m["content"] for m in thread] == ["Hi Bob", "Is the model still available?", "Yes it is"]

    opened = bob.post(f"/api/messages/conversation/{alice_user['id']}/read").json()
    assert opened["marked"] == 2
    assert all(m["read"] for m in opened["messages"] if m["receiverId"] == bob_user["id"])

    # Alice's copy of Bob's reply is still unread for her
    alice_summary = alice.get("/api/messages/conversations").json()[0]
    assert alice_summary["unreadCount"] == 1

    summaries = bob.get("/api/messages/conversations").json()
    assert {s["counterpartId"]: s["unreadCount"] for s in summaries} == {
        carol_user["id"]: 1, alice_user["id"]: 0,
    }


def test_mark_read_is_receiver_only_and_idempotent(register):
    alice, _ = register("alice")
    bob, bob_user = register("bob")
    message = alice.post("/api/messages", json={"content": "ping", "receiverId": bob_user["id"]}).json()
    url = f"/api/messages/{message['id']}/read"

    assert alice.patch(url).status_code == 403
    assert bob.patch(url).json()["read"] is True
    again = bob.patch(url)
    assert again.status_code == 200
    assert again.json()["read"] is True
    assert bob.patch("/api/messages/999/read").status_code == 404


def test_message_to_unknown_user_is_404(register):
    alice, _ = register("alice")
    response = alice.post("/api/messages", json={"content": "hello?", "receiverId": 404})
    assert response.status_code == 404


def test_conversation_with_deleted_user_still_listed(register, store):
    alice, alice_user = register("alice")
    store.create_message(MessageCreate(content="from a ghost", receiverId=alice_user["id"]), sender_id=77)

    [summary] = alice.get("/api/messages/conversations").json()
    assert summary["counterpartId"] == 77
    assert summary["counterpart"] is None
    assert summary["unreadCount"] == 1


# ---------- NEWS ----------


def test_news_routes(admin, register):
    admin_client, _ = admin
    user_client, _ = register("reader")
    item = {"title": "Marketplace launch", "content": "We are live.", "category": "Announcements"}

    assert user_client.post("/api/news", json=item).status_code == 403
    created = admin_client.post("/api/news", json=item)
    assert created.status_code == 201

    assert user_client.get("/api/news").json()[0]["title"] == "Marketplace launch"
    assert user_client.get(f"/api/news/{created.json()['id']}").status_code == 200
    assert user_client.get("/api/news/999").status_code == 404


# ---------- CHAT ----------


def test_chat_rule_based(make_client):
    response = make_client().post("/api/chat", json={"message": "How do I sell a model?"})
    assert response.status_code == 200
    assert "sell" in response.json()["answer"].lower()


def test_chat_rejects_empty_message(make_client):
    assert make_client().post("/api/chat", json={"message": "   "}).status_code == 400


def test_chat_llm_backend_and_failure(store, llm_unavailable):
    working = create_app(store=store, sessions=SessionStore(), verifier=RuleBasedVerifier(),
                         responder=LLMResponder(StubLLMClient(reply="Happy to help!")))
    assert TestClient(working).post("/api/chat", json={"message": "hi"}).json() == {"answer": "Happy to help!"}

    broken = create_app(store=MemoryStore(), sessions=SessionStore(), verifier=RuleBasedVerifier(),
                        responder=LLMResponder(llm_unavailable))
    response = TestClient(broken).post("/api/chat", json={"message": "hi"})
    assert response.status_code == 500
    assert "timed out" in response.json()["message"]
