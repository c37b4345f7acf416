from conftest import make_course, register


def test_add_and_view_cart(client, teacher, student):
    _, teacher_headers = teacher
    _, headers = student
    python = make_course(client, teacher_headers, price=49.0)
    art = make_course(client, teacher_headers, title="Watercolor", price=20.5)

    assert client.post("/cart", json={"course_id": python["course_id"]}, headers=headers).status_code == 201
    assert client.post("/cart", json={"course_id": art["course_id"]}, headers=headers).status_code == 201

    cart = client.get("/cart", headers=headers).json()
    assert cart["count"] == 2
    assert cart["total_amount"] == 69.5
    assert {i["course"]["title"] for i in cart["items"]} == {"Python Basics", "Watercolor"}


def test_duplicate_cart_item_conflicts(client, teacher, student):
    _, teacher_headers = teacher
    _, headers = student
    course = make_course(client, teacher_headers)

    client.post("/cart", json={"course_id": course["course_id"]}, headers=headers)
    resp = client.post("/cart", json={"course_id": course["course_id"]}, headers=headers)
    assert resp.status_code == 409


def test_cannot_add_enrolled_course(client, teacher, student):
    _, teacher_headers = teacher
    _, headers = student
    course = make_course(client, teacher_headers)
    client.post("/enrollments", json={"course_id": course["course_id"]}, headers=headers)

    resp = client.post("/cart", json={"course_id": course["course_id"]}, headers=headers)
    assert resp.status_code == 400


def test_remove_item_only_from_own_cart(client, teacher, student):
    _, teacher_headers = teacher
    _, headers = student
    _, other_headers = register(client, "Bob", "bob@example.com")
    course = make_course(client, teacher_headers)
    item = client.post("/cart", json={"course_id": course["course_id"]}, headers=headers).json()

    assert client.delete(f"/cart/{item['item_id']}", headers=other_headers).status_code == 403
    assert client.delete(f"/cart/{item['item_id']}", headers=headers).status_code == 200
    assert client.delete(f"/cart/{item['item_id']}", headers=headers).status_code == 404


def test_checkout_creates_order_and_enrolls(client, teacher, student):
    _, teacher_headers = teacher
    student_user, headers = student
    python = make_course(client, teacher_headers, price=49.0)
    art = make_course(client, teacher_headers, title="Watercolor", price=20.5)
    client.post("/cart", json={"course_id": python["course_id"]}, headers=headers)
    client.post("/cart", json={"course_id": art["course_id"]}, headers=headers)

    resp = client.post("/cart/checkout", json={"payment_method": "card"}, headers=headers)
    assert resp.status_code == 201
    body = resp.json()

    order = body["order"]
    assert order["order_id"].startswith("ORD_")
    assert order["user_id"] == student_user["user_id"]
    assert order["total_amount"] == 69.5
    assert order["status"] == "completed"
    assert sorted(order["courses"]) == sorted([python["course_id"], art["course_id"]])
    assert len(body["enrollments"]) == 2

    assert client.get("/cart", headers=headers).json()["count"] == 0
    assert client.get("/enrollments/me", headers=headers).json()["count"] == 2

    orders = client.get("/orders", headers=headers).json()
    assert [o["order_id"] for o in orders] == [order["order_id"]]


def test_checkout_empty_cart_is_rejected(client, student):
    _, headers = student
    resp = client.post("/cart/checkout", json={"payment_method": "card"}, headers=headers)
    assert resp.status_code == 400


def test_orders_are_private(client, teacher, student):
    _, teacher_headers = teacher
    _, headers = student
    _, other_headers = register(client, "Bob", "bob@example.com")
    course = make_course(client, teacher_headers)
    client.post("/cart", json={"course_id": course["course_id"]}, headers=headers)
    order_id = client.post("/cart/checkout", json={"payment_method": "card"}, headers=headers).json()["order"]["order_id"]

    assert client.get(f"/orders/{order_id}", headers=other_headers).status_code == 403
    assert client.get(f"/orders/{order_id}", headers=headers).status_code == 200
    assert client.get("/orders/ORD_NOPE", headers=headers).status_code == 404
