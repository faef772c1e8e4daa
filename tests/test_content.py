import pytest


def test_bank_accounts_crud(client, admin_headers):
    first = client.post(
        "/api/bank-accounts",
        json={"bankName": "Хаан банк", "accountNumber": "5000123456", "accountName": "Цаас ХХК", "displayOrder": 2},
        headers=admin_headers,
    )
    assert first.status_code == 201
    second = client.post(
        "/api/bank-accounts",
        json={"bankName": "Голомт банк", "accountNumber": "1105001234", "accountName": "Цаас ХХК", "displayOrder": 1},
        headers=admin_headers,
    )
    hidden = client.post(
        "/api/bank-accounts",
        json={"bankName": "ХХБ", "accountNumber": "499000111", "accountName": "Цаас ХХК", "isActive": False},
        headers=admin_headers,
    )

    active = client.get("/api/bank-accounts/active").json()
    assert [a["bank_name"] for a in active] == ["Голомт банк", "Хаан банк"]
    assert active[0]["color_scheme"] == "blue"

    everything = client.get("/api/bank-accounts", headers=admin_headers).json()
    assert len(everything) == 3

    updated = client.put(
        f"/api/bank-accounts/{hidden.json()['id']}", json={"isActive": True}, headers=admin_headers
    )
    assert updated.json()["is_active"] is True
    assert updated.json()["bank_name"] == "ХХБ"

    assert client.delete(f"/api/bank-accounts/{second.json()['id']}", headers=admin_headers).status_code == 204
    missing = client.get(f"/api/bank-accounts/{second.json()['id']}", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["message"] == f"Bank account with id={second.json()['id']} was not found."


@pytest.mark.parametrize("path", ["/api/bank-accounts", "/api/banners", "/api/partners"])
def test_content_admin_requires_role(client, user_headers, path):
    assert client.get(path).status_code == 401
    assert client.get(path, headers=user_headers).status_code == 403
    assert client.get(f"{path}/active").status_code == 200


def test_banner_requires_uploaded_image(client, admin_headers):
    rejected = client.post("/api/banners", json={"image": "data:image/png;base64,AAA"}, headers=admin_headers)
    assert rejected.status_code == 400
    assert rejected.json()["message"] == "Image must be an uploaded image URL"

    banner = client.post(
        "/api/banners",
        json={"image": "https://cdn.tsaas.mn/banners/spring.jpg", "text": "Хаврын хямдрал", "order": 1},
        headers=admin_headers,
    )
    assert banner.status_code == 201
    assert client.get("/api/banners/active").json()[0]["text"] == "Хаврын хямдрал"


def test_partners_ordering(client, admin_headers):
    for name, order in (("Monos", 2), ("Nomin", 1)):
        client.post(
            "/api/partners",
            json={"name": name, "logo": f"https://cdn.tsaas.mn/{name}.png", "order": order},
            headers=admin_headers,
        )
    assert [p["name"] for p in client.get("/api/partners/active").json()] == ["Nomin", "Monos"]


def test_footer_defaults_and_upsert(client, admin_headers):
    default = client.get("/api/footer").json()
    assert default["id"] is None
    assert default["company_name"] == "Tsaas.mn"
    assert default["social_links"] == []

    created = client.put(
        "/api/footer",
        json={"phone": "77001234", "socialLinks": [{"name": "facebook", "url": "https://fb.com/tsaas"}]},
        headers=admin_headers,
    )
    assert created.status_code == 201
    assert created.json()["company_name"] == "Tsaas.mn"

    updated = client.put("/api/footer", json={"email": "info@tsaas.mn"}, headers=admin_headers)
    assert updated.status_code == 200
    body = updated.json()
    assert (body["id"], body["phone"], body["email"]) == (created.json()["id"], "77001234", "info@tsaas.mn")
    assert body["social_links"][0]["name"] == "facebook"


def test_gift_settings_defaults_inactive(client):
    assert client.get("/api/gift-settings").json() == {
        "id": None, "threshold_type": "amount", "threshold_value": 100000, "is_active": False,
    }
    eligibility = client.post("/api/gift-settings/check-eligibility", json={"cartTotal": 500000}).json()
    assert eligibility["eligible"] is False


def test_gift_eligibility_by_amount(client, admin_headers):
    saved = client.put(
        "/api/gift-settings", json={"thresholdType": "amount", "thresholdValue": 100000}, headers=admin_headers
    )
    assert saved.status_code == 200
    assert saved.json()["is_active"] is True

    short = client.post("/api/gift-settings/check-eligibility", json={"cartTotal": 80000}).json()
    assert (short["eligible"], short["remaining"]) == (False, 20000)

    enough = client.post("/api/gift-settings/check-eligibility", json={"cartTotal": 120000}).json()
    assert (enough["eligible"], enough["remaining"]) == (True, 0)


def test_gift_eligibility_by_count(client, admin_headers):
    client.put("/api/gift-settings", json={"thresholdType": "count", "thresholdValue": 3}, headers=admin_headers)
    result = client.post(
        "/api/gift-settings/check-eligibility", json={"cartTotal": 1000, "itemCount": 3}
    ).json()
    assert result["eligible"] is True
    assert result["threshold_type"] == "count"


def test_gift_settings_validation(client, admin_headers):
    bad_type = client.put(
        "/api/gift-settings", json={"thresholdType": "weight", "thresholdValue": 1}, headers=admin_headers
    )
    assert bad_type.status_code == 400

    negative = client.put(
        "/api/gift-settings", json={"thresholdType": "amount", "thresholdValue": -1}, headers=admin_headers
    )
    assert negative.json()["message"] == "Threshold value must be a positive number"

    missing = client.post("/api/gift-settings/check-eligibility", json={})
    assert missing.status_code == 400
    assert missing.json()["message"] == "cart_total must be provided"
