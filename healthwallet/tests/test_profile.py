from datetime import date, timedelta


def test_profile_created_on_first_read(client):
    r = client.get("/api/profile/")
    assert r.status_code == 200
    body = r.json()
    assert body["user_id"] == "user-1"
    assert body["dietary_preference"] == "omnivore"
    assert body["age"] is None


def test_profile_update_is_partial(client):
    r = client.put("/api/profile/", json={"date_of_birth": "1980-01-01", "sex": "Female"})
    assert r.status_code == 200
    body = r.json()
    assert body["sex"] == "female"
    assert body["age"] == date.today().year - 1980

    r2 = client.put("/api/profile/", json={"dietary_preference": "vegan"})
    body2 = r2.json()
    assert body2["dietary_preference"] == "vegan"
    assert body2["date_of_birth"] == "1980-01-01"


def test_profile_rejects_bad_values(client):
    assert client.put("/api/profile/", json={"sex": "robot"}).status_code == 422
    assert client.put("/api/profile/", json={"dietary_preference": "carnivore"}).status_code == 422
    future = (date.today() + timedelta(days=2)).isoformat()
    r = client.put("/api/profile/", json={"date_of_birth": future})
    assert r.status_code == 422
    assert r.json()["code"] == "UNPROCESSABLE_ENTITY"
