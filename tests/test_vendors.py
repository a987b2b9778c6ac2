import jwt
import pytest

import database
import users
import vendors
from conftest import VENDOR, bearer
from schemas import VendorProfile


def _vendor(register, **overrides):
    data = register(**overrides)
    return data["accessToken"], data["vendor"]["id"]


# Upsert and promotion


def test_upsert_promotes_user_and_reissues_token(client, phone_login):
    login = phone_login(role="user")
    token = login["accessToken"]

    resp = client.post("/api/vendors/profile", json={"businessName": "Lens & Light", "city": "Goa"}, headers=bearer(token))
    assert resp.status_code == 200
    body = resp.json()
    assert body["businessName"] == "Lens & Light"
    assert body["user"]["role"] == "vendor"
    assert body["accessToken"]
    claims = jwt.decode(body["accessToken"], "test-secret", algorithms=["HS256"])
    assert claims["role"] == "vendor"

    again = client.post("/api/vendors/profile", json={"description": "Weddings"}, headers=bearer(body["accessToken"]))
    assert again.status_code == 200
    assert again.json()["accessToken"] is None
    assert again.json()["description"] == "Weddings"
    assert again.json()["businessName"] == "Lens & Light"


def test_upsert_updates_principal_fields_first(client, register, mongo):
    token, vendor_id = _vendor(register)
    resp = client.post(
        "/api/vendors/profile",
        json={"firstName": "Meera", "email": "Meera@Example.com", "gstNumber": "27ABCDE1234F1Z5"},
        headers=bearer(token),
    )
    assert resp.status_code == 200
    assert resp.json()["gstNumber"] == "27ABCDE1234F1Z5"
    stored = users.find_by_id(vendor_id)
    assert stored["first_name"] == "Meera"
    assert stored["email"] == "meera@example.com"
    assert mongo["vendor_profiles"].count_documents({}) == 1


def test_upsert_null_clears_optional_fields(client, register, mongo):
    token, vendor_id = _vendor(register)
    client.post("/api/vendors/profile", json={"gstNumber": "27ABCDE1234F1Z5", "landmark": "Near the fort"}, headers=bearer(token))

    resp = client.post(
        "/api/vendors/profile",
        json={"gstNumber": None, "landmark": None, "businessType": None, "serviceCategories": None},
        headers=bearer(token),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["gstNumber"] is None and body["landmark"] is None
    assert body["businessType"] == "individual"
    assert body["serviceCategories"] == ["Photography"]
    assert body["city"] == "Pune"


def test_upsert_email_conflict(client, register):
    register()
    token, _ = _vendor(register, email="second@example.com", phone="9000000002")
    resp = client.post("/api/vendors/profile", json={"email": VENDOR["email"]}, headers=bearer(token))
    assert resp.status_code == 409


def test_concurrent_create_falls_back_to_update(mongo, monkeypatch):
    real_create = database.create_document

    def racing_create(collection_name, data):
        # another request inserts the same user's profile first
        real_create(collection_name, VendorProfile(user_id="owner-1", business_name="First"))
        return real_create(collection_name, data)

    monkeypatch.setattr(database, "create_document", racing_create)
    assert vendors._upsert_profile("owner-1", {"business_name": "Second"}) is False
    assert mongo["vendor_profiles"].count_documents({}) == 1
    assert mongo["vendor_profiles"].find_one()["business_name"] == "Second"


def test_upsert_rejects_bad_business_type(client, register):
    token, _ = _vendor(register)
    resp = client.post("/api/vendors/profile", json={"businessType": "cooperative"}, headers=bearer(token))
    assert resp.status_code == 422


def test_get_profile_requires_vendor_role(client, phone_login):
    token = phone_login(role="user")["accessToken"]
    resp = client.get("/api/vendors/profile", headers=bearer(token))
    assert resp.status_code == 403
    assert resp.json()["statusCode"] == 403


def test_vendor_without_profile_gets_404(client, phone_login):
    token = phone_login(role="vendor")["accessToken"]
    assert client.get("/api/vendors/profile", headers=bearer(token)).status_code == 404


# Public read path


def test_public_listing_requires_name_city_and_verification(client, register, mongo):
    complete_token, complete_id = _vendor(register)
    no_city_token, _ = _vendor(register, email="b@example.com", phone="9000000003")
    no_name_token, _ = _vendor(register, email="c@example.com", phone="9000000004")
    hidden_token, hidden_id = _vendor(register, email="d@example.com", phone="9000000005")

    client.post("/api/vendors/profile", json={"city": ""}, headers=bearer(no_city_token))
    client.post("/api/vendors/profile", json={"businessName": ""}, headers=bearer(no_name_token))
    users.soft_delete_user(hidden_id)

    resp = client.get("/api/vendors/public")
    assert resp.status_code == 200
    listed = resp.json()
    assert [v["user"]["id"] for v in listed] == [complete_id]
    assert listed[0]["businessName"] == "Asha Studios"
    assert "phone" not in listed[0]["user"]


def test_public_profile_by_id(client, register, mongo):
    token, vendor_id = _vendor(register)
    profile_id = str(mongo["vendor_profiles"].find_one({"user_id": vendor_id})["_id"])

    resp = client.get(f"/api/vendors/public/{profile_id}")
    assert resp.status_code == 200
    assert resp.json()["id"] == profile_id

    users.soft_delete_user(vendor_id)
    assert client.get(f"/api/vendors/public/{profile_id}").status_code == 404
    assert client.get("/api/vendors/public/not-an-id").status_code == 404
    assert client.get("/api/vendors/public/5f1d7f8e9b1e8a3b2c4d5e6f").status_code == 404


# Packages


def test_package_lifecycle(client, register, uploads):
    token, _ = _vendor(register)
    resp = client.post(
        "/api/vendors/packages",
        data={"name": "Gold", "description": "Full day", "price": "1499.999", "features": "Album, Drone ,Video"},
        files=[("images", ("a.jpg", b"jpeg-bytes", "image/jpeg"))],
        headers=bearer(token),
    )
    assert resp.status_code == 201, resp.text
    package = resp.json()
    assert package["features"] == ["Album", "Drone", "Video"]
    assert package["price"] == 1500.0
    assert len(package["images"]) == 1 and package["images"][0].startswith("https://cdn.test/packages/")

    resp = client.patch(
        f"/api/vendors/packages/{package['id']}",
        data={"price": "999", "existingImages": package["images"]},
        files=[("images", ("b.jpg", b"more-bytes", "image/jpeg"))],
        headers=bearer(token),
    )
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["price"] == 999.0
    assert updated["name"] == "Gold"
    assert len(updated["images"]) == 2

    listed = client.get("/api/vendors/packages", headers=bearer(token)).json()
    assert [p["id"] for p in listed] == [package["id"]]

    assert client.delete(f"/api/vendors/packages/{package['id']}", headers=bearer(token)).status_code == 200
    assert client.get("/api/vendors/packages", headers=bearer(token)).json() == []


def test_patch_without_images_keeps_them(client, register, uploads):
    token, _ = _vendor(register)
    package = client.post(
        "/api/vendors/packages",
        data={"name": "Silver", "price": "10"},
        files=[("images", ("a.jpg", b"x", "image/jpeg"))],
        headers=bearer(token),
    ).json()
    updated = client.patch(f"/api/vendors/packages/{package['id']}", data={"tier": "Basic"}, headers=bearer(token)).json()
    assert updated["images"] == package["images"]
    assert updated["tier"] == "Basic"


def test_negative_price_rejected(client, register):
    token, _ = _vendor(register)
    resp = client.post("/api/vendors/packages", data={"name": "Bad", "price": "-1"}, headers=bearer(token))
    assert resp.status_code == 422


def test_too_many_images(client, register, uploads):
    token, _ = _vendor(register)
    files = [("images", (f"{i}.jpg", b"x", "image/jpeg")) for i in range(6)]
    resp = client.post("/api/vendors/packages", data={"name": "Big", "price": "1"}, files=files, headers=bearer(token))
    assert resp.status_code == 400
    assert uploads == []


def test_other_vendors_package_is_not_found(client, register):
    owner_token, _ = _vendor(register)
    other_token, _ = _vendor(register, email="o@example.com", phone="9000000006")
    package = client.post("/api/vendors/packages", data={"name": "Mine", "price": "5"}, headers=bearer(owner_token)).json()

    patch = client.patch(f"/api/vendors/packages/{package['id']}", data={"price": "1"}, headers=bearer(other_token))
    delete = client.delete(f"/api/vendors/packages/{package['id']}", headers=bearer(other_token))
    missing = client.delete("/api/vendors/packages/5f1d7f8e9b1e8a3b2c4d5e6f", headers=bearer(owner_token))
    assert patch.status_code == delete.status_code == missing.status_code == 404
    assert patch.json()["message"] == missing.json()["message"]


def test_foreign_package_patch_stores_nothing(client, register, uploads):
    owner_token, _ = _vendor(register)
    other_token, _ = _vendor(register, email="o@example.com", phone="9000000006")
    package = client.post("/api/vendors/packages", data={"name": "Mine", "price": "5"}, headers=bearer(owner_token)).json()

    resp = client.patch(
        f"/api/vendors/packages/{package['id']}",
        files=[("images", ("a.jpg", b"x", "image/jpeg"))],
        headers=bearer(other_token),
    )
    assert resp.status_code == 404
    assert uploads == []


def test_kept_images_must_belong_to_the_package(client, register, uploads):
    token, _ = _vendor(register)
    package = client.post(
        "/api/vendors/packages",
        data={"name": "Gold", "price": "10"},
        files=[("images", ("a.jpg", b"x", "image/jpeg"))],
        headers=bearer(token),
    ).json()
    resp = client.patch(
        f"/api/vendors/packages/{package['id']}",
        data={"existingImages": package["images"] + ["https://elsewhere.test/stolen.jpg"]},
        headers=bearer(token),
    )
    assert resp.json()["images"] == package["images"]


def test_kept_and_new_images_share_the_cap(client, register, uploads):
    token, _ = _vendor(register)
    package = client.post(
        "/api/vendors/packages",
        data={"name": "Gold", "price": "10"},
        files=[("images", (f"{i}.jpg", b"x", "image/jpeg")) for i in range(4)],
        headers=bearer(token),
    ).json()
    before = list(uploads)

    resp = client.patch(
        f"/api/vendors/packages/{package['id']}",
        files=[("images", (f"n{i}.jpg", b"x", "image/jpeg")) for i in range(2)],
        headers=bearer(token),
    )
    assert resp.status_code == 400
    assert uploads == before

    resp = client.patch(
        f"/api/vendors/packages/{package['id']}",
        data={"existingImages": package["images"][:3]},
        files=[("images", (f"n{i}.jpg", b"x", "image/jpeg")) for i in range(2)],
        headers=bearer(token),
    )
    assert resp.status_code == 200
    assert len(resp.json()["images"]) == 5
    assert resp.json()["images"][:3] == package["images"][:3]


@pytest.mark.parametrize(
    "raw, expected",
    [(["a, b", "c"], ["a", "b", "c"]), ("solo", ["solo"]), (None, []), ([" , "], [])],
)
def test_normalize_features(raw, expected):
    assert vendors.normalize_features(raw) == expected


# Media


def test_logo_and_banner(client, register, uploads):
    token, _ = _vendor(register)
    logo = client.post("/api/vendors/upload-logo", files={"file": ("logo.png", b"png", "image/png")}, headers=bearer(token))
    banner = client.post("/api/vendors/upload-banner", files={"file": ("b.png", b"png", "image/png")}, headers=bearer(token))
    assert logo.status_code == banner.status_code == 200
    assert banner.json()["logoUrl"].startswith("https://cdn.test/logos/")
    assert banner.json()["bannerUrl"].startswith("https://cdn.test/banners/")


def test_upload_without_file_is_400(client, register):
    token, _ = _vendor(register)
    resp = client.post("/api/vendors/upload-logo", headers=bearer(token))
    assert resp.status_code == 400
    assert resp.json()["message"] == "File is required"


@pytest.mark.parametrize("route", ["/api/vendors/upload-logo", "/api/vendors/upload-banner", "/api/vendors/gallery"])
def test_media_without_profile_stores_nothing(client, phone_login, uploads, route):
    token = phone_login(role="vendor")["accessToken"]
    resp = client.post(route, files={"file": ("x.png", b"png", "image/png")}, headers=bearer(token))
    assert resp.status_code == 404
    assert uploads == []


def test_gallery_items(client, register, uploads):
    token, _ = _vendor(register)
    other_token, _ = _vendor(register, email="g@example.com", phone="9000000007")
    image = client.post("/api/vendors/gallery", files={"file": ("p.jpg", b"x", "image/jpeg")}, headers=bearer(token))
    video = client.post("/api/vendors/gallery", files={"file": ("v.mp4", b"x", "video/mp4")}, headers=bearer(token))
    assert image.json()["type"] == "image"
    assert video.json()["type"] == "video"

    item_id = image.json()["id"]
    assert client.delete(f"/api/vendors/gallery/{item_id}", headers=bearer(other_token)).status_code == 404
    assert client.delete(f"/api/vendors/gallery/{item_id}", headers=bearer(token)).status_code == 200
    gallery = client.get("/api/vendors/profile", headers=bearer(token)).json()["gallery"]
    assert [g["id"] for g in gallery] == [video.json()["id"]]


def test_storage_failure_surfaces_as_502(client, register, monkeypatch):
    import storage
    from errors import StorageError

    def broken(*args, **kwargs):
        raise StorageError("File upload failed with status 500")

    monkeypatch.setattr(storage, "upload_file", broken)
    token, _ = _vendor(register)
    resp = client.post("/api/vendors/upload-logo", files={"file": ("logo.png", b"png", "image/png")}, headers=bearer(token))
    assert resp.status_code == 502


# Cascades


def test_delete_profile_cascades(client, register, phone_login, uploads, mongo):
    token, vendor_id = _vendor(register)
    client.post("/api/vendors/packages", data={"name": "P", "price": "1"}, headers=bearer(token))
    client.post("/api/vendors/gallery", files={"file": ("p.jpg", b"x", "image/jpeg")}, headers=bearer(token))
    profile_id = str(mongo["vendor_profiles"].find_one({"user_id": vendor_id})["_id"])
    user_token = phone_login(role="user")["accessToken"]
    client.post(f"/api/vendors/{profile_id}/save", headers=bearer(user_token))

    assert client.delete("/api/vendors/profile", headers=bearer(token)).status_code == 200
    for name in ("vendor_profiles", "vendor_packages", "vendor_gallery", "saved_vendors"):
        assert mongo[name].count_documents({}) == 0, name
