import os
from pathlib import Path

from PIL import Image

from conftest import ADMIN_TOKEN, USER_ID, jpeg_bytes, png_bytes

PUBLIC_PREFIX = "https://test.supabase.co/storage/v1/object/public/post-images/"


def _upload(client, headers, data=None, mime="image/png", alt_text="A red square", **form):
    files = {"file": ("Red Square.png", data if data is not None else png_bytes(), mime)}
    fields = {"alt_text": alt_text, **form} if alt_text is not None else form
    return client.post("/api/images/", files=files, data=fields, headers=headers)


def test_upload_image_stores_blob_and_row(client, db, user_headers):
    response = _upload(client, user_headers, title="Square")
    assert response.status_code == 201
    image = response.json()["image"]

    assert image["path"].startswith(f"{USER_ID}/")
    assert image["path"].endswith(".png")
    assert "red-square" in image["path"]
    assert image["public_url"] == PUBLIC_PREFIX + image["path"]
    assert image["alt_text"] == "A red square"
    assert image["title"] == "Square"
    assert "owner_id" not in image
    assert ("post-images", image["path"]) in db.storage.objects
    assert db.rows("images", owner_id=USER_ID)


def test_upload_validation(client, user_headers):
    response = _upload(client, user_headers, alt_text=None)
    assert response.status_code == 422
    assert response.json()["fields"]["alt_text"] == ["Alt text is required"]

    response = _upload(client, user_headers, data=b"plain text", mime="text/plain")
    assert response.status_code == 422
    assert "file" in response.json()["fields"]

    response = client.post("/api/images/", data={"alt_text": "no file"}, headers=user_headers)
    assert response.status_code == 422
    assert response.json()["fields"]["file"] == ["Image file is required"]


def test_upload_size_limits(client, user_headers):
    big = b"\x89PNG" + b"0" * (2 * 1024 * 1024 + 10)
    response = _upload(client, user_headers, data=big)
    assert response.status_code == 201
    body = response.json()
    assert body["warning"] is True
    assert "is large" in body["message"]
    assert body["image"]["file_size_bytes"] == len(big)

    too_big = b"0" * (8 * 1024 * 1024 + 1)
    response = _upload(client, user_headers, data=too_big)
    assert response.status_code == 413
    assert response.json() == {"error": "File too large. Maximum size is 8MB"}


def test_admin_token_upload_needs_owner(client, db):
    headers = {"X-Admin-Token": ADMIN_TOKEN}
    response = _upload(client, headers)
    assert response.status_code == 422
    assert "owner_id" in response.json()["fields"]

    response = _upload(client, headers, owner_id=USER_ID)
    assert response.status_code == 201
    assert response.json()["image"]["path"].startswith(f"{USER_ID}/")


def test_failed_insert_removes_uploaded_blob(client, db, user_headers):
    db.fail_tables.add("images")
    response = _upload(client, user_headers)
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to upload image"}
    assert db.storage.objects == {}


def test_record_metadata(client, db, user_headers):
    payload = {"path": f"{USER_ID}/2024/01/pic.webp", "mime_type": "image/webp", "file_size_bytes": 1200, "width": 10}
    response = client.post("/api/images/metadata", json=payload, headers=user_headers)
    assert response.status_code == 201
    assert response.json()["image"]["public_url"].endswith("pic.webp")

    response = client.post("/api/images/metadata", json={**payload, "mime_type": "image/bmp"}, headers=user_headers)
    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid MIME type")

    response = client.post("/api/images/metadata", json={**payload, "file_size_bytes": 0}, headers=user_headers)
    assert response.status_code == 422


def test_list_and_get_images(client, db, user_headers, other_headers):
    mine = db.seed("images", owner_id=USER_ID, path=f"{USER_ID}/a.png", mime_type="image/png",
                   file_size_bytes=10, is_public=False, alt_text="mine")
    db.seed("images", owner_id="someone-else", path="someone-else/b.png", mime_type="image/png",
            file_size_bytes=10, is_public=True, alt_text="theirs")

    body = client.get("/api/images/", headers=user_headers).json()
    assert body["total"] == 1
    assert body["items"][0]["id"] == mine["id"]

    assert client.get(f"/api/images/{mine['id']}", headers=user_headers).status_code == 200
    response = client.get(f"/api/images/{mine['id']}", headers=other_headers)
    assert response.status_code == 404
    assert response.json() == {"error": "Image not found"}


def test_update_image(client, db, user_headers, other_headers):
    image = db.seed("images", owner_id=USER_ID, path=f"{USER_ID}/a.png", mime_type="image/png",
                    file_size_bytes=10, is_public=True, alt_text="old")

    response = client.put(f"/api/images/{image['id']}", json={"alt_text": " new alt ", "title": "T"}, headers=user_headers)
    assert response.status_code == 200
    assert response.json()["image"]["alt_text"] == "new alt"
    assert response.json()["image"]["title"] == "T"

    response = client.put(f"/api/images/{image['id']}", json={"alt_text": "   "}, headers=user_headers)
    assert response.status_code == 422

    response = client.put(f"/api/images/{image['id']}", json={"title": "x"}, headers=other_headers)
    assert response.status_code == 403


def test_delete_image_blocked_while_referenced(client, db, user_headers):
    path = f"{USER_ID}/cover.png"
    image = db.seed("images", owner_id=USER_ID, path=path, mime_type="image/png", file_size_bytes=10, is_public=True)
    post = db.seed("posts", title="Uses cover", slug="uses-cover", cover_image_url=PUBLIC_PREFIX + path)

    response = client.delete(f"/api/images/{image['id']}", headers=user_headers)
    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "Cannot delete image: it is being used by one or more posts"
    assert body["references"] == [{"id": post["id"], "title": "Uses cover"}]


def test_delete_image_checks_inline_html(client, db, user_headers):
    path = f"{USER_ID}/inline.png"
    image = db.seed("images", owner_id=USER_ID, path=path, mime_type="image/png", file_size_bytes=10, is_public=True)
    db.seed("posts", title="Inline", slug="inline", content_html=f'<p><img src="{PUBLIC_PREFIX}{path}"></p>')

    assert client.delete(f"/api/images/{image['id']}", headers=user_headers).status_code == 409


def test_delete_image_ignores_storage_failures(client, db, user_headers):
    path = f"{USER_ID}/free.png"
    db.storage.objects[("post-images", path)] = b"x"
    image = db.seed("images", owner_id=USER_ID, path=path, mime_type="image/png", file_size_bytes=10, is_public=True)
    db.storage.fail_remove = True

    response = client.delete(f"/api/images/{image['id']}", headers=user_headers)
    assert response.json() == {"deleted": True}
    assert db.rows("images") == []


def test_delete_image_removes_blob(client, db, user_headers, other_headers):
    path = f"{USER_ID}/free.png"
    db.storage.objects[("post-images", path)] = b"x"
    image = db.seed("images", owner_id=USER_ID, path=path, mime_type="image/png", file_size_bytes=10, is_public=True)

    assert client.delete(f"/api/images/{image['id']}", headers=other_headers).status_code == 403
    assert client.delete(f"/api/images/{image['id']}", headers=user_headers).status_code == 200
    assert db.storage.objects == {}


def test_storage_upload_through_local_driver(client, user_headers):
    response = client.post(
        "/api/images/uploads/image",
        files={"file": ("small.png", png_bytes(), "image/png")},
        data={"filename_hint": "My Hint"},
        headers=user_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["url"] == f"/uploads/{body['path']}"
    assert body["path"].endswith("-my-hint.png")
    assert (body["width"], body["height"]) == (64, 48)
    assert "compression" not in body
    assert (Path(os.environ["UPLOADS_DIR"]) / body["path"]).is_file()

    served = client.get(body["url"])
    assert served.status_code == 200
    assert served.headers["cross-origin-resource-policy"] == "cross-origin"


def test_storage_upload_auto_compresses_wide_images(client, user_headers):
    response = client.post(
        "/api/images/uploads/image",
        files={"file": ("wide.jpg", jpeg_bytes(size=(2400, 200)), "image/jpeg")},
        headers=user_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["width"] == 2000
    assert body["path"].endswith(".webp")
    assert body["compression"]["format"] == "webp"
    assert body["compression"]["compressionStats"].startswith("Compressed from")


def test_storage_upload_rejects_bad_types(client, user_headers):
    response = client.post(
        "/api/images/uploads/image",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=user_headers,
    )
    assert response.status_code == 415


def test_storage_upload_rejects_oversized_pixel_counts(client, user_headers, monkeypatch):
    # 64x48 is over twice this limit, so Pillow refuses to open it
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    response = client.post(
        "/api/images/uploads/image",
        files={"file": ("huge.png", png_bytes(), "image/png")},
        headers=user_headers,
    )
    assert response.status_code == 413
    assert response.json()["error"].startswith("Image is too large to process")
