from io import BytesIO
from types import SimpleNamespace

import pytest
from PIL import Image

import compression_service
from compression_service import (
    CompressionError,
    compress_image,
    determine_output_format,
    format_compression_stats,
    image_dimensions,
    resolve_quality,
    should_compress,
)

from conftest import ADMIN_TOKEN, jpeg_bytes, png_bytes

ADMIN = {"X-Admin-Token": ADMIN_TOKEN}


@pytest.mark.parametrize("value,expected", [
    (None, 75),
    ("high", 85),
    ("balanced", 75),
    ("aggressive", 60),
    ("unknown", 75),
    (5, 10),
    ("200", 100),
    (42.7, 42),
])
def test_resolve_quality(value, expected):
    assert resolve_quality(value) == expected


def _open(data):
    image = Image.open(BytesIO(data))
    image.load()
    return image


def test_determine_output_format():
    assert determine_output_format(_open(jpeg_bytes())) == "webp"
    assert determine_output_format(_open(jpeg_bytes()), convert_photos_to_webp=False) == "jpeg"
    assert determine_output_format(_open(png_bytes(mode="RGBA", color=(0, 0, 0, 0)))) == "png"
    assert determine_output_format(_open(png_bytes()), requested="jpg") == "jpeg"

    with pytest.raises(CompressionError):
        determine_output_format(_open(png_bytes()), requested="tiff")


def test_compress_image_fits_inside_bounds():
    result = compress_image(jpeg_bytes(size=(3000, 1500)), quality="aggressive", max_width=1200, max_height=1200)

    assert (result["width"], result["height"]) == (1200, 600)
    assert result["format"] == "webp"
    assert result["mime_type"] == "image/webp"
    assert result["compressed_size"] == len(result["buffer"])
    assert result["compression_ratio"] == round((1 - result["compressed_size"] / result["original_size"]) * 100)


def test_compress_image_rejects_garbage():
    with pytest.raises(CompressionError) as excinfo:
        compress_image(b"definitely not an image")
    assert excinfo.value.status_code == 400


def test_should_compress_and_stats_text():
    settings = {"size_threshold_kb": 500, "dimension_threshold_px": 2000}
    assert should_compress(600 * 1024, 100, 100, settings)
    assert should_compress(10, 2500, 100, settings)
    assert not should_compress(10, 100, 100, settings)

    text = format_compression_stats({"original_size": 2 * 1024 * 1024, "compressed_size": 1024 * 1024,
                                     "compression_ratio": 50})
    assert text == "Compressed from 2.00MB to 1.00MB (50% reduction)"


def test_settings_defaults_and_update(client):
    assert client.get("/api/compression/settings").status_code == 401

    settings = client.get("/api/compression/settings", headers=ADMIN).json()
    assert settings["quality_preset"] == "balanced"
    assert settings["size_threshold_kb"] == 500
    assert settings["compression_enabled"] is True

    response = client.patch("/api/compression/settings", json={"quality_preset": "custom", "custom_quality": 55},
                            headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["custom_quality"] == 55

    settings = client.get("/api/compression/settings", headers=ADMIN).json()
    assert settings["quality_preset"] == "custom"
    assert settings["auto_compress"] is True


def test_settings_validation(client):
    response = client.patch("/api/compression/settings", json={"quality_preset": "extreme"}, headers=ADMIN)
    assert response.status_code == 400
    assert "quality_preset" in response.json()["error"]

    response = client.patch("/api/compression/settings", json={"custom_quality": 5}, headers=ADMIN)
    assert response.status_code == 400
    assert response.json() == {"error": "custom_quality must be between 10 and 100"}


def test_compress_url_validation(client):
    response = client.post("/api/compression/compress-url", json={}, headers=ADMIN)
    assert response.status_code == 400
    assert response.json() == {"error": "URL is required"}

    response = client.post("/api/compression/compress-url", json={"url": "ftp://example.com/a.png"}, headers=ADMIN)
    assert response.json() == {"error": "Invalid URL format"}

    client.patch("/api/compression/settings", json={"compression_enabled": False}, headers=ADMIN)
    response = client.post("/api/compression/compress-url", json={"url": "https://example.com/a.jpg"}, headers=ADMIN)
    assert response.status_code == 400
    assert "disabled" in response.json()["error"]


def test_compress_url_stores_result(client, monkeypatch):
    source = jpeg_bytes(size=(2600, 400))
    requested = []

    def fake_get(url, timeout):
        requested.append(url)
        return SimpleNamespace(status_code=200, content=source)

    monkeypatch.setattr(compression_service.requests, "get", fake_get)
    response = client.post("/api/compression/compress-url", json={"url": "https://example.com/big.jpg"},
                           headers=ADMIN)
    assert response.status_code == 200
    body = response.json()

    assert requested == ["https://example.com/big.jpg"]
    assert body["url"].startswith("/uploads/")
    assert body["path"].endswith("-compressed.webp")
    assert body["width"] == 2000
    assert body["originalSize"] == len(source)
    assert body["compressionStats"].startswith("Compressed from")

    stats = client.get("/api/compression/stats", headers=ADMIN).json()
    assert stats["totalImages"] == 1
    assert stats["compressedImages"] == 1
    assert stats["totalOriginalSize"] == len(source)
    assert stats["totalSavings"] == len(source) - body["compressedSize"]


def test_compress_url_download_failure(client, monkeypatch):
    monkeypatch.setattr(compression_service.requests, "get",
                        lambda url, timeout: SimpleNamespace(status_code=404, content=b""))
    response = client.post("/api/compression/compress-url", json={"url": "https://example.com/gone.jpg"},
                           headers=ADMIN)
    assert response.status_code == 502
    assert "HTTP 404" in response.json()["error"]


def test_empty_stats(client):
    assert client.get("/api/compression/stats", headers=ADMIN).json() == {
        "totalImages": 0,
        "compressedImages": 0,
        "totalOriginalSize": 0,
        "totalCompressedSize": 0,
        "totalSavings": 0,
        "averageCompressionRatio": 0,
    }


def test_decompression_bomb_is_rejected(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    with pytest.raises(CompressionError) as excinfo:
        compress_image(png_bytes())
    assert excinfo.value.status_code == 413

    with pytest.raises(CompressionError):
        image_dimensions(png_bytes())


def test_compress_url_rejects_decompression_bomb(client, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    monkeypatch.setattr(compression_service.requests, "get",
                        lambda url, timeout: SimpleNamespace(status_code=200, content=png_bytes()))
    response = client.post("/api/compression/compress-url", json={"url": "https://example.com/bomb.png"},
                           headers=ADMIN)
    assert response.status_code == 413
