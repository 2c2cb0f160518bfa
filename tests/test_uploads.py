import os

import cloudinary.uploader
import pytest

from errors import ValidationError
from settings import Settings
from uploads import MAX_FILE_SIZE, UploadResolver


@pytest.fixture
def remote_settings(tmp_path):
    return Settings(
        upload_dir=str(tmp_path / "uploads"),
        cloudinary_cloud_name="demo",
        cloudinary_api_key="key",
        cloudinary_api_secret="secret",
    )


def _staged(resolver, name="photo.jpg", content=b"jpegdata"):
    path = os.path.join(resolver.upload_dir, name)
    with open(path, "wb") as f:
        f.write(content)
    return path


def test_local_resolution_when_unconfigured(settings):
    resolver = UploadResolver(settings)
    result = resolver.resolve(_staged(resolver), "products")
    assert result.url == "/uploads/photo.jpg"
    assert result.public_id == "photo"
    assert result.format == "jpg"
    assert result.size == len(b"jpegdata")
    assert result.remote is False


def test_remote_resolution(remote_settings, monkeypatch):
    resolver = UploadResolver(remote_settings)
    path = _staged(resolver)

    def fake_upload(file, **options):
        assert options["folder"] == "products"
        return {"secure_url": "https://res.cloudinary.com/demo/image/upload/v1/products/photo.jpg",
                "public_id": "products/photo", "format": "jpg", "bytes": 8}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    result = resolver.resolve(path, "products")
    assert result.remote is True
    assert result.url.startswith("https://res.cloudinary.com/")
    assert not os.path.exists(path)


def test_remote_failure_falls_back_to_local(remote_settings, monkeypatch):
    resolver = UploadResolver(remote_settings)
    path = _staged(resolver)

    def failing_upload(file, **options):
        raise RuntimeError("network down")

    monkeypatch.setattr(cloudinary.uploader, "upload", failing_upload)
    results = resolver.resolve_many([path, _staged(resolver, "second.jpg")], "products")
    assert [r.url for r in results] == ["/uploads/photo.jpg", "/uploads/second.jpg"]
    assert os.path.exists(path)


@pytest.mark.parametrize("url,public_id", [
    ("https://res.cloudinary.com/demo/image/upload/v1712/products/photo.jpg", "products/photo"),
    ("https://res.cloudinary.com/demo/image/upload/photo.png", "photo"),
    ("/uploads/photo.png", None),
])
def test_remote_public_id(url, public_id):
    assert UploadResolver.remote_public_id(url) == public_id


def test_destroy_many_collects_failures(remote_settings, monkeypatch):
    resolver = UploadResolver(remote_settings)
    local = _staged(resolver)
    destroyed = []

    def fake_destroy(public_id):
        if public_id == "products/bad":
            raise RuntimeError("denied")
        destroyed.append(public_id)

    monkeypatch.setattr(cloudinary.uploader, "destroy", fake_destroy)
    outcome = resolver.destroy_many([
        "https://res.cloudinary.com/demo/image/upload/v1/products/good.jpg",
        "https://res.cloudinary.com/demo/image/upload/v1/products/bad.jpg",
        "/uploads/photo.jpg",
    ])
    assert destroyed == ["products/good"]
    assert [url for url, _ in outcome.failures] == ["https://res.cloudinary.com/demo/image/upload/v1/products/bad.jpg"]
    assert len(outcome.deleted) == 2
    assert not os.path.exists(local)


class _Upload:
    def __init__(self, name, content_type, size):
        self.filename = name
        self.content_type = content_type
        self.size = size
        self.file = None


def test_oversized_upload_rejected_before_writing(settings):
    resolver = UploadResolver(settings)
    with pytest.raises(ValidationError):
        resolver.save_local(_Upload("big.png", "image/png", MAX_FILE_SIZE + 1))
    assert os.listdir(resolver.upload_dir) == []
