"""Unit tests for avatars/store.py -- upload validation and renditions.

Images are generated with Pillow in memory; nothing touches the network.

Covers:
- data URL parsing
- content type, size, decodability and minimum dimension checks
- oversized declared dimensions rejected before the pixels are decoded
- EXIF orientation applied before cropping
- small/medium/large WebP renditions are written, square, and RGB
"""

import base64
from io import BytesIO

import pytest
from PIL import Image

from avatars.store import AVATAR_SIZES, AvatarError, AvatarStore, parse_data_url, rendition_name
from conftest import png_header


def _image_bytes(width: int, height: int, fmt: str = "PNG", mode: str = "RGB") -> bytes:
    buf = BytesIO()
    Image.new(mode, (width, height), color=(200, 80, 40, 255)[: len(mode)]).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def avatar_store(tmp_path) -> AvatarStore:
    return AvatarStore(tmp_path, "/avatars", max_bytes=512 * 1024)


class TestParseDataUrl:
    def test_valid(self) -> None:
        raw = _image_bytes(8, 8)
        mime, decoded = parse_data_url("data:image/PNG;base64," + base64.b64encode(raw).decode())
        assert mime == "image/png"
        assert decoded == raw

    @pytest.mark.parametrize(
        "value",
        ["not a data url", "data:image/png,plain", "data:image/png;base64,@@@@"],
    )
    def test_invalid(self, value: str) -> None:
        with pytest.raises(AvatarError) as excinfo:
            parse_data_url(value)
        assert excinfo.value.code == "invalid_data_url"


class TestAvatarStore:
    def test_writes_all_renditions(self, avatar_store: AvatarStore, tmp_path) -> None:
        prefix = avatar_store.save(7, _image_bytes(400, 300), "image/png")
        assert prefix == "/avatars/7/"
        for size_name, px in AVATAR_SIZES.items():
            path = tmp_path / "7" / rendition_name(size_name)
            assert path.exists(), f"{size_name} rendition missing"
            with Image.open(path) as img:
                assert img.format == "WEBP"
                assert img.size == (px, px)

    def test_rgba_converted(self, avatar_store: AvatarStore, tmp_path) -> None:
        avatar_store.save(1, _image_bytes(224, 224, mode="RGBA"), "image/png")
        with Image.open(tmp_path / "1" / rendition_name("large")) as img:
            assert img.mode == "RGB"

    def test_jpeg_accepted(self, avatar_store: AvatarStore) -> None:
        assert avatar_store.save(2, _image_bytes(300, 300, fmt="JPEG"), "image/jpeg") == "/avatars/2/"

    def test_too_small(self, avatar_store: AvatarStore) -> None:
        with pytest.raises(AvatarError) as excinfo:
            avatar_store.save(1, _image_bytes(300, 223), "image/png")
        assert excinfo.value.code == "too_small"
        assert str(excinfo.value) == "Image is too small, min 224x224"

    def test_unsupported_type(self, avatar_store: AvatarStore) -> None:
        with pytest.raises(AvatarError) as excinfo:
            avatar_store.save(1, _image_bytes(300, 300, fmt="GIF"), "image/gif")
        assert excinfo.value.code == "unsupported_type"

    def test_too_large(self, tmp_path) -> None:
        store = AvatarStore(tmp_path, max_bytes=100)
        with pytest.raises(AvatarError) as excinfo:
            store.save(1, _image_bytes(300, 300), "image/png")
        assert excinfo.value.code == "too_large"

    def test_unreadable(self, avatar_store: AvatarStore) -> None:
        with pytest.raises(AvatarError) as excinfo:
            avatar_store.save(1, b"definitely not an image", "image/png")
        assert excinfo.value.code == "unreadable"

    def test_decompression_bomb_rejected(self, avatar_store: AvatarStore) -> None:
        # 400 Mpx declared in a few hundred bytes; Pillow refuses it at open().
        with pytest.raises(AvatarError) as excinfo:
            avatar_store.save(1, png_header(20000, 20000), "image/png")
        assert excinfo.value.code == "too_large"

    def test_pixel_ceiling_checked_before_decode(self, avatar_store: AvatarStore, tmp_path) -> None:
        # Under Pillow's own limit but over MAX_AVATAR_PIXELS.
        with pytest.raises(AvatarError) as excinfo:
            avatar_store.save(1, png_header(6000, 6000), "image/png")
        assert excinfo.value.code == "too_large"
        assert not (tmp_path / "1").exists()

    def test_custom_pixel_ceiling(self, tmp_path) -> None:
        store = AvatarStore(tmp_path, max_pixels=300 * 300)
        with pytest.raises(AvatarError) as excinfo:
            store.save(1, _image_bytes(400, 400), "image/png")
        assert excinfo.value.code == "too_large"
        assert store.save(1, _image_bytes(300, 300), "image/png") == "/avatars/1/"

    def test_exif_orientation_applied(self, avatar_store: AvatarStore, tmp_path) -> None:
        # Top half red, bottom half blue, tagged "rotate 90 CW to display":
        # once upright, red is on the right.
        image = Image.new("RGB", (300, 300), (0, 0, 255))
        image.paste((255, 0, 0), (0, 0, 300, 150))
        exif = Image.Exif()
        exif[0x0112] = 6
        buf = BytesIO()
        image.save(buf, format="JPEG", exif=exif.tobytes())
        avatar_store.save(4, buf.getvalue(), "image/jpeg")
        with Image.open(tmp_path / "4" / rendition_name("large")) as img:
            rgb = img.convert("RGB")
            right = rgb.getpixel((200, 112))
            left = rgb.getpixel((20, 112))
        assert right[0] > 150 and right[2] < 100
        assert left[2] > 150 and left[0] < 100

    def test_delete(self, avatar_store: AvatarStore, tmp_path) -> None:
        avatar_store.save(3, _image_bytes(224, 224), "image/png")
        assert avatar_store.delete(3) is True
        assert not (tmp_path / "3").exists()
        assert avatar_store.delete(3) is False
