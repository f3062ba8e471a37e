from pathlib import Path

import pytest
from aiohttp import test_utils

from switchboard.attachments import (
    AttachmentStore,
    AttachmentsConfig,
    build_attachments_app,
    get_attachments_config,
)
from switchboard.attachments.store import is_disallowed_url

CHANNEL = "alice@example.com"


@pytest.fixture
def config(tmp_path):
    return AttachmentsConfig(
        base_dir=tmp_path / "uploads",
        token="s3cret",
        host="127.0.0.1",
        port=7777,
        public_base_url="https://files.example/",
    )


def test_write_text_stores_and_links(config):
    store = AttachmentStore(config)
    att = store.write_text(CHANNEL, "Plan Draft.md", "# plan\n")

    path = Path(att.local_path)
    assert path.read_text() == "# plan\n"
    assert path.parent == config.base_dir / "alice-example.com"
    assert att.filename.endswith("_plan-draft.md")
    assert att.kind == "file" and att.size_bytes == 7
    assert att.public_url == (
        f"https://files.example/attachments/s3cret/alice-example.com/{att.filename}"
    )


def test_unsafe_extension_becomes_txt(config):
    att = AttachmentStore(config).write_text(CHANNEL, "../../etc/out.sh;rm", "x")
    assert att.filename.endswith("_out.txt")
    assert Path(att.local_path).parent == config.base_dir / "alice-example.com"


@pytest.mark.parametrize(
    "url, refused",
    [
        ("https://cdn.example/a.png", False),
        ("ftp://cdn.example/a.png", True),
        ("http://localhost:8080/a.png", True),
        ("http://10.1.2.3/a.png", True),
        ("http://172.20.0.1/a.png", True),
        ("http://172.40.0.1/a.png", False),
        ("http://169.254.169.254/latest", True),
    ],
)
def test_is_disallowed_url(url, refused):
    assert is_disallowed_url(url) is refused


async def test_download_skips_refused_urls(config):
    store = AttachmentStore(config)
    assert await store.download_images(CHANNEL, ["", "file:///etc/passwd", "http://127.0.0.1/x"]) == []


async def test_server_serves_only_with_token(config):
    att = AttachmentStore(config).write_text(CHANNEL, "out.txt", "hello")
    app = build_attachments_app(config.base_dir, token=config.token)

    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        ok = await client.get(f"/attachments/s3cret/alice-example.com/{att.filename}")
        assert ok.status == 200
        assert await ok.text() == "hello"

        wrong = await client.get(f"/attachments/nope/alice-example.com/{att.filename}")
        assert wrong.status == 404

        escape = await client.get("/attachments/s3cret/alice-example.com/../../.token")
        assert escape.status == 404


def test_server_requires_token(tmp_path):
    with pytest.raises(ValueError):
        build_attachments_app(tmp_path, token=" ")


def test_config_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("SWITCHBOARD_ATTACHMENTS_DIR", str(tmp_path))
    monkeypatch.setenv("SWITCHBOARD_ATTACHMENTS_HOST", "0.0.0.0")
    monkeypatch.setenv("SWITCHBOARD_ATTACHMENTS_PORT", "9000")
    monkeypatch.delenv("SWITCHBOARD_ATTACHMENTS_TOKEN", raising=False)
    monkeypatch.delenv("SWITCHBOARD_PUBLIC_ATTACHMENT_BASE_URL", raising=False)

    first = get_attachments_config()
    assert first.public_base_url == "http://127.0.0.1:9000"
    assert (tmp_path / ".token").read_text() == first.token
    assert get_attachments_config().token == first.token
