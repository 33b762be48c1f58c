"""Tests for content resolution."""

import pytest

from liveserver.errors import NotFoundError
from liveserver.resolver import DEFAULT_SCRIPT_PATH, ContentResolver

PAGE = '<!DOCTYPE html><html><head><title>t</title></head><body>hi</body></html>'
INJECTED = (
    '<!DOCTYPE html><html><head><title>t</title>'
    f'<script type="text/javascript" src="{DEFAULT_SCRIPT_PATH}"></script>'
    '</head><body>hi</body></html>'
)


@pytest.fixture
def site(tmp_path):
    root = tmp_path / "site"
    root.mkdir()
    (root / "index.html").write_text(PAGE, encoding="utf-8")
    (root / "style.css").write_text("body { color: red }", encoding="utf-8")
    (root / "docs").mkdir()
    (root / "docs" / "index.html").write_text(PAGE, encoding="utf-8")
    (root / "empty").mkdir()
    (root / "nohead.html").write_text("<p>fragment</p>", encoding="utf-8")
    (root / "latin1.html").write_bytes(b"<html><head></head><body>caf\xe9</body></html>")
    (tmp_path / "secret.txt").write_text("outside", encoding="utf-8")
    return root


class TestResolve:
    """Test resolving request paths."""

    async def test_html_is_injected(self, site):
        resolved = await ContentResolver(site).resolve("/index.html")
        assert resolved.content_type == "text/html"
        assert resolved.body.decode("utf-8") == INJECTED
        assert resolved.injected

    async def test_other_files_pass_through(self, site):
        resolved = await ContentResolver(site).resolve("style.css")
        assert resolved.content_type == "text/css"
        assert resolved.body == b"body { color: red }"
        assert not resolved.injected

    async def test_directory_falls_back_to_index(self, site):
        resolver = ContentResolver(site)
        assert (await resolver.resolve("")).body.decode("utf-8") == INJECTED
        assert (await resolver.resolve("/docs/")).body.decode("utf-8") == INJECTED

    async def test_injection_disabled(self, site):
        resolved = await ContentResolver(site, inject=False).resolve("index.html")
        assert resolved.body.decode("utf-8") == PAGE
        assert resolved.content_type == "text/html"

    async def test_injection_disabled_per_request(self, site):
        resolved = await ContentResolver(site).resolve("index.html", inject=False)
        assert resolved.body.decode("utf-8") == PAGE

    async def test_custom_script_path(self, site):
        resolved = await ContentResolver(site, script_path="/reload.js").resolve("index.html")
        assert b'src="/reload.js"' in resolved.body

    async def test_missing_head_served_raw(self, site):
        resolved = await ContentResolver(site).resolve("nohead.html")
        assert resolved.body == b"<p>fragment</p>"
        assert not resolved.injected

    async def test_unparseable_served_raw(self, site):
        resolved = await ContentResolver(site).resolve("latin1.html")
        assert resolved.body == b"<html><head></head><body>caf\xe9</body></html>"
        assert not resolved.injected

    @pytest.mark.parametrize("path", [
        "missing.html",
        "empty",
        "empty/",
        "../secret.txt",
        "docs/../../secret.txt",
        "a\x00b.html",
        "a" * 5000,
        "/".join(["deep"] * 2000),
    ])
    async def test_not_found(self, site, path):
        with pytest.raises(NotFoundError):
            await ContentResolver(site).resolve(path)


class TestRenderHtml:
    """Test the injection step on raw bytes."""

    def test_render(self, tmp_path):
        body, injected = ContentResolver(tmp_path).render_html(PAGE.encode("utf-8"))
        assert injected
        assert body.decode("utf-8") == INJECTED
