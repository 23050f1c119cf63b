"""Tests for entry-document discovery and SPA routing.

Requests go through the ASGI app in-process; no port is bound.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from zenith.deliver.static_site import SiteRoot, SpaStaticApp, find_entry_document

INDEX = b"<html><body>widget</body></html>"
LOGO = b"\x89PNG\r\n\x1a\nfake-png-bytes"


@pytest.fixture
def site_tree(tmp_path):
    root = tmp_path / "site"
    (root / "static" / "js").mkdir(parents=True)
    (root / "index.html").write_bytes(INDEX)
    (root / "logo.png").write_bytes(LOGO)
    (root / "static" / "js" / "main.js").write_text("console.log('widget');")
    (tmp_path / "secret.txt").write_text("outside the root")
    return root


async def _client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://site")


class TestFindEntryDocument:
    def test_prefers_shallowest(self, tmp_path):
        (tmp_path / "build").mkdir()
        (tmp_path / "build" / "index.html").write_text("b")
        (tmp_path / "public" / "deep").mkdir(parents=True)
        (tmp_path / "public" / "deep" / "index.html").write_text("d")

        assert find_entry_document(tmp_path) == tmp_path / "build" / "index.html"

    def test_ties_broken_lexicographically(self, tmp_path):
        for d in ("public", "build"):
            (tmp_path / d).mkdir()
            (tmp_path / d / "index.html").write_text(d)

        assert find_entry_document(tmp_path) == tmp_path / "build" / "index.html"

    def test_ignores_node_modules(self, tmp_path):
        (tmp_path / "node_modules" / "pkg").mkdir(parents=True)
        (tmp_path / "node_modules" / "pkg" / "index.html").write_text("x")

        assert find_entry_document(tmp_path) is None

    def test_site_root_falls_back_to_tree(self, tmp_path):
        site = SiteRoot.resolve(tmp_path)
        assert site.root == tmp_path.resolve()
        assert site.index is None


class TestSpaRouting:
    @pytest.fixture
    def app(self, site_tree):
        return SpaStaticApp(SiteRoot.resolve(site_tree))

    async def test_root_serves_entry(self, app):
        async with await _client(app) as client:
            response = await client.get("/")
        assert response.status_code == 200
        assert response.content == INDEX

    async def test_existing_file_is_byte_identical(self, app):
        async with await _client(app) as client:
            response = await client.get("/logo.png")
        assert response.status_code == 200
        assert response.content == LOGO
        assert response.headers["content-type"] == "image/png"

    async def test_nested_asset(self, app):
        async with await _client(app) as client:
            response = await client.get("/static/js/main.js")
        assert response.status_code == 200
        assert b"widget" in response.content

    @pytest.mark.parametrize("path", ["/dashboard/settings", "/missing.js", "/static/"])
    async def test_unknown_paths_fall_back_to_entry(self, app, path):
        async with await _client(app) as client:
            response = await client.get(path)
        assert response.status_code == 200
        assert response.content == INDEX

    async def test_null_byte_path_falls_back_to_entry(self, app):
        async with await _client(app) as client:
            response = await client.get("/a%00b")
        assert response.status_code == 200
        assert response.content == INDEX

    async def test_traversal_is_treated_as_missing(self, app):
        async with await _client(app) as client:
            response = await client.get("/%2E%2E/secret.txt")
        assert response.status_code == 200
        assert response.content == INDEX

    async def test_head_request(self, app):
        async with await _client(app) as client:
            response = await client.head("/logo.png")
        assert response.status_code == 200


class TestSpaWithoutEntry:
    async def test_missing_path_is_404(self, tmp_path):
        (tmp_path / "readme.txt").write_text("hello")
        app = SpaStaticApp(SiteRoot.resolve(tmp_path))

        async with await _client(app) as client:
            missing = await client.get("/nope")
            present = await client.get("/readme.txt")

        assert missing.status_code == 404
        assert present.text == "hello"

    async def test_no_site_is_503(self):
        async with await _client(SpaStaticApp()) as client:
            response = await client.get("/")
        assert response.status_code == 503


class TestSiteSwap:
    async def test_set_site_switches_content(self, tmp_path):
        first = tmp_path / "one"
        second = tmp_path / "two"
        for d, body in ((first, "one"), (second, "two")):
            d.mkdir()
            (d / "index.html").write_text(body)

        app = SpaStaticApp(SiteRoot.resolve(first))
        async with await _client(app) as client:
            assert (await client.get("/")).text == "one"
            app.set_site(SiteRoot.resolve(second))
            assert (await client.get("/")).text == "two"
