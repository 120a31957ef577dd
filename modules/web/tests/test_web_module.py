"""
Unit Tests for WebModule.

Covers the users panel, the optional CMS pages panel, site settings, the
user statistics widget, user search and the module menu.
"""

import pytest

API = "/admin/api"
WITHOUT_CMS = ["dashboard", "search", "commands", "jobs"]


def _find(items, item_id):
    for item in items:
        if item["id"] == item_id:
            return item
        found = _find(item["children"], item_id)
        if found:
            return found
    return None


class TestUsersPanel:
    """Tests for the users panel and its bulk action."""

    def test_seeded_users(self, client):
        """Test the three demo accounts are listed and filterable."""
        body = client.get(f"{API}/users", params={"sort": "name"}).json()

        assert [u["name"] for u in body["data"]] == ["Ada Admin", "Eddie Editor", "Vera Viewer"]
        assert client.get(f"{API}/users", params={"role": "editor"}).json()["meta"]["total"] == 1

    def test_invalid_role(self, client):
        """Test select fields only accept declared options."""
        response = client.post(f"{API}/users", json={"name": "Mal", "email": "mal@example.test", "role": "root"})

        assert response.status_code == 400

    def test_deactivate(self, client):
        """Test the bulk action disables the selected users."""
        ids = [u["id"] for u in client.get(f"{API}/users", params={"status": "active"}).json()["data"]]

        response = client.post(f"{API}/users/actions/deactivate", json={"ids": ids})

        assert response.json() == {"data": {"updated": 2}}
        assert client.get(f"{API}/users", params={"status": "disabled"}).json()["meta"]["total"] == 2


class TestPagesPanel:
    """Tests for the pages panel that follows the cms feature."""

    def test_pages_with_cms(self, make_web_admin, make_client):
        """Test pages are registered and menu-linked when the CMS is enabled."""
        admin, module = make_web_admin()
        client = make_client(admin)

        created = client.post(f"{API}/pages", json={"title": "Home", "slug": "home"}).json()["data"]

        assert created["title"] == "Home"
        assert client.get(f"{API}/pages").json()["meta"]["total"] == 1
        assert client.post(f"{API}/pages", json={"title": "Again", "slug": "home"}).status_code == 400
        content = _find(client.get(f"{API}/navigation").json()["items"], "web.content")
        assert [c["id"] for c in content["children"]] == ["web.users", "web.pages"]

    def test_no_pages_without_cms(self, make_web_admin, make_client):
        """Test the pages panel and menu entry are absent without the CMS."""
        admin, module = make_web_admin(features=WITHOUT_CMS)
        client = make_client(admin)

        assert admin.panel("pages") is None
        assert client.get(f"{API}/pages").status_code in (404, 405)
        [content] = [item for item in module.menu_items("en") if item.id == "web.content"]
        assert [c.id for c in content.children] == ["web.users"]


class TestSettingsWidgetSearch:
    """Tests for site settings, the user widget and user search."""

    def test_site_settings(self, client):
        """Test site settings resolve defaults and validate updates."""
        values = client.get(f"{API}/settings").json()["values"]

        assert values["site.name"] == "Example Site"
        assert values["site.theme"] == "light"
        assert values["site.maintenance_mode"] is False

        updated = client.patch(f"{API}/settings", json={"site.theme": "dark"}).json()["values"]
        assert updated["site.theme"] == "dark"
        assert client.patch(f"{API}/settings", json={"site.theme": "blue"}).status_code == 400
        assert client.patch(f"{API}/settings", json={"site.items_per_page": True}).status_code == 400

    def test_user_stats_widget(self, client):
        """Test the widget counts users by status and role."""
        widgets = {w["code"]: w for w in client.get(f"{API}/dashboard").json()["widgets"]}

        assert widgets["web.user_stats"]["data"] == {
            "total": 3,
            "active": 2,
            "by_role": {"admin": 1, "editor": 1, "viewer": 1},
        }

    def test_custom_seed(self, make_web_admin, make_client):
        """Test an explicit user seed replaces the demo accounts."""
        admin, _ = make_web_admin(users=[{"name": "Solo", "email": "solo@example.test", "status": "active"}])
        client = make_client(admin)

        data = {w["code"]: w for w in client.get(f"{API}/dashboard").json()["widgets"]}["web.user_stats"]["data"]

        assert (data["total"], data["active"], data["by_role"]["viewer"]) == (1, 1, 1)

    @pytest.mark.parametrize("query", ["eddie", "EDDIE@example"])
    def test_search(self, client, query):
        """Test users are found by name or email."""
        results = client.get(f"{API}/search", params={"q": query}).json()["results"]

        assert [(r["type"], r["title"]) for r in results] == [("user", "Eddie Editor")]

    def test_menu(self, client):
        """Test the dashboard, content and settings entries."""
        items = client.get(f"{API}/navigation").json()["items"]

        assert _find(items, "web.dashboard")["target"]["path"] == "/admin"
        assert _find(items, "web.settings")["target"]["path"] == "/admin/settings"
