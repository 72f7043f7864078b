"""
tests/test_web_routes.py -- Integration tests for the HTML routes in web/routes.py.

These run through the real ASGI stack (asgi.app with every middleware) using
the client fixture (follow_redirects=False), so redirect Location headers and
Set-Cookie headers can be asserted directly.

Coverage:
  - Anonymous access to protected pages -> 302 /login?next={path}
  - Registration, login, logout and the flash messages around them
  - Session rotation on login; a pre-login token is anonymous afterwards
  - next= handling: only relative paths are honoured (open-redirect prevention)
  - Ownership: another user's post or comment cannot be edited or deleted
  - Admin pages: Unauthorized vs Forbidden, role changes, user deletion
  - Deleting a user invalidates their live sessions
  - Error pages for unknown and malformed paths
  - JSON identity endpoint shares the browser session
  - Login rate limiting
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from api.limiter import limiter
from auth.models import Role
from conftest import PASSWORD, login, make_user
from core.config import get_settings

COOKIE = get_settings().session_cookie_name
CONTENT = "This is the body of a post."


def _new_post(client: TestClient, title: str = "Alice's first", content: str = CONTENT) -> int:
    resp = client.post("/posts", data={"title": title, "content": content})
    assert resp.status_code == 302
    return int(resp.headers["location"].rsplit("/", 1)[1])


def _switch_user(client: TestClient, email: str) -> None:
    client.cookies.clear()
    resp = login(client, email)
    assert resp.status_code == 302


class TestAuthRedirectChain:
    def test_protected_pages_redirect_to_login_with_next(self, client: TestClient) -> None:
        for path in ("/posts/new", "/profile", "/admin", "/admin/users"):
            resp = client.get(path)
            assert resp.status_code == 302, path
            location = urlparse(resp.headers["location"])
            assert location.path == "/login"
            assert parse_qs(location.query)["next"] == [path]

    def test_anonymous_post_create_redirects_to_login(self, client: TestClient, stores) -> None:
        resp = client.post("/posts", data={"title": "Hello", "content": CONTENT})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert stores[2].count_posts() == 0

    def test_login_page_shows_the_flash(self, client: TestClient) -> None:
        client.get("/profile")
        resp = client.get("/login?next=/profile")
        assert resp.status_code == 200
        assert "Please log in to access this page." in resp.text
        assert 'name="next" value="/profile"' in resp.text

    def test_plain_visit_stores_no_session(self, client: TestClient) -> None:
        resp = client.get("/")
        assert resp.status_code == 200
        assert "set-cookie" not in resp.headers

    def test_first_flash_sets_session_cookie(self, client: TestClient) -> None:
        resp = client.get("/profile")
        assert resp.status_code == 302
        header = resp.headers["set-cookie"].lower()
        assert header.startswith(f"{COOKIE}=")
        assert "httponly" in header
        assert "samesite=lax" in header

    def test_redirect_to_login_keeps_query_string(self, client: TestClient) -> None:
        resp = client.get("/profile?tab=posts&page=2")
        location = urlparse(resp.headers["location"])
        assert location.path == "/login"
        assert parse_qs(location.query)["next"] == ["/profile?tab=posts&page=2"]


class TestRegistrationAndLogin:
    def test_register_then_login(self, client: TestClient, stores) -> None:
        resp = client.post(
            "/register",
            data={
                "username": "alice",
                "email": "Alice@Example.com",
                "password": PASSWORD,
                "confirm_password": PASSWORD,
            },
        )
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert "Registration successful! Please log in." in client.get("/login").text
        assert stores[0].get_by_email("alice@example.com").role is Role.user

        resp = login(client, "alice@example.com")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert resp.headers["cache-control"] == "no-store"
        assert "Welcome back, alice!" in client.get("/").text

    def test_register_validation_errors_return_to_form(self, client: TestClient) -> None:
        resp = client.post(
            "/register",
            data={"username": "alice", "email": "alice@example.com", "password": PASSWORD, "confirm_password": "nope"},
        )
        assert resp.headers["location"] == "/register"
        assert "Passwords do not match." in client.get("/register").text

    def test_duplicate_registration(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        resp = client.post(
            "/register",
            data={"username": "alice", "email": "new@example.com", "password": PASSWORD, "confirm_password": PASSWORD},
        )
        assert resp.headers["location"] == "/register"
        assert "Username or email already exists." in client.get("/register").text

    def test_wrong_password_is_generic(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        resp = login(client, "alice@example.com", "wrong-password")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert "Incorrect email or password." in client.get("/login").text

    def test_unknown_email_is_generic(self, client: TestClient) -> None:
        resp = login(client, "nobody@example.com")
        assert resp.headers["location"] == "/login"
        assert "Incorrect email or password." in client.get("/login").text

    def test_login_rotates_session_token(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        before = client.get("/profile").cookies.get(COOKIE)
        resp = login(client, "alice@example.com")
        after = resp.cookies.get(COOKIE)
        assert before and after and before != after

        # The pre-login token is now worthless.
        client.cookies.clear()
        resp = client.get("/profile", cookies={COOKIE: before})
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("/login")

    def test_logged_in_user_skips_login_and_register(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        login(client, "alice@example.com")
        assert client.get("/login").headers["location"] == "/"
        assert client.get("/register").headers["location"] == "/"

    def test_logout(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        login(client, "alice@example.com")
        assert client.get("/profile").status_code == 200

        resp = client.post("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert "You have been logged out successfully." in client.get("/").text
        assert client.get("/profile").status_code == 302

    def test_logout_when_anonymous(self, client: TestClient) -> None:
        resp = client.post("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"


class TestNextParam:
    def test_relative_next_is_honoured(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        resp = login(client, "alice@example.com", next_url="/posts/new")
        assert resp.headers["location"] == "/posts/new"

    def test_absolute_next_is_ignored(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        resp = login(client, "alice@example.com", next_url="https://attacker.example/")
        assert resp.headers["location"] == "/"

    def test_protocol_relative_next_is_ignored(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        resp = login(client, "alice@example.com", next_url="//attacker.example")
        assert resp.headers["location"] == "/"

    def test_failed_login_keeps_next(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        resp = login(client, "alice@example.com", "wrong-password", next_url="/profile")
        assert resp.headers["location"] == "/login?next=/profile"

    def test_failed_login_keeps_next_with_query_string(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        resp = login(client, "alice@example.com", "wrong-password", next_url="/posts?page=2&sort=new")
        location = urlparse(resp.headers["location"])
        assert location.path == "/login"
        assert parse_qs(location.query) == {"next": ["/posts?page=2&sort=new"]}


class TestOwnership:
    def test_alice_and_bob(self, client: TestClient, stores) -> None:
        users, _, blog = stores
        make_user(users, "alice")
        make_user(users, "bob")

        _switch_user(client, "alice@example.com")
        post_id = _new_post(client)
        page = client.get(f"/posts/{post_id}")
        assert page.status_code == 200
        assert "Post created successfully!" in page.text

        # bob cannot edit or delete alice's post
        _switch_user(client, "bob@example.com")
        resp = client.get(f"/posts/{post_id}/edit")
        assert resp.headers["location"] == "/"
        resp = client.post(f"/posts/{post_id}", data={"title": "Hijacked", "content": CONTENT})
        assert resp.headers["location"] == "/"
        assert "You are not authorized to modify this post." in client.get("/").text
        resp = client.post(f"/posts/{post_id}/delete")
        assert resp.headers["location"] == "/"
        assert blog.get_post(post_id).title == "Alice's first"

        # bob comments
        resp = client.post("/comments", data={"post_id": post_id, "text": "Nice one"})
        assert resp.headers["location"] == f"/posts/{post_id}"
        page = client.get(f"/posts/{post_id}")
        assert "Nice one" in page.text
        assert "Comment added successfully!" in page.text
        comment_id = blog.list_comments(post_id)[0].id

        # alice cannot delete bob's comment, but can edit and delete her post
        _switch_user(client, "alice@example.com")
        resp = client.post(f"/comments/{comment_id}/delete", data={"post_id": post_id})
        assert resp.headers["location"] == f"/posts/{post_id}"
        assert "You are not authorized to modify this comment." in client.get(f"/posts/{post_id}").text
        assert blog.get_comment(comment_id) is not None

        resp = client.post(f"/posts/{post_id}", data={"title": "Edited", "content": CONTENT})
        assert resp.headers["location"] == f"/posts/{post_id}"
        assert blog.get_post(post_id).title == "Edited"

        resp = client.post(f"/posts/{post_id}/delete")
        assert resp.headers["location"] == "/"
        assert blog.get_post(post_id) is None
        assert blog.get_comment(comment_id) is None

    def test_comment_author_deletes_own_comment(self, client: TestClient, stores) -> None:
        users, _, blog = stores
        make_user(users, "alice")
        _switch_user(client, "alice@example.com")
        post_id = _new_post(client)
        client.post("/comments", data={"post_id": post_id, "text": "Self reply"})
        comment_id = blog.list_comments(post_id)[0].id

        resp = client.post(f"/comments/{comment_id}/delete", data={"post_id": post_id})
        assert resp.headers["location"] == f"/posts/{post_id}"
        assert blog.get_comment(comment_id) is None

    def test_missing_comment(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        _switch_user(client, "alice@example.com")
        resp = client.post("/comments/999/delete")
        assert resp.headers["location"] == "/"
        assert "Comment not found." in client.get("/").text

    def test_invalid_post_returns_to_form(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        _switch_user(client, "alice@example.com")
        resp = client.post("/posts", data={"title": "", "content": "short"})
        assert resp.headers["location"] == "/posts/new"
        page = client.get("/posts/new").text
        assert "Post title is required." in page
        assert "Content must be at least 10 characters long." in page
        assert stores[2].count_posts() == 0

    def test_anonymous_comment(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        _switch_user(client, "alice@example.com")
        post_id = _new_post(client)
        client.cookies.clear()
        resp = client.post("/comments", data={"post_id": post_id, "text": "drive-by"})
        assert resp.headers["location"] == "/login"
        assert "Please log in to add a comment." in client.get("/login").text
        assert stores[2].count_comments() == 0

    def test_comment_without_post_id(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        _switch_user(client, "alice@example.com")
        resp = client.post("/comments", data={"text": "orphan"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert "Comment text and post ID are required." in client.get("/").text
        assert stores[2].count_comments() == 0


class TestAdmin:
    def test_regular_user_is_forbidden(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        _switch_user(client, "alice@example.com")
        resp = client.get("/admin")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert "Admin access required." in client.get("/").text

    def test_admin_pages_render(self, client: TestClient, stores) -> None:
        make_user(stores[0], "root", role=Role.admin)
        make_user(stores[0], "alice")
        _switch_user(client, "root@example.com")
        assert client.get("/admin").status_code == 200
        users_page = client.get("/admin/users")
        assert users_page.status_code == 200
        assert "alice@example.com" in users_page.text
        assert client.get("/admin/posts").status_code == 200

    def test_promote_and_self_protection(self, client: TestClient, stores) -> None:
        users = stores[0]
        root = make_user(users, "root", role=Role.admin)
        alice = make_user(users, "alice")
        _switch_user(client, "root@example.com")

        resp = client.post(f"/admin/users/{alice.id}/role", data={"role": "admin"})
        assert resp.headers["location"] == "/admin/users"
        assert users.get_by_id(alice.id).role is Role.admin

        resp = client.post(f"/admin/users/{root.id}/role", data={"role": "user"})
        assert resp.headers["location"] == "/admin/users"
        assert "You cannot change your own role." in client.get("/admin/users").text
        assert users.get_by_id(root.id).role is Role.admin

        resp = client.post(f"/admin/users/{alice.id}/role", data={"role": "wizard"})
        assert resp.headers["location"] == "/admin/users"
        assert "Invalid role value." in client.get("/admin/users").text

    def test_deleting_a_user_ends_their_sessions(self, client: TestClient, stores) -> None:
        users, _, blog = stores
        make_user(users, "root", role=Role.admin)
        bob = make_user(users, "bob")

        bob_token = login(client, "bob@example.com").cookies.get(COOKIE)
        _new_post(client, title="Bob's post")

        _switch_user(client, "root@example.com")
        resp = client.post(f"/admin/users/{bob.id}/delete")
        assert resp.headers["location"] == "/admin/users"
        assert "User and related content deleted." in client.get("/admin/users").text
        assert users.get_by_id(bob.id) is None
        assert blog.count_posts() == 0

        client.cookies.clear()
        resp = client.get("/profile", cookies={COOKIE: bob_token})
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("/login")

    def test_admin_deletes_any_post(self, client: TestClient, stores) -> None:
        make_user(stores[0], "root", role=Role.admin)
        make_user(stores[0], "alice")
        _switch_user(client, "alice@example.com")
        post_id = _new_post(client)

        _switch_user(client, "root@example.com")
        resp = client.post(f"/admin/posts/{post_id}/delete")
        assert resp.headers["location"] == "/admin/posts"
        assert stores[2].get_post(post_id) is None


class TestPages:
    def test_home_and_index_list_posts(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        _switch_user(client, "alice@example.com")
        for i in range(6):
            _new_post(client, title=f"Numbered post {i}")

        home = client.get("/")
        assert "Numbered post 5" in home.text

        first = client.get("/posts")
        assert "Numbered post 5" in first.text
        assert "Numbered post 0" not in first.text
        assert "/posts?page=2" in first.text

        second = client.get("/posts?page=2")
        assert "Numbered post 0" in second.text

    def test_bad_page_number_falls_back_to_first_page(self, client: TestClient) -> None:
        assert client.get("/posts?page=abc").status_code == 200
        assert client.get("/posts?page=-3").status_code == 200

    def test_missing_post_redirects_home(self, client: TestClient) -> None:
        resp = client.get("/posts/9999")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert "Post not found." in client.get("/").text

    def test_unknown_path_renders_404_page(self, client: TestClient) -> None:
        resp = client.get("/no/such/page")
        assert resp.status_code == 404
        assert "Page not found" in resp.text

    def test_malformed_id_renders_404_page(self, client: TestClient) -> None:
        resp = client.get("/posts/not-a-number")
        assert resp.status_code == 404
        assert "Page not found" in resp.text

    def test_profile_lists_own_posts(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        _switch_user(client, "alice@example.com")
        _new_post(client, title="Mine")
        page = client.get("/profile")
        assert page.status_code == 200
        assert "Mine" in page.text
        assert "alice@example.com" in page.text


class TestJsonSurface:
    def test_me_requires_session(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_uses_browser_session(self, client: TestClient, stores) -> None:
        make_user(stores[0], "alice")
        login(client, "alice@example.com")
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json()["username"] == "alice"
        assert resp.json()["role"] == "user"


class TestRateLimit:
    def test_login_is_rate_limited(self, client: TestClient) -> None:
        limiter.enabled = True
        limiter.reset()
        try:
            for _ in range(10):
                resp = login(client, "nobody@example.com")
                assert "retry-after" not in resp.headers
            resp = login(client, "nobody@example.com")
            assert resp.status_code == 302
            assert resp.headers["location"] == "/login"
            assert "retry-after" in resp.headers
        finally:
            limiter.enabled = False
            limiter.reset()
