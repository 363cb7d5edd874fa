"""Server-rendered pages for the DNC checker."""

from __future__ import annotations

import html
import logging
from datetime import datetime
from typing import Optional, Tuple
from urllib.parse import parse_qs

import anyio
from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse

from .accounts import Authenticator
from .api import clear_session_cookie, issue_session_cookie
from .errors import AuthenticationFailure
from .security import resolve_session
from .sessions import SessionIssuer

logger = logging.getLogger("dnc_checker.web")

PROTECTED_PAGE_PATHS = frozenset({"/dnc-lookup", "/dnc-history"})
LOGIN_PATH = "/login"
HOME_PATH = "/dnc-lookup"
LOGIN_FAILURE = "Invalid username or password"

_STYLE = """
body { font-family: system-ui, sans-serif; margin: 0; background: #f5f6f8; color: #1f2933; }
.navbar { display: flex; justify-content: space-between; padding: 0.75rem 1.5rem; background: #1f2933; color: #fff; }
.navbar a { color: #fff; margin-left: 1rem; text-decoration: none; }
.page { max-width: 960px; margin: 2rem auto; padding: 0 1rem; }
.card { background: #fff; border-radius: 6px; padding: 1.5rem; box-shadow: 0 1px 3px rgba(0,0,0,0.1); }
.form { display: flex; flex-direction: column; gap: 0.5rem; max-width: 360px; }
.alert { padding: 0.75rem; border-radius: 4px; margin-bottom: 1rem; }
.alert--error { background: #fde8e8; color: #9b1c1c; }
.alert--info { background: #e1effe; color: #1e429f; }
table { border-collapse: collapse; margin-top: 1rem; width: 100%; }
th, td { border: 1px solid #d2d6dc; padding: 0.4rem 0.6rem; text-align: left; }
"""

# Result columns are only known once the response arrives.
_PAGE_SCRIPT = """
<script>
function dncRenderRows(target, rows) {
  target.textContent = "";
  if (!rows.length) { target.textContent = "No records returned."; return; }
  const table = document.createElement("table");
  const head = table.insertRow();
  Object.keys(rows[0]).forEach(function (key) {
    const th = document.createElement("th"); th.textContent = key; head.appendChild(th);
  });
  rows.forEach(function (row) {
    const tr = table.insertRow();
    Object.keys(rows[0]).forEach(function (key) {
      const value = row[key];
      tr.insertCell().textContent = value === null || value === undefined ? "" : String(value);
    });
  });
  target.appendChild(table);
}
function dncSubmit(form, url, fields, onSuccess) {
  form.addEventListener("submit", async function (event) {
    event.preventDefault();
    const status = document.getElementById("status");
    const payload = {};
    fields.forEach(function (name) { payload[name] = form.elements[name].value; });
    status.className = ""; status.textContent = "";
    const response = await fetch(url, {
      method: "POST",
      credentials: "same-origin",
      headers: {"Content-Type": "application/json"},
      body: JSON.stringify(payload),
    });
    if (response.status === 401) { window.location = "/login"; return; }
    const body = await response.json();
    if (!body.success) {
      status.className = "alert alert--error"; status.textContent = body.error;
      return;
    }
    onSuccess(body, status);
  });
}
</script>
"""


def _build_base_markup(*, title: str, content: str, signed_in: bool, script: str = "") -> str:
    if signed_in:
        nav_actions = (
            '<nav aria-label="Primary">'
            '<a href="/dnc-lookup">Lookup</a>'
            '<a href="/dnc-history">History</a>'
            '<a href="/logout">Sign out</a>'
            "</nav>"
        )
    else:
        nav_actions = (
            '<nav aria-label="Primary">'
            '<a href="/login">Sign in</a>'
            '<a href="/register">Register</a>'
            "</nav>"
        )

    year = datetime.now().year
    return (
        "<!DOCTYPE html>\n"
        "<html lang=\"en\">\n"
        "  <head>\n"
        "    <meta charset=\"utf-8\" />\n"
        "    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />\n"
        f"    <title>{html.escape(title)} · DNC Checker</title>\n"
        f"    <style>{_STYLE}</style>\n"
        "  </head>\n"
        "  <body>\n"
        f"    <header class=\"navbar\"><span>DNC Checker</span>{nav_actions}</header>\n"
        "    <main class=\"page\">\n"
        f"{content}\n"
        "    </main>\n"
        f"    <footer class=\"page\">© {year} DNC Checker</footer>\n"
        f"{script}"
        "  </body>\n"
        "</html>"
    )


def _render_login_markup(*, username: str = "", error: Optional[str] = None) -> str:
    error_html = f'<div class="alert alert--error">{html.escape(error)}</div>' if error else ""
    body = f"""
<section class="card">
  <h1>Sign in</h1>
  {error_html}
  <form method="post" action="{LOGIN_PATH}" class="form">
    <label for="username">Username</label>
    <input type="text" id="username" name="username" value="{html.escape(username)}" autocomplete="username" required />
    <label for="password">Password</label>
    <input type="password" id="password" name="password" autocomplete="current-password" required />
    <button type="submit">Sign in</button>
  </form>
  <p><a href="/forgot-password">Forgot your password?</a> · <a href="/register">Create an account</a></p>
</section>
"""
    return _build_base_markup(title="Sign in", content=body, signed_in=False)


def _render_register_markup() -> str:
    body = """
<section class="card">
  <h1>Create an account</h1>
  <div id="status"></div>
  <form id="register-form" class="form">
    <label for="username">Username</label>
    <input type="text" id="username" name="username" autocomplete="username" required />
    <label for="email">Email address</label>
    <input type="email" id="email" name="email" autocomplete="email" required />
    <label for="password">Password</label>
    <input type="password" id="password" name="password" autocomplete="new-password" required />
    <button type="submit">Register</button>
  </form>
</section>
"""
    script = _PAGE_SCRIPT + """
<script>
dncSubmit(document.getElementById("register-form"), "/api/register",
  ["username", "email", "password"],
  function (body, status) {
    status.className = "alert alert--info";
    status.textContent = "Account created. You can now sign in.";
  });
</script>
"""
    return _build_base_markup(title="Register", content=body, signed_in=False, script=script)


def _render_forgot_password_markup() -> str:
    body = """
<section class="card">
  <h1>Reset your password</h1>
  <div id="status"></div>
  <form id="forgot-form" class="form">
    <label for="email">Email address</label>
    <input type="email" id="email" name="email" autocomplete="email" required />
    <button type="submit">Send reset link</button>
  </form>
</section>
"""
    script = _PAGE_SCRIPT + """
<script>
dncSubmit(document.getElementById("forgot-form"), "/api/forgot-password", ["email"],
  function (body, status) {
    status.className = "alert alert--info";
    status.textContent = body.data.message;
  });
</script>
"""
    return _build_base_markup(title="Forgot password", content=body, signed_in=False, script=script)


def _render_lookup_markup() -> str:
    body = """
<section class="card">
  <h1>DNC lookup</h1>
  <div id="status"></div>
  <form id="lookup-form" class="form">
    <label for="phoneNumber">Phone number</label>
    <input type="tel" id="phoneNumber" name="phoneNumber" placeholder="(555) 123-4567" required />
    <label for="lookupDate">Lookup date</label>
    <input type="text" id="lookupDate" name="lookupDate" placeholder="MM/DD/YYYY" required />
    <button type="submit">Check number</button>
  </form>
  <div id="results"></div>
</section>
"""
    script = _PAGE_SCRIPT + """
<script>
dncSubmit(document.getElementById("lookup-form"), "/api/dnc-lookup",
  ["phoneNumber", "lookupDate"],
  function (body) { dncRenderRows(document.getElementById("results"), body.data); });
</script>
"""
    return _build_base_markup(title="DNC lookup", content=body, signed_in=True, script=script)


def _render_history_markup() -> str:
    body = """
<section class="card">
  <h1>DNC history</h1>
  <div id="status"></div>
  <form id="history-form" class="form">
    <label for="phoneNumber">Phone number</label>
    <input type="tel" id="phoneNumber" name="phoneNumber" placeholder="(555) 123-4567" required />
    <button type="submit">Show history</button>
  </form>
  <div id="results"></div>
</section>
"""
    script = _PAGE_SCRIPT + """
<script>
dncSubmit(document.getElementById("history-form"), "/api/dnc-history", ["phoneNumber"],
  function (body) { dncRenderRows(document.getElementById("results"), body.data); });
</script>
"""
    return _build_base_markup(title="DNC history", content=body, signed_in=True, script=script)


async def _parse_login_form(request: Request) -> Tuple[str, str]:
    body_bytes = await request.body()
    content_type = request.headers.get("content-type", "")
    charset = "utf-8"
    if "charset=" in content_type:
        charset = content_type.split("charset=", 1)[1].split(";", 1)[0].strip() or "utf-8"
    try:
        decoded = body_bytes.decode(charset)
    except (LookupError, UnicodeDecodeError):
        decoded = body_bytes.decode("utf-8", errors="ignore")
    data = parse_qs(decoded, keep_blank_values=True)
    username = data.get("username", [""])[0]
    password = data.get("password", [""])[0]
    return username, password


def register_ui_routes(
    app: FastAPI,
    *,
    authenticator: Authenticator,
    issuer: SessionIssuer,
    secure_cookies: bool,
) -> None:
    """Expose the HTML pages and install the page-level session guard."""

    @app.middleware("http")
    async def session_guard(request: Request, call_next):
        """Redirect visitors of protected pages to the login form unless signed in."""

        if request.url.path in PROTECTED_PAGE_PATHS:
            claims = resolve_session(request, issuer)
            if claims is None:
                response = RedirectResponse(LOGIN_PATH, status_code=status.HTTP_303_SEE_OTHER)
                if request.cookies:
                    clear_session_cookie(response)
                return response
            request.state.user_id = claims.user_id
        return await call_next(request)

    router = APIRouter(include_in_schema=False)

    def _html(markup: str, status_code: int = status.HTTP_200_OK) -> HTMLResponse:
        return HTMLResponse(markup, status_code=status_code)

    def _render_login(request: Request, *, username: str = "", error: Optional[str] = None, status_code: int = status.HTTP_200_OK):
        if error is None and resolve_session(request, issuer) is not None:
            return RedirectResponse(HOME_PATH, status_code=status.HTTP_303_SEE_OTHER)
        return _html(_render_login_markup(username=username, error=error), status_code)

    @router.get("/", response_class=HTMLResponse, name="ui_home")
    async def homepage(request: Request):
        return _render_login(request)

    @router.get("/login", response_class=HTMLResponse, name="ui_login")
    async def login_form(request: Request):
        return _render_login(request)

    @router.post("/login", name="ui_login_submit")
    async def login_submit(request: Request):
        username, password = await _parse_login_form(request)
        try:
            identity = await anyio.to_thread.run_sync(authenticator.authenticate, username, password)
        except AuthenticationFailure:
            return _render_login(
                request,
                username=username,
                error=LOGIN_FAILURE,
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        token, _claims = issuer.issue(identity.id)
        logger.info("User %s signed in to the web interface", identity.id)
        response = RedirectResponse(HOME_PATH, status_code=status.HTTP_303_SEE_OTHER)
        issue_session_cookie(response, token, max_age=issuer.cookie_max_age, secure=secure_cookies)
        return response

    @router.get("/logout", name="ui_logout")
    async def logout(request: Request):
        response = RedirectResponse(LOGIN_PATH, status_code=status.HTTP_303_SEE_OTHER)
        clear_session_cookie(response)
        return response

    @router.get("/register", response_class=HTMLResponse, name="ui_register")
    async def register_page():
        return _html(_render_register_markup())

    @router.get("/forgot-password", response_class=HTMLResponse, name="ui_forgot_password")
    async def forgot_password_page():
        return _html(_render_forgot_password_markup())

    @router.get("/dnc-lookup", response_class=HTMLResponse, name="ui_dnc_lookup")
    async def lookup_page():
        return _html(_render_lookup_markup())

    @router.get("/dnc-history", response_class=HTMLResponse, name="ui_dnc_history")
    async def history_page():
        return _html(_render_history_markup())

    app.include_router(router)


__all__ = ["PROTECTED_PAGE_PATHS", "register_ui_routes"]
