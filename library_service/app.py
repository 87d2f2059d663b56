import os
import logging
from functools import wraps

from flask import (
    Blueprint,
    Flask,
    abort,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)
from flask import session as cookie_session
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError

from . import accounts, catalog, lending
from .config import Config
from .db import make_session_factory
from .errors import (
    BadPassword,
    Conflict,
    InvalidInput,
    LibraryError,
    NotAuthenticated,
    StoreUnavailable,
    UserNotFound,
)
from .security import Principal

logger = logging.getLogger(__name__)

pages = Blueprint("pages", __name__)
api = Blueprint("api", __name__, url_prefix="/api")

# Where a rejected action sends the user back to
FALLBACK_PAGES = {
    "pages.return_book": "pages.borrowed",
}

MAX_ID = 2**63 - 1


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------

def open_session():
    return current_app.extensions["library_sessions"]()


def login_required(view):
    """
    Pass the session principal to the view, or send the client to login.

    Only the user id and username live in the cookie; views read the user
    record itself from the database on every request.
    """
    @wraps(view)
    def wrapper(*args, **kwargs):
        user_id = cookie_session.get("user_id")
        if user_id is None:
            raise NotAuthenticated()
        principal = Principal(user_id=user_id, username=cookie_session.get("username", ""))
        return view(principal, *args, **kwargs)

    return wrapper


def require_api_key(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("SERVICE_API_KEY")
        sent = request.headers.get("X-API-Key")
        if not expected or sent != expected:
            logger.warning("Invalid API key on %s", request.path)
            abort(401, description="Invalid or missing service API key")
        return func(*args, **kwargs)

    return wrapper


def form_value(name):
    """Read a field from a form post or a JSON body."""
    if name in request.form:
        return request.form.get(name)
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None
    return data.get(name)


def valid_id(value):
    """Whether ``value`` fits a positive 64-bit primary key."""
    return 0 < value <= MAX_ID


def book_id_from_request():
    try:
        book_id = int(form_value("bookId"))
    except (TypeError, ValueError):
        raise InvalidInput("Missing or invalid bookId")
    if not valid_id(book_id):
        raise InvalidInput("Missing or invalid bookId")
    return book_id


def start_session(user):
    cookie_session.clear()
    cookie_session["user_id"] = user.id
    cookie_session["username"] = user.username


# ---------------------------------------------------------
# Login / signup
# ---------------------------------------------------------

@pages.get("/")
def index():
    return render_template("login.html")


@pages.get("/login")
def login_form():
    return render_template("login.html")


@pages.get("/signup")
def signup_form():
    return render_template("signup.html")


@pages.post("/login")
def login():
    username = form_value("username")
    password = form_value("password")

    session = open_session()
    try:
        try:
            user = accounts.authenticate(session, username, password)
        except (UserNotFound, BadPassword) as exc:
            if current_app.config["LOGIN_FAILURE_MODE"] == "redirect":
                return redirect(url_for("pages.signup_form"))
            return render_template("login.html", error=exc.message, username=username), exc.status_code

        start_session(user)
        return redirect(url_for("pages.contents"))
    finally:
        session.close()


@pages.post("/signup")
def signup():
    username = form_value("username")
    password = form_value("password")

    session = open_session()
    try:
        try:
            user = accounts.register(
                session,
                username,
                password,
                rounds=current_app.config["BCRYPT_ROUNDS"],
            )
        except (Conflict, InvalidInput) as exc:
            if current_app.config["SIGNUP_FAILURE_MODE"] == "message":
                return exc.message, exc.status_code
            return render_template("signup.html", error=exc.message, username=username), exc.status_code

        start_session(user)
        return redirect(url_for("pages.contents"))
    finally:
        session.close()


@pages.get("/logout")
@login_required
def logout(principal):
    cookie_session.clear()
    logger.info("User %s logged out", principal.username)
    return redirect(url_for("pages.login_form"))


# ---------------------------------------------------------
# Catalog
# ---------------------------------------------------------

@pages.get("/contents")
@login_required
def contents(principal):
    session = open_session()
    try:
        user = accounts.get_user(session, principal.user_id)
        books = catalog.list_books(session)
        return render_template("contents.html", books=books, user=user, query="")
    finally:
        session.close()


@pages.get("/search")
@login_required
def search(principal):
    query = request.args.get("q", "")

    session = open_session()
    try:
        user = accounts.get_user(session, principal.user_id)
        books = catalog.search_books(session, query)
        return render_template("contents.html", books=books, user=user, query=query)
    finally:
        session.close()


# ---------------------------------------------------------
# Lending
# ---------------------------------------------------------

@pages.post("/borrow")
@login_required
def borrow_book(principal):
    book_id = book_id_from_request()

    session = open_session()
    try:
        record = lending.borrow(
            session,
            principal.user_id,
            book_id,
            days=current_app.config["LOAN_DAYS"],
        )
        flash(f"Borrowed {record.title}, due {record.due_date}")
        return redirect(url_for("pages.contents"))
    finally:
        session.close()


@pages.get("/borrowed")
@login_required
def borrowed(principal):
    session = open_session()
    try:
        accounts.get_user(session, principal.user_id)
        records = lending.borrowed_books(session, principal.user_id)
        return render_template("borrowed.html", borrowed_books=records)
    finally:
        session.close()


@pages.post("/return")
@login_required
def return_book(principal):
    book_id = book_id_from_request()

    session = open_session()
    try:
        lending.return_book(session, principal.user_id, book_id)
        flash("Book returned")
        return redirect(url_for("pages.borrowed"))
    finally:
        session.close()


# ---------------------------------------------------------
# Account
# ---------------------------------------------------------

@pages.get("/account")
@login_required
def account(principal):
    session = open_session()
    try:
        user = accounts.get_user(session, principal.user_id)
        return render_template("account.html", user=user)
    finally:
        session.close()


@pages.post("/account/password")
@login_required
def change_password(principal):
    session = open_session()
    try:
        try:
            accounts.change_password(
                session,
                principal.user_id,
                form_value("currentPassword"),
                form_value("newPassword"),
                rounds=current_app.config["BCRYPT_ROUNDS"],
            )
        except (BadPassword, InvalidInput) as exc:
            user = accounts.get_user(session, principal.user_id)
            return render_template("account.html", user=user, error=exc.message), exc.status_code

        user = accounts.get_user(session, principal.user_id)
        return render_template("account.html", user=user, message="Password updated successfully!")
    finally:
        session.close()


# ---------------------------------------------------------
# Service API (seeding, audit)
# ---------------------------------------------------------

@api.get("/health")
def health_check():
    return jsonify({"status": "ok", "service": "library_service"}), 200


@api.post("/books")
@require_api_key
def upsert_book():
    """
    Seed endpoint – upsert book by ISBN.
    """
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        raise InvalidInput("Expected a JSON object")

    session = open_session()
    try:
        book, created = catalog.upsert_book(
            session,
            data.get("isbn"),
            data.get("title"),
            data.get("author"),
        )
        return jsonify(book.to_dict()), 201 if created else 200
    finally:
        session.close()


@api.get("/books")
@require_api_key
def api_books():
    session = open_session()
    try:
        books = catalog.search_books(session, request.args.get("q", ""))
        return jsonify([b.to_dict() for b in books])
    finally:
        session.close()


@api.get("/users/<int:user_id>")
@require_api_key
def api_user(user_id):
    """
    A user with their borrowed list, for support staff.
    """
    if not valid_id(user_id):
        raise UserNotFound()

    session = open_session()
    try:
        user = accounts.get_user(session, user_id)
        return jsonify(user.to_dict())
    finally:
        session.close()


@api.get("/audit/availability")
@require_api_key
def availability_audit():
    """
    Reconciliation check: books whose flag disagrees with the borrow records.
    """
    session = open_session()
    try:
        problems = lending.availability_report(session)
        if problems:
            logger.warning("Availability audit found %d inconsistent books", len(problems))
        return jsonify({"ok": not problems, "violations": problems})
    finally:
        session.close()


# ---------------------------------------------------------
# Error handling
# ---------------------------------------------------------

def handle_library_error(exc):
    if request.blueprint == "api":
        return jsonify({"error": exc.message}), exc.status_code

    if isinstance(exc, NotAuthenticated):
        return redirect(url_for("pages.login_form"))

    if isinstance(exc, UserNotFound) and "user_id" in cookie_session:
        # account vanished under a live session
        cookie_session.clear()
        return redirect(url_for("pages.login_form"))

    if isinstance(exc, StoreUnavailable):
        return render_template("error.html", error=exc.message), exc.status_code

    flash(exc.message, "error")
    return redirect(url_for(FALLBACK_PAGES.get(request.endpoint, "pages.contents")))


def handle_store_error(exc):
    logger.exception("Database failure on %s %s", request.method, request.path)
    return handle_library_error(StoreUnavailable())


# ---------------------------------------------------------
# App factory
# ---------------------------------------------------------

def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(level=getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Browser pages use the session cookie; only the service API is cross-origin
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    engine, SessionLocal = make_session_factory(
        app.config["SQLALCHEMY_DATABASE_URI"],
        echo=app.config.get("SQLALCHEMY_ECHO", False),
    )
    app.extensions["library_engine"] = engine
    app.extensions["library_sessions"] = SessionLocal

    app.register_blueprint(pages)
    app.register_blueprint(api)
    app.register_error_handler(LibraryError, handle_library_error)
    app.register_error_handler(SQLAlchemyError, handle_store_error)

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", "3019"))
    create_app().run(host="0.0.0.0", port=port, debug=True)
