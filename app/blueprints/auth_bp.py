"""
Auth blueprint — registration, login, current user and profile.

Endpoints:
    POST /api/v1/auth/register   → 201 {access_token, token_type, expires_in, user}
    POST /api/v1/auth/login
    GET  /api/v1/auth/me
    PATCH /api/v1/auth/me       full_name, phone, avatar_url
    POST /api/v1/auth/password  current_password, new_password[, confirm_new_password]
"""

from flask import Blueprint

from app.blueprints import current_user, json_body
from app.core.actions import respond
from app.services import auth_service

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


@auth_bp.route("/register", methods=["POST"])
def register():
    return respond(auth_service.register(data=json_body()), 201)


@auth_bp.route("/login", methods=["POST"])
def login():
    return respond(auth_service.login(data=json_body()))


@auth_bp.route("/me", methods=["GET"])
def me():
    return respond(auth_service.me(user=current_user()))


@auth_bp.route("/me", methods=["PATCH"])
def update_me():
    return respond(auth_service.update_profile(user=current_user(), data=json_body()))


@auth_bp.route("/password", methods=["POST"])
def update_password():
    return respond(auth_service.update_password(user=current_user(), data=json_body()))
