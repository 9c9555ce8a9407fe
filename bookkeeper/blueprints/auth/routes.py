from datetime import datetime

from flask import Blueprint, jsonify, current_app
from flask_babel import gettext as _
from flask_login import login_required, current_user

from ...errors import ApiError
from ...extensions import db
from ...models import User, Company, CompanyUser, Invitation, AuditLog
from ...security import issue_token
from ...utils.coa import seed_chart_of_accounts
from ...utils.http import json_body, require_fields

auth_bp = Blueprint("auth", __name__)

MIN_PASSWORD_LENGTH = 6


def _default_company_name(name: str) -> str:
    base = f"{name}'s Company"
    candidate = base
    n = 2
    while db.session.query(Company.id).filter_by(name=candidate).first():
        candidate = f"{base} {n}"
        n += 1
    return candidate


@auth_bp.route("/register", methods=["POST"])
def register():
    data = json_body()
    require_fields(data, "name", "email", "password")
    email = str(data["email"]).strip().lower()
    name = str(data["name"]).strip()
    password = str(data["password"])
    if "@" not in email:
        raise ApiError(_("Invalid email address"), code="VALIDATION_ERROR")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ApiError(_("Password must be at least %(n)s characters", n=MIN_PASSWORD_LENGTH), code="VALIDATION_ERROR")

    user = User.query.filter_by(email=email).first()
    if user and not user.is_placeholder:
        raise ApiError(_("Email already registered"), code="EMAIL_TAKEN")

    if user is None:
        user = User(name=name, email=email)
        db.session.add(user)
    else:
        # Invited placeholder: claim it and accept pending invitations
        user.name = name
        for inv in Invitation.query.filter_by(email=email, status="pending").all():
            inv.status = "accepted"
            inv.accepted_at = datetime.utcnow()
    user.set_password(password)
    db.session.flush()

    company = None
    if not user.memberships:
        company = Company(name=_default_company_name(name), base_currency="AED", locale="en")
        db.session.add(company)
        db.session.flush()
        db.session.add(CompanyUser(company_id=company.id, user_id=user.id, role="owner"))
        seed_chart_of_accounts(company.id)
    db.session.commit()
    current_app.logger.info("User %s registered", user.email)

    body = {"token": issue_token(user), "user": user.to_dict()}
    if company is not None:
        body["company"] = {"id": company.id, "name": company.name}
    return jsonify(body), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    user = User.query.filter_by(email=email).first() if email else None
    if not user or not user.is_active or not user.check_password(password):
        return jsonify({"message": _("Invalid credentials")}), 401
    user.last_login_at = datetime.utcnow()
    db.session.add(user)
    db.session.add(AuditLog(user_id=user.id, action="login", target_type="Auth", target_id=user.id, meta={"email": user.email}))
    db.session.commit()
    return jsonify({"token": issue_token(user), "user": user.to_dict()})


@auth_bp.route("/me")
@login_required
def me():
    memberships = [
        {"company_id": m.company_id, "company_name": m.company.name, "role": m.role}
        for m in current_user.memberships
    ]
    return jsonify({"user": current_user.to_dict(), "companies": memberships})
