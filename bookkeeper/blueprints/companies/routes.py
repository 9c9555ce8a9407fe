from flask import Blueprint, jsonify, current_app
from flask_babel import gettext as _
from flask_login import login_required, current_user

from ...errors import ApiError, NotFound
from ...extensions import db
from ...models import Company, CompanyUser, Invitation, User, COMPANY_ROLES
from ...security import company_access_required, _canonicalize_role
from ...utils.audit import log_action
from ...utils.backup import clear_company_data
from ...utils.coa import seed_chart_of_accounts
from ...utils.http import json_body, require_fields
from ...utils.numbers import parse_date

companies_bp = Blueprint("companies", __name__)

VAT_FILING_FREQUENCIES = ("monthly", "quarterly", "annually")


def _apply_company_fields(company: Company, data: dict) -> None:
    for field in Company.EDITABLE_FIELDS:
        if field in data:
            value = data[field]
            setattr(company, field, value.strip() if isinstance(value, str) else value)
    if "tax_registration_date" in data:
        company.tax_registration_date = parse_date(data["tax_registration_date"])
    if not (company.name or "").strip():
        raise ApiError(_("Company name is required"), code="VALIDATION_ERROR")
    if company.locale not in ("en", "ar"):
        raise ApiError(_("Locale must be 'en' or 'ar'"), code="VALIDATION_ERROR")
    if company.vat_filing_frequency and company.vat_filing_frequency not in VAT_FILING_FREQUENCIES:
        raise ApiError(_("Invalid VAT filing frequency"), code="VALIDATION_ERROR")
    if company.trn_vat_number and (not company.trn_vat_number.isdigit() or len(company.trn_vat_number) != 15):
        raise ApiError(_("TRN must be 15 digits"), code="VALIDATION_ERROR")
    clash = Company.query.filter(Company.name == company.name, Company.id != company.id).first()
    if clash:
        raise ApiError(_("Company name already exists"), code="NAME_TAKEN")


def _parse_role(raw, default: str = "employee") -> str:
    role = _canonicalize_role(raw) or default
    if role not in COMPANY_ROLES:
        raise ApiError(_("Role must be one of: %(r)s", r=", ".join(COMPANY_ROLES)), code="VALIDATION_ERROR")
    return role


@companies_bp.route("/companies")
@login_required
def companies_list():
    rows = (
        db.session.query(Company, CompanyUser.role)
        .join(CompanyUser, CompanyUser.company_id == Company.id)
        .filter(CompanyUser.user_id == current_user.id)
        .order_by(Company.name)
        .all()
    )
    return jsonify([dict(c.to_dict(), role=role) for c, role in rows])


@companies_bp.route("/companies", methods=["POST"])
@login_required
def companies_create():
    data = json_body()
    require_fields(data, "name")
    company = Company(base_currency="AED", locale="en")
    _apply_company_fields(company, data)
    db.session.add(company)
    db.session.flush()
    db.session.add(CompanyUser(company_id=company.id, user_id=current_user.id, role="owner"))
    seed_chart_of_accounts(company.id)
    log_action("company_create", "Company", company.id, {"name": company.name}, company_id=company.id)
    db.session.commit()
    current_app.logger.info("Company %s created by user %s", company.id, current_user.id)
    return jsonify(company.to_dict()), 201


@companies_bp.route("/companies/<int:company_id>")
@company_access_required()
def companies_get(company_id: int):
    return jsonify(db.session.get(Company, company_id).to_dict())


@companies_bp.route("/companies/<int:company_id>", methods=["PATCH", "PUT"])
@company_access_required("owner", "accountant")
def companies_update(company_id: int):
    company = db.session.get(Company, company_id)
    _apply_company_fields(company, json_body())
    log_action("company_update", "Company", company.id, company_id=company.id)
    db.session.commit()
    return jsonify(company.to_dict())


@companies_bp.route("/companies/<int:company_id>", methods=["DELETE"])
@company_access_required("owner")
def companies_delete(company_id: int):
    company = db.session.get(Company, company_id)
    clear_company_data(company_id)
    Invitation.query.filter_by(company_id=company_id).delete(synchronize_session=False)
    db.session.delete(company)
    db.session.commit()
    current_app.logger.info("Company %s deleted by user %s", company_id, current_user.id)
    return "", 204


@companies_bp.route("/companies/<int:company_id>/seed-accounts", methods=["POST"])
@company_access_required("owner", "accountant")
def companies_seed_accounts(company_id: int):
    created = seed_chart_of_accounts(company_id)
    db.session.commit()
    return jsonify({"message": _("Chart of accounts seeded"), "created": created})


# ---- Team ----

@companies_bp.route("/companies/<int:company_id>/team")
@company_access_required()
def team_list(company_id: int):
    members = (
        CompanyUser.query.filter_by(company_id=company_id)
        .order_by(CompanyUser.created_at, CompanyUser.id)
        .all()
    )
    return jsonify([m.to_dict() for m in members])


@companies_bp.route("/companies/<int:company_id>/team/invite", methods=["POST"])
@company_access_required("owner")
def team_invite(company_id: int):
    data = json_body()
    require_fields(data, "email")
    email = str(data["email"]).strip().lower()
    if "@" not in email:
        raise ApiError(_("Invalid email address"), code="VALIDATION_ERROR")
    role = _parse_role(data.get("role"))

    invited = User.query.filter_by(email=email).first()
    if invited is None:
        # Placeholder activated when the invitee registers
        invited = User(email=email, name=email.split("@")[0], password_hash="")
        db.session.add(invited)
        db.session.flush()
    elif CompanyUser.query.filter_by(company_id=company_id, user_id=invited.id).first():
        raise ApiError(_("User is already a team member"), code="ALREADY_MEMBER")

    member = CompanyUser(company_id=company_id, user_id=invited.id, role=role)
    db.session.add(member)
    db.session.add(Invitation(
        company_id=company_id,
        email=email,
        role=role,
        invited_by_user_id=current_user.id,
        status="pending" if invited.is_placeholder else "accepted",
    ))
    log_action("team_invite", "CompanyUser", invited.id, {"email": email, "role": role}, company_id=company_id)
    db.session.commit()
    return jsonify(member.to_dict()), 201


@companies_bp.route("/companies/<int:company_id>/invitations")
@company_access_required("owner")
def invitations_list(company_id: int):
    rows = Invitation.query.filter_by(company_id=company_id).order_by(Invitation.created_at.desc()).all()
    return jsonify([r.to_dict() for r in rows])


def _member_or_404(company_id: int, member_id: int) -> CompanyUser:
    member = db.session.get(CompanyUser, member_id)
    if member is None or member.company_id != company_id:
        raise NotFound(_("Team member not found"))
    return member


def _is_last_owner(member: CompanyUser) -> bool:
    if member.role != "owner":
        return False
    owners = CompanyUser.query.filter_by(company_id=member.company_id, role="owner").count()
    return owners <= 1


@companies_bp.route("/companies/<int:company_id>/team/<int:member_id>", methods=["PUT", "PATCH"])
@company_access_required("owner")
def team_update(company_id: int, member_id: int):
    member = _member_or_404(company_id, member_id)
    role = _parse_role(json_body().get("role"), default="")
    if role != "owner" and _is_last_owner(member):
        raise ApiError(_("A company must keep at least one owner"), code="LAST_OWNER")
    member.role = role
    log_action("team_role_update", "CompanyUser", member.id, {"role": role}, company_id=company_id)
    db.session.commit()
    return jsonify(member.to_dict())


@companies_bp.route("/companies/<int:company_id>/team/<int:member_id>", methods=["DELETE"])
@company_access_required("owner")
def team_remove(company_id: int, member_id: int):
    member = _member_or_404(company_id, member_id)
    if _is_last_owner(member):
        raise ApiError(_("A company must keep at least one owner"), code="LAST_OWNER")
    db.session.delete(member)
    log_action("team_remove", "CompanyUser", member_id, company_id=company_id)
    db.session.commit()
    return "", 204
