import secrets
import string
import time
from datetime import datetime

from flask import Blueprint, jsonify, request, current_app
from flask_babel import gettext as _
from flask_login import login_required, current_user

from ...errors import ApiError
from ...extensions import db
from ...models import ComplianceTask, Document, ReferralCode, Referral, Feedback
from ...security import company_access_required, get_owned_or_404
from ...utils.audit import log_action
from ...utils.http import json_body, require_fields
from ...utils.numbers import parse_date

engagement_bp = Blueprint("engagement", __name__)

TASK_PRIORITIES = ("low", "medium", "high")
TASK_STATUSES = ("pending", "completed")
DOCUMENT_CATEGORIES = ("trade_license", "vat_certificate", "contract", "other")
FEEDBACK_TYPES = ("bug", "feature_request", "improvement", "praise", "other")

_BASE36 = string.digits + string.ascii_uppercase


def _base36(number: int) -> str:
    out = ""
    while True:
        number, rem = divmod(number, 36)
        out = _BASE36[rem] + out
        if not number:
            return out


def generate_referral_code() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _i in range(4))
    return f"REF-{_base36(int(time.time() * 1000))}-{suffix}"


def _valid_email(value) -> bool:
    return isinstance(value, str) and "@" in value and "." in value.rsplit("@", 1)[-1]


# ---- Compliance tasks ----

def _apply_task_fields(task: ComplianceTask, data: dict) -> None:
    for field in ("title", "description", "category"):
        if field in data:
            value = data[field]
            setattr(task, field, value.strip() if isinstance(value, str) else value)
    if "priority" in data:
        if data["priority"] not in TASK_PRIORITIES:
            raise ApiError(_("Priority must be one of: %(p)s", p=", ".join(TASK_PRIORITIES)), code="VALIDATION_ERROR")
        task.priority = data["priority"]
    if "due_date" in data:
        task.due_date = parse_date(data["due_date"])
    if "status" in data:
        if data["status"] not in TASK_STATUSES:
            raise ApiError(_("Status must be pending or completed"), code="VALIDATION_ERROR")
        task.status = data["status"]
        task.completed_at = datetime.utcnow() if task.status == "completed" else None
    if not task.title:
        raise ApiError(_("Task title is required"), code="VALIDATION_ERROR")
    if task.due_date is None:
        raise ApiError(_("A valid due date is required"), code="VALIDATION_ERROR")


@engagement_bp.route("/companies/<int:company_id>/compliance-tasks")
@company_access_required()
def tasks_list(company_id: int):
    q = ComplianceTask.query.filter_by(company_id=company_id)
    status = request.args.get("status")
    if status:
        q = q.filter(ComplianceTask.status == status)
    return jsonify([t.to_dict() for t in q.order_by(ComplianceTask.due_date, ComplianceTask.id).all()])


@engagement_bp.route("/companies/<int:company_id>/compliance-tasks", methods=["POST"])
@company_access_required()
def tasks_create(company_id: int):
    data = json_body()
    require_fields(data, "title", "due_date")
    task = ComplianceTask(company_id=company_id, status="pending", priority="medium",
                          category="other", created_by=current_user.id)
    _apply_task_fields(task, data)
    db.session.add(task)
    db.session.flush()
    log_action("task_create", "ComplianceTask", task.id, {"title": task.title}, company_id=company_id)
    db.session.commit()
    return jsonify(task.to_dict()), 201


@engagement_bp.route("/compliance-tasks/<int:task_id>", methods=["PATCH", "PUT"])
@login_required
def tasks_update(task_id: int):
    task = get_owned_or_404(ComplianceTask, task_id)
    _apply_task_fields(task, json_body())
    db.session.commit()
    return jsonify(task.to_dict())


@engagement_bp.route("/compliance-tasks/<int:task_id>/complete", methods=["POST"])
@login_required
def tasks_complete(task_id: int):
    task = get_owned_or_404(ComplianceTask, task_id)
    task.status = "completed"
    task.completed_at = datetime.utcnow()
    log_action("task_complete", "ComplianceTask", task.id, company_id=task.company_id)
    db.session.commit()
    return jsonify(task.to_dict())


@engagement_bp.route("/compliance-tasks/<int:task_id>", methods=["DELETE"])
@login_required
def tasks_delete(task_id: int):
    task = get_owned_or_404(ComplianceTask, task_id)
    db.session.delete(task)
    db.session.commit()
    return "", 204


# ---- Documents (metadata; files live in external storage) ----

def _apply_document_fields(doc: Document, data: dict) -> None:
    for field in ("name", "name_ar", "description", "file_url", "file_name", "mime_type"):
        if field in data:
            value = data[field]
            setattr(doc, field, (value.strip() or None) if isinstance(value, str) else value)
    if "category" in data:
        if data["category"] not in DOCUMENT_CATEGORIES:
            raise ApiError(_("Invalid document category"), code="VALIDATION_ERROR")
        doc.category = data["category"]
    if "expiry_date" in data:
        doc.expiry_date = parse_date(data["expiry_date"])
    if "reminder_days" in data:
        try:
            doc.reminder_days = int(data["reminder_days"])
        except (TypeError, ValueError):
            raise ApiError(_("reminder_days must be an integer"), code="VALIDATION_ERROR")
    if "is_archived" in data:
        doc.is_archived = bool(data["is_archived"])
    if not doc.name:
        raise ApiError(_("Document name is required"), code="VALIDATION_ERROR")


@engagement_bp.route("/companies/<int:company_id>/documents")
@company_access_required()
def documents_list(company_id: int):
    q = Document.query.filter_by(company_id=company_id)
    if request.args.get("include_archived") not in ("1", "true"):
        q = q.filter(Document.is_archived.is_(False))
    docs = q.order_by(Document.created_at.desc(), Document.id.desc()).all()
    if request.args.get("expiring") in ("1", "true"):
        docs = [d for d in docs if d.expires_soon]
    return jsonify([d.to_dict() for d in docs])


@engagement_bp.route("/companies/<int:company_id>/documents", methods=["POST"])
@company_access_required()
def documents_create(company_id: int):
    data = json_body()
    require_fields(data, "name")
    doc = Document(company_id=company_id, category="other", reminder_days=30, is_archived=False,
                   uploaded_by=current_user.id)
    _apply_document_fields(doc, data)
    db.session.add(doc)
    db.session.flush()
    log_action("document_create", "Document", doc.id, {"name": doc.name}, company_id=company_id)
    db.session.commit()
    return jsonify(doc.to_dict()), 201


@engagement_bp.route("/documents/<int:document_id>", methods=["PATCH", "PUT"])
@login_required
def documents_update(document_id: int):
    doc = get_owned_or_404(Document, document_id)
    _apply_document_fields(doc, json_body())
    db.session.commit()
    return jsonify(doc.to_dict())


@engagement_bp.route("/documents/<int:document_id>", methods=["DELETE"])
@login_required
def documents_delete(document_id: int):
    doc = get_owned_or_404(Document, document_id)
    company_id = doc.company_id
    db.session.delete(doc)
    log_action("document_delete", "Document", document_id, company_id=company_id)
    db.session.commit()
    return "", 204


# ---- Referrals ----

@engagement_bp.route("/referral/my-code")
@login_required
def referral_my_code():
    code = ReferralCode.query.filter_by(user_id=current_user.id).first()
    if code is None:
        code = ReferralCode(user_id=current_user.id, code=generate_referral_code(), is_active=True,
                            referrer_reward_type="credit", referrer_reward_value=50,
                            referee_reward_type="discount", referee_reward_value=20,
                            total_referrals=0, successful_referrals=0, total_rewards_earned=0)
        db.session.add(code)
        db.session.commit()
        current_app.logger.info("Referral code %s issued to user %s", code.code, current_user.id)
    return jsonify(code.to_dict())


@engagement_bp.route("/referral/stats")
@login_required
def referral_stats():
    code = ReferralCode.query.filter_by(user_id=current_user.id).first()
    referrals = (
        Referral.query.filter_by(referrer_id=current_user.id)
        .order_by(Referral.created_at.desc(), Referral.id.desc())
        .all()
    )
    return jsonify({
        "code": code.code if code else None,
        "total_referrals": code.total_referrals if code else 0,
        "successful_referrals": code.successful_referrals if code else 0,
        "pending_referrals": sum(1 for r in referrals if r.status in ("pending", "signed_up")),
        "total_rewards_earned": float(code.total_rewards_earned or 0) if code else 0.0,
        "recent_referrals": [r.to_dict() for r in referrals[:10]],
    })


@engagement_bp.route("/referral/validate/<code>")
def referral_validate(code: str):
    ref = ReferralCode.query.filter_by(code=code).first()
    if ref is None or not ref.is_active:
        return jsonify({"valid": False, "message": _("Invalid or expired referral code")}), 404
    if ref.expires_at and ref.expires_at < datetime.utcnow():
        return jsonify({"valid": False, "message": _("Referral code has expired")}), 400
    return jsonify({
        "valid": True,
        "discount": float(ref.referee_reward_value or 0),
        "discount_type": ref.referee_reward_type,
    })


@engagement_bp.route("/referral/track-signup", methods=["POST"])
def referral_track_signup():
    data = json_body()
    require_fields(data, "code", "referee_email")
    if not _valid_email(data["referee_email"]):
        raise ApiError(_("Invalid email address"), code="VALIDATION_ERROR")
    ref = ReferralCode.query.filter_by(code=data["code"]).first()
    if ref is None or not ref.is_active:
        raise ApiError(_("Invalid referral code"), code="INVALID_REFERRAL")
    referral = Referral(
        referral_code_id=ref.id,
        referrer_id=ref.user_id,
        referee_email=data["referee_email"].strip().lower(),
        status="pending",
        signup_source=data.get("source") or "link",
    )
    ref.total_referrals = (ref.total_referrals or 0) + 1
    db.session.add(referral)
    db.session.commit()
    current_app.logger.info("Referral signup tracked for code %s", ref.code)
    return jsonify(referral.to_dict()), 201


# ---- Feedback ----

def _optional_text(data: dict, field: str, limit: int):
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str) or len(value) > limit:
        raise ApiError(_("%(f)s must be text of at most %(n)s characters", f=field, n=limit),
                       code="VALIDATION_ERROR", extra={"field": field})
    return value


@engagement_bp.route("/feedback", methods=["POST"])
@login_required
def feedback_create():
    data = json_body()
    if data.get("feedback_type") not in FEEDBACK_TYPES:
        raise ApiError(_("feedback_type must be one of: %(t)s", t=", ".join(FEEDBACK_TYPES)),
                       code="VALIDATION_ERROR", extra={"field": "feedback_type"})
    message = data.get("message")
    if not isinstance(message, str) or not 10 <= len(message) <= 5000:
        raise ApiError(_("Message must be between 10 and 5000 characters"),
                       code="VALIDATION_ERROR", extra={"field": "message"})
    rating = data.get("rating")
    if rating is not None and (isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5):
        raise ApiError(_("Rating must be a whole number from 1 to 5"),
                       code="VALIDATION_ERROR", extra={"field": "rating"})
    contact_email = data.get("contact_email")
    if contact_email is not None and not _valid_email(contact_email):
        raise ApiError(_("Invalid email format"), code="VALIDATION_ERROR", extra={"field": "contact_email"})

    feedback = Feedback(
        user_id=current_user.id,
        feedback_type=data["feedback_type"],
        category=_optional_text(data, "category", 50),
        page_context=_optional_text(data, "page_context", 500),
        rating=rating,
        title=_optional_text(data, "title", 200),
        message=message,
        status="new",
        allow_contact=bool(data.get("allow_contact", True)),
        contact_email=contact_email,
    )
    db.session.add(feedback)
    db.session.commit()
    return jsonify(feedback.to_dict()), 201


@engagement_bp.route("/feedback")
@login_required
def feedback_list():
    rows = Feedback.query.filter_by(user_id=current_user.id).order_by(Feedback.created_at.desc()).all()
    return jsonify([f.to_dict() for f in rows])
