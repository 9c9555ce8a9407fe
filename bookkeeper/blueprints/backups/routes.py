import json
from io import BytesIO

from botocore.exceptions import BotoCoreError, ClientError
from flask import Blueprint, jsonify, current_app, send_file
from flask_babel import gettext as _
from flask_login import login_required, current_user

from ...errors import ApiError
from ...extensions import db
from ...models import Backup
from ...security import company_access_required, get_owned_or_404
from ...utils.audit import log_action
from ...utils.backup import build_snapshot, preview_restore, restore_snapshot
from ...utils.http import json_body
from ...utils.storage import storage_configured, upload_backup_archive, delete_backup_archive

backups_bp = Blueprint("backups", __name__)


def _encode(payload: dict) -> bytes:
    return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")


@backups_bp.route("/companies/<int:company_id>/backups")
@company_access_required("owner", "accountant", "cfo")
def backups_list(company_id: int):
    rows = Backup.query.filter_by(company_id=company_id).order_by(Backup.created_at.desc(), Backup.id.desc()).all()
    return jsonify([b.to_dict() for b in rows])


@backups_bp.route("/companies/<int:company_id>/backups", methods=["POST"])
@company_access_required("owner", "accountant", "cfo")
def backups_create(company_id: int):
    data = json_body()
    snapshot = build_snapshot(company_id)
    raw = _encode(snapshot)
    backup = Backup(
        company_id=company_id,
        name=(str(data.get("name") or "").strip() or f"Backup {snapshot['created_at'][:19]}"),
        payload=snapshot,
        size_bytes=len(raw),
        created_by=current_user.id,
    )
    if storage_configured():
        try:
            backup.path = upload_backup_archive(raw, company_id)
        except (BotoCoreError, ClientError, RuntimeError) as exc:
            # the copy kept in the database is still usable
            current_app.logger.warning("Backup upload for company %s failed: %s", company_id, exc)
    db.session.add(backup)
    db.session.flush()
    log_action("backup_create", "Backup", backup.id, snapshot["counts"], company_id=company_id)
    db.session.commit()
    current_app.logger.info("Backup %s created for company %s (%s bytes)", backup.id, company_id, backup.size_bytes)
    return jsonify(backup.to_dict()), 201


@backups_bp.route("/backups/<int:backup_id>")
@login_required
def backups_get(backup_id: int):
    return jsonify(get_owned_or_404(Backup, backup_id, "owner", "accountant", "cfo").to_dict())


@backups_bp.route("/backups/<int:backup_id>/download")
@login_required
def backups_download(backup_id: int):
    backup = get_owned_or_404(Backup, backup_id, "owner", "accountant", "cfo")
    filename = f"backup_{backup.company_id}_{backup.created_at:%Y%m%d_%H%M%S}.json"
    return send_file(BytesIO(_encode(backup.payload)), mimetype="application/json",
                     as_attachment=True, download_name=filename)


@backups_bp.route("/backups/<int:backup_id>", methods=["DELETE"])
@login_required
def backups_delete(backup_id: int):
    backup = get_owned_or_404(Backup, backup_id, "owner")
    if backup.path:
        delete_backup_archive(backup.path)
    company_id = backup.company_id
    db.session.delete(backup)
    log_action("backup_delete", "Backup", backup_id, company_id=company_id)
    db.session.commit()
    return "", 204


@backups_bp.route("/backups/<int:backup_id>/restore-preview", methods=["POST"])
@login_required
def backups_restore_preview(backup_id: int):
    backup = get_owned_or_404(Backup, backup_id, "owner")
    return jsonify(preview_restore(backup.company_id, backup.payload))


@backups_bp.route("/backups/<int:backup_id>/restore", methods=["POST"])
@login_required
def backups_restore(backup_id: int):
    backup = get_owned_or_404(Backup, backup_id, "owner")
    if json_body().get("confirm_restore") is not True:
        raise ApiError(_("Restore must be confirmed with confirm_restore: true"), code="CONFIRMATION_REQUIRED")
    counts = restore_snapshot(backup.company_id, backup.payload)
    log_action("backup_restore", "Backup", backup.id, counts, company_id=backup.company_id)
    db.session.commit()
    current_app.logger.info("Company %s restored from backup %s", backup.company_id, backup.id)
    return jsonify({"message": _("Backup restored successfully"), "restored": counts})
