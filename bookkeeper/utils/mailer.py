from datetime import datetime

from flask import current_app
from flask_babel import gettext as _
from flask_mail import Message

from ..extensions import db, mail
from ..models import ReminderLog
from .export import render_invoice_pdf, format_currency_for_export, format_date_for_export


def send_invoice_reminder(invoice, company, recipient: str) -> ReminderLog:
    """E-mail a payment reminder with the invoice PDF attached and log the attempt.

    Delivery failures are recorded on the returned ReminderLog (status
    ``failed``) instead of aborting the request.
    """
    log = ReminderLog(
        company_id=invoice.company_id,
        invoice_id=invoice.id,
        recipient=recipient,
        channel="email",
        sent_at=datetime.utcnow(),
    )
    try:
        msg = Message(
            subject=_("Payment reminder: invoice %(n)s", n=invoice.number),
            recipients=[recipient],
        )
        due = format_date_for_export(invoice.due_date) or _("on receipt")
        msg.body = _(
            "Dear %(customer)s,\n\nThis is a reminder that invoice %(n)s for %(amount)s is due %(due)s.\n\n%(company)s",
            customer=invoice.customer_name,
            n=invoice.number,
            amount=format_currency_for_export(invoice.total, invoice.currency or "AED"),
            due=due,
            company=company.name,
        )
        pdf = render_invoice_pdf(invoice.to_dict(), company.to_dict(), title=company.invoice_title)
        msg.attach(filename=f"{invoice.number}.pdf", content_type="application/pdf", data=pdf)
        mail.send(msg)
        log.status = "sent"
        current_app.logger.info("Reminder for invoice %s sent to %s", invoice.number, recipient)
    except Exception as exc:
        log.status = "failed"
        log.error_message = str(exc)
        current_app.logger.warning("Reminder for invoice %s to %s failed: %s", invoice.number, recipient, exc)
    db.session.add(log)
    return log
