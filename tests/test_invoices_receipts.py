import unittest

from tests.base import ApiTestCase

from bookkeeper.models import JournalEntry, ReminderLog


class InvoiceApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.token, self.company_id = self.register()
        self.bank = self.account_id(self.company_id, "Bank")

    def _create(self, number="INV-001", **extra):
        body = {
            "number": number,
            "customer_name": "Gulf Trading LLC",
            "customer_email": "ap@gulf.example.com",
            "date": "2024-03-05",
            "lines": [
                {"description": "Consulting", "quantity": 2, "unit_price": 500},
                {"description": "Export advisory", "quantity": 1, "unit_price": 200, "vat_rate": 0},
            ],
        }
        body.update(extra)
        return self.api("POST", f"/companies/{self.company_id}/invoices", self.token, json=body)

    def _entries(self, invoice_id):
        with self.app.app_context():
            return [(e.source, e.status, e.memo) for e in
                    JournalEntry.query.filter_by(source_id=invoice_id)
                    .filter(JournalEntry.source.in_(("invoice", "payment"))).order_by(JournalEntry.id).all()]

    def test_create_computes_totals_and_draft_entry(self):
        resp = self._create()
        self.assertEqual(resp.status_code, 201, resp.get_json())
        invoice = resp.get_json()
        self.assertEqual(invoice["subtotal"], 1200.0)
        self.assertEqual(invoice["vat_amount"], 50.0)
        self.assertEqual(invoice["total"], 1250.0)
        self.assertEqual(invoice["status"], "draft")
        self.assertEqual(self._entries(invoice["id"]),
                         [("invoice", "draft", "Sales Invoice INV-001 - Gulf Trading LLC")])

        detail = self.api("GET", f"/invoices/{invoice['id']}", self.token).get_json()
        self.assertEqual(len(detail["journal_entries"]), 1)

    def test_validation(self):
        self.assertEqual(self._create(lines=[]).status_code, 400)
        resp = self._create(lines=[{"description": "x", "quantity": 0, "unit_price": 5}])
        self.assertEqual(resp.status_code, 400)
        self._create()
        resp = self._create()
        self.assertEqual(resp.get_json()["code"], "DUPLICATE_NUMBER")

    def test_post_then_edit_blocked(self):
        invoice_id = self._create().get_json()["id"]
        resp = self.api("POST", f"/invoices/{invoice_id}/post", self.token)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["count"], 1)

        resp = self.api("POST", f"/invoices/{invoice_id}/post", self.token)
        self.assertEqual(resp.get_json()["code"], "NOTHING_TO_POST")
        resp = self.api("PATCH", f"/invoices/{invoice_id}", self.token, json={"customer_name": "Other"})
        self.assertEqual(resp.get_json()["code"], "ENTRY_POSTED")

    def test_edit_regenerates_draft_entry(self):
        invoice_id = self._create().get_json()["id"]
        resp = self.api("PUT", f"/invoices/{invoice_id}", self.token,
                        json={"lines": [{"description": "Audit", "quantity": 1, "unit_price": 1000}]})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["total"], 1050.0)
        self.assertEqual([e[:2] for e in self._entries(invoice_id)], [("invoice", "draft")])

    def test_mark_paid_creates_payment_entry(self):
        invoice_id = self._create().get_json()["id"]
        resp = self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json={"status": "paid"})
        self.assertEqual(resp.status_code, 400)

        rent = self.account_id(self.company_id, "Rent Expense")
        resp = self.api("PATCH", f"/invoices/{invoice_id}/status", self.token,
                        json={"status": "paid", "payment_account_id": rent})
        self.assertEqual(resp.get_json()["code"], "INVALID_ACCOUNT")

        resp = self.api("PATCH", f"/invoices/{invoice_id}/status", self.token,
                        json={"status": "paid", "payment_account_id": self.bank})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["status"], "paid")
        self.assertIn(("payment", "draft", "Payment received for Invoice INV-001"), self._entries(invoice_id))

    def test_reopening_paid_invoice_unwinds_payment(self):
        invoice_id = self._create().get_json()["id"]
        paid = {"status": "paid", "payment_account_id": self.bank}
        self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json=paid)
        self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json={"status": "sent"})
        self.assertNotIn("payment", [source for source, _status, _memo in self._entries(invoice_id)])

        self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json=paid)
        payments = [e for e in self._entries(invoice_id) if e[0] == "payment"]
        self.assertEqual([status for _source, status, _memo in payments], ["draft"])

    def test_reopening_posted_payment_reverses_it(self):
        invoice_id = self._create().get_json()["id"]
        paid = {"status": "paid", "payment_account_id": self.bank}
        self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json=paid)
        self.assertEqual(self.api("POST", f"/invoices/{invoice_id}/post", self.token).get_json()["count"], 2)

        self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json={"status": "sent"})
        self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json=paid)
        payments = [status for source, status, _memo in self._entries(invoice_id) if source == "payment"]
        self.assertEqual(payments, ["void", "draft"])
        with self.app.app_context():
            reversal = JournalEntry.query.filter_by(source="reversal").one()
            self.assertIn("Invoice INV-001 no longer paid", reversal.memo)

    def test_non_numeric_payment_account_rejected(self):
        invoice_id = self._create().get_json()["id"]
        resp = self.api("PATCH", f"/invoices/{invoice_id}/status", self.token,
                        json={"status": "paid", "payment_account_id": "bank"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["code"], "VALIDATION_ERROR")

    def test_oversized_invoice_rejected(self):
        resp = self._create(lines=[{"description": "Tower", "quantity": 1000000, "unit_price": 1000000000}])
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["code"], "VALIDATION_ERROR")

    def test_void_reverses_posted_entries(self):
        invoice_id = self._create().get_json()["id"]
        self.api("POST", f"/invoices/{invoice_id}/post", self.token)
        resp = self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json={"status": "void"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self._entries(invoice_id)[0][:2], ("invoice", "void"))
        with self.app.app_context():
            reversal = JournalEntry.query.filter_by(source="reversal").one()
            self.assertIn("Invoice INV-001 voided", reversal.memo)

        resp = self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json={"status": "sent"})
        self.assertEqual(resp.get_json()["code"], "INVOICE_VOID")
        resp = self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json={"status": "overdue"})
        self.assertEqual(resp.get_json()["code"], "VALIDATION_ERROR")

    def test_delete_draft_invoice(self):
        invoice_id = self._create().get_json()["id"]
        resp = self.api("DELETE", f"/invoices/{invoice_id}", self.token)
        self.assertEqual(resp.status_code, 204)
        self.assertEqual(self._entries(invoice_id), [])

    def test_send_reminder_logs_delivery(self):
        invoice_id = self._create().get_json()["id"]
        resp = self.api("POST", f"/invoices/{invoice_id}/send-reminder", self.token)
        self.assertEqual(resp.status_code, 200, resp.get_json())
        self.assertEqual(resp.get_json()["log"]["recipient"], "ap@gulf.example.com")
        logs = self.api("GET", f"/companies/{self.company_id}/reminder-logs", self.token).get_json()
        self.assertEqual([l["status"] for l in logs], ["sent"])

    def test_reminder_needs_recipient_and_open_invoice(self):
        invoice_id = self._create(customer_email=None).get_json()["id"]
        resp = self.api("POST", f"/invoices/{invoice_id}/send-reminder", self.token)
        self.assertEqual(resp.status_code, 400)
        self.api("PATCH", f"/invoices/{invoice_id}/status", self.token, json={"status": "void"})
        resp = self.api("POST", f"/invoices/{invoice_id}/send-reminder", self.token, json={"email": "a@b.ae"})
        self.assertEqual(resp.get_json()["code"], "INVALID_STATUS")
        with self.app.app_context():
            self.assertEqual(ReminderLog.query.count(), 0)

    def test_exports(self):
        invoice_id = self._create().get_json()["id"]
        resp = self.api("GET", f"/invoices/{invoice_id}/export.pdf", self.token)
        self.assertEqual(resp.mimetype, "application/pdf")
        resp = self.api("GET", f"/invoices/{invoice_id}/export.xlsx", self.token)
        self.assertTrue(resp.data.startswith(b"PK"))
        resp = self.api("GET", f"/companies/{self.company_id}/invoices?export=xlsx", self.token)
        self.assertTrue(resp.data.startswith(b"PK"))
        resp = self.api("GET", f"/invoices/{invoice_id}/export.csv", self.token)
        self.assertEqual(resp.status_code, 400)

    def test_list_status_filter(self):
        self._create("INV-001")
        second = self._create("INV-002").get_json()["id"]
        self.api("PATCH", f"/invoices/{second}/status", self.token, json={"status": "sent"})
        rows = self.api("GET", f"/companies/{self.company_id}/invoices?status=sent", self.token).get_json()
        self.assertEqual([r["number"] for r in rows], ["INV-002"])


class ReceiptApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.token, self.company_id = self.register()
        self.cash = self.account_id(self.company_id, "Cash")
        self.supplies = self.account_id(self.company_id, "Office Supplies")

    def _create(self, **extra):
        body = {"merchant": "Carrefour", "date": "2024-03-10", "amount": 100, "vat_amount": 5,
                "category": "Office"}
        body.update(extra)
        return self.api("POST", f"/companies/{self.company_id}/receipts", self.token, json=body)

    def test_post_creates_balanced_entry(self):
        receipt_id = self._create().get_json()["id"]
        resp = self.api("POST", f"/receipts/{receipt_id}/post", self.token,
                        json={"account_id": self.supplies, "payment_account_id": self.cash})
        self.assertEqual(resp.status_code, 200, resp.get_json())
        body = resp.get_json()
        self.assertTrue(body["receipt"]["posted"])
        entry = body["journal_entry"]
        self.assertEqual(entry["status"], "posted")
        self.assertEqual(entry["memo"], "Receipt: Carrefour - Office")
        self.assertEqual(sorted((l["debit"], l["credit"]) for l in entry["lines"]), [(0.0, 105.0), (105.0, 0.0)])

        resp = self.api("POST", f"/receipts/{receipt_id}/post", self.token,
                        json={"account_id": self.supplies, "payment_account_id": self.cash})
        self.assertEqual(resp.get_json()["code"], "ENTRY_POSTED")
        resp = self.api("DELETE", f"/receipts/{receipt_id}", self.token)
        self.assertEqual(resp.status_code, 400)

    def test_post_validation(self):
        receipt_id = self._create().get_json()["id"]
        resp = self.api("POST", f"/receipts/{receipt_id}/post", self.token)
        self.assertEqual(resp.status_code, 400)
        resp = self.api("POST", f"/receipts/{receipt_id}/post", self.token,
                        json={"account_id": self.cash, "payment_account_id": self.cash})
        self.assertEqual(resp.get_json()["code"], "INVALID_ACCOUNT")

        zero_id = self._create(amount=0, vat_amount=0).get_json()["id"]
        resp = self.api("POST", f"/receipts/{zero_id}/post", self.token,
                        json={"account_id": self.supplies, "payment_account_id": self.cash})
        self.assertEqual(resp.status_code, 400)

    def test_foreign_account_forbidden(self):
        receipt_id = self._create().get_json()["id"]
        _token, other_company = self.register("Omar", "omar@example.com")
        foreign = self.account_id(other_company, "Office Supplies")
        resp = self.api("POST", f"/receipts/{receipt_id}/post", self.token,
                        json={"account_id": foreign, "payment_account_id": self.cash})
        self.assertEqual(resp.status_code, 403)

    def test_negative_amount_rejected(self):
        self.assertEqual(self._create(amount=-1).status_code, 400)

    def test_non_numeric_account_ids_rejected(self):
        receipt_id = self._create().get_json()["id"]
        resp = self.api("POST", f"/receipts/{receipt_id}/post", self.token,
                        json={"account_id": "supplies", "payment_account_id": self.cash})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["code"], "VALIDATION_ERROR")
        resp = self.api("PUT", f"/receipts/{receipt_id}", self.token, json={"payment_account_id": "cash"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["code"], "VALIDATION_ERROR")

    def test_check_similar(self):
        self._create()
        resp = self.api("POST", f"/companies/{self.company_id}/receipts/check-similar", self.token,
                        json={"merchant": "carrefour", "amount": 102, "date": "2024-04-30"})
        body = resp.get_json()
        self.assertTrue(body["has_similar"])
        self.assertEqual(body["similar"][0]["merchant"], "Carrefour")

        resp = self.api("POST", f"/companies/{self.company_id}/receipts/check-similar", self.token,
                        json={"merchant": "ENOC", "amount": 300, "date": "2024-03-11"})
        self.assertFalse(resp.get_json()["has_similar"])

    def test_list_posted_filter(self):
        first = self._create().get_json()["id"]
        self._create(merchant="ENOC")
        self.api("POST", f"/receipts/{first}/post", self.token,
                 json={"account_id": self.supplies, "payment_account_id": self.cash})
        rows = self.api("GET", f"/companies/{self.company_id}/receipts?posted=false", self.token).get_json()
        self.assertEqual([r["merchant"] for r in rows], ["ENOC"])


if __name__ == "__main__":
    unittest.main()
