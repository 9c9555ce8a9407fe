import json
import unittest
from datetime import datetime
from unittest import mock

from botocore.exceptions import ClientError

from tests.base import ApiTestCase, AppContextTestCase

from bookkeeper.errors import ApiError
from bookkeeper.extensions import db
from bookkeeper.models import Account, Company, Invoice, JournalEntry, Receipt
from bookkeeper.utils.backup import build_snapshot, preview_restore, restore_snapshot
from bookkeeper.utils.coa import find_account, seed_chart_of_accounts
from bookkeeper.utils.journal import create_entry, reverse_entry


class SnapshotTests(AppContextTestCase):
    def setUp(self):
        super().setUp()
        company = Company(name="Oasis Foods")
        db.session.add(company)
        db.session.flush()
        self.company_id = company.id
        seed_chart_of_accounts(company.id)
        cash = find_account(company.id, "Cash")
        sales = find_account(company.id, "Sales Revenue")
        supplies = find_account(company.id, "Office Supplies")
        posted = create_entry(company.id, None, datetime(2024, 1, 15), "Cash sale", [
            {"account_id": cash.id, "debit": 250},
            {"account_id": sales.id, "credit": 250},
        ], status="posted")
        reverse_entry(posted, None, "Duplicate")
        invoice = Invoice(company_id=company.id, number="INV-9", customer_name="Souk LLC",
                          date=datetime(2024, 1, 20), subtotal=100, vat_amount=5, total=105)
        db.session.add(invoice)
        db.session.flush()
        self.invoice_entry = create_entry(company.id, None, datetime(2024, 1, 20), "Sales Invoice INV-9", [
            {"account_id": cash.id, "debit": 105},
            {"account_id": sales.id, "credit": 105},
        ], source="invoice", source_id=invoice.id)
        db.session.add(Receipt(company_id=company.id, merchant="ENOC", amount=40, vat_amount=2,
                               account_id=supplies.id, payment_account_id=cash.id))
        db.session.commit()

    def test_snapshot_counts_and_json_safe(self):
        snapshot = build_snapshot(self.company_id)
        self.assertEqual(snapshot["counts"], {
            "accounts": 15, "journal_entries": 3, "journal_lines": 6, "invoices": 1, "receipts": 1,
        })
        decoded = json.loads(json.dumps(snapshot))
        self.assertEqual(decoded["data"]["journal_entries"][0]["lines"][0]["debit"], "250.00")

    def test_preview_compares_counts(self):
        snapshot = build_snapshot(self.company_id)
        db.session.add(Receipt(company_id=self.company_id, merchant="Extra", amount=1))
        db.session.commit()
        preview = preview_restore(self.company_id, snapshot)
        self.assertEqual(preview["will_restore"]["receipts"], 1)
        self.assertEqual(preview["will_replace"]["receipts"], 2)

    def test_restore_remaps_references(self):
        snapshot = build_snapshot(self.company_id)
        db.session.add(Account(company_id=self.company_id, name_en="Scratch", type="asset"))
        db.session.commit()

        counts = restore_snapshot(self.company_id, snapshot)
        db.session.commit()
        self.assertEqual(counts["journal_entries"], 3)
        self.assertIsNone(find_account(self.company_id, "Scratch"))

        reversal = JournalEntry.query.filter_by(company_id=self.company_id, source="reversal").one()
        original = db.session.get(JournalEntry, reversal.reversed_entry_id)
        self.assertEqual(original.status, "void")
        self.assertEqual(reversal.source_id, original.id)

        invoice = Invoice.query.filter_by(company_id=self.company_id).one()
        invoice_entry = JournalEntry.query.filter_by(company_id=self.company_id, source="invoice").one()
        self.assertEqual(invoice_entry.source_id, invoice.id)

        receipt = Receipt.query.filter_by(company_id=self.company_id).one()
        self.assertEqual(db.session.get(Account, receipt.account_id).name_en, "Office Supplies")

    def test_malformed_payload_rejected(self):
        with self.assertRaises(ApiError) as cm:
            restore_snapshot(self.company_id, {"version": 99, "data": {}})
        self.assertEqual(cm.exception.code, "INVALID_BACKUP")
        with self.assertRaises(ApiError):
            preview_restore(self.company_id, {"version": 1})


class BackupApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.token, self.company_id = self.register()

    def test_create_download_restore(self):
        resp = self.api("POST", f"/companies/{self.company_id}/backups", self.token, json={"name": "Year end"})
        self.assertEqual(resp.status_code, 201)
        backup = resp.get_json()
        self.assertEqual(backup["name"], "Year end")
        self.assertGreater(backup["size_bytes"], 0)

        listed = self.api("GET", f"/companies/{self.company_id}/backups", self.token).get_json()
        self.assertEqual([b["id"] for b in listed], [backup["id"]])

        resp = self.api("GET", f"/backups/{backup['id']}/download", self.token)
        self.assertEqual(resp.mimetype, "application/json")
        self.assertEqual(json.loads(resp.data)["counts"]["accounts"], 15)

        resp = self.api("POST", f"/backups/{backup['id']}/restore-preview", self.token)
        self.assertEqual(resp.get_json()["will_restore"]["accounts"], 15)

        resp = self.api("POST", f"/backups/{backup['id']}/restore", self.token, json={"confirm_restore": "yes"})
        self.assertEqual(resp.get_json()["code"], "CONFIRMATION_REQUIRED")
        resp = self.api("POST", f"/backups/{backup['id']}/restore", self.token, json={"confirm_restore": True})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["restored"]["accounts"], 15)

        self.assertEqual(self.api("DELETE", f"/backups/{backup['id']}", self.token).status_code, 204)

    def test_other_company_cannot_read_backup(self):
        backup_id = self.api("POST", f"/companies/{self.company_id}/backups", self.token).get_json()["id"]
        other_token, _company = self.register("Omar", "omar@example.com")
        self.assertEqual(self.api("GET", f"/backups/{backup_id}", other_token).status_code, 403)



class BackupStorageTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.app.config.update(
            B2_BUCKET_NAME="books-backups", B2_PUBLIC_URL="https://cdn.example.com/file/books-backups",
            B2_ENDPOINT="https://s3.example.com", B2_KEY_ID="key", B2_APPLICATION_KEY="secret",
        )
        self.token, self.company_id = self.register()

    def test_archive_uploaded_and_deleted(self):
        s3 = mock.Mock()
        with mock.patch("bookkeeper.utils.storage.boto3.client", return_value=s3):
            backup = self.api("POST", f"/companies/{self.company_id}/backups", self.token).get_json()
            self.assertTrue(backup["path"].startswith(f"https://cdn.example.com/file/books-backups/backups/{self.company_id}/"))
            bucket, key = s3.upload_fileobj.call_args[0][1:3]
            self.assertEqual(bucket, "books-backups")

            self.api("DELETE", f"/backups/{backup['id']}", self.token)
            s3.delete_object.assert_called_once_with(Bucket="books-backups", Key=key)

    def test_upload_failure_keeps_database_copy(self):
        s3 = mock.Mock()
        s3.upload_fileobj.side_effect = ClientError({"Error": {"Code": "500", "Message": "down"}}, "PutObject")
        with mock.patch("bookkeeper.utils.storage.boto3.client", return_value=s3):
            resp = self.api("POST", f"/companies/{self.company_id}/backups", self.token)
        self.assertEqual(resp.status_code, 201)
        self.assertIsNone(resp.get_json()["path"])


if __name__ == "__main__":
    unittest.main()
