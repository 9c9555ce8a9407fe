import re
import unittest
from datetime import datetime, timedelta

from tests.base import ApiTestCase

from bookkeeper.blueprints.engagement.routes import generate_referral_code
from bookkeeper.extensions import db
from bookkeeper.models import ReferralCode


class ComplianceTaskTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.token, self.company_id = self.register()
        self.path = f"/companies/{self.company_id}/compliance-tasks"

    def test_create_complete_and_filter(self):
        resp = self.api("POST", self.path, self.token, json={"title": "Q1 VAT return", "due_date": "2020-04-28",
                                                              "priority": "high", "category": "vat_filing"})
        self.assertEqual(resp.status_code, 201)
        task = resp.get_json()
        self.assertTrue(task["is_overdue"])
        self.api("POST", self.path, self.token, json={"title": "Payroll WPS", "due_date": "2099-01-01"})

        resp = self.api("POST", f"/compliance-tasks/{task['id']}/complete", self.token)
        self.assertEqual(resp.get_json()["status"], "completed")
        self.assertFalse(resp.get_json()["is_overdue"])

        pending = self.api("GET", f"{self.path}?status=pending", self.token).get_json()
        self.assertEqual([t["title"] for t in pending], ["Payroll WPS"])

    def test_validation(self):
        resp = self.api("POST", self.path, self.token, json={"title": "No date"})
        self.assertEqual(resp.status_code, 400)
        resp = self.api("POST", self.path, self.token, json={"title": "x", "due_date": "2099-01-01",
                                                              "priority": "urgent"})
        self.assertEqual(resp.status_code, 400)

    def test_reopen_and_delete(self):
        task_id = self.api("POST", self.path, self.token,
                           json={"title": "Trade licence renewal", "due_date": "2099-06-01"}).get_json()["id"]
        self.api("POST", f"/compliance-tasks/{task_id}/complete", self.token)
        resp = self.api("PATCH", f"/compliance-tasks/{task_id}", self.token, json={"status": "pending"})
        self.assertIsNone(resp.get_json()["completed_at"])
        self.assertEqual(self.api("DELETE", f"/compliance-tasks/{task_id}", self.token).status_code, 204)


class DocumentTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.token, self.company_id = self.register()
        self.path = f"/companies/{self.company_id}/documents"

    def test_expiring_and_archived(self):
        soon = (datetime.utcnow() + timedelta(days=10)).date().isoformat()
        later = (datetime.utcnow() + timedelta(days=300)).date().isoformat()
        licence = self.api("POST", self.path, self.token, json={
            "name": "Trade License", "category": "trade_license", "expiry_date": soon,
        }).get_json()
        self.assertTrue(licence["expires_soon"])
        self.api("POST", self.path, self.token, json={"name": "VAT Certificate", "category": "vat_certificate",
                                                       "expiry_date": later})

        expiring = self.api("GET", f"{self.path}?expiring=1", self.token).get_json()
        self.assertEqual([d["name"] for d in expiring], ["Trade License"])

        self.api("PATCH", f"/documents/{licence['id']}", self.token, json={"is_archived": True})
        names = [d["name"] for d in self.api("GET", self.path, self.token).get_json()]
        self.assertEqual(names, ["VAT Certificate"])
        names = [d["name"] for d in self.api("GET", f"{self.path}?include_archived=1", self.token).get_json()]
        self.assertEqual(len(names), 2)

    def test_validation_and_delete(self):
        resp = self.api("POST", self.path, self.token, json={"name": "Lease", "category": "lease"})
        self.assertEqual(resp.status_code, 400)
        doc_id = self.api("POST", self.path, self.token, json={"name": "Lease"}).get_json()["id"]
        resp = self.api("PATCH", f"/documents/{doc_id}", self.token, json={"reminder_days": "soon"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.api("DELETE", f"/documents/{doc_id}", self.token).status_code, 204)


class ReferralTests(ApiTestCase):
    def test_code_format(self):
        self.assertRegex(generate_referral_code(), r"^REF-[0-9A-Z]+-[0-9A-Z]{4}$")

    def test_my_code_is_stable(self):
        token, _company = self.register()
        first = self.api("GET", "/referral/my-code", token).get_json()
        second = self.api("GET", "/referral/my-code", token).get_json()
        self.assertEqual(first["code"], second["code"])
        self.assertEqual(first["referee_reward_value"], 20.0)

    def test_validate_and_track(self):
        token, _company = self.register()
        code = self.api("GET", "/referral/my-code", token).get_json()["code"]

        resp = self.api("GET", f"/referral/validate/{code}")
        self.assertEqual(resp.get_json(), {"valid": True, "discount": 20.0, "discount_type": "discount"})
        resp = self.api("GET", "/referral/validate/REF-NOPE-0000")
        self.assertEqual(resp.status_code, 404)

        resp = self.api("POST", "/referral/track-signup", json={"code": code, "referee_email": "New@Shop.ae"})
        self.assertEqual(resp.status_code, 201)
        resp = self.api("POST", "/referral/track-signup", json={"code": "bogus", "referee_email": "a@b.ae"})
        self.assertEqual(resp.get_json()["code"], "INVALID_REFERRAL")

        stats = self.api("GET", "/referral/stats", token).get_json()
        self.assertEqual(stats["total_referrals"], 1)
        self.assertEqual(stats["pending_referrals"], 1)
        self.assertEqual(stats["recent_referrals"][0]["referee_email"], "new@shop.ae")

    def test_expired_code(self):
        token, _company = self.register()
        code = self.api("GET", "/referral/my-code", token).get_json()["code"]
        with self.app.app_context():
            ref = ReferralCode.query.filter_by(code=code).one()
            ref.expires_at = datetime.utcnow() - timedelta(days=1)
            db.session.commit()
        self.assertEqual(self.api("GET", f"/referral/validate/{code}").status_code, 400)


class FeedbackTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.token, _company = self.register()

    def _send(self, **fields):
        body = {"feedback_type": "feature_request", "message": "Please add Corporate Tax filing support."}
        body.update(fields)
        return self.api("POST", "/feedback", self.token, json=body)

    def test_field_errors(self):
        cases = [
            ({"feedback_type": "rant"}, "feedback_type"),
            ({"message": "too short"}, "message"),
            ({"rating": 6}, "rating"),
            ({"rating": True}, "rating"),
            ({"rating": 4.5}, "rating"),
            ({"contact_email": "nobody"}, "contact_email"),
            ({"title": "x" * 201}, "title"),
            ({"category": "c" * 51}, "category"),
        ]
        for fields, bad in cases:
            resp = self._send(**fields)
            self.assertEqual(resp.status_code, 400, fields)
            self.assertEqual(resp.get_json()["field"], bad)

    def test_create_and_list_own(self):
        resp = self._send(rating=5, contact_email="sara@example.com", page_context="/reports")
        self.assertEqual(resp.status_code, 201)
        other_token, _company = self.register("Omar", "omar@example.com")
        self.assertEqual(self.api("GET", "/feedback", other_token).get_json(), [])
        mine = self.api("GET", "/feedback", self.token).get_json()
        self.assertEqual(len(mine), 1)
        self.assertTrue(re.match(r"Please add", mine[0]["message"]))


if __name__ == "__main__":
    unittest.main()
