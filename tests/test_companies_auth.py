import unittest

from tests.base import ApiTestCase

from bookkeeper.models import Account, AuditLog, Invitation, User


class AuthApiTests(ApiTestCase):
    def test_register_seeds_company_and_chart(self):
        token, company_id = self.register()
        self.assertTrue(token)
        with self.app.app_context():
            names = {a.name_en for a in Account.query.filter_by(company_id=company_id).all()}
        self.assertIn("Accounts Receivable", names)
        self.assertIn("VAT Payable", names)
        self.assertEqual(len(names), 15)

        me = self.api("GET", "/auth/me", token).get_json()
        self.assertEqual(me["user"]["email"], "sara@example.com")
        self.assertEqual(me["companies"][0]["role"], "owner")

    def test_register_validation(self):
        self.register()
        resp = self.api("POST", "/auth/register", json={"name": "Sara", "email": "SARA@example.com",
                                                        "password": "secret123"})
        self.assertEqual(resp.get_json()["code"], "EMAIL_TAKEN")
        resp = self.api("POST", "/auth/register", json={"name": "Ali", "email": "ali@example.com", "password": "123"})
        self.assertEqual(resp.status_code, 400)
        resp = self.api("POST", "/auth/register", json={"name": "Ali"})
        self.assertEqual(resp.get_json()["code"], "VALIDATION_ERROR")

    def test_login(self):
        self.register()
        resp = self.api("POST", "/auth/login", json={"email": "sara@example.com", "password": "wrong"})
        self.assertEqual(resp.status_code, 401)
        resp = self.api("POST", "/auth/login", json={"email": " Sara@Example.com ", "password": "secret123"})
        self.assertEqual(resp.status_code, 200)
        token = resp.get_json()["token"]
        self.assertEqual(self.api("GET", "/auth/me", token).status_code, 200)
        with self.app.app_context():
            self.assertEqual(AuditLog.query.filter_by(action="login").count(), 1)

    def test_bad_token_rejected(self):
        resp = self.api("GET", "/auth/me", "not-a-jwt")
        self.assertEqual(resp.status_code, 401)

    def test_health(self):
        body = self.api("GET", "/health").get_json()
        self.assertTrue(body["ok"])
        self.assertIn("timestamp", body)


class ErrorHandlingTests(ApiTestCase):
    def test_unexpected_errors_hide_details(self):
        def explode():
            raise RuntimeError("could not connect to server at db.internal:5432")

        self.app.add_url_rule("/api/explode", "explode", explode)
        with self.assertLogs(self.app.logger, level="ERROR") as logs:
            resp = self.api("GET", "/explode")
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json(), {"message": "Internal server error"})
        self.assertIn("db.internal", "\n".join(logs.output))


class CompanyApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.token, self.company_id = self.register()

    def test_update_validates_trn(self):
        path = f"/companies/{self.company_id}"
        resp = self.api("PATCH", path, self.token, json={"trn_vat_number": "12345"})
        self.assertEqual(resp.status_code, 400)
        resp = self.api("PATCH", path, self.token,
                        json={"trn_vat_number": "100000000000003", "vat_filing_frequency": "quarterly"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["trn_vat_number"], "100000000000003")
        resp = self.api("PATCH", path, self.token, json={"locale": "fr"})
        self.assertEqual(resp.status_code, 400)

    def test_create_and_list(self):
        resp = self.api("POST", "/companies", self.token, json={"name": "Second Branch LLC"})
        self.assertEqual(resp.status_code, 201)
        resp = self.api("POST", "/companies", self.token, json={"name": "Second Branch LLC"})
        self.assertEqual(resp.get_json()["code"], "NAME_TAKEN")
        names = [c["name"] for c in self.api("GET", "/companies", self.token).get_json()]
        self.assertEqual(names, ["Sara's Company", "Second Branch LLC"])

    def test_invite_placeholder_claimed_on_register(self):
        resp = self.api("POST", f"/companies/{self.company_id}/team/invite", self.token,
                        json={"email": "Omar@Example.com", "role": "accountants"})
        self.assertEqual(resp.status_code, 201)
        self.assertTrue(resp.get_json()["pending"])
        self.assertEqual(resp.get_json()["role"], "accountant")

        omar_token, omar_company = self.register("Omar", "omar@example.com")
        self.assertIsNone(omar_company)
        companies = self.api("GET", "/auth/me", omar_token).get_json()["companies"]
        self.assertEqual([(c["company_id"], c["role"]) for c in companies], [(self.company_id, "accountant")])
        with self.app.app_context():
            self.assertEqual(Invitation.query.one().status, "accepted")
            self.assertFalse(User.query.filter_by(email="omar@example.com").one().is_placeholder)

    def test_invite_existing_member_rejected(self):
        self.register("Omar", "omar@example.com")
        path = f"/companies/{self.company_id}/team/invite"
        self.assertEqual(self.api("POST", path, self.token, json={"email": "omar@example.com"}).status_code, 201)
        resp = self.api("POST", path, self.token, json={"email": "omar@example.com"})
        self.assertEqual(resp.get_json()["code"], "ALREADY_MEMBER")
        resp = self.api("POST", path, self.token, json={"email": "x@example.com", "role": "auditor"})
        self.assertEqual(resp.status_code, 400)

    def test_last_owner_protected(self):
        team = self.api("GET", f"/companies/{self.company_id}/team", self.token).get_json()
        owner_id = team[0]["id"]
        resp = self.api("PATCH", f"/companies/{self.company_id}/team/{owner_id}", self.token, json={"role": "cfo"})
        self.assertEqual(resp.get_json()["code"], "LAST_OWNER")
        resp = self.api("DELETE", f"/companies/{self.company_id}/team/{owner_id}", self.token)
        self.assertEqual(resp.get_json()["code"], "LAST_OWNER")

    def test_employee_cannot_change_ledger(self):
        self.api("POST", f"/companies/{self.company_id}/team/invite", self.token,
                 json={"email": "omar@example.com", "role": "employee"})
        omar_token, _company = self.register("Omar", "omar@example.com")
        resp = self.api("POST", f"/companies/{self.company_id}/accounts", omar_token,
                        json={"name_en": "Petty Cash", "type": "asset"})
        self.assertEqual(resp.status_code, 403)
        resp = self.api("GET", f"/companies/{self.company_id}/accounts", omar_token)
        self.assertEqual(resp.status_code, 200)

    def test_delete_company(self):
        resp = self.api("DELETE", f"/companies/{self.company_id}", self.token)
        self.assertEqual(resp.status_code, 204)
        resp = self.api("GET", f"/companies/{self.company_id}", self.token)
        self.assertEqual(resp.status_code, 404)


class AccountApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.token, self.company_id = self.register()

    def test_create_and_duplicate_code(self):
        path = f"/companies/{self.company_id}/accounts"
        resp = self.api("POST", path, self.token, json={"code": "1030", "name_en": "Petty Cash", "type": "Asset"})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.get_json()["type"], "asset")
        resp = self.api("POST", path, self.token, json={"code": "1030", "name_en": "Float", "type": "asset"})
        self.assertEqual(resp.get_json()["code"], "DUPLICATE_CODE")
        resp = self.api("POST", path, self.token, json={"name_en": "Float", "type": "revenue"})
        self.assertEqual(resp.status_code, 400)

    def test_account_with_transactions_cannot_be_deleted(self):
        cash = self.account_id(self.company_id, "Cash")
        sales = self.account_id(self.company_id, "Sales Revenue")
        self.api("POST", f"/companies/{self.company_id}/journal", self.token, json={"lines": [
            {"account_id": cash, "debit": 10}, {"account_id": sales, "credit": 10},
        ]})
        resp = self.api("DELETE", f"/accounts/{cash}", self.token)
        self.assertEqual(resp.get_json()["code"], "ACCOUNT_IN_USE")
        resp = self.api("PATCH", f"/accounts/{cash}", self.token, json={"type": "expense"})
        self.assertEqual(resp.get_json()["code"], "ACCOUNT_IN_USE")
        resp = self.api("PATCH", f"/accounts/{cash}", self.token, json={"is_active": False})
        self.assertFalse(resp.get_json()["is_active"])

        cogs = self.account_id(self.company_id, "COGS")
        self.assertEqual(self.api("DELETE", f"/accounts/{cogs}", self.token).status_code, 204)

    def test_seed_is_idempotent(self):
        resp = self.api("POST", f"/companies/{self.company_id}/seed-accounts", self.token)
        self.assertEqual(resp.get_json()["created"], 0)

    def test_inactive_filter(self):
        rent = self.account_id(self.company_id, "Rent Expense")
        self.api("PATCH", f"/accounts/{rent}", self.token, json={"is_active": False})
        rows = self.api("GET", f"/companies/{self.company_id}/accounts?include_inactive=0", self.token).get_json()
        self.assertNotIn(rent, [r["id"] for r in rows])


if __name__ == "__main__":
    unittest.main()
