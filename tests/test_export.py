import os
import unittest
from datetime import datetime
from io import BytesIO

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["AUTO_MIGRATE"] = "0"

from openpyxl import load_workbook

from bookkeeper.utils.export import (
    ExportColumn, ExportSheet, build_workbook, format_currency_for_export, format_date_for_export,
    prepare_aging_for_export, prepare_balance_sheet_for_export, prepare_invoices_for_export, prepare_profit_loss_for_export,
    prepare_receipts_for_export, prepare_trial_balance_for_export, prepare_vat_summary_for_export,
    render_invoice_pdf, render_sheet_pdf, sheet_title,
)

PROFIT_LOSS = {
    "revenue": [{"account_name": "Sales Revenue", "account_code": "4010", "amount": 5000}],
    "expenses": [
        {"account_name": "Rent Expense", "account_code": "6010", "amount": 1200},
        {"account_name": "Travel Expenses", "account_code": "6050", "amount": 300.5},
    ],
    "total_revenue": 5000,
    "total_expenses": 1500.5,
    "net_profit": 3499.5,
}


class ProfitLossShapeTests(unittest.TestCase):
    def test_layout(self):
        sheet = prepare_profit_loss_for_export(PROFIT_LOSS)
        self.assertEqual(sheet.sheet_name, "Profit & Loss")
        self.assertEqual(sheet.header_row(), ["Account", "Code", "Amount (AED)"])
        labels = [row["account"] for row in sheet.rows]
        self.assertEqual(labels, [
            "REVENUE", "Sales Revenue", "Total Revenue", "",
            "EXPENSES", "Rent Expense", "Travel Expenses", "Total Expenses", "",
            "NET PROFIT",
        ])
        self.assertEqual(sheet.rows[-1]["amount"], "3499.50")
        self.assertEqual(sheet.rows[6]["amount"], "300.50")

    def test_accepts_camel_case_report(self):
        sheet = prepare_profit_loss_for_export({"revenue": [], "expenses": [], "totalRevenue": 0,
                                                "totalExpenses": 0, "netProfit": -10})
        self.assertEqual(sheet.rows[-1]["amount"], "-10.00")

    def test_missing_report(self):
        sheet = prepare_profit_loss_for_export(None)
        self.assertEqual(sheet.rows[0]["account"], "REVENUE")


class BalanceSheetShapeTests(unittest.TestCase):
    def test_current_earnings_row(self):
        sheet = prepare_balance_sheet_for_export({
            "assets": [{"account_name": "Cash", "account_code": "1010", "amount": 800}],
            "liabilities": [],
            "equity": [{"account_name": "Owner's Equity", "account_code": "3010", "amount": 500}],
            "current_earnings": 300,
            "total_assets": 800, "total_liabilities": 0, "total_equity": 800,
        })
        labels = [row["account"] for row in sheet.rows]
        self.assertIn("Current Period Earnings", labels)
        self.assertEqual(labels[-1], "Total Equity")
        self.assertEqual(sheet.rows[-1]["amount"], "800.00")


class VatAndTrialBalanceShapeTests(unittest.TestCase):
    def test_vat_rows(self):
        sheet = prepare_vat_summary_for_export({
            "period": "2024-01-01 to 2024-03-31", "sales_subtotal": 1000, "sales_vat": 50,
            "purchases_subtotal": 400, "purchases_vat": 20, "net_vat_payable": 30,
        })
        self.assertEqual(len(sheet.rows), 9)
        self.assertEqual(sheet.rows[0]["amount"], "2024-01-01 to 2024-03-31")
        self.assertEqual(sheet.rows[-1], {"description": "Net VAT Payable", "amount": "30.00"})

    def test_trial_balance_total_row(self):
        sheet = prepare_trial_balance_for_export({
            "rows": [{"account_code": "1010", "account_name": "Cash", "debit": 100, "credit": 0}],
            "total_debit": 100, "total_credit": 100,
        })
        self.assertEqual(sheet.rows[-1]["account"], "TOTAL")
        self.assertEqual(sheet.rows[-2]["account"], "")

    def test_aging_rows(self):
        sheet = prepare_aging_for_export({
            "customers": [{"customer_name": "Al Noor", "current": 100, "days_30": 200, "days_60": 0,
                           "days_90": 0, "over_90": 0, "total": 300}],
            "totals": {"current": 100, "days_30": 200, "total": 300},
        })
        self.assertEqual(sheet.sheet_name, "AR Aging")
        self.assertEqual(sheet.header_row()[0], "Customer")
        self.assertEqual(sheet.rows[0]["days_30"], "200.00")
        self.assertEqual(sheet.rows[-1]["customer"], "TOTAL")
        self.assertEqual(sheet.rows[-1]["over_90"], "0.00")
        self.assertEqual(len(prepare_aging_for_export(None).rows), 2)


class ListShapeTests(unittest.TestCase):
    def test_invoices(self):
        sheet = prepare_invoices_for_export([{
            "number": "INV-7", "customer_name": "Gulf Co", "date": "2024-03-05T00:00:00",
            "subtotal": 100, "vat_amount": 5, "total": 105, "status": "sent", "currency": "AED",
        }])
        self.assertEqual(sheet.sheet_name, "Invoices")
        values = sheet.value_rows()[0]
        self.assertIn("INV-7", values)
        self.assertIn("05 Mar 2024", values)

    def test_receipts_status(self):
        sheet = prepare_receipts_for_export([
            {"merchant": "ENOC", "amount": 50, "vat_amount": 2.5, "posted": True},
            {"merchant": "Carrefour", "amount": 20, "vat_amount": 1, "posted": False},
        ])
        statuses = [row["status"] for row in sheet.rows]
        self.assertEqual(statuses, ["Posted", "Pending"])


class FormattingTests(unittest.TestCase):
    def test_formats(self):
        self.assertEqual(format_date_for_export(datetime(2024, 1, 9)), "09 Jan 2024")
        self.assertEqual(format_date_for_export(None), "")
        self.assertEqual(format_currency_for_export(1234.5), "AED 1234.50")

    def test_sheet_title(self):
        self.assertEqual(sheet_title("Q1/Q2: [draft]"), "Q1-Q2- -draft-")
        self.assertEqual(len(sheet_title("x" * 40)), 31)


class RenderTests(unittest.TestCase):
    def test_workbook_widths_and_header(self):
        sheet = ExportSheet([ExportColumn("Name", "name", 22), ExportColumn("Amount", "amount", 12)],
                            [{"name": "Cash", "amount": "10.00"}], "Accounts")
        wb = load_workbook(BytesIO(build_workbook([sheet])))
        ws = wb["Accounts"]
        self.assertEqual(ws["A1"].value, "Name")
        self.assertTrue(ws["A1"].font.bold)
        self.assertEqual(ws["A2"].value, "Cash")
        self.assertEqual(ws.column_dimensions["A"].width, 22)

    def test_pdfs(self):
        sheet = prepare_profit_loss_for_export(PROFIT_LOSS)
        self.assertTrue(render_sheet_pdf(sheet, "Profit & Loss", "Demo").startswith(b"%PDF"))
        invoice = {
            "number": "INV-1", "customer_name": "Gulf Co", "date": "2024-03-05T00:00:00", "currency": "AED",
            "subtotal": 100, "vat_amount": 5, "total": 105,
            "lines": [{"description": "Consulting", "quantity": 1, "unit_price": 100, "vat_rate": 0.05}],
        }
        self.assertTrue(render_invoice_pdf(invoice, {"name": "Dune LLC"}, title="Tax Invoice").startswith(b"%PDF"))


if __name__ == "__main__":
    unittest.main()
