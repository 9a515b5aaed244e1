# accounting/tests/test_api.py

"""
Shift + cash ledger endpoints.

Run with:
    python manage.py test accounting -v 2
"""

from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from accounting.models import CashLedgerEntry, DaySession
from payments.services.payment_processor import process_single_payment
from payments.tests.helpers import make_floor, make_order, make_outlet, make_user

ZERO_UUID = "00000000-0000-0000-0000-000000000000"


@override_settings(SETTLEMENT_RETRY_BACKOFF_SECONDS=0, NOTIFICATION_DISPATCH_ON_COMMIT=False)
class ShiftApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.cashier = make_user(role="cashier")
        self.outlet = make_outlet()
        self.base = f"/api/accounting/outlets/{self.outlet.pk}"
        self.client.force_authenticate(user=self.cashier)

    def test_open_then_close(self):
        res = self.client.post(f"{self.base}/shift/open/", {"opening_cash": "1000.00"}, format="json")
        self.assertEqual(res.status_code, 201, res.data)
        self.assertEqual(res.data["status"], "open")
        self.assertEqual(res.data["opened_by_email"], self.cashier.email)

        order = make_order(outlet=self.outlet, total="200")
        process_single_payment(order_id=order.pk, mode="cash", amount="200")

        res = self.client.post(
            f"{self.base}/shift/close/",
            {"actual_cash": "1190.00", "notes": "short 10"},
            format="json",
        )
        self.assertEqual(res.status_code, 200, res.data)
        self.assertEqual(res.data["status"], "closed")
        self.assertEqual(res.data["expected_cash"], "1200.00")
        self.assertEqual(res.data["cash_variance"], "-10.00")

    def test_double_open_is_400(self):
        self.client.post(f"{self.base}/shift/open/", {"opening_cash": "0"}, format="json")
        res = self.client.post(f"{self.base}/shift/open/", {"opening_cash": "0"}, format="json")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.data["error"]["code"], "SHIFT_ALREADY_OPEN")

    def test_close_without_open_is_400(self):
        res = self.client.post(f"{self.base}/shift/close/", {"actual_cash": "0"}, format="json")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.data["error"]["code"], "NO_OPEN_SHIFT")

    def test_unknown_outlet_is_404(self):
        res = self.client.post(
            f"/api/accounting/outlets/{ZERO_UUID}/shift/open/",
            {"opening_cash": "0"},
            format="json",
        )
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.data["error"]["code"], "OUTLET_NOT_FOUND")

        res = self.client.get(f"/api/accounting/outlets/{ZERO_UUID}/shift/")
        self.assertEqual(res.status_code, 404)

    def test_negative_opening_cash_is_a_serializer_error(self):
        res = self.client.post(f"{self.base}/shift/open/", {"opening_cash": "-5"}, format="json")
        self.assertEqual(res.status_code, 400)
        self.assertIn("opening_cash", res.data)

    def test_status(self):
        res = self.client.get(f"{self.base}/shift/")
        self.assertEqual(res.status_code, 200)
        self.assertIsNone(res.data["session"])
        self.assertEqual(res.data["current_balance"], "0.00")

        self.client.post(f"{self.base}/shift/open/", {"opening_cash": "300"}, format="json")

        res = self.client.get(f"{self.base}/shift/")
        self.assertEqual(res.data["session"]["opening_cash"], "300.00")
        self.assertEqual(res.data["current_balance"], "300.00")
        self.assertEqual(len(res.data["recent_entries"]), 1)

    def test_floor_status_query_param(self):
        floor = make_floor(outlet=self.outlet)
        self.client.post(
            f"{self.base}/shift/open/",
            {"opening_cash": "20", "floor_id": str(floor.pk)},
            format="json",
        )

        res = self.client.get(f"{self.base}/shift/", {"floor_id": str(floor.pk)})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["session"]["floor"], floor.pk)

        res = self.client.get(f"{self.base}/shift/")
        self.assertIsNone(res.data["session"])

        res = self.client.get(f"{self.base}/shift/", {"floor_id": "not-a-uuid"})
        self.assertEqual(res.status_code, 400)

    def test_history_filters(self):
        self.client.post(f"{self.base}/shift/open/", {"opening_cash": "0"}, format="json")
        self.client.post(f"{self.base}/shift/close/", {"actual_cash": "0"}, format="json")

        res = self.client.get(f"{self.base}/shift/history/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["count"], 1)

        res = self.client.get(f"{self.base}/shift/history/", {"status": "open"})
        self.assertEqual(res.data["count"], 0)

        res = self.client.get(f"{self.base}/shift/history/", {"user": str(self.cashier.pk)})
        self.assertEqual(res.data["count"], 1)

        res = self.client.get(f"{self.base}/shift/history/", {"date_from": "2999-01-01"})
        self.assertEqual(res.data["count"], 0)

    def test_shift_detail(self):
        opened = self.client.post(f"{self.base}/shift/open/", {"opening_cash": "100"}, format="json")
        session_id = opened.data["id"]
        order = make_order(outlet=self.outlet, total="60")
        process_single_payment(order_id=order.pk, mode="upi", amount="60")

        res = self.client.get(f"{self.base}/shift/{session_id}/")

        self.assertEqual(res.status_code, 200)
        self.assertEqual(str(res.data["session"]["id"]), str(session_id))
        self.assertEqual([e["transaction_type"] for e in res.data["entries"]], ["opening"])
        self.assertEqual(res.data["payment_breakdown"], [{"mode": "upi", "count": 1, "total": "60.00"}])
        self.assertEqual(res.data["total_orders"], 1)
        self.assertEqual(res.data["total_sales"], "60.00")

    def test_unknown_shift_is_404(self):
        res = self.client.get(f"{self.base}/shift/{ZERO_UUID}/")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.data["error"]["code"], "SHIFT_NOT_FOUND")

    def test_cash_movement(self):
        self.client.post(f"{self.base}/shift/open/", {"opening_cash": "100"}, format="json")

        res = self.client.post(
            f"{self.base}/cash-movements/",
            {"transaction_type": "expense", "amount": "30", "description": "Milk"},
            format="json",
        )
        self.assertEqual(res.status_code, 201, res.data)
        self.assertEqual(res.data["amount"], "-30.00")
        self.assertEqual(res.data["balance_after"], "70.00")

        res = self.client.post(
            f"{self.base}/cash-movements/",
            {"transaction_type": "sale", "amount": "30"},
            format="json",
        )
        self.assertEqual(res.status_code, 400)

    def test_ledger_list_and_filters(self):
        self.client.post(f"{self.base}/shift/open/", {"opening_cash": "100"}, format="json")
        self.client.post(
            f"{self.base}/cash-movements/",
            {"transaction_type": "cash_in", "amount": "25"},
            format="json",
        )

        res = self.client.get(f"{self.base}/ledger/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["count"], 2)
        self.assertEqual(res.data["results"][0]["sequence"], 2)

        res = self.client.get(f"{self.base}/ledger/", {"transaction_type": "opening"})
        self.assertEqual(res.data["count"], 1)

    def test_captain_cannot_manage_cash(self):
        self.client.force_authenticate(user=make_user(role="captain"))

        res = self.client.post(f"{self.base}/shift/open/", {"opening_cash": "0"}, format="json")
        self.assertEqual(res.status_code, 403)
        res = self.client.get(f"{self.base}/ledger/")
        self.assertEqual(res.status_code, 403)
        res = self.client.get(f"{self.base}/shift/{ZERO_UUID}/")
        self.assertEqual(res.status_code, 403)

        self.assertFalse(DaySession.objects.exists())
        self.assertFalse(CashLedgerEntry.objects.exists())
