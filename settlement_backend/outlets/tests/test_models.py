# outlets/tests/test_models.py

from django.db import IntegrityError, transaction
from django.test import TestCase

from outlets.models import Outlet
from payments.tests.helpers import make_outlet


class OutletModelTests(TestCase):
    def test_snapshot(self):
        outlet = make_outlet(name="Harbour Cafe", code="HC1")
        self.assertEqual(
            outlet.snapshot(),
            {
                "id": str(outlet.pk),
                "name": "Harbour Cafe",
                "code": "HC1",
                "address": "",
                "phone": outlet.phone,
            },
        )

    def test_code_unique_only_when_present(self):
        Outlet.objects.create(name="A", code="")
        Outlet.objects.create(name="B", code="")
        Outlet.objects.create(name="C", code="MAIN")

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Outlet.objects.create(name="D", code="MAIN")

    def test_str(self):
        self.assertEqual(str(Outlet(name="Harbour", code="H1")), "Harbour (H1)")
        self.assertEqual(str(Outlet(name="Harbour")), "Harbour")
