import contextlib
import io
import os
import sys
import tempfile
import unittest
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from equipment_rental.models.rental_models import Rental
from equipment_rental.schemas.rentals import CreateRentalItemDto
from equipment_rental.scripts import sweep_overdue as script
from equipment_rental.services import rental_service
from equipment_rental.tests.support import ADMIN, COMPANY_ID, make_quantity_item, rental_payload


class SweepScriptTests(unittest.TestCase):
    def setUp(self):
        handle, self.path = tempfile.mkstemp(suffix=".db")
        os.close(handle)
        self.db_url = f"sqlite+pysqlite:///{self.path}"

    def tearDown(self):
        os.remove(self.path)

    def run_script(self, *args):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = script.main(["--db-url", self.db_url, *args])
        return code, out.getvalue()

    def test_sweep_marks_late_rentals(self):
        code, output = self.run_script("--create-schema", "--now", "2026-01-01T00:00:00")
        self.assertEqual(code, 0)
        self.assertIn("marked_overdue=0", output)

        engine = create_engine(self.db_url, future=True)
        Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
        with Session() as db:
            item = make_quantity_item(db, sku="SCRIPT", total=2)
            rental = rental_service.create_rental(
                db,
                COMPANY_ID,
                rental_payload([CreateRentalItemDto(itemID=item.ItemID)]),
                ADMIN,
            )
            db.commit()
            rental_id = rental.RentalID

        code, output = self.run_script("--company-id", str(COMPANY_ID), "--now", "2026-04-01T00:00:00")
        self.assertEqual(code, 0)
        self.assertIn("company_id=1 marked_overdue=1", output)

        with Session() as db:
            self.assertEqual(db.get(Rental, rental_id).Status, "overdue")
        engine.dispose()

    def test_missing_db_url_is_a_usage_error(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                script.main(["--db-url", ""])


if __name__ == "__main__":
    unittest.main()
