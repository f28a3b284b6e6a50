import sys
import unittest
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from equipment_rental.schemas.rentals import CreateRentalItemDto
from equipment_rental.services import billing_service, rental_service
from equipment_rental.services.errors import (
    AlreadyResolved,
    BillingNotFound,
    InvalidState,
    RentalNotFound,
    Unauthorized,
)
from equipment_rental.tests.support import (
    ADMIN,
    COMPANY_ID,
    OPERATOR,
    OTHER_COMPANY_ID,
    VIEWER,
    day,
    make_quantity_item,
    make_session_factory,
    make_unit_item,
    rental_payload,
    seed_users,
)


class BillingClosureTests(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        seed_users(self.db)
        self.pool = make_quantity_item(self.db, sku="POOL", total=10, daily=100)
        self.units = make_unit_item(self.db, sku="SER", units=("U1",), daily=80, weeklyRate=400)

    def tearDown(self):
        self.db.close()

    def rent(self, items=None, activate=True, **extra):
        rental = rental_service.create_rental(
            self.db,
            COMPANY_ID,
            rental_payload(items or [CreateRentalItemDto(itemID=self.pool.ItemID, quantity=2)], **extra),
            ADMIN,
            now=day(-1),
        )
        if activate:
            rental_service.update_rental_status(self.db, rental.RentalID, "active", ADMIN, COMPANY_ID, now=day(0))
        self.db.commit()
        return rental

    def close(self, rental, returned, actor=OPERATOR, **extra):
        billing = billing_service.create_billing(
            self.db,
            COMPANY_ID,
            rental.RentalID,
            returned,
            actor,
            now=returned,
            **extra,
        )
        self.db.commit()
        return billing

    def test_on_time_closure_charges_whole_periods(self):
        rental = self.rent(services=[{"description": "Delivery", "price": 30, "quantity": 2}])
        billing = self.close(rental, day(10))

        self.assertEqual(billing.Status, "approved")
        self.assertFalse(billing.ApprovalRequired)
        self.assertEqual(billing.RentalType, "daily")
        self.assertEqual(billing.TotalPeriods, 10)
        self.assertEqual([line.PeriodsCharged for line in billing.Lines], [10])
        self.assertEqual(billing.BaseAmount, 2000)
        self.assertEqual(billing.ServicesAmount, 60)
        self.assertEqual(billing.Subtotal, 2060)
        self.assertEqual(billing.Total, 2060)
        self.assertFalse(billing.IsEarlyReturn)
        self.assertEqual(billing.PeriodStart, day(0))
        self.assertEqual(rental.Status, "active")

    def test_started_period_is_billed_in_full(self):
        rental = self.rent([CreateRentalItemDto(itemID=self.units.ItemID, rentalType="weekly")])
        billing = self.close(rental, day(10))

        self.assertEqual(billing.RentalType, "weekly")
        self.assertEqual((billing.PeriodsCompleted, billing.ExtraDays), (1, 3))
        self.assertTrue(billing.ChargeExtraPeriod)
        self.assertEqual(billing.Lines[0].PeriodsCharged, 2)
        self.assertEqual(billing.Lines[0].UnitID, "U1")
        self.assertEqual(billing.Total, 800)

    def test_early_return_waits_for_approval(self):
        rental = self.rent()
        billing = self.close(rental, day(7))

        self.assertEqual(billing.Status, "pending_approval")
        self.assertTrue(billing.ApprovalRequired)
        self.assertTrue(billing.IsEarlyReturn)
        self.assertEqual(billing.DaysSaved, 3)
        self.assertEqual(billing.Subtotal, 1400)
        self.assertEqual(billing.EarlyReturnDiscount, 420)
        self.assertEqual(billing.Total, 1400)

    def test_discount_within_threshold_is_approved(self):
        billing = self.close(self.rent(), day(10), discount=200, discount_reason="regular")
        self.assertEqual(billing.Status, "approved")
        self.assertEqual(billing.Discount, 200)
        self.assertEqual(billing.Total, 1800)

    def test_large_discount_waits_for_approval(self):
        rental = self.rent()
        billing = self.close(rental, day(10), discount=300)
        self.assertEqual(billing.Status, "pending_approval")
        self.assertEqual(billing.Total, 1700)

        other = self.rent()
        with self.assertRaises(InvalidState):
            billing_service.create_billing(self.db, COMPANY_ID, other.RentalID, day(10), OPERATOR, discount=2500)

    def test_late_closure_adds_late_fee(self):
        billing = self.close(self.rent(), day(13))
        self.assertEqual(billing.TotalPeriods, 13)
        self.assertEqual(billing.BaseAmount, 2600)
        self.assertEqual(billing.LateFee, 900)
        self.assertEqual(billing.Total, 3500)
        self.assertEqual(billing.Status, "approved")

    def test_only_admins_resolve(self):
        billing = self.close(self.rent(), day(7))
        with self.assertRaises(Unauthorized):
            billing_service.approve_billing(self.db, COMPANY_ID, billing.BillingID, OPERATOR)

        billing_service.approve_billing(self.db, COMPANY_ID, billing.BillingID, ADMIN, "early return ok", now=day(8))
        self.db.commit()
        self.assertEqual(billing.Status, "approved")
        self.assertEqual(billing.ApprovedBy, ADMIN.user_id)
        self.assertEqual(billing.ApprovalDate, day(8))
        self.assertEqual(billing.ApprovalNotes, "early return ok")

        with self.assertRaises(AlreadyResolved):
            billing_service.approve_billing(self.db, COMPANY_ID, billing.BillingID, ADMIN)
        with self.assertRaises(AlreadyResolved):
            billing_service.reject_billing(self.db, COMPANY_ID, billing.BillingID, ADMIN, "too late")

    def test_rejection_needs_notes_and_frees_the_rental(self):
        rental = self.rent()
        billing = self.close(rental, day(7))
        with self.assertRaises(InvalidState):
            billing_service.reject_billing(self.db, COMPANY_ID, billing.BillingID, ADMIN, "  ")

        billing_service.reject_billing(self.db, COMPANY_ID, billing.BillingID, ADMIN, "wrong return date")
        self.db.commit()
        self.assertEqual(billing.Status, "cancelled")

        again = self.close(rental, day(10))
        self.assertEqual(again.Status, "approved")

    def test_one_open_closure_per_rental(self):
        rental = self.rent()
        self.close(rental, day(10))
        with self.assertRaises(InvalidState):
            billing_service.create_billing(self.db, COMPANY_ID, rental.RentalID, day(10), OPERATOR)

    def test_closure_preconditions(self):
        rental = self.rent(activate=False)
        with self.assertRaises(Unauthorized):
            billing_service.create_billing(self.db, COMPANY_ID, rental.RentalID, day(10), VIEWER)
        with self.assertRaises(InvalidState):
            billing_service.create_billing(self.db, COMPANY_ID, rental.RentalID, day(-3), OPERATOR)
        with self.assertRaises(RentalNotFound):
            billing_service.create_billing(self.db, OTHER_COMPANY_ID, rental.RentalID, day(10), OPERATOR)

        rental_service.update_rental_status(self.db, rental.RentalID, "cancelled", ADMIN, COMPANY_ID)
        self.db.commit()
        with self.assertRaises(InvalidState):
            billing_service.create_billing(self.db, COMPANY_ID, rental.RentalID, day(10), OPERATOR)

    def test_listing_and_pending_queue(self):
        first = self.rent()
        second = self.rent(customerID=900)
        on_time = self.close(first, day(10))
        early = self.close(second, day(5))

        pending = billing_service.get_pending_billings(self.db, COMPANY_ID)
        self.assertEqual([billing.BillingID for billing in pending], [early.BillingID])
        by_customer = billing_service.list_billings(self.db, COMPANY_ID, customer_id=900)
        self.assertEqual([billing.BillingID for billing in by_customer], [early.BillingID])
        approved = billing_service.list_billings(self.db, COMPANY_ID, status="approved")
        self.assertEqual([billing.BillingID for billing in approved], [on_time.BillingID])
        self.assertEqual(billing_service.list_billings(self.db, OTHER_COMPANY_ID), [])
        with self.assertRaises(BillingNotFound):
            billing_service.load_billing(self.db, OTHER_COMPANY_ID, on_time.BillingID)

        payload = billing_service.serialize_billing(early)
        self.assertEqual(payload["rentalNumber"], second.RentalNumber)
        self.assertEqual(payload["earlyReturn"], {"isEarly": True, "daysSaved": 5, "discountApplied": 300.0})
        self.assertEqual(payload["calculation"]["total"], 1000)


if __name__ == "__main__":
    unittest.main()
