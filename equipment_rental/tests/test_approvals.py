import sys
import unittest
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from pydantic import ValidationError

from equipment_rental.models.user_models import Notification
from equipment_rental.schemas.approvals import (
    APPROVAL_DETAILS,
    DiscountDetails,
    ExtensionDetails,
    StatusChangeDetails,
    load_details,
)
from equipment_rental.schemas.rentals import CreateRentalItemDto
from equipment_rental.services import approval_service, inventory_service, notification_service, rental_service
from equipment_rental.services.errors import (
    AlreadyResolved,
    ApprovalNotFound,
    InvalidState,
    InvalidTransition,
    Unauthorized,
)
from equipment_rental.tests.support import (
    ADMIN,
    COMPANY_ID,
    MANAGER,
    OPERATOR,
    OTHER_OPERATOR,
    SUPERADMIN,
    VIEWER,
    day,
    make_quantity_item,
    make_session_factory,
    make_unit_item,
    movement_count,
    rental_payload,
    seed_users,
)


class GateDecisionTests(unittest.TestCase):
    def test_role_hierarchy(self):
        self.assertTrue(approval_service.is_admin_or_above("superadmin"))
        self.assertTrue(approval_service.is_admin_or_above("admin"))
        self.assertFalse(approval_service.is_admin_or_above("manager"))
        self.assertTrue(approval_service.has_permission("manager", "operator"))
        self.assertFalse(approval_service.has_permission("unknown-role", "operator"))

    def test_status_change_needs_admin(self):
        details = StatusChangeDetails(newStatus="active")
        self.assertTrue(approval_service.requires_approval(ADMIN, "status_change", details).allowed)
        self.assertTrue(approval_service.requires_approval(SUPERADMIN, "status_change", details).allowed)
        self.assertFalse(approval_service.requires_approval(MANAGER, "status_change", details).allowed)
        self.assertFalse(approval_service.requires_approval(OPERATOR, "status_change", details).allowed)
        with self.assertRaises(Unauthorized):
            approval_service.requires_approval(VIEWER, "status_change", details)

    def test_discount_threshold(self):
        rental = type("RentalStub", (), {"Subtotal": 1000})()
        small = DiscountDetails(amount=100)
        large = DiscountDetails(amount=100.01)
        self.assertTrue(approval_service.requires_approval(OPERATOR, "discount", small, rental).allowed)
        self.assertFalse(approval_service.requires_approval(OPERATOR, "discount", large, rental).allowed)
        self.assertTrue(approval_service.requires_approval(ADMIN, "discount", DiscountDetails(amount=900), rental).allowed)

    def test_extension_is_direct_for_operators(self):
        details = ExtensionDetails(newReturnDate=day(12))
        self.assertTrue(approval_service.requires_approval(OPERATOR, "extension", details).allowed)

    def test_details_are_tagged_by_request_type(self):
        parsed = APPROVAL_DETAILS.validate_python({"requestType": "discount", "amount": 25, "reason": "loyal"})
        self.assertIsInstance(parsed, DiscountDetails)
        self.assertIsInstance(load_details(StatusChangeDetails(newStatus="completed").model_dump_json()), StatusChangeDetails)
        with self.assertRaises(ValidationError):
            APPROVAL_DETAILS.validate_python({"requestType": "discount"})
        with self.assertRaises(ValidationError):
            APPROVAL_DETAILS.validate_python({"requestType": "refund", "amount": 1})


class ApprovalWorkflowTests(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        seed_users(self.db)
        self.item = make_quantity_item(self.db, sku="POOL", total=5, daily=100, weeklyRate=600)
        self.units = make_unit_item(self.db, sku="SER", units=("U1",), daily=100)
        self.rental = rental_service.create_rental(
            self.db,
            COMPANY_ID,
            rental_payload(
                [
                    CreateRentalItemDto(itemID=self.item.ItemID, quantity=2),
                    CreateRentalItemDto(itemID=self.units.ItemID, unitID="U1"),
                ]
            ),
            OPERATOR,
            now=day(-1),
        )
        rental_service.update_rental_status(self.db, self.rental.RentalID, "active", ADMIN, COMPANY_ID, now=day(0))
        self.db.commit()
        self.rental_id = self.rental.RentalID

    def tearDown(self):
        self.db.close()

    def test_operator_completion_waits_for_admin(self):
        result = rental_service.update_rental_status(self.db, self.rental_id, "completed", OPERATOR, COMPANY_ID, now=day(7))
        self.db.commit()

        self.assertTrue(result.requires_approval)
        self.assertEqual(self.rental.Status, "active")
        self.assertEqual(result.approval.Position, 0)
        self.assertEqual(result.approval.RequestType, "status_change")
        self.assertEqual(movement_count(self.db, self.item.ItemID, "return"), 0)

        notification = self.db.get(Notification, result.approval.NotificationID)
        self.assertEqual(notification.RequestedStatus, "completed")
        self.assertEqual(notification.ReferenceID, self.rental_id)
        recipients = sorted(recipient.UserID for recipient in notification.Recipients)
        self.assertEqual(recipients, [SUPERADMIN.user_id, ADMIN.user_id, OTHER_OPERATOR.user_id])

        rental_service.approve_request(self.db, self.rental_id, 0, ADMIN, COMPANY_ID, now=day(7))
        self.db.commit()

        self.assertEqual(self.rental.Status, "completed")
        self.assertEqual(self.rental.EquipmentSubtotal, 2100)
        self.assertEqual(movement_count(self.db, self.item.ItemID, "return"), 1)
        self.assertEqual(movement_count(self.db, self.units.ItemID, "return"), 1)
        self.assertEqual(self.item.QuantityRented, 0)
        self.assertEqual(len(self.rental.ChangeHistory), 1)
        history = self.rental.ChangeHistory[0]
        self.assertEqual((history.ChangeType, history.RequestedBy, history.ApprovedBy, history.ApprovalIndex), (
            "status_change",
            OPERATOR.user_id,
            ADMIN.user_id,
            0,
        ))
        self.assertEqual(self.rental.PendingApprovals[0].Status, "approved")
        self.assertTrue(notification.Resolved)
        self.assertEqual(notification.Resolution, "approved")

        with self.assertRaises(AlreadyResolved):
            rental_service.approve_request(self.db, self.rental_id, 0, ADMIN, COMPANY_ID)
        self.assertEqual(movement_count(self.db, self.item.ItemID, "return"), 1)

    def test_rejection_leaves_rental_untouched(self):
        result = rental_service.update_rental_status(self.db, self.rental_id, "completed", OPERATOR, COMPANY_ID)
        self.db.commit()

        rental_service.reject_request(self.db, self.rental_id, 0, ADMIN, COMPANY_ID, notes="still on site")
        self.db.commit()

        self.assertEqual(self.rental.Status, "active")
        approval = self.rental.PendingApprovals[0]
        self.assertEqual((approval.Status, approval.ResolvedBy, approval.ResolutionNotes), ("rejected", ADMIN.user_id, "still on site"))
        self.assertEqual(self.rental.ChangeHistory, [])
        notification = self.db.get(Notification, result.approval.NotificationID)
        self.assertEqual(notification.Resolution, "rejected")
        with self.assertRaises(AlreadyResolved):
            rental_service.reject_request(self.db, self.rental_id, 0, ADMIN, COMPANY_ID)

    def test_invalid_transition_is_refused_before_queueing(self):
        with self.assertRaises(InvalidTransition):
            rental_service.update_rental_status(self.db, self.rental_id, "cancelled", OPERATOR, COMPANY_ID)
        self.assertEqual(self.rental.PendingApprovals, [])

    def test_only_admins_resolve(self):
        rental_service.update_rental_status(self.db, self.rental_id, "completed", OPERATOR, COMPANY_ID)
        self.db.commit()
        with self.assertRaises(Unauthorized):
            rental_service.approve_request(self.db, self.rental_id, 0, MANAGER, COMPANY_ID)
        with self.assertRaises(Unauthorized):
            rental_service.reject_request(self.db, self.rental_id, 0, OPERATOR, COMPANY_ID)
        with self.assertRaises(ApprovalNotFound):
            rental_service.approve_request(self.db, self.rental_id, 3, ADMIN, COMPANY_ID)

    def test_viewer_cannot_mutate(self):
        with self.assertRaises(Unauthorized):
            rental_service.update_rental_status(self.db, self.rental_id, "completed", VIEWER, COMPANY_ID)
        with self.assertRaises(Unauthorized):
            rental_service.apply_discount(self.db, self.rental_id, 10, None, VIEWER, COMPANY_ID)
        with self.assertRaises(Unauthorized):
            rental_service.extend_rental(self.db, self.rental_id, day(12), VIEWER, COMPANY_ID)

    def test_small_discount_applies_directly(self):
        result = rental_service.apply_discount(self.db, self.rental_id, 300, "repeat customer", OPERATOR, COMPANY_ID)
        self.db.commit()
        self.assertFalse(result.requires_approval)
        self.assertEqual(self.rental.Discount, 300)
        self.assertEqual(self.rental.Total, 2700)

    def test_large_discount_is_queued_then_approved(self):
        result = rental_service.apply_discount(self.db, self.rental_id, 500, "damaged paint", OPERATOR, COMPANY_ID)
        self.db.commit()
        self.assertTrue(result.requires_approval)
        self.assertEqual(self.rental.Discount, 0)
        self.assertIsNone(result.approval.NotificationID)

        pending = rental_service.get_pending_approvals(self.db, COMPANY_ID)
        self.assertEqual([rental.RentalID for rental in pending], [self.rental_id])

        rental_service.approve_request(self.db, self.rental_id, 0, SUPERADMIN, COMPANY_ID)
        self.db.commit()
        self.assertEqual(self.rental.Discount, 500)
        self.assertEqual(self.rental.DiscountReason, "damaged paint")
        self.assertEqual(self.rental.Total, 2500)
        self.assertEqual(rental_service.get_pending_approvals(self.db, COMPANY_ID), [])

    def test_discount_above_subtotal_is_invalid(self):
        with self.assertRaises(InvalidState):
            rental_service.apply_discount(self.db, self.rental_id, 3000.01, None, ADMIN, COMPANY_ID)

    def test_rental_type_change_through_approval(self):
        result = rental_service.change_rental_type(self.db, self.rental_id, 0, "weekly", OPERATOR, COMPANY_ID)
        self.db.commit()
        self.assertTrue(result.requires_approval)
        self.assertEqual(self.rental.RentalItems[0].RentalType, "daily")

        rental_service.approve_request(self.db, self.rental_id, 0, ADMIN, COMPANY_ID)
        self.db.commit()
        line = self.rental.RentalItems[0]
        self.assertEqual((line.RentalType, line.UnitPrice, line.Subtotal), ("weekly", 600, 2400))
        self.assertEqual(self.rental.EquipmentSubtotal, 3400)
        self.assertEqual(self.rental.OriginalEquipmentSubtotal, 3400)

    def test_service_addition(self):
        pending = rental_service.add_service(self.db, self.rental_id, "Operator hours", 45, 4, OPERATOR, COMPANY_ID)
        self.assertTrue(pending.requires_approval)
        self.assertEqual(self.rental.Services, [])

        direct = rental_service.add_service(self.db, self.rental_id, "Fuel", 20, 1, ADMIN, COMPANY_ID)
        self.assertFalse(direct.requires_approval)
        rental_service.approve_request(self.db, self.rental_id, 0, ADMIN, COMPANY_ID)
        self.db.commit()
        self.assertEqual([service.Description for service in self.rental.Services], ["Fuel", "Operator hours"])
        self.assertEqual(self.rental.ServicesSubtotal, 200)
        self.assertEqual(self.rental.Total, 3200)

    def test_explicit_extension_request(self):
        approval = rental_service.request_approval(
            self.db,
            self.rental_id,
            ExtensionDetails(newReturnDate=day(12)),
            OPERATOR,
            COMPANY_ID,
            notes="customer asked",
        )
        self.db.commit()
        self.assertEqual((approval.RequestType, approval.Notes), ("extension", "customer asked"))
        self.assertEqual(self.rental.ReturnScheduled, day(10))

        rental_service.approve_request(self.db, self.rental_id, 0, ADMIN, COMPANY_ID)
        self.db.commit()
        self.assertEqual(self.rental.ReturnScheduled, day(12))
        self.assertEqual(self.rental.EquipmentSubtotal, 3600)

    def test_request_for_impossible_change_is_refused(self):
        with self.assertRaises(InvalidTransition):
            rental_service.request_approval(
                self.db,
                self.rental_id,
                StatusChangeDetails(newStatus="reserved"),
                OPERATOR,
                COMPANY_ID,
            )

    def test_operator_discount_at_creation_is_deferred(self):
        inventory_service.adjust_quantity(self.db, self.item, "in", 2)
        rental = rental_service.create_rental(
            self.db,
            COMPANY_ID,
            rental_payload(
                [CreateRentalItemDto(itemID=self.item.ItemID)],
                discount=400,
                discountReason="launch promo",
            ),
            OPERATOR,
        )
        self.db.commit()
        self.assertEqual(rental.Discount, 0)
        self.assertEqual(len(rental.PendingApprovals), 1)
        self.assertEqual(rental.PendingApprovals[0].RequestType, "discount")

    def test_user_notifications(self):
        rental_service.update_rental_status(self.db, self.rental_id, "completed", OPERATOR, COMPANY_ID)
        self.db.commit()
        self.assertEqual(len(notification_service.list_notifications_for_user(self.db, ADMIN.user_id)), 1)
        self.assertEqual(notification_service.list_notifications_for_user(self.db, OPERATOR.user_id), [])
        self.assertEqual(notification_service.list_notifications_for_user(self.db, VIEWER.user_id), [])


if __name__ == "__main__":
    unittest.main()
