from datetime import date, datetime, timedelta

from flask import current_app

from app.errors import ConflictError, NotFoundError, ValidationError
from app.extensions import db
from app.models.book_item import ItemStatus
from app.models.borrow_record import BorrowBook, BorrowRecord, BorrowStatus
from app.models.borrow_request import BorrowRequest, BorrowRequestItem, BorrowRequestStatus
from app.repositories.book_repo import BookRepo
from app.repositories.borrow_record_repo import BorrowRecordRepo
from app.repositories.borrow_request_repo import BorrowRequestRepo
from app.repositories.notification_repo import NotificationRepo
from app.services import invariants
from app.services.admission_service import AdmissionService, Decision
from app.services.notification_service import NotificationService, NotificationType
from app.services.queue_service import QueueService
from app.utils.transaction import atomic


class BorrowRequestService:
    """
    Lifecycle of a borrow request:

        PENDING  -> APPROVED | REJECTED | CANCELLED
        APPROVED -> FULFILLED | REJECTED | CANCELLED | EXPIRED

    Terminal states have no exits. Every move goes through
    ``BorrowRequestRepo.transition`` so a stale caller gets a ConflictError
    instead of overwriting someone else's change.
    """

    @staticmethod
    def validate_period(start_date: date, end_date: date, today: date | None = None):
        today = today or date.today()
        max_days = current_app.config["MAX_REQUEST_DAYS"]

        if start_date < today:
            raise ValidationError("Start date cannot be in the past")
        if end_date <= start_date:
            raise ValidationError("End date must be after start date")
        if (end_date - start_date).days > max_days:
            raise ValidationError(f"Borrow period cannot exceed {max_days} days")

    @staticmethod
    def _lock_and_reload(borrow_request: BorrowRequest) -> int:
        book_id = borrow_request.item.book_id
        BookRepo.lock(book_id)
        # status may have moved while we waited for the lock
        db.session.refresh(borrow_request)
        return book_id

    @staticmethod
    def notify_queue_shift(before: dict, after: dict):
        for request_id, position in after.items():
            if before.get(request_id) == position:
                continue
            borrow_request = BorrowRequestRepo.get(request_id)
            if borrow_request:
                NotificationService.queue_position_changed(borrow_request, position)

    @staticmethod
    def notify_promoted(promoted):
        for borrow_request in promoted:
            NotificationService.request_approved(borrow_request)

    # -----------------------------
    # Reader: create / cancel
    # -----------------------------
    @staticmethod
    def create_borrow_request(user_id: int, book_id: int, quantity: int, start_date: date, end_date: date) -> dict:
        if quantity is None or quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")

        with atomic():
            book = BookRepo.lock(book_id)
            if not book:
                raise NotFoundError(f"Book with id {book_id} not found")

            if BorrowRequestRepo.has_active_request(user_id, book_id):
                raise ValidationError(
                    f'You already have an active borrow request for "{book.title}". '
                    "Please wait for your current request to be fulfilled or rejected."
                )

            BorrowRequestService.validate_period(start_date, end_date)

            approved = AdmissionService.decide(book_id, quantity) == Decision.APPROVE
            now = datetime.utcnow()

            borrow_request = BorrowRequest(
                user_id=user_id,
                start_date=start_date,
                end_date=end_date,
                status=BorrowRequestStatus.APPROVED if approved else BorrowRequestStatus.PENDING,
                approved_at=now if approved else None,
                created_at=now,
            )
            borrow_request.items.append(BorrowRequestItem(
                book_id=book_id,
                quantity=quantity,
                start_date=start_date,
                end_date=end_date,
            ))
            BorrowRequestRepo.add(borrow_request)

            invariants.check_single_active_request(user_id, book_id)
            if approved:
                invariants.check_supply(book_id)

            queue_position = None if approved else QueueService.queue_position(book_id, borrow_request.id)
            title = book.title

        current_app.logger.info(
            f"[admission] request={borrow_request.id} user={user_id} book={book_id} "
            f"qty={quantity} status={borrow_request.status} position={queue_position}"
        )

        if approved:
            message = "Borrow request approved successfully. Please visit the library to collect your books."
            NotificationService.request_approved(borrow_request)
        else:
            message = (
                f"Borrow request registered. You are in position #{queue_position} in the queue. "
                "We will notify you when books are available."
            )
            NotificationService.notify(
                user_id,
                f"Your request for '{title}' is waiting in position #{queue_position}.",
                NotificationType.REQUEST_QUEUED,
                subject="Library: borrow request queued",
                borrow_request_id=borrow_request.id,
            )

        return {
            "borrow_request": borrow_request,
            "status": borrow_request.status,
            "queue_position": queue_position,
            "message": message,
        }

    @staticmethod
    def cancel_request(request_id: int, user_id: int) -> BorrowRequest:
        borrow_request = BorrowRequestRepo.get(request_id)
        if not borrow_request or borrow_request.user_id != user_id or not borrow_request.item:
            raise NotFoundError("Borrow request not found or you do not have permission")

        return BorrowRequestService._withdraw(
            borrow_request, BorrowRequestStatus.CANCELLED, NotificationType.REQUEST_CANCELLED
        )

    # -----------------------------
    # Librarian: approve / reject / fulfill
    # -----------------------------
    @staticmethod
    def approve_request(request_id: int) -> BorrowRequest:
        borrow_request = BorrowRequestRepo.get(request_id)
        if not borrow_request or not borrow_request.item:
            raise NotFoundError("Borrow request not found")

        with atomic():
            book_id = BorrowRequestService._lock_and_reload(borrow_request)
            if borrow_request.status != BorrowRequestStatus.PENDING:
                raise ConflictError(
                    f"Can only approve PENDING requests. Current status: {borrow_request.status}"
                )

            before = QueueService.positions(book_id)

            # out-of-turn approval is allowed, overselling is not
            if AdmissionService.decide(book_id, borrow_request.item.quantity) != Decision.APPROVE:
                raise ConflictError("Not enough available copies to approve this request")

            ok = BorrowRequestRepo.transition(
                request_id,
                (BorrowRequestStatus.PENDING,),
                BorrowRequestStatus.APPROVED,
                approved_at=datetime.utcnow(),
            )
            if not ok:
                raise ConflictError("Borrow request was modified concurrently. Please refresh and retry.")

            invariants.check_supply(book_id)
            after = QueueService.positions(book_id)

        current_app.logger.info(f"[admission] request={request_id} approved by librarian")

        NotificationService.request_approved(borrow_request)
        BorrowRequestService.notify_queue_shift(before, after)
        return borrow_request

    @staticmethod
    def reject_request(request_id: int) -> BorrowRequest:
        borrow_request = BorrowRequestRepo.get(request_id)
        if not borrow_request or not borrow_request.item:
            raise NotFoundError("Borrow request not found")

        return BorrowRequestService._withdraw(
            borrow_request, BorrowRequestStatus.REJECTED, NotificationType.REQUEST_REJECTED
        )

    @staticmethod
    def _withdraw(borrow_request: BorrowRequest, to_status: str, notif_type: str) -> BorrowRequest:
        """Move an active request to REJECTED/CANCELLED and refill from the queue."""
        with atomic():
            book_id = BorrowRequestService._lock_and_reload(borrow_request)
            previous = borrow_request.status
            if previous not in BorrowRequestStatus.ACTIVE:
                raise ConflictError(
                    f"Only PENDING or APPROVED requests can be {to_status.lower()}. "
                    f"Current status: {previous}"
                )

            before = QueueService.positions(book_id)

            ok = BorrowRequestRepo.transition(borrow_request.id, BorrowRequestStatus.ACTIVE, to_status)
            if not ok:
                raise ConflictError("Borrow request was modified concurrently. Please refresh and retry.")

            promoted = QueueService.promote_queue_head(book_id)
            after = QueueService.positions(book_id)
            title = borrow_request.item.book.title if borrow_request.item.book else "your book"

        current_app.logger.info(
            f"[admission] request={borrow_request.id} {previous} -> {to_status} book={book_id}"
        )

        NotificationService.notify(
            borrow_request.user_id,
            f"Your borrow request for '{title}' is now {to_status}.",
            notif_type,
            subject=f"Library: borrow request {to_status.lower()}",
            borrow_request_id=borrow_request.id,
        )
        BorrowRequestService.notify_promoted(promoted)
        BorrowRequestService.notify_queue_shift(before, after)
        return borrow_request

    @staticmethod
    def fulfill_request(request_id: int, book_item_ids) -> BorrowRecord:
        """
        Copies handed over at the desk: APPROVED -> FULFILLED and a BORROWED
        loan record holding exactly the given items.
        """
        item_ids = list(book_item_ids or [])
        if not item_ids:
            raise ValidationError("book_item_ids must be a non-empty array")
        if len(set(item_ids)) != len(item_ids):
            raise ValidationError("Duplicate book_item_ids are not allowed")

        borrow_request = BorrowRequestRepo.get(request_id)
        if not borrow_request or not borrow_request.item:
            raise NotFoundError("Borrow request not found")

        with atomic():
            book_id = BorrowRequestService._lock_and_reload(borrow_request)
            if borrow_request.status != BorrowRequestStatus.APPROVED:
                raise ConflictError(
                    f"Can only fulfill APPROVED requests. Current status: {borrow_request.status}"
                )

            quantity = borrow_request.item.quantity
            if len(item_ids) != quantity:
                raise ValidationError(f"This request needs exactly {quantity} book item(s)")

            items = BookRepo.items_by_ids(item_ids)
            if len(items) != len(item_ids):
                raise NotFoundError("One or more book items not found")

            foreign = [i.code for i in items if i.book_id != book_id]
            if foreign:
                raise ValidationError(f"Book items belong to another title: {', '.join(foreign)}")

            unavailable = [i for i in items if i.status != ItemStatus.AVAILABLE]
            if unavailable:
                raise ConflictError(
                    "Book items are not available: "
                    + ", ".join(f"{i.code} ({i.status})" for i in unavailable)
                )

            today = date.today()
            period = max(1, (borrow_request.end_date - borrow_request.start_date).days)
            record = BorrowRecordRepo.add(BorrowRecord(
                user_id=borrow_request.user_id,
                borrow_date=today,
                return_date=today + timedelta(days=period),
                status=BorrowStatus.BORROWED,
                renewal_count=0,
            ))
            for item in items:
                db.session.add(BorrowBook(borrow_record_id=record.id, book_item_id=item.id))
            BookRepo.set_item_status(items, ItemStatus.ON_BORROW)

            ok = BorrowRequestRepo.transition(
                request_id, (BorrowRequestStatus.APPROVED,), BorrowRequestStatus.FULFILLED
            )
            if not ok:
                raise ConflictError("Borrow request was modified concurrently. Please refresh and retry.")

            invariants.check_supply(book_id)

        current_app.logger.info(
            f"[admission] request={request_id} fulfilled record={record.id} items={item_ids}"
        )
        return record

    # -----------------------------
    # Scheduled: expiry sweep
    # -----------------------------
    @staticmethod
    def expire_stale_approvals(now: datetime | None = None) -> dict:
        """
        APPROVED requests not collected within PICKUP_WINDOW_DAYS become
        EXPIRED; the freed copies go to the head of each queue.
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=current_app.config["PICKUP_WINDOW_DAYS"])

        expired, promoted = [], []
        before, after = {}, {}
        with atomic():
            stale = [r for r in BorrowRequestRepo.find_stale_approvals(cutoff) if r.item]
            book_ids = sorted({r.item.book_id for r in stale})
            BookRepo.lock_many(book_ids)
            for book_id in book_ids:
                before.update(QueueService.positions(book_id))

            for borrow_request in stale:
                ok = BorrowRequestRepo.transition(
                    borrow_request.id, (BorrowRequestStatus.APPROVED,), BorrowRequestStatus.EXPIRED
                )
                if ok:
                    expired.append(borrow_request)

            for book_id in sorted({r.item.book_id for r in expired}):
                promoted.extend(QueueService.promote_queue_head(book_id))
                after.update(QueueService.positions(book_id))

        for borrow_request in expired:
            NotificationService.notify(
                borrow_request.user_id,
                "Your approved borrow request expired because the books were not collected in time.",
                NotificationType.REQUEST_EXPIRED,
                subject="Library: borrow request expired",
                borrow_request_id=borrow_request.id,
            )
        BorrowRequestService.notify_promoted(promoted)
        BorrowRequestService.notify_queue_shift(before, after)

        return {
            "expired": [r.id for r in expired],
            "promoted": [r.id for r in promoted],
        }

    @staticmethod
    def send_reservation_reminders(today: date | None = None) -> int:
        """Readers still queued for a window that closes within RESERVATION_REMINDER_DAYS."""
        today = today or date.today()
        horizon = today + timedelta(days=current_app.config["RESERVATION_REMINDER_DAYS"])

        sent = 0
        for borrow_request in BorrowRequestRepo.find_pending_ending_between(today, horizon):
            if NotificationRepo.already_sent_today(
                NotificationType.RESERVATION_REMINDER, borrow_request_id=borrow_request.id
            ):
                continue
            NotificationService.notify(
                borrow_request.user_id,
                f"Your book reservation ends on {borrow_request.end_date.isoformat()}. "
                "Please come to the library to pick up your reserved books before it expires.",
                NotificationType.RESERVATION_REMINDER,
                subject="Library: book reservation reminder",
                borrow_request_id=borrow_request.id,
            )
            sent += 1
        return sent

    # -----------------------------
    # Queries
    # -----------------------------
    @staticmethod
    def list_my_requests(user_id: int):
        rows = []
        for borrow_request in BorrowRequestRepo.list_by_user(user_id):
            position = None
            if borrow_request.status == BorrowRequestStatus.PENDING and borrow_request.item:
                position = QueueService.queue_position(borrow_request.item.book_id, borrow_request.id)
            rows.append((borrow_request, position))
        return rows
