from datetime import date, datetime, timedelta

from flask import current_app

from app.errors import ConflictError, NotFoundError, RenewalRejected, ValidationError
from app.extensions import db
from app.models.book_item import ItemStatus
from app.models.borrow_record import BorrowEbook, BorrowRecord, BorrowStatus
from app.models.borrow_request import BorrowRequest, BorrowRequestItem, BorrowRequestStatus
from app.repositories.book_repo import BookRepo
from app.repositories.borrow_record_repo import BorrowRecordRepo
from app.repositories.borrow_request_repo import BorrowRequestRepo
from app.repositories.notification_repo import NotificationRepo
from app.services.borrow_request_service import BorrowRequestService
from app.services.notification_service import NotificationService, NotificationType
from app.services.queue_service import QueueService
from app.utils.transaction import atomic


OVERDUE_MESSAGE = "Cannot renew when overdue. Please return the book or pay the penalty fee."


class BorrowRecordService:
    @staticmethod
    def _active_borrow_books(record: BorrowRecord):
        return [bb for bb in record.borrow_books if not bb.is_deleted]

    @staticmethod
    def _renewed_return_date(record: BorrowRecord) -> date:
        cfg = current_app.config
        new_return_date = record.return_date + timedelta(days=cfg["EXTENSION_DAYS"])
        cap = record.borrow_date + timedelta(days=cfg["MAX_BORROW_DAYS"])
        return min(new_return_date, cap)

    # -----------------------------
    # Renewal guard
    # -----------------------------
    @staticmethod
    def renew_loan(record_id: int, user_id: int) -> BorrowRecord:
        """
        Extend a physical loan by EXTENSION_DAYS.

        Preconditions, first failure wins:
          1. record exists and belongs to the caller
          2. still BORROWED, not returned
          3. not overdue (date-only)
          4. renewal_count < MAX_RENEWALS
          5. no PENDING/APPROVED demand on any book of the record;
             one contested book blocks the whole record
        """
        max_renewals = current_app.config["MAX_RENEWALS"]

        with atomic():
            record = BorrowRecordRepo.get_for_user(record_id, user_id, for_update=True)
            if not record:
                raise NotFoundError("Borrow record not found or you do not have permission")

            if record.status != BorrowStatus.BORROWED or record.actual_return_date is not None:
                raise RenewalRejected("Cannot renew: This borrow record has already been returned")

            if date.today() > record.return_date:
                raise RenewalRejected(OVERDUE_MESSAGE)

            if record.renewal_count >= max_renewals:
                raise RenewalRejected(f"Maximum renewal limit reached ({max_renewals} renewals)")

            titles = {}
            for bb in BorrowRecordService._active_borrow_books(record):
                titles.setdefault(bb.book_item.book_id, bb.book_item.book.title)

            # a queued request could be approved between check and write otherwise
            BookRepo.lock_many(titles.keys())
            for book_id, title in titles.items():
                if BorrowRequestRepo.demand_quantity(book_id) > 0:
                    current_app.logger.info(
                        f"[renewal] record={record_id} blocked by demand on book={book_id}"
                    )
                    raise RenewalRejected(
                        f'Cannot renew: The book "{title}" has pending reservations. '
                        "Please return it so others can borrow.",
                        book_id=book_id,
                        book_title=title,
                    )

            record.return_date = BorrowRecordService._renewed_return_date(record)
            record.renewal_count += 1
            record.status = BorrowStatus.BORROWED
            record.updated_at = datetime.utcnow()

        current_app.logger.info(
            f"[renewal] record={record.id} renewal_count={record.renewal_count} "
            f"return_date={record.return_date}"
        )
        NotificationService.notify(
            user_id,
            f"Renewal successful. New return date: {record.return_date.isoformat()}",
            NotificationType.LOAN_RENEWED,
            subject="Library: loan renewed",
            borrow_record_id=record.id,
        )
        return record

    # -----------------------------
    # Physical return (librarian)
    # -----------------------------
    @staticmethod
    def return_loan(record_id: int):
        """Copies come back: items AVAILABLE, then the queues get first pick."""
        promoted = []
        with atomic():
            record = BorrowRecordRepo.get(record_id, for_update=True)
            if not record:
                raise NotFoundError("Borrow record not found")

            if record.status == BorrowStatus.RETURNED or record.actual_return_date is not None:
                raise ConflictError("This borrow record has already been returned")

            links = BorrowRecordService._active_borrow_books(record)
            if not links:
                raise ValidationError("This is an ebook borrow record. Use return-ebook instead.")

            book_ids = sorted({bb.book_item.book_id for bb in links})
            BookRepo.lock_many(book_ids)

            before = {}
            for book_id in book_ids:
                before.update(QueueService.positions(book_id))

            record.status = BorrowStatus.RETURNED
            record.actual_return_date = datetime.utcnow()
            BookRepo.set_item_status([bb.book_item for bb in links], ItemStatus.AVAILABLE)

            after = {}
            for book_id in book_ids:
                promoted.extend(QueueService.promote_queue_head(book_id))
                after.update(QueueService.positions(book_id))

        current_app.logger.info(
            f"[return] record={record_id} books={book_ids} promoted={[r.id for r in promoted]}"
        )
        NotificationService.notify(
            record.user_id,
            "Books returned successfully.",
            NotificationType.LOAN_RETURNED,
            subject="Library: books returned",
            borrow_record_id=record.id,
        )
        BorrowRequestService.notify_promoted(promoted)
        BorrowRequestService.notify_queue_shift(before, after)
        return record, promoted

    # -----------------------------
    # Ebooks: admitted and fulfilled in one step
    # -----------------------------
    @staticmethod
    def borrow_ebook(user_id: int, book_id: int, start_date: date, end_date: date) -> dict:
        with atomic():
            book = BookRepo.lock(book_id)
            if not book:
                raise NotFoundError(f"Book with id {book_id} not found")
            if not book.has_ebook:
                raise ValidationError("This book does not have an electronic version")

            if BorrowRecordRepo.has_active_ebook_loan(user_id, book_id):
                raise ValidationError(
                    "You have already borrowed this ebook. Please return it before borrowing again."
                )

            BorrowRequestService.validate_period(start_date, end_date)

            record = BorrowRecordRepo.add(BorrowRecord(
                user_id=user_id,
                borrow_date=start_date,
                return_date=end_date,
                status=BorrowStatus.BORROWED,
                renewal_count=0,
            ))
            db.session.add(BorrowEbook(borrow_record_id=record.id, book_id=book_id))

            borrow_request = BorrowRequest(
                user_id=user_id,
                start_date=start_date,
                end_date=end_date,
                status=BorrowRequestStatus.FULFILLED,
            )
            borrow_request.items.append(BorrowRequestItem(
                book_id=book_id,
                quantity=1,
                start_date=start_date,
                end_date=end_date,
            ))
            BorrowRequestRepo.add(borrow_request)
            title = book.title

        current_app.logger.info(f"[ebook] record={record.id} user={user_id} book={book_id}")
        NotificationService.notify(
            user_id,
            f'You have successfully borrowed "{title}" (PDF). You can read it now. '
            f"Return date: {end_date.isoformat()}",
            NotificationType.EBOOK_BORROWED,
            subject="Library: ebook borrowed",
            borrow_record_id=record.id,
        )
        return {"borrow_record": record, "borrow_request": borrow_request}

    @staticmethod
    def _close_ebook_loan(record: BorrowRecord) -> str:
        ebooks = [be for be in record.borrow_ebooks if not be.is_deleted]
        record.status = BorrowStatus.RETURNED
        record.actual_return_date = datetime.utcnow()
        record.updated_at = datetime.utcnow()
        for be in ebooks:
            be.is_deleted = True
        return ", ".join(be.book.title for be in ebooks if be.book) or "ebook"

    @staticmethod
    def return_ebook(record_id: int, user_id: int) -> BorrowRecord:
        with atomic():
            record = BorrowRecordRepo.get_for_user(record_id, user_id, for_update=True)
            if not record:
                raise NotFoundError("Borrow record not found or you do not have permission")

            if record.status == BorrowStatus.RETURNED or record.actual_return_date is not None:
                raise ConflictError("This borrow record has already been returned")
            if not [be for be in record.borrow_ebooks if not be.is_deleted]:
                raise ValidationError("This is not an ebook borrow record")

            title = BorrowRecordService._close_ebook_loan(record)

        NotificationService.notify(
            user_id,
            f'You have successfully returned "{title}" (PDF).',
            NotificationType.LOAN_RETURNED,
            subject="Library: ebook returned",
            borrow_record_id=record.id,
        )
        return record

    # -----------------------------
    # Scheduled: overdue marking and reminders
    # -----------------------------
    @staticmethod
    def mark_overdue_loans(today: date | None = None) -> int:
        today = today or date.today()
        with atomic():
            rows = BorrowRecordRepo.find_overdue(today)
            for record in rows:
                record.status = BorrowStatus.OVERDUE
        return len(rows)

    @staticmethod
    def auto_return_expired_ebooks(today: date | None = None) -> list:
        """Ebook loans past their return date are closed, not marked overdue."""
        today = today or date.today()
        closed = []
        with atomic():
            for record in BorrowRecordRepo.find_expired_ebook_loans(today):
                closed.append((record, BorrowRecordService._close_ebook_loan(record)))

        for record, titles in closed:
            NotificationService.notify(
                record.user_id,
                f'Your borrowed ebook(s) "{titles}" have been automatically returned as they have expired.',
                NotificationType.EBOOK_EXPIRED,
                subject="Library: ebook returned automatically",
                borrow_record_id=record.id,
            )
        if closed:
            current_app.logger.info(f"[ebook] auto-returned records={[r.id for r, _ in closed]}")
        return [r.id for r, _ in closed]

    @staticmethod
    def send_due_soon_reminders(today: date | None = None) -> int:
        today = today or date.today()
        horizon = today + timedelta(days=current_app.config["DUE_SOON_DAYS"])

        sent = 0
        for record in BorrowRecordRepo.find_due_between(today, horizon):
            if NotificationRepo.already_sent_today(NotificationType.DUE_SOON, borrow_record_id=record.id):
                continue
            NotificationService.notify(
                record.user_id,
                f"Your loan is due on {record.return_date.isoformat()}. "
                "Please return your books on time to avoid penalties.",
                NotificationType.DUE_SOON,
                subject="Library: return date approaching",
                borrow_record_id=record.id,
            )
            sent += 1
        return sent
