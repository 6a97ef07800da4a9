"""
app/billing/invoice.py
-----------------------
Invoice numbers are minted by the server inside the commit transaction.

Format:  INV-YYYY-NNNN   (INV-2026-0001 … INV-2026-9999, INV-2026-10000)

The year's InvoiceSequence row is locked with SELECT … FOR UPDATE, so two
concurrent commits are serialised: the second blocks until the first
commits and then reads the incremented value. Because the row only moves
when the surrounding sale commits, a rolled-back sale leaves no gap.
"""
from datetime import datetime

INVOICE_PREFIX = 'INV'


def _locked_sequence(db_session, year):
    from app.billing.models import InvoiceSequence
    return (
        db_session.query(InvoiceSequence)
        .filter(InvoiceSequence.year == year)
        .with_for_update()
        .first()
    )


def generate_invoice_number(db_session, now: datetime = None) -> str:
    """
    Next invoice number for the year of `now`.

    MUST be called inside the caller's open transaction; the row lock is
    held until that transaction commits or rolls back.
    """
    from app.billing.models import InvoiceSequence

    year = (now or datetime.utcnow()).year

    seq_row = _locked_sequence(db_session, year)
    if seq_row is None:
        # First sale of the year
        db_session.add(InvoiceSequence(year=year, last_seq=0))
        db_session.flush()
        seq_row = _locked_sequence(db_session, year)

    seq_row.last_seq += 1
    db_session.flush()

    return f"{INVOICE_PREFIX}-{year}-{seq_row.last_seq:04d}"
