import logging
import re

from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z0-9]{1,16})-(?P<year>\d{4})-(?P<seq>\d+)$")


class InvoiceNumberService:
    """
    Gap-free, per-tenant, per-year invoice numbers.

    The counter row is bumped with a single ``UPDATE ... RETURNING`` so two
    concurrent callers can never observe the same value. Numbers are
    consumed by the caller's transaction: rolling it back releases them.
    """

    def __init__(self, repository, clock, default_prefix="INV", pad=6, max_attempts=3):
        self.repository = repository
        self.clock = clock
        self.default_prefix = default_prefix
        self.pad = pad
        self.max_attempts = max_attempts

    def next_number(self, tenant_id) -> str:
        now = self.clock.now()
        year = now.year

        for attempt in range(1, self.max_attempts + 1):
            row = self.repository.increment_invoice_counter(tenant_id, year, now)
            if row is not None:
                last_number, prefix = row
                return self.format(prefix, year, last_number)

            prefix = self._prefix_for(tenant_id)
            try:
                number = self.repository.create_invoice_counter(tenant_id, year, prefix, now)
            except IntegrityError:
                # Someone else created this year's counter first
                logger.debug(
                    "Invoice counter insert raced, retrying update",
                    extra={"tenant_id": tenant_id, "year": year, "attempt": attempt},
                )
                continue
            return self.format(prefix, year, number)

        raise RuntimeError(f"Could not allocate an invoice number for tenant {tenant_id}")

    def current_counter(self, tenant_id, year=None) -> int:
        counter = self.repository.get_invoice_counter(tenant_id, year or self.clock.now().year)
        return counter.last_number if counter else 0

    def format(self, prefix, year, number) -> str:
        return f"{prefix}-{year}-{number:0{self.pad}d}"

    @staticmethod
    def validate_number(invoice_number) -> bool:
        return bool(invoice_number) and _NUMBER_RE.match(invoice_number) is not None

    def _prefix_for(self, tenant_id):
        tenant = self.repository.get_tenant(tenant_id)
        if tenant is not None and tenant.invoice_prefix:
            return tenant.invoice_prefix.upper()
        return self.default_prefix
