"""Transaction identifier sequencing for MBAP headers."""

from modbus_tcp.constants import MAX_TRANSACTION_ID


class TransactionSequencer:
    """
    Produces 16-bit transaction identifiers.

    The counter is advanced before each request, so the first request of a
    client carries id 1. After 65535 the next id is 0.
    """

    def __init__(self, start: int = 0):
        self.current = start & MAX_TRANSACTION_ID

    def next(self) -> int:
        """Advance the counter and return the new transaction id."""
        if self.current < MAX_TRANSACTION_ID:
            self.current += 1
        else:
            self.current = 0
        return self.current
