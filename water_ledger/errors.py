"""
Error taxonomy for ledger operations.

Validation errors are raised before any mutation happens. StorageUnavailable
is only ever logged by the store; callers keep working on the in-memory ledger.
"""


class LedgerError(Exception):
    """Base class for every error raised by the ledger core"""


class DuplicateMeter(LedgerError):
    def __init__(self, meter_number, owner_name=""):
        self.meter_number = meter_number
        self.owner_name = owner_name
        msg = f"Meter number {meter_number} is already used"
        if owner_name:
            msg += f" by {owner_name}"
        super().__init__(msg)


class InvalidReading(LedgerError):
    pass


class InvalidPrice(LedgerError):
    pass


class MissingField(LedgerError):
    pass


class NotFound(LedgerError):
    pass


class MonthAlreadyExists(LedgerError):
    def __init__(self, label):
        self.label = label
        super().__init__(f"Month {label} already exists")


class LastMonthProtected(LedgerError):
    def __init__(self):
        super().__init__("A customer must keep at least one month")


class RollbackNotConfirmed(LedgerError):
    """New reading is below the previous one and the caller did not confirm it"""

    def __init__(self, old_reading, new_reading):
        self.old_reading = old_reading
        self.new_reading = new_reading
        super().__init__(f"New reading {new_reading} is lower than previous reading {old_reading}")


class InvalidImportShape(LedgerError):
    pass


class StorageUnavailable(LedgerError):
    pass


class StoreNotReady(LedgerError):
    def __init__(self):
        super().__init__("Ledger store has not been initialized")
