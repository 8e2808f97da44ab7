# karuna/core/errors.py
class KarunaError(Exception):
    pass

class Unauthorized(KarunaError):
    pass

class StoreUnavailable(KarunaError):
    """Backing store could not be reached; the whole pass can be retried."""

class PairComputationError(KarunaError):
    def __init__(self, report_id, donation_id, reason: str):
        super().__init__(f"pair ({report_id}, {donation_id}): {reason}")
        self.report_id = report_id
        self.donation_id = donation_id

class CommitError(KarunaError):
    pass
