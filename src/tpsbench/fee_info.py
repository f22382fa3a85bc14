"""Open ledger / transaction queue snapshot from the rippled `fee` command."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class FeeInfo:
    """How much of the injected load the entry node is still holding.

    current_ledger_size and current_queue_size move with every applied
    transaction, so a snapshot is only good for progress logging.
    """

    ledger_current_index: int
    current_ledger_size: int
    expected_ledger_size: int
    current_queue_size: int
    max_queue_size: int
    open_ledger_fee: int  # drops

    @classmethod
    def from_fee_result(cls, result: dict) -> "FeeInfo":
        drops = result["drops"]
        return cls(
            ledger_current_index=int(result["ledger_current_index"]),
            current_ledger_size=int(result["current_ledger_size"]),
            expected_ledger_size=int(result["expected_ledger_size"]),
            current_queue_size=int(result["current_queue_size"]),
            max_queue_size=int(result["max_queue_size"]),
            open_ledger_fee=int(drops["open_ledger_fee"]),
        )

    def summary(self) -> str:
        return (
            f"ledger={self.ledger_current_index} "
            f"open={self.current_ledger_size}/{self.expected_ledger_size} "
            f"queue={self.current_queue_size}/{self.max_queue_size} "
            f"open_fee={self.open_ledger_fee}"
        )
