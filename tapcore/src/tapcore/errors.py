"""
Exceptions raised by the descriptor compiler, satisfier and wallet bookkeeping.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class TapError(Exception):
    """Base class for all errors surfaced to the operator."""

    pass


class DescriptorSyntaxError(TapError):
    """Malformed descriptor or ill-typed Miniscript."""

    def __init__(self, message: str, token: str | None = None, position: int | None = None):
        self.token = token
        self.position = position
        if token is not None and position is not None:
            message = f"{message} (token {token!r} at offset {position})"
        super().__init__(message)


class UnknownKeyOrImage(TapError):
    """A descriptor or command referenced a key or image missing from the store."""

    def __init__(self, reference: str, kind: str = "key"):
        self.reference = reference
        self.kind = kind
        super().__init__(f"Unknown {kind}: {reference}")


class LocktimeRequiresRelativeTimelock(TapError):
    def __init__(self) -> None:
        super().__init__(
            "Locktime requires at least one input with relative timelock enabled "
            "(use a relative height of 0 to only enable locktime)"
        )


@dataclass
class LeafAttempt:
    """One script leaf the satisfier tried, with the predicates that blocked it."""

    index: int
    miniscript: str
    blockers: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        reasons = "; ".join(self.blockers) if self.blockers else "not satisfiable"
        return f"leaf #{self.index} {self.miniscript}: {reasons}"


class NoSatisfyingPath(TapError):
    def __init__(
        self,
        input_index: int | None,
        key_path_blocker: str,
        attempts: list[LeafAttempt],
    ):
        self.input_index = input_index
        self.key_path_blocker = key_path_blocker
        self.attempts = attempts

        where = f"input #{input_index}" if input_index is not None else "output"
        lines = [f"No satisfying spend path for {where}", f"  key path: {key_path_blocker}"]
        lines.extend(f"  {attempt}" for attempt in attempts)
        super().__init__("\n".join(lines))


class NegativeImplicitValue(TapError):
    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(
            f"Not enough funds: inputs provide {available} sat, "
            f"outputs and fee require {required} sat"
        )


class MultipleImplicitOutputs(TapError):
    def __init__(self) -> None:
        super().__init__("At most one output may omit its value")


class UnboundInput(TapError):
    def __init__(self, index: int):
        self.index = index
        super().__init__(f"Input #{index} is missing")


class MissingOutput(TapError):
    def __init__(self, index: int):
        self.index = index
        super().__init__(f"Output #{index} is missing")


class DoubleSpend(TapError):
    def __init__(self, outpoint: str):
        self.outpoint = outpoint
        super().__init__(f"UTXO {outpoint} is already bound to an input")


class UnknownUtxo(TapError):
    def __init__(self, index: int):
        self.index = index
        super().__init__(f"No UTXO at index {index}")


class MissingInboundAddress(TapError):
    def __init__(self) -> None:
        super().__init__("Inbound address is missing (set one with 'addr set')")


class TxidMismatch(TapError):
    def __init__(self, expected: str, given: str):
        self.expected = expected
        self.given = given
        super().__init__(f"Transaction id {given} does not match the draft ({expected})")


class StateCorrupt(TapError):
    pass


class StateExists(TapError):
    pass


class TransactionError(TapError):
    """Raw transaction could not be (de)serialized."""

    pass


class StateMissing(TapError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"State file {path} does not exist (run 'init' first)")


class InvalidLocktime(TapError):
    def __init__(self, height: int):
        self.height = height
        super().__init__(f"Locktime {height} is not a block height (must be below 500000000)")


class InvalidRelativeHeight(TapError):
    def __init__(self, height: int):
        self.height = height
        super().__init__(f"Relative timelock {height} is out of range (0 to 65535 blocks)")
