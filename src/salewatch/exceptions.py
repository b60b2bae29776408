"""Exception hierarchy for salewatch."""


class SaleWatchError(Exception):
    """Base class for all salewatch errors."""


class ConfigurationError(SaleWatchError):
    """Invalid market registry or settings."""


class SignatureError(ConfigurationError, ValueError):
    """Event signature text could not be parsed into an ABI descriptor."""


class DecodeError(SaleWatchError):
    """A log does not match the event signature it was decoded against."""


class FieldMapError(DecodeError):
    """A field map names an argument missing from the decoded arguments."""

    def __init__(self, role: str, arg_name: str, available: list[str]) -> None:
        self.role = role
        self.arg_name = arg_name
        self.available = available
        super().__init__(
            f"Field map role '{role}' points at argument '{arg_name}', "
            f"decoded args are {available}"
        )


class ExternalServiceError(SaleWatchError):
    """Transport-level failure talking to the chain node."""


class RPCError(ExternalServiceError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        self.method = method
        self.code = code
        super().__init__(f"RPC error ({method}): [{code}] {message}")


class ReceiptNotFoundError(ExternalServiceError):
    """Transaction receipt is not (yet) available on the node."""


class SubscriptionError(SaleWatchError):
    """A live log subscription terminated with an error."""
