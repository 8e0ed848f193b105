"""Exception handling and error code mapping for futures-risk."""

from enum import Enum


class ValidationReason(str, Enum):
    """Reason codes carried by ValidationError."""
    INVALID_CONFIG = "invalid_config"
    NON_POSITIVE_TARGET = "non_positive_target"
    TARGET_EXCEEDS_UNREALIZED = "target_exceeds_unrealized"
    STOP_PRICE_NOT_PROTECTIVE = "stop_price_not_protective"
    NON_POSITIVE_QUANTITY = "non_positive_quantity"
    INVALID_DIRECTION = "invalid_direction"
    ORDER_ID_ALREADY_ASSIGNED = "order_id_already_assigned"


class ValidationError(ValueError):
    """Raised when parameters are malformed or out of range.

    Always raised before any plan or price is handed back, so callers
    never see a partially applied result.
    """

    def __init__(self, reason: ValidationReason, message: str, price=None):
        super().__init__(message)
        self.reason = reason
        self.price = price

    def __str__(self) -> str:
        return f"[{self.reason.value}] {self.args[0]}"


class DataError(Exception):
    """Raised when snapshot data is insufficient or invalid."""
    pass


class ConfigError(Exception):
    """Raised when configuration is invalid."""
    pass


# Exit codes for CLI
EXIT_SUCCESS = 0           # Successful completion
EXIT_GENERAL_ERROR = 1     # Uncaught/unexpected exceptions
EXIT_CONFIG_ERROR = 2      # Configuration validation failures
EXIT_DATA_ERROR = 4        # Malformed snapshot data
EXIT_VALIDATION_ERROR = 5  # Rejected strategy or price parameters


class ExceptionMapper:
    """Maps exceptions to appropriate exit codes."""

    @staticmethod
    def map_to_exit_code(e: Exception) -> int:
        """
        Map an exception to an exit code.

        Args:
            e: The exception to map

        Returns:
            Exit code (0-5)
        """
        # Configuration errors
        if isinstance(e, ConfigError):
            return EXIT_CONFIG_ERROR

        # Data errors
        elif isinstance(e, DataError):
            return EXIT_DATA_ERROR

        # Must come before the generic ValueError branch
        elif isinstance(e, ValidationError):
            return EXIT_VALIDATION_ERROR

        # Missing snapshot or settings file
        elif isinstance(e, FileNotFoundError):
            return EXIT_CONFIG_ERROR

        # Value and key errors (often configuration related)
        elif isinstance(e, (ValueError, KeyError)):
            return EXIT_CONFIG_ERROR

        # Default to general error
        return EXIT_GENERAL_ERROR

