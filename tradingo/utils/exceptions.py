"""
Custom exceptions for the exchange core

This module defines the hierarchy of exceptions raised by the matching engine,
the price feed and the subscription hub. Every error is surfaced synchronously
to the caller of the operation that triggered it; none is retried.
"""


class BaseMatchingEngineException(Exception):
    """Base exception class for all exchange core exceptions."""

    def __init__(self, message: str, details: dict = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidInstrumentException(BaseMatchingEngineException):
    """Raised when a symbol is not registered with the exchange."""
    pass


class DuplicateInstrumentException(BaseMatchingEngineException):
    """Raised when registering a symbol that is already registered."""
    pass


class InvalidOrderException(BaseMatchingEngineException):
    """Raised when an order contains invalid parameters or fails validation."""
    pass


class ValidationException(BaseMatchingEngineException):
    """Raised when input validation fails."""
    pass


class NotFoundException(BaseMatchingEngineException):
    """Raised when the target of an operation does not exist."""
    pass


class OrderNotFoundException(NotFoundException):
    """Raised when cancelling, removing or querying an order that doesn't exist."""
    pass


class SubscriptionNotFoundException(NotFoundException):
    """Raised when draining a subscriber that has no subscription."""
    pass


class InvalidStateException(BaseMatchingEngineException):
    """Raised when operating on an order that is already filled or cancelled."""
    pass


class UnfillableException(BaseMatchingEngineException):
    """Raised when a market order finds no opposing liquidity."""
    pass


class OrderBookException(BaseMatchingEngineException):
    """Raised for general order book operation errors."""
    pass
