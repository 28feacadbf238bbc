# backend/core/exceptions.py

from typing import Any, Dict, Optional


class BookingError(Exception):
    """Base exception for every business-rule violation in the reservation core"""

    def __init__(
        self, message: str, error_code: str, details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class NotFoundError(BookingError):
    """Raised when a referenced entity does not exist"""

    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        super().__init__(
            f"{entity} {identifier} not found",
            "NOT_FOUND",
            {"entity": entity, "identifier": identifier},
        )


class UnauthorizedError(BookingError):
    """Raised when the acting user may not perform a mutating action"""

    def __init__(self, user_id: int, action: str, resource_id: Any = None):
        self.user_id = user_id
        self.action = action
        super().__init__(
            f"User {user_id} is not allowed to {action}",
            "UNAUTHORIZED",
            {"user_id": user_id, "action": action, "resource_id": resource_id},
        )


class InvalidTransitionError(BookingError):
    """Raised when a lifecycle transition is not allowed from the current status"""

    def __init__(self, entity: str, entity_id: Any, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot move {entity} {entity_id} from {current_status} to {target_status}",
            "INVALID_TRANSITION",
            {
                "entity": entity,
                "entity_id": entity_id,
                "current_status": current_status,
                "target_status": target_status,
            },
        )
