"""Custom exception classes for the RBAC admin backend."""

from fastapi import HTTPException, status


class RBACError(Exception):
    """Base exception for RBAC Admin."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ResourceNotFoundError(RBACError):
    """Raised when a role, feature or permission cannot be resolved."""
    status_code = status.HTTP_404_NOT_FOUND


class ResourceAlreadyExistsError(RBACError):
    """Raised on a duplicate grant or duplicate role name."""
    status_code = status.HTTP_409_CONFLICT


class ResourceConflictError(RBACError):
    """Raised when a delete is blocked by existing references."""
    status_code = status.HTTP_409_CONFLICT


class InvalidOperationError(RBACError):
    """Raised on self-parenting or a re-parent that would create a cycle."""
    status_code = status.HTTP_400_BAD_REQUEST


class ValidationError(RBACError):
    """Raised when input validation fails."""
    status_code = 422


class StorageError(RBACError):
    """Raised when the database is unavailable or a write fails."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


# HTTP exception shortcuts
def not_found(detail: str = "Resource not found") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def forbidden(detail: str = "Insufficient permissions") -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )
