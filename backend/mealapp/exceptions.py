from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
import traceback
from .logger import logger


class MealAppBaseException(Exception):
    """Base exception for the meal analysis backend"""
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(self.message)


class PayloadResolutionError(MealAppBaseException):
    """Raised when a job payload does not identify an image"""
    def __init__(self, message: str = "invalid payload: need image_id or meal_id"):
        super().__init__(message, "PAYLOAD_RESOLUTION_ERROR", 422)


class SignedUrlError(MealAppBaseException):
    """Raised when the object store cannot sign a read URL"""
    def __init__(self, message: str = "failed to sign url"):
        super().__init__(message, "SIGNED_URL_ERROR", 502)


class VisionModelError(MealAppBaseException):
    """Raised when the vision model request itself fails"""
    def __init__(self, message: str = "Vision model request failed"):
        super().__init__(message, "VISION_MODEL_ERROR", 502)


class ImageNotFoundError(MealAppBaseException):
    """Raised when a meal image is not found"""
    def __init__(self, image_id: int):
        super().__init__(f"Image {image_id} not found", "IMAGE_NOT_FOUND", 404)


class AuthenticationError(MealAppBaseException):
    """Raised when no valid bearer token is presented"""
    def __init__(self, message: str = "unauthorized"):
        super().__init__(message, "UNAUTHORIZED", 401)


class AdminRequiredError(MealAppBaseException):
    """Raised when an authenticated user lacks the admin role"""
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} is not an admin", "ADMIN_REQUIRED", 403)


async def mealapp_exception_handler(request: Request, exc: MealAppBaseException):
    """Handle custom application exceptions"""
    logger.error(
        f"Application exception: {exc.code} - {exc.message}",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "request_path": request.url.path,
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "ok": False,
            "error": exc.code,
            "message": exc.message,
            "status_code": exc.status_code,
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions"""
    logger.warning(
        f"HTTP {exc.status_code}: {exc.detail}",
        extra={
            "http_status_code": exc.status_code,
            "http_detail": exc.detail,
            "request_path": request.url.path,
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "ok": False,
            "error": "HTTP_ERROR",
            "message": exc.detail,
            "status_code": exc.status_code,
        }
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__} - {str(exc)}",
        extra={
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
            "request_path": request.url.path,
            "exc_traceback": traceback.format_exc(),
        }
    )
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An internal error occurred. Please try again later.",
        }
    )
