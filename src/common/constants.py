# Persisted keys shared by the session manager and the credential provider
USER_TOKEN_KEY = "user_token"
USER_DATA_KEY = "user_data"

SECURE_KEY_PREFIX = "secure_"

# Linear backoff step between retries: attempt * step
RETRY_BACKOFF_STEP_SECONDS = 1.0


class ErrorMessages:
    NETWORK_ERROR = "Network error. Check your connection and ensure backend is running."
    SERVER_ERROR = "Server error. Please try again later."
    INVALID_CREDENTIALS = "Invalid email or password."
    INVALID_RESPONSE = "Invalid response from server"
    EMAIL_EXISTS = "Email already exists"
    WRONG_PASSWORD = "Current password is incorrect"
    UNEXPECTED_ERROR = "An unexpected error occurred."
    UNKNOWN_ERROR = "Unknown error occurred"


# Fallback messages when an error response body cannot be read
STATUS_FALLBACK_MESSAGES = {
    401: "Invalid credentials or session expired",
    403: "Access denied",
    404: "Resource not found",
    500: "Internal server error",
}
