"""User-facing messages shown by the driver and admin apps."""

SIGN_IN_SUCCESS = "Login berhasil"
SIGN_IN_FAILED = "Gagal login"
INVALID_CREDENTIALS = (
    "Email atau password tidak valid. Pastikan Anda sudah mendaftar dan menggunakan kredensial yang benar."
)
EMAIL_NOT_CONFIRMED = "Email belum dikonfirmasi. Silakan periksa email Anda."
TOO_MANY_ATTEMPTS = "Terlalu banyak percobaan login. Silakan tunggu beberapa menit."

SIGN_UP_SUCCESS = "Pendaftaran berhasil! Silakan login dengan akun baru Anda."
SIGN_UP_FAILED = "Gagal mendaftar"
PASSWORD_TOO_SHORT = "Password minimal 6 karakter"
EMAIL_ALREADY_REGISTERED = "Email sudah terdaftar. Silakan login."

SIGN_OUT_SUCCESS = "Logout berhasil"
SIGN_OUT_FAILED = "Gagal logout"

PROFILE_UNAVAILABLE = "Gagal memuat profil. Silakan coba lagi."

MIN_PASSWORD_LENGTH = 6


def sign_in_error_message(code: str | None, fallback: str | None = None) -> str:
    if code == "INVALID_CREDENTIALS":
        return INVALID_CREDENTIALS
    if code == "EMAIL_NOT_CONFIRMED":
        return EMAIL_NOT_CONFIRMED
    if code == "RATE_LIMIT_EXCEEDED":
        return TOO_MANY_ATTEMPTS
    return fallback or SIGN_IN_FAILED


def sign_up_error_message(code: str | None, fallback: str | None = None) -> str:
    if code == "USER_ALREADY_EXISTS":
        return EMAIL_ALREADY_REGISTERED
    return fallback or SIGN_UP_FAILED
