"""Translation of referral errors to HTTP responses."""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from fallfest.referral.errors import ReferralError, ReferralErrorCode

ERROR_STATUS = {
    ReferralErrorCode.EMPTY_CODE: status.HTTP_400_BAD_REQUEST,
    ReferralErrorCode.INVALID_CODE: status.HTTP_400_BAD_REQUEST,
    ReferralErrorCode.SELF_REFERRAL: status.HTTP_400_BAD_REQUEST,
    ReferralErrorCode.ALREADY_LOCKED: status.HTTP_409_CONFLICT,
    ReferralErrorCode.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ReferralErrorCode.COLLISION: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(code: ReferralErrorCode, message: str | None) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS[code],
        content={"error": code.value, "detail": message},
    )


async def referral_error_handler(request: Request, exc: ReferralError) -> JSONResponse:
    return error_response(exc.code, exc.message)
