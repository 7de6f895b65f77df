"""
Wallet Pass Router

Pass generation endpoints. /generate-pass picks the platform from the
caller's user agent; the /v1/wallet/pass/* endpoints issue for one platform.
"""
import base64
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response

from walletpass.core.errors import IssuanceFailed, PlatformNotEnabled
from walletpass.schemas import GeneratePassRequest, PlatformPassRequest
from walletpass.services.apple_wallet_pass import PKPASS_MEDIA_TYPE
from walletpass.services.dispatcher import APPLE, GOOGLE, PassDispatcher, IssuedPass, detect_platform

logger = logging.getLogger(__name__)

router = APIRouter(tags=["wallet-pass"])


def get_dispatcher(request: Request) -> PassDispatcher:
    return request.app.state.dispatcher


def _pkpass_response(issued: IssuedPass) -> Response:
    return Response(
        content=issued.pkpass,
        media_type=PKPASS_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{issued.filename}"'
        }
    )


def _not_enabled(e: PlatformNotEnabled) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_501_NOT_IMPLEMENTED,
        detail={
            "error": "WALLET_PLATFORM_DISABLED",
            "message": str(e)
        }
    )


def _failed(e: IssuanceFailed) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "PASS_GENERATION_FAILED",
            "message": str(e)
        }
    )


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/generate-pass")
def generate_pass(
    payload: GeneratePassRequest,
    dispatcher: PassDispatcher = Depends(get_dispatcher)
):
    """
    Generate a pass for the caller's device.

    - Apple devices: .pkpass file
    - Android devices: {"passUrl": <save to Google Wallet URL>}
    - Anything else: both options in one JSON body (pkpass base64 encoded)
    """
    if not payload.user_agent or not (payload.user_id or "").strip() or payload.pass_data is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing required parameters"}
        )

    platform = detect_platform(payload.user_agent)

    try:
        issued = dispatcher.issue(platform, payload.user_id, payload.pass_data)
    except PlatformNotEnabled as e:
        return JSONResponse(status_code=status.HTTP_501_NOT_IMPLEMENTED, content={"error": str(e)})
    except IssuanceFailed as e:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(e)})

    if platform == APPLE:
        return _pkpass_response(issued[0])
    if platform == GOOGLE:
        return {"passUrl": issued[0].save_url}

    body = {"message": "Device type not detected. Here are both pass options:"}
    for item in issued:
        if item.platform == APPLE:
            body["applePass"] = {
                "filename": item.filename,
                "mediaType": PKPASS_MEDIA_TYPE,
                "data": base64.b64encode(item.pkpass).decode("ascii"),
            }
        else:
            body["googlePassUrl"] = item.save_url
    return body


@router.post("/v1/wallet/pass/apple")
def create_apple_pass(
    payload: PlatformPassRequest,
    dispatcher: PassDispatcher = Depends(get_dispatcher)
):
    """Create a signed Apple Wallet pass"""
    try:
        issued = dispatcher.issue_apple(payload.user_id, payload.pass_data)
    except PlatformNotEnabled as e:
        raise _not_enabled(e)
    except IssuanceFailed as e:
        raise _failed(e)
    return _pkpass_response(issued)


@router.post("/v1/wallet/pass/google")
def create_google_pass(
    payload: PlatformPassRequest,
    dispatcher: PassDispatcher = Depends(get_dispatcher)
):
    """Create a Google Wallet pass and return its save URL"""
    try:
        issued = dispatcher.issue_google(payload.user_id, payload.pass_data)
    except PlatformNotEnabled as e:
        raise _not_enabled(e)
    except IssuanceFailed as e:
        raise _failed(e)
    return {"passUrl": issued.save_url, "serialNumber": issued.serial_number}
