"""
FastAPI Router for the License API
"""

from fastapi import APIRouter

# Import sub-routers
from license_api.api.crypto_subscribe import router as crypto_subscribe_router
from license_api.api.crypto_quote import router as crypto_quote_router
from license_api.api.wallet_balances import router as wallet_balances_router


# Main router
router = APIRouter()

# Include sub-routers (they already carry their prefixes)
router.include_router(crypto_subscribe_router)  # Subscribe, confirm, status, cancel
router.include_router(crypto_quote_router)  # Payment page quotes and tokens
router.include_router(wallet_balances_router)  # Display-only wallet balances
