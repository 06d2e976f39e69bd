from fastapi import APIRouter

from leave_ledger.api.balances import employee_balance_router, my_balance_router
from leave_ledger.api.requests import requests_router

api_router = APIRouter()
api_router.include_router(requests_router)
api_router.include_router(my_balance_router)
api_router.include_router(employee_balance_router)
