from fastapi import APIRouter

from vacancy_notifier.api.subscribers import router as subscribers_router
from vacancy_notifier.api.vacancies import router as vacancies_router

api_router = APIRouter(prefix="/api")

api_router.include_router(subscribers_router)
api_router.include_router(vacancies_router)
