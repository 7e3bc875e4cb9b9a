from fastapi import APIRouter

from parallel_crawler.api.routes import crawl, health

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(crawl.router, prefix="/crawl", tags=["crawl"])
